#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyMix --
##  Library for Category-Mixture Substitution Models on Phylogenies
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##
##  See "LICENSE.txt" for terms and conditions of usage.
##
##  If you use this work or any portion thereof in published work,
##  please cite it as:
##
##     Mark Kessler, Luay Nakhleh. 2025.
##
##############################################################################

"""
Author : Mark Kessler
Last Edit : 10/11/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]

Continuous time Markov chains on a finite state space. Wraps a rate matrix
and provides the transition probabilities e^(Q*t), the stationary
distribution, the uniformized jump chain, and the closed form expected
sufficient statistics of a branch given the joint distribution of its end
points.

SOURCES:

1) Van Loan 1978, "Computing integrals involving the matrix exponential"

2) Hobolth and Jensen 2005, "Statistical inference in evolutionary models
   of DNA sequences via the EM algorithm"
"""

import numpy as np
from scipy.linalg import expm, null_space

###################
#### CONSTANTS ####
###################

# Largest admissible absolute row sum of a rate matrix
RATE_ROW_SUM_TOLERANCE : float = 1e-8

#########################
#### EXCEPTION CLASS ####
#########################

class CTMCError(Exception):
    """
    Raised when a rate matrix is malformed, or a computation on the chain is
    asked for with nonsensical arguments (ie, a negative time).
    """
    def __init__(self, message : str = "Error in CTMC computation") -> None:
        self.message = message
        super().__init__(self.message)

##############
#### CTMC ####
##############

class CTMC:
    """
    A continuous time Markov chain, defined by its rate matrix Q. Off diagonal
    entries are non-negative and each row sums to 0.
    """

    def __init__(self, rate_matrix : list[list[float]] | np.ndarray) -> None:
        """
        Args:
            rate_matrix (list[list[float]] | np.ndarray): square rate matrix.

        Raises:
            CTMCError: if the matrix is not square, has a negative off diagonal
                       rate, or a row that does not sum to 0.
        """
        self.Q : np.ndarray = np.array(rate_matrix, dtype = np.double)
        self.is_valid(self.Q)
        self._stationary : np.ndarray = None

    def is_valid(self, Q : np.ndarray) -> None:
        """
        Ensure a rate matrix is well formed.

        Args:
            Q (np.ndarray): a candidate rate matrix.
        """
        if Q.ndim != 2 or Q.shape[0] != Q.shape[1] or Q.shape[0] == 0:
            raise CTMCError("Rate matrix must be square and non-empty. Got \
                             shape " + str(Q.shape))

        off_diagonal = Q[~np.eye(Q.shape[0], dtype = bool)]
        if np.any(off_diagonal < 0):
            raise CTMCError("Rate matrix has negative off diagonal rates.")

        scale = max(1.0, float(np.max(np.abs(Q))))
        if np.any(np.abs(Q.sum(axis = 1)) > RATE_ROW_SUM_TOLERANCE * scale):
            raise CTMCError("Rate matrix rows must sum to 0.")

    def get_rate_matrix(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: the rate matrix Q.
        """
        return self.Q

    def state_count(self) -> int:
        """
        Returns:
            int: Number of states.
        """
        return self.Q.shape[0]

    def marginal_transition_probability(self, t : float) -> np.ndarray:
        """
        Compute the matrix exponential e^(Q*t). Round off negatives are set to 0
        and rows renormalized, so that each row is a proper distribution.

        Args:
            t (float): elapsed time, >= 0.
        Returns:
            np.ndarray: P, where P[i][j] is the probability of being in state j
                        after time t when starting from state i.
        """
        if t < 0:
            raise CTMCError("Cannot compute transition probabilities for a \
                             negative time " + str(t))

        P = np.clip(expm(self.Q * t), 0.0, None)
        return P / P.sum(axis = 1, keepdims = True)

    def stationary_distribution(self) -> np.ndarray:
        """
        The distribution pi such that pi * Q = 0. Computed once and cached.

        Raises:
            CTMCError: if the stationary distribution is not unique.
        Returns:
            np.ndarray: the stationary distribution.
        """
        if self._stationary is None:
            kernel = null_space(self.Q.T)
            if kernel.shape[1] != 1:
                raise CTMCError("Rate matrix does not have a unique stationary \
                                 distribution (dimension of null space is "
                                 + str(kernel.shape[1]) + ")")
            pi = np.abs(kernel[:, 0])
            self._stationary = pi / pi.sum()

        return self._stationary.copy()

    def max_departure_rate(self) -> float:
        """
        Returns:
            float: the largest rate of leaving a state, max_i -Q[i][i]. This
                   is the dominating rate used for uniformization.
        """
        return float(np.max(-np.diag(self.Q)))

    def uniformized_transition_matrix(self, rate : float = None) -> np.ndarray:
        """
        The jump chain of the uniformized process, R = I + Q / rate.

        Args:
            rate (float, optional): the dominating rate. Defaults to
                                    'max_departure_rate()'.
        Returns:
            np.ndarray: the transition matrix R. The identity if no state can
                        be left.
        """
        if rate is None:
            rate = self.max_departure_rate()
        if rate < self.max_departure_rate():
            raise CTMCError("Uniformization rate must dominate every \
                             departure rate.")

        n = self.state_count()
        if rate == 0:
            return np.eye(n)
        return np.eye(n) + self.Q / rate

##########################
#### HELPER FUNCTIONS ####
##########################

def expected_sufficient_statistics(count_matrix : np.ndarray,
                                   rate_matrix : np.ndarray,
                                   t : float) -> tuple[np.ndarray, np.ndarray]:
    """
    Closed form expected holding times and transition counts of a branch of
    length 't', given the expected number of sites starting in state a and
    ending in state b, count_matrix[a][b].

    For a pair of states (i, j), the integral
        I_ij(t)[a][b] = int_0^t P[a][i](s) P[j][b](t - s) ds
    is the upper right block of expm([[Q, E_ij], [0, Q]] * t) (1). Then, for
    end points (a, b),
        E[time in i] = I_ii(t)[a][b] / P[a][b](t)
        E[#(i -> j)] = Q[i][j] * I_ij(t)[a][b] / P[a][b](t)      (2)

    Entries of 'count_matrix' for end points of probability 0 contribute
    nothing.

    Args:
        count_matrix (np.ndarray): n x n expected end point counts.
        rate_matrix (np.ndarray): n x n rate matrix.
        t (float): branch length.
    Returns:
        tuple[np.ndarray, np.ndarray]: expected holding time per state (n,) and
                                       expected transition counts (n x n).
    """
    Q = np.asarray(rate_matrix, dtype = np.double)
    counts = np.asarray(count_matrix, dtype = np.double)
    n = Q.shape[0]

    holding = np.zeros(n)
    transitions = np.zeros((n, n))
    if t == 0:
        return holding, transitions

    P = expm(Q * t)
    weights = np.zeros((n, n))
    possible = (counts != 0) & (P > 0)
    weights[possible] = counts[possible] / P[possible]

    aux = np.zeros((2 * n, 2 * n))
    aux[:n, :n] = Q
    aux[n:, n:] = Q

    for i in range(n):
        for j in range(n):
            if i != j and Q[i][j] == 0:
                continue
            aux[:n, n:] = 0.0
            aux[i][n + j] = 1.0
            integral = expm(aux * t)[:n, n:]
            value = float(np.sum(weights * integral))

            if i == j:
                holding[i] = value
            else:
                transitions[i][j] = Q[i][j] * value

    return holding, transitions
