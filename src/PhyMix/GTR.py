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
Last Stable Edit : 10/11/26
First Included in Version : 1.0.0
Approved for Release : Yes.
"""

import warnings
import numpy as np
from .CTMC import CTMC
from .RateMatrixMixture import RateMatrix, EmissionModel

"""
SOURCES:

1) Kimura 1980 (K80)

2) Felsenstein 1981 (F81)

3) Hasegawa et al. 1985 (HKY85)

4) Tavaré 1986 (GTR)

5) Jukes and Cantor 1969 (JC)
"""

#########################
#### EXCEPTION CLASS ####
#########################

class SubstitutionModelError(Exception):
    """
    Class of exception that gets raised when there is an error in the
    formulation of a substitution model, whether it be inputs that don't
    adhere to requirements or there is an issue in computation.
    """
    def __init__(self, message = "Unknown substitution model error") -> None:
        self.message = message
        super().__init__(self.message)

#############################
#### SUBSTITUTION MODELS ####
#############################

class GTR:
    """
    General superclass for time reversible substitution models.

    This is the Generalized Time Reversible (GTR) model. For states i != j,
    Q[i][j] = s_ij * pi_j, where s is a symmetric matrix of exchangeabilities
    and pi the base frequencies. Q is scaled so that the expected number of
    substitutions per unit time is 1.
    """

    def __init__(self, base_freqs : list[float] | np.ndarray,
                       transitions : list[float] | np.ndarray,
                       states : int = 4):
        """
        Args:
            base_freqs (list[float] | np.ndarray): an array of floats of
                                                   'states' length. Must sum
                                                   to 1.
            transitions (list[float] | np.ndarray): the exchangeabilities of
                                                    the upper triangle of s,
                                                    row by row. It is
                                                    ('states'^2 - 'states) / 2
                                                    long. For DNA the order is
                                                    AC, AG, AT, CG, CT, GT.
            states (int, optional): Number of possible data states.
                                    Defaults to 4 (For DNA, {A, C, G, T}).

        Raises:
            SubstitutionModelError: If the base frequency or transition arrays
                                    are malformed.
        """

        self.states : int = states
        self.freqs : np.ndarray = np.ravel(np.array(base_freqs,
                                                    dtype = np.double))
        self.trans : np.ndarray = np.ravel(np.array(transitions,
                                                    dtype = np.double))

        self.is_valid(self.trans, self.freqs, self.states)

        # compute Q, the instantaneous rate matrix
        self.Q : np.ndarray = self.buildQ()

    def getQ(self) -> np.ndarray:
        """
        Get the Q matrix

        Returns: np array obj
        """
        return self.Q

    def set_hyperparams(self, params : dict[str, object]) -> None:
        """
        Change any of the base frequencies/states/transitions parameters, and
        recompute the Q matrix accordingly.

        Args:
            params (dict[str, object]): A mapping from gtr parameter names to
                                        their values. For the GTR superclass,
                                        names must be limited to ["states",
                                        "base frequencies", "transitions"]
        """

        param_names = params.keys()

        if "states" in param_names:
            self.states = params["states"]
        if "transitions" in param_names:
            self.trans = np.ravel(np.array(params["transitions"],
                                           dtype = np.double))
        if "base frequencies" in param_names:
            self.freqs = np.ravel(np.array(params["base frequencies"],
                                           dtype = np.double))

        self.is_valid(self.trans, self.freqs, self.states)
        self.buildQ()

    def get_hyperparams(self) -> tuple[np.ndarray, np.ndarray]:
        """
        Gets the base frequency and transition arrays.

        Returns:
            tuple[np.ndarray, np.ndarray]: the base frequencies in the first
                                           element, and the transitions in
                                           the second.
        """
        return self.freqs, self.trans

    def state_count(self) -> int:
        """
        Get the number of states for this substitution model.

        Returns:
            int: Number of states.
        """
        return self.states

    def buildQ(self) -> np.ndarray:
        """
        Populate the normalized Q matrix with the correct values.
        Based on (4)
        """
        exchange = np.zeros((self.states, self.states), dtype = np.double)
        exchange[np.triu_indices(self.states, k = 1)] = self.trans
        exchange = exchange + exchange.T

        self.Q = exchange * self.freqs[np.newaxis, :]
        np.fill_diagonal(self.Q, 0.0)
        np.fill_diagonal(self.Q, -self.Q.sum(axis = 1))

        # normalize such that -1 * SUM Q_ii * pi_i = 1
        norm_factor = -np.dot(np.diag(self.Q), self.freqs)
        if norm_factor <= 0:
            raise SubstitutionModelError("Substitution model has no \
                                          substitutions at all.")

        self.Q = self.Q / norm_factor
        return self.Q

    def expt(self, t : float) -> np.ndarray:
        """
        Compute the matrix exponential e^(Q*t).

        Args:
            t (float): Generally going to be a positive number for phylogenetic
                       applications. Represents time, in expected
                       substitutions per site.
        """
        return CTMC(self.Q).marginal_transition_probability(t)

    def to_rate_matrix(self, emission_model : EmissionModel = None) \
            -> RateMatrix:
        """
        Package this model as one category of a rate matrix mixture.

        Args:
            emission_model (EmissionModel, optional): Defaults to None.
        Returns:
            RateMatrix: a category with this model's Q matrix.
        """
        return RateMatrix(self.Q, emission_model)

    def is_valid(self, transitions: np.ndarray,
                 freqs : np.ndarray, states : int) -> None:
        """
        Ensure frequencies and transitions are well formed.

        Args:
            transitions (np.ndarray): Transition list.
            freqs (np.ndarray): Base frequency list. Must sum to 1.
            states (int): number of states.
        """

        # Check for malformed inputs
        if len(freqs) != states or not np.isclose(np.sum(freqs), 1.0) \
                or np.any(freqs <= 0):
            raise SubstitutionModelError("Base frequency list either does not \
                                          sum to 1, has a non-positive entry, \
                                          or is not of correct length")

        proper_len = ((states - 1) * states) // 2
        if len(transitions) != proper_len:
            raise SubstitutionModelError(f"Incorrect number of transition \
                                          rates. Got {len(transitions)}. \
                                          Expected {proper_len}!")
        if np.any(transitions < 0):
            raise SubstitutionModelError("Transition rates must be \
                                          non-negative.")

class JC(GTR):
    """
    The Jukes Cantor model is the simplest of all time reversible models,
    in which all parameters (transitions, base frequencies) are assumed to be
    equal.

    Defined here for any number of states (4 by default, for DNA).
    """

    def __init__(self, states : int = 4) -> None:
        """
        Args:
            states (int, optional): Number of states. Defaults to 4.
        """
        bases = np.ones(states) / states
        trans = np.ones(((states - 1) * states) // 2)
        super().__init__(bases, trans, states)

    def set_hyperparams(self, params : dict[str, object]) -> None:
        warnings.warn("Attempting to set parameters for the Jukes Cantor model.\
                       No parameters are needed for this model, and whatever\
                       operation was attempted will have no effect.")
        return

class K80(GTR):
    """
    For DNA only (4 states, 6 transitions).

    Kimura 2 parameter model from (1). Also known as K2P. Base frequencies are
    all equal at .25, and transitions (A <-> G, C <-> T) happen 'kappa' times
    faster than transversions.
    """

    def __init__(self, kappa : float) -> None:
        """
        Args:
            kappa (float): transition / transversion rate ratio, > 0.

        Raises:
            SubstitutionModelError: if kappa is not positive.
        """
        self.kappa : float = self._check_kappa(kappa)
        super().__init__([.25, .25, .25, .25], _kappa_transitions(kappa))

    def set_hyperparams(self, params : dict[str, object]) -> None:
        """
        Args:
            params (dict[str, object]): names must be limited to ["kappa"]
        """
        if "kappa" in params.keys():
            self.kappa = self._check_kappa(params["kappa"])
            self.trans = _kappa_transitions(self.kappa)

        self.buildQ()

    def _check_kappa(self, kappa : float) -> float:
        if kappa <= 0:
            raise SubstitutionModelError("Kappa must be positive.")
        return float(kappa)

class F81(GTR):
    """
    For DNA only (4 states, 6 transitions).

    Formulated by Felsenstein in 1981, this substitution model assumes that
    all base frequencies are free, but all exchangeabilities are equal.
    """

    def __init__(self, bases : list[float] | np.ndarray):
        """
        Args:
            bases (list[float] | np.ndarray): a list of 4 base frequency values.
        """
        super().__init__(bases, np.ones(6))

    def set_hyperparams(self, params : dict[str, object]) -> None:
        """
        Args:
            params (dict[str, object]): names must be limited to
                                        ["base frequencies"].
        """
        if "base frequencies" in params.keys():
            freqs = np.ravel(np.array(params["base frequencies"],
                                      dtype = np.double))
            self.is_valid(self.trans, freqs, self.states)
            self.freqs = freqs

        self.buildQ()

class HKY(GTR):
    """
    For DNA only (4 states, 6 transitions).

    Developed by Hasegawa et al. Transversion parameters are assumed to be equal
    and the transition parameters are assumed to be equal, in ratio 'kappa'.
    Base frequency parameters are free.
    """

    def __init__(self, base_freqs : list[float] | np.ndarray,
                 kappa : float) -> None:
        """
        Args:
            base_freqs (list[float] | np.ndarray): Array of 4 values that sum
                                                   to 1.
            kappa (float): transition / transversion rate ratio, > 0.
        """
        if kappa <= 0:
            raise SubstitutionModelError("Kappa must be positive.")
        self.kappa : float = float(kappa)
        super().__init__(base_freqs, _kappa_transitions(kappa))

    def set_hyperparams(self, params : dict[str, object]) -> None:
        """
        Args:
            params (dict[str, object]): names must be limited to
                                        ["base frequencies", "kappa"]
        """
        param_names = params.keys()

        if "kappa" in param_names:
            if params["kappa"] <= 0:
                raise SubstitutionModelError("Kappa must be positive.")
            self.kappa = float(params["kappa"])
            self.trans = _kappa_transitions(self.kappa)
        if "base frequencies" in param_names:
            self.freqs = np.ravel(np.array(params["base frequencies"],
                                           dtype = np.double))

        self.is_valid(self.trans, self.freqs, self.states)
        self.buildQ()

##########################
#### HELPER FUNCTIONS ####
##########################

def _kappa_transitions(kappa : float) -> np.ndarray:
    """
    Exchangeabilities with the pattern [a, b, a, a, b, a], where b = kappa
    is the rate of transitions (AG, CT) and a = 1 that of transversions.
    """
    return np.array([1.0, kappa, 1.0, 1.0, kappa, 1.0])
