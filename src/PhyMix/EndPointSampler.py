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
Last Edit : 10/13/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]

Sampling of CTMC histories on a branch, conditioned on the states at both of
its ends, by uniformization.

With mu >= max_i -Q[i][i] and R = I + Q / mu, the process is a Poisson(mu)
number of events on [0, t], each a jump of the discrete chain R (possibly to
the same state). Given end points a and b:

    P(N = n | a, b) = Pois(n; mu t) * (R^n)[a][b] / P[a][b](t)

the n event times are uniform on [0, t], and the states visited are drawn in
order from R, each conditioned on reaching b with the remaining jumps.

SOURCES:

1) Hobolth and Stone 2009, "Simulation from endpoint-conditioned,
   continuous-time Markov chains on a finite state space, with applications
   to molecular evolution"
"""

import numpy as np
from scipy import stats
from .CTMC import CTMC
from .FactorGraph import sample_categorical
from .SufficientStatistics import PathStatistics, Path

###################
#### CONSTANTS ####
###################

# Upper bound on the number of uniformized events on a single branch
MAX_UNIFORMIZATION_EVENTS : int = 10000

# Poisson tail mass below which the event count search stops
POISSON_TAIL_TOLERANCE : float = 1e-12

#########################
#### EXCEPTION CLASS ####
#########################

class EndPointSamplerError(Exception):
    """
    Raised when a history is requested for end points that cannot be joined
    in the given time, or when the number of events does not converge.
    """
    def __init__(self, message : str = "Error in end point conditioned \
                                        sampling") -> None:
        self.message = message
        super().__init__(self.message)

###########################
#### END POINT SAMPLER ####
###########################

class EndPointSampler:
    """
    Endpoint conditioned sampler for one CTMC. Transition matrices and powers
    of the uniformized chain are cached, so one sampler should be reused
    across the branches and sites of a sweep.
    """

    def __init__(self, ctmc : CTMC) -> None:
        """
        Args:
            ctmc (CTMC): the process to sample histories of.
        """
        self.ctmc : CTMC = ctmc
        self.mu : float = ctmc.max_departure_rate()
        self.R : np.ndarray = ctmc.uniformized_transition_matrix(self.mu)
        self._powers : list[np.ndarray] = [np.eye(ctmc.state_count())]
        self._transition_cache : dict[float, np.ndarray] = {}

    def max_departure_rate(self) -> float:
        """
        Returns:
            float: the uniformization rate mu.
        """
        return self.mu

    def _power(self, n : int) -> np.ndarray:
        while len(self._powers) <= n:
            self._powers.append(self._powers[-1] @ self.R)
        return self._powers[n]

    def _transition_probability(self, t : float) -> np.ndarray:
        if t not in self._transition_cache:
            self._transition_cache[t] = \
                self.ctmc.marginal_transition_probability(t)
        return self._transition_cache[t]

    def _check_end_points(self, start : int, end : int, t : float) -> float:
        if t < 0:
            raise EndPointSamplerError("Branch length must be non-negative. \
                                        Got " + str(t))
        if t == 0:
            if start != end:
                raise EndPointSamplerError("End points " + str(start)
                                           + " and " + str(end) + " differ \
                                           on a branch of length 0.")
            return 1.0

        p_ab = self._transition_probability(t)[start][end]
        if p_ab <= 0:
            raise EndPointSamplerError("End points " + str(start) + " and "
                                       + str(end) + " have probability 0 \
                                       over time " + str(t))
        return p_ab

    def sample_n_transitions(self, rng : np.random.Generator, start : int,
                             end : int, t : float) -> int:
        """
        Sample the number of uniformized events on a branch, given its end
        points. Virtual (self) jumps are included in the count.

        Raises:
            EndPointSamplerError: if the end points cannot be joined, or more
                                  than MAX_UNIFORMIZATION_EVENTS are needed.
        Args:
            rng (np.random.Generator): source of randomness.
            start (int): state at the top of the branch.
            end (int): state at the bottom of the branch.
            t (float): branch length.
        Returns:
            int: the number of events.
        """
        p_ab = self._check_end_points(start, end, t)
        if t == 0 or self.mu == 0:
            return 0

        mean = self.mu * t
        u = rng.random()
        cumulative = 0.0
        last_possible = 0
        for n in range(MAX_UNIFORMIZATION_EVENTS + 1):
            term = stats.poisson.pmf(n, mean) * self._power(n)[start][end] \
                   / p_ab
            if term > 0:
                last_possible = n
            cumulative += term
            if cumulative >= u:
                return n
            # round off can leave the total just short of 1. The remaining
            # conditional mass is at most sf(n) / p_ab
            if stats.poisson.sf(n, mean) / p_ab < POISSON_TAIL_TOLERANCE:
                return last_possible

        raise EndPointSamplerError("Number of uniformized events exceeds "
                                   + str(MAX_UNIFORMIZATION_EVENTS))

    def sample(self, rng : np.random.Generator, start : int, end : int,
               t : float, statistics : PathStatistics,
               path : Path = None) -> None:
        """
        Sample a history on a branch given its end points, and add its
        holding times and (real) transitions to 'statistics', as well as its
        segments to 'path' if one is given.

        Args:
            rng (np.random.Generator): source of randomness.
            start (int): state at the top of the branch.
            end (int): state at the bottom of the branch.
            t (float): branch length.
            statistics (PathStatistics): record to add the history to.
            path (Path, optional): record of the segments. Defaults to None.
        """
        n_events = self.sample_n_transitions(rng, start, end, t)

        times = np.sort(rng.uniform(0.0, t, size = n_events))
        current = start
        last_time = 0.0
        for event in range(n_events):
            remaining = n_events - event - 1
            weights = self.R[current, :] * self._power(remaining)[:, end]
            nxt = int(sample_categorical(rng, weights[np.newaxis, :])[0])
            if nxt != current:
                self._add_segment(statistics, path, current,
                                  times[event] - last_time)
                statistics.add_transition(current, nxt)
                current = nxt
                last_time = times[event]

        self._add_segment(statistics, path, current, t - last_time)

    def _add_segment(self, statistics : PathStatistics, path : Path,
                     state : int, duration : float) -> None:
        statistics.add_holding_time(state, duration)
        if path is not None:
            path.add_segment(state, duration)
