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
Design - [ ]

Records of the sufficient statistics of a CTMC that are gathered while
sampling (or integrating over) substitution histories on a tree. A rate
matrix can be re-estimated from any of them, which is the M step of a Monte
Carlo EM loop.
"""

from __future__ import annotations
from collections import Counter
import numpy as np
from .CTMC import expected_sufficient_statistics
from .Tree import Tree, Node

###################
#### CONSTANTS ####
###################

# Count totals further than this from an integer indicate corrupted records
INTEGRALITY_TOLERANCE : float = 1e-6

#########################
#### EXCEPTION CLASS ####
#########################

class SufficientStatisticsError(Exception):
    """
    Raised when a statistics record is updated with invalid arguments, or
    when a count that must be an integer is not one.
    """
    def __init__(self, message : str = "Error in sufficient statistics") \
            -> None:
        self.message = message
        super().__init__(self.message)

##########################
#### HELPER FUNCTIONS ####
##########################

def get_and_check_int(value : float) -> int:
    """
    Round a count to an integer, checking that it was one to begin with.

    Raises:
        SufficientStatisticsError: if 'value' is more than
                                   INTEGRALITY_TOLERANCE away from an integer.
    Args:
        value (float): a count.
    Returns:
        int: the rounded count.
    """
    rounded = round(float(value))
    if abs(value - rounded) > INTEGRALITY_TOLERANCE:
        raise SufficientStatisticsError("Expected an integer count, got "
                                        + str(value))
    return int(rounded)

def _rate_matrix_mle(transitions : np.ndarray,
                     holding : np.ndarray) -> np.ndarray:
    """
    Q[i][j] = N_ij / T_i. Rows of states with no holding time are left 0.
    """
    n = holding.shape[0]
    Q = np.zeros((n, n))
    visited = holding > 0
    Q[visited] = transitions[visited] / holding[visited, np.newaxis]
    np.fill_diagonal(Q, 0.0)
    np.fill_diagonal(Q, -Q.sum(axis = 1))
    return Q

#########################
#### PATH STATISTICS ####
#########################

class PathStatistics:
    """
    Counts gathered from fully sampled substitution histories: how many
    histories start in each state, the total time spent in each state, and
    the number of jumps between each ordered pair of distinct states.

    Records only grow. Call 'reset' between sweeps.
    """

    def __init__(self, n_states : int) -> None:
        """
        Args:
            n_states (int): size of the state space.
        """
        self.n_states : int = n_states
        self.initial : np.ndarray = np.zeros(n_states)
        self.holding : np.ndarray = np.zeros(n_states)
        self.transitions : np.ndarray = np.zeros((n_states, n_states))

    def add_initial(self, state : int) -> None:
        self.initial[state] += 1

    def add_holding_time(self, state : int, time : float) -> None:
        """
        Raises:
            SufficientStatisticsError: if 'time' is negative.
        """
        if time < 0:
            raise SufficientStatisticsError("Holding times must be \
                                             non-negative. Got " + str(time))
        self.holding[state] += time

    def add_transition(self, src : int, dst : int) -> None:
        """
        Raises:
            SufficientStatisticsError: for a jump from a state to itself.
        """
        if src == dst:
            raise SufficientStatisticsError("Cannot record a transition from \
                                             state " + str(src)
                                             + " to itself.")
        self.transitions[src][dst] += 1

    def add_all(self, other : PathStatistics) -> None:
        """
        Add every count of 'other' into this record.

        Raises:
            SufficientStatisticsError: if the state spaces differ.
        """
        if other.n_states != self.n_states:
            raise SufficientStatisticsError("Cannot merge statistics over "
                                            + str(other.n_states)
                                            + " states into statistics over "
                                            + str(self.n_states))
        self.initial += other.initial
        self.holding += other.holding
        self.transitions += other.transitions

    def reset(self) -> None:
        self.initial[:] = 0.0
        self.holding[:] = 0.0
        self.transitions[:, :] = 0.0

    def get_initial_count(self, state : int) -> int:
        return get_and_check_int(self.initial[state])

    def get_transition_count(self, src : int, dst : int) -> int:
        return get_and_check_int(self.transitions[src][dst])

    def get_holding_time(self, state : int) -> float:
        return float(self.holding[state])

    def initial_counts(self) -> np.ndarray:
        return self.initial.copy()

    def holding_times(self) -> np.ndarray:
        return self.holding.copy()

    def transition_counts(self) -> np.ndarray:
        return self.transitions.copy()

    def total_transitions(self) -> int:
        """
        Returns:
            int: the number of jumps recorded, checked to be integral.
        """
        return get_and_check_int(np.sum(self.transitions))

    def estimate_rate_matrix(self) -> np.ndarray:
        """
        The maximum likelihood rate matrix given these statistics.

        Returns:
            np.ndarray: Q, with Q[i][j] = N_ij / T_i off the diagonal.
        """
        return _rate_matrix_mle(self.transitions, self.holding)

    def __repr__(self) -> str:
        return "PathStatistics(initial=" + str(self.initial) \
               + ", holding=" + str(self.holding) \
               + ", transitions=" + str(self.transitions.tolist()) + ")"

##############
#### PATH ####
##############

class Path:
    """
    A substitution history along one branch at one site: the sequence of
    states visited, with the time spent in each. Consecutive segments in the
    same state are merged.
    """

    def __init__(self) -> None:
        self.segment_states : list[int] = []
        self.segment_durations : list[float] = []

    def add_segment(self, state : int, duration : float) -> None:
        if duration < 0:
            raise SufficientStatisticsError("Path segments must have \
                                             non-negative duration.")
        if len(self.segment_states) > 0 and self.segment_states[-1] == state:
            self.segment_durations[-1] += duration
        else:
            self.segment_states.append(state)
            self.segment_durations.append(duration)

    def states(self) -> list[int]:
        return list(self.segment_states)

    def durations(self) -> list[float]:
        return list(self.segment_durations)

    def total_time(self) -> float:
        return float(sum(self.segment_durations))

    def n_transitions(self) -> int:
        return max(len(self.segment_states) - 1, 0)

    def is_empty(self) -> bool:
        return len(self.segment_states) == 0

    def __repr__(self) -> str:
        return "Path(" + str(list(zip(self.segment_states,
                                      self.segment_durations))) + ")"

class TreePath:
    """
    A buffer of one Path per rooted edge and site of a tree.
    """

    def __init__(self, tree : Tree, root : Node, n_sites : int) -> None:
        """
        Args:
            tree (Tree): the tree whose branches are recorded.
            root (Node): orients the edges (parent, child).
            n_sites (int): number of sites.
        """
        self.tree : Tree = tree
        self.root : Node = root
        self.n_sites : int = n_sites
        self.paths : dict[tuple[Node, Node], list[Path]] = {
            edge : [None] * n_sites for edge in tree.get_rooted_edges(root)}

    def create_path(self, top : Node, bot : Node, site : int) -> Path:
        """
        Start a fresh (empty) path for an edge and site, replacing any path
        already recorded there.

        Raises:
            SufficientStatisticsError: if (top, bot) is not a rooted edge, or
                                       the site is out of range.
        Returns:
            Path: the new path.
        """
        self._check(top, bot, site)
        path = Path()
        self.paths[(top, bot)][site] = path
        return path

    def get_path(self, top : Node, bot : Node, site : int) -> Path:
        """
        Returns:
            Path: the recorded path, or None if nothing was recorded yet.
        """
        self._check(top, bot, site)
        return self.paths[(top, bot)][site]

    def get_root(self) -> Node:
        return self.root

    def get_tree(self) -> Tree:
        return self.tree

    def _check(self, top : Node, bot : Node, site : int) -> None:
        if (top, bot) not in self.paths:
            raise SufficientStatisticsError("(" + str(top) + ", " + str(bot)
                                            + ") is not an edge directed away \
                                            from the root " + str(self.root))
        if not 0 <= site < self.n_sites:
            raise SufficientStatisticsError("Site " + str(site)
                                            + " is out of range.")

##################################
#### POISSON AUXILIARY SAMPLE ####
##################################

class PoissonAuxiliarySample:
    """
    Per branch totals of the number of uniformized events (real or virtual)
    sampled on that branch, together with how many samples were drawn. The
    uniformization rate the events were counted at is fixed at construction.
    """

    def __init__(self, rate : float) -> None:
        self.rate : float = rate
        self.transition_counts : Counter = Counter()
        self.sample_counts : Counter = Counter()

    def increment_count(self, top : Node, bot : Node,
                        increment : int) -> None:
        """
        Record one sample of 'increment' events on the edge {top, bot}.
        """
        if increment < 0:
            raise SufficientStatisticsError("Event counts must be \
                                             non-negative.")
        key = frozenset((top, bot))
        self.transition_counts[key] += increment
        self.sample_counts[key] += 1

    def get_transition_count(self, top : Node, bot : Node) -> int:
        return get_and_check_int(
            self.transition_counts[frozenset((top, bot))])

    def get_sample_count(self, top : Node, bot : Node) -> int:
        return get_and_check_int(self.sample_counts[frozenset((top, bot))])

    def get_rate(self) -> float:
        return self.rate

    def edges(self) -> list[frozenset]:
        return list(self.sample_counts.keys())

    def reset(self) -> None:
        self.transition_counts.clear()
        self.sample_counts.clear()

#############################
#### EXPECTED STATISTICS ####
#############################

class ExpectedStatistics:
    """
    Expected sufficient statistics, integrated over the substitution
    histories given the observations rather than sampled. Counts are real
    valued.
    """

    def __init__(self, n_states : int) -> None:
        self.n_states : int = n_states
        self.n_init : np.ndarray = np.zeros(n_states)
        self.holding_times : np.ndarray = np.zeros(n_states)
        self.transition_counts : np.ndarray = np.zeros((n_states, n_states))

    def add_marginalized_path(self, count_matrix : np.ndarray,
                              rate_matrix : np.ndarray,
                              branch_length : float) -> None:
        """
        Add the expected holding times and transitions of one branch.

        Args:
            count_matrix (np.ndarray): expected number of sites with each
                                       (start, end) pair of states.
            rate_matrix (np.ndarray): the rate matrix of the branch.
            branch_length (float): the length of the branch.
        """
        holding, transitions = expected_sufficient_statistics(count_matrix,
                                                              rate_matrix,
                                                              branch_length)
        self.holding_times += holding
        self.transition_counts += transitions

    def add_initial(self, counts : np.ndarray) -> None:
        self.n_init += np.asarray(counts, dtype = np.double)

    def reset(self) -> None:
        self.n_init[:] = 0.0
        self.holding_times[:] = 0.0
        self.transition_counts[:, :] = 0.0

    def estimate_rate_matrix(self) -> np.ndarray:
        return _rate_matrix_mle(self.transition_counts, self.holding_times)
