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
Docs   - [ ]
Tests  - [x]
Design - [x]
"""

import numpy as np
from .FactorGraph import one_hot
from .Tree import Node

###################
#### CONSTANTS ####
###################

ONE_HOT_TOLERANCE : float = 1e-12

#########################
#### EXCEPTION CLASS ####
#########################

class InternalSampleError(Exception):
    def __init__(self, message : str = "Malformed internal node sample") \
            -> None:
        self.message = message
        super().__init__(self.message)

##########################
#### HELPER FUNCTIONS ####
##########################

def one_hot_to_states(array : np.ndarray) -> np.ndarray:
    """
    Recover the state indices of a one hot array.

    Raises:
        InternalSampleError: if a row does not have exactly one entry equal to
                             1.0, with every other entry 0.0.
    Args:
        array (np.ndarray): (n_sites, n_states) one hot array.
    Returns:
        np.ndarray: n_sites state indices.
    """
    array = np.asarray(array, dtype = np.double)
    if array.ndim != 2:
        raise InternalSampleError("Expected a 2 dimensional one hot array.")

    ones = np.abs(array - 1.0) <= ONE_HOT_TOLERANCE
    zeros = np.abs(array) <= ONE_HOT_TOLERANCE
    valid = (ones.sum(axis = 1) == 1) & np.all(ones | zeros, axis = 1)
    if not np.all(valid):
        bad = int(np.argmin(valid))
        raise InternalSampleError("Row " + str(bad) + " is not one hot: "
                                  + str(array[bad]))
    return np.argmax(ones, axis = 1)

############################################
#### MULTI CATEGORY INTERNAL NODE SAMPLE ###
############################################

class MultiCategoryInternalNodeSample:
    """
    A joint sample of the category of every site and the state of every node
    at every site, where the state of a site is drawn under that site's
    category.
    """

    def __init__(self, category_indicators : list[int] | np.ndarray,
                 reconstructions : dict[Node, np.ndarray]) -> None:
        """
        Args:
            category_indicators (list[int] | np.ndarray): category of each
                                                          site.
            reconstructions (dict[Node, np.ndarray]): for each node, an
                                                      (n_sites, n_states) one
                                                      hot array.
        Raises:
            InternalSampleError: if an array is not one hot, or does not have
                                 one row per site.
        """
        self.category_indicators : np.ndarray = np.asarray(category_indicators,
                                                           dtype = int)
        self.n_states : int = 0
        self.states : dict[Node, np.ndarray] = {}

        for node, array in reconstructions.items():
            array = np.asarray(array)
            if array.shape[0] != self.category_indicators.shape[0]:
                raise InternalSampleError("Node " + str(node) + " has "
                                          + str(array.shape[0])
                                          + " sites, expected "
                                          + str(self.n_sites()))
            self.states[node] = one_hot_to_states(array)
            self.n_states = array.shape[1]

    def get_internal_state(self, node : Node, site : int) -> int:
        return int(self.states[node][site])

    def get_internal_indicators(self, node : Node) -> np.ndarray:
        """
        Returns:
            np.ndarray: the (n_sites, n_states) one hot array of 'node'.
        """
        return one_hot(self.states[node], self.n_states)

    def get_category(self, site : int) -> int:
        return int(self.category_indicators[site])

    def n_sites(self) -> int:
        return self.category_indicators.shape[0]

    def nodes(self) -> list[Node]:
        return list(self.states.keys())
