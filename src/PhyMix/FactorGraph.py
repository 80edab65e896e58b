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

Discrete, tree shaped factor graphs in which every site is an independent
copy of the same graph. Unary factors are per site (n_sites x n_states),
binary factors are shared by all sites (n_states x n_states).

Exact inference is done by sum-product. All messages, in both directions of
every edge, are computed up front in two passes (leaves to root, then root to
leaves), which makes marginals of any node and messages along any edge
available afterwards. To avoid underflow on large trees, every message is
stored with its rows rescaled to sum to 1, and the logarithm of the scaling
is carried alongside.
"""

from __future__ import annotations
import numpy as np
from .Tree import Tree, Node

#########################
#### EXCEPTION CLASS ####
#########################

class FactorGraphError(Exception):
    """
    Raised for factors of the wrong shape, binary factors on pairs of nodes
    that are not adjacent, or evidence that has probability 0.
    """
    def __init__(self, message : str = "Error in factor graph") -> None:
        self.message = message
        super().__init__(self.message)

##########################
#### HELPER FUNCTIONS ####
##########################

def one_hot(states : np.ndarray, n_states : int) -> np.ndarray:
    """
    Convert a vector of state indices into rows of indicator vectors.

    Args:
        states (np.ndarray): integer states, one per site.
        n_states (int): size of the state space.
    Returns:
        np.ndarray: (len(states), n_states) array, with exactly one 1.0 per
                    row.
    """
    states = np.asarray(states, dtype = int)
    result = np.zeros((states.shape[0], n_states), dtype = np.double)
    result[np.arange(states.shape[0]), states] = 1.0
    return result

def sample_categorical(rng : np.random.Generator,
                       weights : np.ndarray) -> np.ndarray:
    """
    Draw one index per row of a matrix of non-negative weights, with
    probability proportional to the weights of that row.

    Raises:
        FactorGraphError: if a row has no positive weight.
    Args:
        rng (np.random.Generator): source of randomness.
        weights (np.ndarray): (n, k) array of non-negative weights.
    Returns:
        np.ndarray: n sampled indices in [0, k).
    """
    weights = np.atleast_2d(weights)
    cumulative = np.cumsum(weights, axis = 1)
    totals = cumulative[:, -1]
    if np.any(~(totals > 0)):
        raise FactorGraphError("Cannot sample from a distribution with no \
                                positive mass. The evidence is impossible \
                                under the model.")

    u = rng.random(weights.shape[0]) * totals
    return np.argmax(cumulative > u[:, np.newaxis], axis = 1)

######################
#### UNARY FACTOR ####
######################

class UnaryFactor:
    """
    A per site factor over the states of one node, stored as
        factor[s][x] = values[s][x] * exp(log_scales[s]).
    """

    def __init__(self, values : np.ndarray, log_scales : np.ndarray = None):
        """
        Args:
            values (np.ndarray): (n_sites, n_states) non-negative values.
            log_scales (np.ndarray, optional): (n_sites,) log scalings.
                                               Defaults to zeros.
        """
        self.values : np.ndarray = np.asarray(values, dtype = np.double)
        if log_scales is None:
            log_scales = np.zeros(self.values.shape[0])
        self.log_scales : np.ndarray = np.asarray(log_scales,
                                                  dtype = np.double)

    @classmethod
    def rescaled(cls, values : np.ndarray,
                 log_scales : np.ndarray) -> UnaryFactor:
        """
        Build a factor whose rows sum to 1 (or are all 0), moving the row sums
        into the log scalings.
        """
        sums = values.sum(axis = 1)
        positive = sums > 0
        scaled = np.zeros_like(values)
        scaled[positive] = values[positive] / sums[positive, np.newaxis]

        new_logs = np.full(sums.shape, -np.inf)
        new_logs[positive] = log_scales[positive] + np.log(sums[positive])
        return cls(scaled, new_logs)

    def site_log_normalizations(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: for each site, log of the sum of the factor over the
                        states. -inf for sites where the factor vanishes.
        """
        sums = self.values.sum(axis = 1)
        result = np.full(sums.shape, -np.inf)
        positive = sums > 0
        result[positive] = np.log(sums[positive]) + self.log_scales[positive]
        return result

    def normalized(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: a copy of the factor with each row rescaled to sum to
                        1. Rows that vanish stay 0.
        """
        sums = self.values.sum(axis = 1)
        result = np.zeros_like(self.values)
        positive = sums > 0
        result[positive] = self.values[positive] / sums[positive, np.newaxis]
        return result

    def n_sites(self) -> int:
        return self.values.shape[0]

    def n_states(self) -> int:
        return self.values.shape[1]

###############################
#### DISCRETE FACTOR GRAPH ####
###############################

class DiscreteFactorGraph:
    """
    A factor graph whose variables are the nodes of a tree, each taking one
    of 'n_states' values at each of 'n_sites' independent sites.
    """

    def __init__(self, tree : Tree, n_sites : int, n_states : int) -> None:
        """
        Args:
            tree (Tree): the topology the graph is built over.
            n_sites (int): number of independent sites.
            n_states (int): number of states of each variable.
        """
        self.tree : Tree = tree
        self.n_sites : int = n_sites
        self.n_states : int = n_states
        self.unaries : dict[Node, np.ndarray] = {}
        self.binaries : dict[tuple[Node, Node], np.ndarray] = {}

    def unary_times_equal(self, node : Node, factor : np.ndarray) -> None:
        """
        Multiply the unary of 'node' (element wise) by 'factor'. A node with
        no unary yet behaves as if its unary was all ones.

        Raises:
            FactorGraphError: if 'factor' is not (n_sites, n_states).
        Args:
            node (Node): a node of the tree.
            factor (np.ndarray): (n_sites, n_states) array.
        """
        factor = np.asarray(factor, dtype = np.double)
        if factor.shape != (self.n_sites, self.n_states):
            raise FactorGraphError("Unary factor has shape "
                                   + str(factor.shape) + ", expected "
                                   + str((self.n_sites, self.n_states)))

        if node in self.unaries:
            self.unaries[node] = self.unaries[node] * factor
        else:
            self.unaries[node] = factor.copy()

    def get_unary(self, node : Node) -> np.ndarray:
        """
        Returns:
            np.ndarray: the unary of 'node', or all ones if none was set.
        """
        if node in self.unaries:
            return self.unaries[node]
        return np.ones((self.n_sites, self.n_states))

    def set_binary(self, parent : Node, child : Node,
                   matrix : np.ndarray) -> None:
        """
        Set the factor on the edge joining two adjacent nodes. The factor is
        oriented: matrix[j][k] weighs parent state j with child state k.

        Raises:
            FactorGraphError: if the nodes are not adjacent or 'matrix' has the
                              wrong shape.
        """
        matrix = np.asarray(matrix, dtype = np.double)
        if matrix.shape != (self.n_states, self.n_states):
            raise FactorGraphError("Binary factor has shape "
                                   + str(matrix.shape) + ", expected "
                                   + str((self.n_states, self.n_states)))
        if child not in self.tree.neighbors(parent):
            raise FactorGraphError("Cannot set a binary factor between "
                                   + str(parent) + " and " + str(child)
                                   + ": they are not adjacent.")

        self.binaries.pop((child, parent), None)
        self.binaries[(parent, child)] = matrix

    def get_binary(self, src : Node, dst : Node) -> np.ndarray:
        """
        Get the edge factor oriented from 'src' to 'dst', transposing the
        stored factor if it was set in the other direction.

        Raises:
            FactorGraphError: if no factor is set on that edge.
        """
        if (src, dst) in self.binaries:
            return self.binaries[(src, dst)]
        if (dst, src) in self.binaries:
            return self.binaries[(dst, src)].T
        raise FactorGraphError("No binary factor between " + str(src)
                               + " and " + str(dst))

    @staticmethod
    def marginalize(emission : np.ndarray,
                    observation : np.ndarray) -> np.ndarray:
        """
        Push an observation unary through an emission matrix, giving a unary
        over the latent states: result[s][x] = sum_o emission[x][o] *
        observation[s][o].

        Args:
            emission (np.ndarray): latent x observation probabilities.
            observation (np.ndarray): (n_sites, n_observations) unary.
        Returns:
            np.ndarray: (n_sites, n_latent) unary.
        """
        emission = np.asarray(emission, dtype = np.double)
        observation = np.asarray(observation, dtype = np.double)
        if observation.shape[1] != emission.shape[1]:
            raise FactorGraphError("Observation has "
                                   + str(observation.shape[1])
                                   + " states, emission model expects "
                                   + str(emission.shape[1]))
        return observation @ emission.T

#####################
#### SUM PRODUCT ####
#####################

class SumProduct:
    """
    Exact sum-product message passing on a tree shaped DiscreteFactorGraph.
    """

    def __init__(self, factor_graph : DiscreteFactorGraph) -> None:
        """
        Computes every message of the graph.

        Raises:
            FactorGraphError: if the tree is not connected.
        Args:
            factor_graph (DiscreteFactorGraph): a graph whose edges all have a
                                                binary factor.
        """
        self.factor_graph : DiscreteFactorGraph = factor_graph
        self.tree : Tree = factor_graph.tree
        self.messages : dict[tuple[Node, Node], UnaryFactor] = {}

        anchor = self.tree.arbitrary_node()
        edges = self.tree.get_rooted_edges(anchor)
        if len(edges) != len(self.tree.get_nodes()) - 1:
            raise FactorGraphError("Sum product requires a connected tree.")

        # leaves to anchor, then anchor to leaves
        for parent, child in reversed(edges):
            self.messages[(child, parent)] = self._compute_message(child,
                                                                   parent)
        for parent, child in edges:
            self.messages[(parent, child)] = self._compute_message(parent,
                                                                   child)

    def _compute_message(self, src : Node, dst : Node) -> UnaryFactor:
        belief = self.compute_cavity(src, dst)
        values = belief.values @ self.factor_graph.get_binary(src, dst)
        return UnaryFactor.rescaled(values, belief.log_scales)

    def compute_cavity(self, node : Node, exclude : Node = None) \
            -> UnaryFactor:
        """
        The product of the unary of 'node' with every incoming message except
        the one coming from 'exclude'.

        Args:
            node (Node): a node of the tree.
            exclude (Node, optional): a neighbor whose message is left out.
                                      Defaults to None (keep all messages).
        Returns:
            UnaryFactor: the (rescaled) product.
        """
        values = self.factor_graph.get_unary(node).copy()
        log_scales = np.zeros(self.factor_graph.n_sites)

        for neighbor in self.tree.neighbors(node):
            if neighbor is exclude:
                continue
            message = self.messages[(neighbor, node)]
            values *= message.values
            log_scales = log_scales + message.log_scales

        return UnaryFactor.rescaled(values, log_scales)

    def get_message(self, src : Node, dst : Node) -> UnaryFactor:
        """
        Returns:
            UnaryFactor: the message sent from 'src' to its neighbor 'dst'.
        """
        try:
            return self.messages[(src, dst)]
        except KeyError:
            raise FactorGraphError("No message from " + str(src) + " to "
                                   + str(dst) + ": nodes are not adjacent.")

    def compute_marginal(self, node : Node) -> UnaryFactor:
        """
        The unnormalized marginal of a node. Its per site log normalization is
        the log likelihood of that site.
        """
        return self.compute_cavity(node)

    def log_normalization(self) -> float:
        """
        Returns:
            float: the sum over sites of the log normalization of the graph.
        """
        marginal = self.compute_marginal(self.tree.arbitrary_node())
        return float(np.sum(marginal.site_log_normalizations()))

#######################
#### EXACT SAMPLER ####
#######################

class ExactSampler:
    """
    Draws one joint assignment of states to every node, independently for
    every site, by sampling a root and then each child given its parent.

    The prior sampler uses the unaries and binaries only along the direction
    of sampling, which is exact for graphs without evidence away from the
    root (ie, built without observations). The posterior sampler conditions
    each draw on the sum-product messages, which is exact for any evidence.

    Sites whose evidence has probability 0 under the graph get uniformly
    drawn states, so that a mixture can still pick another graph's sample for
    them.
    """

    def __init__(self, factor_graph : DiscreteFactorGraph,
                 sum_product : SumProduct = None) -> None:
        self.factor_graph : DiscreteFactorGraph = factor_graph
        self.sum_product : SumProduct = sum_product

    @classmethod
    def prior_sampler(cls, factor_graph : DiscreteFactorGraph) \
            -> ExactSampler:
        return cls(factor_graph)

    @classmethod
    def posterior_sampler(cls, sum_product : SumProduct) -> ExactSampler:
        return cls(sum_product.factor_graph, sum_product)

    def sample(self, rng : np.random.Generator,
               root : Node) -> dict[Node, np.ndarray]:
        """
        Args:
            rng (np.random.Generator): source of randomness.
            root (Node): the node sampled first.
        Returns:
            dict[Node, np.ndarray]: for each node, an (n_sites, n_states)
                                    array with one 1.0 per row, at the sampled
                                    state.
        """
        graph = self.factor_graph
        states : dict[Node, np.ndarray] = {}

        if self.sum_product is None:
            root_weights = graph.get_unary(root)
        else:
            root_weights = self.sum_product.compute_marginal(root).values
        states[root] = self._draw(rng, root_weights)

        for parent, child in graph.tree.get_rooted_edges(root):
            weights = graph.get_binary(parent, child)[states[parent], :]
            if self.sum_product is None:
                weights = weights * graph.get_unary(child)
            else:
                weights = weights * self.sum_product.compute_cavity(
                    child, parent).values
            states[child] = self._draw(rng, weights)

        return {node : one_hot(node_states, graph.n_states)
                for node, node_states in states.items()}

    def _draw(self, rng : np.random.Generator,
              weights : np.ndarray) -> np.ndarray:
        weights = np.array(weights, dtype = np.double)
        empty = ~(weights.sum(axis = 1) > 0)
        weights[empty] = 1.0
        return sample_categorical(rng, weights)
