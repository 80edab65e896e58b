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
Last Edit : 10/14/26
First Included in Version : 1.0.0
Docs   - [x]
Tests  - [x]
Design - [x]

Likelihoods, ancestral state samples, substitution histories and expected
sufficient statistics of a mixture of CTMCs evolving along a tree, where each
site evolves under one category of the mixture.

Every public operation builds one factor graph per category over the same
tree: observed nodes carry their observations (pushed through the category's
emission model, if any), the root carries the category's stationary
distribution, and each branch carries e^(Q*t). With one category this is
exactly Felsenstein's pruning algorithm.

Caches (CTMCs per category, transition matrices per branch length) live for
the duration of a single call only.
"""

import warnings
import numpy as np
from scipy.special import logsumexp, softmax
from .CTMC import CTMC
from .EndPointSampler import EndPointSampler
from .FactorGraph import DiscreteFactorGraph, SumProduct, ExactSampler, \
                         UnaryFactor, sample_categorical, one_hot
from .GTR import SubstitutionModelError
from .InternalNodeSample import MultiCategoryInternalNodeSample
from .Observations import TreeObservations
from .RateMatrixMixture import RateMatrixMixture
from .SufficientStatistics import PathStatistics, PoissonAuxiliarySample, \
                                  ExpectedStatistics, TreePath
from .Tree import Tree, Node

##########################################
#### MULTI CATEGORY SUBSTITUTION MODEL ###
##########################################

class MultiCategorySubstitutionModel:
    """
    Engine for a RateMatrixMixture evaluated on a fixed number of sites.
    Holds no state besides its configuration, so one engine can be reused
    across trees and observations.
    """

    def __init__(self, rate_matrix_mixture : RateMatrixMixture,
                 n_sites : int) -> None:
        """
        Args:
            rate_matrix_mixture (RateMatrixMixture): the categories and their
                                                     priors.
            n_sites (int): the number of sites of every observation set the
                           engine is used with.
        Raises:
            SubstitutionModelError: if the mixture has no categories, or there
                                    are no sites.
        """
        if rate_matrix_mixture.n_categories() == 0:
            raise SubstitutionModelError("Rate matrix mixture has no \
                                          categories.")
        if n_sites < 1:
            raise SubstitutionModelError("Number of sites must be positive. \
                                          Got " + str(n_sites))

        self.rate_matrix_mixture : RateMatrixMixture = rate_matrix_mixture
        self.n_sites : int = n_sites

    def n_categories(self) -> int:
        return self.rate_matrix_mixture.n_categories()

    def n_states(self) -> int:
        return self.rate_matrix_mixture.n_states()

    def _log_priors(self) -> np.ndarray:
        return np.array(self.rate_matrix_mixture.get_log_prior_probabilities())

    def _check_observations(self, observations : TreeObservations) -> None:
        if observations.n_sites() != self.n_sites:
            raise SubstitutionModelError("Observations have "
                                         + str(observations.n_sites())
                                         + " sites, but the model was built \
                                         for " + str(self.n_sites))

    def _get_ctmc(self, cache : dict[int, CTMC], category : int) -> CTMC:
        if category not in cache:
            cache[category] = self.rate_matrix_mixture \
                                  .get_rate_matrix(category).get_process()
        return cache[category]

    ##############################
    #### FACTOR GRAPH BUILDING ###
    ##############################

    def build_factor_graphs(self, tree : Tree, root : Node,
                            observations : TreeObservations = None,
                            cache : dict[int, CTMC] = None) \
            -> list[DiscreteFactorGraph]:
        """
        Build one factor graph per category.

        Args:
            tree (Tree): the tree and its branch lengths.
            root (Node): the node that carries the stationary distribution.
            observations (TreeObservations, optional): Defaults to None, which
                                                       gives the prior.
            cache (dict[int, CTMC], optional): per call CTMC cache. Defaults
                                               to a fresh one.
        Returns:
            list[DiscreteFactorGraph]: the graph of each category, in order.
        """
        if cache is None:
            cache = {}
        if observations is not None:
            self._check_observations(observations)

        expms = self.get_expm_rate_mtx_scaled_by_branch(tree, cache)
        graphs = []
        for category in range(self.n_categories()):
            graph = DiscreteFactorGraph(tree, self.n_sites, self.n_states())
            if observations is not None:
                self.build_observation(graph, category, observations)
            self.build_initial_distribution(graph, category, root)
            self.build_transition(graph, tree, root, expms[category])
            graphs.append(graph)
        return graphs

    def build_observation(self, graph : DiscreteFactorGraph, category : int,
                          observations : TreeObservations) -> None:
        """
        Multiply the unary of each observed node by its observations, mapped
        to latent states if the category has an emission model.
        """
        emission = self.rate_matrix_mixture.get_rate_matrix(category) \
                       .get_emission_model()
        for node in observations.get_observed_tree_nodes():
            data = observations.get(node)
            if emission is not None:
                data = DiscreteFactorGraph.marginalize(
                    emission.get_matrix_states_to_observation_probabilities(),
                    data)
            graph.unary_times_equal(node, data)

    def build_initial_distribution(self, graph : DiscreteFactorGraph,
                                   category : int, root : Node) -> None:
        pi = self.rate_matrix_mixture.get_rate_matrix(category) \
                 .stationary_distribution()
        graph.unary_times_equal(root, np.tile(pi, (self.n_sites, 1)))

    def build_transition(self, graph : DiscreteFactorGraph, tree : Tree,
                         root : Node, expms : dict[float, np.ndarray]) -> None:
        for parent, child in tree.get_rooted_edges(root):
            length = tree.get_branch_length(parent, child)
            graph.set_binary(parent, child, expms[length])

    def get_expm_rate_mtx_scaled_by_branch(self, tree : Tree,
                                           cache : dict[int, CTMC] = None) \
            -> list[dict[float, np.ndarray]]:
        """
        Transition matrices of every category for every distinct branch length
        of the tree.

        Returns:
            list[dict[float, np.ndarray]]: for each category, a map from
                                           branch length t to e^(Q*t).
        """
        if cache is None:
            cache = {}
        lengths = set(tree.get_branch_lengths().values())
        result = []
        for category in range(self.n_categories()):
            ctmc = self._get_ctmc(cache, category)
            result.append({t : ctmc.marginal_transition_probability(t)
                           for t in lengths})
        return result

    ####################
    #### LIKELIHOOD ####
    ####################

    def log_likelihood(self, observations : TreeObservations, tree : Tree,
                       root : Node = None) -> float:
        """
        The log probability of the observations, summed over sites, with the
        category of each site integrated out.

        Args:
            observations (TreeObservations): the observed nodes.
            tree (Tree): the tree and its branch lengths.
            root (Node, optional): Defaults to tree.arbitrary_node(). The
                                   result does not depend on it for
                                   reversible categories.
        Returns:
            float: the log likelihood.
        """
        if root is None:
            root = tree.arbitrary_node()
        graphs = self.build_factor_graphs(tree, root, observations)
        marginals = [SumProduct(graph).compute_marginal(root)
                     for graph in graphs]
        return self.compute_log_likelihood(
            self.category_and_site_specific_likelihoods(marginals))

    def category_and_site_specific_likelihoods(self,
                                               root_marginals : list[UnaryFactor]) \
            -> np.ndarray:
        """
        Args:
            root_marginals (list[UnaryFactor]): the root marginal of each
                                                category.
        Returns:
            np.ndarray: (n_categories, n_sites) array of log likelihoods of
                        each site under each category.
        """
        return np.array([marginal.site_log_normalizations()
                         for marginal in root_marginals])

    def site_log_likelihoods(self, category_site_likelihoods : np.ndarray) \
            -> np.ndarray:
        """
        logsumexp over the categories of log prior + log likelihood, per site.
        """
        return logsumexp(self._log_priors()[:, np.newaxis]
                         + category_site_likelihoods, axis = 0)

    def compute_log_likelihood(self, category_site_likelihoods : np.ndarray) \
            -> float:
        return float(np.sum(self.site_log_likelihoods(
            category_site_likelihoods)))

    ##################
    #### SAMPLING ####
    ##################

    def sample_posterior_internal_nodes(self, rng : np.random.Generator,
                                        observations : TreeObservations,
                                        tree : Tree, root : Node = None) \
            -> MultiCategoryInternalNodeSample:
        """
        Sample the category of each site and the state of every node, given
        the observations.
        """
        return self._sample_internal(rng, tree, root, observations, False)

    def sample_prior_internal_nodes(self, rng : np.random.Generator,
                                    tree : Tree, root : Node = None) \
            -> MultiCategoryInternalNodeSample:
        """
        Sample the category of each site and the state of every node from the
        model alone.
        """
        return self._sample_internal(rng, tree, root, None, True)

    def _sample_internal(self, rng : np.random.Generator, tree : Tree,
                         root : Node, observations : TreeObservations,
                         is_prior : bool) -> MultiCategoryInternalNodeSample:
        """
        First draw one complete sample of the tree per category, then draw the
        category of each site, and keep for each site the states drawn under
        its category.
        """
        if root is None:
            root = tree.arbitrary_node()
        graphs = self.build_factor_graphs(tree, root,
                                          None if is_prior else observations)

        log_weights = np.tile(self._log_priors()[:, np.newaxis],
                              (1, self.n_sites))
        samples : list[dict[Node, np.ndarray]] = []
        for category, graph in enumerate(graphs):
            if is_prior:
                sampler = ExactSampler.prior_sampler(graph)
            else:
                sum_product = SumProduct(graph)
                sampler = ExactSampler.posterior_sampler(sum_product)
                log_weights[category] += sum_product.compute_marginal(root) \
                                             .site_log_normalizations()
            samples.append(sampler.sample(rng, root))

        indicators = sample_categorical(rng, softmax(log_weights, axis = 0).T)

        reconstructions : dict[Node, np.ndarray] = {}
        for node in tree.get_nodes():
            combined = np.zeros((self.n_sites, self.n_states()))
            for category in range(self.n_categories()):
                chosen = indicators == category
                combined[chosen] = samples[category][node][chosen]
            reconstructions[node] = combined

        return MultiCategoryInternalNodeSample(indicators, reconstructions)

    def generate_observations_in_place(self, rng : np.random.Generator,
                                       destination : TreeObservations,
                                       tree : Tree, root : Node = None) \
            -> MultiCategoryInternalNodeSample:
        """
        Simulate the leaves from the model and write them into 'destination'.
        Leaves of sites whose category has an emission model get an
        observation drawn from the emission probabilities of the sampled
        latent state.

        Raises:
            SubstitutionModelError: if 'destination' has the wrong number of
                                    sites, or categories disagree on the
                                    number of observable characters.
        Returns:
            MultiCategoryInternalNodeSample: the full sample the leaves were
                                             taken from.
        """
        self._check_observations(destination)
        n_observations = self._observation_count()
        sample = self.sample_prior_internal_nodes(rng, tree, root)

        for leaf in tree.get_leaves():
            latent = sample.states[leaf]
            observed = latent.copy()
            for category in range(self.n_categories()):
                emission = self.rate_matrix_mixture \
                               .get_rate_matrix(category).get_emission_model()
                chosen = sample.category_indicators == category
                if emission is None or not np.any(chosen):
                    continue
                matrix = emission.get_matrix_states_to_observation_probabilities()
                observed[chosen] = sample_categorical(rng,
                                                      matrix[latent[chosen]])
            destination.set(leaf, one_hot(observed, n_observations))

        return sample

    def _observation_count(self) -> int:
        counts = set()
        for category in range(self.n_categories()):
            emission = self.rate_matrix_mixture.get_rate_matrix(category) \
                           .get_emission_model()
            if emission is None:
                counts.add(self.n_states())
            else:
                counts.add(emission.observation_count())
        if len(counts) != 1:
            raise SubstitutionModelError("Categories disagree on the number \
                                          of observable characters.")
        return counts.pop()

    ##########################################
    #### PATHS AND AUXILIARY EVENT COUNTS ####
    ##########################################

    def end_point_samplers(self, cache : dict[int, CTMC] = None) \
            -> list[EndPointSampler]:
        """
        Returns:
            list[EndPointSampler]: one sampler per category.
        """
        if cache is None:
            cache = {}
        return [EndPointSampler(self._get_ctmc(cache, category))
                for category in range(self.n_categories())]

    def sample_posterior_paths(self, rng : np.random.Generator,
                               observations : TreeObservations, tree : Tree,
                               root : Node = None, paths : TreePath = None,
                               statistics : list[PathStatistics] = None) \
            -> list[PathStatistics]:
        """
        Sample a substitution history on every branch and site, given the
        observations, and add its statistics to the record of the category
        sampled at that site.

        Args:
            rng (np.random.Generator): source of randomness.
            observations (TreeObservations): the observed nodes.
            tree (Tree): the tree and its branch lengths.
            root (Node, optional): Defaults to tree.arbitrary_node(), or the
                                   root of 'paths' if one is given.
            paths (TreePath, optional): buffer that receives every sampled
                                        path. Defaults to None.
            statistics (list[PathStatistics], optional): one record per
                                                         category to add to.
                                                         Defaults to fresh
                                                         records.
        Returns:
            list[PathStatistics]: the record of each category.
        """
        if root is None:
            root = tree.arbitrary_node() if paths is None else paths.get_root()
        if paths is not None and paths.get_root() is not root:
            raise SubstitutionModelError("Path buffer is rooted at "
                                         + str(paths.get_root())
                                         + ", not at " + str(root))
        statistics = self._check_records(statistics,
                                         lambda category :
                                         PathStatistics(self.n_states()))

        sample = self.sample_posterior_internal_nodes(rng, observations, tree,
                                                      root)
        samplers = self.end_point_samplers()

        for site in range(self.n_sites):
            statistics[sample.get_category(site)] \
                .add_initial(sample.get_internal_state(root, site))

        for parent, child in tree.get_rooted_edges(root):
            length = tree.get_branch_length(parent, child)
            for site in range(self.n_sites):
                category = sample.get_category(site)
                path = None
                if paths is not None:
                    path = paths.create_path(parent, child, site)
                samplers[category].sample(rng,
                                          sample.get_internal_state(parent,
                                                                    site),
                                          sample.get_internal_state(child,
                                                                    site),
                                          length, statistics[category], path)
        return statistics

    def sample_poisson_auxiliary_variables(self, rng : np.random.Generator,
                                           observations : TreeObservations,
                                           tree : Tree, root : Node = None,
                                           samples : list[PoissonAuxiliarySample] = None) \
            -> list[PoissonAuxiliarySample]:
        """
        Sample the number of uniformized events on every branch and site,
        given the observations, and add it to the record of the category
        sampled at that site.

        Returns:
            list[PoissonAuxiliarySample]: the record of each category.
        """
        if root is None:
            root = tree.arbitrary_node()
        samplers = self.end_point_samplers()
        samples = self._check_records(samples,
                                      lambda category :
                                      PoissonAuxiliarySample(
                                          samplers[category]
                                          .max_departure_rate()))

        sample = self.sample_posterior_internal_nodes(rng, observations, tree,
                                                      root)

        for parent, child in tree.get_rooted_edges(root):
            length = tree.get_branch_length(parent, child)
            for site in range(self.n_sites):
                category = sample.get_category(site)
                n_events = samplers[category].sample_n_transitions(
                    rng,
                    sample.get_internal_state(parent, site),
                    sample.get_internal_state(child, site),
                    length)
                samples[category].increment_count(parent, child, n_events)
        return samples

    def _check_records(self, records : list, factory) -> list:
        if records is None:
            return [factory(category)
                    for category in range(self.n_categories())]
        if len(records) != self.n_categories():
            raise SubstitutionModelError("Expected one record per category ("
                                         + str(self.n_categories())
                                         + "), got " + str(len(records)))
        return records

    ##############################
    #### EXPECTED STATISTICS #####
    ##############################

    def get_marginal_count(self, observations : TreeObservations, tree : Tree,
                           root : Node = None) \
            -> list[dict[tuple[Node, Node], np.ndarray]]:
        """
        The expected number of sites with each pair of (parent, child) states,
        for every category and branch, given the observations.

        Returns:
            list[dict[tuple[Node, Node], np.ndarray]]: for each category, a map
                                                       from each (parent,
                                                       child) edge to an
                                                       n_states x n_states
                                                       count matrix.
        """
        if root is None:
            root = tree.arbitrary_node()
        graphs = self.build_factor_graphs(tree, root, observations)
        sum_products = [SumProduct(graph) for graph in graphs]
        return self._marginal_counts(tree, root, sum_products)

    def _marginal_counts(self, tree : Tree, root : Node,
                         sum_products : list[SumProduct],
                         site_weights : np.ndarray = None) \
            -> list[dict[tuple[Node, Node], np.ndarray]]:
        skipped = 0
        result = []
        for category, sum_product in enumerate(sum_products):
            counts = {}
            for parent, child in tree.get_rooted_edges(root):
                joints, n_skipped = self._edge_joints(sum_product, parent,
                                                      child)
                skipped += n_skipped
                if site_weights is not None:
                    joints *= site_weights[category][:, np.newaxis,
                                                     np.newaxis]
                counts[(parent, child)] = joints.sum(axis = 0)
            result.append(counts)

        if skipped > 0:
            warnings.warn(str(skipped) + " (category, edge, site) joint \
                           distributions had no mass and were skipped.",
                          RuntimeWarning)
        return result

    def _edge_joints(self, sum_product : SumProduct, parent : Node,
                     child : Node) -> tuple[np.ndarray, int]:
        """
        Per site posterior joint of the states at both ends of an edge:
            J[j][k] ~ marg_top[j] * marg_bot[k] * P[j][k]
                      / (msg_bot_to_top[j] * msg_top_to_bot[k])
        Entries with a 0 denominator are 0.
        """
        top = sum_product.compute_marginal(parent).normalized()
        bot = sum_product.compute_marginal(child).normalized()
        up = sum_product.get_message(child, parent).values
        down = sum_product.get_message(parent, child).values
        P = sum_product.factor_graph.get_binary(parent, child)

        numerator = top[:, :, np.newaxis] * bot[:, np.newaxis, :] \
                    * P[np.newaxis, :, :]
        denominator = up[:, :, np.newaxis] * down[:, np.newaxis, :]

        joints = np.zeros_like(numerator)
        nonzero = denominator > 0
        joints[nonzero] = numerator[nonzero] / denominator[nonzero]

        sums = joints.sum(axis = (1, 2))
        kept = sums > 0
        joints[kept] /= sums[kept, np.newaxis, np.newaxis]
        return joints, int(np.sum(~kept))

    def get_total_expected_statistics(self, observations : TreeObservations,
                                      tree : Tree, root : Node = None,
                                      result : ExpectedStatistics = None,
                                      weight_by_category_posterior : bool = False) \
            -> ExpectedStatistics:
        """
        Expected initial counts, holding times and transition counts given the
        observations, accumulated over every category and branch.

        Args:
            observations (TreeObservations): the observed nodes.
            tree (Tree): the tree and its branch lengths.
            root (Node, optional): Defaults to tree.arbitrary_node().
            result (ExpectedStatistics, optional): record to add to. Defaults
                                                   to a fresh one.
            weight_by_category_posterior (bool, optional): weigh the counts of
                                                           each site by the
                                                           posterior
                                                           probability of the
                                                           category. Defaults
                                                           to False, where
                                                           every category
                                                           counts each site
                                                           fully. Sites that
                                                           are impossible
                                                           under every
                                                           category weigh 0.
        Returns:
            ExpectedStatistics: the accumulated record.
        """
        if root is None:
            root = tree.arbitrary_node()
        if result is None:
            result = ExpectedStatistics(self.n_states())

        graphs = self.build_factor_graphs(tree, root, observations)
        sum_products = [SumProduct(graph) for graph in graphs]

        site_weights = None
        if weight_by_category_posterior:
            marginals = [sum_product.compute_marginal(root)
                         for sum_product in sum_products]
            log_joint = self._log_priors()[:, np.newaxis] \
                        + self.category_and_site_specific_likelihoods(marginals)
            site_log_lik = logsumexp(log_joint, axis = 0)

            # sites impossible under every category weigh 0
            possible = np.isfinite(site_log_lik)
            site_weights = np.zeros_like(log_joint)
            site_weights[:, possible] = np.exp(log_joint[:, possible]
                                               - site_log_lik[possible])

        counts = self._marginal_counts(tree, root, sum_products, site_weights)
        for category, edge_counts in enumerate(counts):
            Q = self.rate_matrix_mixture.get_rate_matrix(category) \
                    .get_rate_matrix()
            seeded = False
            for (parent, child), count_matrix in edge_counts.items():
                if parent is root and not seeded:
                    result.add_initial(count_matrix.sum(axis = 1))
                    seeded = True
                result.add_marginalized_path(count_matrix, Q,
                                             tree.get_branch_length(parent,
                                                                    child))
        return result
