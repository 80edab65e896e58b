import itertools
import numpy as np
import pytest
from scipy.linalg import expm
from scipy.special import logsumexp, softmax
from PhyMix.SubstitutionEngine import MultiCategorySubstitutionModel
from PhyMix.Tree import Tree, Node, tree_from_newick
from PhyMix.Observations import TreeObservations
from PhyMix.CTMC import CTMC
from PhyMix.GTR import GTR, JC, SubstitutionModelError
from PhyMix.RateMatrixMixture import *
from PhyMix.FactorGraph import SumProduct, one_hot
from PhyMix.SufficientStatistics import TreePath, PathStatistics


################
### HELPERS ####
################

NEWICK = "((A:0.1,B:0.25):0.3,(C:0.2,D:0.05):0.15,E:0.4);"

def random_gtr(rng : np.random.Generator) -> np.ndarray:
    freqs = rng.dirichlet(np.ones(4))
    trans = rng.uniform(0.2, 2.0, size = 6)
    return GTR(freqs, trans).getQ()

def mixture_of(*Qs, priors = None) -> RateMatrixMixture:
    log_priors = None if priors is None else np.log(priors)
    return RateMatrixMixture([RateMatrix(Q) for Q in Qs], log_priors)

def random_observations(rng : np.random.Generator, tree : Tree,
                        n_sites : int, n_states : int) -> TreeObservations:
    obs = TreeObservations(n_sites)
    for leaf in tree.get_leaves():
        obs.set(leaf, one_hot(rng.integers(n_states, size = n_sites),
                              n_states))
    return obs

def repeated_observations(tree : Tree, states : dict[str, int],
                          n_sites : int, n_states : int) -> TreeObservations:
    obs = TreeObservations(n_sites)
    for leaf in tree.get_leaves():
        obs.set(leaf, one_hot(np.full(n_sites, states[leaf.get_name()]),
                              n_states))
    return obs

def star_tree() -> tuple[Tree, Node, list[Node]]:
    tree = Tree()
    center = tree.add_node(Node("center"))
    leaves = [Node(name) for name in ("A", "B", "C")]
    for leaf in leaves:
        tree.add_edge(center, leaf, 1.0)
    return tree, center, leaves

def pruning_site_likelihoods(Q : np.ndarray, tree : Tree, root : Node,
                             obs : TreeObservations) -> np.ndarray:
    """
    Felsenstein's pruning algorithm, written out directly.
    """
    pi = CTMC(Q).stationary_distribution()

    def partial(node, parent):
        data = obs.get(node)
        vec = np.ones((obs.n_sites(), Q.shape[0])) if data is None \
              else data.copy()
        for child in tree.neighbors(node):
            if child is parent:
                continue
            P = expm(Q * tree.get_branch_length(node, child))
            vec = vec * (partial(child, node) @ P.T)
        return vec

    return np.log(partial(root, None) @ pi)

def enumeration_site_likelihoods(Q : np.ndarray, tree : Tree, root : Node,
                                 obs : TreeObservations) -> np.ndarray:
    """
    Sum over every joint assignment of states to the unobserved nodes.
    Observed nodes must be one hot.
    """
    n = Q.shape[0]
    pi = CTMC(Q).stationary_distribution()
    hidden = [node for node in tree.get_nodes() if obs.get(node) is None]
    edges = tree.get_rooted_edges(root)
    Ps = {edge : expm(Q * tree.get_branch_length(*edge)) for edge in edges}

    result = []
    for site in range(obs.n_sites()):
        total = 0.0
        for assignment in itertools.product(range(n), repeat = len(hidden)):
            states = dict(zip(hidden, assignment))
            for node in obs.get_observed_tree_nodes():
                states[node] = int(np.argmax(obs.get_site(node, site)))
            prob = pi[states[root]]
            for parent, child in edges:
                prob *= Ps[(parent, child)][states[parent]][states[child]]
            total += prob
        result.append(np.log(total))
    return np.array(result)

def exact_node_marginals(model : MultiCategorySubstitutionModel, tree : Tree,
                         root : Node, obs : TreeObservations) \
        -> dict[Node, np.ndarray]:
    """
    Posterior marginal of each node, with the categories integrated out.
    """
    graphs = model.build_factor_graphs(tree, root, obs)
    sum_products = [SumProduct(graph) for graph in graphs]
    site_lls = np.array([sp.compute_marginal(root).site_log_normalizations()
                         for sp in sum_products])
    log_priors = np.array(model.rate_matrix_mixture
                          .get_log_prior_probabilities())
    weights = softmax(log_priors[:, np.newaxis] + site_lls, axis = 0)

    result = {}
    for node in tree.get_nodes():
        result[node] = sum(weights[c][:, np.newaxis]
                           * sp.compute_marginal(node).normalized()
                           for c, sp in enumerate(sum_products))
    return result

################
#### TESTS #####
################

def test_single_category_matches_pruning():
    rng = np.random.default_rng(11)
    tree = tree_from_newick(NEWICK)
    Q = random_gtr(rng)
    obs = random_observations(rng, tree, 9, 4)
    # ambiguous characters at one leaf
    obs.set_site(tree.has_node_named("A"), 0, [1.0, 0.0, 1.0, 0.0])
    obs.set_site(tree.has_node_named("C"), 3, [1.0, 1.0, 1.0, 1.0])

    model = MultiCategorySubstitutionModel(mixture_of(Q), 9)
    root = tree.arbitrary_node()
    expected = np.sum(pruning_site_likelihoods(Q, tree, root, obs))

    assert model.log_likelihood(obs, tree) == pytest.approx(expected,
                                                            rel = 1e-9)

def test_likelihood_matches_enumeration():
    rng = np.random.default_rng(5)
    tree = tree_from_newick(NEWICK)
    Q1 = random_gtr(rng)
    Q2 = 2.5 * random_gtr(rng)
    priors = np.array([0.3, 0.7])
    obs = random_observations(rng, tree, 6, 4)
    root = tree.arbitrary_node()

    model = MultiCategorySubstitutionModel(mixture_of(Q1, Q2,
                                                      priors = priors), 6)
    per_category = np.array([enumeration_site_likelihoods(Q, tree, root, obs)
                             for Q in (Q1, Q2)])
    expected = np.sum(logsumexp(np.log(priors)[:, np.newaxis] + per_category,
                                axis = 0))

    assert model.log_likelihood(obs, tree) == pytest.approx(expected,
                                                            rel = 1e-9)

def test_likelihood_does_not_depend_on_root():
    rng = np.random.default_rng(17)
    tree = tree_from_newick(NEWICK)
    obs = random_observations(rng, tree, 5, 4)
    model = MultiCategorySubstitutionModel(
        discrete_gamma_mixture(random_gtr(rng), 0.5, 4), 5)

    reference = model.log_likelihood(obs, tree)
    for node in tree.get_nodes():
        assert model.log_likelihood(obs, tree, node) \
            == pytest.approx(reference, rel = 1e-9)

def test_site_likelihoods_by_category():
    rng = np.random.default_rng(2)
    tree = tree_from_newick(NEWICK)
    Q1, Q2 = random_gtr(rng), random_gtr(rng)
    obs = random_observations(rng, tree, 4, 4)
    root = tree.arbitrary_node()
    model = MultiCategorySubstitutionModel(mixture_of(Q1, Q2), 4)

    graphs = model.build_factor_graphs(tree, root, obs)
    marginals = [SumProduct(graph).compute_marginal(root) for graph in graphs]
    table = model.category_and_site_specific_likelihoods(marginals)

    assert table.shape == (2, 4)
    assert np.allclose(table[0], pruning_site_likelihoods(Q1, tree, root, obs))
    assert np.allclose(table[1], pruning_site_likelihoods(Q2, tree, root, obs))

def test_star_tree_closed_form():
    tree, center, leaves = star_tree()
    Q = np.array([[-1.0, 1.0], [1.0, -1.0]])
    obs = TreeObservations(1)
    for leaf, state in zip(leaves, (0, 0, 1)):
        obs.set(leaf, one_hot([state], 2))

    p_same = 0.5 + 0.5 * np.exp(-2.0)
    p_diff = 0.5 - 0.5 * np.exp(-2.0)
    expected = np.log(0.5 * p_same * p_diff)

    model = MultiCategorySubstitutionModel(mixture_of(Q), 1)
    assert model.log_likelihood(obs, tree, center) \
        == pytest.approx(expected, rel = 1e-10)

def test_star_tree_posterior_root_frequency():
    n_sites = 10000
    tree, center, leaves = star_tree()
    Q = np.array([[-1.0, 1.0], [1.0, -1.0]])
    obs = TreeObservations(n_sites)
    for leaf, state in zip(leaves, (0, 0, 1)):
        obs.set(leaf, one_hot(np.full(n_sites, state), 2))

    model = MultiCategorySubstitutionModel(mixture_of(Q), n_sites)
    sample = model.sample_posterior_internal_nodes(np.random.default_rng(3),
                                                   obs, tree, center)
    frequency = np.mean(sample.get_internal_indicators(center)[:, 0])

    assert abs(frequency - (0.5 + 0.5 * np.exp(-2.0))) < 0.02

def test_samples_are_one_hot():
    rng = np.random.default_rng(23)
    tree = tree_from_newick(NEWICK)
    obs = random_observations(rng, tree, 12, 4)
    model = MultiCategorySubstitutionModel(
        mixture_of(random_gtr(rng), 3 * random_gtr(rng)), 12)

    for sample in (model.sample_prior_internal_nodes(rng, tree),
                   model.sample_posterior_internal_nodes(rng, obs, tree)):
        assert sample.n_sites() == 12
        assert set(sample.nodes()) == set(tree.get_nodes())
        assert np.all(np.isin(sample.category_indicators, [0, 1]))
        for node in sample.nodes():
            indicators = sample.get_internal_indicators(node)
            assert indicators.shape == (12, 4)
            assert np.all((indicators == 0.0) | (indicators == 1.0))
            assert np.all(indicators.sum(axis = 1) == 1.0)

def test_posterior_samples_keep_observed_leaves():
    rng = np.random.default_rng(29)
    tree = tree_from_newick(NEWICK)
    obs = random_observations(rng, tree, 8, 4)
    model = MultiCategorySubstitutionModel(mixture_of(random_gtr(rng)), 8)

    sample = model.sample_posterior_internal_nodes(rng, obs, tree)
    for leaf in tree.get_leaves():
        assert np.array_equal(sample.get_internal_indicators(leaf),
                              obs.get(leaf))

def test_posterior_sampling_converges_to_marginals():
    n_sites = 4000
    tree = tree_from_newick(NEWICK)
    root = tree.arbitrary_node()
    Q = JC().getQ()
    model = MultiCategorySubstitutionModel(mixture_of(0.3 * Q, 4.0 * Q,
                                                      priors = [0.4, 0.6]),
                                           n_sites)
    obs = repeated_observations(tree, {"A" : 0, "B" : 0, "C" : 2, "D" : 1,
                                       "E" : 0}, n_sites, 4)

    sample = model.sample_posterior_internal_nodes(np.random.default_rng(31),
                                                   obs, tree, root)
    exact = exact_node_marginals(model, tree, root, obs)

    for node in tree.get_internal_nodes():
        empirical = sample.get_internal_indicators(node).mean(axis = 0)
        assert np.allclose(empirical, exact[node][0], atol = 0.03)

def test_category_indicators_follow_posterior():
    n_sites = 4000
    tree = tree_from_newick(NEWICK)
    root = tree.arbitrary_node()
    Q = JC().getQ()
    priors = np.array([0.5, 0.5])
    model = MultiCategorySubstitutionModel(mixture_of(0.05 * Q, 5.0 * Q,
                                                      priors = priors),
                                           n_sites)
    obs = repeated_observations(tree, {"A" : 0, "B" : 1, "C" : 2, "D" : 3,
                                       "E" : 0}, n_sites, 4)

    per_category = [pruning_site_likelihoods(s * Q, tree, root, obs)[0]
                    for s in (0.05, 5.0)]
    posterior = softmax(np.log(priors) + np.array(per_category))

    sample = model.sample_posterior_internal_nodes(np.random.default_rng(37),
                                                   obs, tree, root)
    frequency = np.mean(sample.category_indicators == 1)
    assert abs(frequency - posterior[1]) < 0.03

def test_prior_category_frequencies():
    n_sites = 5000
    tree = tree_from_newick(NEWICK)
    Q = JC().getQ()
    model = MultiCategorySubstitutionModel(mixture_of(Q, 2 * Q, 3 * Q,
                                                      priors = [0.2, 0.3,
                                                                0.5]),
                                           n_sites)
    sample = model.sample_prior_internal_nodes(np.random.default_rng(41),
                                               tree)
    counts = np.bincount(sample.category_indicators, minlength = 3)
    assert np.allclose(counts / n_sites, [0.2, 0.3, 0.5], atol = 0.03)

def test_generate_observations_in_place():
    rng = np.random.default_rng(43)
    tree = tree_from_newick(NEWICK)
    model = MultiCategorySubstitutionModel(mixture_of(random_gtr(rng)), 20)
    destination = TreeObservations(20)

    sample = model.generate_observations_in_place(rng, destination, tree)

    assert set(destination.get_observed_tree_nodes()) \
        == set(tree.get_leaves())
    for leaf in tree.get_leaves():
        assert np.array_equal(destination.get(leaf),
                              sample.get_internal_indicators(leaf))
    assert np.isfinite(model.log_likelihood(destination, tree))

def test_generate_observations_through_emission():
    rng = np.random.default_rng(47)
    tree = tree_from_newick(NEWICK)
    emission = EmissionModel([[0.7, 0.2, 0.1], [0.1, 0.1, 0.8]])
    Q = np.array([[-1.0, 1.0], [1.0, -1.0]])
    mixture = RateMatrixMixture([RateMatrix(Q, emission),
                                 RateMatrix(3 * Q, emission)])
    model = MultiCategorySubstitutionModel(mixture, 15)
    destination = TreeObservations(15)

    model.generate_observations_in_place(rng, destination, tree)

    for leaf in tree.get_leaves():
        data = destination.get(leaf)
        assert data.shape == (15, 3)
        assert np.all(data.sum(axis = 1) == 1.0)
    assert np.isfinite(model.log_likelihood(destination, tree))

def test_emission_likelihood_matches_pruning():
    rng = np.random.default_rng(53)
    tree = tree_from_newick(NEWICK)
    root = tree.arbitrary_node()
    E = np.array([[0.9, 0.1], [0.25, 0.75]])
    Q = np.array([[-0.4, 0.4], [1.2, -1.2]])
    obs = random_observations(rng, tree, 7, 2)

    latent = TreeObservations(7)
    for leaf in tree.get_leaves():
        latent.set(leaf, obs.get(leaf) @ E.T)
    expected = np.sum(pruning_site_likelihoods(Q, tree, root, latent))

    model = MultiCategorySubstitutionModel(
        RateMatrixMixture([RateMatrix(Q, EmissionModel(E))]), 7)
    assert model.log_likelihood(obs, tree, root) \
        == pytest.approx(expected, rel = 1e-9)

def test_marginal_count_conservation():
    rng = np.random.default_rng(59)
    tree = tree_from_newick(NEWICK)
    root = tree.arbitrary_node()
    obs = random_observations(rng, tree, 10, 4)
    model = MultiCategorySubstitutionModel(
        mixture_of(random_gtr(rng), 2 * random_gtr(rng)), 10)

    counts = model.get_marginal_count(obs, tree, root)
    graphs = model.build_factor_graphs(tree, root, obs)

    assert len(counts) == 2
    for category, graph in enumerate(graphs):
        sum_product = SumProduct(graph)
        assert set(counts[category].keys()) \
            == set(tree.get_rooted_edges(root))
        for (parent, child), matrix in counts[category].items():
            top = sum_product.compute_marginal(parent).normalized()
            bot = sum_product.compute_marginal(child).normalized()
            assert matrix.sum() == pytest.approx(10.0)
            assert np.allclose(matrix.sum(axis = 1), top.sum(axis = 0))
            assert np.allclose(matrix.sum(axis = 0), bot.sum(axis = 0))

def test_marginal_count_matches_enumeration():
    rng = np.random.default_rng(61)
    tree = tree_from_newick(NEWICK)
    root = tree.arbitrary_node()
    Q = random_gtr(rng)
    obs = random_observations(rng, tree, 1, 4)
    model = MultiCategorySubstitutionModel(mixture_of(Q), 1)

    pi = CTMC(Q).stationary_distribution()
    edges = tree.get_rooted_edges(root)
    Ps = {edge : expm(Q * tree.get_branch_length(*edge)) for edge in edges}
    hidden = tree.get_internal_nodes()
    target = edges[0]
    expected = np.zeros((4, 4))
    for assignment in itertools.product(range(4), repeat = len(hidden)):
        states = dict(zip(hidden, assignment))
        for leaf in tree.get_leaves():
            states[leaf] = int(np.argmax(obs.get_site(leaf, 0)))
        prob = pi[states[root]]
        for parent, child in edges:
            prob *= Ps[(parent, child)][states[parent]][states[child]]
        expected[states[target[0]]][states[target[1]]] += prob
    expected /= expected.sum()

    counts = model.get_marginal_count(obs, tree, root)[0][target]
    assert np.allclose(counts, expected)

def test_marginal_count_warns_on_impossible_sites():
    tree, center, leaves = star_tree()
    Q = np.array([[-1.0, 1.0], [1.0, -1.0]])
    obs = TreeObservations(2)
    obs.set(leaves[0], [[1.0, 0.0], [0.0, 0.0]])
    obs.set(leaves[1], [[1.0, 0.0], [0.0, 1.0]])
    obs.set(leaves[2], [[0.0, 1.0], [0.0, 1.0]])
    model = MultiCategorySubstitutionModel(mixture_of(Q), 2)

    with pytest.warns(RuntimeWarning):
        counts = model.get_marginal_count(obs, tree, center)

    for matrix in counts[0].values():
        assert matrix.sum() == pytest.approx(1.0)

def test_weighted_statistics_skip_sites_impossible_everywhere():
    tree, center, leaves = star_tree()
    Q = np.array([[-1.0, 1.0], [1.0, -1.0]])
    obs = TreeObservations(2)
    obs.set(leaves[0], [[1.0, 0.0], [0.0, 0.0]])
    obs.set(leaves[1], [[1.0, 0.0], [0.0, 1.0]])
    obs.set(leaves[2], [[0.0, 1.0], [0.0, 1.0]])
    model = MultiCategorySubstitutionModel(mixture_of(Q, 2 * Q), 2)

    with pytest.warns(RuntimeWarning):
        stats = model.get_total_expected_statistics(
            obs, tree, center, weight_by_category_posterior = True)

    assert np.all(np.isfinite(stats.n_init))
    assert np.all(np.isfinite(stats.holding_times))
    assert np.all(np.isfinite(stats.transition_counts))
    # only the first site carries weight, and its category weights sum to 1
    assert stats.n_init.sum() == pytest.approx(1.0)
    assert stats.holding_times.sum() == pytest.approx(3.0)

def test_total_expected_statistics():
    rng = np.random.default_rng(67)
    tree = tree_from_newick(NEWICK)
    root = tree.arbitrary_node()
    n_sites = 6
    obs = random_observations(rng, tree, n_sites, 4)
    model = MultiCategorySubstitutionModel(
        mixture_of(random_gtr(rng), 0.5 * random_gtr(rng)), n_sites)
    total_length = sum(tree.get_branch_lengths().values())

    stats = model.get_total_expected_statistics(obs, tree, root)
    assert stats.n_init.sum() == pytest.approx(2 * n_sites)
    assert stats.holding_times.sum() \
        == pytest.approx(2 * n_sites * total_length)
    assert np.all(stats.transition_counts >= 0)

    weighted = model.get_total_expected_statistics(
        obs, tree, root, weight_by_category_posterior = True)
    assert weighted.n_init.sum() == pytest.approx(n_sites)
    assert weighted.holding_times.sum() \
        == pytest.approx(n_sites * total_length)

    # accumulates into a given record
    again = model.get_total_expected_statistics(obs, tree, root, stats)
    assert again is stats
    assert stats.n_init.sum() == pytest.approx(4 * n_sites)

def test_expected_statistics_initial_counts_match_root_marginal():
    rng = np.random.default_rng(71)
    tree = tree_from_newick(NEWICK)
    root = tree.arbitrary_node()
    Q = random_gtr(rng)
    obs = random_observations(rng, tree, 5, 4)
    model = MultiCategorySubstitutionModel(mixture_of(Q), 5)

    stats = model.get_total_expected_statistics(obs, tree, root)
    graph = model.build_factor_graphs(tree, root, obs)[0]
    root_marginal = SumProduct(graph).compute_marginal(root).normalized()
    assert np.allclose(stats.n_init, root_marginal.sum(axis = 0))

def test_sample_posterior_paths():
    rng = np.random.default_rng(73)
    tree = tree_from_newick(NEWICK)
    root = tree.arbitrary_node()
    n_sites = 10
    obs = random_observations(rng, tree, n_sites, 4)
    model = MultiCategorySubstitutionModel(
        mixture_of(random_gtr(rng), 2 * random_gtr(rng)), n_sites)
    paths = TreePath(tree, root, n_sites)

    stats = model.sample_posterior_paths(rng, obs, tree, root, paths)

    assert len(stats) == 2
    assert sum(s.initial_counts().sum() for s in stats) == n_sites
    total_length = sum(tree.get_branch_lengths().values())
    assert sum(s.holding_times().sum() for s in stats) \
        == pytest.approx(n_sites * total_length)

    n_jumps = 0
    for parent, child in tree.get_rooted_edges(root):
        for site in range(n_sites):
            path = paths.get_path(parent, child, site)
            assert path.total_time() == pytest.approx(
                tree.get_branch_length(parent, child))
            n_jumps += path.n_transitions()
            if obs.get(child) is not None:
                assert path.states()[-1] == np.argmax(obs.get_site(child,
                                                                   site))
    assert sum(s.total_transitions() for s in stats) == n_jumps

def test_sample_posterior_paths_accumulates():
    rng = np.random.default_rng(79)
    tree = tree_from_newick(NEWICK)
    obs = random_observations(rng, tree, 4, 4)
    model = MultiCategorySubstitutionModel(mixture_of(random_gtr(rng)), 4)

    records = [PathStatistics(4)]
    model.sample_posterior_paths(rng, obs, tree, statistics = records)
    model.sample_posterior_paths(rng, obs, tree, statistics = records)
    assert records[0].initial_counts().sum() == 8

    records[0].reset()
    assert records[0].initial_counts().sum() == 0

def test_poisson_auxiliary_variables():
    rng = np.random.default_rng(83)
    tree = tree_from_newick(NEWICK)
    root = tree.arbitrary_node()
    n_sites = 12
    obs = random_observations(rng, tree, n_sites, 4)
    Q1, Q2 = random_gtr(rng), 2 * random_gtr(rng)
    model = MultiCategorySubstitutionModel(mixture_of(Q1, Q2), n_sites)

    samples = model.sample_poisson_auxiliary_variables(rng, obs, tree, root)

    assert samples[0].get_rate() == pytest.approx(np.max(-np.diag(Q1)))
    assert samples[1].get_rate() == pytest.approx(np.max(-np.diag(Q2)))
    for parent, child in tree.get_rooted_edges(root):
        assert sum(s.get_sample_count(parent, child) for s in samples) \
            == n_sites
        # unordered keys
        assert samples[0].get_sample_count(child, parent) \
            == samples[0].get_sample_count(parent, child)
        for s in samples:
            assert s.get_transition_count(parent, child) >= 0

def test_poisson_zero_length_branch():
    rng = np.random.default_rng(89)
    tree = tree_from_newick("((A:0.0,B:0.3):0.2,C:0.5,D:0.0);")
    root = tree.arbitrary_node()
    obs = random_observations(rng, tree, 25, 4)
    model = MultiCategorySubstitutionModel(
        mixture_of(random_gtr(rng), 3 * random_gtr(rng)), 25)

    samples = model.sample_poisson_auxiliary_variables(rng, obs, tree, root)
    for parent, child in tree.get_rooted_edges(root):
        if tree.get_branch_length(parent, child) == 0.0:
            assert all(s.get_transition_count(parent, child) == 0
                       for s in samples)
            assert sum(s.get_sample_count(parent, child)
                       for s in samples) == 25

def test_configuration_errors():
    tree = tree_from_newick(NEWICK)
    Q = JC().getQ()
    model = MultiCategorySubstitutionModel(mixture_of(Q, 2 * Q), 5)
    rng = np.random.default_rng(97)

    with pytest.raises(SubstitutionModelError):
        MultiCategorySubstitutionModel(mixture_of(Q), 0)

    wrong = random_observations(rng, tree, 4, 4)
    with pytest.raises(SubstitutionModelError):
        model.log_likelihood(wrong, tree)
    with pytest.raises(SubstitutionModelError):
        model.sample_posterior_internal_nodes(rng, wrong, tree)
    with pytest.raises(SubstitutionModelError):
        model.get_marginal_count(wrong, tree)
    with pytest.raises(SubstitutionModelError):
        model.generate_observations_in_place(rng, TreeObservations(3), tree)

    obs = random_observations(rng, tree, 5, 4)
    with pytest.raises(SubstitutionModelError):
        model.sample_posterior_paths(rng, obs, tree,
                                     statistics = [PathStatistics(4)])
    with pytest.raises(RateMatrixMixtureError):
        RateMatrixMixture([])

def test_per_branch_transition_matrices():
    tree = tree_from_newick(NEWICK)
    Q = JC().getQ()
    model = MultiCategorySubstitutionModel(mixture_of(Q, 2 * Q), 1)

    expms = model.get_expm_rate_mtx_scaled_by_branch(tree)
    lengths = set(tree.get_branch_lengths().values())
    assert len(expms) == 2
    for category, scale in enumerate((1.0, 2.0)):
        assert set(expms[category].keys()) == lengths
        for t, P in expms[category].items():
            assert np.allclose(P, expm(scale * Q * t))

    assert len(model.end_point_samplers()) == 2
