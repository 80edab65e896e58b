import numpy as np
import pytest
from PhyMix.InternalNodeSample import *
from PhyMix.Tree import Node


################
#### TESTS #####
################

def test_one_hot_to_states():
    array = np.array([[0.0, 1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    assert np.array_equal(one_hot_to_states(array), [1, 0, 2])

    with pytest.raises(InternalSampleError):
        one_hot_to_states([[1.0, 1.0, 0.0]])
    with pytest.raises(InternalSampleError):
        one_hot_to_states([[0.5, 0.5, 0.0]])
    with pytest.raises(InternalSampleError):
        one_hot_to_states([[0.0, 0.0, 0.0]])
    with pytest.raises(InternalSampleError):
        one_hot_to_states([1.0, 0.0, 0.0])

def test_sample_round_trip():
    a, b = Node("a"), Node("b")
    indicators_a = np.array([[1.0, 0.0], [0.0, 1.0], [0.0, 1.0]])
    indicators_b = np.array([[0.0, 1.0], [0.0, 1.0], [1.0, 0.0]])
    sample = MultiCategoryInternalNodeSample([0, 1, 1], {a : indicators_a,
                                                         b : indicators_b})

    assert sample.n_sites() == 3
    assert sample.n_states == 2
    assert sample.nodes() == [a, b]
    assert sample.get_category(2) == 1
    assert sample.get_internal_state(a, 1) == 1
    assert sample.get_internal_state(b, 2) == 0
    assert np.array_equal(sample.get_internal_indicators(a), indicators_a)
    assert np.array_equal(sample.get_internal_indicators(b), indicators_b)

def test_sample_rejects_malformed_states():
    a = Node("a")
    with pytest.raises(InternalSampleError):
        MultiCategoryInternalNodeSample([0, 0], {a : [[1.0, 0.0],
                                                      [1.0, 1.0]]})
    with pytest.raises(InternalSampleError):
        MultiCategoryInternalNodeSample([0, 0], {a : [[1.0, 0.0],
                                                      [0.3, 0.7]]})
    with pytest.raises(InternalSampleError):
        MultiCategoryInternalNodeSample([0, 0, 1], {a : [[1.0, 0.0],
                                                         [0.0, 1.0]]})
