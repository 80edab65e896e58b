#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyMix --
##  Library for Category-Mixture Substitution Models on Phylogenies
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##############################################################################

"""
PhyMix - Category Mixture Substitution Models

Likelihoods, ancestral sampling and sufficient statistics for mixtures of
continuous time Markov chains evolving along a phylogeny.
"""

# Core data structures
from .Tree import Tree, Node, TreeError, tree_from_newick
from .Alphabet import Alphabet, AlphabetError, DNA, RNA, PROTEIN, \
                      integer_alphabet
from .Observations import TreeObservations, ObservationError

# Models
from .CTMC import CTMC, CTMCError, expected_sufficient_statistics
from .GTR import GTR, JC, K80, F81, HKY, SubstitutionModelError
from .RateMatrixMixture import (
    EmissionModel,
    RateMatrix,
    RateMatrixMixture,
    RateMatrixMixtureError,
    discrete_gamma_rates,
    discrete_gamma_mixture
)

# Inference
from .FactorGraph import (
    DiscreteFactorGraph,
    UnaryFactor,
    SumProduct,
    ExactSampler,
    FactorGraphError
)
from .EndPointSampler import EndPointSampler, EndPointSamplerError
from .SufficientStatistics import (
    PathStatistics,
    Path,
    TreePath,
    PoissonAuxiliarySample,
    ExpectedStatistics,
    SufficientStatisticsError,
    get_and_check_int
)
from .InternalNodeSample import (
    MultiCategoryInternalNodeSample,
    InternalSampleError,
    one_hot_to_states
)
from .SubstitutionEngine import MultiCategorySubstitutionModel

# Diagnostics
from .Logger import Logger

__version__ = "1.0.0"
__author__ = "Mark Kessler"
