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
Design - [ ]

A finite mixture of rate matrices. Each site of an alignment evolves under
one category of the mixture, chosen independently per site according to the
mixture's prior.

SOURCES:

1) Yang 1994, "Maximum likelihood phylogenetic estimation from DNA sequences
   with variable rates over sites: approximate methods"
"""

import warnings
import numpy as np
from scipy import stats
from scipy.special import logsumexp
from .CTMC import CTMC

#########################
#### EXCEPTION CLASS ####
#########################

class RateMatrixMixtureError(Exception):
    """
    Raised when a mixture is built from inconsistent ingredients, such as no
    categories at all, rate matrices of different sizes, or a prior that does
    not match the number of categories.
    """
    def __init__(self, message : str = "Malformed rate matrix mixture") -> None:
        self.message = message
        super().__init__(self.message)

########################
#### EMISSION MODEL ####
########################

class EmissionModel:
    """
    Maps the latent states that evolve along the tree to the characters that
    are observed at the leaves. matrix[x][o] is the probability of observing
    'o' when the latent state is 'x'. Useful for measurement error models, or
    whenever the evolving characters live in a different space than the
    observations (ie, covarion models).
    """

    def __init__(self, matrix : list[list[float]] | np.ndarray) -> None:
        """
        Args:
            matrix (list[list[float]] | np.ndarray): latent x observation
                                                     probabilities. Each row
                                                     sums to 1.
        """
        self.matrix : np.ndarray = np.array(matrix, dtype = np.double)

        if self.matrix.ndim != 2:
            raise RateMatrixMixtureError("Emission matrix must be 2 \
                                          dimensional.")
        if np.any(self.matrix < 0) \
                or not np.allclose(self.matrix.sum(axis = 1), 1.0):
            raise RateMatrixMixtureError("Each row of an emission matrix must \
                                          be a probability distribution.")

    def get_matrix_states_to_observation_probabilities(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: the latent x observation probability matrix.
        """
        return self.matrix

    def latent_state_count(self) -> int:
        return self.matrix.shape[0]

    def observation_count(self) -> int:
        return self.matrix.shape[1]

#####################
#### RATE MATRIX ####
#####################

class RateMatrix:
    """
    One category of a mixture: a rate matrix, the process it defines, and an
    optional emission model.
    """

    def __init__(self,
                 rate_matrix : list[list[float]] | np.ndarray,
                 emission_model : EmissionModel = None) -> None:
        """
        Args:
            rate_matrix (list[list[float]] | np.ndarray): A square rate matrix.
            emission_model (EmissionModel, optional): latent to observation
                                                      model. Defaults to None,
                                                      in which case the states
                                                      are observed directly.
        """
        self.process : CTMC = CTMC(rate_matrix)

        if emission_model is not None \
                and emission_model.latent_state_count() \
                    != self.process.state_count():
            raise RateMatrixMixtureError("Emission model has "
                                         + str(emission_model.latent_state_count())
                                         + " latent states, but the rate \
                                         matrix has "
                                         + str(self.process.state_count()))
        self.emission_model : EmissionModel = emission_model

    def get_rate_matrix(self) -> np.ndarray:
        return self.process.get_rate_matrix()

    def get_process(self) -> CTMC:
        """
        Returns:
            CTMC: the process defined by the rate matrix.
        """
        return self.process

    def get_emission_model(self) -> EmissionModel:
        return self.emission_model

    def stationary_distribution(self) -> np.ndarray:
        return self.process.stationary_distribution()

    def state_count(self) -> int:
        return self.process.state_count()

###############################
#### RATE MATRIX MIXTURE ######
###############################

class RateMatrixMixture:
    """
    An ordered collection of rate matrix categories, along with the log prior
    probability of each category.
    """

    def __init__(self,
                 rate_matrices : list[RateMatrix],
                 log_priors : list[float] | np.ndarray = None) -> None:
        """
        Args:
            rate_matrices (list[RateMatrix]): one RateMatrix per category.
            log_priors (list[float] | np.ndarray, optional): log prior
                                                            probability of each
                                                            category. Defaults
                                                            to a uniform prior.
                                                            Priors that do not
                                                            exponentiate to a
                                                            distribution are
                                                            renormalized, with
                                                            a warning.

        Raises:
            RateMatrixMixtureError: if there are no categories, if the
                                    categories do not share a state space, or
                                    if the number of priors is wrong.
        """
        if len(rate_matrices) == 0:
            raise RateMatrixMixtureError("A rate matrix mixture needs at least \
                                          one category.")

        states = rate_matrices[0].state_count()
        for rate_matrix in rate_matrices:
            if rate_matrix.state_count() != states:
                raise RateMatrixMixtureError("All categories of a mixture \
                                              must have the same number of \
                                              states.")

        if log_priors is None:
            log_priors = np.full(len(rate_matrices),
                                 -np.log(len(rate_matrices)))

        log_priors = np.array(log_priors, dtype = np.double)
        if log_priors.shape != (len(rate_matrices),):
            raise RateMatrixMixtureError("Expected "
                                         + str(len(rate_matrices))
                                         + " log prior probabilities, got "
                                         + str(log_priors.size))
        if np.any(np.isnan(log_priors)) or np.any(log_priors == np.inf):
            raise RateMatrixMixtureError("Log prior probabilities must be \
                                          finite or -inf.")

        log_norm = logsumexp(log_priors)
        if not np.isclose(log_norm, 0.0):
            warnings.warn("Category log priors do not sum to 1 after \
                           exponentiation. They have been renormalized.")
            log_priors = log_priors - log_norm

        self.rate_matrices : list[RateMatrix] = list(rate_matrices)
        self.log_priors : np.ndarray = log_priors

    def get_rate_matrix(self, category : int) -> RateMatrix:
        """
        Args:
            category (int): a category index in [0, n_categories()).
        Returns:
            RateMatrix: that category.
        """
        return self.rate_matrices[category]

    def get_log_prior_probabilities(self) -> list[float]:
        """
        Returns:
            list[float]: the log prior of each category, in category order.
        """
        return list(self.log_priors)

    def n_categories(self) -> int:
        return len(self.rate_matrices)

    def n_states(self) -> int:
        return self.rate_matrices[0].state_count()

##########################
#### HELPER FUNCTIONS ####
##########################

def discrete_gamma_rates(alpha : float, n_categories : int) -> np.ndarray:
    """
    Rates of the discrete gamma model of (1). The gamma distribution with
    shape 'alpha' and mean 1 is cut into 'n_categories' bins of equal
    probability, and each category's rate is the mean of its bin.

    Args:
        alpha (float): gamma shape parameter, > 0.
        n_categories (int): number of rate categories, >= 1.
    Returns:
        np.ndarray: the category rates, in increasing order. They average to 1.
    """
    if alpha <= 0:
        raise RateMatrixMixtureError("Gamma shape parameter must be positive.")
    if n_categories < 1:
        raise RateMatrixMixtureError("Need at least one rate category.")

    cutpoints = stats.gamma.ppf(np.arange(n_categories + 1) / n_categories,
                                a = alpha, scale = 1 / alpha)

    # E[X ; a < X < b] for X ~ Gamma(alpha, alpha) is the probability that a
    # Gamma(alpha + 1, alpha) variable falls in (a, b)
    upper_mass = stats.gamma.cdf(cutpoints, a = alpha + 1, scale = 1 / alpha)
    rates = np.diff(upper_mass) * n_categories
    return rates

def discrete_gamma_mixture(rate_matrix : list[list[float]] | np.ndarray,
                           alpha : float,
                           n_categories : int,
                           emission_model : EmissionModel = None
                           ) -> RateMatrixMixture:
    """
    Build a mixture in which category c evolves under rates[c] * Q, with rates
    given by 'discrete_gamma_rates' and an equal prior on each category.

    Args:
        rate_matrix (list[list[float]] | np.ndarray): base rate matrix Q.
        alpha (float): gamma shape parameter.
        n_categories (int): number of categories.
        emission_model (EmissionModel, optional): shared by all categories.
                                                  Defaults to None.
    Returns:
        RateMatrixMixture: the rate heterogeneity mixture.
    """
    Q = np.array(rate_matrix, dtype = np.double)
    categories = [RateMatrix(rate * Q, emission_model)
                  for rate in discrete_gamma_rates(alpha, n_categories)]
    return RateMatrixMixture(categories)
