"""Bayesian estimation by Metropolis-within-Gibbs MCMC."""

from misclassification_service.estimation.mcmc.estimator import MCMCEstimator
from misclassification_service.estimation.mcmc.priors import PriorSpecification

__all__ = ["MCMCEstimator", "PriorSpecification"]
