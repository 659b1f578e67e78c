"""
Estimation of the misclassified binary outcome model.

Key components:
- EstimationConfig: Configuration for both estimators
- EMEstimator: Maximum likelihood via (SQUAREM-accelerated) EM
- MCMCEstimator: Posterior sampling with multiple independent chains
- PriorSpecification: Priors for the MCMC estimator
"""
