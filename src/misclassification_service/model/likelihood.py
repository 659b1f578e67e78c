"""
Observed-data likelihood and posterior responsibilities.

For each subject i and true class j:
    P(Y=j | Y*_i, X_i, Z_i) ∝ P(Y*=Y*_i | Y=j, Z_i) * P(Y=j | X_i)

All terms are accumulated in log space and normalized with log-sum-exp, so
probabilities close to 0 do not underflow before normalization.
"""

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.special import log_expit, logsumexp

from misclassification_service.core.data_models import Dataset
from misclassification_service.core.exceptions import NumericDegeneracyError
from misclassification_service.model.linear_predictor import (
    true_outcome_linear_predictor,
)
from misclassification_service.model.misclassification import (
    compute_log_misclassification_probabilities,
)
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
)


@dataclass
class ResponsibilityResult:
    """
    Posterior class probabilities for the current parameters.

    Attributes:
        responsibilities: P(Y=j | Y*, X, Z), shape (n_subjects, 2).
        log_marginals: log P(Y*_i | X_i, Z_i), shape (n_subjects,).
        log_likelihood: Observed-data log-likelihood (sum of log_marginals).
    """

    responsibilities: NDArray[np.float64]
    log_marginals: NDArray[np.float64]
    log_likelihood: float


def compute_log_true_class_probabilities(
    beta: TrueOutcomeParameters,
    x_design: NDArray[np.float64],
) -> NDArray[np.float64]:
    """log P(Y=j | X), shape (n, 2)."""
    eta = true_outcome_linear_predictor(beta, x_design)
    return np.column_stack([log_expit(eta), log_expit(-eta)])


def compute_log_joint(
    beta: TrueOutcomeParameters,
    gamma: ObservationParameters,
    dataset: Dataset,
    perfect_sensitivity: bool = False,
) -> NDArray[np.float64]:
    """
    log P(Y*=Y*_i, Y=j | X_i, Z_i) for each subject and true class.

    Args:
        beta: True outcome coefficients.
        gamma: Observation coefficients. With perfect_sensitivity the j=1
            column is ignored.
        dataset: Observed data.
        perfect_sensitivity: If True, P(Y*=1 | Y=1, Z) = 1.

    Returns:
        Log joint probabilities, shape (n_subjects, 2). Entries may be -inf
        only in perfect-sensitivity mode.
    """
    log_prior = compute_log_true_class_probabilities(beta, dataset.x_design)
    log_misclass = compute_log_misclassification_probabilities(
        gamma, dataset.z_design
    )

    # Pick the observed class k = Y*_i for each subject: shape (n, 2) over j
    observed = dataset.observed_class_index
    log_obs = log_misclass[np.arange(dataset.n_subjects), :, observed]

    if perfect_sensitivity:
        log_obs[:, 0] = np.where(observed == 0, 0.0, -np.inf)

    return log_prior + log_obs


def normalize_log_joint(log_joint: NDArray[np.float64]) -> ResponsibilityResult:
    """
    Normalize log joint probabilities over true classes.

    Raises:
        NumericDegeneracyError: If all classes of some subject carry zero mass.
    """
    log_marginals = logsumexp(log_joint, axis=1)

    collapsed = ~np.isfinite(log_marginals)
    if collapsed.any():
        raise NumericDegeneracyError(np.flatnonzero(collapsed).tolist())

    responsibilities = np.exp(log_joint - log_marginals[:, np.newaxis])
    # Guard rounding so that each row is a proper distribution
    responsibilities = np.clip(responsibilities, 0.0, 1.0)
    responsibilities /= responsibilities.sum(axis=1, keepdims=True)

    return ResponsibilityResult(
        responsibilities=responsibilities,
        log_marginals=log_marginals,
        log_likelihood=float(np.sum(log_marginals)),
    )


def compute_responsibilities(
    beta: TrueOutcomeParameters,
    gamma: ObservationParameters,
    dataset: Dataset,
    perfect_sensitivity: bool = False,
) -> ResponsibilityResult:
    """
    Compute P(Y=j | Y*, X, Z) for every subject.

    Args:
        beta: True outcome coefficients.
        gamma: Observation coefficients.
        dataset: Observed data.
        perfect_sensitivity: If True, P(Y*=1 | Y=1, Z) = 1.

    Returns:
        ResponsibilityResult with responsibilities of shape (n_subjects, 2).

    Raises:
        InvalidParameterShape: If coefficients do not match the covariates.
        NumericDegeneracyError: If responsibility mass collapses for a subject.
    """
    log_joint = compute_log_joint(beta, gamma, dataset, perfect_sensitivity)
    return normalize_log_joint(log_joint)
