"""
Misclassification probabilities P(Y*=k | Y=j, Z).

For the non-reference observed class k=1:
    P(Y*=1 | Y=j, Z) = exp(g_j . z) / (1 + exp(g_j . z))
and the reference class takes the complement so that, for every subject and
true class j, the probabilities over k sum to one.
"""

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.special import expit, log_expit

from misclassification_service.core.data_models import N_CLASSES, OUTCOME_CLASSES
from misclassification_service.core.exceptions import InvalidParameterShape
from misclassification_service.core.utils import add_intercept
from misclassification_service.model.linear_predictor import (
    observation_linear_predictor,
)
from misclassification_service.model.parameters import (
    ObservationParameters,
    as_observation_parameters,
)


def compute_misclassification_probabilities(
    gamma: ObservationParameters,
    z_design: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    Compute P(Y*=k | Y=j, Z) for every subject and (j, k) pair.

    Args:
        gamma: Observation mechanism coefficients.
        z_design: Design matrix with intercept column, shape (n, q+1).

    Returns:
        Probabilities, shape (n, 2, 2) indexed [subject, j, k].

    Raises:
        InvalidParameterShape: If gamma does not match the columns of Z.
    """
    eta = observation_linear_predictor(gamma, z_design)
    probs = np.empty((eta.shape[0], N_CLASSES, N_CLASSES), dtype=np.float64)
    probs[:, :, 0] = expit(eta)
    # Complement via expit(-eta) keeps precision when P(Y*=1) is close to 1
    probs[:, :, 1] = expit(-eta)
    return probs


def compute_log_misclassification_probabilities(
    gamma: ObservationParameters,
    z_design: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    Log-space version of compute_misclassification_probabilities.

    Returns:
        log P(Y*=k | Y=j, Z), shape (n, 2, 2). Finite for finite inputs.
    """
    eta = observation_linear_predictor(gamma, z_design)
    log_probs = np.empty((eta.shape[0], N_CLASSES, N_CLASSES), dtype=np.float64)
    log_probs[:, :, 0] = log_expit(eta)
    log_probs[:, :, 1] = log_expit(-eta)
    return log_probs


def misclassification_table(
    gamma: ObservationParameters | NDArray[np.floating] | list[list[float]],
    z: NDArray[np.floating],
) -> pd.DataFrame:
    """
    Long-format misclassification probabilities for a single covariate.

    Used to summarise sensitivity P(Y*=1 | Y=1, z) and specificity
    P(Y*=2 | Y=2, z) along a covariate.

    Args:
        gamma: Observation parameters, a (2, 2) matrix [coefficient, j] or
            the full (2, 2, 2) layout with NaN reference markers.
        z: Covariate values, shape (n,) or (n, 1). No intercept column.

    Returns:
        DataFrame with columns true_class, observed_class, z, probability;
        one row per (subject, true class, observed class).

    Raises:
        InvalidParameterShape: If z is not a single column or gamma does not
            have exactly an intercept and one slope.
    """
    params = as_observation_parameters(gamma)
    values = np.asarray(z, dtype=np.float64)
    if values.ndim == 2 and values.shape[1] == 1:
        values = values[:, 0]
    if values.ndim != 1:
        raise InvalidParameterShape(
            f"z must be a single column, got shape {values.shape}"
        )

    probs = compute_misclassification_probabilities(params, add_intercept(values))

    n = values.shape[0]
    true_class = np.repeat(np.array(OUTCOME_CLASSES), N_CLASSES)
    observed_class = np.tile(np.array(OUTCOME_CLASSES), N_CLASSES)
    return pd.DataFrame(
        {
            "true_class": np.tile(true_class, n),
            "observed_class": np.tile(observed_class, n),
            "z": np.repeat(values, N_CLASSES * N_CLASSES),
            "probability": probs.reshape(n * N_CLASSES * N_CLASSES),
        }
    )
