"""
Logit-scale linear predictors for both mechanisms.
"""

import numpy as np
from numpy.typing import NDArray

from misclassification_service.core.exceptions import InvalidParameterShape
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
)


def check_design_columns(n_coefficients: int, design: NDArray[np.float64], name: str) -> None:
    """
    Check that a design matrix (intercept included) matches a coefficient count.

    Raises:
        InvalidParameterShape: On mismatch.
    """
    if design.ndim != 2 or design.shape[1] != n_coefficients:
        raise InvalidParameterShape(
            f"{name} has {n_coefficients} coefficients but the design matrix "
            f"has shape {design.shape} (expected {n_coefficients} columns "
            "including the intercept)"
        )


def true_outcome_linear_predictor(
    beta: TrueOutcomeParameters,
    x_design: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    Linear predictor X b for P(Y=1 | X).

    Args:
        beta: True outcome coefficients, length p+1.
        x_design: Design matrix with intercept column, shape (n, p+1).

    Returns:
        Logits, shape (n,).
    """
    check_design_columns(beta.n_coefficients, x_design, "beta")
    eta: NDArray[np.float64] = x_design @ beta.to_array()
    return eta


def observation_linear_predictor(
    gamma: ObservationParameters,
    z_design: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    Linear predictors Z g_j for P(Y*=1 | Y=j, Z), one column per true class.

    Args:
        gamma: Observation coefficients.
        z_design: Design matrix with intercept column, shape (n, q+1).

    Returns:
        Logits, shape (n, 2).
    """
    check_design_columns(gamma.n_coefficients, z_design, "gamma")
    eta: NDArray[np.float64] = z_design @ gamma.to_matrix()
    return eta
