"""
Synthetic data from the misclassification model.

Generates covariates, true outcomes and observed outcomes in that order:
    X, Z    ~ Normal(mean, std), independently per column
    Y       ~ P(Y=1 | X)       = expit(X beta)
    Y* | Y  ~ P(Y*=1 | Y=j, Z) = expit(Z g_j)

Used by the tests and by the simulate CLI command.
"""

from dataclasses import dataclass

import numpy as np
from numpy.random import Generator
from numpy.typing import NDArray
from scipy.special import expit

from misclassification_service.core.data_models import Dataset
from misclassification_service.core.utils import add_intercept, get_rng
from misclassification_service.model.linear_predictor import (
    observation_linear_predictor,
    true_outcome_linear_predictor,
)
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
    as_observation_parameters,
    as_true_outcome_parameters,
)


@dataclass(frozen=True)
class SimulatedData:
    """
    A simulated sample.

    Attributes:
        dataset: What an analyst observes (Y*, X, Z).
        true_outcome: Latent true outcome Y coded 1 or 2, shape (n,).
    """

    dataset: Dataset
    true_outcome: NDArray[np.int8]

    @property
    def misclassification_rate(self) -> float:
        return float(np.mean(self.dataset.ystar != self.true_outcome))


def simulate_dataset(
    n: int,
    beta: TrueOutcomeParameters | NDArray[np.floating] | list[float],
    gamma: ObservationParameters | NDArray[np.floating] | list[list[float]],
    rng: Generator | None = None,
    x_mean: float = 0.0,
    x_std: float = 1.0,
    z_mean: float = 0.0,
    z_std: float = 1.0,
) -> SimulatedData:
    """
    Draw n subjects from the model.

    Args:
        n: Number of subjects.
        beta: True outcome coefficients; p = len(beta) - 1 X columns are drawn.
        gamma: Observation coefficients, (q+1, 2) or the full (q+1, 2, 2)
            layout; q Z columns are drawn.
        rng: Random generator. Fresh entropy if None.
        x_mean: Mean of every X column.
        x_std: Standard deviation of every X column.
        z_mean: Mean of every Z column.
        z_std: Standard deviation of every Z column.

    Returns:
        SimulatedData with the observed dataset and the latent outcome.
    """
    if n < 1:
        raise ValueError(f"n must be positive, got {n}")
    rng = rng or get_rng()
    beta = as_true_outcome_parameters(beta)
    gamma = as_observation_parameters(gamma)

    x = rng.normal(x_mean, x_std, size=(n, beta.n_coefficients - 1))
    z = rng.normal(z_mean, z_std, size=(n, gamma.n_coefficients - 1))

    prob_true_one = expit(true_outcome_linear_predictor(beta, add_intercept(x)))
    true_index = (rng.random(n) >= prob_true_one).astype(np.int64)

    # P(Y*=1 | Y=j, Z) for each subject's own j
    eta = observation_linear_predictor(gamma, add_intercept(z))
    prob_observed_one = expit(eta[np.arange(n), true_index])
    observed_index = (rng.random(n) >= prob_observed_one).astype(np.int64)

    dataset = Dataset.from_arrays(ystar=observed_index + 1, x=x, z=z)
    return SimulatedData(
        dataset=dataset, true_outcome=(true_index + 1).astype(np.int8)
    )
