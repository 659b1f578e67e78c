"""
End-to-end scenario: simulate, fit by EM and by MCMC, compare.

n = 1000 subjects, beta = (1, -2), gamma = [[0.5, -0.5], [1, -1]]
([coefficient, j]), all-ones starting values, 4 chains of 2000 kept draws.

At this sample size standard errors and posterior SDs reach 0.3 to 0.8 for
the slopes, so recovery is checked in units of estimated uncertainty rather
than against a fixed absolute tolerance.
"""

import numpy as np
import pandas as pd
import pytest

from misclassification_service.estimation.config import (
    EstimationConfig,
    SamplingConfig,
)
from misclassification_service.estimation.data_models import (
    EMEstimationResult,
    MCMCEstimationResult,
)
from misclassification_service.estimation.em import EMEstimator
from misclassification_service.estimation.mcmc import (
    MCMCEstimator,
    PriorSpecification,
)
from misclassification_service.simulation import SimulatedData, simulate_dataset

TRUE_BETA = np.array([1.0, -2.0])
TRUE_GAMMA = np.array([[0.5, -0.5], [1.0, -1.0]])
N_SUBJECTS = 1000
N_CHAINS = 4
N_SAMPLES = 2000
SEED = 2024
MAX_Z = 3.0
MAX_RHAT = 1.5

# beta1, beta2, gamma11, gamma21, gamma12, gamma22
TRUE_VALUES = pd.Series(
    np.concatenate([TRUE_BETA, TRUE_GAMMA.T.ravel()]),
    index=["beta1", "beta2", "gamma11", "gamma21", "gamma12", "gamma22"],
)


@pytest.fixture(scope="module")
def simulated() -> SimulatedData:
    return simulate_dataset(
        N_SUBJECTS, TRUE_BETA, TRUE_GAMMA, np.random.default_rng(SEED)
    )


@pytest.fixture(scope="module")
def em_result(simulated: SimulatedData) -> EMEstimationResult:
    return EMEstimator().fit(simulated.dataset, np.ones(2), np.ones((2, 2)))


@pytest.fixture(scope="module")
def mcmc_result(simulated: SimulatedData) -> MCMCEstimationResult:
    config = EstimationConfig(
        sampling=SamplingConfig(
            n_chains=N_CHAINS, n_samples=N_SAMPLES, burn_in=1000, n_jobs=N_CHAINS
        )
    )
    prior = PriorSpecification.default_uniform(2, 2)
    return MCMCEstimator(config, rng=np.random.default_rng(SEED)).fit(
        simulated.dataset, prior, beta_start=np.ones(2), gamma_start=np.ones((2, 2))
    )


def test_em_recovers_true_parameters(em_result: EMEstimationResult) -> None:
    """Every EM estimate lies within a few standard errors of the truth."""
    assert em_result.converged

    frame = em_result.to_frame().set_index("parameter")
    assert list(frame.index) == list(TRUE_VALUES.index)
    assert np.isfinite(frame["std_error"]).all()

    z = (frame["estimate"] - TRUE_VALUES) / frame["std_error"]
    print(f"\n{frame.assign(truth=TRUE_VALUES, z=z).to_string()}")
    assert (z.abs() < MAX_Z).all()


def test_mcmc_recovers_true_parameters(mcmc_result: MCMCEstimationResult) -> None:
    """
    Posterior means lie within a few posterior SDs of the truth.

    Assertions:
    - Every parameter has n_chains * n_samples draws
    - No chain was cancelled
    - R-hat is defined and not far from 1 (flags are reported)
    """
    counts = mcmc_result.posterior_draws.groupby("parameter").size()
    assert len(counts) == 6
    assert (counts == N_CHAINS * N_SAMPLES).all()
    assert not any(d.cancelled for d in mcmc_result.diagnostics)

    summary = mcmc_result.posterior_means.set_index("parameter")
    z = (summary["mean"] - TRUE_VALUES) / summary["sd"]
    print(f"\n{summary.assign(truth=TRUE_VALUES, z=z).to_string()}")
    print(f"Parameters flagged by R-hat: {mcmc_result.unmixed_parameters}")

    assert (summary["sd"] > 0).all()
    assert (z.abs() < MAX_Z).all()
    assert np.isfinite(summary["rhat"]).all()
    assert (summary["rhat"] < MAX_RHAT).all()


def test_em_and_mcmc_agree(
    em_result: EMEstimationResult, mcmc_result: MCMCEstimationResult
) -> None:
    """Posterior means lie close to the EM estimates."""
    summary = mcmc_result.posterior_means.set_index("parameter")
    comparison = em_result.to_frame().set_index("parameter")
    comparison["posterior_mean"] = summary["mean"]
    comparison["posterior_sd"] = summary["sd"]

    tolerance = np.maximum(0.3, 2.0 * comparison["posterior_sd"])
    assert (
        np.abs(comparison["posterior_mean"] - comparison["estimate"]) < tolerance
    ).all()

    assert mcmc_result.naive_posterior_means["parameter"].tolist() == [
        "beta1",
        "beta2",
    ]
