"""
Tests for the single chain Metropolis-within-Gibbs sampler.
"""

import numpy as np
import pytest

from misclassification_service.core.data_models import Dataset
from misclassification_service.estimation.config import SamplingConfig
from misclassification_service.estimation.mcmc.priors import PriorSpecification
from misclassification_service.estimation.mcmc.sampler import (
    MetropolisWithinGibbsSampler,
    tune_scale,
)
from misclassification_service.simulation import simulate_dataset

TRUE_BETA = np.array([0.5, 1.0])
TRUE_GAMMA = np.array([[2.0, -1.0], [1.0, 0.5]])


@pytest.fixture(scope="module")
def dataset() -> Dataset:
    return simulate_dataset(
        300, TRUE_BETA, TRUE_GAMMA, np.random.default_rng(2)
    ).dataset


def make_sampler(
    dataset: Dataset, naive: bool = False, max_seconds: float | None = None
) -> MetropolisWithinGibbsSampler:
    config = SamplingConfig(
        n_chains=1,
        n_samples=100,
        burn_in=100,
        tune_interval=25,
        max_seconds=max_seconds,
    )
    log_prior = PriorSpecification.default_uniform(2, 2).log_prior(2, 2)
    return MetropolisWithinGibbsSampler(dataset, log_prior, config, naive=naive)


class TestTuneScale:
    @pytest.mark.parametrize(
        "rate, factor",
        [
            (0.0, 0.1),
            (0.01, 0.5),
            (0.1, 0.9),
            (0.3, 1.0),
            (0.6, 1.1),
            (0.8, 2.0),
            (0.99, 10.0),
        ],
    )
    def test_factors(self, rate: float, factor: float) -> None:
        assert tune_scale(1.0, rate) == pytest.approx(factor)


class TestChain:
    def test_full_chain_shapes(self, dataset: Dataset) -> None:
        sampler = make_sampler(dataset)
        state = sampler.initial_state(TRUE_BETA, TRUE_GAMMA)
        output = sampler.run(1, state, np.random.default_rng(0))

        assert output.n_draws == 100
        assert output.beta.shape == (100, 2)
        assert output.gamma is not None
        assert output.gamma.shape == (100, 2, 2)
        assert output.acceptance_rates.shape == (6,)
        assert ((output.acceptance_rates >= 0) & (output.acceptance_rates <= 1)).all()
        assert not output.cancelled

    def test_initial_latent_is_observed_outcome(self, dataset: Dataset) -> None:
        state = make_sampler(dataset).initial_state(TRUE_BETA, TRUE_GAMMA)
        np.testing.assert_array_equal(state.latent, dataset.ystar - 1)

    def test_naive_chain_samples_beta_only(self, dataset: Dataset) -> None:
        sampler = make_sampler(dataset, naive=True)
        state = sampler.initial_state(TRUE_BETA, np.zeros((2, 2)))
        output = sampler.run(1, state, np.random.default_rng(0))

        assert output.gamma is None
        assert output.acceptance_rates.shape == (2,)
        # Latent classes never leave Y*
        np.testing.assert_array_equal(state.latent, dataset.ystar - 1)

    def test_reproducible(self, dataset: Dataset) -> None:
        sampler = make_sampler(dataset)
        first = sampler.run(
            1, sampler.initial_state(TRUE_BETA, TRUE_GAMMA), np.random.default_rng(4)
        )
        second = sampler.run(
            1, sampler.initial_state(TRUE_BETA, TRUE_GAMMA), np.random.default_rng(4)
        )
        np.testing.assert_array_equal(first.beta, second.beta)
        np.testing.assert_array_equal(first.gamma, second.gamma)

    def test_stop_request(self, dataset: Dataset) -> None:
        """A stop request ends the chain with the draws made so far."""
        sampler = make_sampler(dataset)
        calls = {"n": 0}

        def stop_after_150() -> bool:
            calls["n"] += 1
            return calls["n"] > 150

        output = sampler.run(
            1,
            sampler.initial_state(TRUE_BETA, TRUE_GAMMA),
            np.random.default_rng(0),
            should_stop=stop_after_150,
        )

        assert output.cancelled
        assert output.n_draws == 50

    def test_exhausted_time_budget(self, dataset: Dataset) -> None:
        sampler = make_sampler(dataset, max_seconds=-1.0)
        output = sampler.run(
            1, sampler.initial_state(TRUE_BETA, TRUE_GAMMA), np.random.default_rng(0)
        )

        assert output.cancelled
        assert output.n_draws == 0
        assert np.isnan(output.acceptance_rates).all()
