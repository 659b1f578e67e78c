"""
Tests for synthetic data generation.
"""

import numpy as np
import pytest
from scipy.special import expit

from misclassification_service.simulation import simulate_dataset


class TestSimulateDataset:
    def test_shapes_follow_coefficients(self) -> None:
        """Covariate counts are implied by beta and gamma lengths."""
        simulated = simulate_dataset(
            50, [0.0, 1.0, -1.0], np.zeros((2, 2)), np.random.default_rng(0)
        )

        assert simulated.dataset.x.shape == (50, 2)
        assert simulated.dataset.z.shape == (50, 1)
        assert simulated.true_outcome.shape == (50,)
        assert set(np.unique(simulated.true_outcome)) <= {1, 2}

    def test_covariate_distribution(self) -> None:
        simulated = simulate_dataset(
            20000,
            [0.0, 0.0],
            np.zeros((2, 2)),
            np.random.default_rng(1),
            x_mean=2.0,
            x_std=0.5,
            z_mean=-1.0,
            z_std=3.0,
        )
        np.testing.assert_allclose(simulated.dataset.x.mean(), 2.0, atol=0.02)
        np.testing.assert_allclose(simulated.dataset.x.std(), 0.5, atol=0.02)
        np.testing.assert_allclose(simulated.dataset.z.mean(), -1.0, atol=0.1)
        np.testing.assert_allclose(simulated.dataset.z.std(), 3.0, atol=0.1)

    def test_rates_match_model(self) -> None:
        """Empirical class and sensitivity rates match the logistic model."""
        simulated = simulate_dataset(
            40000, [1.0, 0.0], [[2.0, -1.0], [0.0, 0.0]], np.random.default_rng(2)
        )
        true_one = simulated.true_outcome == 1
        observed_one = simulated.dataset.ystar == 1

        np.testing.assert_allclose(true_one.mean(), expit(1.0), atol=0.01)
        np.testing.assert_allclose(observed_one[true_one].mean(), expit(2.0), atol=0.01)
        np.testing.assert_allclose(observed_one[~true_one].mean(), expit(-1.0), atol=0.02)
        np.testing.assert_allclose(
            simulated.misclassification_rate,
            np.mean(observed_one != true_one),
        )

    def test_reproducible(self) -> None:
        first = simulate_dataset(10, [0.5, 1.0], np.ones((2, 2)), np.random.default_rng(3))
        second = simulate_dataset(10, [0.5, 1.0], np.ones((2, 2)), np.random.default_rng(3))
        np.testing.assert_array_equal(first.dataset.ystar, second.dataset.ystar)
        np.testing.assert_array_equal(first.dataset.x, second.dataset.x)

    def test_rejects_empty(self) -> None:
        with pytest.raises(ValueError):
            simulate_dataset(0, [0.0, 1.0], np.zeros((2, 2)))
