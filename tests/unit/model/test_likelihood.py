"""
Tests for responsibilities and the observed-data likelihood.
"""

import numpy as np
import pytest
from scipy.special import expit

from misclassification_service.core.data_models import Dataset
from misclassification_service.core.exceptions import NumericDegeneracyError
from misclassification_service.model.likelihood import (
    compute_responsibilities,
    normalize_log_joint,
)
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
)

BETA = TrueOutcomeParameters(coefficients=(0.5, 1.0))
GAMMA = ObservationParameters.from_matrix([[2.0, -0.5], [1.0, 0.8]])


def make_dataset() -> Dataset:
    rng = np.random.default_rng(3)
    n = 40
    return Dataset.from_arrays(
        ystar=rng.integers(1, 3, size=n),
        x=rng.normal(size=n),
        z=rng.normal(size=n),
    )


class TestResponsibilities:
    def test_valid_distribution(self) -> None:
        """Each row lies in [0, 1] and sums to 1."""
        result = compute_responsibilities(BETA, GAMMA, make_dataset())

        assert result.responsibilities.shape == (40, 2)
        assert (result.responsibilities >= 0).all()
        assert (result.responsibilities <= 1).all()
        np.testing.assert_allclose(result.responsibilities.sum(axis=1), 1.0)

    def test_matches_bayes_rule(self) -> None:
        """Responsibilities agree with a direct Bayes computation."""
        dataset = make_dataset()
        result = compute_responsibilities(BETA, GAMMA, dataset)

        x = dataset.x[:, 0]
        z = dataset.z[:, 0]
        prior_one = expit(0.5 + 1.0 * x)
        sens = expit(2.0 + 1.0 * z)
        false_pos = expit(-0.5 + 0.8 * z)
        observed_one = dataset.ystar == 1
        like_one = np.where(observed_one, sens, 1 - sens)
        like_two = np.where(observed_one, false_pos, 1 - false_pos)
        joint_one = prior_one * like_one
        joint_two = (1 - prior_one) * like_two
        marginal = joint_one + joint_two

        np.testing.assert_allclose(
            result.responsibilities[:, 0], joint_one / marginal, rtol=1e-10
        )
        np.testing.assert_allclose(
            result.log_likelihood, np.sum(np.log(marginal)), rtol=1e-10
        )

    def test_extreme_covariates_stay_finite(self) -> None:
        """Large linear predictors do not produce NaN."""
        dataset = Dataset.from_arrays(
            ystar=[1, 2, 1, 2],
            x=np.array([500.0, -500.0, -500.0, 500.0]),
            z=np.array([300.0, -300.0, 300.0, -300.0]),
        )
        result = compute_responsibilities(BETA, GAMMA, dataset)

        assert np.isfinite(result.responsibilities).all()
        np.testing.assert_allclose(result.responsibilities.sum(axis=1), 1.0)

    def test_perfect_sensitivity(self) -> None:
        """With perfect sensitivity, Y*=2 implies Y=2."""
        dataset = make_dataset()
        result = compute_responsibilities(
            BETA, GAMMA, dataset, perfect_sensitivity=True
        )

        observed_two = dataset.ystar == 2
        np.testing.assert_allclose(result.responsibilities[observed_two, 0], 0.0)
        np.testing.assert_allclose(result.responsibilities[observed_two, 1], 1.0)
        assert (result.responsibilities[~observed_two, 0] > 0).all()

    def test_collapsed_mass_raises(self) -> None:
        """A subject with zero mass in every class is reported."""
        log_joint = np.array([[0.0, -1.0], [-np.inf, -np.inf]])
        with pytest.raises(NumericDegeneracyError) as excinfo:
            normalize_log_joint(log_joint)
        assert excinfo.value.subject_indices == [1]
