"""
Tests for prior specification and validation.
"""

import numpy as np
import pytest
from scipy import stats

from misclassification_service.core.exceptions import InvalidPriorShape
from misclassification_service.estimation.enums import PriorFamily
from misclassification_service.estimation.mcmc.priors import PriorSpecification

N_BETA = 2
N_GAMMA = 2


def gamma_array(value: float) -> np.ndarray:
    arr = np.full((N_GAMMA, 2, 2), value)
    arr[:, :, 1] = np.nan
    return arr


class TestValidation:
    def test_from_scalars_is_valid(self) -> None:
        for family, values in [
            ("uniform", {"lower": -5.0, "upper": 5.0}),
            ("normal", {"mean": 0.0, "std": 2.0}),
            ("double_exponential", {"loc": 0.0, "scale": 1.0}),
            ("t", {"loc": 0.0, "scale": 1.0, "df": 3.0}),
        ]:
            prior = PriorSpecification.from_scalars(family, N_BETA, N_GAMMA, **values)
            prior.validate(N_BETA, N_GAMMA)

    def test_beta_length(self) -> None:
        prior = PriorSpecification.default_uniform(N_BETA + 1, N_GAMMA)
        with pytest.raises(InvalidPriorShape):
            prior.validate(N_BETA, N_GAMMA)

    def test_gamma_shape(self) -> None:
        prior = PriorSpecification.default_uniform(N_BETA, N_GAMMA + 1)
        with pytest.raises(InvalidPriorShape):
            prior.validate(N_BETA, N_GAMMA)

    def test_gamma_reference_must_be_nan(self) -> None:
        """Fixed entries must be marked, not given a prior."""
        prior = PriorSpecification(
            family=PriorFamily.NORMAL,
            beta_parameters={"mean": np.zeros(N_BETA), "std": np.ones(N_BETA)},
            gamma_parameters={
                "mean": np.zeros((N_GAMMA, 2, 2)),
                "std": gamma_array(1.0),
            },
        )
        with pytest.raises(InvalidPriorShape):
            prior.validate(N_BETA, N_GAMMA)

    def test_nan_on_free_entry(self) -> None:
        std = gamma_array(1.0)
        std[0, 0, 0] = np.nan
        prior = PriorSpecification(
            family=PriorFamily.NORMAL,
            beta_parameters={"mean": np.zeros(N_BETA), "std": np.ones(N_BETA)},
            gamma_parameters={"mean": gamma_array(0.0), "std": std},
        )
        with pytest.raises(InvalidPriorShape):
            prior.validate(N_BETA, N_GAMMA)

    def test_missing_parameter(self) -> None:
        prior = PriorSpecification.from_scalars("normal", N_BETA, N_GAMMA, mean=0.0)
        with pytest.raises(InvalidPriorShape):
            prior.validate(N_BETA, N_GAMMA)

    def test_non_positive_scale(self) -> None:
        prior = PriorSpecification.from_scalars(
            "normal", N_BETA, N_GAMMA, mean=0.0, std=0.0
        )
        with pytest.raises(InvalidPriorShape):
            prior.validate(N_BETA, N_GAMMA)

    def test_uniform_bounds_order(self) -> None:
        prior = PriorSpecification.from_scalars(
            "uniform", N_BETA, N_GAMMA, lower=1.0, upper=-1.0
        )
        with pytest.raises(InvalidPriorShape):
            prior.validate(N_BETA, N_GAMMA)


class TestLogPrior:
    def test_densities_follow_family(self) -> None:
        prior = PriorSpecification.from_scalars(
            "t", N_BETA, N_GAMMA, loc=1.0, scale=2.0, df=4.0
        )
        log_prior = prior.log_prior(N_BETA, N_GAMMA)

        assert len(log_prior.beta) == N_BETA
        assert len(log_prior.gamma) == 2 * N_GAMMA
        np.testing.assert_allclose(
            log_prior.beta_component(0, 0.3),
            stats.t(df=4.0, loc=1.0, scale=2.0).logpdf(0.3),
        )

    def test_per_coefficient_gamma_order(self) -> None:
        """Gamma priors follow the class-major free parameter order."""
        mean = gamma_array(0.0)
        mean[1, 1, 0] = 7.0  # slope, j=2
        prior = PriorSpecification(
            family=PriorFamily.NORMAL,
            beta_parameters={"mean": np.zeros(N_BETA), "std": np.ones(N_BETA)},
            gamma_parameters={"mean": mean, "std": gamma_array(1.0)},
        )
        log_prior = prior.log_prior(N_BETA, N_GAMMA)

        # Free order: g11, g21, g12, g22 -> the j=2 slope is last
        assert log_prior.gamma[3].mean() == 7.0
        assert log_prior.gamma[1].mean() == 0.0

    def test_uniform_support(self) -> None:
        log_prior = PriorSpecification.default_uniform(N_BETA, N_GAMMA).log_prior(
            N_BETA, N_GAMMA
        )
        assert np.isfinite(log_prior.gamma_component(0, 9.0))
        assert log_prior.gamma_component(0, 11.0) == -np.inf

    def test_initial_values_inside_support(self) -> None:
        """Starting draws outside a narrow prior are redrawn from the prior."""
        prior = PriorSpecification.from_scalars(
            "uniform", N_BETA, N_GAMMA, lower=5.0, upper=6.0
        )
        beta, gamma = prior.log_prior(N_BETA, N_GAMMA).initial_values(
            np.random.default_rng(0)
        )

        assert beta.shape == (N_BETA,)
        assert gamma.shape == (2 * N_GAMMA,)
        assert ((beta >= 5.0) & (beta <= 6.0)).all()
        assert ((gamma >= 5.0) & (gamma <= 6.0)).all()
