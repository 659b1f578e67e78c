"""
Prior specifications for MCMC estimation.

Every free coefficient gets an independent prior from one family:

    uniform             lower, upper
    normal              mean, std
    double_exponential  loc, scale     (Laplace)
    t                   loc, scale, df (Student t)

beta arrays have shape (p+1,). gamma arrays use the full (q+1, 2, 2) layout
[coefficient, j, k] and must carry NaN exactly on the reference observed
class entries, which are fixed at zero and receive no prior.
"""

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numpy.random import Generator
from numpy.typing import NDArray
from scipy import stats

from misclassification_service.core.data_models import N_CLASSES
from misclassification_service.core.exceptions import InvalidPriorShape
from misclassification_service.estimation.enums import PriorFamily
from misclassification_service.model.parameters import (
    REFERENCE_OBSERVED_CLASS,
    reference_mask,
)

FAMILY_PARAMETERS: dict[PriorFamily, tuple[str, ...]] = {
    PriorFamily.UNIFORM: ("lower", "upper"),
    PriorFamily.NORMAL: ("mean", "std"),
    PriorFamily.DOUBLE_EXPONENTIAL: ("loc", "scale"),
    PriorFamily.T: ("loc", "scale", "df"),
}

# Parameters that must be strictly positive
POSITIVE_PARAMETERS = ("std", "scale", "df")

DEFAULT_UNIFORM_BOUNDS = (-10.0, 10.0)


def _frozen_distribution(family: PriorFamily, params: dict[str, float]) -> Any:
    if family == PriorFamily.UNIFORM:
        return stats.uniform(loc=params["lower"], scale=params["upper"] - params["lower"])
    if family == PriorFamily.NORMAL:
        return stats.norm(loc=params["mean"], scale=params["std"])
    if family == PriorFamily.DOUBLE_EXPONENTIAL:
        return stats.laplace(loc=params["loc"], scale=params["scale"])
    return stats.t(df=params["df"], loc=params["loc"], scale=params["scale"])


def _gamma_free_values(arr: NDArray[np.float64]) -> NDArray[np.float64]:
    """Free entries of a (q+1, 2, 2) array in ObservationParameters.to_array() order."""
    free = arr[:, :, 1 - REFERENCE_OBSERVED_CLASS]
    result: NDArray[np.float64] = free.T.ravel()
    return result


def _fill_gamma(value: float, n_gamma: int) -> NDArray[np.float64]:
    arr = np.full((n_gamma, N_CLASSES, N_CLASSES), float(value))
    arr[reference_mask(n_gamma)] = np.nan
    return arr


@dataclass(frozen=True)
class PriorSpecification:
    """
    A named prior family with per-coefficient parameter arrays.

    Attributes:
        family: Prior family.
        beta_parameters: Family parameters for beta, each shape (p+1,).
        gamma_parameters: Family parameters for gamma, each shape
            (q+1, 2, 2) with NaN on the fixed reference entries.
    """

    family: PriorFamily
    beta_parameters: dict[str, NDArray[np.float64]] = field(default_factory=dict)
    gamma_parameters: dict[str, NDArray[np.float64]] = field(default_factory=dict)

    @classmethod
    def from_scalars(
        cls,
        family: PriorFamily | str,
        n_beta: int,
        n_gamma: int,
        **values: float,
    ) -> "PriorSpecification":
        """
        Build a prior with the same parameters for every free coefficient.

        Example:
            PriorSpecification.from_scalars("uniform", 2, 2, lower=-10, upper=10)
        """
        family = PriorFamily(family)
        return cls(
            family=family,
            beta_parameters={
                k: np.full(n_beta, float(v)) for k, v in values.items()
            },
            gamma_parameters={
                k: _fill_gamma(v, n_gamma) for k, v in values.items()
            },
        )

    @classmethod
    def default_uniform(cls, n_beta: int, n_gamma: int) -> "PriorSpecification":
        lower, upper = DEFAULT_UNIFORM_BOUNDS
        return cls.from_scalars(
            PriorFamily.UNIFORM, n_beta, n_gamma, lower=lower, upper=upper
        )

    def validate(self, n_beta: int, n_gamma: int) -> None:
        """
        Check parameter names, shapes, NaN placement and values.

        Args:
            n_beta: Number of beta coefficients (p+1).
            n_gamma: Number of gamma coefficients per vector (q+1).

        Raises:
            InvalidPriorShape: On any inconsistency.
        """
        try:
            family = PriorFamily(self.family)
        except ValueError as e:
            raise InvalidPriorShape(f"Unknown prior family: {self.family}") from e

        required = set(FAMILY_PARAMETERS[family])
        for block, params in (
            ("beta", self.beta_parameters),
            ("gamma", self.gamma_parameters),
        ):
            if set(params) != required:
                raise InvalidPriorShape(
                    f"{family.value} prior for {block} needs parameters "
                    f"{sorted(required)}, got {sorted(params)}"
                )

        for name, values in self.beta_parameters.items():
            arr = self._beta_array(values)
            if arr.shape != (n_beta,):
                raise InvalidPriorShape(
                    f"beta prior '{name}' must have shape ({n_beta},), got "
                    f"{np.asarray(values).shape}"
                )
            if not np.isfinite(arr).all():
                raise InvalidPriorShape(f"beta prior '{name}' must be finite")

        expected_mask = reference_mask(n_gamma)
        for name, values in self.gamma_parameters.items():
            arr = np.asarray(values, dtype=np.float64)
            if arr.shape != expected_mask.shape:
                raise InvalidPriorShape(
                    f"gamma prior '{name}' must have shape {expected_mask.shape}, "
                    f"got {arr.shape}"
                )
            if not np.array_equal(np.isnan(arr), expected_mask):
                raise InvalidPriorShape(
                    f"gamma prior '{name}' must be NaN exactly on the fixed "
                    f"reference entries [:, :, {REFERENCE_OBSERVED_CLASS}]"
                )
            if not np.isfinite(arr[~expected_mask]).all():
                raise InvalidPriorShape(f"gamma prior '{name}' must be finite")

        beta_values = self._free_values(self.beta_parameters, self._beta_array)
        gamma_values = self._free_values(self.gamma_parameters, _gamma_free_values)
        for values in (beta_values, gamma_values):
            for name in POSITIVE_PARAMETERS:
                if name in values and np.any(values[name] <= 0):
                    raise InvalidPriorShape(f"prior '{name}' must be positive")
            if family == PriorFamily.UNIFORM and np.any(
                values["lower"] >= values["upper"]
            ):
                raise InvalidPriorShape("uniform prior needs lower < upper")

    def log_prior(self, n_beta: int, n_gamma: int) -> "LogPrior":
        """Validate and build per-coefficient log densities."""
        self.validate(n_beta, n_gamma)
        family = PriorFamily(self.family)
        beta_values = self._free_values(self.beta_parameters, self._beta_array)
        gamma_values = self._free_values(self.gamma_parameters, _gamma_free_values)
        return LogPrior(
            beta=tuple(
                _frozen_distribution(
                    family, {k: float(v[i]) for k, v in beta_values.items()}
                )
                for i in range(n_beta)
            ),
            gamma=tuple(
                _frozen_distribution(
                    family, {k: float(v[i]) for k, v in gamma_values.items()}
                )
                for i in range(N_CLASSES * n_gamma)
            ),
        )

    @staticmethod
    def _beta_array(values: NDArray[np.floating]) -> NDArray[np.float64]:
        arr = np.asarray(values, dtype=np.float64)
        if arr.ndim == 2 and 1 in arr.shape:
            arr = arr.ravel()
        return arr

    @staticmethod
    def _free_values(
        params: dict[str, NDArray[np.float64]],
        extract: Any,
    ) -> dict[str, NDArray[np.float64]]:
        return {
            k: extract(np.asarray(v, dtype=np.float64)) for k, v in params.items()
        }


@dataclass(frozen=True)
class LogPrior:
    """
    Independent per-coefficient priors.

    Attributes:
        beta: One frozen scipy distribution per beta coefficient.
        gamma: One per free gamma coefficient, in
            ObservationParameters.to_array() order (j-major).
    """

    beta: tuple[Any, ...]
    gamma: tuple[Any, ...]

    def beta_component(self, index: int, value: float) -> float:
        return float(self.beta[index].logpdf(value))

    def gamma_component(self, index: int, value: float) -> float:
        return float(self.gamma[index].logpdf(value))

    def initial_values(
        self, rng: Generator
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """
        Dispersed starting values.

        Standard normal draws, redrawn from the prior itself where a draw
        falls outside the prior's support.

        Returns:
            Tuple of (beta (p+1,), gamma free vector (2 * (q+1),)).
        """

        def draw(dists: tuple[Any, ...]) -> NDArray[np.float64]:
            values = rng.standard_normal(len(dists))
            for i, dist in enumerate(dists):
                if not np.isfinite(dist.logpdf(values[i])):
                    values[i] = float(dist.rvs(random_state=rng))
            return values

        return draw(self.beta), draw(self.gamma)
