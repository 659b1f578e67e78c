"""
Coefficient representations for the two logistic mechanisms.

True outcome mechanism (beta):
    P(Y=1 | X) = expit(b_0 + b_1 x_1 + ... + b_p x_p),  P(Y=2 | X) = 1 - P(Y=1 | X)

Observation mechanism (gamma), one coefficient vector per (true class j,
observed class k):
    P(Y*=k | Y=j, Z) = exp(g_kj . z) / (1 + exp(g_kj . z))   for k = 1
    P(Y*=2 | Y=j, Z) = 1 - P(Y*=1 | Y=j, Z)

The reference observed class (k=2) coefficients are structurally fixed at
zero. They are never estimated, sampled or given a prior; in the full
(q+1, 2, 2) layout they are marked with NaN.
"""

from typing import Self

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from misclassification_service.core.data_models import N_CLASSES
from misclassification_service.core.exceptions import InvalidParameterShape

# Index of the observed class whose coefficients are fixed at zero
REFERENCE_OBSERVED_CLASS = 1


def beta_names(n_coefficients: int) -> list[str]:
    """Parameter names for beta: beta1 (intercept), beta2, ..."""
    return [f"beta{c + 1}" for c in range(n_coefficients)]


def gamma_names(n_coefficients: int) -> list[str]:
    """
    Parameter names for the free gamma entries, in to_array() order.

    gamma{c}{j}: coefficient c (1 = intercept) for true class j.
    """
    return [
        f"gamma{c + 1}{j + 1}"
        for j in range(N_CLASSES)
        for c in range(n_coefficients)
    ]


class TrueOutcomeParameters(BaseModel):
    """
    Coefficients of the true outcome mechanism.

    Attributes:
        coefficients: Intercept followed by one slope per X column.
    """

    model_config = ConfigDict(frozen=True)

    coefficients: tuple[float, ...]

    @model_validator(mode="after")
    def _validate_not_empty(self) -> "TrueOutcomeParameters":
        if len(self.coefficients) < 1:
            raise ValueError("beta must have at least an intercept")
        return self

    @property
    def n_coefficients(self) -> int:
        """Number of coefficients (p + 1)."""
        return len(self.coefficients)

    @property
    def names(self) -> list[str]:
        return beta_names(self.n_coefficients)

    def to_array(self) -> NDArray[np.float64]:
        return np.array(self.coefficients, dtype=np.float64)

    @classmethod
    def from_array(cls, arr: NDArray[np.floating] | list[float]) -> Self:
        """
        Build from a vector, or a (p+1, 1) / (1, p+1) matrix.

        Raises:
            InvalidParameterShape: If the input is not vector-like or has
                non-finite entries.
        """
        values = np.asarray(arr, dtype=np.float64)
        if values.ndim == 2 and 1 in values.shape:
            values = values.ravel()
        if values.ndim != 1 or values.size == 0:
            raise InvalidParameterShape(
                f"beta must be a vector of length p+1, got shape {values.shape}"
            )
        if not np.isfinite(values).all():
            raise InvalidParameterShape("beta must not contain NaN or inf")
        return cls(coefficients=tuple(float(v) for v in values))

    @classmethod
    def zeros(cls, n_coefficients: int) -> Self:
        return cls(coefficients=tuple(0.0 for _ in range(n_coefficients)))


class ObservationParameters(BaseModel):
    """
    Free coefficients of the observation mechanism.

    Attributes:
        coefficients: One tuple per true class j (length 2), each holding the
            intercept and slopes (length q+1) of P(Y*=1 | Y=j, Z).
    """

    model_config = ConfigDict(frozen=True)

    coefficients: tuple[tuple[float, ...], ...]

    @model_validator(mode="after")
    def _validate_two_true_classes(self) -> "ObservationParameters":
        if len(self.coefficients) != N_CLASSES:
            raise ValueError(
                f"gamma must have one coefficient vector per true class "
                f"({N_CLASSES}), got {len(self.coefficients)}"
            )
        return self

    @model_validator(mode="after")
    def _validate_same_length(self) -> "ObservationParameters":
        lengths = {len(c) for c in self.coefficients}
        if len(lengths) != 1 or 0 in lengths:
            raise ValueError(
                f"gamma vectors must be non-empty and equally long, got "
                f"lengths {[len(c) for c in self.coefficients]}"
            )
        return self

    @property
    def n_coefficients(self) -> int:
        """Number of coefficients per vector (q + 1)."""
        return len(self.coefficients[0])

    @property
    def names(self) -> list[str]:
        return gamma_names(self.n_coefficients)

    @property
    def fixed_mask(self) -> NDArray[np.bool_]:
        """True where the full (q+1, 2, 2) layout is fixed at zero."""
        return reference_mask(self.n_coefficients)

    def to_matrix(self) -> NDArray[np.float64]:
        """Free coefficients as a (q+1, 2) matrix indexed [coefficient, j]."""
        return np.array(self.coefficients, dtype=np.float64).T

    def to_full_array(self) -> NDArray[np.float64]:
        """Full (q+1, 2, 2) layout [coefficient, j, k] with NaN on fixed entries."""
        full = np.full((self.n_coefficients, N_CLASSES, N_CLASSES), np.nan)
        full[:, :, 1 - REFERENCE_OBSERVED_CLASS] = self.to_matrix()
        return full

    def to_array(self) -> NDArray[np.float64]:
        """
        Flatten free parameters for optimization.

        Layout: [g_0 (j=1), ..., g_q (j=1), g_0 (j=2), ..., g_q (j=2)]
        """
        return np.array(self.coefficients, dtype=np.float64).ravel()

    @classmethod
    def from_array(cls, arr: NDArray[np.floating], n_coefficients: int) -> Self:
        """Inverse of to_array()."""
        values = np.asarray(arr, dtype=np.float64).reshape(N_CLASSES, n_coefficients)
        return cls(
            coefficients=tuple(
                tuple(float(v) for v in row) for row in values
            )
        )

    @classmethod
    def from_matrix(cls, matrix: NDArray[np.floating] | list[list[float]]) -> Self:
        """
        Build from a (q+1, 2) matrix [coefficient, j] of free coefficients.

        Raises:
            InvalidParameterShape: If the matrix does not have 2 columns or
                has non-finite entries.
        """
        values = np.asarray(matrix, dtype=np.float64)
        if values.ndim == 1 and values.size == N_CLASSES:
            values = values[np.newaxis, :]
        if values.ndim != 2 or values.shape[1] != N_CLASSES:
            raise InvalidParameterShape(
                f"gamma matrix must have shape (q+1, {N_CLASSES}), "
                f"got {values.shape}"
            )
        if not np.isfinite(values).all():
            raise InvalidParameterShape("gamma must not contain NaN or inf")
        return cls.from_array(values.T.ravel(), values.shape[0])

    @classmethod
    def from_full_array(cls, arr: NDArray[np.floating]) -> Self:
        """
        Build from the full (q+1, 2, 2) layout with NaN on fixed entries.

        Raises:
            InvalidParameterShape: On wrong dimensions, or if NaN markers are
                not exactly the reference observed class entries.
        """
        values = np.asarray(arr, dtype=np.float64)
        if values.ndim != 3 or values.shape[1:] != (N_CLASSES, N_CLASSES):
            raise InvalidParameterShape(
                f"gamma array must have shape (q+1, {N_CLASSES}, {N_CLASSES}), "
                f"got {values.shape}"
            )
        expected_fixed = reference_mask(values.shape[0])
        if not np.array_equal(np.isnan(values), expected_fixed):
            raise InvalidParameterShape(
                "gamma NaN markers must be exactly the reference observed "
                f"class entries [:, :, {REFERENCE_OBSERVED_CLASS}]"
            )
        return cls.from_matrix(values[:, :, 1 - REFERENCE_OBSERVED_CLASS])

    @classmethod
    def zeros(cls, n_coefficients: int) -> Self:
        return cls.from_matrix(np.zeros((n_coefficients, N_CLASSES)))


def reference_mask(n_coefficients: int) -> NDArray[np.bool_]:
    """Fixed-entry mask for a (q+1, 2, 2) gamma layout."""
    mask = np.zeros((n_coefficients, N_CLASSES, N_CLASSES), dtype=np.bool_)
    mask[:, :, REFERENCE_OBSERVED_CLASS] = True
    return mask


def as_observation_parameters(
    gamma: ObservationParameters | NDArray[np.floating] | list[list[float]],
) -> ObservationParameters:
    """Accept parameters, a (q+1, 2) matrix or a full (q+1, 2, 2) array."""
    if isinstance(gamma, ObservationParameters):
        return gamma
    values = np.asarray(gamma, dtype=np.float64)
    if values.ndim == 3:
        return ObservationParameters.from_full_array(values)
    return ObservationParameters.from_matrix(values)


def as_true_outcome_parameters(
    beta: TrueOutcomeParameters | NDArray[np.floating] | list[float],
) -> TrueOutcomeParameters:
    """Accept parameters or a vector-like array."""
    if isinstance(beta, TrueOutcomeParameters):
        return beta
    return TrueOutcomeParameters.from_array(beta)
