"""
Data models for estimation input.

This module defines:
- Observation: One subject's observed outcome and covariate rows
- Dataset: The ordered collection of observations consumed by the estimators
"""

from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from misclassification_service.core.utils import add_intercept

# Outcome codes. Class 1 is the non-reference observed class.
OUTCOME_CLASSES = (1, 2)
N_CLASSES = len(OUTCOME_CLASSES)


@dataclass(frozen=True)
class Observation:
    """
    One subject's record.

    Attributes:
        ystar: Observed (possibly misclassified) outcome, 1 or 2.
        x: True-mechanism covariates, shape (p,).
        z: Observation-mechanism covariates, shape (q,).
    """

    ystar: int
    x: NDArray[np.float64]
    z: NDArray[np.float64]


def _as_covariate_matrix(values: NDArray[np.floating], name: str) -> NDArray[np.float64]:
    matrix = np.asarray(values, dtype=np.float64)
    if matrix.ndim == 1:
        matrix = matrix[:, np.newaxis]
    if matrix.ndim != 2:
        raise ValueError(f"{name} must be 1D or 2D, got shape {matrix.shape}")
    return matrix


@dataclass(frozen=True)
class Dataset:
    """
    Observed outcomes and covariates for estimation.

    Attributes:
        ystar: Observed outcomes coded 1 or 2, shape (n,).
        x: True-outcome covariates, shape (n, p).
        z: Observation-mechanism covariates, shape (n, q).
    """

    ystar: NDArray[np.int8]
    x: NDArray[np.float64]
    z: NDArray[np.float64]

    def __post_init__(self) -> None:
        """Validate shapes and values."""
        if self.ystar.ndim != 1:
            raise ValueError(f"ystar must be 1D, got shape {self.ystar.shape}")
        if self.x.ndim != 2 or self.z.ndim != 2:
            raise ValueError(
                f"x and z must be 2D, got shapes {self.x.shape} and {self.z.shape}"
            )
        n = self.ystar.shape[0]
        if self.x.shape[0] != n or self.z.shape[0] != n:
            raise ValueError(
                f"Row counts must match: ystar={n}, "
                f"x={self.x.shape[0]}, z={self.z.shape[0]}"
            )
        if n == 0:
            raise ValueError("Dataset must contain at least one observation")
        if not np.isin(self.ystar, OUTCOME_CLASSES).all():
            bad = np.unique(self.ystar[~np.isin(self.ystar, OUTCOME_CLASSES)])
            raise ValueError(f"ystar values must be 1 or 2, got {bad.tolist()}")
        if not (np.isfinite(self.x).all() and np.isfinite(self.z).all()):
            raise ValueError("Covariates must not contain missing values")

    @classmethod
    def from_arrays(
        cls,
        ystar: NDArray[np.integer] | list[int],
        x: NDArray[np.floating],
        z: NDArray[np.floating],
    ) -> "Dataset":
        """
        Build a Dataset from loosely shaped arrays.

        One-dimensional covariates are treated as a single column.
        """
        outcomes = np.asarray(ystar)
        if not np.all(np.equal(np.mod(outcomes, 1), 0)):
            raise ValueError("ystar values must be integers")
        return cls(
            ystar=outcomes.astype(np.int8),
            x=_as_covariate_matrix(x, "x"),
            z=_as_covariate_matrix(z, "z"),
        )

    @property
    def n_subjects(self) -> int:
        """Number of observations (rows)."""
        return self.ystar.shape[0]

    @property
    def n_x_covariates(self) -> int:
        """Number of true-mechanism covariates (p), intercept excluded."""
        return self.x.shape[1]

    @property
    def n_z_covariates(self) -> int:
        """Number of observation-mechanism covariates (q), intercept excluded."""
        return self.z.shape[1]

    @property
    def x_design(self) -> NDArray[np.float64]:
        """X with an intercept column, shape (n, p + 1)."""
        return add_intercept(self.x)

    @property
    def z_design(self) -> NDArray[np.float64]:
        """Z with an intercept column, shape (n, q + 1)."""
        return add_intercept(self.z)

    @property
    def observed_class_index(self) -> NDArray[np.int64]:
        """Observed outcome as a 0-based class index."""
        result: NDArray[np.int64] = self.ystar.astype(np.int64) - 1
        return result

    @property
    def observed_is_class_one(self) -> NDArray[np.float64]:
        """Indicator 1{Y* = 1} as floats."""
        result: NDArray[np.float64] = (self.ystar == 1).astype(np.float64)
        return result

    def observations(self) -> Iterator[Observation]:
        """Iterate over subjects in row order."""
        for i in range(self.n_subjects):
            yield Observation(
                ystar=int(self.ystar[i]),
                x=self.x[i].copy(),
                z=self.z[i].copy(),
            )
