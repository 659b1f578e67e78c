"""
Core utility functions shared across modules.
"""

import numpy as np
from numpy.random import Generator
from numpy.typing import NDArray


def get_rng(seed: int | None = None) -> Generator:
    """
    Create a numpy random Generator with optional seed.

    Args:
        seed: Random seed for reproducibility. If None, uses entropy.

    Returns:
        A numpy random Generator instance.
    """
    return np.random.default_rng(seed)


def add_intercept(matrix: NDArray[np.floating]) -> NDArray[np.float64]:
    """
    Prepend a column of ones to a covariate matrix.

    Args:
        matrix: Covariates, shape (n,) or (n, m).

    Returns:
        Design matrix of shape (n, m + 1), first column all ones.
    """
    values = np.asarray(matrix, dtype=np.float64)
    if values.ndim == 1:
        values = values[:, np.newaxis]
    ones = np.ones((values.shape[0], 1), dtype=np.float64)
    design: NDArray[np.float64] = np.hstack([ones, values])
    return design
