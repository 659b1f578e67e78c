"""
Analytical derivatives for weighted logistic regression.

Both M-step fits and both Metropolis targets are weighted logistic
log-likelihoods. With linear predictor eta_i = x_i . b, target t_i in [0, 1]
(an indicator or a fractional responsibility) and weight w_i >= 0:

    -L(b) = Σ_i w_i * (log(1 + exp(eta_i)) - t_i * eta_i)

Derivatives:
    ∂(-L) / ∂b   = Σ_i w_i * (p_i - t_i) * x_i
    ∂²(-L) / ∂b² = Σ_i w_i * p_i * (1 - p_i) * x_i x_i^T

where p_i = expit(eta_i).
"""

import numpy as np
from numba import njit  # type: ignore
from numpy.typing import NDArray


@njit(nogil=True)  # type: ignore
def _softplus(eta: float) -> float:
    """log(1 + exp(eta)) without overflow."""
    if eta > 0.0:
        return eta + np.log1p(np.exp(-eta))
    return np.log1p(np.exp(eta))


@njit(nogil=True)  # type: ignore
def _expit(eta: float) -> float:
    if eta >= 0.0:
        return 1.0 / (1.0 + np.exp(-eta))
    e = np.exp(eta)
    return e / (1.0 + e)


@njit(nogil=True)  # type: ignore
def weighted_logistic_negative_log_likelihood(
    coefficients: NDArray[np.float64],
    design: NDArray[np.float64],
    target: NDArray[np.float64],
    weight: NDArray[np.float64],
) -> float:
    """
    Negative weighted logistic log-likelihood.

    Args:
        coefficients: Shape (m,).
        design: Design matrix, shape (n, m).
        target: Success indicator or probability, shape (n,).
        weight: Non-negative case weights, shape (n,). Rows with zero weight
            are skipped.

    Returns:
        Negative log-likelihood (to minimize).
    """
    n, m = design.shape
    total = 0.0
    for i in range(n):
        w = weight[i]
        if w == 0.0:
            continue
        eta = 0.0
        for c in range(m):
            eta += design[i, c] * coefficients[c]
        total += w * (_softplus(eta) - target[i] * eta)
    return total


@njit(nogil=True)  # type: ignore
def weighted_logistic_gradient(
    coefficients: NDArray[np.float64],
    design: NDArray[np.float64],
    target: NDArray[np.float64],
    weight: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Gradient of weighted_logistic_negative_log_likelihood, shape (m,)."""
    n, m = design.shape
    grad = np.zeros(m)
    for i in range(n):
        w = weight[i]
        if w == 0.0:
            continue
        eta = 0.0
        for c in range(m):
            eta += design[i, c] * coefficients[c]
        residual = w * (_expit(eta) - target[i])
        for c in range(m):
            grad[c] += residual * design[i, c]
    return grad


@njit(nogil=True)  # type: ignore
def weighted_logistic_hessian(
    coefficients: NDArray[np.float64],
    design: NDArray[np.float64],
    target: NDArray[np.float64],
    weight: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Hessian of weighted_logistic_negative_log_likelihood, shape (m, m).

    Does not depend on target; the argument keeps the signature aligned with
    the objective for scipy.optimize.minimize.
    """
    n, m = design.shape
    hess = np.zeros((m, m))
    for i in range(n):
        w = weight[i]
        if w == 0.0:
            continue
        eta = 0.0
        for c in range(m):
            eta += design[i, c] * coefficients[c]
        p = _expit(eta)
        curvature = w * p * (1.0 - p)
        for a in range(m):
            for b in range(a, m):
                hess[a, b] += curvature * design[i, a] * design[i, b]
    for a in range(m):
        for b in range(a):
            hess[a, b] = hess[b, a]
    return hess
