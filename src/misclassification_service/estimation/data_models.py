"""
Estimation outputs.

This module defines:
- ComparisonEstimate: Fits under simplifying assumptions (naive, perfect sensitivity)
- EMEstimationResult: Output of the EM estimator
- ChainDiagnostics: Per-chain MCMC health flags
- MCMCEstimationResult: Output of the MCMC estimator
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from misclassification_service.estimation.enums import ConvergenceStatus
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
)


def _estimate_frame(
    names: tuple[str, ...],
    estimates: NDArray[np.float64],
    std_errors: NDArray[np.float64],
    converged: bool,
) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "parameter": list(names),
            "estimate": estimates,
            "std_error": std_errors,
            "converged": converged,
        }
    )


@dataclass(frozen=True)
class ComparisonEstimate:
    """
    Point estimates under a simplifying assumption.

    Attributes:
        method: "naive" (misclassification ignored) or "perfect_sensitivity".
        parameter_names: Names aligned with estimates.
        estimates: Point estimates.
        std_errors: Asymptotic standard errors (NaN if not available).
        log_likelihood: Log-likelihood at the estimates.
        n_iterations: Iterations used (1 for the closed form naive fit).
        convergence_status: How estimation terminated.
    """

    method: str
    parameter_names: tuple[str, ...]
    estimates: NDArray[np.float64]
    std_errors: NDArray[np.float64]
    log_likelihood: float
    n_iterations: int
    convergence_status: ConvergenceStatus

    @property
    def converged(self) -> bool:
        return self.convergence_status == ConvergenceStatus.CONVERGED

    def to_frame(self) -> pd.DataFrame:
        return _estimate_frame(
            self.parameter_names, self.estimates, self.std_errors, self.converged
        )


@dataclass(frozen=True)
class EMEstimationResult:
    """
    Result of EM estimation.

    Attributes:
        beta: True outcome coefficients, label switching corrected.
        gamma: Observation coefficients, label switching corrected.
        uncorrected_beta: beta as the EM iteration left it.
        uncorrected_gamma: gamma as the EM iteration left it.
        label_switched: Whether correction relabeled the classes.
        std_errors: Standard errors aligned with parameter_names (NaN when the
            observed information is not invertible).
        log_likelihood: Observed-data log-likelihood at the estimates.
        n_iterations: Number of EM iterations performed.
        convergence_status: Status indicating how estimation terminated.
        model_version: Version string for reproducibility tracking.
        naive: Logistic regression of Y* on X ignoring misclassification.
        perfect_sensitivity: Constrained refit with P(Y*=1 | Y=1, Z) = 1.
    """

    beta: TrueOutcomeParameters
    gamma: ObservationParameters
    uncorrected_beta: TrueOutcomeParameters
    uncorrected_gamma: ObservationParameters
    label_switched: bool
    std_errors: NDArray[np.float64]
    log_likelihood: float
    n_iterations: int
    convergence_status: ConvergenceStatus
    model_version: str
    naive: ComparisonEstimate | None = None
    perfect_sensitivity: ComparisonEstimate | None = None

    @property
    def converged(self) -> bool:
        """Whether estimation converged successfully."""
        return self.convergence_status == ConvergenceStatus.CONVERGED

    @property
    def parameter_names(self) -> tuple[str, ...]:
        return tuple(self.beta.names + self.gamma.names)

    @property
    def estimates(self) -> NDArray[np.float64]:
        """Corrected estimates, [beta..., gamma (j=1)..., gamma (j=2)...]."""
        return np.concatenate([self.beta.to_array(), self.gamma.to_array()])

    def to_frame(self) -> pd.DataFrame:
        """Table with columns parameter, estimate, std_error, converged."""
        return _estimate_frame(
            self.parameter_names, self.estimates, self.std_errors, self.converged
        )


@dataclass(frozen=True)
class ChainDiagnostics:
    """
    Health flags for one chain.

    Attributes:
        chain: 1-based chain number.
        acceptance_rates: Post burn-in Metropolis acceptance rate per
            parameter, keyed by parameter name.
        n_draws: Post burn-in draws actually produced.
        n_label_switched: Draws relabeled by label switching correction.
        cancelled: Whether the chain stopped early on a time budget or a
            stop request.
    """

    chain: int
    acceptance_rates: dict[str, float]
    n_draws: int
    n_label_switched: int
    cancelled: bool

    @property
    def degenerate_parameters(self) -> list[str]:
        """Parameters whose proposals were always or never accepted."""
        return [
            name
            for name, rate in self.acceptance_rates.items()
            if rate <= 0.0 or rate >= 1.0
        ]

    @property
    def nonconvergent(self) -> bool:
        """Degenerate acceptance or an early stop."""
        return self.cancelled or len(self.degenerate_parameters) > 0


@dataclass(frozen=True)
class MCMCEstimationResult:
    """
    Result of MCMC estimation.

    Attributes:
        posterior_means: Pooled summary, one row per parameter with columns
            parameter, mean, sd, q2.5, q97.5, rhat, mixed.
        posterior_draws: Long table with columns chain, iteration, parameter,
            value; label switching corrected draw by draw.
        naive_posterior_means: Summary of the misclassification-ignoring fit.
        naive_posterior_draws: Draws of the misclassification-ignoring fit.
        diagnostics: One entry per chain of the full model.
        naive_diagnostics: One entry per chain of the naive model.
        model_version: Version string for reproducibility tracking.
    """

    posterior_means: pd.DataFrame
    posterior_draws: pd.DataFrame
    naive_posterior_means: pd.DataFrame
    naive_posterior_draws: pd.DataFrame
    diagnostics: tuple[ChainDiagnostics, ...]
    naive_diagnostics: tuple[ChainDiagnostics, ...]
    model_version: str

    @property
    def n_chains(self) -> int:
        return len(self.diagnostics)

    @property
    def nonconvergent_chains(self) -> list[int]:
        return [d.chain for d in self.diagnostics if d.nonconvergent]

    @property
    def unmixed_parameters(self) -> list[str]:
        """Parameters whose R-hat is flagged in posterior_means."""
        flagged = self.posterior_means[~self.posterior_means["mixed"].astype(bool)]
        return flagged["parameter"].tolist()

    def posterior_mean(self, parameter: str) -> float:
        row = self.posterior_means[self.posterior_means["parameter"] == parameter]
        if row.empty:
            raise KeyError(parameter)
        return float(row["mean"].iloc[0])
