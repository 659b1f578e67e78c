"""
Maximum likelihood estimation by the EM algorithm.

The true outcome Y is treated as missing data. Each iteration:
    E-step: responsibilities w_ij = P(Y=j | Y*, X, Z) at the current values.
    M-step: beta  <- weighted logistic fit of w_i1 on X
            g_j   <- logistic fit of 1{Y*=1} on Z with case weights w_ij

The fixed point map can be accelerated with SQUAREM (Varadhan & Roland,
2008), which extrapolates along two successive EM steps and falls back to
the plain EM step whenever the extrapolation decreases the likelihood.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import minimize

from misclassification_service.core.data_models import N_CLASSES, Dataset
from misclassification_service.core.exceptions import (
    InvalidParameterShape,
    NumericDegeneracyError,
)
from misclassification_service.estimation.config import EstimationConfig
from misclassification_service.estimation.data_models import (
    ComparisonEstimate,
    EMEstimationResult,
)
from misclassification_service.estimation.enums import (
    ConvergenceStatus,
    EMMethod,
)
from misclassification_service.estimation.gradients import (
    weighted_logistic_gradient,
    weighted_logistic_hessian,
    weighted_logistic_negative_log_likelihood,
)
from misclassification_service.model.label_switching import (
    LabelSwitchCorrector,
)
from misclassification_service.model.likelihood import (
    ResponsibilityResult,
    compute_responsibilities,
)
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
    as_observation_parameters,
    as_true_outcome_parameters,
    beta_names,
)

logger = logging.getLogger(__name__)

# SQUAREM extrapolation step bounds (steplength alpha is negative)
SQUAREM_MIN_STEP = -1.0
SQUAREM_MAX_STEP = -64.0

StopCallback = Callable[[], bool]


@dataclass(frozen=True)
class _EMProblem:
    """
    Flattened view of one EM problem.

    The parameter vector is [beta (p+1), g_j for each estimated j (q+1 each)].
    With perfect sensitivity only j=2 is estimated and the j=1 vector is a
    placeholder that the likelihood ignores.
    """

    dataset: Dataset
    x_design: NDArray[np.float64]
    z_design: NDArray[np.float64]
    observed_one: NDArray[np.float64]
    perfect_sensitivity: bool

    @property
    def n_beta(self) -> int:
        return self.x_design.shape[1]

    @property
    def n_gamma(self) -> int:
        return self.z_design.shape[1]

    @property
    def estimated_classes(self) -> tuple[int, ...]:
        return (1,) if self.perfect_sensitivity else tuple(range(N_CLASSES))

    def unpack(
        self, theta: NDArray[np.float64]
    ) -> tuple[TrueOutcomeParameters, ObservationParameters]:
        beta = TrueOutcomeParameters.from_array(theta[: self.n_beta])
        gamma_matrix = np.zeros((self.n_gamma, N_CLASSES), dtype=np.float64)
        offset = self.n_beta
        for j in self.estimated_classes:
            gamma_matrix[:, j] = theta[offset : offset + self.n_gamma]
            offset += self.n_gamma
        return beta, ObservationParameters.from_matrix(gamma_matrix)

    def pack(
        self, beta: TrueOutcomeParameters, gamma: ObservationParameters
    ) -> NDArray[np.float64]:
        matrix = gamma.to_matrix()
        parts = [beta.to_array()] + [matrix[:, j] for j in self.estimated_classes]
        return np.concatenate(parts)

    def e_step(self, theta: NDArray[np.float64]) -> ResponsibilityResult:
        beta, gamma = self.unpack(theta)
        return compute_responsibilities(
            beta, gamma, self.dataset, self.perfect_sensitivity
        )

    def score(self, theta: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Gradient of the observed-data log-likelihood.

        By Fisher's identity this is the complete-data score averaged over
        the responsibilities evaluated at theta.
        """
        w = self.e_step(theta).responsibilities
        beta = theta[: self.n_beta]
        parts = [
            -weighted_logistic_gradient(
                beta, self.x_design, w[:, 0].copy(), np.ones(w.shape[0])
            )
        ]
        offset = self.n_beta
        for j in self.estimated_classes:
            gamma_j = theta[offset : offset + self.n_gamma]
            parts.append(
                -weighted_logistic_gradient(
                    gamma_j, self.z_design, self.observed_one, w[:, j].copy()
                )
            )
            offset += self.n_gamma
        return np.concatenate(parts)


class EMEstimator:
    """
    Misclassified binary outcome estimator using EM.

    The model:
        P(Y=1 | X)        = expit(X beta)
        P(Y*=1 | Y=j, Z)  = expit(Z g_j),  j in {1, 2}

    Each M-step fit is a trust region Newton solve with analytical gradient
    and Hessian, warm-started at the current values.
    """

    def __init__(self, config: EstimationConfig | None = None):
        """Initialize EM estimator."""
        self.config = config or EstimationConfig()

    def fit(
        self,
        dataset: Dataset,
        beta_start: TrueOutcomeParameters | NDArray[np.floating] | list[float],
        gamma_start: ObservationParameters | NDArray[np.floating] | list[list[float]],
        should_stop: StopCallback | None = None,
        include_comparisons: bool = True,
    ) -> EMEstimationResult:
        """
        Fit the model by EM.

        Args:
            dataset: Observed outcomes and covariates.
            beta_start: Starting beta, length p+1.
            gamma_start: Starting gamma, a (q+1, 2) matrix [coefficient, j]
                or the full (q+1, 2, 2) layout with NaN reference markers.
            should_stop: Optional callable checked between iterations; a
                True return stops estimation with status CANCELLED.
            include_comparisons: Also compute the naive and the perfect
                sensitivity fits.

        Returns:
            EMEstimationResult with label switching corrected estimates.

        Raises:
            InvalidParameterShape: If starting values do not match the data.
        """
        beta0 = as_true_outcome_parameters(beta_start)
        gamma0 = as_observation_parameters(gamma_start)
        self._validate_shapes(dataset, beta0, gamma0)

        problem = self._problem(dataset, perfect_sensitivity=False)
        theta, n_iterations, status = self._iterate(
            problem, problem.pack(beta0, gamma0), should_stop
        )
        raw_beta, raw_gamma = problem.unpack(theta)

        corrector = LabelSwitchCorrector(
            self.config.label_switch, z_design=problem.z_design
        )
        beta, gamma, switched = corrector.correct(raw_beta, raw_gamma)
        theta = problem.pack(beta, gamma)

        e_result = problem.e_step(theta)
        std_errors = self._standard_errors(problem, theta)

        logger.info(
            f"EM {status.value} after {n_iterations} iterations, "
            f"LL = {e_result.log_likelihood:.4f}"
        )

        naive = None
        perfect = None
        if include_comparisons:
            naive = self.fit_naive(dataset)
            perfect = self.fit_perfect_sensitivity(
                dataset, beta0, gamma0, should_stop
            )

        return EMEstimationResult(
            beta=beta,
            gamma=gamma,
            uncorrected_beta=raw_beta,
            uncorrected_gamma=raw_gamma,
            label_switched=switched,
            std_errors=std_errors,
            log_likelihood=e_result.log_likelihood,
            n_iterations=n_iterations,
            convergence_status=status,
            model_version=self.config.model_version,
            naive=naive,
            perfect_sensitivity=perfect,
        )

    def fit_perfect_sensitivity(
        self,
        dataset: Dataset,
        beta_start: TrueOutcomeParameters | NDArray[np.floating] | list[float],
        gamma_start: ObservationParameters | NDArray[np.floating] | list[list[float]],
        should_stop: StopCallback | None = None,
    ) -> ComparisonEstimate:
        """
        Constrained refit assuming P(Y*=1 | Y=1, Z) = 1.

        Only beta and the j=2 observation coefficients are estimated; the
        constraint fixes the labeling, so no label switching correction is
        applied.
        """
        beta0 = as_true_outcome_parameters(beta_start)
        gamma0 = as_observation_parameters(gamma_start)
        self._validate_shapes(dataset, beta0, gamma0)

        problem = self._problem(dataset, perfect_sensitivity=True)
        theta, n_iterations, status = self._iterate(
            problem, problem.pack(beta0, gamma0), should_stop
        )
        e_result = problem.e_step(theta)

        n_gamma = problem.n_gamma
        names = beta_names(problem.n_beta) + [
            f"gamma{c + 1}2" for c in range(n_gamma)
        ]
        return ComparisonEstimate(
            method="perfect_sensitivity",
            parameter_names=tuple(names),
            estimates=theta,
            std_errors=self._standard_errors(problem, theta),
            log_likelihood=e_result.log_likelihood,
            n_iterations=n_iterations,
            convergence_status=status,
        )

    def fit_naive(self, dataset: Dataset) -> ComparisonEstimate:
        """Logistic regression of 1{Y*=1} on X, ignoring misclassification."""
        x_design = dataset.x_design
        target = dataset.observed_is_class_one
        weight = np.ones(dataset.n_subjects, dtype=np.float64)

        estimates = self._fit_weighted_logistic(
            np.zeros(x_design.shape[1]), x_design, target, weight
        )
        hessian = weighted_logistic_hessian(estimates, x_design, target, weight)
        std_errors = _std_errors_from_information(hessian)

        log_likelihood = -float(
            weighted_logistic_negative_log_likelihood(
                estimates, x_design, target, weight
            )
        )
        return ComparisonEstimate(
            method="naive",
            parameter_names=tuple(beta_names(x_design.shape[1])),
            estimates=estimates,
            std_errors=std_errors,
            log_likelihood=log_likelihood,
            n_iterations=1,
            convergence_status=ConvergenceStatus.CONVERGED,
        )

    def _validate_shapes(
        self,
        dataset: Dataset,
        beta: TrueOutcomeParameters,
        gamma: ObservationParameters,
    ) -> None:
        if beta.n_coefficients != dataset.n_x_covariates + 1:
            raise InvalidParameterShape(
                f"beta has {beta.n_coefficients} coefficients, expected "
                f"{dataset.n_x_covariates + 1} (intercept + {dataset.n_x_covariates} X columns)"
            )
        if gamma.n_coefficients != dataset.n_z_covariates + 1:
            raise InvalidParameterShape(
                f"gamma has {gamma.n_coefficients} coefficients per class, "
                f"expected {dataset.n_z_covariates + 1} "
                f"(intercept + {dataset.n_z_covariates} Z columns)"
            )

    def _problem(self, dataset: Dataset, perfect_sensitivity: bool) -> _EMProblem:
        return _EMProblem(
            dataset=dataset,
            x_design=dataset.x_design,
            z_design=dataset.z_design,
            observed_one=dataset.observed_is_class_one,
            perfect_sensitivity=perfect_sensitivity,
        )

    def _iterate(
        self,
        problem: _EMProblem,
        theta0: NDArray[np.float64],
        should_stop: StopCallback | None,
    ) -> tuple[NDArray[np.float64], int, ConvergenceStatus]:
        """
        Run EM (or SQUAREM) cycles until convergence, budget or stop request.

        Returns:
            Tuple of (theta, n_iterations, status).
        """
        convergence = self.config.convergence
        deadline = (
            time.monotonic() + convergence.max_seconds
            if convergence.max_seconds is not None
            else None
        )

        theta = theta0
        status = ConvergenceStatus.MAX_ITERATIONS
        n_iterations = 0

        for iteration in range(convergence.max_em_iterations):
            if should_stop is not None and should_stop():
                logger.info(f"EM stopped on request after {iteration} iterations")
                status = ConvergenceStatus.CANCELLED
                break
            if deadline is not None and time.monotonic() > deadline:
                logger.info(f"EM time budget exhausted after {iteration} iterations")
                status = ConvergenceStatus.CANCELLED
                break

            if convergence.method == EMMethod.SQUAREM:
                theta_new, log_likelihood = self._squarem_step(problem, theta)
            else:
                theta_new, log_likelihood = self._em_step(problem, theta)
            n_iterations = iteration + 1

            change = float(np.max(np.abs(theta_new - theta)))
            logger.debug(
                f"Iteration {n_iterations}: LL = {log_likelihood:.6f}, "
                f"max change = {change:.3e}"
            )
            theta = theta_new

            if change < convergence.em_tolerance:
                status = ConvergenceStatus.CONVERGED
                break

        if status == ConvergenceStatus.MAX_ITERATIONS:
            logger.warning(
                f"EM did not converge within {convergence.max_em_iterations} "
                "iterations; returning the last iterate"
            )
        return theta, n_iterations, status

    def _em_step(
        self, problem: _EMProblem, theta: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], float]:
        """
        One EM update.

        Returns:
            Tuple of (updated theta, log-likelihood at the input theta).
        """
        e_result = problem.e_step(theta)
        return self._m_step(problem, theta, e_result.responsibilities), (
            e_result.log_likelihood
        )

    def _m_step(
        self,
        problem: _EMProblem,
        theta: NDArray[np.float64],
        responsibilities: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """
        M-step: refit both mechanisms given the responsibilities.

        Args:
            problem: Flattened problem.
            theta: Current parameters (warm start).
            responsibilities: E-step output, shape (n_subjects, 2).

        Returns:
            Updated parameter vector.
        """
        n_beta = problem.n_beta
        n_gamma = problem.n_gamma
        ones = np.ones(responsibilities.shape[0], dtype=np.float64)

        new_parts = [
            self._fit_weighted_logistic(
                theta[:n_beta],
                problem.x_design,
                np.ascontiguousarray(responsibilities[:, 0]),
                ones,
            )
        ]

        offset = n_beta
        for j in problem.estimated_classes:
            new_parts.append(
                self._fit_weighted_logistic(
                    theta[offset : offset + n_gamma],
                    problem.z_design,
                    problem.observed_one,
                    np.ascontiguousarray(responsibilities[:, j]),
                )
            )
            offset += n_gamma

        return np.concatenate(new_parts)

    def _squarem_step(
        self, problem: _EMProblem, theta0: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64], float]:
        """
        One SQUAREM cycle (SqS3 steplength).

        Returns:
            Tuple of (updated theta, log-likelihood at theta0).
        """
        theta1, ll0 = self._em_step(problem, theta0)
        theta2, _ = self._em_step(problem, theta1)

        r = theta1 - theta0
        v = theta2 - theta1 - r
        r_norm = float(np.linalg.norm(r))
        v_norm = float(np.linalg.norm(v))
        if v_norm == 0.0 or r_norm == 0.0:
            return theta2, ll0

        alpha = float(np.clip(-r_norm / v_norm, SQUAREM_MAX_STEP, SQUAREM_MIN_STEP))
        theta_prime = theta0 - 2.0 * alpha * r + alpha**2 * v

        try:
            # Stabilizing EM step from the extrapolated point
            theta_new, _ = self._em_step(problem, theta_prime)
            ll_new = problem.e_step(theta_new).log_likelihood
        except NumericDegeneracyError:
            logger.debug("SQUAREM extrapolation collapsed, using EM step")
            return theta2, ll0

        if not np.isfinite(ll_new) or ll_new < ll0:
            return theta2, ll0
        return theta_new, ll0

    def _fit_weighted_logistic(
        self,
        x0: NDArray[np.float64],
        design: NDArray[np.float64],
        target: NDArray[np.float64],
        weight: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Minimize the weighted logistic negative log-likelihood."""
        result = minimize(
            fun=weighted_logistic_negative_log_likelihood,
            x0=np.array(x0, dtype=np.float64),
            args=(design, target, weight),
            method="trust-exact",
            jac=weighted_logistic_gradient,
            hess=weighted_logistic_hessian,
            options={
                "maxiter": self.config.newton.max_iterations,
                "gtol": self.config.newton.gradient_tolerance,
            },
        )
        solution: NDArray[np.float64] = np.asarray(result.x, dtype=np.float64)
        return solution

    def _standard_errors(
        self, problem: _EMProblem, theta: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        """
        Standard errors from the observed information matrix.

        The Hessian of the observed-data log-likelihood is obtained by
        central differences of the analytical score.
        """
        n = theta.shape[0]
        step = self.config.newton.hessian_step
        hessian = np.empty((n, n), dtype=np.float64)
        for k in range(n):
            h = step * max(1.0, abs(float(theta[k])))
            plus = theta.copy()
            minus = theta.copy()
            plus[k] += h
            minus[k] -= h
            hessian[:, k] = (problem.score(plus) - problem.score(minus)) / (2.0 * h)
        hessian = 0.5 * (hessian + hessian.T)
        return _std_errors_from_information(-hessian)


def _std_errors_from_information(
    information: NDArray[np.float64],
) -> NDArray[np.float64]:
    """Square root of the diagonal of the inverse information (NaN if singular)."""
    n = information.shape[0]
    try:
        covariance = np.linalg.inv(information)
    except np.linalg.LinAlgError:
        logger.warning("Information matrix is singular; standard errors unavailable")
        return np.full(n, np.nan)

    variances = np.diag(covariance)
    if not np.all(np.isfinite(variances)) or np.any(variances <= 0):
        logger.warning(
            "Information matrix is not positive definite; standard errors unavailable"
        )
        return np.full(n, np.nan)
    result: NDArray[np.float64] = np.sqrt(variances)
    return result
