"""
Metropolis-within-Gibbs sampler for one chain.

Each step:
    1. Draw the latent true class of every subject from its responsibilities.
    2. Update each beta coefficient by a random walk Metropolis step against
       the logistic likelihood of the latent classes given X.
    3. Update each g_j coefficient the same way against the logistic
       likelihood of 1{Y*=1} given Z among subjects with latent class j.

Proposal scales are tuned during burn-in only, so the kept draws come from
a fixed transition kernel.

In naive mode the latent classes are pinned to the observed outcome and
only beta is sampled, which is the Bayesian fit that ignores
misclassification.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from numpy.random import Generator
from numpy.typing import NDArray

from misclassification_service.core.data_models import N_CLASSES, Dataset
from misclassification_service.estimation.config import SamplingConfig
from misclassification_service.estimation.gradients import (
    weighted_logistic_negative_log_likelihood,
)
from misclassification_service.estimation.mcmc.priors import LogPrior
from misclassification_service.model.likelihood import compute_responsibilities
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
)

logger = logging.getLogger(__name__)

StopCallback = Callable[[], bool]


def tune_scale(scale: float, acceptance_rate: float) -> float:
    """
    Adjust a random walk scale from the acceptance rate of the last window.

    Shrinks the step when proposals are mostly rejected and widens it when
    they are mostly accepted.
    """
    if acceptance_rate < 0.001:
        return scale * 0.1
    if acceptance_rate < 0.05:
        return scale * 0.5
    if acceptance_rate < 0.2:
        return scale * 0.9
    if acceptance_rate > 0.95:
        return scale * 10.0
    if acceptance_rate > 0.75:
        return scale * 2.0
    if acceptance_rate > 0.5:
        return scale * 1.1
    return scale


@dataclass
class ChainState:
    """
    Current position of a chain.

    Attributes:
        beta: Shape (p+1,).
        gamma: Shape (q+1, 2), indexed [coefficient, j]. Unused in naive mode.
        latent: 0-based true class index per subject, shape (n_subjects,).
    """

    beta: NDArray[np.float64]
    gamma: NDArray[np.float64]
    latent: NDArray[np.int64]


@dataclass(frozen=True)
class ChainOutput:
    """
    Post burn-in draws of one chain.

    Attributes:
        chain: 1-based chain number.
        beta: Shape (n_draws, p+1).
        gamma: Shape (n_draws, q+1, 2); None in naive mode.
        acceptance_rates: Post burn-in acceptance rate per free parameter,
            ordered [beta..., gamma (j=1)..., gamma (j=2)...].
        cancelled: Whether the chain stopped before producing every draw.
    """

    chain: int
    beta: NDArray[np.float64]
    gamma: NDArray[np.float64] | None
    acceptance_rates: NDArray[np.float64]
    cancelled: bool

    @property
    def n_draws(self) -> int:
        return self.beta.shape[0]


class MetropolisWithinGibbsSampler:
    """
    Runs single chains for a fixed dataset and prior.

    The sampler holds no per-chain state, so one instance can run several
    chains concurrently from different threads.
    """

    def __init__(
        self,
        dataset: Dataset,
        log_prior: LogPrior,
        config: SamplingConfig,
        naive: bool = False,
    ):
        """
        Initialize sampler.

        Args:
            dataset: Observed data.
            log_prior: Per-coefficient prior densities.
            config: Chain length, burn-in and proposal settings.
            naive: Sample beta only, with latent classes fixed at Y*.
        """
        self.dataset = dataset
        self.log_prior = log_prior
        self.config = config
        self.naive = naive

        self._x_design = dataset.x_design
        self._z_design = dataset.z_design
        self._observed_one = dataset.observed_is_class_one
        self._ones = np.ones(dataset.n_subjects, dtype=np.float64)

    @property
    def n_beta(self) -> int:
        return self._x_design.shape[1]

    @property
    def n_gamma(self) -> int:
        return self._z_design.shape[1]

    @property
    def n_free(self) -> int:
        return self.n_beta if self.naive else self.n_beta + N_CLASSES * self.n_gamma

    def initial_state(
        self, beta: NDArray[np.float64], gamma: NDArray[np.float64]
    ) -> ChainState:
        """Start at the given values with latent classes equal to Y*."""
        return ChainState(
            beta=np.array(beta, dtype=np.float64),
            gamma=np.array(gamma, dtype=np.float64),
            latent=self.dataset.observed_class_index.astype(np.int64),
        )

    def run(
        self,
        chain: int,
        state: ChainState,
        rng: Generator,
        should_stop: StopCallback | None = None,
    ) -> ChainOutput:
        """
        Run burn-in and sampling for one chain.

        Args:
            chain: 1-based chain number (for logging and output).
            state: Starting position; updated in place.
            rng: Chain-specific random generator.
            should_stop: Optional callable checked every step; a True return
                ends the chain early with the draws produced so far.

        Returns:
            ChainOutput with the post burn-in draws.
        """
        config = self.config
        n_steps = config.burn_in + config.n_samples
        deadline = (
            time.monotonic() + config.max_seconds
            if config.max_seconds is not None
            else None
        )

        scales = np.full(self.n_free, config.proposal_scale)
        window_accepted = np.zeros(self.n_free, dtype=np.int64)
        kept_accepted = np.zeros(self.n_free, dtype=np.int64)

        beta_draws = np.empty((config.n_samples, self.n_beta))
        gamma_draws = (
            None if self.naive else np.empty((config.n_samples, self.n_gamma, N_CLASSES))
        )
        n_kept = 0
        cancelled = False

        for step in range(n_steps):
            if should_stop is not None and should_stop():
                logger.info(f"Chain {chain} stopped on request at step {step}")
                cancelled = True
                break
            if deadline is not None and time.monotonic() > deadline:
                logger.info(f"Chain {chain} time budget exhausted at step {step}")
                cancelled = True
                break

            accepted = self._step(state, scales, rng)

            if step < config.burn_in:
                window_accepted += accepted
                if (step + 1) % config.tune_interval == 0:
                    rates = window_accepted / config.tune_interval
                    scales = np.array(
                        [tune_scale(s, r) for s, r in zip(scales, rates, strict=True)]
                    )
                    window_accepted[:] = 0
                continue

            kept_accepted += accepted
            beta_draws[n_kept] = state.beta
            if gamma_draws is not None:
                gamma_draws[n_kept] = state.gamma
            n_kept += 1

        acceptance_rates = (
            kept_accepted / n_kept if n_kept > 0 else np.full(self.n_free, np.nan)
        )
        logger.debug(
            f"Chain {chain}: {n_kept} draws, acceptance "
            f"{np.array2string(acceptance_rates, precision=2)}"
        )
        return ChainOutput(
            chain=chain,
            beta=beta_draws[:n_kept],
            gamma=None if gamma_draws is None else gamma_draws[:n_kept],
            acceptance_rates=acceptance_rates,
            cancelled=cancelled,
        )

    def _step(
        self, state: ChainState, scales: NDArray[np.float64], rng: Generator
    ) -> NDArray[np.int64]:
        """One full sweep. Returns a 0/1 acceptance flag per free parameter."""
        accepted = np.zeros(self.n_free, dtype=np.int64)

        if self.naive:
            beta_target = self._observed_one
        else:
            state.latent = self._sample_latent(state, rng)
            beta_target = (state.latent == 0).astype(np.float64)

        accepted[: self.n_beta] = self._update_block(
            state.beta,
            self._x_design,
            beta_target,
            self._ones,
            scales[: self.n_beta],
            self.log_prior.beta_component,
            0,
            rng,
        )
        if self.naive:
            return accepted

        offset = self.n_beta
        for j in range(N_CLASSES):
            coefficients = np.ascontiguousarray(state.gamma[:, j])
            accepted[offset : offset + self.n_gamma] = self._update_block(
                coefficients,
                self._z_design,
                self._observed_one,
                (state.latent == j).astype(np.float64),
                scales[offset : offset + self.n_gamma],
                self.log_prior.gamma_component,
                j * self.n_gamma,
                rng,
            )
            state.gamma[:, j] = coefficients
            offset += self.n_gamma
        return accepted

    def _sample_latent(self, state: ChainState, rng: Generator) -> NDArray[np.int64]:
        """Draw every subject's true class from P(Y=j | Y*, X, Z)."""
        result = compute_responsibilities(
            TrueOutcomeParameters.from_array(state.beta),
            ObservationParameters.from_matrix(state.gamma),
            self.dataset,
        )
        u = rng.random(self.dataset.n_subjects)
        latent: NDArray[np.int64] = (u >= result.responsibilities[:, 0]).astype(
            np.int64
        )
        return latent

    def _update_block(
        self,
        coefficients: NDArray[np.float64],
        design: NDArray[np.float64],
        target: NDArray[np.float64],
        weight: NDArray[np.float64],
        scales: NDArray[np.float64],
        log_prior: Callable[[int, float], float],
        prior_offset: int,
        rng: Generator,
    ) -> NDArray[np.int64]:
        """
        Componentwise random walk Metropolis on one coefficient vector.

        coefficients is updated in place. Returns acceptance flags.
        """
        accepted = np.zeros(coefficients.shape[0], dtype=np.int64)
        current_ll = -weighted_logistic_negative_log_likelihood(
            coefficients, design, target, weight
        )

        for c in range(coefficients.shape[0]):
            current_value = coefficients[c]
            proposed_value = current_value + scales[c] * rng.standard_normal()
            log_u = np.log(rng.random())

            proposed_prior = log_prior(prior_offset + c, proposed_value)
            if not np.isfinite(proposed_prior):
                continue

            coefficients[c] = proposed_value
            proposed_ll = -weighted_logistic_negative_log_likelihood(
                coefficients, design, target, weight
            )
            log_ratio = (
                proposed_ll
                + proposed_prior
                - current_ll
                - log_prior(prior_offset + c, current_value)
            )
            if log_u < log_ratio:
                current_ll = proposed_ll
                accepted[c] = 1
            else:
                coefficients[c] = current_value

        return accepted
