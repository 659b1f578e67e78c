"""
Bayesian estimation by multi-chain MCMC.

Chains run independently from spawned random streams, optionally on a
thread pool (the likelihood kernels release the GIL). Every kept draw is
label switching corrected before pooling, and the misclassification-ignoring
model is sampled alongside for comparison.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from numpy.random import Generator
from numpy.typing import NDArray

from misclassification_service.core.data_models import N_CLASSES, Dataset
from misclassification_service.core.exceptions import InvalidParameterShape
from misclassification_service.core.utils import get_rng
from misclassification_service.estimation.config import EstimationConfig
from misclassification_service.estimation.data_models import (
    ChainDiagnostics,
    MCMCEstimationResult,
)
from misclassification_service.estimation.diagnostics import (
    draws_to_frame,
    summarize_draws,
)
from misclassification_service.estimation.mcmc.priors import (
    LogPrior,
    PriorSpecification,
)
from misclassification_service.estimation.mcmc.sampler import (
    ChainOutput,
    MetropolisWithinGibbsSampler,
    StopCallback,
)
from misclassification_service.model.label_switching import LabelSwitchCorrector
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
    as_observation_parameters,
    as_true_outcome_parameters,
    beta_names,
    gamma_names,
)

logger = logging.getLogger(__name__)


class MCMCEstimator:
    """
    Misclassified binary outcome estimator using MCMC.

    Usage:
        estimator = MCMCEstimator(config, rng=np.random.default_rng(1))
        result = estimator.fit(dataset, prior)
        result.posterior_means
    """

    def __init__(
        self,
        config: EstimationConfig | None = None,
        rng: Generator | None = None,
    ):
        """
        Initialize MCMC estimator.

        Args:
            config: Estimation configuration; sampling and label_switch are used.
            rng: Parent random generator. Chain streams are spawned from it,
                so results are reproducible for a given seed.
        """
        self.config = config or EstimationConfig()
        self.rng = rng or get_rng()

    def fit(
        self,
        dataset: Dataset,
        prior: PriorSpecification | None = None,
        beta_start: TrueOutcomeParameters | NDArray[np.floating] | list[float] | None = None,
        gamma_start: ObservationParameters | NDArray[np.floating] | list[list[float]] | None = None,
        should_stop: StopCallback | None = None,
    ) -> MCMCEstimationResult:
        """
        Sample the posterior of the misclassification model and of the
        naive model.

        Args:
            dataset: Observed outcomes and covariates.
            prior: Prior for every free coefficient. Defaults to Uniform(-10, 10).
            beta_start: Starting beta shared by all chains. Drawn per chain
                when omitted.
            gamma_start: Starting gamma, (q+1, 2) or the full (q+1, 2, 2)
                layout. Drawn per chain when omitted.
            should_stop: Optional callable checked every step of every chain.

        Returns:
            MCMCEstimationResult with pooled summaries, long draw tables and
            per-chain diagnostics.

        Raises:
            InvalidParameterShape: If starting values do not match the data.
            InvalidPriorShape: If the prior does not match the data.
        """
        n_beta = dataset.n_x_covariates + 1
        n_gamma = dataset.n_z_covariates + 1
        sampling = self.config.sampling

        prior = prior or PriorSpecification.default_uniform(n_beta, n_gamma)
        log_prior = prior.log_prior(n_beta, n_gamma)

        beta0 = None if beta_start is None else as_true_outcome_parameters(beta_start)
        gamma0 = None if gamma_start is None else as_observation_parameters(gamma_start)
        self._validate_shapes(beta0, gamma0, n_beta, n_gamma)

        chain_rngs = self.rng.spawn(sampling.n_chains)
        naive_rngs = self.rng.spawn(sampling.n_chains)

        logger.info(
            f"Sampling {sampling.n_chains} chains of {sampling.burn_in} burn-in + "
            f"{sampling.n_samples} draws ({n_beta + N_CLASSES * n_gamma} parameters)"
        )

        full_sampler = MetropolisWithinGibbsSampler(dataset, log_prior, sampling)
        full_outputs = self._run_chains(
            full_sampler, log_prior, beta0, gamma0, chain_rngs, should_stop
        )

        corrector = LabelSwitchCorrector(
            self.config.label_switch, z_design=dataset.z_design
        )
        names = tuple(beta_names(n_beta) + gamma_names(n_gamma))
        draws = []
        diagnostics = []
        for output in full_outputs:
            assert output.gamma is not None
            corrected = corrector.correct_draws(output.beta, output.gamma)
            draws.append(
                np.hstack(
                    [
                        corrected.beta,
                        # [draw, coef, j] -> j-major flat layout
                        corrected.gamma.transpose(0, 2, 1).reshape(
                            output.n_draws, N_CLASSES * n_gamma
                        ),
                    ]
                )
            )
            diagnostics.append(
                self._diagnostics(output, names, corrected.n_switched)
            )

        naive_sampler = MetropolisWithinGibbsSampler(
            dataset, log_prior, sampling, naive=True
        )
        naive_outputs = self._run_chains(
            naive_sampler, log_prior, beta0, gamma0, naive_rngs, should_stop
        )
        naive_names = tuple(beta_names(n_beta))
        naive_draws = [output.beta for output in naive_outputs]
        naive_diagnostics = [
            self._diagnostics(output, naive_names, 0) for output in naive_outputs
        ]

        result = MCMCEstimationResult(
            posterior_means=summarize_draws(draws, names, sampling.rhat_threshold),
            posterior_draws=draws_to_frame(draws, names),
            naive_posterior_means=summarize_draws(
                naive_draws, naive_names, sampling.rhat_threshold
            ),
            naive_posterior_draws=draws_to_frame(naive_draws, naive_names),
            diagnostics=tuple(diagnostics),
            naive_diagnostics=tuple(naive_diagnostics),
            model_version=self.config.model_version,
        )
        self._log_health(result)
        return result

    def _validate_shapes(
        self,
        beta: TrueOutcomeParameters | None,
        gamma: ObservationParameters | None,
        n_beta: int,
        n_gamma: int,
    ) -> None:
        if beta is not None and beta.n_coefficients != n_beta:
            raise InvalidParameterShape(
                f"beta has {beta.n_coefficients} coefficients, expected {n_beta}"
            )
        if gamma is not None and gamma.n_coefficients != n_gamma:
            raise InvalidParameterShape(
                f"gamma has {gamma.n_coefficients} coefficients per class, "
                f"expected {n_gamma}"
            )

    def _run_chains(
        self,
        sampler: MetropolisWithinGibbsSampler,
        log_prior: LogPrior,
        beta0: TrueOutcomeParameters | None,
        gamma0: ObservationParameters | None,
        rngs: list[Generator],
        should_stop: StopCallback | None,
    ) -> list[ChainOutput]:
        """Run one chain per generator, concurrently when n_jobs > 1."""
        # Starting values are drawn up front so that they do not depend on
        # thread scheduling
        states = []
        for rng in rngs:
            beta_init, gamma_init = log_prior.initial_values(rng)
            if beta0 is not None:
                beta_init = beta0.to_array()
            gamma_matrix = gamma_init.reshape(N_CLASSES, sampler.n_gamma).T
            if gamma0 is not None:
                gamma_matrix = gamma0.to_matrix()
            states.append(sampler.initial_state(beta_init, gamma_matrix))

        def run(chain: int) -> ChainOutput:
            return sampler.run(chain + 1, states[chain], rngs[chain], should_stop)

        n_jobs = min(self.config.sampling.n_jobs, len(rngs))
        if n_jobs == 1:
            return [run(chain) for chain in range(len(rngs))]
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            return list(executor.map(run, range(len(rngs))))

    def _diagnostics(
        self,
        output: ChainOutput,
        names: tuple[str, ...],
        n_label_switched: int,
    ) -> ChainDiagnostics:
        return ChainDiagnostics(
            chain=output.chain,
            acceptance_rates={
                name: float(rate)
                for name, rate in zip(names, output.acceptance_rates, strict=True)
            },
            n_draws=output.n_draws,
            n_label_switched=n_label_switched,
            cancelled=output.cancelled,
        )

    def _log_health(self, result: MCMCEstimationResult) -> None:
        for d in result.diagnostics:
            if d.n_label_switched:
                logger.info(
                    f"Chain {d.chain}: {d.n_label_switched} of {d.n_draws} draws "
                    "relabeled"
                )
            if d.degenerate_parameters:
                logger.warning(
                    f"Chain {d.chain}: degenerate acceptance for "
                    f"{', '.join(d.degenerate_parameters)}"
                )
        if result.unmixed_parameters:
            logger.warning(
                f"R-hat above {self.config.sampling.rhat_threshold} for "
                f"{', '.join(result.unmixed_parameters)}"
            )
