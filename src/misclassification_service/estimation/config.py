"""
Configuration dataclasses for model estimation.

This module defines the configuration parameters for:
- Convergence criteria and acceleration of the EM algorithm
- Newton (trust region) settings for the weighted logistic M-step fits
- Label switching detection
- MCMC sampling
- Overall estimation settings
"""

from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError, version

import toml

from misclassification_service.core.paths import (
    ProjectRootNotFound,
    get_project_root_dir,
)
from misclassification_service.estimation.enums import (
    EMMethod,
    LabelSwitchCriterion,
)

PROJECT_NAME = "misclassification-service"

# Default EM convergence settings
DEFAULT_MAX_EM_ITERATIONS = 1500
DEFAULT_EM_TOLERANCE = 1e-7
DEFAULT_EM_METHOD = EMMethod.SQUAREM

# Default M-step settings
DEFAULT_MAX_NEWTON_ITERATIONS = 100
DEFAULT_NEWTON_TOLERANCE = 1e-9

# Central difference step for the observed information matrix
DEFAULT_HESSIAN_STEP = 1e-5

# Default label switching settings
DEFAULT_LABEL_SWITCH_CRITERION = LabelSwitchCriterion.INTERCEPT
DEFAULT_LABEL_SWITCH_EPSILON = 0.0

# Default MCMC settings
DEFAULT_N_CHAINS = 4
DEFAULT_N_SAMPLES = 2000
DEFAULT_BURN_IN = 1000
DEFAULT_TUNE_INTERVAL = 50
DEFAULT_PROPOSAL_SCALE = 0.1
DEFAULT_N_JOBS = 1

# R-hat above this marks a parameter as not mixed
DEFAULT_RHAT_THRESHOLD = 1.1


def _get_project_version() -> str:
    try:
        root_dir = get_project_root_dir()
        with open(root_dir / "pyproject.toml") as f:
            data = toml.load(f)
    except ProjectRootNotFound:
        data = {}

    project = data.get("project", {})
    if project.get("name") == PROJECT_NAME and project.get("version"):
        project_version = project["version"]
        assert isinstance(project_version, str)
        return project_version

    # Installed without the source tree
    try:
        return version(PROJECT_NAME)
    except PackageNotFoundError as e:
        raise ValueError("Version not found in pyproject.toml") from e


@dataclass(frozen=True)
class ConvergenceConfig:
    """
    Configuration for EM algorithm convergence.

    Attributes:
        max_em_iterations: Maximum number of EM iterations (SQUAREM cycles
            count as one iteration each).
        em_tolerance: EM stops when the maximum absolute change of any
            free parameter falls below this value.
        method: Plain EM fixed point iteration or SQUAREM acceleration.
        max_seconds: Optional wall-clock budget, checked between iterations.
    """

    max_em_iterations: int = DEFAULT_MAX_EM_ITERATIONS
    em_tolerance: float = DEFAULT_EM_TOLERANCE
    method: EMMethod = DEFAULT_EM_METHOD
    max_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_em_iterations < 1:
            raise ValueError("max_em_iterations must be at least 1")
        if self.em_tolerance <= 0:
            raise ValueError("em_tolerance must be positive")


@dataclass(frozen=True)
class NewtonConfig:
    """
    Settings for the trust region Newton fits used in the M-step.

    Attributes:
        max_iterations: Maximum optimizer iterations per weighted fit.
        gradient_tolerance: Gradient norm at which a fit stops.
        hessian_step: Finite difference step for the observed information.
    """

    max_iterations: int = DEFAULT_MAX_NEWTON_ITERATIONS
    gradient_tolerance: float = DEFAULT_NEWTON_TOLERANCE
    hessian_step: float = DEFAULT_HESSIAN_STEP


@dataclass(frozen=True)
class LabelSwitchConfig:
    """
    Configuration for label switching detection.

    Attributes:
        criterion: INTERCEPT compares the j=1 and j=2 observation intercepts;
            SENSITIVITY compares the average P(Y*=1 | Y=j, Z) over the data.
        epsilon: A solution is relabeled only when the j=2 quantity exceeds
            the j=1 quantity by more than epsilon. Must be non-negative so
            that correction is idempotent.
    """

    criterion: LabelSwitchCriterion = DEFAULT_LABEL_SWITCH_CRITERION
    epsilon: float = DEFAULT_LABEL_SWITCH_EPSILON

    def __post_init__(self) -> None:
        if self.epsilon < 0:
            raise ValueError(f"epsilon must be >= 0, got {self.epsilon}")


@dataclass(frozen=True)
class SamplingConfig:
    """
    Configuration for MCMC sampling.

    Attributes:
        n_chains: Number of independent chains.
        n_samples: Post burn-in draws kept per chain.
        burn_in: Draws discarded at the start of each chain. Proposal scales
            are tuned during burn-in only.
        tune_interval: Steps between proposal scale adjustments.
        proposal_scale: Initial random walk standard deviation.
        n_jobs: Number of chains run concurrently in a thread pool.
        max_seconds: Optional wall-clock budget per chain, checked between
            steps.
        rhat_threshold: R-hat above which a parameter is reported as not mixed.
    """

    n_chains: int = DEFAULT_N_CHAINS
    n_samples: int = DEFAULT_N_SAMPLES
    burn_in: int = DEFAULT_BURN_IN
    tune_interval: int = DEFAULT_TUNE_INTERVAL
    proposal_scale: float = DEFAULT_PROPOSAL_SCALE
    n_jobs: int = DEFAULT_N_JOBS
    max_seconds: float | None = None
    rhat_threshold: float = DEFAULT_RHAT_THRESHOLD

    def __post_init__(self) -> None:
        if self.n_chains < 1:
            raise ValueError("n_chains must be at least 1")
        if self.n_samples < 1:
            raise ValueError("n_samples must be at least 1")
        if self.burn_in < 0:
            raise ValueError("burn_in must be non-negative")
        if self.tune_interval < 1:
            raise ValueError("tune_interval must be at least 1")
        if self.proposal_scale <= 0:
            raise ValueError("proposal_scale must be positive")
        if self.n_jobs < 1:
            raise ValueError("n_jobs must be at least 1")


@dataclass(frozen=True)
class EstimationConfig:
    """
    Master configuration for estimation.

    Attributes:
        convergence: Convergence criteria for the EM algorithm.
        newton: Settings for the weighted logistic fits.
        label_switch: Label switching detection settings.
        sampling: MCMC settings.
        model_version: Version string for reproducibility tracking.
    """

    convergence: ConvergenceConfig = ConvergenceConfig()
    newton: NewtonConfig = NewtonConfig()
    label_switch: LabelSwitchConfig = LabelSwitchConfig()
    sampling: SamplingConfig = SamplingConfig()
    model_version: str = field(default_factory=_get_project_version)


def default_config() -> EstimationConfig:
    """Create a default estimation configuration."""
    return EstimationConfig()
