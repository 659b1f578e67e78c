import pytest

from misclassification_service.estimation.config import (
    DEFAULT_EM_TOLERANCE,
    DEFAULT_MAX_EM_ITERATIONS,
    ConvergenceConfig,
    EstimationConfig,
    LabelSwitchConfig,
    SamplingConfig,
    default_config,
)
from misclassification_service.estimation.enums import (
    EMMethod,
    LabelSwitchCriterion,
)


class TestDefaults:
    def test_default_config(self) -> None:
        config = default_config()
        assert config.convergence.max_em_iterations == DEFAULT_MAX_EM_ITERATIONS
        assert config.convergence.em_tolerance == DEFAULT_EM_TOLERANCE
        assert config.convergence.method == EMMethod.SQUAREM
        assert config.label_switch.criterion == LabelSwitchCriterion.INTERCEPT
        assert config.label_switch.epsilon == 0.0
        assert config.sampling.n_chains == 4
        assert config.sampling.n_samples == 2000

    def test_model_version_read_from_project(self) -> None:
        """The version string comes from pyproject.toml."""
        assert EstimationConfig().model_version == "0.1.0"


class TestValidation:
    def test_convergence(self) -> None:
        with pytest.raises(ValueError):
            ConvergenceConfig(max_em_iterations=0)
        with pytest.raises(ValueError):
            ConvergenceConfig(em_tolerance=0.0)

    def test_label_switch_epsilon(self) -> None:
        with pytest.raises(ValueError):
            LabelSwitchConfig(epsilon=-1e-9)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"n_chains": 0},
            {"n_samples": 0},
            {"burn_in": -1},
            {"tune_interval": 0},
            {"proposal_scale": 0.0},
            {"n_jobs": 0},
        ],
    )
    def test_sampling(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ValueError):
            SamplingConfig(**kwargs)  # type: ignore[arg-type]
