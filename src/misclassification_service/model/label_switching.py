"""
Label switching detection and correction.

The observed-data likelihood is unchanged when the true classes are
relabeled (Y -> 3 - Y) while simultaneously
    beta  -> -beta
    gamma_{., j=1} <-> gamma_{., j=2}
Both estimators can land on this mirror solution. The canonical labeling is
the one where class 1 is the class that is more often observed as 1, i.e.
P(Y*=1 | Y=1, Z) dominates P(Y*=1 | Y=2, Z).

Correction is applied to single estimates and, vectorized, to every MCMC
draw.
"""

import logging
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.special import expit

from misclassification_service.estimation.config import LabelSwitchConfig
from misclassification_service.estimation.enums import LabelSwitchCriterion
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
)

logger = logging.getLogger(__name__)

# Draws per block when averaging probabilities over subjects
SENSITIVITY_CHUNK_SIZE = 256


@dataclass(frozen=True)
class CorrectedDraws:
    """
    Draws after label switching correction.

    Attributes:
        beta: Shape (n_draws, p+1).
        gamma: Shape (n_draws, q+1, 2), indexed [draw, coefficient, j].
        switched: Which draws were relabeled, shape (n_draws,).
    """

    beta: NDArray[np.float64]
    gamma: NDArray[np.float64]
    switched: NDArray[np.bool_]

    @property
    def n_switched(self) -> int:
        return int(self.switched.sum())


class LabelSwitchCorrector:
    """
    Detects mirror solutions and maps them back to the canonical labeling.

    With epsilon >= 0 a relabeled solution never satisfies the switching
    condition again, so correction is idempotent.
    """

    def __init__(
        self,
        config: LabelSwitchConfig | None = None,
        z_design: NDArray[np.float64] | None = None,
    ):
        """
        Initialize corrector.

        Args:
            config: Criterion and threshold. Defaults to intercept comparison
                with epsilon 0.
            z_design: Z with intercept column. Required by the SENSITIVITY
                criterion.
        """
        self.config = config or LabelSwitchConfig()
        if (
            self.config.criterion == LabelSwitchCriterion.SENSITIVITY
            and z_design is None
        ):
            raise ValueError("The sensitivity criterion requires z_design")
        self._z_design = z_design

    def _dominance_gap(self, gamma: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        How much class j=2 dominates class j=1, per draw.

        Args:
            gamma: Shape (n_draws, q+1, 2).

        Returns:
            Shape (n_draws,). Positive values favour the mirror labeling.
        """
        if self.config.criterion == LabelSwitchCriterion.INTERCEPT:
            gap: NDArray[np.float64] = gamma[:, 0, 1] - gamma[:, 0, 0]
            return gap

        assert self._z_design is not None
        gap = np.empty(gamma.shape[0], dtype=np.float64)
        for start in range(0, gamma.shape[0], SENSITIVITY_CHUNK_SIZE):
            chunk = gamma[start : start + SENSITIVITY_CHUNK_SIZE]
            # (n_subjects, q+1) x (n_draws, q+1, 2) -> (n_draws, n_subjects, 2)
            eta = np.einsum("ic,dcj->dij", self._z_design, chunk)
            mean_prob = expit(eta).mean(axis=1)
            gap[start : start + len(chunk)] = mean_prob[:, 1] - mean_prob[:, 0]
        return gap

    def detect_draws(self, gamma: NDArray[np.float64]) -> NDArray[np.bool_]:
        """Flag draws that sit on the mirror labeling."""
        result: NDArray[np.bool_] = self._dominance_gap(gamma) > self.config.epsilon
        return result

    def correct_draws(
        self,
        beta: NDArray[np.float64],
        gamma: NDArray[np.float64],
    ) -> CorrectedDraws:
        """
        Relabel every switched draw.

        Args:
            beta: Shape (n_draws, p+1).
            gamma: Shape (n_draws, q+1, 2).

        Returns:
            CorrectedDraws; inputs are not modified.
        """
        if beta.ndim != 2 or gamma.ndim != 3 or beta.shape[0] != gamma.shape[0]:
            raise ValueError(
                f"Expected beta (n, p+1) and gamma (n, q+1, 2) draws, "
                f"got {beta.shape} and {gamma.shape}"
            )
        switched = self.detect_draws(gamma)

        new_beta = beta.copy()
        new_gamma = gamma.copy()
        new_beta[switched] = -beta[switched]
        new_gamma[switched] = gamma[switched][:, :, ::-1]

        return CorrectedDraws(beta=new_beta, gamma=new_gamma, switched=switched)

    def is_switched(self, gamma: ObservationParameters) -> bool:
        return bool(self.detect_draws(gamma.to_matrix()[np.newaxis])[0])

    def correct(
        self,
        beta: TrueOutcomeParameters,
        gamma: ObservationParameters,
    ) -> tuple[TrueOutcomeParameters, ObservationParameters, bool]:
        """
        Correct a single estimate.

        Returns:
            Tuple of (beta, gamma, switched). When not switched, the inputs
            are returned unchanged.
        """
        corrected = self.correct_draws(
            beta.to_array()[np.newaxis], gamma.to_matrix()[np.newaxis]
        )
        if not corrected.switched[0]:
            return beta, gamma, False

        logger.info("Estimate is on the mirror labeling, relabeling classes")
        return (
            TrueOutcomeParameters.from_array(corrected.beta[0]),
            ObservationParameters.from_matrix(corrected.gamma[0]),
            True,
        )
