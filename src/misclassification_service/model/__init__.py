"""
Model components shared by both estimators.

This module provides:
- Coefficient classes for the true outcome and observation mechanisms
- Linear predictors and misclassification probabilities
- Posterior responsibilities and the observed-data likelihood
- Label switching correction
"""

from misclassification_service.model.label_switching import (
    CorrectedDraws,
    LabelSwitchCorrector,
)
from misclassification_service.model.likelihood import (
    ResponsibilityResult,
    compute_responsibilities,
)
from misclassification_service.model.misclassification import (
    compute_misclassification_probabilities,
    misclassification_table,
)
from misclassification_service.model.parameters import (
    ObservationParameters,
    TrueOutcomeParameters,
)

__all__ = [
    "CorrectedDraws",
    "LabelSwitchCorrector",
    "ObservationParameters",
    "ResponsibilityResult",
    "TrueOutcomeParameters",
    "compute_misclassification_probabilities",
    "compute_responsibilities",
    "misclassification_table",
]
