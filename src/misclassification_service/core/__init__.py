"""
Core shared types and utilities.

This module provides the dataset representation, the domain exceptions and
small numeric helpers used by both the model components and the
estimators.
"""

from misclassification_service.core.data_models import Dataset, Observation
from misclassification_service.core.exceptions import (
    InvalidParameterShape,
    InvalidPriorShape,
    NumericDegeneracyError,
)
from misclassification_service.core.utils import add_intercept, get_rng

__all__ = [
    "Dataset",
    "InvalidParameterShape",
    "InvalidPriorShape",
    "NumericDegeneracyError",
    "Observation",
    "add_intercept",
    "get_rng",
]
