"""
CSV loading utilities for observed outcome data.
"""

from pathlib import Path

import numpy as np
import pandas as pd

from misclassification_service.core.data_models import Dataset

OUTCOME_COLUMN = "ystar"
X_PREFIX = "x"
Z_PREFIX = "z"


def _prefixed_columns(df: pd.DataFrame, prefix: str) -> list[str]:
    return [
        c for c in df.columns if c.startswith(prefix) and c != OUTCOME_COLUMN
    ]


def frame_to_dataset(df: pd.DataFrame) -> Dataset:
    """Convert a frame with ystar / x* / z* columns into a Dataset.

    Raises:
        ValueError: If required columns are absent or values are missing.
    """
    if OUTCOME_COLUMN not in df.columns:
        raise ValueError(f"Data must have '{OUTCOME_COLUMN}' column")

    x_columns = _prefixed_columns(df, X_PREFIX)
    z_columns = _prefixed_columns(df, Z_PREFIX)
    if not x_columns:
        raise ValueError(f"Data must have at least one '{X_PREFIX}*' column")
    if not z_columns:
        raise ValueError(f"Data must have at least one '{Z_PREFIX}*' column")

    used = [OUTCOME_COLUMN, *x_columns, *z_columns]
    if df[used].isna().any().any():
        raise ValueError("Data must not contain missing values")

    return Dataset.from_arrays(
        ystar=df[OUTCOME_COLUMN].to_numpy(),
        x=df[x_columns].to_numpy(dtype=np.float64),
        z=df[z_columns].to_numpy(dtype=np.float64),
    )


def load_csv_to_dataset(path: Path) -> Dataset:
    """Load a CSV file of observed outcomes and covariates.

    Expected CSV columns:
        - ystar: observed outcome coded 1 or 2
        - x1, x2, ...: true-outcome covariates
        - z1, z2, ...: observation-mechanism covariates

    Raises:
        ValueError: If CSV format is invalid or data is inconsistent.
    """
    df = pd.read_csv(path)
    return frame_to_dataset(df)


def dataset_to_frame(dataset: Dataset) -> pd.DataFrame:
    """Inverse of frame_to_dataset, with columns numbered from 1."""
    columns: dict[str, np.ndarray] = {OUTCOME_COLUMN: dataset.ystar.astype(np.int64)}
    for i in range(dataset.n_x_covariates):
        columns[f"{X_PREFIX}{i + 1}"] = dataset.x[:, i]
    for i in range(dataset.n_z_covariates):
        columns[f"{Z_PREFIX}{i + 1}"] = dataset.z[:, i]
    return pd.DataFrame(columns)
