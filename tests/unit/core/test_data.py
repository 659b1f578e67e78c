"""
Tests for CSV loading.
"""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from misclassification_service.core.data import (
    dataset_to_frame,
    frame_to_dataset,
    load_csv_to_dataset,
)


def test_load_csv(tmp_path: Path) -> None:
    """ystar, x* and z* columns are picked up by prefix."""
    path = tmp_path / "data.csv"
    pd.DataFrame(
        {
            "ystar": [1, 2, 1],
            "x1": [0.1, 0.2, 0.3],
            "x2": [1.0, 2.0, 3.0],
            "z1": [-1.0, 0.0, 1.0],
        }
    ).to_csv(path, index=False)

    dataset = load_csv_to_dataset(path)

    assert dataset.n_subjects == 3
    assert dataset.n_x_covariates == 2
    assert dataset.n_z_covariates == 1
    np.testing.assert_array_equal(dataset.ystar, [1, 2, 1])
    np.testing.assert_allclose(dataset.x[:, 1], [1.0, 2.0, 3.0])


def test_missing_outcome_column() -> None:
    df = pd.DataFrame({"x1": [0.0], "z1": [0.0]})
    with pytest.raises(ValueError, match="ystar"):
        frame_to_dataset(df)


def test_missing_z_columns() -> None:
    df = pd.DataFrame({"ystar": [1], "x1": [0.0]})
    with pytest.raises(ValueError, match="z"):
        frame_to_dataset(df)


def test_missing_values_rejected() -> None:
    df = pd.DataFrame({"ystar": [1, 2], "x1": [0.0, None], "z1": [0.0, 1.0]})
    with pytest.raises(ValueError, match="missing"):
        frame_to_dataset(df)


def test_frame_round_trip() -> None:
    df = pd.DataFrame({"ystar": [2, 1], "x1": [0.5, 1.5], "z1": [3.0, 4.0]})
    result = dataset_to_frame(frame_to_dataset(df))
    pd.testing.assert_frame_equal(result, df, check_dtype=False)
