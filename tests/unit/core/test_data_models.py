"""
Tests for the Dataset container.
"""

import numpy as np
import pytest

from misclassification_service.core.data_models import Dataset


def make_dataset(n: int = 5) -> Dataset:
    rng = np.random.default_rng(0)
    return Dataset.from_arrays(
        ystar=rng.integers(1, 3, size=n),
        x=rng.normal(size=(n, 2)),
        z=rng.normal(size=n),
    )


class TestDatasetConstruction:
    def test_one_dimensional_covariates_become_columns(self) -> None:
        """A 1D covariate is treated as a single column."""
        dataset = make_dataset()
        assert dataset.x.shape == (5, 2)
        assert dataset.z.shape == (5, 1)
        assert dataset.n_x_covariates == 2
        assert dataset.n_z_covariates == 1

    def test_rejects_outcome_outside_classes(self) -> None:
        """Outcomes must be coded 1 or 2."""
        with pytest.raises(ValueError, match="1 or 2"):
            Dataset.from_arrays(ystar=[1, 2, 0], x=np.zeros(3), z=np.zeros(3))

    def test_rejects_non_integer_outcome(self) -> None:
        """Fractional outcomes are rejected."""
        with pytest.raises(ValueError, match="integers"):
            Dataset.from_arrays(ystar=[1.0, 1.5], x=np.zeros(2), z=np.zeros(2))

    def test_rejects_mismatched_rows(self) -> None:
        """All inputs must have the same number of rows."""
        with pytest.raises(ValueError, match="Row counts"):
            Dataset.from_arrays(ystar=[1, 2], x=np.zeros(3), z=np.zeros(2))

    def test_rejects_missing_covariates(self) -> None:
        """NaN covariates are rejected."""
        with pytest.raises(ValueError, match="missing"):
            Dataset.from_arrays(
                ystar=[1, 2], x=np.array([0.0, np.nan]), z=np.zeros(2)
            )

    def test_rejects_empty(self) -> None:
        """At least one subject is required."""
        with pytest.raises(ValueError, match="at least one"):
            Dataset.from_arrays(
                ystar=np.array([], dtype=int),
                x=np.zeros((0, 1)),
                z=np.zeros((0, 1)),
            )


class TestDatasetViews:
    def test_design_matrices_have_intercept(self) -> None:
        """Design matrices prepend a column of ones."""
        dataset = make_dataset()
        assert dataset.x_design.shape == (5, 3)
        assert dataset.z_design.shape == (5, 2)
        np.testing.assert_array_equal(dataset.x_design[:, 0], 1.0)
        np.testing.assert_array_equal(dataset.z_design[:, 1:], dataset.z)

    def test_outcome_encodings(self) -> None:
        """Class index is 0-based and the indicator marks Y*=1."""
        dataset = Dataset.from_arrays(ystar=[1, 2, 2], x=np.zeros(3), z=np.zeros(3))
        np.testing.assert_array_equal(dataset.observed_class_index, [0, 1, 1])
        np.testing.assert_array_equal(dataset.observed_is_class_one, [1.0, 0.0, 0.0])

    def test_observations_iterate_in_row_order(self) -> None:
        """Each observation carries its own row."""
        dataset = make_dataset(3)
        observations = list(dataset.observations())
        assert len(observations) == 3
        assert observations[1].ystar == int(dataset.ystar[1])
        np.testing.assert_array_equal(observations[2].x, dataset.x[2])
