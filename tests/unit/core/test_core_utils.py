import numpy as np

from misclassification_service.core.utils import add_intercept, get_rng


def test_rng_reproducibility() -> None:
    rng1 = get_rng(42)
    rng2 = get_rng(42)
    assert rng1.random() == rng2.random()


def test_add_intercept_matrix() -> None:
    design = add_intercept(np.array([[2.0, 3.0], [4.0, 5.0]]))
    np.testing.assert_array_equal(design, [[1.0, 2.0, 3.0], [1.0, 4.0, 5.0]])


def test_add_intercept_vector() -> None:
    design = add_intercept(np.array([0.5, -0.5, 1.5]))
    assert design.shape == (3, 2)
    np.testing.assert_array_equal(design[:, 0], 1.0)
    np.testing.assert_array_equal(design[:, 1], [0.5, -0.5, 1.5])
