"""
Saturation curve fitting and evaluation.
"""
import numpy as np
import pytest

from pwrsys_ssa.components.saturation import (
    EXPONENTIAL, QUADRATIC, saturation_coefficients, saturation_function)


@pytest.mark.parametrize("kind", [QUADRATIC, EXPONENTIAL])
def test_curve_passes_through_data_points(kind):
    Se_1_0, Se_1_2 = 0.05, 0.3
    coeffs = saturation_coefficients(kind, Se_1_0, Se_1_2)

    assert saturation_function(kind, coeffs, 1.0) == pytest.approx(Se_1_0, rel=1e-9)
    assert saturation_function(kind, coeffs, 1.2) == pytest.approx(Se_1_2, rel=1e-9)


def test_quadratic_coefficients():
    A, B = saturation_coefficients(QUADRATIC, 0.05, 0.3)
    r = np.sqrt(1.2 * 0.3 / 0.05)
    assert A == pytest.approx((r - 1.2) / (r - 1.0))
    assert B == pytest.approx(0.05 / (1.0 - A) ** 2)


def test_exponential_coefficients():
    A, B = saturation_coefficients(EXPONENTIAL, 0.1, 0.4)
    assert A == pytest.approx(np.log(4.0) / np.log(1.2))
    assert B == pytest.approx(0.1)


def test_no_saturation_data_gives_zero_curve():
    assert saturation_coefficients(QUADRATIC, 0.0, 0.0) == (0.0, 0.0)
    assert saturation_function(QUADRATIC, (0.0, 0.0), 1.1) == 0.0


def test_invalid_saturation_data():
    with pytest.raises(ValueError):
        saturation_coefficients(QUADRATIC, -0.05, 0.3)
    with pytest.raises(ValueError):
        saturation_coefficients(EXPONENTIAL, 0.05, 0.0)


def test_unknown_curve():
    with pytest.raises(ValueError, match="Unknown saturation curve"):
        saturation_function("cubic", (1.0, 1.0), 1.0)
