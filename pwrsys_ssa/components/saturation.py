"""
Machine saturation curves.

Se(x) gives the extra field current (in pu) needed to sustain flux x beyond
the air-gap line. Both curves are defined by two coefficients (A, B) which are
fitted to the classic data points Se(1.0) and Se(1.2).
"""
import numpy as np

QUADRATIC = 'quadratic'
EXPONENTIAL = 'exponential'


def quadratic_saturation(coeffs, x):
    """Se(x) = B * (x - A)^2 / x. Undefined at x = 0."""
    A, B = coeffs
    return B * (x - A) ** 2 / x


def exponential_saturation(coeffs, x):
    """Se(x) = B * x^A"""
    A, B = coeffs
    return B * x ** A


SATURATION_FUNCTIONS = {
    QUADRATIC: quadratic_saturation,
    EXPONENTIAL: exponential_saturation,
}


def saturation_function(kind, coeffs, x):
    """Evaluate the saturation curve of the given kind at flux x.

    Works on Python floats, numpy arrays and jax tracers alike.
    """
    try:
        curve = SATURATION_FUNCTIONS[kind]
    except KeyError:
        raise ValueError(f"Unknown saturation curve '{kind}'") from None
    return curve(coeffs, x)


def saturation_coefficients(kind, Se_1_0, Se_1_2):
    """
    Fit (A, B) so that Se(1.0) = Se_1_0 and Se(1.2) = Se_1_2.

    Args:
        kind: 'quadratic' or 'exponential'
        Se_1_0: saturation factor at 1.0 pu flux
        Se_1_2: saturation factor at 1.2 pu flux

    Returns:
        (A, B) tuple; (0.0, 0.0) describes an unsaturated machine
    """
    if kind not in SATURATION_FUNCTIONS:
        raise ValueError(f"Unknown saturation curve '{kind}'")
    if Se_1_0 == 0.0 and Se_1_2 == 0.0:
        return 0.0, 0.0
    if Se_1_0 <= 0.0 or Se_1_2 <= 0.0:
        raise ValueError(f"Saturation points must be positive, got Se(1.0)={Se_1_0}, Se(1.2)={Se_1_2}")

    if kind == QUADRATIC:
        # (1.2 - A)^2 / (1 - A)^2 = 1.2 * Se(1.2) / Se(1.0)
        ratio = np.sqrt(1.2 * Se_1_2 / Se_1_0)
        if np.isclose(ratio, 1.0):
            raise ValueError("Quadratic saturation needs 1.2*Se(1.2) != Se(1.0)")
        A = (ratio - 1.2) / (ratio - 1.0)
        B = Se_1_0 / (1.0 - A) ** 2
    else:
        A = np.log(Se_1_2 / Se_1_0) / np.log(1.2)
        B = Se_1_0
    return float(A), float(B)
