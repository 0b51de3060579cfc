"""
Nonlinear solves used by the per-device initializers.

Each initializer writes its steady-state equations as a residual f(x) = 0
with jax.numpy operations, so the exact Jacobian comes from jax.jacfwd and
MINPACK's hybrid Newton method (scipy.optimize.root) does the rest.
"""
import jax
import numpy as np
from scipy.optimize import root

from pwrsys_ssa.config import NLSOLVE_F_TOLERANCE, NLSOLVE_X_TOLERANCE
from pwrsys_ssa.logging import logger


def solve_nonlinear(residual_fn, x0, ftol=NLSOLVE_F_TOLERANCE, label=None):
    """
    Find a root of residual_fn starting from x0.

    Args:
        residual_fn: jax-traceable function of a 1-D array returning a 1-D array
                     of the same length
        x0: initial guess
        ftol: convergence tolerance on max |f|
        label: device description used in debug messages

    Returns:
        x: solution (or the last iterate when not converged)
        converged: True if max |f(x)| <= ftol
        residual: max |f(x)|
    """
    x0 = np.asarray(x0, dtype=float)
    jacobian_fn = jax.jacfwd(residual_fn)

    def fun(x):
        return np.asarray(residual_fn(x), dtype=float)

    def jac(x):
        return np.asarray(jacobian_fn(x), dtype=float)

    sol = root(fun, x0, jac=jac, method='hybr', options={'xtol': NLSOLVE_X_TOLERANCE})
    x = np.asarray(sol.x, dtype=float)
    f_final = fun(x)
    residual = float(np.max(np.abs(f_final))) if f_final.size else 0.0
    converged = bool(np.isfinite(residual) and residual <= ftol)

    logger.debug(
        "nlsolve %s: %d evaluations, max residual %.3e (%s)",
        label or '', sol.nfev, residual, sol.message,
    )
    return x, converged, residual
