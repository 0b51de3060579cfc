"""
Jacobian of the system equations and its reduction to the differential states.

The Jacobian is evaluated with jax.jacfwd at t = 0 (and dx = 0 for the
residual form). The algebraic variables are then eliminated:

    A = diag(1/M_D) * (fx - fy * gy^-1 * gx)

with D the differential and A the algebraic positions of the state vector.
"""
from enum import Enum

import jax
import jax.numpy as jnp
import numpy as np
from scipy import linalg

from pwrsys_ssa.exceptions import SingularReduction
from pwrsys_ssa.logging import logger


class SimulationModel(Enum):
    """Form in which the system equations are handed to the integrator"""
    MASS_MATRIX = 'mass_matrix'
    RESIDUAL = 'residual'


def calculate_jacobian(model, system_model, x_eval):
    """
    Dense Jacobian of the system equations at x_eval.

    Args:
        model: SimulationModel
        system_model: SystemModel providing mass_matrix_rhs and implicit
        x_eval: operating point

    Returns:
        numpy array (n, n)
    """
    x = jnp.asarray(np.asarray(x_eval, dtype=float))
    if model is SimulationModel.RESIDUAL:
        dx0 = jnp.zeros_like(x)

        def system_fn(x):
            return system_model.implicit(dx0, x, 0.0)
    else:
        def system_fn(x):
            return system_model.mass_matrix_rhs(x, 0.0)
    return np.asarray(jax.jacfwd(system_fn)(x))


def make_reduced_jacobian_index(global_index, diff_states):
    """Position of every differential state in the reduced Jacobian"""
    reduced_position = np.cumsum(diff_states) - 1
    jac_index = {}
    for device_name, device_index in global_index.items():
        jac_index[device_name] = {
            state: int(reduced_position[ix])
            for state, ix in device_index.items() if diff_states[ix]
        }
    return jac_index


def inert_algebraic_states(gy):
    """Mask of algebraic positions whose row and column of gy are all exactly zero"""
    return ~(np.any(gy != 0.0, axis=1) | np.any(gy != 0.0, axis=0))


def reduce_jacobian(jacobian, diff_states, mass_diag, index=None):
    """
    Eliminate the algebraic variables of a DAE Jacobian.

    Algebraic states with an all-zero row and column in gy do not take part
    in the algebraic block and are dropped before solving with it.

    Args:
        jacobian: (n, n) Jacobian of the mass-matrix right-hand side
        diff_states: boolean mask, True for differential states
        mass_diag: diagonal of the mass matrix
        index: GlobalStateIndex used to name dropped states in the log

    Returns:
        reduced Jacobian over the differential states

    Raises:
        SingularReduction: gy cannot be solved after pruning
    """
    jacobian = np.asarray(jacobian, dtype=float)
    diff_states = np.asarray(diff_states, dtype=bool)
    alg_states = ~diff_states

    fx = jacobian[np.ix_(diff_states, diff_states)]
    alg_ix = np.flatnonzero(alg_states)
    inert = inert_algebraic_states(jacobian[np.ix_(alg_states, alg_states)])
    if np.any(inert):
        for ix in alg_ix[inert]:
            if index is not None:
                name, state = index.get_state_from_ix(ix)
                logger.info(
                    "Algebraic state %s in device %s was removed from the reduced jacobian "
                    "due to having only zeros in both rows and columns.", state, name)
            else:
                logger.info("Algebraic state at position %d was removed from the reduced jacobian", ix)
        alg_states = alg_states.copy()
        alg_states[alg_ix[inert]] = False

    inv_diag_M = 1.0 / np.asarray(mass_diag, dtype=float)[diff_states]
    if not np.any(alg_states):
        return inv_diag_M[:, None] * fx

    gy = jacobian[np.ix_(alg_states, alg_states)]
    fy = jacobian[np.ix_(diff_states, alg_states)]
    gx = jacobian[np.ix_(alg_states, diff_states)]
    try:
        gy_inv_gx = linalg.solve(gy, gx)
    except linalg.LinAlgError as e:
        raise SingularReduction(f"Algebraic block of the Jacobian is singular: {e}") from e
    if not np.all(np.isfinite(gy_inv_gx)):
        raise SingularReduction("Algebraic block of the Jacobian is singular")
    return inv_diag_M[:, None] * (fx - fy @ gy_inv_gx)
