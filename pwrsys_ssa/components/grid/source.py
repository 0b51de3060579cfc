"""Source / Infinite Bus Model - internal EMF behind a Thevenin impedance"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.config import NLSOLVE_F_TOLERANCE
from pwrsys_ssa.logging import logger
from pwrsys_ssa.utils.core import DeviceCore, InitResult
from pwrsys_ssa.utils.equilibrium_solver import solve_nonlinear


def thevenin_current(E_R, E_I, V_R, V_I, R_th, X_th):
    """Current (E - V) / (R_th + j*X_th) in rectangular components"""
    Zmag = R_th ** 2 + X_th ** 2
    I_R = R_th * (E_R - V_R) / Zmag + X_th * (E_I - V_I) / Zmag
    I_I = R_th * (E_I - V_I) / Zmag - X_th * (E_R - V_R) / Zmag
    return I_R, I_I


def solve_internal_emf(static, R_th, X_th, label=None):
    """
    Find the internal EMF that makes a Thevenin source deliver the
    power-flow injection at its terminal bus.

    Returns:
        (V_internal, theta_internal, converged, residual)
    """
    V_R = static['Vm'] * np.cos(static['theta'])
    V_I = static['Vm'] * np.sin(static['theta'])
    I = np.conj((static['P0'] + 1j * static['Q0']) / (V_R + 1j * V_I))

    def residual(x):
        I_R, I_I = thevenin_current(x[0], x[1], V_R, V_I, R_th, X_th)
        return jnp.stack([I_R - I.real, I_I - I.imag])

    sol, converged, res = solve_nonlinear(residual, np.array([V_R, V_I]), NLSOLVE_F_TOLERANCE, label=label)
    return float(np.hypot(sol[0], sol[1])), float(np.arctan2(sol[1], sol[0])), converged, res


def source_dynamics(x, V_R, V_I, meta, t=0.0):
    """
    Output of a static source: no states, constant EMF V_ref at theta_ref.

    Returns:
        rhs: empty array
        I_R, I_I: current injected into the network
    """
    E_R = meta['V_ref'] * jnp.cos(meta['theta_ref'])
    E_I = meta['V_ref'] * jnp.sin(meta['theta_ref'])
    I_R, I_I = thevenin_current(E_R, E_I, V_R, V_I, meta['R_th'], meta['X_th'])
    return jnp.zeros(0), I_R, I_I


def initialize_source(core, static):
    """Internal EMF magnitude and angle matching the power-flow injection.

    On failure the previous references are kept.
    """
    meta = core.metadata
    V_internal, theta_internal, converged, res = solve_internal_emf(
        static, meta['R_th'], meta['X_th'], label=core.label)
    if not converged:
        logger.warning("Initialization in Source %s failed (max residual %.3e)", core.name, res)
        return InitResult(states=np.zeros(0), setpoints={}, converged=False, residual=res)

    return InitResult(
        states=np.zeros(0),
        setpoints={'V_ref': V_internal, 'theta_ref': theta_internal},
        converged=True,
        residual=res,
    )


def build_source_core(source_data, S_system=100.0):
    """Build Source as a stateless DeviceCore

    Args:
        source_data: dict with R_th, X_th (system base) and the 'gen' it models
        S_system: system base power (MVA)

    Returns:
        core: DeviceCore object
        metadata: dict with additional info
    """
    core = DeviceCore(label=f'Source_{source_data["idx"]}', dynamics_fn=source_dynamics)

    R_th = source_data.get('R_th', 0.0)
    X_th = source_data.get('X_th', 0.0)
    if R_th == 0.0 and X_th == 0.0:
        raise ValueError(f"Source {source_data['idx']} needs a nonzero Thevenin impedance")

    metadata = {
        'idx': source_data['idx'],
        'gen': source_data['gen'],
        'R_th': R_th,
        'X_th': X_th,
        'V_ref': source_data.get('V_ref', 1.0),
        'theta_ref': source_data.get('theta_ref', 0.0),
    }

    core.set_metadata(metadata)
    core.n_states = 0
    core.component_type = "grid"
    core.model_name = "Source"

    return core, metadata
