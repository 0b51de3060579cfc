"""GENCLS Generator Model (classical machine: constant EMF behind transient reactance)"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.components.generators.reference_frames import (
    air_gap_torque, dq_ri, ri_dq, solve_stator)
from pwrsys_ssa.config import NLSOLVE_F_TOLERANCE
from pwrsys_ssa.utils.core import DeviceCore, InitResult
from pwrsys_ssa.utils.equilibrium_solver import solve_nonlinear


def _electrical(delta, E_p, V_R, V_I, meta):
    """Stator currents and air-gap torque for internal EMF E_p at angle delta"""
    ra = meta['ra']
    xd1 = meta['xd1']
    v_d, v_q = ri_dq(delta, V_R, V_I)
    i_d, i_q = solve_stator(ra, xd1, xd1, 0.0, E_p, v_d, v_q)
    tau_e = air_gap_torque(ra, v_d, v_q, i_d, i_q)
    I_R, I_I = dq_ri(delta, i_d, i_q)
    return tau_e, I_R, I_I


def gencls_dynamics(x, V_R, V_I, meta, t=0.0):
    """
    Numerical dynamics for GENCLS generator.

    Args:
        x: array of 2 states [delta, omega]
        V_R, V_I: terminal voltage (system base)
        meta: dict of generator parameters, with 'E_p' and 'tau_m' set by
              initialization

    Returns:
        rhs: [omega - 1, tau_m - tau_e - D*(omega - 1)] for masses [1/omega_b, M]
        I_R, I_I: current injected into the network
    """
    delta, omega = x[0], x[1]
    tau_e, I_R, I_I = _electrical(delta, meta['E_p'], V_R, V_I, meta)
    rhs = jnp.stack([
        omega - 1.0,
        meta['tau_m'] - tau_e - meta['D'] * (omega - 1.0),
    ])
    return rhs, I_R, I_I


def initialize_gencls(core, static):
    """
    Find rotor angle, internal EMF and mechanical torque that reproduce the
    power-flow injection at the terminal bus.

    Unknowns: [delta, E_p]. The torque follows from the air-gap power.
    """
    meta = core.metadata
    V_R = static['Vm'] * np.cos(static['theta'])
    V_I = static['Vm'] * np.sin(static['theta'])
    V = V_R + 1j * V_I
    I = np.conj((static['P0'] + 1j * static['Q0']) / V)

    E = V + (meta['ra'] + 1j * meta['xd1']) * I
    x0 = np.array([np.angle(E), np.abs(E)])

    def residual(x):
        _, I_R, I_I = _electrical(x[0], x[1], V_R, V_I, meta)
        return jnp.stack([I_R - I.real, I_I - I.imag])

    sol, converged, res = solve_nonlinear(residual, x0, NLSOLVE_F_TOLERANCE, label=core.label)
    delta, E_p = sol
    tau_e, _, _ = _electrical(delta, E_p, V_R, V_I, meta)

    return InitResult(
        states=np.array([delta, 1.0]),
        setpoints={'E_p': E_p, 'tau_m': float(tau_e)},
        converged=converged,
        residual=res,
    )


def build_gencls_core(gen_data, S_system=100.0):
    """Build GENCLS generator as DeviceCore

    Args:
        gen_data: dict with generator parameters (machine base Sn)
        S_system: system base power (MVA)

    Returns:
        core: DeviceCore object with dynamics method
        metadata: dict with additional info
    """
    core = DeviceCore(label=f'GENCLS_{gen_data["idx"]}', dynamics_fn=gencls_dynamics)

    Sn = gen_data.get('Sn', S_system)
    Z_scale = S_system / Sn
    M_scale = Sn / S_system
    omega_b = 2 * np.pi * gen_data.get('fn', 60.0)

    delta, omega = core.symbols(['delta', 'omega'])
    core.add_states([delta, omega])

    metadata = {
        'idx': gen_data['idx'],
        'gen': gen_data['gen'],
        'Sn': Sn,
        'omega_b': omega_b,
        'M': gen_data['M'] * M_scale,
        'D': gen_data.get('D', 0.0) * M_scale,
        'ra': gen_data.get('ra', 0.0) * Z_scale,
        'xd1': gen_data['xd1'] * Z_scale,
        'E_p': 1.0,
        'tau_m': 0.0,
    }
    if metadata['ra'] == 0.0 and metadata['xd1'] == 0.0:
        raise ValueError(f"GENCLS {gen_data['idx']}: ra and xd1 cannot both be zero")

    core.set_metadata(metadata)
    core.n_states = 2
    core.mass = np.array([1.0 / omega_b, metadata['M']])
    core.component_type = "generator"
    core.model_name = "GENCLS"

    return core, metadata
