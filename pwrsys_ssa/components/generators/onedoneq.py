"""ONEDONEQ Generator Model (one d-axis and one q-axis transient circuit)"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.components.generators.reference_frames import (
    air_gap_torque, dq_ri, ri_dq, solve_stator)
from pwrsys_ssa.config import NLSOLVE_F_TOLERANCE
from pwrsys_ssa.utils.core import DeviceCore, InitResult
from pwrsys_ssa.utils.equilibrium_solver import solve_nonlinear


def _onedoneq_equations(eq_p, ed_p, delta, omega, tau_m, V_f, V_R, V_I, meta):
    ra = meta['ra']
    xd, xq = meta['xd'], meta['xq']
    xd1, xq1 = meta['xd1'], meta['xq1']

    v_d, v_q = ri_dq(delta, V_R, V_I)
    i_d, i_q = solve_stator(ra, xd1, xq1, ed_p, eq_p, v_d, v_q)
    tau_e = air_gap_torque(ra, v_d, v_q, i_d, i_q)

    rhs = jnp.stack([
        -eq_p - (xd - xd1) * i_d + V_f,
        -ed_p + (xq - xq1) * i_q,
        omega - 1.0,
        tau_m - tau_e - meta['D'] * (omega - 1.0),
    ])
    I_R, I_I = dq_ri(delta, i_d, i_q)
    return rhs, I_R, I_I


def onedoneq_dynamics(x, V_R, V_I, meta, t=0.0):
    """
    Numerical dynamics for ONEDONEQ generator.

    Args:
        x: array of 4 states [eq_p, ed_p, delta, omega]
        V_R, V_I: terminal voltage (system base)
        meta: dict of generator parameters, with 'tau_m' and 'V_f' set by
              initialization

    Returns:
        rhs, I_R, I_I for masses [Td10, Tq10, 1/omega_b, M]
    """
    return _onedoneq_equations(
        x[0], x[1], x[2], x[3], meta['tau_m'], meta['V_f'], V_R, V_I, meta)


def initialize_onedoneq(core, static):
    """
    Unknowns: [delta, tau_m, V_f, eq_p, ed_p]; omega is fixed at 1.0.

    The rotor angle is guessed from the q-axis EMF E = V + (ra + j*xq)*I.
    """
    meta = core.metadata
    V_R = static['Vm'] * np.cos(static['theta'])
    V_I = static['Vm'] * np.sin(static['theta'])
    V = V_R + 1j * V_I
    I = np.conj((static['P0'] + 1j * static['Q0']) / V)

    ra, xd1 = meta['ra'], meta['xd1']
    delta0 = np.angle(V + (ra + 1j * meta['xq']) * I)
    dq = (V * np.exp(-1j * (delta0 - np.pi / 2)))
    v_d, v_q = dq.real, dq.imag
    idq = (I * np.exp(-1j * (delta0 - np.pi / 2)))
    i_d, i_q = idq.real, idq.imag
    eq_p0 = v_q + ra * i_q + xd1 * i_d
    ed_p0 = (meta['xq'] - meta['xq1']) * i_q
    V_f0 = eq_p0 + (meta['xd'] - xd1) * i_d
    tau_m0 = static['P0'] + ra * abs(I) ** 2
    x0 = np.array([delta0, tau_m0, V_f0, eq_p0, ed_p0])

    def residual(x):
        delta, tau_m, V_f, eq_p, ed_p = x[0], x[1], x[2], x[3], x[4]
        rhs, I_R, I_I = _onedoneq_equations(eq_p, ed_p, delta, 1.0, tau_m, V_f, V_R, V_I, meta)
        return jnp.stack([rhs[0], rhs[1], rhs[3], I_R - I.real, I_I - I.imag])

    sol, converged, res = solve_nonlinear(residual, x0, NLSOLVE_F_TOLERANCE, label=core.label)
    delta, tau_m, V_f, eq_p, ed_p = sol

    return InitResult(
        states=np.array([eq_p, ed_p, delta, 1.0]),
        setpoints={'tau_m': tau_m, 'V_f': V_f},
        converged=converged,
        residual=res,
    )


def build_onedoneq_core(gen_data, S_system=100.0):
    """Build ONEDONEQ generator as DeviceCore

    Args:
        gen_data: dict with generator parameters (machine base Sn)
        S_system: system base power (MVA)

    Returns:
        core: DeviceCore object with dynamics method
        metadata: dict with additional info
    """
    core = DeviceCore(label=f'ONEDONEQ_{gen_data["idx"]}', dynamics_fn=onedoneq_dynamics)

    Sn = gen_data.get('Sn', S_system)
    Z_scale = S_system / Sn
    M_scale = Sn / S_system
    omega_b = 2 * np.pi * gen_data.get('fn', 60.0)

    eq_p, ed_p, delta, omega = core.symbols(['eq_p', 'ed_p', 'delta', 'omega'])
    core.add_states([eq_p, ed_p, delta, omega])

    metadata = {
        'idx': gen_data['idx'],
        'gen': gen_data['gen'],
        'Sn': Sn,
        'omega_b': omega_b,
        'M': gen_data['M'] * M_scale,
        'D': gen_data.get('D', 0.0) * M_scale,
        'ra': gen_data.get('ra', 0.0) * Z_scale,
        'xd': gen_data['xd'] * Z_scale,
        'xq': gen_data['xq'] * Z_scale,
        'xd1': gen_data['xd1'] * Z_scale,
        'xq1': gen_data['xq1'] * Z_scale,
        'Td10': gen_data['Td10'],
        'Tq10': gen_data['Tq10'],
        'tau_m': 0.0,
        'V_f': 1.0,
    }

    core.set_metadata(metadata)
    core.n_states = 4
    core.mass = np.array([metadata['Td10'], metadata['Tq10'], 1.0 / omega_b, metadata['M']])
    core.component_type = "generator"
    core.model_name = "ONEDONEQ"

    return core, metadata
