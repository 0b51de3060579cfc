"""GENROU Generator Model (round rotor, subtransient flux model with saturation)"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.components.generators.reference_frames import (
    air_gap_torque, dq_ri, ri_dq, solve_stator)
from pwrsys_ssa.components.saturation import (
    QUADRATIC, saturation_coefficients, saturation_function)
from pwrsys_ssa.config import NLSOLVE_F_TOLERANCE, SATURATION_FLUX_FLOOR
from pwrsys_ssa.utils.core import DeviceCore, InitResult
from pwrsys_ssa.utils.equilibrium_solver import solve_nonlinear


def _genrou_equations(x, tau_m, V_f, V_R, V_I, meta):
    eq_p, ed_p, psi_kd, psi_kq, delta, omega = x[0], x[1], x[2], x[3], x[4], x[5]

    ra = meta['ra']
    xd, xq = meta['xd'], meta['xq']
    xd1, xq1 = meta['xd1'], meta['xq1']
    xd2 = meta['xd2']
    xl = meta['xl']
    gd1, gd2 = meta['gd1'], meta['gd2']
    gq1, gq2 = meta['gq1'], meta['gq2']

    # Subtransient flux linkages
    psi_d2 = gd1 * eq_p + (1.0 - gd1) * psi_kd
    psi_q2 = -gq1 * ed_p + (1.0 - gq1) * psi_kq

    v_d, v_q = ri_dq(delta, V_R, V_I)
    i_d, i_q = solve_stator(ra, xd2, xd2, -psi_q2, psi_d2, v_d, v_q)
    tau_e = air_gap_torque(ra, v_d, v_q, i_d, i_q)

    psi_2 = jnp.maximum(jnp.sqrt(psi_d2 ** 2 + psi_q2 ** 2), SATURATION_FLUX_FLOOR)
    Se = saturation_function(meta['sat'], (meta['Sat_A'], meta['Sat_B']), psi_2)

    Xad_Ifd = eq_p + (xd - xd1) * (i_d - gd2 * (psi_kd + (xd1 - xl) * i_d - eq_p)) + Se * psi_d2
    Xaq_Ikq = ed_p - (xq - xq1) * (i_q - gq2 * (psi_kq + (xq1 - xl) * i_q + ed_p)) \
        - Se * psi_q2 * meta['gqd']

    rhs = jnp.stack([
        V_f - Xad_Ifd,
        -Xaq_Ikq,
        -psi_kd + eq_p - (xd1 - xl) * i_d,
        -psi_kq - ed_p - (xq1 - xl) * i_q,
        omega - 1.0,
        tau_m - tau_e - meta['D'] * (omega - 1.0),
    ])
    I_R, I_I = dq_ri(delta, i_d, i_q)
    return rhs, I_R, I_I


def genrou_dynamics(x, V_R, V_I, meta, t=0.0):
    """
    Numerical dynamics for GENROU generator.

    Args:
        x: array of 6 states [eq_p, ed_p, psi_kd, psi_kq, delta, omega]
        V_R, V_I: terminal voltage (system base)
        meta: dict of generator parameters, with 'tau_m' and 'V_f' set by
              initialization

    Returns:
        rhs, I_R, I_I for masses [Td10, Tq10, Td20, Tq20, 1/omega_b, M]
    """
    return _genrou_equations(x, meta['tau_m'], meta['V_f'], V_R, V_I, meta)


def initialize_genrou(core, static):
    """
    Unknowns: [delta, tau_m, V_f, eq_p, ed_p, psi_kd, psi_kq]; omega = 1.0.

    The initial guess is the unsaturated steady state with the rotor aligned
    on E = V + (ra + j*xq)*I.
    """
    meta = core.metadata
    V_R = static['Vm'] * np.cos(static['theta'])
    V_I = static['Vm'] * np.sin(static['theta'])
    V = V_R + 1j * V_I
    I = np.conj((static['P0'] + 1j * static['Q0']) / V)

    ra, xd1, xq1, xl = meta['ra'], meta['xd1'], meta['xq1'], meta['xl']
    delta0 = np.angle(V + (ra + 1j * meta['xq']) * I)
    rotation = np.exp(-1j * (delta0 - np.pi / 2))
    v_d, v_q = (V * rotation).real, (V * rotation).imag
    i_d, i_q = (I * rotation).real, (I * rotation).imag

    ed_p0 = (meta['xq'] - xq1) * i_q
    psi_kq0 = -ed_p0 - (xq1 - xl) * i_q
    eq_p0 = v_q + ra * i_q + xd1 * i_d
    psi_kd0 = eq_p0 - (xd1 - xl) * i_d
    V_f0 = eq_p0 + (meta['xd'] - xd1) * i_d
    tau_m0 = static['P0'] + ra * abs(I) ** 2
    x0 = np.array([delta0, tau_m0, V_f0, eq_p0, ed_p0, psi_kd0, psi_kq0])

    def residual(x):
        delta, tau_m, V_f = x[0], x[1], x[2]
        states = jnp.stack([x[3], x[4], x[5], x[6], delta, 1.0])
        rhs, I_R, I_I = _genrou_equations(states, tau_m, V_f, V_R, V_I, meta)
        return jnp.stack([rhs[0], rhs[1], rhs[2], rhs[3], rhs[5], I_R - I.real, I_I - I.imag])

    sol, converged, res = solve_nonlinear(residual, x0, NLSOLVE_F_TOLERANCE, label=core.label)
    delta, tau_m, V_f, eq_p, ed_p, psi_kd, psi_kq = sol

    return InitResult(
        states=np.array([eq_p, ed_p, psi_kd, psi_kq, delta, 1.0]),
        setpoints={'tau_m': tau_m, 'V_f': V_f},
        converged=converged,
        residual=res,
    )


def build_genrou_core(gen_data, S_system=100.0):
    """Build GENROU generator as DeviceCore

    Args:
        gen_data: dict with generator parameters (machine base Sn)
        S_system: system base power (MVA)

    Returns:
        core: DeviceCore object with dynamics method
        metadata: dict with additional info
    """
    core = DeviceCore(label=f'GENROU_{gen_data["idx"]}', dynamics_fn=genrou_dynamics)

    # Extract and scale parameters
    Sn = gen_data.get('Sn', S_system)
    Z_scale = S_system / Sn
    M_scale = Sn / S_system

    ra_val = gen_data.get('ra', 0.0) * Z_scale
    xd = gen_data['xd'] * Z_scale
    xq = gen_data['xq'] * Z_scale
    xd1 = gen_data['xd1'] * Z_scale
    xq1 = gen_data['xq1'] * Z_scale
    xd2 = gen_data['xd2'] * Z_scale
    xl = gen_data['xl'] * Z_scale

    if not (xd > xd1 > xd2 > xl and xq > xq1 > xd2):
        raise ValueError(
            f"GENROU {gen_data['idx']}: reactances must satisfy "
            "xd > xd1 > xd2 > xl and xq > xq1 > xd2"
        )

    omega_b = 2 * np.pi * gen_data.get('fn', 60.0)

    # GENROU coefficients (xq2 = xd2)
    gd1 = (xd2 - xl) / (xd1 - xl)
    gd2 = (xd1 - xd2) / ((xd1 - xl)**2)
    gq1 = (xd2 - xl) / (xq1 - xl)
    gq2 = (xq1 - xd2) / ((xq1 - xl)**2)
    gqd = (xq - xl) / (xd - xl)

    sat_kind = gen_data.get('sat', QUADRATIC)
    Sat_A, Sat_B = saturation_coefficients(sat_kind, gen_data.get('S10', 0.0), gen_data.get('S12', 0.0))

    # States: [eq_p, ed_p, psi_kd, psi_kq, delta, omega]
    eq_p, ed_p = core.symbols(['eq_p', 'ed_p'])
    psi_kd, psi_kq = core.symbols(['psi_kd', 'psi_kq'])
    delta, omega = core.symbols(['delta', 'omega'])
    core.add_states([eq_p, ed_p, psi_kd, psi_kq, delta, omega])

    # Ports: Inputs [V_R, V_I], Outputs [I_R, I_I]

    metadata = {
        'idx': gen_data['idx'],
        'gen': gen_data['gen'],
        'Sn': Sn,
        'omega_b': omega_b,
        'xd': xd, 'xq': xq,
        'xd1': xd1, 'xq1': xq1,
        'xd2': xd2,
        'xl': xl,
        'gd1': gd1, 'gd2': gd2,
        'gq1': gq1, 'gq2': gq2,
        'gqd': gqd,
        'sat': sat_kind,
        'Sat_A': Sat_A, 'Sat_B': Sat_B,
        'ra': ra_val,
        'M': gen_data['M'] * M_scale,
        'D': gen_data.get('D', 0.0) * M_scale,
        'Td10': gen_data['Td10'],
        'Td20': gen_data['Td20'],
        'Tq10': gen_data['Tq10'],
        'Tq20': gen_data['Tq20'],
        'tau_m': 0.0,
        'V_f': 1.0,
    }

    core.set_metadata(metadata)

    core.n_states = 6
    core.mass = np.array([
        metadata['Td10'], metadata['Tq10'], metadata['Td20'], metadata['Tq20'],
        1.0 / omega_b, metadata['M'],
    ])
    core.component_type = "generator"
    core.model_name = "GENROU"

    return core, metadata
