"""SSCIM - Simplified single-cage induction machine (stator transients neglected)"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.components.motors.scim import load_torque
from pwrsys_ssa.config import INDUCTION_SPEED_GUESS, STRICT_NLSOLVE_F_TOLERANCE
from pwrsys_ssa.utils.core import DeviceCore, InitResult
from pwrsys_ssa.utils.equilibrium_solver import solve_nonlinear


def sscim_dynamics(x, V_R, V_I, meta, t=0.0):
    """
    Numerical dynamics for SSCIM.

    Stator currents follow algebraically from the rotor fluxes:

        [-X_p  R_s] [i_qs]   [v_ds + k*psi_qr]
        [-R_s -X_p] [i_ds] = [k*psi_dr - v_qs],   k = X_m / X_rr

    Args:
        x: array of 3 states [psi_qr, psi_dr, omega_r]
        V_R, V_I: terminal voltage (system base)
        meta: dict of machine parameters

    Returns:
        rhs, I_R, I_I for masses [1/omega_b, 1/omega_b, 2H]
    """
    psi_qr, psi_dr, omega_r = x[0], x[1], x[2]
    R_s, R_r = meta['R_s'], meta['R_r']
    X_m, X_rr, X_p = meta['X_m'], meta['X_rr'], meta['X_p']
    v_qs = V_I
    v_ds = V_R

    k = X_m / X_rr
    r1 = v_ds + k * psi_qr
    r2 = k * psi_dr - v_qs
    det = X_p ** 2 + R_s ** 2
    i_qs = (-X_p * r1 - R_s * r2) / det
    i_ds = (R_s * r1 - X_p * r2) / det
    i_qr = (psi_qr - X_m * i_qs) / X_rr
    i_dr = (psi_dr - X_m * i_ds) / X_rr
    tau_e = psi_qr * i_dr - psi_dr * i_qr

    rhs = jnp.stack([
        -(1.0 - omega_r) * psi_dr - R_r * i_qr,
        (1.0 - omega_r) * psi_qr - R_r * i_dr,
        tau_e - load_torque(meta, omega_r),
    ])

    scale = meta['base_power'] / meta['S_system']
    I_R = -(i_ds - V_I * meta['B_shunt']) * scale
    I_I = -(i_qs + V_R * meta['B_shunt']) * scale
    return rhs, I_R, I_I


def initialize_sscim(core, static):
    """
    Solve the 11 steady-state equations for [i_qs, i_ds, i_qr, i_dr, B_sh,
    psi_qs, psi_ds, psi_qr, psi_dr, omega_r, tau_m0] with the strict tolerance.
    """
    meta = core.metadata
    scale = meta['S_system'] / meta['base_power']
    P0 = static['P0'] * scale
    Q0 = static['Q0'] * scale
    V_R = static['Vm'] * np.cos(static['theta'])
    V_I = static['Vm'] * np.sin(static['theta'])
    I = np.conj((P0 + 1j * Q0) / (V_R + 1j * V_I))
    I_R, I_I = I.real, I.imag

    R_s, R_r = meta['R_s'], meta['R_r']
    X_m, X_ss, X_rr, X_p = meta['X_m'], meta['X_ss'], meta['X_rr'], meta['X_p']
    A, B, C = meta['A'], meta['B'], meta['C']
    v_ds, v_qs = V_R, V_I

    i_qs0 = I_I
    i_ds0 = I_R
    psi_qs0 = -v_ds + R_s * i_ds0
    psi_ds0 = v_qs - R_s * i_qs0
    psi_qr0 = X_rr / X_m * (psi_qs0 - i_qs0 * X_p)
    psi_dr0 = X_rr / X_m * (psi_ds0 - i_ds0 * X_p)
    i_qr0 = (psi_qr0 - X_m * i_qs0) / X_rr
    i_dr0 = (psi_dr0 - X_m * i_ds0) / X_rr
    omega_r0 = INDUCTION_SPEED_GUESS
    x0 = np.array([i_qs0, i_ds0, i_qr0, i_dr0, 0.0, psi_qs0, psi_ds0,
                   psi_qr0, psi_dr0, omega_r0, P0 / omega_r0])

    def residual(x):
        i_qs, i_ds, i_qr, i_dr, B_sh = x[0], x[1], x[2], x[3], x[4]
        psi_qs, psi_ds, psi_qr, psi_dr = x[5], x[6], x[7], x[8]
        omega_r, tau_m0 = x[9], x[10]
        return jnp.stack([
            -I_R + i_ds - V_I * B_sh,
            -I_I + i_qs + V_R * B_sh,
            v_qs - psi_ds - R_s * i_qs,
            v_ds + psi_qs - R_s * i_ds,
            -psi_qs + X_ss * i_qs + X_m * i_qr,
            -psi_ds + X_ss * i_ds + X_m * i_dr,
            -psi_qr + X_rr * i_qr + X_m * i_qs,
            -psi_dr + X_rr * i_dr + X_m * i_ds,
            -(1.0 - omega_r) * psi_dr - R_r * i_qr,
            (1.0 - omega_r) * psi_qr - R_r * i_dr,
            psi_qr * i_dr - psi_dr * i_qr - tau_m0 * (A * omega_r ** 2 + B * omega_r + C),
        ])

    sol, converged, res = solve_nonlinear(residual, x0, STRICT_NLSOLVE_F_TOLERANCE, label=core.label)
    B_sh, tau_m0 = sol[4], sol[10]

    return InitResult(
        states=np.array(sol[7:10]),
        setpoints={'B_shunt': B_sh, 'tau_ref': tau_m0, 'P_ref': tau_m0},
        converged=converged,
        residual=res,
    )


def build_sscim_core(motor_data, S_system=100.0):
    """Build SSCIM induction machine as DeviceCore"""
    core = DeviceCore(label=f'SSCIM_{motor_data["idx"]}', dynamics_fn=sscim_dynamics)

    X_m = motor_data['X_m']
    X_ss = motor_data['X_ls'] + X_m
    X_rr = motor_data['X_lr'] + X_m
    X_p = X_ss - X_m ** 2 / X_rr
    omega_b = 2 * np.pi * motor_data.get('fn', 60.0)

    psi_qr, psi_dr, omega_r = core.symbols(['psi_qr', 'psi_dr', 'omega_r'])
    core.add_states([psi_qr, psi_dr, omega_r])

    metadata = {
        'idx': motor_data['idx'],
        'load': motor_data['load'],
        'R_s': motor_data['R_s'],
        'R_r': motor_data['R_r'],
        'X_ls': motor_data['X_ls'],
        'X_lr': motor_data['X_lr'],
        'X_m': X_m,
        'X_ss': X_ss,
        'X_rr': X_rr,
        'X_p': X_p,
        'H': motor_data['H'],
        'A': motor_data.get('A', 1.0),
        'B': motor_data.get('B', 0.0),
        'C': motor_data.get('C', 0.0),
        'base_power': motor_data.get('base_power', S_system),
        'S_system': S_system,
        'omega_b': omega_b,
        'B_shunt': 0.0,
        'tau_ref': 1.0,
        'P_ref': 1.0,
    }

    core.set_metadata(metadata)
    core.n_states = 3
    core.mass = np.array([1.0 / omega_b, 1.0 / omega_b, 2.0 * metadata['H']])
    core.component_type = "motor"
    core.model_name = "SSCIM"

    return core, metadata
