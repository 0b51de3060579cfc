"""SCIM - Single-cage induction machine (fifth-order model)

The machine works in a synchronously rotating frame where the d axis is the
network real axis and the q axis the imaginary axis. Quantities are on the
machine base (base_power); the injection is converted to the system base.
A shunt susceptance B_shunt at the terminal absorbs the reactive mismatch
between the motor and the power-flow load.
"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.config import INDUCTION_SPEED_GUESS, STRICT_NLSOLVE_F_TOLERANCE
from pwrsys_ssa.utils.core import DeviceCore, InitResult
from pwrsys_ssa.utils.equilibrium_solver import solve_nonlinear


def load_torque(meta, omega_r):
    """Mechanical torque characteristic tau_ref * (A w^2 + B w + C)"""
    return meta['tau_ref'] * (meta['A'] * omega_r ** 2 + meta['B'] * omega_r + meta['C'])


def scim_dynamics(x, V_R, V_I, meta, t=0.0):
    """
    Numerical dynamics for SCIM.

    Args:
        x: array of 5 states [psi_qs, psi_ds, psi_qr, psi_dr, omega_r]
        V_R, V_I: terminal voltage (system base)
        meta: dict of machine parameters, with 'tau_ref' and 'B_shunt' set by
              initialization

    Returns:
        rhs, I_R, I_I for masses [1/omega_b] * 4 + [2H]
    """
    psi_qs, psi_ds, psi_qr, psi_dr, omega_r = x[0], x[1], x[2], x[3], x[4]
    R_s, R_r = meta['R_s'], meta['R_r']
    X_ls, X_lr = meta['X_ls'], meta['X_lr']
    v_qs = V_I
    v_ds = V_R

    psi_mq = meta['X_aq'] * (psi_qs / X_ls + psi_qr / X_lr)
    psi_md = meta['X_ad'] * (psi_ds / X_ls + psi_dr / X_lr)
    i_qs = (psi_qs - psi_mq) / X_ls
    i_ds = (psi_ds - psi_md) / X_ls
    i_qr = (psi_qr - psi_mq) / X_lr
    i_dr = (psi_dr - psi_md) / X_lr
    tau_e = psi_ds * i_qs - psi_qs * i_ds

    rhs = jnp.stack([
        v_qs - psi_ds - R_s * i_qs,
        v_ds + psi_qs - R_s * i_ds,
        -(1.0 - omega_r) * psi_dr - R_r * i_qr,
        (1.0 - omega_r) * psi_qr - R_r * i_dr,
        tau_e - load_torque(meta, omega_r),
    ])

    # The machine draws i_ds + j*i_qs; the shunt supplies j*B_shunt*V
    scale = meta['base_power'] / meta['S_system']
    I_R = -(i_ds - V_I * meta['B_shunt']) * scale
    I_I = -(i_qs + V_R * meta['B_shunt']) * scale
    return rhs, I_R, I_I


def initialize_scim(core, static):
    """
    Solve the 9 steady-state equations for
    [i_qs, i_ds, B_sh, psi_qs, psi_ds, psi_qr, psi_dr, omega_r, tau_m0].

    The guess assumes no shunt compensation and a slip of 0.02. Induction
    machines have a second (high-slip) equilibrium, so the strict tolerance
    is used to reject poor fits.
    """
    meta = core.metadata
    scale = meta['S_system'] / meta['base_power']
    P0 = static['P0'] * scale
    Q0 = static['Q0'] * scale
    V_R = static['Vm'] * np.cos(static['theta'])
    V_I = static['Vm'] * np.sin(static['theta'])
    I = np.conj((P0 + 1j * Q0) / (V_R + 1j * V_I))  # drawn by machine + shunt
    I_R, I_I = I.real, I.imag

    R_s, R_r = meta['R_s'], meta['R_r']
    X_ls, X_lr = meta['X_ls'], meta['X_lr']
    X_ad, X_aq = meta['X_ad'], meta['X_aq']
    A, B, C = meta['A'], meta['B'], meta['C']
    v_ds, v_qs = V_R, V_I

    i_qs0 = I_I
    i_ds0 = I_R
    psi_qs0 = -v_ds + R_s * i_ds0
    psi_ds0 = v_qs - R_s * i_qs0
    psi_mq0 = psi_qs0 - i_qs0 * X_ls
    psi_md0 = psi_ds0 - i_ds0 * X_ls
    psi_qr0 = (psi_mq0 / X_ad - psi_qs0 / X_ls) * X_lr
    psi_dr0 = (psi_md0 / X_ad - psi_ds0 / X_ls) * X_lr
    omega_r0 = INDUCTION_SPEED_GUESS
    x0 = np.array([i_qs0, i_ds0, 0.0, psi_qs0, psi_ds0, psi_qr0, psi_dr0, omega_r0, P0 / omega_r0])

    def residual(x):
        i_qs, i_ds, B_sh = x[0], x[1], x[2]
        psi_qs, psi_ds, psi_qr, psi_dr = x[3], x[4], x[5], x[6]
        omega_r, tau_m0 = x[7], x[8]
        psi_mq = psi_qs - i_qs * X_ls
        psi_md = psi_ds - i_ds * X_ls
        return jnp.stack([
            -I_R + i_ds - V_I * B_sh,
            -I_I + i_qs + V_R * B_sh,
            v_qs - psi_ds - R_s * i_qs,
            v_ds + psi_qs - R_s * i_ds,
            -psi_mq + X_aq * (psi_qs / X_ls + psi_qr / X_lr),
            -psi_md + X_ad * (psi_ds / X_ls + psi_dr / X_lr),
            -(1.0 - omega_r) * psi_dr + R_r / X_lr * (psi_mq - psi_qr),
            (1.0 - omega_r) * psi_qr + R_r / X_lr * (psi_md - psi_dr),
            psi_ds * i_qs - psi_qs * i_ds - tau_m0 * (A * omega_r ** 2 + B * omega_r + C),
        ])

    sol, converged, res = solve_nonlinear(residual, x0, STRICT_NLSOLVE_F_TOLERANCE, label=core.label)
    B_sh, tau_m0 = sol[2], sol[8]

    return InitResult(
        states=np.array(sol[3:8]),
        setpoints={'B_shunt': B_sh, 'tau_ref': tau_m0, 'P_ref': tau_m0},
        converged=converged,
        residual=res,
    )


def build_scim_core(motor_data, S_system=100.0):
    """Build SCIM induction machine as DeviceCore

    Args:
        motor_data: dict with R_s, R_r, X_ls, X_lr, X_m, H, A, B, C, base_power
        S_system: system base power (MVA)

    Returns:
        core: DeviceCore object with dynamics method
        metadata: dict with additional info
    """
    core = DeviceCore(label=f'SCIM_{motor_data["idx"]}', dynamics_fn=scim_dynamics)

    X_ls = motor_data['X_ls']
    X_lr = motor_data['X_lr']
    X_m = motor_data['X_m']
    X_ad = 1.0 / (1.0 / X_m + 1.0 / X_ls + 1.0 / X_lr)
    omega_b = 2 * np.pi * motor_data.get('fn', 60.0)

    psi_qs, psi_ds, psi_qr, psi_dr, omega_r = core.symbols(
        ['psi_qs', 'psi_ds', 'psi_qr', 'psi_dr', 'omega_r'])
    core.add_states([psi_qs, psi_ds, psi_qr, psi_dr, omega_r])

    metadata = {
        'idx': motor_data['idx'],
        'load': motor_data['load'],
        'R_s': motor_data['R_s'],
        'R_r': motor_data['R_r'],
        'X_ls': X_ls,
        'X_lr': X_lr,
        'X_m': X_m,
        'X_ad': X_ad,
        'X_aq': X_ad,
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
    core.n_states = 5
    core.mass = np.array([1.0 / omega_b] * 4 + [2.0 * metadata['H']])
    core.component_type = "motor"
    core.model_name = "SCIM"

    return core, metadata
