"""PVSOURCE - Source whose internal EMF varies periodically in time"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.components.grid.source import solve_internal_emf, thevenin_current
from pwrsys_ssa.logging import logger
from pwrsys_ssa.utils.core import DeviceCore, InitResult


def _fourier_rate(frequencies, coefficients, t):
    """d/dt of sum_i (s_i * sin(w_i t) + c_i * cos(w_i t))"""
    rate = 0.0
    for omega, (s, c) in zip(frequencies, coefficients):
        rate = rate + omega * (s * jnp.cos(omega * t) - c * jnp.sin(omega * t))
    return rate


def periodic_source_dynamics(x, V_R, V_I, meta, t=0.0):
    """
    Numerical dynamics for PVSOURCE.

    The internal magnitude and angle are V_bias + sum_i (s_i sin + c_i cos)
    and are integrated from their time derivatives.

    Args:
        x: array of 2 states [V_internal, theta_internal]
        V_R, V_I: terminal voltage (system base)
        meta: dict with Fourier frequencies/coefficients and Thevenin impedance
        t: time (s)

    Returns:
        rhs, I_R, I_I for unit masses
    """
    V_int, theta_int = x[0], x[1]
    rhs = jnp.stack([
        _fourier_rate(meta['V_freqs'], meta['V_coeffs'], t),
        _fourier_rate(meta['theta_freqs'], meta['theta_coeffs'], t),
    ])
    I_R, I_I = thevenin_current(
        V_int * jnp.cos(theta_int), V_int * jnp.sin(theta_int),
        V_R, V_I, meta['R_th'], meta['X_th'])
    return rhs, I_R, I_I


def initialize_periodic_source(core, static):
    """Thevenin solve for the internal EMF, then biases so the series sum at t=0 matches it"""
    meta = core.metadata
    V_internal, theta_internal, converged, res = solve_internal_emf(
        static, meta['R_th'], meta['X_th'], label=core.label)
    if not converged:
        logger.warning("Initialization in Periodic Variable Source %s failed", core.name)
        return InitResult(states=np.zeros(2), setpoints={}, converged=False, residual=res)

    # sin(0) = 0 and cos(0) = 1
    V_offset = sum(c for _, c in meta['V_coeffs'])
    theta_offset = sum(c for _, c in meta['theta_coeffs'])

    return InitResult(
        states=np.array([V_internal, theta_internal]),
        setpoints={
            'V_bias': V_internal - V_offset,
            'theta_bias': theta_internal - theta_offset,
        },
        converged=True,
        residual=res,
    )


def _coefficient_pairs(values, frequencies, what):
    pairs = [tuple(float(v) for v in pair) for pair in values]
    if len(pairs) != len(frequencies) or any(len(p) != 2 for p in pairs):
        raise ValueError(f"{what}: need one (sin, cos) pair per frequency")
    return pairs


def build_periodic_source_core(source_data, S_system=100.0):
    """Build PVSOURCE as DeviceCore

    Args:
        source_data: dict with R_th, X_th, internal_voltage_frequencies,
                     internal_voltage_coefficients, internal_angle_frequencies,
                     internal_angle_coefficients
        S_system: system base power (MVA)

    Returns:
        core: DeviceCore object with dynamics method
        metadata: dict with additional info
    """
    core = DeviceCore(label=f'PVSOURCE_{source_data["idx"]}', dynamics_fn=periodic_source_dynamics)

    R_th = source_data.get('R_th', 0.0)
    X_th = source_data.get('X_th', 0.0)
    if R_th == 0.0 and X_th == 0.0:
        raise ValueError(f"PVSOURCE {source_data['idx']} needs a nonzero Thevenin impedance")

    V_freqs = [float(w) for w in source_data.get('internal_voltage_frequencies', [])]
    theta_freqs = [float(w) for w in source_data.get('internal_angle_frequencies', [])]
    V_coeffs = _coefficient_pairs(
        source_data.get('internal_voltage_coefficients', []), V_freqs, f"PVSOURCE {source_data['idx']}")
    theta_coeffs = _coefficient_pairs(
        source_data.get('internal_angle_coefficients', []), theta_freqs, f"PVSOURCE {source_data['idx']}")

    V_internal, theta_internal = core.symbols(['V_internal', 'theta_internal'])
    core.add_states([V_internal, theta_internal])

    metadata = {
        'idx': source_data['idx'],
        'gen': source_data['gen'],
        'R_th': R_th,
        'X_th': X_th,
        'V_freqs': V_freqs,
        'V_coeffs': V_coeffs,
        'theta_freqs': theta_freqs,
        'theta_coeffs': theta_coeffs,
        'V_bias': 0.0,
        'theta_bias': 0.0,
    }

    core.set_metadata(metadata)
    core.n_states = 2
    core.mass = np.ones(2)
    core.component_type = "grid"
    core.model_name = "PVSOURCE"

    return core, metadata
