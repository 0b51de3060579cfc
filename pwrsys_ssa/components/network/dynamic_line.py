"""Dynamic line - series R-L branch whose current is a state"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.utils.core import DeviceCore, InitResult


def dynamic_line_dynamics(x, dV_R, dV_I, meta, t=0.0):
    """
    Series branch equations (L/omega_b) dI/dt = dV - (r + j*x) I.

    Args:
        x: array of 2 states [I_R, I_I], current flowing from bus1 to bus2
        dV_R, dV_I: voltage across the branch, V(bus1) - V(bus2)
        meta: dict with r, x, omega_b

    Returns:
        rhs, I_R, I_I for masses [x/omega_b, x/omega_b]
    """
    I_R, I_I = x[0], x[1]
    r, X = meta['r'], meta['x']
    rhs = jnp.stack([
        dV_R - r * I_R + X * I_I,
        dV_I - r * I_I - X * I_R,
    ])
    return rhs, I_R, I_I


def initialize_dynamic_line(core, static):
    """Steady-state branch current from the power-flow voltages at both ends"""
    meta = core.metadata
    V_from = static['Vm_from'] * np.exp(1j * static['theta_from'])
    V_to = static['Vm_to'] * np.exp(1j * static['theta_to'])
    I = (V_from - V_to) / complex(meta['r'], meta['x'])
    return InitResult(states=np.array([I.real, I.imag]))


def build_dynamic_line_core(line_data, S_system=100.0):
    """Build the series part of a dynamic line as DeviceCore

    The line charging (b/2 at each end) stays in the static admittance matrix.
    """
    core = DeviceCore(label=f'Line_{line_data["idx"]}', dynamics_fn=dynamic_line_dynamics)
    omega_b = 2 * np.pi * line_data.get('fn', 60.0)

    I_R, I_I = core.symbols(['I_R', 'I_I'])
    core.add_states([I_R, I_I])

    metadata = {
        'idx': line_data['idx'],
        'bus1': line_data['bus1'],
        'bus2': line_data['bus2'],
        'r': line_data['r'],
        'x': line_data['x'],
        'omega_b': omega_b,
    }

    core.set_metadata(metadata)
    core.n_states = 2
    core.mass = np.array([metadata['x'] / omega_b, metadata['x'] / omega_b])
    core.component_type = "branch"
    core.model_name = "DynamicLine"

    return core, metadata
