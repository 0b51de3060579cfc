"""Network (R-I) <-> rotor (d-q) frame conversions shared by synchronous machines"""
import jax.numpy as jnp


def ri_dq(delta, V_R, V_I):
    """Rotate a network-frame phasor into the rotor frame at angle delta"""
    v_d = V_R * jnp.sin(delta) - V_I * jnp.cos(delta)
    v_q = V_R * jnp.cos(delta) + V_I * jnp.sin(delta)
    return v_d, v_q


def dq_ri(delta, i_d, i_q):
    """Inverse of ri_dq"""
    I_R = i_d * jnp.sin(delta) + i_q * jnp.cos(delta)
    I_I = -i_d * jnp.cos(delta) + i_q * jnp.sin(delta)
    return I_R, I_I


def solve_stator(R, X_d, X_q, e_d, e_q, v_d, v_q):
    """
    Solve the algebraic stator equations

        R * i_d - X_q * i_q = e_d - v_d
        X_d * i_d + R * i_q = e_q - v_q

    for the stator currents behind the internal voltage (e_d, e_q).
    """
    det = R ** 2 + X_d * X_q
    a = e_d - v_d
    b = e_q - v_q
    i_d = (R * a + X_q * b) / det
    i_q = (R * b - X_d * a) / det
    return i_d, i_q


def air_gap_torque(R, v_d, v_q, i_d, i_q):
    """Electrical torque (pu) from terminal quantities and armature losses"""
    return (v_q + R * i_q) * i_q + (v_d + R * i_d) * i_d
