"""
DERA - Aggregate distributed generation model (DER_A).

Current-controlled inverter-based resource. Active and reactive current
commands pass through first-order lags and priority-dependent current
limits before being injected in phase with the terminal voltage.

States:
    Freq_Flag = 0: [Vmeas, Pmeas, Q_V, Iq, Mult, Fmeas, Ip]
    Freq_Flag = 1: [Vmeas, Pmeas, Q_V, Iq, Mult, Fmeas, PowerPI, dPord, Pord, Ip]

With Freq_Flag = 1 a PI power controller with frequency droop drives the
active power order; dPord is the algebraic PI output.
"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.config import BOUNDS_TOLERANCE
from pwrsys_ssa.logging import logger
from pwrsys_ssa.utils.core import DeviceCore, InitResult

STATES_FREQ_FLAG_0 = ['Vmeas', 'Pmeas', 'Q_V', 'Iq', 'Mult', 'Fmeas', 'Ip']
STATES_FREQ_FLAG_1 = ['Vmeas', 'Pmeas', 'Q_V', 'Iq', 'Mult', 'Fmeas', 'PowerPI', 'dPord', 'Pord', 'Ip']

V_MEAS_FLOOR = 0.01


def current_limit_logic(meta, Ip_cmd, Iq_cmd):
    """
    Current limits from the priority flag.

    PQ_Flag = 0 gives reactive priority, 1 active priority. Generating units
    (Gen_Flag = 1) cannot absorb active current.

    Returns:
        (Ip_min, Ip_max, Iq_min, Iq_max)
    """
    I_max = meta['I_max']
    if meta['PQ_Flag'] == 0:
        Iq_max = I_max
        Ip_max = jnp.sqrt(jnp.maximum(I_max ** 2 - Iq_cmd ** 2, 0.0))
    else:
        Ip_max = I_max
        Iq_max = jnp.sqrt(jnp.maximum(I_max ** 2 - Ip_cmd ** 2, 0.0))
    Iq_min = -Iq_max
    Ip_min = 0.0 if meta['Gen_Flag'] == 1 else -Ip_max
    return Ip_min, Ip_max, Iq_min, Iq_max


def _deadband(u, dbd1, dbd2):
    return jnp.where(u > dbd2, u - dbd2, jnp.where(u < dbd1, u - dbd1, 0.0))


def dera_dynamics(x, V_R, V_I, meta, t=0.0):
    """
    Numerical dynamics for DERA.

    Args:
        x: state array (7 or 10 entries depending on Freq_Flag)
        V_R, V_I: terminal voltage (system base)
        meta: dict of parameters, with P_ref, Q_ref, V_ref, omega_ref and
              Pfa_ref set by initialization

    Returns:
        rhs, I_R, I_I
    """
    Vmeas, Pmeas, Q_V, Iq, Mult, Fmeas = x[0], x[1], x[2], x[3], x[4], x[5]
    Ip = x[-1]
    V_t = jnp.sqrt(V_R ** 2 + V_I ** 2)
    V_div = jnp.maximum(Vmeas, V_MEAS_FLOOR)

    # Reactive current path
    if meta['PF_Flag'] == 1:
        Q_cmd = Pmeas * jnp.tan(meta['Pfa_ref'])
    else:
        Q_cmd = meta['Q_ref']
    V_err = _deadband(meta['K_qv'] * (meta['V_ref'] - Vmeas), meta['dbd1'], meta['dbd2'])
    Iq_cmd = Q_V

    # Active current path
    if meta['Freq_Flag'] == 0:
        P_ord = Pmeas
        P_meas_input = meta['P_ref']
    else:
        PowerPI, dPord, P_ord = x[6], x[7], x[8]
        P_meas_input = V_t * Ip * Mult
    Ip_cmd = P_ord / V_div

    Ip_min, Ip_max, Iq_min, Iq_max = current_limit_logic(meta, Ip_cmd, Iq_cmd)

    rhs = [
        V_t - Vmeas,
        P_meas_input - Pmeas,
        Q_cmd / V_div + V_err - Q_V,
        jnp.clip(Iq_cmd, Iq_min, Iq_max) - Iq,
        1.0 - Mult,
        meta['omega_ref'] - Fmeas,
    ]
    if meta['Freq_Flag'] == 1:
        f_err = meta['omega_ref'] - Fmeas
        droop = jnp.where(f_err > 0, meta['D_dn'] * f_err, meta['D_up'] * f_err)
        P_err = meta['P_ref'] - Pmeas + droop
        rhs += [
            meta['Kig'] * P_err,
            PowerPI + meta['Kpg'] * P_err - dPord,
            dPord - P_ord,
        ]
    rhs.append(jnp.clip(Ip_cmd, Ip_min, Ip_max) - Ip)

    # Injection in phase with the terminal voltage
    scale = meta['base_power'] / meta['S_system']
    I_R = Mult * (Ip * V_R + Iq * V_I) / V_t * scale
    I_I = Mult * (Ip * V_I - Iq * V_R) / V_t * scale
    return jnp.stack(rhs), I_R, I_I


def initialize_dera(core, static):
    """
    Closed-form steady state from the power-flow injection.

    Currents outside their limits are reported and initialization carries on.
    """
    meta = core.metadata
    scale = meta['S_system'] / meta['base_power']
    P0 = static['P0'] * scale
    Q0 = static['Q0'] * scale
    Vm = static['Vm']
    theta = static['theta']
    V = Vm * np.exp(1j * theta)
    I = np.conj((P0 + 1j * Q0) / V)

    I_local = I * np.exp(-1j * theta)
    Ip = I_local.real
    Iq = -I_local.imag

    Vmeas = Vm
    Fmeas = 1.0
    Freq_ref = 1.0
    Mult = 1.0
    Ip_cmd = Ip / Mult
    Iq_cmd = Iq / Mult

    Ip_min, Ip_max, Iq_min, Iq_max = (float(v) for v in current_limit_logic(meta, Ip_cmd, Iq_cmd))
    if Ip_cmd >= Ip_max + BOUNDS_TOLERANCE or Ip_min - BOUNDS_TOLERANCE >= Ip_cmd:
        logger.error(
            "Inverter %s active current %s out of limits %s %s. Check Power Flow or Parameters",
            core.name, Ip_cmd, Ip_min, Ip_max)
    if Iq_cmd >= Iq_max + BOUNDS_TOLERANCE or Iq_min - BOUNDS_TOLERANCE >= Iq_cmd:
        logger.error(
            "Inverter %s reactive current %s out of limits %s %s. Check Power Flow or Parameters",
            core.name, Iq_cmd, Iq_min, Iq_max)

    Pord = Ip_cmd * max(Vmeas, V_MEAS_FLOOR)
    dPord = Pord
    Pmeas = Pord
    Q_V = Iq_cmd
    pfaref = np.arctan2(Q0, P0)
    Qref = Iq_cmd * max(Vmeas, V_MEAS_FLOOR)

    if meta['Freq_Flag'] == 0:
        Pref = dPord
        states = [Vmeas, Pmeas, Q_V, Iq, Mult, Fmeas, Ip]
    else:
        Pref = Pmeas
        PowerPI = dPord
        states = [Vmeas, Pmeas, Q_V, Iq, Mult, Fmeas, PowerPI, dPord, Pord, Ip]

    # Keep a user voltage reference only if it sits inside the deadband
    Vref0 = meta['V_ref0']
    if Vref0 == 0.0:
        Vref = Vmeas
    elif meta['dbd1'] <= (Vref0 - Vmeas) * meta['K_qv'] <= meta['dbd2']:
        Vref = Vref0
    else:
        Vref = Vmeas

    # Q_cmd = Pmeas * tan(Pfa_ref) vanishes with the active power
    converged = True
    residual = 0.0
    if meta['PF_Flag'] == 1 and abs(P0) < BOUNDS_TOLERANCE and abs(Q0) >= BOUNDS_TOLERANCE:
        logger.error(
            "Inverter %s uses power factor control with P0 = %s, it cannot produce Q0 = %s. "
            "Check Power Flow or set PF_Flag = 0", core.name, P0, Q0)
        converged = False
        residual = float(abs(Q_V))

    return InitResult(
        states=np.array(states, dtype=float),
        setpoints={
            'P_ref': Pref,
            'Q_ref': Qref,
            'V_ref': Vref,
            'omega_ref': Freq_ref,
            'Pfa_ref': pfaref,
        },
        converged=converged,
        residual=residual,
    )


def build_dera_core(der_data, S_system=100.0):
    """Build DERA as DeviceCore

    Args:
        der_data: dict with DER_A parameters (device base base_power)
        S_system: system base power (MVA)

    Returns:
        core: DeviceCore object with dynamics method
        metadata: dict with additional info
    """
    core = DeviceCore(label=f'DERA_{der_data["idx"]}', dynamics_fn=dera_dynamics)

    freq_flag = int(der_data.get('Freq_Flag', 0))
    if freq_flag == 0:
        state_names = STATES_FREQ_FLAG_0
    elif freq_flag == 1:
        state_names = STATES_FREQ_FLAG_1
    else:
        raise ValueError(f"DERA {der_data['idx']}: unsupported value of Freq_Flag {freq_flag}")

    dbd1, dbd2 = der_data.get('dbd_pnts', (-0.05, 0.05))

    metadata = {
        'idx': der_data['idx'],
        'gen': der_data['gen'],
        'Trv': der_data.get('Trv', 0.02),
        'Tp': der_data.get('Tp', 0.02),
        'T_iq': der_data.get('T_iq', 0.02),
        'Tg': der_data.get('Tg', 0.02),
        'Tv': der_data.get('Tv', 0.02),
        'Trf': der_data.get('Trf', 0.02),
        'Tpord': der_data.get('Tpord', 0.1),
        'K_qv': der_data.get('K_qv', 0.0),
        'dbd1': float(dbd1),
        'dbd2': float(dbd2),
        'Kpg': der_data.get('Kpg', 0.1),
        'Kig': der_data.get('Kig', 10.0),
        'D_dn': der_data.get('D_dn', 20.0),
        'D_up': der_data.get('D_up', 0.0),
        'I_max': der_data.get('I_max', 1.2),
        'PQ_Flag': int(der_data.get('PQ_Flag', 0)),
        'Gen_Flag': int(der_data.get('Gen_Flag', 1)),
        'PF_Flag': int(der_data.get('PF_Flag', 0)),
        'Freq_Flag': freq_flag,
        'V_ref0': der_data.get('V_ref', 0.0),
        'base_power': der_data.get('base_power', S_system),
        'S_system': S_system,
        'P_ref': 0.0,
        'Q_ref': 0.0,
        'V_ref': 1.0,
        'omega_ref': 1.0,
        'Pfa_ref': 0.0,
    }

    core.add_states(core.symbols(state_names))

    mass = [metadata['Trv'], metadata['Tp'], metadata['T_iq'], metadata['Tg'],
            metadata['Tv'], metadata['Trf']]
    if freq_flag == 1:
        # PowerPI integrator, dPord algebraic, Pord lag
        mass += [1.0, 0.0, metadata['Tpord']]
    mass.append(metadata['Tg'])

    core.set_metadata(metadata)
    core.n_states = len(state_names)
    core.mass = np.array(mass, dtype=float)
    core.component_type = "renewable"
    core.model_name = "DERA"

    return core, metadata
