"""
Per-device steady states: after initialization every device must sit at
rest (zero right-hand side) while delivering the power-flow injection.
"""
import importlib

import numpy as np
import pytest

from pwrsys_ssa.utils.component_factory import CATEGORY_PACKAGES, MODEL_REGISTRY, ComponentFactory

GENCLS_DATA = {'idx': 'G1', 'gen': 'PV1', 'M': 6.296, 'D': 2.0, 'ra': 0.0, 'xd1': 0.2}
ONEDONEQ_DATA = {'idx': 'G1', 'gen': 'PV1', 'M': 6.0, 'D': 0.0, 'ra': 0.002,
                 'xd': 1.3, 'xq': 1.2, 'xd1': 0.25, 'xq1': 0.35, 'Td10': 6.0, 'Tq10': 0.5}
GENROU_DATA = {'idx': 'G1', 'gen': 'PV1', 'M': 13.0, 'D': 2.0, 'ra': 0.0,
               'xd': 1.8, 'xq': 1.7, 'xd1': 0.3, 'xq1': 0.55, 'xd2': 0.25, 'xl': 0.2,
               'Td10': 8.0, 'Tq10': 0.4, 'Td20': 0.03, 'Tq20': 0.05,
               'sat': 'quadratic', 'S10': 0.05, 'S12': 0.3}
MOTOR_DATA = {'idx': 'M1', 'load': 'PQ1', 'R_s': 0.013, 'R_r': 0.009, 'X_ls': 0.067,
              'X_lr': 0.17, 'X_m': 3.8, 'H': 1.5, 'A': 1.0, 'B': 0.0, 'C': 0.0,
              'base_power': 100.0}
DERA_DATA = {'idx': 'D1', 'gen': 'PV1', 'base_power': 100.0}


def static_data(P0, Q0, Vm=1.0, theta=0.0):
    return {'P0': P0, 'Q0': Q0, 'Vm': Vm, 'theta': theta}


def initialized(model, data, static):
    factory = ComponentFactory()
    core, _ = factory.build(model, data)
    result = factory.initialize_device(core, static)
    assert result.converged, f"{model} did not converge (residual {result.residual})"
    core.apply_setpoints(result.setpoints)
    return core, result


def assert_steady_state(core, states, static, consumption=False):
    """Zero right-hand side and the expected current at the terminal"""
    V = static['Vm'] * np.exp(1j * static['theta'])
    S = complex(static['P0'], static['Q0'])
    expected = np.conj(S / V)
    if consumption:
        expected = -expected

    rhs, I_R, I_I = core.dynamics(states, V.real, V.imag)
    np.testing.assert_allclose(np.asarray(rhs), 0.0, atol=1e-7)
    assert float(I_R) == pytest.approx(expected.real, abs=1e-7)
    assert float(I_I) == pytest.approx(expected.imag, abs=1e-7)


def test_gencls_at_unit_power():
    static = static_data(1.0, 0.0)
    core, result = initialized('GENCLS', GENCLS_DATA, static)

    delta, omega = result.states
    assert omega == 1.0
    # E' = 1 + j*0.2 for I = 1 at unity voltage
    assert delta == pytest.approx(np.arctan(0.2), abs=1e-8)
    assert result.setpoints['E_p'] == pytest.approx(np.hypot(1.0, 0.2), abs=1e-8)
    assert result.setpoints['tau_m'] == pytest.approx(1.0, abs=1e-8)
    assert_steady_state(core, result.states, static)


@pytest.mark.parametrize("model, data", [
    ('GENCLS', GENCLS_DATA),
    ('ONEDONEQ', ONEDONEQ_DATA),
    ('GENROU', GENROU_DATA),
])
def test_generators_reproduce_power_flow(model, data):
    static = static_data(0.8, 0.3, Vm=1.02, theta=0.15)
    core, result = initialized(model, data, static)

    assert len(result.states) == core.n_states
    assert result.states[core.state_names.index('omega')] == 1.0
    assert_steady_state(core, result.states, static)


def test_genrou_machine_base_conversion():
    data = dict(GENROU_DATA, Sn=200.0)
    core, _ = ComponentFactory().build('GENROU', data, 100.0)
    assert core.metadata['xd'] == pytest.approx(0.9)
    assert core.metadata['M'] == pytest.approx(26.0)


def test_genrou_rejects_inconsistent_reactances():
    data = dict(GENROU_DATA, xd2=0.35)
    with pytest.raises(ValueError):
        ComponentFactory().build('GENROU', data)


@pytest.mark.parametrize("model", ['SCIM', 'SSCIM'])
def test_induction_motor_operating_point(model):
    static = static_data(0.5, 0.1)
    core, result = initialized(model, MOTOR_DATA, static)

    omega_r = result.states[core.state_names.index('omega_r')]
    assert 0.0 < omega_r < 1.0
    assert result.setpoints['tau_ref'] > 0.0
    assert_steady_state(core, result.states, static, consumption=True)


def test_motor_on_its_own_base():
    data = dict(MOTOR_DATA, base_power=50.0)
    static = static_data(0.3, 0.05)
    core, result = initialized('SCIM', data, static)
    assert_steady_state(core, result.states, static, consumption=True)


@pytest.mark.parametrize("freq_flag, n_states", [(0, 7), (1, 10)])
def test_dera_operating_point(freq_flag, n_states):
    data = dict(DERA_DATA, Freq_Flag=freq_flag)
    static = static_data(0.6, 0.2, Vm=1.01, theta=-0.05)
    core, result = initialized('DERA', data, static)

    assert core.n_states == n_states
    assert len(result.states) == n_states
    assert result.setpoints['omega_ref'] == 1.0
    assert_steady_state(core, result.states, static)


def test_dera_has_algebraic_power_order():
    core, _ = ComponentFactory().build('DERA', dict(DERA_DATA, Freq_Flag=1))
    assert core.mass[core.state_names.index('dPord')] == 0.0


def test_dera_rejects_unknown_frequency_flag():
    with pytest.raises(ValueError):
        ComponentFactory().build('DERA', dict(DERA_DATA, Freq_Flag=2))


def test_dera_reports_current_out_of_limits(caplog):
    static = static_data(1.5, 0.0)
    initialized('DERA', dict(DERA_DATA, I_max=1.2, PQ_Flag=1), static)
    assert "out of limits" in caplog.text


def test_dera_power_factor_control_without_active_power(caplog):
    factory = ComponentFactory()
    core, _ = factory.build('DERA', dict(DERA_DATA, PF_Flag=1))
    result = factory.initialize_device(core, static_data(0.0, 0.3))
    assert not result.converged
    assert result.residual > 0.0
    assert "cannot produce Q0" in caplog.text


def test_dera_power_factor_control_at_zero_output():
    static = static_data(0.0, 0.0)
    core, result = initialized('DERA', dict(DERA_DATA, PF_Flag=1), static)
    assert_steady_state(core, result.states, static)


def test_source_internal_emf():
    data = {'idx': 'S1', 'gen': 'SL1', 'R_th': 0.01, 'X_th': 0.1}
    static = static_data(0.5, 0.2, Vm=1.0, theta=0.1)
    core, result = initialized('Source', data, static)

    V = np.exp(0.1j)
    I = np.conj(complex(0.5, 0.2) / V)
    E = V + complex(0.01, 0.1) * I
    assert core.metadata['V_ref'] == pytest.approx(abs(E), abs=1e-9)
    assert core.metadata['theta_ref'] == pytest.approx(np.angle(E), abs=1e-9)
    assert_steady_state(core, np.zeros(0), static)


def test_periodic_source_bias():
    data = {'idx': 'P1', 'gen': 'SL1', 'R_th': 0.0, 'X_th': 0.05,
            'internal_voltage_frequencies': [2 * np.pi],
            'internal_voltage_coefficients': [[0.01, 0.02]],
            'internal_angle_frequencies': [],
            'internal_angle_coefficients': []}
    static = static_data(0.4, 0.1)
    core, result = initialized('PVSOURCE', data, static)

    V_internal = result.states[0]
    assert result.setpoints['V_bias'] == pytest.approx(V_internal - 0.02)
    assert result.setpoints['theta_bias'] == pytest.approx(result.states[1])
    # The Fourier series drives the magnitude away from rest at t = 0
    rhs, _, _ = core.dynamics(result.states, 1.0, 0.0, 0.0)
    assert float(rhs[0]) == pytest.approx(2 * np.pi * 0.01)
    assert float(rhs[1]) == 0.0


def test_dynamic_line_steady_current():
    line = {'idx': 'L1', 'bus1': 1, 'bus2': 2, 'r': 0.01, 'x': 0.1}
    static = {'Vm_from': 1.0, 'theta_from': 0.0, 'Vm_to': 0.98, 'theta_to': -0.1}
    factory = ComponentFactory()
    core, _ = factory.build('DynamicLine', line)
    result = factory.initialize_device(core, static)

    dV = 1.0 - 0.98 * np.exp(-0.1j)
    rhs, I_R, I_I = core.dynamics(result.states, dV.real, dV.imag)
    np.testing.assert_allclose(np.asarray(rhs), 0.0, atol=1e-12)
    assert complex(float(I_R), float(I_I)) == pytest.approx(dV / complex(0.01, 0.1))


@pytest.mark.parametrize("model", sorted(MODEL_REGISTRY))
def test_registered_models_resolve(model):
    info = MODEL_REGISTRY[model]
    module = importlib.import_module(
        f"pwrsys_ssa.components.{CATEGORY_PACKAGES[info['category']]}.{info['module']}")
    assert callable(getattr(module, f"build_{info['module']}_core"))
    assert callable(getattr(module, f"initialize_{info['module']}"))
