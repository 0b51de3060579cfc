"""
Initialization pipeline: power flow, static devices, dynamic devices,
dynamic branches and validation of the assembled initial condition.
"""
import json
import os

import numpy as np
import pytest

from pwrsys_ssa import BuildStatus, Simulation
from pwrsys_ssa.exceptions import (
    DeviceInitializationError, PowerFlowFailure, PowerSystemError, SolverNonConvergence,
    ValidationFailure)
from pwrsys_ssa.utils.core import InitResult
from pwrsys_ssa.utils.initialization import (
    STATIC_INJECTION_STAGE, initialize_dynamic_branches, initialize_static_injections,
    invalid_entries)

CASES = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'test_cases')


def load_case(case):
    with open(os.path.join(CASES, case), 'r') as f:
        return json.load(f)


def max_rhs(sim):
    rhs = sim.get_system_model().mass_matrix_rhs(sim.x0_init, 0.0)
    return float(np.max(np.abs(np.asarray(rhs))))


def test_smib_initial_condition():
    sim = Simulation(os.path.join(CASES, 'smib.json'))
    assert sim.status is BuildStatus.READY
    assert sim.initialization_error is None
    assert not sim.multimachine

    conditions = sim.read_initial_conditions()
    assert conditions['V_2']['Vm'] == pytest.approx(1.0)
    assert conditions['V_2']['theta'] == pytest.approx(np.arcsin(0.1), abs=1e-9)
    assert conditions['G2']['omega'] == 1.0
    assert conditions['G2']['delta'] > conditions['V_2']['theta']

    setpoints = sim.get_setpoints()
    assert setpoints['G2']['tau_m'] == pytest.approx(1.0, abs=1e-8)
    assert set(setpoints['InfBus']) == {'V_ref', 'theta_ref'}
    assert max_rhs(sim) < 1e-6


def test_mixed_system_is_at_rest():
    sim = Simulation(os.path.join(CASES, 'three_bus_mixed.json'))
    assert sim.status is BuildStatus.READY, sim.stage_messages
    assert max_rhs(sim) < 1e-6

    conditions = sim.read_initial_conditions()
    assert set(conditions['Line L2_3']) == {'I_R', 'I_I'}
    assert conditions['DER3']['Fmeas'] == 1.0


@pytest.mark.parametrize("model", ['SCIM', 'SSCIM'])
def test_motor_load(model):
    system = load_case('motor_load.json')
    system[model] = system.pop('SCIM')
    sim = Simulation(system)
    assert sim.status is BuildStatus.READY

    omega_r = sim.read_initial_conditions()['M2']['omega_r']
    assert 0.0 < omega_r < 1.0
    assert 'B_shunt' in sim.get_setpoints()['M2']
    assert max_rhs(sim) < 1e-6


def test_periodic_source_system():
    system = load_case('smib.json')
    system['PVSOURCE'] = [{
        'idx': 'PVS1', 'gen': 'SL1', 'R_th': 0.0, 'X_th': 0.05,
        'internal_voltage_frequencies': [2 * np.pi],
        'internal_voltage_coefficients': [[0.0, 0.02]],
        'internal_angle_frequencies': [],
        'internal_angle_coefficients': [],
    }]
    system.pop('Source')
    sim = Simulation(system)
    assert sim.status is BuildStatus.READY, sim.stage_messages
    assert sim.multimachine

    setpoints = sim.get_setpoints()['PVS1']
    V_internal = sim.read_initial_conditions()['PVS1']['V_internal']
    assert setpoints['V_bias'] == pytest.approx(V_internal - 0.02)
    # Only cosine terms, so the series is stationary at t = 0
    assert max_rhs(sim) < 1e-6

    sso = sim.small_signal_analysis()
    assert sso.reduced_jacobian.shape == (4, 4)
    assert {name for name, states in sso.index.items() if states} == {'PVS1', 'G2'}


def test_voltage_entry_outside_limits():
    sim = Simulation(os.path.join(CASES, 'smib.json'))
    x0 = sim.x0_init.copy()
    x0[1] = 1.5
    items = invalid_entries(x0, sim.index)
    assert items == ["Voltage entry 1"]


def test_non_finite_states_are_all_reported():
    sim = Simulation(os.path.join(CASES, 'three_bus_mixed.json'))
    x0 = sim.x0_init.copy()
    x0[sim.index.global_index['G2']['eq_p']] = np.nan
    x0[sim.index.global_index['DER3']['Ip']] = np.inf
    items = invalid_entries(x0, sim.index)
    assert "G2 eq_p is not finite" in items
    assert "DER3 Ip is not finite" in items


def test_power_flow_failure():
    system = load_case('smib.json')
    system['PV'][0]['p0'] = 50.0
    sim = Simulation(system)
    assert sim.status is BuildStatus.FAILED
    assert isinstance(sim.initialization_error, PowerFlowFailure)
    with pytest.raises(PowerFlowFailure):
        sim.raise_for_status()
    with pytest.raises(PowerFlowFailure):
        sim.small_signal_analysis()
    assert STATIC_INJECTION_STAGE not in sim.completed_stages
    # Loads were never calibrated, so an explicit operating point is refused too
    with pytest.raises(PowerSystemError, match="not calibrated"):
        sim.small_signal_analysis(operating_point=sim.index.flat_start())


def not_converged(core, static):
    return InitResult(states=np.zeros(core.n_states), converged=False, residual=1.0)


def test_non_convergence_fails_validation(monkeypatch):
    sim = Simulation(os.path.join(CASES, 'smib.json'), initialize=False)
    assert sim.status is BuildStatus.INCOMPLETE
    original = sim.builder.factory.initialize_device

    def fake(core, static):
        if core.model_name == 'GENCLS':
            return not_converged(core, static)
        return original(core, static)

    monkeypatch.setattr(sim.builder.factory, 'initialize_device', fake)
    assert not sim.initialize()
    # States stay at the flat start, so omega = 0 is out of range
    assert isinstance(sim.initialization_error, ValidationFailure)
    assert any("G2 omega" in item for item in sim.initialization_error.items)


def test_fail_on_nonconvergence(monkeypatch):
    sim = Simulation(os.path.join(CASES, 'smib.json'), initialize=False,
                     fail_on_nonconvergence=True)
    original = sim.builder.factory.initialize_device

    def fake(core, static):
        if core.model_name == 'GENCLS':
            return not_converged(core, static)
        return original(core, static)

    monkeypatch.setattr(sim.builder.factory, 'initialize_device', fake)
    assert not sim.initialize()
    assert isinstance(sim.initialization_error, SolverNonConvergence)


def overloaded_motor_system():
    # 0.5 pu on 100 MVA is 5 pu on a 10 MVA machine, beyond its maximum input power
    system = load_case('motor_load.json')
    system['SCIM'][0]['base_power'] = 10.0
    return system


def test_motor_without_equilibrium(caplog):
    sim = Simulation(overloaded_motor_system())
    assert sim.status is BuildStatus.FAILED
    assert "Initialization of SCIM M2 failed" in caplog.text
    assert isinstance(sim.initialization_error, ValidationFailure)
    assert any("M2 omega_r" in item for item in sim.initialization_error.items)
    assert STATIC_INJECTION_STAGE in sim.completed_stages


def test_motor_without_equilibrium_fails_its_stage():
    sim = Simulation(overloaded_motor_system(), fail_on_nonconvergence=True)
    assert sim.status is BuildStatus.FAILED
    assert isinstance(sim.initialization_error, SolverNonConvergence)
    assert sim.initialization_error.device == 'M2'
    assert sim.initialization_error.residual > 0.0


def test_numerical_error_becomes_failed_stage(monkeypatch):
    sim = Simulation(os.path.join(CASES, 'smib.json'), initialize=False)
    original = sim.builder.factory.initialize_device

    def fake(core, static):
        if core.model_name == 'GENCLS':
            raise ZeroDivisionError("division by zero")
        return original(core, static)

    monkeypatch.setattr(sim.builder.factory, 'initialize_device', fake)
    assert not sim.initialize()
    assert isinstance(sim.initialization_error, DeviceInitializationError)


def test_wrong_state_count_propagates(monkeypatch):
    sim = Simulation(os.path.join(CASES, 'smib.json'), initialize=False)
    original = sim.builder.factory.initialize_device

    def fake(core, static):
        if core.model_name == 'GENCLS':
            return InitResult(states=np.zeros(core.n_states + 1))
        return original(core, static)

    monkeypatch.setattr(sim.builder.factory, 'initialize_device', fake)
    with pytest.raises(AssertionError):
        sim.initialize()


def test_failed_status_short_circuits():
    sim = Simulation(os.path.join(CASES, 'smib.json'), initialize=False)
    result = initialize_static_injections(BuildStatus.FAILED, sim)
    assert result.status is BuildStatus.FAILED
    assert sim.builder.load_admittance == {}


def test_no_dynamic_branches_is_skipped():
    sim = Simulation(os.path.join(CASES, 'smib.json'), initialize=False)
    result = initialize_dynamic_branches(BuildStatus.IN_PROGRESS, sim)
    assert result.status is BuildStatus.IN_PROGRESS


class FixedVoltagePowerFlow:
    """Power flow stand-in that leaves the bus data untouched"""

    def __init__(self):
        self.calls = 0

    def solve(self, builder):
        self.calls += 1
        return True


def test_custom_power_flow():
    system = load_case('motor_load.json')
    system['PQ'][0]['p0'] = 0.0
    system['PQ'][0]['q0'] = 0.0
    system['SCIM'] = []
    solver = FixedVoltagePowerFlow()
    sim = Simulation(system, power_flow=solver)
    assert solver.calls == 1
    assert sim.status is BuildStatus.READY
    np.testing.assert_allclose(sim.x0_init[:2], 1.0)


def test_invalid_system_description():
    system = load_case('smib.json')
    system['GENCLS'] = []
    with pytest.raises(ValueError, match="without a model"):
        Simulation(system)
