"""
Jacobian reduction and eigen-analysis.
"""
import json
import logging
import os

import numpy as np
import pytest

from pwrsys_ssa import (
    Simulation, SimulationModel, flat_start_small_signal_analysis, summary_eigenvalues,
    summary_participation_factors)
from pwrsys_ssa.exceptions import SingularReduction
from pwrsys_ssa.utils.jacobian import make_reduced_jacobian_index, reduce_jacobian
from pwrsys_ssa.utils.small_signal import _damping_ratio, _determine_stability

CASES = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'test_cases')


def load_case(case):
    with open(os.path.join(CASES, case), 'r') as f:
        return json.load(f)


@pytest.fixture(scope='module')
def smib():
    return Simulation(os.path.join(CASES, 'smib.json'))


def test_smib_electromechanical_mode(smib):
    sso = smib.small_signal_analysis()

    assert sso.reduced_jacobian.shape == (2, 2)
    assert sso.stable
    low, high = sso.eigenvalues
    assert low == pytest.approx(np.conj(high))
    assert high.imag > 0.0
    assert low.real < 0.0
    assert set(sso.index['G2']) == {'delta', 'omega'}


def test_smib_damping_and_participation(smib):
    sso = smib.small_signal_analysis()

    for states in sso.damping.values():
        for ratio in states.values():
            assert -1.0 <= ratio <= 1.0
    assert sso.damping['G2']['delta'] == pytest.approx(sso.damping['G2']['omega'])

    total = sum(factors for states in sso.participation_factors.values()
                for factors in states.values())
    np.testing.assert_allclose(total, 1.0)
    # Both states take an equal part in the swing mode
    np.testing.assert_allclose(sso.participation_factors['G2']['delta'], 0.5)


def test_residual_form_gives_the_same_modes(smib):
    system = load_case('smib.json')
    residual = Simulation(system, model=SimulationModel.RESIDUAL)
    np.testing.assert_allclose(
        residual.small_signal_analysis().eigenvalues,
        smib.small_signal_analysis().eigenvalues, rtol=1e-8)


def test_operating_point_argument(smib):
    sso = smib.small_signal_analysis(operating_point=smib.x0_init)
    np.testing.assert_array_equal(sso.operating_point, smib.x0_init)
    with pytest.raises(ValueError):
        smib.small_signal_analysis(operating_point=np.ones(3))


def test_flat_start_linearization():
    sso = flat_start_small_signal_analysis(os.path.join(CASES, 'smib.json'))
    np.testing.assert_array_equal(sso.operating_point, [1.0, 1.0, 0.0, 0.0, 0.0, 0.0])
    assert sso.reduced_jacobian.shape == (2, 2)
    assert sso.index['G2'] == {'delta': 0, 'omega': 1}


def test_flat_start_uses_stored_bus_voltages():
    system = load_case('smib.json')
    system['Bus'][1]['v0'] = 0.98
    system['Bus'][1]['a0'] = 0.1
    sso = flat_start_small_signal_analysis(system)
    assert sso.operating_point[1] == pytest.approx(0.98 * np.cos(0.1))
    assert sso.operating_point[3] == pytest.approx(0.98 * np.sin(0.1))
    # Device states stay at zero: nothing is initialized
    np.testing.assert_array_equal(sso.operating_point[4:], 0.0)


def test_mixed_system_dimensions():
    sim = Simulation(os.path.join(CASES, 'three_bus_mixed.json'))
    sso = sim.small_signal_analysis()

    n_diff = int(np.sum(sim.index.diff_states))
    assert sso.reduced_jacobian.shape == (n_diff, n_diff)
    assert len(sso.eigenvalues) == n_diff
    assert 'dPord' not in sso.index['DER3']
    assert 'Line L2_3' not in sso.index
    assert set(sso.index['L2_3']) == {'I_R', 'I_I'}

    positions = sorted(ix for states in sso.index.values() for ix in states.values())
    assert positions == list(range(n_diff))


def test_motor_load_modes():
    sso = Simulation(os.path.join(CASES, 'motor_load.json')).small_signal_analysis()
    assert sso.reduced_jacobian.shape == (5, 5)
    assert np.all(np.isfinite(sso.eigenvalues))


def test_multimachine_warning(caplog):
    system = load_case('smib.json')
    system['GENCLS'].append(
        {'idx': 'G1', 'gen': 'SL1', 'M': 100.0, 'D': 2.0, 'ra': 0.0, 'xd1': 0.05})
    system['Source'] = []
    sim = Simulation(system)
    assert sim.multimachine

    with caplog.at_level(logging.WARNING, logger='pwrsys_ssa'):
        sso = sim.small_signal_analysis()
    assert "No Infinite Bus found" in caplog.text
    assert sso.reduced_jacobian.shape == (4, 4)


def test_stability_is_a_function_of_real_parts():
    assert _determine_stability(np.array([-1.0 + 2.0j, -1.0 - 2.0j, 0.0]))
    assert not _determine_stability(np.array([-1.0, 1e-9 + 1.0j]))


def test_damping_ratio():
    assert _damping_ratio(0.0 + 0.0j) == 0.0
    assert _damping_ratio(-1.0 + 0.0j) == 1.0
    assert _damping_ratio(2.0 + 0.0j) == -1.0
    assert _damping_ratio(-3.0 + 4.0j) == pytest.approx(0.6)


# x1, x2 differential, y algebraic
JACOBIAN = np.array([
    [0.0, 1.0, 0.5],
    [-2.0, -0.3, 1.0],
    [1.0, 0.0, -4.0],
])
DIFF = np.array([True, True, False])
MASS = np.array([2.0, 1.0, 0.0])


def test_schur_complement():
    reduced = reduce_jacobian(JACOBIAN, DIFF, MASS)
    fx = JACOBIAN[:2, :2]
    fy = JACOBIAN[:2, 2:]
    gx = JACOBIAN[2:, :2]
    gy = JACOBIAN[2:, 2:]
    expected = np.diag([0.5, 1.0]) @ (fx - fy @ np.linalg.inv(gy) @ gx)
    np.testing.assert_allclose(reduced, expected)


def test_inert_algebraic_state_is_pruned(caplog):
    padded = np.zeros((4, 4))
    padded[:3, :3] = JACOBIAN
    padded[0, 3] = 0.7  # only fy touches the inert state
    diff = np.append(DIFF, False)
    mass = np.append(MASS, 0.0)

    with caplog.at_level(logging.INFO, logger='pwrsys_ssa'):
        reduced = reduce_jacobian(padded, diff, mass)
    np.testing.assert_allclose(reduced, reduce_jacobian(JACOBIAN, DIFF, MASS))
    assert "was removed from the reduced jacobian" in caplog.text


def test_no_algebraic_states():
    J = np.array([[-1.0, 2.0], [0.5, -3.0]])
    reduced = reduce_jacobian(J, np.array([True, True]), np.array([2.0, 4.0]))
    np.testing.assert_allclose(reduced, [[-0.5, 1.0], [0.125, -0.75]])


def test_singular_algebraic_block():
    J = np.array([
        [-1.0, 1.0, 1.0],
        [1.0, 1.0, 1.0],
        [1.0, 1.0, 1.0],
    ])
    with pytest.raises(SingularReduction):
        reduce_jacobian(J, np.array([True, False, False]), np.array([1.0, 0.0, 0.0]))


def test_reduced_jacobian_index():
    global_index = {'V_1': {'R': 0, 'I': 1}, 'G1': {'delta': 2, 'y': 3, 'omega': 4}}
    diff = np.array([False, False, True, False, True])
    jac_index = make_reduced_jacobian_index(global_index, diff)
    assert jac_index == {'V_1': {}, 'G1': {'delta': 0, 'omega': 1}}


def test_summaries(smib):
    sso = smib.small_signal_analysis()

    eigen = summary_eigenvalues(sso)
    assert list(eigen.index) == [1, 2]
    assert set(eigen['most_associated']) <= {'G2 delta', 'G2 omega'}
    assert (eigen['freq_hz'] > 0.0).all()

    factors = summary_participation_factors(sso)
    assert factors.shape == (2, 2)
    np.testing.assert_allclose(factors.sum(axis=0).to_numpy(), 1.0)
