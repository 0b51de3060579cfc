"""
Global state vector layout.
"""
import os

import numpy as np
import pytest

from pwrsys_ssa.exceptions import InvariantViolation
from pwrsys_ssa.utils.state_index import GlobalStateIndex, bus_key
from pwrsys_ssa.utils.system_builder import PowerSystemBuilder

CASES = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'test_cases')


def build(case):
    return PowerSystemBuilder(os.path.join(CASES, case)).build_all_components()


def make_index(builder):
    return GlobalStateIndex(builder.network, builder.injectors, builder.branches)


def test_index_is_a_bijection():
    builder = build('three_bus_mixed.json')
    index = make_index(builder)

    n_device_states = sum(core.n_states for core in builder.injectors + builder.branches)
    assert len(index) == 2 * index.n_bus + n_device_states

    positions = sorted(ix for states in index.global_index.values() for ix in states.values())
    assert positions == list(range(len(index)))


def test_layout_order():
    builder = build('three_bus_mixed.json')
    index = make_index(builder)

    assert index.global_index[bus_key(1)] == {'R': 0, 'I': 3}
    assert index.global_index[bus_key(3)] == {'R': 2, 'I': 5}
    genrou = index.device_range('G2')
    dera = index.device_range('DER3')
    line = index.device_range('L2_3')
    assert genrou.start == 2 * index.n_bus
    assert dera.start == genrou.stop
    assert line.start == dera.stop == index.branches_pointer
    assert line.stop == len(index)


def test_mass_matrix_and_differential_mask():
    builder = build('three_bus_mixed.json')
    index = make_index(builder)

    assert not np.any(index.diff_states[index.bus_range])
    assert index.get_state_from_ix(index.global_index['DER3']['dPord']) == ('DER3', 'dPord')
    assert not index.diff_states[index.global_index['DER3']['dPord']]
    assert index.diff_states[index.global_index['G2']['delta']]
    assert index.mass_diag[index.global_index['G2']['omega']] == pytest.approx(13.0)


def test_flat_start():
    index = make_index(build('smib.json'))
    x0 = index.flat_start()
    np.testing.assert_array_equal(x0[:index.n_bus], 1.0)
    np.testing.assert_array_equal(x0[index.n_bus:], 0.0)


def test_duplicate_device_name():
    builder = build('smib.json')
    with pytest.raises(InvariantViolation):
        GlobalStateIndex(builder.network, builder.injectors * 2, builder.branches)


def test_state_count_mismatch():
    builder = build('smib.json')
    builder.injectors[0].n_states = 3
    with pytest.raises(AssertionError):
        make_index(builder)


def test_unknown_position():
    index = make_index(build('smib.json'))
    with pytest.raises(KeyError):
        index.get_state_from_ix(len(index))
