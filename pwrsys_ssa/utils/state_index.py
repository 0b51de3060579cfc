"""Global state vector layout

    [V_R(bus 0..n-1), V_I(bus 0..n-1), injector states..., branch states...]

Bus voltages are algebraic; device states carry the mass of their device.
"""
import numpy as np

from pwrsys_ssa.exceptions import InvariantViolation


def bus_key(bus_idx):
    return f"V_{bus_idx}"


class GlobalStateIndex:
    """Positions of every state in the global vector.

    Attributes:
        n_bus: number of buses
        bus_range: range of the 2*n_bus voltage entries
        ix_ranges: {device name: range of its states}
        global_index: {device name: {state name: position}}; buses appear as
                      V_<bus idx> with states 'R' and 'I'
        mass_diag: diagonal of the global mass matrix
        diff_states: boolean mask of differential states (nonzero mass)
    """

    def __init__(self, network, injectors, branches):
        self.n_bus = network['n_bus']
        self.internal_to_bus_idx = network['internal_to_bus_idx']
        self.bus_lookup = network['bus_idx_to_internal']
        self.bus_range = range(0, 2 * self.n_bus)

        self.global_index = {}
        self.ix_ranges = {}
        for i in range(self.n_bus):
            self.global_index[bus_key(self.internal_to_bus_idx[i])] = {'R': i, 'I': i + self.n_bus}

        masses = [np.zeros(2 * self.n_bus)]
        pointer = 2 * self.n_bus
        for core in injectors:
            pointer = self._add_device(core, pointer, masses)
        self.branches_pointer = pointer
        for core in branches:
            pointer = self._add_device(core, pointer, masses)

        self.n_variables = pointer
        self.mass_diag = np.concatenate(masses)
        self.diff_states = self.mass_diag != 0.0
        self._check_bijection()

    def _add_device(self, core, pointer, masses):
        if core.name in self.global_index:
            raise InvariantViolation(f"Device name {core.name} appears twice in the state index")
        names = core.state_names
        if len(names) != core.n_states or len(core.mass) != core.n_states:
            raise InvariantViolation(
                f"{core.label}: {core.n_states} states declared, {len(names)} named, "
                f"{len(core.mass)} masses")
        rng = range(pointer, pointer + core.n_states)
        self.ix_ranges[core.name] = rng
        self.global_index[core.name] = {name: ix for name, ix in zip(names, rng)}
        masses.append(np.asarray(core.mass, dtype=float))
        return pointer + core.n_states

    def _check_bijection(self):
        positions = sorted(ix for states in self.global_index.values() for ix in states.values())
        if positions != list(range(self.n_variables)):
            raise InvariantViolation("State index is not a bijection onto the state vector")
        if len(self.mass_diag) != self.n_variables:
            raise InvariantViolation("Mass matrix diagonal does not match the state vector")

    def __len__(self):
        return self.n_variables

    def device_range(self, name):
        return self.ix_ranges[name]

    def get_state_from_ix(self, ix):
        """(device name, state name) stored at global position ix"""
        for device, states in self.global_index.items():
            for state, position in states.items():
                if position == ix:
                    return device, state
        raise KeyError(f"No state at position {ix}")

    def flat_start(self):
        """V_R = 1, V_I = 0 at every bus; device states zero"""
        x0 = np.zeros(self.n_variables)
        x0[:self.n_bus] = 1.0
        return x0
