"""System equations in mass-matrix form, M * dx/dt = f(x, t)

Bus rows are the current balance I_injected - Y*V at every bus (algebraic);
device rows are the device right-hand sides. Every function here is
jax-traceable so Jacobians come from jax.jacfwd.
"""
import jax.numpy as jnp
import numpy as np

from pwrsys_ssa.exceptions import InvariantViolation


class SystemModel:
    """Residual and mass-matrix callbacks over the global state vector.

    This is the boundary consumed by integrators and by the Jacobian engine:
    mass_matrix_rhs(x, t), implicit(dx, x, t) and mass_diag.
    """

    def __init__(self, builder, index):
        """
        Args:
            builder: PowerSystemBuilder after static initialization (the
                     constant-impedance load admittances are read here)
            index: GlobalStateIndex of the same system
        """
        self.index = index
        Y = builder.dynamic_admittance()
        self.G = jnp.asarray(np.ascontiguousarray(Y.real))
        self.B = jnp.asarray(np.ascontiguousarray(Y.imag))
        self.mass_diag = np.asarray(index.mass_diag)

        bus = index.bus_lookup
        self.sources = [(core, bus[core.bus]) for core in builder.sources]
        self.injectors = [(core, index.device_range(core.name), bus[core.bus])
                          for core in builder.injectors]
        self.branches = [(core, index.device_range(core.name),
                          bus[core.metadata['bus1']], bus[core.metadata['bus2']])
                         for core in builder.branches]

    def mass_matrix_rhs(self, x, t=0.0):
        """f(x, t) of M * dx/dt = f(x, t)"""
        x = jnp.asarray(x)
        n = self.index.n_bus
        V_R = x[:n]
        V_I = x[n:2 * n]
        I_R = jnp.zeros(n)
        I_I = jnp.zeros(n)
        device_rows = []

        for core, pos in self.sources:
            _, i_r, i_i = core.dynamics(jnp.zeros(0), V_R[pos], V_I[pos], t)
            I_R = I_R.at[pos].add(i_r)
            I_I = I_I.at[pos].add(i_i)

        for core, rng, pos in self.injectors:
            rhs, i_r, i_i = core.dynamics(x[rng.start:rng.stop], V_R[pos], V_I[pos], t)
            self._check_rows(core, rhs)
            device_rows.append(rhs)
            I_R = I_R.at[pos].add(i_r)
            I_I = I_I.at[pos].add(i_i)

        for core, rng, i, j in self.branches:
            rhs, i_r, i_i = core.dynamics(
                x[rng.start:rng.stop], V_R[i] - V_R[j], V_I[i] - V_I[j], t)
            self._check_rows(core, rhs)
            device_rows.append(rhs)
            # Branch current leaves bus1 and enters bus2
            I_R = I_R.at[i].add(-i_r).at[j].add(i_r)
            I_I = I_I.at[i].add(-i_i).at[j].add(i_i)

        YV_R = self.G @ V_R - self.B @ V_I
        YV_I = self.B @ V_R + self.G @ V_I
        return jnp.concatenate([I_R - YV_R, I_I - YV_I] + device_rows)

    def implicit(self, dx, x, t=0.0):
        """Residual form F(dx, x, t) = f(x, t) - M * dx"""
        return self.mass_matrix_rhs(x, t) - jnp.asarray(self.mass_diag) * jnp.asarray(dx)

    @staticmethod
    def _check_rows(core, rhs):
        if rhs.shape[0] != core.n_states:
            raise InvariantViolation(
                f"{core.label} returned {rhs.shape[0]} equations for {core.n_states} states")
