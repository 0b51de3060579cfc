"""Device container shared by every component model"""
from dataclasses import dataclass, field

import numpy as np
import sympy as sp


@dataclass(frozen=True)
class InitResult:
    """Outcome of a per-device initialization.

    Attributes:
        states: steady-state values in the device's state order
        setpoints: derived references to store in the device metadata
        converged: False when the nonlinear solve missed its tolerance
        residual: max |f| at the returned point
    """
    states: np.ndarray
    setpoints: dict = field(default_factory=dict)
    converged: bool = True
    residual: float = 0.0


class Core:
    """Symbolic bookkeeping for a device: named states"""

    def __init__(self, label='system'):
        self.label = label
        self.x = []  # State variables

    def symbols(self, names):
        """Create sympy symbols (real-valued)"""
        if isinstance(names, str):
            return sp.Symbol(names, real=True)
        elif isinstance(names, list):
            return [sp.Symbol(name, real=True) for name in names]
        else:
            return sp.symbols(names, real=True)

    def add_states(self, states):
        if not isinstance(states, list):
            states = [states]
        self.x.extend(states)

    @property
    def state_names(self):
        return [str(s) for s in self.x]


class DeviceCore(Core):
    """
    Core with numerical dynamics and an equilibrium initializer.

    Every device is written in mass-matrix form, M * dx/dt = rhs(x, V),
    where M is diagonal. A zero mass entry makes that state algebraic.

    Attributes:
        name: device identifier (the record idx, as a string)
        bus: idx of the bus the device connects to
        n_states: Number of states (set by component builder)
        mass: diagonal of the device mass matrix, one entry per state
        component_type: Category identifier (e.g., "generator", "motor")
        model_name: Model name (e.g., "GENROU", "SCIM")
    """

    def __init__(self, label='system', dynamics_fn=None):
        """
        Args:
            label: Component label
            dynamics_fn: Function with signature (x, V_R, V_I, metadata, t)
                        -> (rhs, I_R, I_I) where I_R + j*I_I is the current
                        injected into the network on the system base
        """
        super().__init__(label)
        self._dynamics_fn = dynamics_fn
        self._metadata = {}
        self.setpoints = {}

        # Component interface attributes (set by builder functions)
        self.name = None
        self.bus = None
        self.n_states = 0
        self.mass = np.zeros(0)
        self.component_type = None
        self.model_name = None

    def set_metadata(self, metadata):
        """Set metadata for dynamics computation"""
        self._metadata = metadata

    @property
    def metadata(self):
        return self._metadata

    def dynamics(self, x, V_R, V_I, t=0.0):
        """
        Evaluate the device equations at terminal voltage V_R + j*V_I.

        Args:
            x: array of the device states (numpy or jax)
            V_R, V_I: terminal voltage components on the system base
            t: time, only used by explicitly time-dependent sources

        Returns:
            rhs: right-hand side of M * dx/dt = rhs
            I_R, I_I: current injected into the network
        """
        if self._dynamics_fn is None:
            raise NotImplementedError(
                f"Dynamics function not implemented for {self.label}. "
                "Provide dynamics_fn in the constructor."
            )
        return self._dynamics_fn(x, V_R, V_I, self._metadata, t)

    def apply_setpoints(self, setpoints):
        """Store initializer references (torque, field voltage, ...)"""
        values = {key: float(value) for key, value in setpoints.items()}
        self._metadata.update(values)
        self.setpoints.update(values)

    def __repr__(self):
        return f"<{self.model_name} {self.name} @ bus {self.bus}: {self.n_states} states>"
