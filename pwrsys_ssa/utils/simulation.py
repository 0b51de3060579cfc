"""
Simulation - builds a system, initializes its operating point and runs the
small-signal analysis on it.
"""
import numpy as np

from pwrsys_ssa.config import SYSTEM_BASE_POWER
from pwrsys_ssa.exceptions import PowerSystemError
from pwrsys_ssa.logging import logger
from pwrsys_ssa.utils.initialization import (
    STATIC_INJECTION_STAGE, BuildStatus, run_initialization_pipeline)
from pwrsys_ssa.utils.jacobian import SimulationModel
from pwrsys_ssa.utils.power_flow import PowerFlowSolver
from pwrsys_ssa.utils.small_signal import small_signal_analysis
from pwrsys_ssa.utils.state_index import GlobalStateIndex, bus_key
from pwrsys_ssa.utils.system_builder import PowerSystemBuilder
from pwrsys_ssa.utils.system_model import SystemModel


class Simulation:
    """Small-signal study of one system.

    Attributes:
        builder: PowerSystemBuilder with every device core
        index: GlobalStateIndex of the state vector
        x0_init: initial condition (flat start until initialized)
        status: BuildStatus of the initialization
        initialization_error: exception recorded by the failed stage, if any
        multimachine: True when no Source provides an angle reference
    """

    def __init__(self, system, model=SimulationModel.MASS_MATRIX, power_flow=None,
                 fail_on_nonconvergence=False, initialize=True, S_system=SYSTEM_BASE_POWER):
        """
        Args:
            system: system description dict or path to a JSON file
            model: SimulationModel form used for the Jacobian
            power_flow: solver with solve(builder) -> bool; PowerFlowSolver() by default
            fail_on_nonconvergence: turn device initialization non-convergence into FAILED
            initialize: run the initialization pipeline right away
            S_system: system base power (MVA)
        """
        self.model = model
        self.power_flow = power_flow if power_flow is not None else PowerFlowSolver()
        self.fail_on_nonconvergence = fail_on_nonconvergence

        self.builder = PowerSystemBuilder(system, S_system).build_all_components()
        self.index = GlobalStateIndex(
            self.builder.network, self.builder.injectors, self.builder.branches)
        self.multimachine = not self.builder.sources
        self.x0_init = self.index.flat_start()
        self.status = BuildStatus.INCOMPLETE
        self.initialization_error = None
        self.stage_messages = []
        self.completed_stages = []
        self._system_model = None

        if initialize:
            self.initialize()

    def initialize(self):
        """Run the initialization pipeline; True when the system is READY"""
        self.x0_init = self.index.flat_start()
        self._system_model = None
        results = run_initialization_pipeline(self)
        result = results[-1]
        self.completed_stages = [r.stage for r in results if r.status is not BuildStatus.FAILED]
        self.status = result.status
        self.initialization_error = result.error
        self.stage_messages = result.messages
        if self.status is BuildStatus.READY:
            logger.info("Simulation initialized: %d variables, %d differential",
                        len(self.index), int(np.sum(self.index.diff_states)))
        else:
            logger.error("Simulation failed to initialize at stage '%s'", result.stage)
        return self.status is BuildStatus.READY

    def raise_for_status(self):
        """Raise the error recorded by the failed initialization stage"""
        if self.status is BuildStatus.FAILED:
            raise self.initialization_error
        if self.status is not BuildStatus.READY:
            raise PowerSystemError(f"Simulation is not initialized (status {self.status.name})")

    def get_system_model(self):
        """System equations over the current device references"""
        if self._system_model is None:
            self._system_model = SystemModel(self.builder, self.index)
        return self._system_model

    def read_initial_conditions(self):
        """Initial condition keyed by bus and device name"""
        n = self.index.n_bus
        x0 = self.x0_init
        results = {}
        for i in range(n):
            V_R, V_I = float(x0[i]), float(x0[i + n])
            results[bus_key(self.index.internal_to_bus_idx[i])] = {
                'V_R': V_R,
                'V_I': V_I,
                'Vm': float(np.hypot(V_R, V_I)),
                'theta': float(np.arctan2(V_I, V_R)),
            }
        for core in self.builder.injectors:
            results[core.name] = {
                state: float(x0[ix]) for state, ix in self.index.global_index[core.name].items()}
        for core in self.builder.branches:
            results[f"Line {core.name}"] = {
                state: float(x0[ix]) for state, ix in self.index.global_index[core.name].items()}
        return results

    def get_setpoints(self):
        """References derived by the initialization, per device"""
        return {core.name: dict(core.setpoints)
                for core in self.builder.sources + self.builder.injectors}

    def small_signal_analysis(self, operating_point=None):
        """
        Eigen-analysis of the linearized system.

        Args:
            operating_point: state vector to linearize at; x0_init by default

        Returns:
            SmallSignalOutput
        """
        if operating_point is None:
            self.raise_for_status()
            operating_point = self.x0_init
        elif STATIC_INJECTION_STAGE not in self.completed_stages:
            # constant-impedance loads are calibrated by the static stage
            raise PowerSystemError(
                "Loads are not calibrated: the static injection stage did not complete")
        operating_point = np.asarray(operating_point, dtype=float)
        if operating_point.shape != (len(self.index),):
            raise ValueError(
                f"Operating point has {operating_point.shape} entries, expected {len(self.index)}")
        return small_signal_analysis(
            self.model, self.get_system_model(), self.index, operating_point, self.multimachine)


def flat_start_small_signal_analysis(system, model=SimulationModel.MASS_MATRIX,
                                     S_system=SYSTEM_BASE_POWER):
    """
    Linearize a system at its flat start without initializing the devices.

    Bus voltages come from the v0/a0 stored in the system data and every
    device state is zero. Loads are calibrated at those stored voltages.
    No power flow is solved, so the result is only meaningful when the
    stored voltages and the device defaults describe an equilibrium.

    Args:
        system: system description dict or path to a JSON file
        model: SimulationModel form used for the Jacobian
        S_system: system base power (MVA)

    Returns:
        SmallSignalOutput
    """
    sim = Simulation(system, model=model, initialize=False, S_system=S_system)
    builder, index = sim.builder, sim.index
    x0 = index.flat_start()
    for i in range(index.n_bus):
        Vm, theta = builder.bus_voltage(index.internal_to_bus_idx[i])
        x0[i] = Vm * np.cos(theta)
        x0[i + index.n_bus] = Vm * np.sin(theta)
    builder.calibrate_loads()
    sim.x0_init = x0
    logger.debug("Linearizing %d variables at the stored bus voltages", len(index))
    return small_signal_analysis(model, sim.get_system_model(), index, x0, sim.multimachine)
