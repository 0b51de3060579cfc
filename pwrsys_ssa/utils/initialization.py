"""
Initialization pipeline: power flow -> static devices -> dynamic injectors
-> dynamic branches -> validation.

Each stage takes the current BuildStatus and returns a StageResult. A FAILED
status short-circuits every later stage. Numerical errors raised by device
initializers are logged and turned into FAILED; invariant violations
(AssertionError) propagate.
"""
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from pwrsys_ssa.config import FREQUENCY_LIMITS, FREQUENCY_STATES, VOLTAGE_ENTRY_LIMIT
from pwrsys_ssa.exceptions import (
    DeviceInitializationError, InvariantViolation, PowerFlowFailure,
    SolverNonConvergence, ValidationFailure)
from pwrsys_ssa.logging import logger
from pwrsys_ssa.utils.state_index import bus_key

NUMERICAL_ERRORS = (ValueError, ArithmeticError, np.linalg.LinAlgError)

# Stage after which the constant-impedance loads are calibrated
STATIC_INJECTION_STAGE = 'static injection'


class BuildStatus(Enum):
    INCOMPLETE = 'incomplete'
    IN_PROGRESS = 'in_progress'
    FAILED = 'failed'
    READY = 'ready'


@dataclass
class StageResult:
    status: BuildStatus
    stage: str
    error: Exception = None
    messages: list = field(default_factory=list)


def _failed(stage, error, messages=None):
    logger.error("%s: %s", stage, error)
    return StageResult(BuildStatus.FAILED, stage, error, messages or [str(error)])


def power_flow_solution(status, sim):
    """Solve the power flow and write V_R, V_I of every bus into x0"""
    stage = 'power flow'
    if status is BuildStatus.FAILED:
        return StageResult(status, stage)

    builder = sim.builder
    try:
        converged = sim.power_flow.solve(builder)
    except NUMERICAL_ERRORS as e:
        return _failed(stage, PowerFlowFailure(f"Power flow raised: {e}"))
    if not converged:
        return _failed(stage, PowerFlowFailure("Power flow failed to converge"))

    n = sim.index.n_bus
    for i in range(n):
        Vm, theta = builder.bus_voltage(sim.index.internal_to_bus_idx[i])
        sim.x0_init[i] = Vm * np.cos(theta)
        sim.x0_init[i + n] = Vm * np.sin(theta)
    logger.debug("Updated bus voltage initial guess from the power flow")
    return StageResult(BuildStatus.IN_PROGRESS, stage)


def initialize_static_injections(status, sim):
    """Source internal EMFs and constant-impedance load admittances"""
    stage = STATIC_INJECTION_STAGE
    if status is BuildStatus.FAILED:
        return StageResult(status, stage)

    builder = sim.builder
    messages = []
    for core in builder.sources:
        try:
            result = builder.factory.initialize_device(core, builder.get_static_data(core))
        except NUMERICAL_ERRORS as e:
            return _failed(stage, DeviceInitializationError(stage, core.name, e))
        if result.converged:
            core.apply_setpoints(result.setpoints)
        else:
            messages.append(f"Source {core.name} kept its previous references")

    try:
        builder.calibrate_loads()
    except NUMERICAL_ERRORS as e:
        return _failed(stage, DeviceInitializationError(stage, 'loads', e))

    logger.debug("Initialized %d static sources and %d constant-impedance loads",
                 len(builder.sources), len(builder.load_admittance))
    return StageResult(BuildStatus.IN_PROGRESS, stage, messages=messages)


def _write_states(sim, core, states):
    rng = sim.index.device_range(core.name)
    states = np.asarray(states, dtype=float)
    if states.shape != (core.n_states,) or len(rng) != core.n_states:
        raise InvariantViolation(
            f"{core.label}: initializer returned {states.shape} for {core.n_states} states")
    sim.x0_init[rng.start:rng.stop] = states


def initialize_dynamic_injections(status, sim):
    """Run the initializer of every dynamic injector and apply its setpoints"""
    stage = 'dynamic injection'
    if status is BuildStatus.FAILED:
        return StageResult(status, stage)

    builder = sim.builder
    messages = []
    for core in builder.injectors:
        try:
            result = builder.factory.initialize_device(core, builder.get_static_data(core))
        except NUMERICAL_ERRORS as e:
            return _failed(stage, DeviceInitializationError(stage, core.name, e))

        if not result.converged:
            logger.warning("Initialization of %s %s failed (max residual %.3e)",
                           core.model_name, core.name, result.residual)
            if sim.fail_on_nonconvergence:
                return _failed(stage, SolverNonConvergence(core.name, core.model_name, result.residual))
            messages.append(f"{core.model_name} {core.name} did not converge")
            continue

        _write_states(sim, core, result.states)
        core.apply_setpoints(result.setpoints)

    return StageResult(BuildStatus.IN_PROGRESS, stage, messages=messages)


def initialize_dynamic_branches(status, sim):
    """Steady-state currents of dynamic lines"""
    stage = 'dynamic branches'
    if status is BuildStatus.FAILED:
        return StageResult(status, stage)

    builder = sim.builder
    if not builder.branches:
        logger.debug("No dynamic branches in the system")
        return StageResult(status, stage)

    for core in builder.branches:
        try:
            result = builder.factory.initialize_device(core, builder.get_static_data(core))
        except NUMERICAL_ERRORS as e:
            return _failed(stage, DeviceInitializationError(stage, core.name, e))
        _write_states(sim, core, result.states)
    return StageResult(BuildStatus.IN_PROGRESS, stage)


def invalid_entries(x0, index):
    """Descriptions of every out-of-range or non-finite entry of x0"""
    items = []
    for ix in index.bus_range:
        if not -VOLTAGE_ENTRY_LIMIT <= x0[ix] <= VOLTAGE_ENTRY_LIMIT:
            items.append(f"Voltage entry {ix}")

    bus_keys = {bus_key(b) for b in index.bus_lookup}
    f_min, f_max = FREQUENCY_LIMITS
    for name, states in index.global_index.items():
        if name in bus_keys:
            continue
        for state, ix in states.items():
            value = x0[ix]
            if not np.isfinite(value):
                items.append(f"{name} {state} is not finite")
            elif state in FREQUENCY_STATES and not f_min <= value <= f_max:
                items.append(f"{name} {state} = {value:.4f} outside [{f_min}, {f_max}]")
    return items


def check_valid_values(status, sim):
    """Validate the assembled initial condition; READY on success"""
    stage = 'validation'
    if status is BuildStatus.FAILED:
        return StageResult(status, stage)

    items = invalid_entries(sim.x0_init, sim.index)
    if items:
        return _failed(stage, ValidationFailure(items), messages=items)
    return StageResult(BuildStatus.READY, stage)


INITIALIZATION_STAGES = (
    power_flow_solution,
    initialize_static_injections,
    initialize_dynamic_injections,
    initialize_dynamic_branches,
    check_valid_values,
)


def run_initialization_pipeline(sim):
    """Run every stage until one fails

    Returns:
        list of StageResult, one per stage that ran; the last one carries
        the final status
    """
    results = []
    status = BuildStatus.IN_PROGRESS
    for stage in INITIALIZATION_STAGES:
        result = stage(status, sim)
        logger.debug("Stage '%s' finished with status %s", result.stage, result.status.name)
        results.append(result)
        status = result.status
        if status is BuildStatus.FAILED:
            break
    return results
