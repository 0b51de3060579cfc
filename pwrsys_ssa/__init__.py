"""Small-signal stability analysis of phasor-domain power systems"""
import jax

# Jacobians and eigenvalues need double precision
jax.config.update("jax_enable_x64", True)

from pwrsys_ssa.exceptions import (  # noqa: E402
    DeviceInitializationError, InvariantViolation, PowerFlowFailure, PowerSystemError,
    SingularReduction, SolverNonConvergence, ValidationFailure)
from pwrsys_ssa.logging import enable_debug_logging, logger, set_log_level  # noqa: E402
from pwrsys_ssa.utils.initialization import BuildStatus  # noqa: E402
from pwrsys_ssa.utils.jacobian import SimulationModel  # noqa: E402
from pwrsys_ssa.utils.power_flow import PowerFlowSolver  # noqa: E402
from pwrsys_ssa.utils.simulation import (  # noqa: E402
    Simulation, flat_start_small_signal_analysis)
from pwrsys_ssa.utils.small_signal import (  # noqa: E402
    SmallSignalOutput, summary_eigenvalues, summary_participation_factors)
from pwrsys_ssa.utils.system_builder import PowerSystemBuilder  # noqa: E402

__version__ = "0.1.0"

__all__ = [
    'BuildStatus',
    'DeviceInitializationError',
    'InvariantViolation',
    'PowerFlowFailure',
    'PowerFlowSolver',
    'PowerSystemBuilder',
    'PowerSystemError',
    'Simulation',
    'SimulationModel',
    'SingularReduction',
    'SmallSignalOutput',
    'SolverNonConvergence',
    'ValidationFailure',
    'enable_debug_logging',
    'flat_start_small_signal_analysis',
    'logger',
    'set_log_level',
    'summary_eigenvalues',
    'summary_participation_factors',
]
