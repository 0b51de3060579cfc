"""Error taxonomy for initialization and small-signal analysis"""


class PowerSystemError(Exception):
    """Base class for errors raised by pwrsys_ssa"""


class SolverNonConvergence(PowerSystemError):
    """A per-device nonlinear solve did not meet its tolerance"""

    def __init__(self, device, model_name, residual):
        self.device = device
        self.model_name = model_name
        self.residual = residual
        super().__init__(
            f"Initialization of {model_name} {device} did not converge "
            f"(max residual {residual:.3e})"
        )


class PowerFlowFailure(PowerSystemError):
    """The power flow feeding the initialization did not converge"""


class DeviceInitializationError(PowerSystemError):
    """A device initializer raised a numerical error"""

    def __init__(self, stage, device, cause):
        self.stage = stage
        self.device = device
        self.cause = cause
        super().__init__(f"{stage} failed to initialize at {device}: {cause}")


class ValidationFailure(PowerSystemError):
    """The assembled initial condition has out-of-range or non-finite entries"""

    def __init__(self, items):
        self.items = list(items)
        super().__init__(f"Invalid initial condition values {self.items}")


class SingularReduction(PowerSystemError):
    """The algebraic block of the Jacobian cannot be inverted"""


class InvariantViolation(AssertionError):
    """State bookkeeping is inconsistent; indicates a modeling bug"""
