"""Default numerical settings for pwrsys_ssa.

Centralizes the tolerances and limits used by the initialization routines
and the small-signal analysis.
"""

# System base power (MVA) and nominal frequency (Hz)
SYSTEM_BASE_POWER = 100.0
BASE_FREQUENCY = 60.0

# Per-device nonlinear solves: converged when max|f(x)| <= tolerance
NLSOLVE_F_TOLERANCE = 1e-9
# Induction machines have several nearby roots, so their fit is checked harder
STRICT_NLSOLVE_F_TOLERANCE = 1e-10
# Step tolerance handed to MINPACK, well below the residual tolerances
NLSOLVE_X_TOLERANCE = 1e-13

# Slack allowed on current commands before a limit diagnostic is emitted
BOUNDS_TOLERANCE = 1e-6

# Newton-Raphson power flow
POWER_FLOW_TOLERANCE = 1e-10
POWER_FLOW_MAX_ITER = 30

# Validation of the assembled initial condition
VOLTAGE_ENTRY_LIMIT = 1.3
FREQUENCY_LIMITS = (0.8, 1.2)
FREQUENCY_STATES = ('omega', 'omega_r', 'Fmeas')

# Lower bound applied to flux magnitudes fed to saturation curves
SATURATION_FLUX_FLOOR = 1e-6

# Rotor speed guess for induction machines (slip 0.02)
INDUCTION_SPEED_GUESS = 0.98
