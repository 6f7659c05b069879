"""
Error taxonomy for the control pipeline.

Leaf operations raise these; ControlManager.run_step turns per-cycle
failures into a CycleResult so the control loop never has to catch them.
"""


class MPCError(Exception):
    """Base class for every failure raised by the control core."""

    kind = 'mpc_error'


class InputValidationError(MPCError):
    """Malformed or insufficient telemetry (non-finite values, bad lengths)."""

    kind = 'input_validation'


class InsufficientReferenceData(InputValidationError):
    """No waypoints were supplied for the frame transform."""

    kind = 'insufficient_reference_data'


class DegenerateFit(MPCError):
    """Too few points, or a rank-deficient design matrix, for the curve fit."""

    kind = 'degenerate_fit'


class NoConvergence(MPCError):
    """Solver did not reach a feasible stationary point within its budget."""

    kind = 'no_convergence'

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class Infeasible(NoConvergence):
    kind = 'infeasible'


class ConfigurationError(MPCError):
    """Invalid fixed parameters. Fatal at startup."""

    kind = 'configuration'
