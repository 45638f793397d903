"""Typed errors raised by the core services.

Every error carries a stable ``code`` and an HTTP status hint so the
request layer can map it without knowing the service internals.
"""


class RideCoreError(Exception):
    """Base class for every precondition failure raised by a service."""
    code = "error"
    status_code = 400

    def __init__(self, message=""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or self.code


class NotFoundError(RideCoreError):
    """Unknown ride, driver or wallet."""
    code = "not_found"
    status_code = 404


class InvalidStateError(RideCoreError):
    """Wrong ride or subscription status for the requested transition."""
    code = "invalid_state"
    status_code = 409


class UnauthorizedError(RideCoreError):
    """Caller is not the driver on this ride or is not allowed to act."""
    code = "unauthorized"
    status_code = 403


class ConflictError(RideCoreError):
    """Resource already claimed by someone else."""
    code = "conflict"
    status_code = 409


class InvalidOtpError(RideCoreError):
    """Supplied ride OTP does not match."""
    code = "invalid_otp"
    status_code = 400


class PreconditionFailedError(RideCoreError):
    """A required value was never recorded."""
    code = "precondition_failed"
    status_code = 412


class GeofenceViolationError(RideCoreError):
    """Completion attempted too far from the drop point."""
    code = "geofence_violation"
    status_code = 400


class InsufficientAllowanceError(RideCoreError):
    """No usable subscription minutes to go online."""
    code = "insufficient_allowance"
    status_code = 402
