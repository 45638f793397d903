"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - ride_management: Ride state machine
    - cancellation: Cancellation policy engine
    - pricing: Waiting time and charge
    - presence: Heartbeat metering and subscriptions
    - ledger: Wallet credits and debits
"""

from .exceptions import (
    RideCoreError,
    NotFoundError,
    InvalidStateError,
    UnauthorizedError,
    ConflictError,
    InvalidOtpError,
    PreconditionFailedError,
    GeofenceViolationError,
    InsufficientAllowanceError,
)

__all__ = [
    "RideCoreError",
    "NotFoundError",
    "InvalidStateError",
    "UnauthorizedError",
    "ConflictError",
    "InvalidOtpError",
    "PreconditionFailedError",
    "GeofenceViolationError",
    "InsufficientAllowanceError",
]
