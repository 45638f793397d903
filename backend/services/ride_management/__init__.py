"""
Ride management service - Core ride lifecycle operations.

This module handles:
    - Accepting rides and issuing the start OTP
    - Arrival, call attempts and OTP-gated start
    - Geofenced completion
    - Policy-settled driver cancellation
    - Payment confirmation and rider rating
"""

from .ride_lifecycle import (
    RideResult,
    accept_ride,
    arrived_at_pickup,
    record_rider_call_attempt,
    start_ride,
    record_waypoint,
    complete_ride,
    cancel_ride,
    confirm_cash_payment,
    rate_rider,
    get_current_driver_ride,
    get_ride_for_driver,
)

__all__ = [
    "RideResult",
    "accept_ride",
    "arrived_at_pickup",
    "record_rider_call_attempt",
    "start_ride",
    "record_waypoint",
    "complete_ride",
    "cancel_ride",
    "confirm_cash_payment",
    "rate_rider",
    "get_current_driver_ride",
    "get_ride_for_driver",
]
