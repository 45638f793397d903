"""
Core ride lifecycle operations.

Every driver transition locks the ride row, checks all preconditions
before touching anything, and applies its state change together with any
money movement in one transaction. Notifications are queued with
on_commit so a delivery failure can never undo a committed transition.
"""

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Dict, Any

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from accounts.models import User
from common.utils.geo import calculate_distance
from drivers.models import DriverProfile
from drivers.services import get_current_vehicle, set_in_trip, set_vehicle_available
from realtime.notifications import notify_ride_event
from rides.models import (
    DriverCancellationStrike,
    DriverValidReasonCancel,
    Ride,
    RideWaypoint,
)
from services.cancellation import (
    CancellationFacts,
    CancellationOutcome,
    CancellationPolicy,
    evaluate_cancellation,
)
from services.exceptions import (
    ConflictError,
    GeofenceViolationError,
    InvalidOtpError,
    InvalidStateError,
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
)
from services.ledger import credit, debit, get_or_create_wallet
from services.pricing import calculate_waiting

logger = logging.getLogger(__name__)

GEOFENCE_RADIUS_METERS = 3000
ACTIVE_STATUSES = ("accepted", "in_progress")
TERMINAL_STATUSES = ("completed", "cancelled")


@dataclass
class RideResult:
    """Result object for ride operations."""
    success: bool
    ride: Optional[Ride] = None
    message: str = ""
    extra: Optional[Dict[str, Any]] = None


def generate_ride_otp() -> str:
    return str(1000 + secrets.randbelow(9000))


def _lock_ride(ride_id) -> Ride:
    try:
        return Ride.objects.select_for_update().get(pk=ride_id)
    except Ride.DoesNotExist:
        raise NotFoundError("Ride not found")


def _require_assigned(ride: Ride, driver):
    if ride.driver_id != driver.id:
        raise UnauthorizedError("This ride is not assigned to you")


# ===================== Driver Transitions =====================

@transaction.atomic
def accept_ride(driver, ride_id: int) -> RideResult:
    """
    Claim a pending ride and issue its start OTP.

    Raises:
        ConflictError: another driver already holds the ride
        InvalidStateError: ride is not pending
        NotFoundError: unknown ride or missing driver profile
    """
    ride = _lock_ride(ride_id)

    if ride.driver_id is not None and ride.driver_id != driver.id:
        raise ConflictError("This ride was already taken by another driver")
    if ride.status != "pending":
        raise InvalidStateError(f"Cannot accept - ride is {ride.status}")

    try:
        profile = DriverProfile.objects.get(user=driver)
    except DriverProfile.DoesNotExist:
        raise NotFoundError("Driver profile not found")

    ride.driver = driver
    ride.vehicle = get_current_vehicle(driver)
    ride.ride_otp = generate_ride_otp()
    ride.status = "accepted"
    ride.accepted_at = timezone.now()
    ride.driver_lat_at_accept = profile.current_latitude
    ride.driver_lng_at_accept = profile.current_longitude
    ride.save(update_fields=[
        "driver", "vehicle", "ride_otp", "status", "accepted_at",
        "driver_lat_at_accept", "driver_lng_at_accept",
    ])

    logger.info("Ride %s accepted by driver %s", ride.id, driver.id)
    _notify_after_commit(ride, "ride_accepted", "Your ride has been accepted. The driver is on the way.")

    return RideResult(success=True, ride=ride, message="Ride accepted. Navigate to pickup location.")


@transaction.atomic
def arrived_at_pickup(driver, ride_id: int) -> RideResult:
    """Mark arrival at pickup. Repeating the call returns the first timestamp."""
    ride = _lock_ride(ride_id)
    _require_assigned(ride, driver)

    if ride.driver_arrived_at_pickup_at is not None:
        return RideResult(
            success=True,
            ride=ride,
            message="Arrival already recorded",
            extra={"arrived_at": ride.driver_arrived_at_pickup_at},
        )

    if ride.status not in ("pending", "accepted"):
        raise InvalidStateError(f"Cannot mark arrival - ride is {ride.status}")

    ride.driver_arrived_at_pickup_at = timezone.now()
    ride.save(update_fields=["driver_arrived_at_pickup_at"])

    logger.info("Driver %s arrived at pickup for ride %s", driver.id, ride.id)
    _notify_after_commit(ride, "driver_arrived", "Your driver has arrived at the pickup point.")

    return RideResult(
        success=True,
        ride=ride,
        message="Arrival recorded",
        extra={"arrived_at": ride.driver_arrived_at_pickup_at},
    )


@transaction.atomic
def record_rider_call_attempt(driver, ride_id: int) -> RideResult:
    """Record that the driver tried to call the rider. Kept once, as no-show evidence."""
    ride = _lock_ride(ride_id)
    _require_assigned(ride, driver)

    if ride.status not in ("pending", "accepted"):
        raise InvalidStateError(f"Cannot record a call attempt - ride is {ride.status}")

    if ride.rider_call_attempted_at is None:
        ride.rider_call_attempted_at = timezone.now()
        ride.save(update_fields=["rider_call_attempted_at"])
        logger.info("Driver %s called rider on ride %s", driver.id, ride.id)

    return RideResult(success=True, ride=ride, message="Call attempt recorded")


@transaction.atomic
def start_ride(driver, ride_id: int, otp) -> RideResult:
    """
    Start the ride once the rider hands over the OTP.

    Raises:
        UnauthorizedError: ride belongs to another driver
        InvalidStateError: ride is not pending/accepted
        PreconditionFailedError: no OTP was issued
        InvalidOtpError: OTP does not match
    """
    ride = _lock_ride(ride_id)
    _require_assigned(ride, driver)

    if ride.status not in ("pending", "accepted"):
        raise InvalidStateError(f"Cannot start - ride is {ride.status}")
    if not ride.ride_otp:
        raise PreconditionFailedError("No OTP was issued for this ride")
    if str(otp or "").strip() != ride.ride_otp:
        raise InvalidOtpError("Invalid OTP")

    now = timezone.now()
    waiting = calculate_waiting(ride.driver_arrived_at_pickup_at, now)

    update_fields = ["ride_otp", "status", "start_time"]
    if waiting is not None:
        ride.waiting_time = waiting.minutes
        ride.waiting_charges = waiting.charge
        update_fields += ["waiting_time", "waiting_charges"]

    ride.ride_otp = None
    ride.status = "in_progress"
    ride.start_time = now
    ride.save(update_fields=update_fields)

    set_in_trip(driver, True)
    set_vehicle_available(ride.vehicle, False)

    logger.info("Ride %s started by driver %s (waiting=%s)", ride.id, driver.id, waiting)
    _notify_after_commit(ride, "ride_started", "Your ride has started.")

    return RideResult(success=True, ride=ride, message="Ride started")


@transaction.atomic
def record_waypoint(driver, ride_id: int, latitude, longitude) -> RideWaypoint:
    ride = _lock_ride(ride_id)
    _require_assigned(ride, driver)
    if ride.status != "in_progress":
        raise InvalidStateError(f"Cannot record route - ride is {ride.status}")
    return RideWaypoint.objects.create(ride=ride, latitude=latitude, longitude=longitude)


def _completion_target(ride: Ride):
    if ride.drop_latitude is not None and ride.drop_longitude is not None:
        return ride.drop_latitude, ride.drop_longitude
    last = ride.waypoints.order_by("-recorded_at", "-id").first()
    if last is not None:
        return last.latitude, last.longitude
    return None


@transaction.atomic
def complete_ride(
    driver,
    ride_id: int,
    latitude,
    longitude,
    actual_fare=None,
    actual_distance=None,
    actual_duration: Optional[int] = None,
    payment_method: Optional[str] = None,
) -> RideResult:
    """
    Complete the ride if the driver is within the geofence of the drop point.

    Raises:
        UnauthorizedError: ride belongs to another driver
        InvalidStateError: ride is not in progress
        PreconditionFailedError: neither drop point nor route trail is known
        GeofenceViolationError: completion point is more than 3 km from drop
    """
    ride = _lock_ride(ride_id)
    _require_assigned(ride, driver)

    if ride.status != "in_progress":
        raise InvalidStateError(f"Cannot complete - ride is {ride.status}")

    target = _completion_target(ride)
    if target is None:
        raise PreconditionFailedError("Ride has no drop point or route to check against")

    distance = calculate_distance(latitude, longitude, target[0], target[1])
    if distance > GEOFENCE_RADIUS_METERS:
        raise GeofenceViolationError(
            f"You are {distance / 1000:.2f} km from the drop point; complete within "
            f"{GEOFENCE_RADIUS_METERS / 1000:.0f} km"
        )

    now = timezone.now()
    if actual_duration is None and ride.start_time is not None:
        actual_duration = math.ceil((now - ride.start_time).total_seconds() / 60)

    if payment_method:
        ride.payment_method = payment_method
    if actual_fare is None and ride.estimated_fare is not None:
        actual_fare = ride.estimated_fare + (ride.waiting_charges or Decimal("0.00"))

    ride.status = "completed"
    ride.end_time = now
    ride.actual_fare = actual_fare
    ride.actual_distance = actual_distance
    ride.actual_duration = actual_duration
    ride.payment_status = "pending" if ride.payment_method == "cash" else "paid"
    ride.save(update_fields=[
        "status", "end_time", "actual_fare", "actual_distance", "actual_duration",
        "payment_method", "payment_status",
    ])

    User.objects.filter(pk__in=[ride.rider_id, driver.id]).update(completed_rides=F("completed_rides") + 1)
    set_in_trip(driver, False)
    set_vehicle_available(ride.vehicle, True)

    logger.info("Ride %s completed by driver %s %.0fm from drop", ride.id, driver.id, distance)
    _notify_after_commit(ride, "ride_completed", "Your ride has been completed. Thank you for riding with us!")

    return RideResult(success=True, ride=ride, message="Ride completed successfully")


@transaction.atomic
def cancel_ride(
    driver,
    ride_id: int,
    reason: str = "",
    reason_type: Optional[str] = None,
    rider_call_attempted: bool = False,
    latitude=None,
    longitude=None,
    policy: Optional[CancellationPolicy] = None,
) -> RideResult:
    """
    Driver cancellation, settled by the cancellation policy.

    Ride state, ledger entries and the strike / valid-reason audit row are
    written together or not at all.
    """
    ride = _lock_ride(ride_id)
    _require_assigned(ride, driver)

    if ride.status in TERMINAL_STATUSES:
        raise InvalidStateError(f"Cannot cancel - ride is already {ride.status}")

    policy = policy or CancellationPolicy.from_settings()
    now = timezone.now()

    recent_valid = DriverValidReasonCancel.objects.filter(
        driver=driver,
        cancelled_at__gte=now - timedelta(days=policy.valid_reason_window_days),
    ).count()

    facts = CancellationFacts(
        cancelled_at=now,
        accepted_at=ride.accepted_at,
        vehicle_type=ride.vehicle.vehicle_type if ride.vehicle else None,
        pickup_lat=ride.pickup_latitude,
        pickup_lng=ride.pickup_longitude,
        driver_lat_at_accept=ride.driver_lat_at_accept,
        driver_lng_at_accept=ride.driver_lng_at_accept,
        driver_lat=latitude,
        driver_lng=longitude,
        arrived_at_pickup_at=ride.driver_arrived_at_pickup_at,
        rider_call_attempted_at=ride.rider_call_attempted_at,
        reason_type=reason_type,
        recent_valid_reason_count=recent_valid,
    )
    outcome = evaluate_cancellation(facts, policy)

    ride.status = "cancelled"
    ride.cancelled_at = now
    ride.end_time = now
    ride.ride_otp = None
    ride.cancelled_by = "driver"
    ride.cancellation_reason = reason or outcome.message
    ride.cancellation_fee = outcome.rider_charged_amount
    ride.driver_strike_type = outcome.driver_strike_type
    ride.driver_compensation_amount = outcome.driver_compensation_amount
    ride.driver_cancellation_reason_type = outcome.driver_cancellation_reason_type
    if rider_call_attempted and ride.rider_call_attempted_at is None:
        ride.rider_call_attempted_at = now
    ride.save()

    _settle_cancellation(ride, driver, outcome, now)

    set_in_trip(driver, False)
    set_vehicle_available(ride.vehicle, True)

    logger.info(
        "Ride %s cancelled by driver %s: %s charge=%s comp=%s strike=%s",
        ride.id, driver.id, outcome.category, outcome.rider_charged_amount,
        outcome.driver_compensation_amount, outcome.driver_strike_type,
    )
    _notify_after_commit(ride, "ride_cancelled", "Driver cancelled the ride. Please request again.")

    return RideResult(
        success=True,
        ride=ride,
        message=outcome.message,
        extra={"outcome": outcome},
    )


def _settle_cancellation(ride: Ride, driver, outcome: CancellationOutcome, now):
    if outcome.rider_charged_amount > 0:
        debit(
            get_or_create_wallet(ride.rider, "rider"),
            outcome.rider_charged_amount,
            "ride_cancellation",
            ride.id,
            description=f"Cancellation fee for ride #{ride.id}",
        )
    if outcome.driver_compensation_amount > 0:
        credit(
            get_or_create_wallet(driver, "driver"),
            outcome.driver_compensation_amount,
            "cancellation_compensation",
            ride.id,
            description=f"Compensation for cancelled ride #{ride.id}",
        )
    if outcome.driver_strike_type:
        DriverCancellationStrike.objects.create(
            driver=driver, ride=ride, strike_type=outcome.driver_strike_type, cancelled_at=now,
        )
    if outcome.driver_cancellation_reason_type:
        DriverValidReasonCancel.objects.create(
            driver=driver, ride=ride, reason_type=outcome.driver_cancellation_reason_type, cancelled_at=now,
        )


# ===================== After Completion =====================

@transaction.atomic
def confirm_cash_payment(driver, ride_id: int) -> RideResult:
    """The one change allowed on a completed ride: cash received."""
    ride = _lock_ride(ride_id)
    _require_assigned(ride, driver)

    if ride.status != "completed":
        raise InvalidStateError(f"Cannot confirm payment - ride is {ride.status}")
    if ride.payment_method != "cash":
        raise InvalidStateError("Only cash rides need payment confirmation")

    if ride.payment_status != "paid":
        ride.payment_status = "paid"
        ride.save(update_fields=["payment_status"])
        logger.info("Cash payment confirmed for ride %s", ride.id)

    return RideResult(success=True, ride=ride, message="Payment confirmed")


@transaction.atomic
def rate_rider(driver, ride_id: int, rating: int, comment: str = "") -> RideResult:
    ride = _lock_ride(ride_id)
    _require_assigned(ride, driver)

    if ride.status != "completed":
        raise InvalidStateError("Only completed rides can be rated")
    if ride.rider_rating is not None:
        raise InvalidStateError("You have already rated this rider")
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise PreconditionFailedError("Rating must be a number from 1 to 5")
    if not 1 <= rating <= 5:
        raise PreconditionFailedError("Rating must be a number from 1 to 5")

    ride.rider_rating = rating
    ride.rider_rating_comment = comment or ""
    ride.save(update_fields=["rider_rating", "rider_rating_comment"])

    return RideResult(success=True, ride=ride, message="Thanks for rating your rider")


# ===================== Queries =====================

def get_current_driver_ride(driver) -> Optional[Ride]:
    """Get driver's current active ride."""
    return Ride.objects.filter(
        driver=driver,
        status__in=ACTIVE_STATUSES,
    ).select_related("rider", "vehicle").first()


def get_ride_for_driver(driver, ride_id: int) -> Ride:
    try:
        return Ride.objects.select_related("rider", "vehicle").get(pk=ride_id, driver=driver)
    except Ride.DoesNotExist:
        raise NotFoundError("Ride not found")


# ===================== Helper Functions =====================

def _notify(ride: Ride, event_type: str, message: str):
    """Fire-and-forget ride notification."""
    try:
        notify_ride_event(event_type, ride, message)
    except Exception:
        logger.exception("Failed to notify ride %s of %s", ride.id, event_type)


def _notify_after_commit(ride: Ride, event_type: str, message: str):
    transaction.on_commit(lambda: _notify(ride, event_type, message))
