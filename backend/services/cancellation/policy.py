"""
Cancellation decision for a driver-initiated cancel.

Pure: no database access and no exceptions. Bad or missing inputs resolve
to the conservative penalty outcome.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from common.utils.geo import calculate_distance
from .config import CancellationPolicy, RIDER_NO_SHOW

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

FREE_WINDOW = "free_window"
VALID_REASON = "valid_reason"
PENALTY = "penalty"


@dataclass(frozen=True)
class CancellationFacts:
    cancelled_at: datetime
    accepted_at: Optional[datetime] = None
    vehicle_type: Optional[str] = None

    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    driver_lat_at_accept: Optional[float] = None
    driver_lng_at_accept: Optional[float] = None
    driver_lat: Optional[float] = None
    driver_lng: Optional[float] = None

    arrived_at_pickup_at: Optional[datetime] = None
    # Only a call attempt recorded before the cancel counts
    rider_call_attempted_at: Optional[datetime] = None

    reason_type: Optional[str] = None
    recent_valid_reason_count: int = 0


@dataclass(frozen=True)
class CancellationOutcome:
    category: str
    rider_charged_amount: Decimal
    driver_compensation_amount: Decimal
    driver_strike_type: Optional[str]
    driver_cancellation_reason_type: Optional[str]
    message: str


def has_no_show_evidence(facts: CancellationFacts, policy: CancellationPolicy) -> bool:
    """Call attempt on record, driver arrived, and waited the minimum for the vehicle."""
    if facts.rider_call_attempted_at is None or facts.arrived_at_pickup_at is None:
        return False
    if facts.rider_call_attempted_at > facts.cancelled_at:
        return False
    waited = facts.cancelled_at - facts.arrived_at_pickup_at
    return waited >= timedelta(minutes=policy.no_show_wait(facts.vehicle_type))


def evaluate_cancellation(
    facts: CancellationFacts,
    policy: Optional[CancellationPolicy] = None,
) -> CancellationOutcome:
    policy = policy or CancellationPolicy.from_settings()

    if facts.accepted_at is None:
        return _conservative_penalty(facts, policy, "Acceptance time unknown")

    elapsed = (facts.cancelled_at - facts.accepted_at).total_seconds()
    if elapsed <= policy.free_window_seconds:
        return CancellationOutcome(
            category=FREE_WINDOW,
            rider_charged_amount=ZERO,
            driver_compensation_amount=ZERO,
            driver_strike_type=None,
            driver_cancellation_reason_type=None,
            message="Cancelled within the free window",
        )

    reason = facts.reason_type
    if reason in policy.valid_reasons:
        if reason == RIDER_NO_SHOW and not has_no_show_evidence(facts, policy):
            return _penalty(facts, policy, "No-show claimed without a call attempt and wait at pickup")
        if facts.recent_valid_reason_count < policy.valid_reason_limit:
            return CancellationOutcome(
                category=VALID_REASON,
                rider_charged_amount=ZERO,
                driver_compensation_amount=policy.valid_reason_compensation.quantize(CENT),
                driver_strike_type=None,
                driver_cancellation_reason_type=reason,
                message="Cancellation accepted for a valid reason",
            )
        return _penalty(
            facts,
            policy,
            f"Valid-reason limit of {policy.valid_reason_limit} per "
            f"{policy.valid_reason_window_days} days reached",
        )

    return _penalty(facts, policy, "Cancelled after the free window")


def _penalty(facts, policy, message) -> CancellationOutcome:
    coords = (
        facts.pickup_lat, facts.pickup_lng,
        facts.driver_lat_at_accept, facts.driver_lng_at_accept,
        facts.driver_lat, facts.driver_lng,
    )
    if any(c is None for c in coords):
        return _conservative_penalty(facts, policy, message)

    to_pickup_at_accept = calculate_distance(
        facts.driver_lat_at_accept, facts.driver_lng_at_accept, facts.pickup_lat, facts.pickup_lng
    )
    to_pickup_now = calculate_distance(facts.driver_lat, facts.driver_lng, facts.pickup_lat, facts.pickup_lng)
    moved_toward_pickup = max(0.0, to_pickup_at_accept - to_pickup_now)

    if moved_toward_pickup < policy.moderate_movement_meters:
        fee = policy.partial_fee(facts.vehicle_type)
    else:
        fee = policy.full_fee(facts.vehicle_type)

    # Strike severity follows proximity to pickup
    strike = "full" if to_pickup_now <= policy.close_to_pickup_meters else "light"
    return _charge(fee, strike, policy, message)


def _conservative_penalty(facts, policy, message) -> CancellationOutcome:
    return _charge(policy.partial_fee(facts.vehicle_type), "light", policy, message)


def _charge(fee, strike, policy, message) -> CancellationOutcome:
    fee = fee.quantize(CENT)
    return CancellationOutcome(
        category=PENALTY,
        rider_charged_amount=fee,
        driver_compensation_amount=(fee * policy.compensation_ratio).quantize(CENT),
        driver_strike_type=strike,
        driver_cancellation_reason_type=None,
        message=message,
    )
