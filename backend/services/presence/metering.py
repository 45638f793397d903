"""
Heartbeat metering.

Turns a stream of heartbeats into allowance consumption. Every heartbeat for
a driver runs under a row lock on that driver's presence row, so two
heartbeats for the same driver are serialized and see each other's
last_ping_at. Drivers never contend with each other.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction
from django.utils import timezone

from drivers.models import DriverPresenceStatus, DriverProfile
from drivers.services import update_driver_location
from services.exceptions import InsufficientAllowanceError, NotFoundError
from . import liveness
from .subscriptions import grace_status, latest_expired_subscription

logger = logging.getLogger(__name__)

ALLOWANCE_EXHAUSTED = "allowance_exhausted"
DAILY_ALLOWANCE_REACHED = "daily_allowance_reached"
SUBSCRIPTION_EXPIRED = "subscription_expired"
LIVENESS_EXPIRED = "liveness_expired"


@dataclass
class PresenceSnapshot:
    driver_id: int
    status: str
    last_ping_at: Optional[object]
    total_online_hours: float
    minutes_billed: int = 0
    duplicate: bool = False
    forced_offline: bool = False
    reason: str = ""
    remaining_minutes: Optional[int] = None
    subscription_id: Optional[int] = None
    subscription_status: Optional[str] = None
    in_grace_period: bool = False
    grace_hours_remaining: float = 0.0

    def to_dict(self):
        return {
            "driver_id": self.driver_id,
            "status": self.status,
            "last_ping_at": self.last_ping_at,
            "total_online_hours": round(self.total_online_hours, 4),
            "minutes_billed": self.minutes_billed,
            "duplicate": self.duplicate,
            "forced_offline": self.forced_offline,
            "reason": self.reason,
            "subscription": {
                "id": self.subscription_id,
                "status": self.subscription_status,
                "remaining_minutes": self.remaining_minutes,
                "in_grace_period": self.in_grace_period,
                "grace_hours_remaining": self.grace_hours_remaining,
            },
        }


def _lock_presence(driver) -> DriverPresenceStatus:
    DriverPresenceStatus.objects.get_or_create(driver=driver)
    return DriverPresenceStatus.objects.select_for_update().get(driver=driver)


def _snapshot(presence, subscription=None, **kwargs) -> PresenceSnapshot:
    return PresenceSnapshot(
        driver_id=presence.driver_id,
        status=presence.status,
        last_ping_at=presence.last_ping_at,
        total_online_hours=presence.total_online_hours,
        remaining_minutes=getattr(subscription, "remaining_minutes", None),
        subscription_id=getattr(subscription, "id", None),
        subscription_status=getattr(subscription, "status", None),
        **kwargs,
    )


def _force_offline(presence, driver_id, reason):
    presence.status = "OFFLINE"
    DriverProfile.objects.filter(user_id=driver_id).update(is_in_trip=False)
    logger.info("Driver %s forced offline: %s", driver_id, reason)


def _roll_daily_usage(subscription, today):
    if subscription.daily_usage_date != today:
        subscription.daily_usage_date = today
        subscription.daily_minutes_used = 0


def get_presence(driver) -> PresenceSnapshot:
    presence, _ = DriverPresenceStatus.objects.get_or_create(driver=driver)
    subscription = driver.subscriptions.filter(status="ACTIVE").first()
    return _snapshot(presence, subscription)


def heartbeat(driver, latitude=None, longitude=None, sequence: Optional[int] = None) -> PresenceSnapshot:
    """
    Record one heartbeat and bill whole elapsed minutes.

    ``sequence`` is an optional client counter; a value not above the last
    accepted one is a replay and bills nothing.
    """
    snapshot = _record_heartbeat(driver, latitude, longitude, sequence, timezone.now())

    if snapshot.status == "ONLINE":
        liveness.mark_alive(driver.id)
    else:
        liveness.clear_alive(driver.id)

    if snapshot.forced_offline:
        _notify_presence(driver.id, snapshot.status, snapshot.reason)
    return snapshot


@transaction.atomic
def _record_heartbeat(driver, latitude, longitude, sequence, now) -> PresenceSnapshot:
    presence = _lock_presence(driver)

    if sequence is not None:
        last_seq = presence.last_heartbeat_sequence
        if last_seq is not None and sequence <= last_seq:
            logger.info("Driver %s heartbeat %s replayed (last %s), ignored", driver.id, sequence, last_seq)
            return _snapshot(presence, duplicate=True)
        presence.last_heartbeat_sequence = sequence

    if latitude is not None and longitude is not None:
        try:
            update_driver_location(driver.driver_profile, latitude, longitude)
        except DriverProfile.DoesNotExist:
            raise NotFoundError("Driver profile not found")

    # Offline drivers (or a first ping) only record the ping
    if presence.status != "ONLINE" or presence.last_ping_at is None:
        presence.last_ping_at = now
        presence.save()
        return _snapshot(presence)

    subscription = driver.subscriptions.select_for_update().filter(status="ACTIVE").first()
    if subscription is not None and subscription.expire <= now:
        subscription.status = "EXPIRED"
        subscription.save(update_fields=["status"])
        logger.info("Subscription %s for driver %s passed its expire", subscription.id, driver.id)

    delta = int((now - presence.last_ping_at).total_seconds() // 60)
    presence.last_ping_at = now
    forced_reason = ""

    if delta >= 1:
        presence.total_online_hours += delta / 60

        if subscription is not None and subscription.status == "ACTIVE":
            update_fields = []
            if subscription.remaining_minutes is not None:
                subscription.remaining_minutes = max(subscription.remaining_minutes - delta, 0)
                update_fields.append("remaining_minutes")
                if subscription.remaining_minutes == 0:
                    subscription.status = "EXPIRED"
                    update_fields.append("status")
                    forced_reason = ALLOWANCE_EXHAUSTED

            if subscription.daily_allowance_minutes is not None and subscription.status == "ACTIVE":
                _roll_daily_usage(subscription, timezone.localdate(now))
                subscription.daily_minutes_used += delta
                update_fields += ["daily_usage_date", "daily_minutes_used"]
                if subscription.daily_minutes_used >= subscription.daily_allowance_minutes:
                    forced_reason = DAILY_ALLOWANCE_REACHED

            if update_fields:
                subscription.save(update_fields=update_fields)

    in_grace, grace_left = False, 0.0
    if subscription is None or subscription.status != "ACTIVE":
        if not forced_reason:
            expired = subscription if subscription is not None else latest_expired_subscription(driver)
            in_grace, grace_left = grace_status(expired, now)
            if not in_grace:
                forced_reason = SUBSCRIPTION_EXPIRED
            subscription = expired

    if forced_reason:
        _force_offline(presence, driver.id, forced_reason)

    presence.save()
    return _snapshot(
        presence,
        subscription,
        minutes_billed=delta if delta >= 1 else 0,
        forced_offline=bool(forced_reason),
        reason=forced_reason,
        in_grace_period=in_grace,
        grace_hours_remaining=grace_left,
    )


def toggle_availability(driver, go_online: bool) -> PresenceSnapshot:
    """
    Explicit online/offline switch.

    Going online needs an ACTIVE, unexpired subscription with minutes left
    (or unlimited) and, for capped plans, allowance left today.
    Going offline always succeeds.
    """
    snapshot = _toggle(driver, go_online, timezone.now())
    if snapshot.status == "ONLINE":
        liveness.mark_alive(driver.id)
    else:
        liveness.clear_alive(driver.id)
    return snapshot


@transaction.atomic
def _toggle(driver, go_online, now) -> PresenceSnapshot:
    presence = _lock_presence(driver)

    if not go_online:
        presence.status = "OFFLINE"
        presence.save()
        logger.info("Driver %s went offline", driver.id)
        return _snapshot(presence)

    subscription = driver.subscriptions.select_for_update().filter(status="ACTIVE").first()
    if subscription is None or subscription.expire <= now:
        raise InsufficientAllowanceError("An active subscription is required to go online")
    if subscription.remaining_minutes is not None and subscription.remaining_minutes <= 0:
        raise InsufficientAllowanceError("No subscription minutes remaining")
    if (
        subscription.daily_allowance_minutes is not None
        and subscription.daily_usage_date == timezone.localdate(now)
        and subscription.daily_minutes_used >= subscription.daily_allowance_minutes
    ):
        raise InsufficientAllowanceError("Today's allowance is used up")

    if presence.status != "ONLINE":
        presence.status = "ONLINE"
        presence.last_ping_at = now
        presence.save()
        logger.info("Driver %s went online", driver.id)
    return _snapshot(presence, subscription)


def sweep_stale_presence() -> int:
    """
    Flip ONLINE drivers whose liveness key expired to OFFLINE.

    Drivers whose key cannot be read (cache down) are left alone.
    """
    swept = 0
    online_ids = list(
        DriverPresenceStatus.objects.filter(status="ONLINE").values_list("driver_id", flat=True)
    )
    for driver_id in online_ids:
        if liveness.is_alive(driver_id) is not False:
            continue
        with transaction.atomic():
            presence = DriverPresenceStatus.objects.select_for_update().get(driver_id=driver_id)
            if presence.status != "ONLINE":
                continue
            presence.status = "OFFLINE"
            presence.save(update_fields=["status", "updated_at"])
        logger.info("Driver %s marked offline: %s", driver_id, LIVENESS_EXPIRED)
        _notify_presence(driver_id, "OFFLINE", LIVENESS_EXPIRED)
        swept += 1
    return swept


def _notify_presence(driver_id, status, reason):
    try:
        from realtime.notifications import notify_presence_event
        notify_presence_event(driver_id, status, reason)
    except Exception:
        logger.exception("Failed to notify driver %s of presence change", driver_id)
