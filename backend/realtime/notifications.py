"""
Notification helpers for pushing ride events to connected clients.

Events go through the channel layer to two kinds of groups:
- user_<user_id>: a rider's or driver's personal group
- ride_<ride_id>: everyone watching one ride

Delivery is best effort. Callers run these after commit and treat a
failure as non-fatal.
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def _send(group: str, payload: Dict[str, Any]) -> bool:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False

    logger.debug("WS -> %s: %s", group, payload)
    async_to_sync(channel_layer.group_send)(group, payload)
    return True


def notify_user_event(
    event_type: str,
    user_id: int | None,
    message: str = "",
    extra: Dict[str, Any] = None,
) -> bool:
    """
    Send an event to one user's personal group.

    Returns:
        True if handed to the channel layer, False otherwise
    """
    if not user_id:
        return False

    payload = {"type": event_type, **(extra or {})}
    if message:
        payload["message"] = message
    return _send(f"user_{user_id}", payload)


def notify_ride_event(
    event_type: str,
    ride,
    message: str = "",
    extra: Dict[str, Any] = None,
) -> bool:
    """
    Send a ride event to the rider and to the ride group.

    Args:
        event_type: Handler name on the consumer (ride_accepted, ride_started, ...)
        ride: Ride model instance
        message: Optional human-readable message
        extra: Additional payload data
    """
    from rides.serializers import RideSerializer

    payload = {
        "type": event_type,
        "ride_id": ride.id,
        "status": ride.status,
        "ride_data": RideSerializer(ride).data,
        **(extra or {}),
    }
    if message:
        payload["message"] = message

    sent = _send(f"ride_{ride.id}", payload)
    notify_user_event(event_type, ride.rider_id, message, {"ride_id": ride.id, "status": ride.status})
    return sent


def notify_presence_event(driver_id: int, status: str, reason: str = "") -> bool:
    """Tell a driver's clients that their presence changed (e.g. forced offline)."""
    return notify_user_event(
        "driver_presence_changed",
        driver_id,
        reason,
        {"driver_id": driver_id, "status": status},
    )
