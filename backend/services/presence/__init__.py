"""
Presence and subscription metering.

This module handles:
    - Heartbeats and allowance consumption
    - Online/offline toggle behind the subscription check
    - Liveness keys and the stale presence sweep
    - Subscription reads, activation and overtime billing
"""

from .metering import (
    PresenceSnapshot,
    get_presence,
    heartbeat,
    sweep_stale_presence,
    toggle_availability,
)
from .plans import SUBSCRIPTION_PLANS, SubscriptionPlan, get_plan, plans_for_category
from .subscriptions import (
    ActivationResult,
    PaymentProof,
    SubscriptionSnapshot,
    activate_subscription,
    bill_overtime,
    get_current_subscription,
    grace_status,
    verify_payment_signature,
)

__all__ = [
    "PresenceSnapshot",
    "get_presence",
    "heartbeat",
    "sweep_stale_presence",
    "toggle_availability",
    "SUBSCRIPTION_PLANS",
    "SubscriptionPlan",
    "get_plan",
    "plans_for_category",
    "ActivationResult",
    "PaymentProof",
    "SubscriptionSnapshot",
    "activate_subscription",
    "bill_overtime",
    "get_current_subscription",
    "grace_status",
    "verify_payment_signature",
]
