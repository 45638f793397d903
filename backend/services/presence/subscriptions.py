"""
Subscription reads and activation.

Activation is the one place that performs negative-balance recovery,
overtime billing and referral bonuses, all in the same transaction as the
new subscription row.
"""

import hashlib
import hmac
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from drivers.models import (
    DriverProfile,
    DriverSubscription,
    ReferralCredit,
    SubscriptionPayment,
)
from drivers.services import get_current_vehicle
from services.exceptions import (
    NotFoundError,
    PreconditionFailedError,
    UnauthorizedError,
)
from services.ledger import credit, debit, get_or_create_wallet, lock_wallet
from services.ledger.ledger import to_money
from .plans import daily_allowance, get_plan

logger = logging.getLogger(__name__)


def _presence_setting(key, default):
    return getattr(settings, "DRIVER_PRESENCE", {}).get(key, default)


def grace_hours() -> int:
    return int(_presence_setting("GRACE_HOURS", 4))


def overtime_rate() -> Decimal:
    return Decimal(str(_presence_setting("OVERTIME_RATE_PER_HOUR", "10.00")))


def grace_period_end(subscription):
    return subscription.expire + timedelta(hours=grace_hours())


def grace_status(subscription, now) -> Tuple[bool, float]:
    """
    (in_grace_period, grace_hours_remaining) for a wall-clock expired subscription.

    A subscription that ran out of minutes gets no grace.
    """
    if subscription is None or subscription.status != "EXPIRED":
        return False, 0.0
    if subscription.remaining_minutes == 0 or now < subscription.expire:
        return False, 0.0
    end = grace_period_end(subscription)
    if now >= end:
        return False, 0.0
    return True, round((end - now).total_seconds() / 3600, 2)


def latest_expired_subscription(driver) -> Optional[DriverSubscription]:
    return driver.subscriptions.filter(status="EXPIRED").order_by("-expire").first()


@dataclass
class SubscriptionSnapshot:
    subscription: Optional[DriverSubscription]
    in_grace_period: bool = False
    grace_hours_remaining: float = 0.0


@transaction.atomic
def get_current_subscription(driver) -> SubscriptionSnapshot:
    """
    Current subscription, reconciling lazily.

    An ACTIVE row past its expire is marked EXPIRED and reported with its
    grace window. Nothing is billed here.
    """
    now = timezone.now()
    sub = driver.subscriptions.select_for_update().filter(status="ACTIVE").first()

    if sub is not None and sub.expire <= now:
        sub.status = "EXPIRED"
        sub.save(update_fields=["status"])
        logger.info("Subscription %s for driver %s expired at %s", sub.id, driver.id, sub.expire)

    if sub is None:
        sub = latest_expired_subscription(driver)

    in_grace, hours_left = grace_status(sub, now)
    return SubscriptionSnapshot(subscription=sub, in_grace_period=in_grace, grace_hours_remaining=hours_left)


def bill_overtime(driver, subscription, now) -> Decimal:
    """
    Debit whole hours spent inside the grace window since the last billing.

    The wallet may go negative; activation recovers it right after.
    """
    if subscription is None or subscription.status != "EXPIRED" or now <= subscription.expire:
        return Decimal("0.00")
    # Minutes ran out: no grace window, so nothing to bill
    if subscription.remaining_minutes == 0:
        return Decimal("0.00")

    billed_from = subscription.last_overtime_billing_at or subscription.expire
    billed_to = min(now, grace_period_end(subscription))
    hours = math.floor((billed_to - billed_from).total_seconds() / 3600)
    if hours <= 0:
        return Decimal("0.00")

    amount = to_money(overtime_rate() * hours)
    wallet = get_or_create_wallet(driver, "driver")
    debit(
        wallet,
        amount,
        "overtime",
        subscription.id,
        description=f"Overtime {hours}h after subscription expiry",
    )
    subscription.last_overtime_billing_at = billed_from + timedelta(hours=hours)
    subscription.save(update_fields=["last_overtime_billing_at"])
    logger.info("Billed %s overtime hours (%s) to driver %s", hours, amount, driver.id)
    return amount


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str = None) -> bool:
    """Gateway signature: hex HMAC-SHA256 of "order_id|payment_id"."""
    secret = secret if secret is not None else settings.RAZORPAY_KEY_SECRET
    if not secret or not signature:
        return False
    expected = hmac.new(
        secret.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature)


@dataclass
class PaymentProof:
    mode: str = "razorpay"
    order_id: str = ""
    payment_id: str = ""
    signature: str = ""


@dataclass
class ActivationResult:
    subscription: DriverSubscription
    payment: SubscriptionPayment
    wallet_recovery_amount: Decimal
    wallet_amount_used: Decimal
    overtime_charged: Decimal
    referral_credited: bool


def _resolve_terms(profile, plan_id, amount, duration_days, included_minutes):
    vehicle = get_current_vehicle(profile.user)

    if plan_id:
        plan = get_plan(plan_id)
        if plan is None:
            raise NotFoundError(f"Unknown subscription plan {plan_id}")
        if vehicle is not None and vehicle.plan_category != plan.vehicle_category:
            raise PreconditionFailedError(
                f"Plan {plan_id} is for {plan.vehicle_category} but your vehicle is {vehicle.plan_category}"
            )
        return plan.plan_id, plan.vehicle_category, plan.price, plan.duration_days, plan.included_minutes

    if amount is None or Decimal(str(amount)) <= 0:
        raise PreconditionFailedError("Custom subscriptions need a positive amount")
    duration_days = int(duration_days or 30)
    if duration_days < 1:
        raise PreconditionFailedError("duration_days must be at least 1")
    if included_minutes is not None and int(included_minutes) < 1:
        raise PreconditionFailedError("included_minutes must be at least 1")
    category = vehicle.plan_category if vehicle is not None else ""
    return "", category, to_money(amount), duration_days, included_minutes


@transaction.atomic
def activate_subscription(
    driver,
    plan_id: str = None,
    amount=None,
    duration_days: int = 30,
    included_minutes: int = None,
    payment: PaymentProof = None,
) -> ActivationResult:
    """
    Buy a plan (or custom terms) and make it the driver's only ACTIVE subscription.

    Raises:
        NotFoundError: no driver profile, or unknown plan
        UnauthorizedError: driver not verified
        PreconditionFailedError: bad terms, bad signature, or wallet short for a wallet payment
    """
    try:
        profile = DriverProfile.objects.select_for_update().get(user=driver)
    except DriverProfile.DoesNotExist:
        raise NotFoundError("Driver profile not found")

    if not profile.is_verified:
        raise UnauthorizedError("Driver is not approved yet")

    plan_id, category, price, duration_days, included_minutes = _resolve_terms(
        profile, plan_id, amount, duration_days, included_minutes
    )

    payment = payment or PaymentProof()
    if payment.mode == "razorpay":
        if not verify_payment_signature(payment.order_id, payment.payment_id, payment.signature):
            raise PreconditionFailedError("Payment signature verification failed")
    elif payment.mode != "wallet":
        raise PreconditionFailedError(f"Unsupported payment mode {payment.mode}")

    now = timezone.now()
    is_first_subscription = not driver.subscriptions.exists()
    current = []
    for sub in driver.subscriptions.select_for_update().filter(status="ACTIVE"):
        if sub.expire <= now:
            sub.status = "EXPIRED"
            sub.save(update_fields=["status"])
        else:
            current.append(sub)

    overtime = bill_overtime(driver, latest_expired_subscription(driver), now)

    wallet = lock_wallet(driver, "driver")
    balance = wallet.balance
    recovery = -balance if balance < 0 else Decimal("0.00")
    wallet_used = min(balance, price) if balance > 0 else Decimal("0.00")

    if payment.mode == "wallet" and wallet_used < price:
        raise PreconditionFailedError("Wallet balance does not cover the subscription price")

    sub_payment = SubscriptionPayment.objects.create(
        driver=driver,
        plan_id=plan_id,
        amount=price,
        wallet_amount_used=wallet_used,
        wallet_recovery_amount=recovery,
        payment_mode=payment.mode,
        order_id=payment.order_id,
        payment_id=payment.payment_id,
    )

    credit(wallet, recovery, "wallet_recovery", sub_payment.id, description="Negative balance recovered at subscription purchase")
    debit(wallet, wallet_used, "subscription", sub_payment.id, description="Wallet balance applied to subscription")

    for old in current:
        old.status = "CANCELLED"
        old.save(update_fields=["status"])
        logger.info("Cancelled subscription %s for driver %s (replaced)", old.id, driver.id)

    subscription = DriverSubscription.objects.create(
        driver=driver,
        payment=sub_payment,
        plan_id=plan_id,
        vehicle_category=category,
        status="ACTIVE",
        start_time=now,
        expire=now + timedelta(days=duration_days),
        amount_paid=price,
        included_minutes=included_minutes,
        remaining_minutes=included_minutes,
        daily_allowance_minutes=daily_allowance(included_minutes, duration_days),
        daily_usage_date=timezone.localdate(now),
    )

    referral_credited = False
    if is_first_subscription:
        referral_credited = _credit_referral(profile, subscription)

    logger.info(
        "Activated subscription %s (%s) for driver %s; recovery=%s wallet_used=%s overtime=%s",
        subscription.id, plan_id or "custom", driver.id, recovery, wallet_used, overtime,
    )
    return ActivationResult(
        subscription=subscription,
        payment=sub_payment,
        wallet_recovery_amount=recovery,
        wallet_amount_used=wallet_used,
        overtime_charged=overtime,
        referral_credited=referral_credited,
    )


def _credit_referral(profile, subscription) -> bool:
    referrer = profile.referred_by
    if referrer is None or referrer.pk == profile.user_id:
        return False
    if ReferralCredit.objects.filter(referee=profile.user).exists():
        return False

    bonus = getattr(settings, "REFERRAL_BONUS", {})
    referrer_amount = to_money(bonus.get("REFERRER", "50.00"))
    referee_amount = to_money(bonus.get("REFEREE", "20.00"))

    referral = ReferralCredit.objects.create(
        referrer=referrer,
        referee=profile.user,
        subscription=subscription,
        referrer_amount=referrer_amount,
        referee_amount=referee_amount,
    )
    credit(get_or_create_wallet(referrer, "driver"), referrer_amount, "referral_bonus", referral.id,
           description=f"Referral bonus for {profile.user.username}")
    credit(get_or_create_wallet(profile.user, "driver"), referee_amount, "referral_bonus", referral.id,
           description="Welcome bonus for joining with a referral")
    logger.info("Referral credit %s: referrer %s, referee %s", referral.id, referrer.pk, profile.user_id)
    return True
