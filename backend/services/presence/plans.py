"""Subscription plan catalogue, priced per vehicle category."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional


@dataclass(frozen=True)
class SubscriptionPlan:
    plan_id: str
    vehicle_category: str
    label: str
    price: Decimal
    duration_days: int
    included_minutes: Optional[int]  # None = unlimited within the window


# (suffix, label, duration_days, included_minutes)
_TIERS = [
    ("daily_4h", "Daily 4h", 1, 4 * 60),
    ("daily_12h", "Daily 12h", 1, 12 * 60),
    ("weekly_5d", "Weekly 5x12h", 5, 5 * 12 * 60),
    ("weekly_7d", "Weekly 7x12h", 7, 7 * 12 * 60),
    ("monthly_12h", "Monthly 30x12h", 30, 30 * 12 * 60),
    ("monthly_unlimited", "Monthly Unlimited", 30, None),
]

_PRICES = {
    "BIKE": ["20", "60", "180", "250", "899", "1199"],
    "AUTO": ["25", "70", "220", "300", "999", "1399"],
    "CAR": ["30", "90", "280", "350", "1299", "1699"],
}

SUBSCRIPTION_PLANS: Dict[str, SubscriptionPlan] = {}
for _category, _prices in _PRICES.items():
    for (_suffix, _label, _days, _minutes), _price in zip(_TIERS, _prices):
        _plan = SubscriptionPlan(
            plan_id=f"{_category.lower()}_{_suffix}",
            vehicle_category=_category,
            label=f"{_category.title()} {_label}",
            price=Decimal(_price),
            duration_days=_days,
            included_minutes=_minutes,
        )
        SUBSCRIPTION_PLANS[_plan.plan_id] = _plan


def get_plan(plan_id: str) -> Optional[SubscriptionPlan]:
    return SUBSCRIPTION_PLANS.get(plan_id)


def plans_for_category(vehicle_category: str):
    return [p for p in SUBSCRIPTION_PLANS.values() if p.vehicle_category == vehicle_category]


def daily_allowance(included_minutes: Optional[int], duration_days: int) -> Optional[int]:
    """Per-day cap: the whole allowance for one-day plans, an even split otherwise."""
    if included_minutes is None:
        return None
    if duration_days <= 1:
        return included_minutes
    return included_minutes // duration_days
