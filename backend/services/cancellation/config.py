"""Tunable cancellation rules."""

from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import Dict, FrozenSet

from django.conf import settings

RIDER_NO_SHOW = "rider_no_show"


def _fees(bike, auto, car, xl):
    return {"bike": Decimal(bike), "auto": Decimal(auto), "car": Decimal(car), "xl": Decimal(xl)}


def normalize_vehicle_type(vehicle_type) -> str:
    """Collapse a vehicle type into the fee class: bike, auto, car or xl."""
    value = (vehicle_type or "").strip().lower()
    if value in ("bike", "motorcycle", "scooter", "two_wheeler"):
        return "bike"
    if value in ("auto", "rickshaw", "e_rickshaw", "e-rickshaw", "three_wheeler"):
        return "auto"
    if value in ("xl", "suv"):
        return "xl"
    return "car"


@dataclass(frozen=True)
class CancellationPolicy:
    free_window_seconds: int = 45

    valid_reasons: FrozenSet[str] = frozenset({
        RIDER_NO_SHOW,
        "vehicle_mismatch",
        "unsafe_pickup",
        "vehicle_breakdown",
        "accident",
        "medical_emergency",
        "road_blockage",
    })
    valid_reason_limit: int = 3
    valid_reason_window_days: int = 7
    valid_reason_compensation: Decimal = Decimal("25.00")

    # Minimum wait at pickup before a no-show claim is believed
    no_show_wait_minutes: Dict[str, int] = field(
        default_factory=lambda: {"bike": 3, "auto": 4, "car": 5, "xl": 5}
    )

    moderate_movement_meters: float = 1500.0
    close_to_pickup_meters: float = 500.0
    partial_fees: Dict[str, Decimal] = field(default_factory=lambda: _fees("15", "20", "30", "40"))
    full_fees: Dict[str, Decimal] = field(default_factory=lambda: _fees("25", "30", "50", "70"))
    compensation_ratio: Decimal = Decimal("0.50")

    @classmethod
    def from_settings(cls) -> "CancellationPolicy":
        """Defaults overlaid with settings.CANCELLATION_POLICY."""
        overrides = dict(getattr(settings, "CANCELLATION_POLICY", {}) or {})
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in overrides.items():
            if key not in known:
                continue
            if key in ("partial_fees", "full_fees"):
                value = {k: Decimal(str(v)) for k, v in value.items()}
            elif key in ("valid_reason_compensation", "compensation_ratio"):
                value = Decimal(str(value))
            elif key == "valid_reasons":
                value = frozenset(value)
            values[key] = value
        return replace(cls(), **values)

    def partial_fee(self, vehicle_type) -> Decimal:
        return self.partial_fees[normalize_vehicle_type(vehicle_type)]

    def full_fee(self, vehicle_type) -> Decimal:
        return self.full_fees[normalize_vehicle_type(vehicle_type)]

    def no_show_wait(self, vehicle_type) -> int:
        return self.no_show_wait_minutes[normalize_vehicle_type(vehicle_type)]
