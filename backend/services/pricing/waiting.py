"""
Waiting time and charge between the driver's arrival at pickup and ride start.

The first few minutes are free. Every chargeable minute is priced by the
tariff in force at that minute's local wall-clock time, so a wait that
crosses 22:00 or 06:00 is billed at both rates.
"""

import math
from dataclasses import dataclass, fields, replace
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from django.conf import settings


@dataclass(frozen=True)
class WaitingTariff:
    free_minutes: int = 3
    day_rate: Decimal = Decimal("1.00")
    night_rate: Decimal = Decimal("1.50")
    day_starts: time = time(6, 0)
    night_starts: time = time(22, 0)
    timezone_name: str = "Asia/Kolkata"

    @classmethod
    def from_settings(cls) -> "WaitingTariff":
        """Defaults overlaid with settings.WAITING_TARIFF."""
        overrides = dict(getattr(settings, "WAITING_TARIFF", {}) or {})
        overrides.setdefault("timezone_name", getattr(settings, "TIME_ZONE", cls.timezone_name))
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in overrides.items():
            if key not in known:
                continue
            if key in ("day_rate", "night_rate"):
                value = Decimal(str(value))
            elif key in ("day_starts", "night_starts") and isinstance(value, str):
                value = time.fromisoformat(value)
            values[key] = value
        return replace(cls(), **values)

    def rate_at(self, moment: datetime) -> Decimal:
        local = moment.astimezone(ZoneInfo(self.timezone_name)).time()
        if self.day_starts <= local < self.night_starts:
            return self.day_rate
        return self.night_rate


@dataclass(frozen=True)
class WaitingResult:
    minutes: int
    charge: Decimal


def calculate_waiting(
    arrived_at: Optional[datetime],
    started_at: datetime,
    tariff: Optional[WaitingTariff] = None,
) -> Optional[WaitingResult]:
    """
    Waiting minutes and charge.

    Returns None when the driver never marked arrival, so callers can tell
    "no wait recorded" apart from a zero-minute wait.

    Minute k (k > free_minutes) is priced at arrived_at + (k - 1) minutes.
    """
    if arrived_at is None:
        return None
    tariff = tariff or WaitingTariff.from_settings()

    elapsed = (started_at - arrived_at).total_seconds()
    minutes = max(0, math.ceil(elapsed / 60))

    charge = Decimal("0.00")
    for k in range(tariff.free_minutes + 1, minutes + 1):
        charge += tariff.rate_at(arrived_at + timedelta(minutes=k - 1))

    return WaitingResult(minutes=minutes, charge=charge.quantize(Decimal("0.01")))
