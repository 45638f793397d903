"""
Fare calculations.

    - waiting: clock-tariff waiting charge between arrival and start
"""

from .waiting import WaitingTariff, WaitingResult, calculate_waiting

__all__ = [
    "WaitingTariff",
    "WaitingResult",
    "calculate_waiting",
]
