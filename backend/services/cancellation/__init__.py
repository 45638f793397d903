"""
Cancellation policy engine - pure decision over a driver cancellation.

This module handles:
    - Free window after acceptance
    - Rate-limited valid-reason waivers (with no-show evidence)
    - Distance based penalty, compensation and strikes
"""

from .config import CancellationPolicy, normalize_vehicle_type
from .policy import (
    CancellationFacts,
    CancellationOutcome,
    evaluate_cancellation,
    has_no_show_evidence,
)

__all__ = [
    "CancellationPolicy",
    "CancellationFacts",
    "CancellationOutcome",
    "evaluate_cancellation",
    "has_no_show_evidence",
    "normalize_vehicle_type",
]
