"""Severity tiers and confidence scores for detector output.

Each detector family keeps its own severity cut points: relative price moves
use the shared delta rule while volume-based detectors escalate on their own
thresholds. They are intentionally not folded into one function.
"""

from __future__ import annotations

from jobs.config import DEFAULT_THRESHOLDS, SignalThresholds
from pipelines.model import Severity


def severity_from_delta(
    delta_pct: float, thresholds: SignalThresholds = DEFAULT_THRESHOLDS
) -> Severity:
    """Shared rule for relative-change detectors."""

    magnitude = abs(delta_pct)
    if magnitude >= thresholds.severity_urgent:
        return "urgent"
    if magnitude >= thresholds.severity_watch:
        return "watch"
    return "info"


def hot_area_severity(
    count: int, thresholds: SignalThresholds = DEFAULT_THRESHOLDS
) -> Severity:
    return "urgent" if count >= thresholds.hot_area_urgent_count else "watch"


def supply_spike_severity(
    growth: float, thresholds: SignalThresholds = DEFAULT_THRESHOLDS
) -> Severity:
    return "urgent" if growth >= thresholds.supply_spike_urgent else "watch"


def price_change_confidence(
    prev_count: int, curr_count: int, thresholds: SignalThresholds = DEFAULT_THRESHOLDS
) -> float:
    if min(prev_count, curr_count) >= thresholds.high_confidence_sample:
        return thresholds.price_change_confidence_high
    return thresholds.price_change_confidence_low


__all__ = [
    "hot_area_severity",
    "price_change_confidence",
    "severity_from_delta",
    "supply_spike_severity",
]
