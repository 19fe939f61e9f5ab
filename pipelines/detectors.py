"""Threshold detectors over the area/quarter aggregate index.

Detectors are pure functions of the index: they never mutate it and share no
state, so they can be evaluated concurrently and in any order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from jobs.config import (
    DEFAULT_SETTINGS,
    DEFAULT_THRESHOLDS,
    PipelineSettings,
    SignalThresholds,
)
from pipelines.aggregate import AggregateIndex, AreaQuarterBucket
from pipelines.classify import (
    hot_area_severity,
    price_change_confidence,
    severity_from_delta,
    supply_spike_severity,
)
from pipelines.keys import signal_key_for
from pipelines.model import (
    MarketSignal,
    PriceChangeEvidence,
    SignalType,
    SupplySpikeEvidence,
    YieldOpportunityEvidence,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectorContext:
    """Everything a detector needs besides the index."""

    tenant_id: str
    thresholds: SignalThresholds = DEFAULT_THRESHOLDS
    settings: PipelineSettings = DEFAULT_SETTINGS


Detector = Callable[[AggregateIndex, DetectorContext], list[MarketSignal]]


def _consecutive_pairs(
    series: Sequence[AreaQuarterBucket],
) -> list[tuple[AreaQuarterBucket, AreaQuarterBucket]]:
    return list(zip(series, series[1:]))


def _base_fields(
    ctx: DetectorContext, signal_type: SignalType, area: str, current: AreaQuarterBucket
) -> dict:
    settings = ctx.settings
    return {
        "org_id": ctx.tenant_id,
        "source_type": settings.source_type,
        "source": settings.source,
        "type": signal_type,
        "geo_type": settings.geo_type,
        "geo_id": area,
        "geo_name": area,
        "segment": settings.segment,
        "timeframe": settings.timeframe,
        "signal_key": signal_key_for(
            source_type=settings.source_type,
            source=settings.source,
            signal_type=signal_type,
            geo_type=settings.geo_type,
            geo_id=area,
            segment=settings.segment,
            timeframe=settings.timeframe,
            anchor=current.quarter.end,
        ),
    }


def detect_price_changes(index: AggregateIndex, ctx: DetectorContext) -> list[MarketSignal]:
    """One signal per consecutive quarter pair whose median moved by the threshold."""

    rules = ctx.thresholds
    signals: list[MarketSignal] = []
    for area in index.areas():
        for prev, curr in _consecutive_pairs(index.series(area)):
            if prev.count < rules.min_transactions or curr.count < rules.min_transactions:
                continue
            if not prev.median_price or prev.median_price <= 0 or curr.median_price is None:
                continue
            delta_pct = (curr.median_price - prev.median_price) / prev.median_price
            if abs(delta_pct) < rules.price_change_threshold:
                continue
            signals.append(
                MarketSignal(
                    **_base_fields(ctx, "price_change", area, curr),
                    severity=severity_from_delta(delta_pct, rules),
                    metric="median_price",
                    current_value=curr.median_price,
                    prev_value=prev.median_price,
                    delta_value=curr.median_price - prev.median_price,
                    delta_pct=delta_pct,
                    confidence_score=price_change_confidence(prev.count, curr.count, rules),
                    evidence=PriceChangeEvidence(
                        current_quarter=curr.quarter.label,
                        prev_quarter=prev.quarter.label,
                        current_sample_size=curr.count,
                        prev_sample_size=prev.count,
                        area_name=area,
                    ),
                )
            )
    return signals


def detect_hot_areas(index: AggregateIndex, ctx: DetectorContext) -> list[MarketSignal]:
    """Areas with heavy transaction volume in the most recent quarter of the dataset."""

    rules = ctx.thresholds
    latest = index.latest_quarter()
    if latest is None:
        return []

    signals: list[MarketSignal] = []
    for area in index.areas():
        bucket = index.bucket(area, latest)
        if bucket is None or bucket.count < rules.hot_area_threshold:
            continue
        avg_unit = bucket.avg_unit_price
        signals.append(
            MarketSignal(
                **_base_fields(ctx, "yield_opportunity", area, bucket),
                severity=hot_area_severity(bucket.count, rules),
                metric="transaction_volume",
                current_value=bucket.count,
                confidence_score=rules.hot_area_confidence,
                evidence=YieldOpportunityEvidence(
                    quarter=latest.label,
                    transaction_count=bucket.count,
                    total_value=bucket.total_value,
                    avg_price=round(bucket.avg_price),
                    avg_price_per_sqm=round(avg_unit) if avg_unit is not None else None,
                    area_name=area,
                ),
            )
        )
    return signals


def detect_supply_spikes(index: AggregateIndex, ctx: DetectorContext) -> list[MarketSignal]:
    """Quarter-over-quarter jumps in transaction count above a baseline floor."""

    rules = ctx.thresholds
    signals: list[MarketSignal] = []
    for area in index.areas():
        for prev, curr in _consecutive_pairs(index.series(area)):
            if prev.count < rules.supply_baseline_min:
                continue
            growth = (curr.count - prev.count) / prev.count
            if growth < rules.supply_spike_threshold:
                continue
            signals.append(
                MarketSignal(
                    **_base_fields(ctx, "supply_spike", area, curr),
                    severity=supply_spike_severity(growth, rules),
                    metric="transaction_count",
                    current_value=curr.count,
                    prev_value=prev.count,
                    delta_value=curr.count - prev.count,
                    delta_pct=growth,
                    confidence_score=rules.supply_spike_confidence,
                    evidence=SupplySpikeEvidence(
                        current_quarter=curr.quarter.label,
                        prev_quarter=prev.quarter.label,
                        current_count=curr.count,
                        prev_count=prev.count,
                        area_name=area,
                    ),
                )
            )
    return signals


DETECTORS: tuple[tuple[SignalType, Detector], ...] = (
    ("price_change", detect_price_changes),
    ("yield_opportunity", detect_hot_areas),
    ("supply_spike", detect_supply_spikes),
)


async def run_detectors(
    index: AggregateIndex,
    ctx: DetectorContext,
    detectors: Sequence[tuple[SignalType, Detector]] = DETECTORS,
) -> dict[SignalType, list[MarketSignal]]:
    """Evaluate all detectors concurrently and collect their output by signal type.

    A detector that raises is logged and contributes no signals; the others are
    unaffected.
    """

    results = await asyncio.gather(
        *(asyncio.to_thread(detector, index, ctx) for _, detector in detectors),
        return_exceptions=True,
    )
    collected: dict[SignalType, list[MarketSignal]] = {}
    for (signal_type, _), result in zip(detectors, results):
        if isinstance(result, BaseException):
            logger.error(
                "Detector %s failed for tenant %s: %s", signal_type, ctx.tenant_id, result
            )
            collected[signal_type] = []
            continue
        collected[signal_type] = result
    return collected


__all__ = [
    "DETECTORS",
    "Detector",
    "DetectorContext",
    "detect_hot_areas",
    "detect_price_changes",
    "detect_supply_spikes",
    "run_detectors",
]
