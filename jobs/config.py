"""Static configuration for signal thresholds and pipeline settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping

THRESHOLD_ENV_PREFIX = "SIGNAL_"


@dataclass(frozen=True)
class SignalThresholds:
    """Numeric rules used by the detectors and the severity classifier."""

    min_transactions: int = 5
    price_change_threshold: float = 0.05
    high_confidence_sample: int = 50
    price_change_confidence_high: float = 0.9
    price_change_confidence_low: float = 0.7

    hot_area_threshold: int = 30
    hot_area_urgent_count: int = 200
    hot_area_confidence: float = 0.85

    supply_baseline_min: int = 10
    supply_spike_threshold: float = 0.30
    supply_spike_urgent: float = 0.50
    supply_spike_confidence: float = 0.8

    severity_urgent: float = 0.12
    severity_watch: float = 0.06


@dataclass(frozen=True)
class PipelineSettings:
    """Paging, batching and the fixed tags stamped on every signal."""

    page_size: int = 1000
    batch_size: int = 100
    sale_category: str = "sale"
    source_type: str = "official"
    source: str = "dld"
    segment: str = "residential"
    timeframe: str = "QoQ"
    geo_type: str = "area"


DEFAULT_THRESHOLDS = SignalThresholds()
DEFAULT_SETTINGS = PipelineSettings()


def _coerce(name: str, raw: str, kind: type) -> int | float:
    try:
        return kind(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a {kind.__name__}, got {raw!r}.") from exc


def thresholds_from_env(
    environ: Mapping[str, str] | None = None,
    base: SignalThresholds = DEFAULT_THRESHOLDS,
) -> SignalThresholds:
    """Apply ``SIGNAL_<FIELD>`` overrides (e.g. ``SIGNAL_HOT_AREA_THRESHOLD``)."""

    env = os.environ if environ is None else environ
    overrides: dict[str, int | float] = {}
    for item in fields(SignalThresholds):
        name = f"{THRESHOLD_ENV_PREFIX}{item.name.upper()}"
        raw = env.get(name)
        if raw is None or not raw.strip():
            continue
        kind = int if isinstance(getattr(base, item.name), int) else float
        overrides[item.name] = _coerce(name, raw.strip(), kind)
    return replace(base, **overrides) if overrides else base


def settings_from_env(
    environ: Mapping[str, str] | None = None,
    base: PipelineSettings = DEFAULT_SETTINGS,
) -> PipelineSettings:
    env = os.environ if environ is None else environ
    overrides: dict[str, int | str] = {}
    for key, attr in (("SIGNAL_PAGE_SIZE", "page_size"), ("SIGNAL_BATCH_SIZE", "batch_size")):
        raw = env.get(key)
        if raw and raw.strip():
            value = int(_coerce(key, raw.strip(), int))
            if value <= 0:
                raise ValueError(f"{key} must be positive, got {value}.")
            overrides[attr] = value
    category = env.get("SIGNAL_SALE_CATEGORY")
    if category and category.strip():
        overrides["sale_category"] = category.strip()
    return replace(base, **overrides) if overrides else base


__all__ = [
    "DEFAULT_SETTINGS",
    "DEFAULT_THRESHOLDS",
    "PipelineSettings",
    "SignalThresholds",
    "settings_from_env",
    "thresholds_from_env",
]
