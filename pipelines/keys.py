"""Deterministic natural keys for persisted signals.

The key is the conflict target of every upsert. The attribute names and the
attribute set below are part of the stored identity: changing either orphans
every existing row and requires a data migration.
"""

from __future__ import annotations

from datetime import date
from typing import Mapping

KEY_DELIMITER = "|"


def make_signal_key(parts: Mapping[str, str]) -> str:
    """Join ``name:value`` pairs sorted by name, independent of insertion order."""

    return KEY_DELIMITER.join(f"{name}:{parts[name]}" for name in sorted(parts))


def signal_key_for(
    *,
    source_type: str,
    source: str,
    signal_type: str,
    geo_type: str,
    geo_id: str,
    segment: str,
    timeframe: str,
    anchor: date,
) -> str:
    return make_signal_key(
        {
            "sourceType": source_type,
            "source": source,
            "type": signal_type,
            "geoType": geo_type,
            "geoId": geo_id,
            "segment": segment,
            "timeframe": timeframe,
            "anchor": anchor.isoformat(),
        }
    )


__all__ = ["KEY_DELIMITER", "make_signal_key", "signal_key_for"]
