"""Batched, failure-isolated persistence of market signals."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Sequence

from jobs.config import DEFAULT_SETTINGS
from pipelines.model import MarketSignal
from storage.base import SignalStore, SignalStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteReport:
    inserted: int = 0
    updated: int = 0
    failed: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.updated


async def persist_signals(
    store: SignalStore,
    signals: Sequence[MarketSignal],
    *,
    batch_size: int = DEFAULT_SETTINGS.batch_size,
    now: datetime | None = None,
) -> WriteReport:
    """Upsert ``signals`` in sequential batches of ``batch_size``.

    Each batch commits on its own. A failing batch is logged and counted as
    failed; earlier batches stay committed and later batches still run. Keys
    the store rejected as owned by another tenant also count as failed.
    """

    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}.")

    stamp = now or datetime.now(UTC)
    inserted = updated = failed = 0
    for offset in range(0, len(signals), batch_size):
        batch = signals[offset : offset + batch_size]
        try:
            result = await store.upsert_signals(batch, now=stamp)
        except SignalStoreError as exc:
            logger.warning(
                "Signal batch at offset %s (size %s) failed: %s", offset, len(batch), exc
            )
            failed += len(batch)
            continue
        if result.rejected:
            logger.warning(
                "Signal batch at offset %s: %s keys belong to another tenant and were skipped",
                offset,
                result.rejected,
            )
        inserted += result.inserted
        updated += result.updated
        failed += result.rejected
    return WriteReport(inserted=inserted, updated=updated, failed=failed)


__all__ = ["WriteReport", "persist_signals"]
