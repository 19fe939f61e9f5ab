"""One batch pass of the market-signal pipeline for a single tenant."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from jobs.config import (
    DEFAULT_SETTINGS,
    DEFAULT_THRESHOLDS,
    PipelineSettings,
    SignalThresholds,
)
from pipelines.aggregate import bin_transactions
from pipelines.detectors import DetectorContext, run_detectors
from pipelines.loader import load_sale_transactions
from pipelines.model import MarketSignal
from pipelines.writer import WriteReport, persist_signals
from storage.base import SignalStore, SignalStoreError

logger = logging.getLogger(__name__)


async def _count_stored(store: SignalStore, tenant_id: str) -> int | None:
    try:
        return await store.count_signals(tenant_id)
    except SignalStoreError as exc:
        logger.warning("Could not count stored signals for tenant %s: %s", tenant_id, exc)
        return None


@dataclass(frozen=True)
class PipelineReport:
    """What an operator needs to judge a run."""

    tenant_id: str
    transactions_loaded: int
    quarters: list[str] = field(default_factory=list)
    signals_by_type: dict[str, int] = field(default_factory=dict)
    write: WriteReport = field(default_factory=WriteReport)
    stored_signals: int | None = None

    @property
    def signals_detected(self) -> int:
        return sum(self.signals_by_type.values())

    def as_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "transactions_loaded": self.transactions_loaded,
            "quarters": list(self.quarters),
            "signals_by_type": dict(self.signals_by_type),
            "signals_detected": self.signals_detected,
            "inserted": self.write.inserted,
            "updated": self.write.updated,
            "failed": self.write.failed,
            "stored_signals": self.stored_signals,
        }


async def run_signal_pipeline(
    store: SignalStore,
    tenant_id: str,
    *,
    thresholds: SignalThresholds = DEFAULT_THRESHOLDS,
    settings: PipelineSettings = DEFAULT_SETTINGS,
    now: datetime | None = None,
) -> PipelineReport:
    """Load, bin, detect and persist signals for ``tenant_id``.

    Load failures propagate; detector and batch failures are logged and
    reflected in the report. A failed final count leaves ``stored_signals``
    as None.
    """

    transactions = await load_sale_transactions(
        store, tenant_id, page_size=settings.page_size, category=settings.sale_category
    )
    logger.info("Found %s total sales transactions for tenant %s.", len(transactions), tenant_id)
    if not transactions:
        logger.warning("No transactions found for tenant %s; nothing to detect.", tenant_id)
        return PipelineReport(
            tenant_id=tenant_id,
            transactions_loaded=0,
            stored_signals=await _count_stored(store, tenant_id),
        )

    index = bin_transactions(transactions)
    quarters = [quarter.label for quarter in index.quarters()]
    logger.info("Quarters found: %s", ", ".join(quarters))

    ctx = DetectorContext(tenant_id=tenant_id, thresholds=thresholds, settings=settings)
    detected = await run_detectors(index, ctx)
    signals: list[MarketSignal] = []
    for signal_type, found in detected.items():
        logger.info("  -> %s %s signals", len(found), signal_type)
        signals.extend(found)

    write = WriteReport()
    if signals:
        logger.info("Total signals to upsert: %s", len(signals))
        write = await persist_signals(store, signals, batch_size=settings.batch_size, now=now)
        logger.info(
            "Done. Inserted: %s, Updated: %s, Failed: %s",
            write.inserted,
            write.updated,
            write.failed,
        )
    else:
        logger.info("No signals generated.")

    stored = await _count_stored(store, tenant_id)
    logger.info("Total signals in store for tenant %s: %s", tenant_id, stored)

    return PipelineReport(
        tenant_id=tenant_id,
        transactions_loaded=len(transactions),
        quarters=quarters,
        signals_by_type={signal_type: len(found) for signal_type, found in detected.items()},
        write=write,
        stored_signals=stored,
    )


__all__ = ["PipelineReport", "run_signal_pipeline"]
