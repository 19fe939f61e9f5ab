"""End-to-end job that derives market signals for one tenant and persists them."""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from jobs.config import (
    PipelineSettings,
    SignalThresholds,
    settings_from_env,
    thresholds_from_env,
)
from pipelines.run import PipelineReport, run_signal_pipeline
from storage.base import SignalStore, SignalStoreError
from storage.db import DuckDBSignalStore
from storage.postgrest import PostgrestSignalStore

load_dotenv()

logger = logging.getLogger(__name__)

STORE_BACKEND_ENV = "SIGNALS_STORE_BACKEND"
TENANT_OVERRIDE_ENV = "DEMO_TENANT_ID"


def open_store(backend: str | None = None) -> SignalStore:
    """Open the configured store (``duckdb`` by default, or ``postgrest``)."""

    choice = (backend or os.getenv(STORE_BACKEND_ENV) or "duckdb").strip().lower()
    if choice == "duckdb":
        return DuckDBSignalStore.open()
    if choice == "postgrest":
        return PostgrestSignalStore.from_env()
    raise ValueError(f"{STORE_BACKEND_ENV} must be 'duckdb' or 'postgrest', got {choice!r}.")


async def generate_signals_async(
    tenant_id: str | None = None,
    *,
    store: SignalStore | None = None,
    thresholds: SignalThresholds | None = None,
    settings: PipelineSettings | None = None,
) -> PipelineReport:
    """Resolve the tenant and run one pipeline pass against ``store``.

    The store is closed afterwards only when this function opened it.
    """

    owned = store is None
    active = store if store is not None else open_store()
    try:
        resolved = await active.resolve_tenant(tenant_id or os.getenv(TENANT_OVERRIDE_ENV))
        logger.info("Tenant ID: %s", resolved)
        return await run_signal_pipeline(
            active,
            resolved,
            thresholds=thresholds or thresholds_from_env(),
            settings=settings or settings_from_env(),
        )
    finally:
        if owned:
            await active.close()


def main(tenant_id: str | None = None) -> int:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    try:
        report = asyncio.run(generate_signals_async(tenant_id))
    except (SignalStoreError, ValueError) as exc:
        logger.error("Signal generation aborted: %s", exc)
        return 1
    logger.info(
        "Signal job finished (transactions=%s, detected=%s, inserted=%s, updated=%s, failed=%s).",
        report.transactions_loaded,
        report.signals_detected,
        report.write.inserted,
        report.write.updated,
        report.write.failed,
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
