"""Interface shared by the signal stores and the errors they raise."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence

from pipelines.model import MarketSignal, Transaction


class SignalStoreError(RuntimeError):
    """The backing store rejected or failed a request."""


class TenantResolutionError(SignalStoreError):
    """No tenant could be resolved for the run."""


@dataclass(frozen=True)
class UpsertResult:
    inserted: int
    updated: int
    # Keys already owned by another tenant; left untouched.
    rejected: int = 0


class SignalStore(Protocol):
    """Read side for transactions, write side for signals."""

    async def resolve_tenant(self, override: str | None = None) -> str:
        ...

    async def fetch_sale_transactions(
        self, tenant_id: str, *, category: str, offset: int, limit: int
    ) -> list[Transaction]:
        """Return one page of valid sale transactions ordered by transaction id."""
        ...

    async def upsert_signals(
        self, signals: Sequence[MarketSignal], *, now: datetime
    ) -> UpsertResult:
        """Upsert one batch atomically, keyed on ``signal_key``.

        Rows whose key belongs to a different tenant are never overwritten;
        they are reported as ``rejected``.
        """
        ...

    async def count_signals(self, tenant_id: str) -> int:
        ...

    async def close(self) -> None:
        ...


__all__ = ["SignalStore", "SignalStoreError", "TenantResolutionError", "UpsertResult"]
