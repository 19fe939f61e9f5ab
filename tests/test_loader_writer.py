import asyncio
from datetime import UTC, date, datetime

import pytest

from helpers import make_transactions, make_volume_signal
from pipelines.loader import load_sale_transactions
from pipelines.writer import persist_signals
from storage.base import SignalStoreError, UpsertResult
from storage.db import fetch_market_signals


class FakeStore:
    """In-memory store that records every call."""

    def __init__(self, rows=(), *, failing_calls=(), fail_fetch_at=None):
        self.rows = list(rows)
        self.page_calls: list[tuple[int, int]] = []
        self.batches: list[list[str]] = []
        self.saved: dict[str, object] = {}
        self._failing_calls = set(failing_calls)
        self._fail_fetch_at = fail_fetch_at

    async def fetch_sale_transactions(self, tenant_id, *, category, offset, limit):
        self.page_calls.append((offset, limit))
        if self._fail_fetch_at is not None and offset >= self._fail_fetch_at:
            raise SignalStoreError("store unreachable")
        return self.rows[offset : offset + limit]

    async def upsert_signals(self, signals, *, now):
        call = len(self.batches)
        self.batches.append([signal.signal_key for signal in signals])
        if call in self._failing_calls:
            raise SignalStoreError("constraint violation")
        updated = sum(1 for signal in signals if signal.signal_key in self.saved)
        for signal in signals:
            self.saved[signal.signal_key] = signal
        return UpsertResult(inserted=len(signals) - updated, updated=updated)


ROWS = make_transactions("Marina", date(2024, 1, 5), [float(p) for p in range(1, 2501)])


def test_loader_pages_until_short_page():
    store = FakeStore(ROWS)

    loaded = asyncio.run(load_sale_transactions(store, "tenant-1", page_size=1000))

    assert len(loaded) == 2500
    assert store.page_calls == [(0, 1000), (1000, 1000), (2000, 1000)]


def test_loader_fetches_trailing_empty_page_on_exact_multiple():
    store = FakeStore(ROWS[:2000])

    loaded = asyncio.run(load_sale_transactions(store, "tenant-1", page_size=1000))

    assert len(loaded) == 2000
    assert store.page_calls[-1] == (2000, 1000)


def test_loader_propagates_store_errors():
    store = FakeStore(ROWS, fail_fetch_at=1000)

    with pytest.raises(SignalStoreError):
        asyncio.run(load_sale_transactions(store, "tenant-1", page_size=1000))


def test_writer_isolates_failed_batches():
    store = FakeStore(failing_calls={1})
    signals = [make_volume_signal(f"Area {i:03d}") for i in range(250)]

    report = asyncio.run(persist_signals(store, signals, batch_size=100))

    assert [len(batch) for batch in store.batches] == [100, 100, 50]
    assert report.inserted == 150
    assert report.failed == 100
    assert report.written == 150
    assert len(store.saved) == 150


def test_writer_counts_updates_on_rerun():
    store = FakeStore()
    signals = [make_volume_signal(f"Area {i}") for i in range(5)]
    now = datetime(2025, 1, 1, tzinfo=UTC)

    first = asyncio.run(persist_signals(store, signals, batch_size=2, now=now))
    second = asyncio.run(persist_signals(store, signals, batch_size=2, now=now))

    assert (first.inserted, first.updated, first.failed) == (5, 0, 0)
    assert (second.inserted, second.updated, second.failed) == (0, 5, 0)


@pytest.mark.parametrize("size", [0, -1])
def test_batch_and_page_sizes_must_be_positive(size):
    with pytest.raises(ValueError):
        asyncio.run(persist_signals(FakeStore(), [], batch_size=size))
    with pytest.raises(ValueError):
        asyncio.run(load_sale_transactions(FakeStore(), "tenant-1", page_size=size))


class ForeignKeyStore(FakeStore):
    """Store in which some keys already belong to another tenant."""

    def __init__(self, foreign_keys):
        super().__init__()
        self.foreign_keys = set(foreign_keys)

    async def upsert_signals(self, signals, *, now):
        own = [signal for signal in signals if signal.signal_key not in self.foreign_keys]
        result = await super().upsert_signals(own, now=now)
        return UpsertResult(
            inserted=result.inserted, updated=result.updated, rejected=len(signals) - len(own)
        )


def test_writer_counts_rejected_keys_as_failed():
    signals = [make_volume_signal(f"Area {i}") for i in range(4)]
    store = ForeignKeyStore({signals[1].signal_key, signals[3].signal_key})

    report = asyncio.run(persist_signals(store, signals, batch_size=2))

    assert (report.inserted, report.updated, report.failed) == (2, 0, 2)


def test_duckdb_batch_failure_keeps_earlier_batches_and_rolls_back(duck_store):
    signals = [make_volume_signal(f"Area {i}") for i in range(5)]
    # NOT NULL violation on the second row of the second batch.
    signals[3] = signals[3].model_copy(update={"current_value": None})

    report = asyncio.run(persist_signals(duck_store, signals, batch_size=2))

    assert (report.inserted, report.failed) == (3, 2)
    stored = {row.geo_id for row in fetch_market_signals(duck_store.conn)}
    assert stored == {"Area 0", "Area 1", "Area 4"}
