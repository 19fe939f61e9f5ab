"""DuckDB persistence for sale transactions and derived market signals."""

from __future__ import annotations

import asyncio
import json
import os
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence, TypeVar

import duckdb

from pipelines.model import MarketSignal, SignalStatus, StoredSignal, Transaction
from storage.base import SignalStoreError, TenantResolutionError, UpsertResult

T = TypeVar("T")

DB_ENV_VAR = "MARKET_SIGNALS_DB_PATH"
DEFAULT_DB_PATH = Path("data/market_signals.duckdb")

TENANTS_TABLE = "tenants"
TRANSACTIONS_TABLE = "dld_transactions"
MARKET_SIGNALS_TABLE = "market_signal"

SIGNAL_COLUMNS: tuple[str, ...] = (
    "org_id",
    "source_type",
    "source",
    "type",
    "severity",
    "status",
    "geo_type",
    "geo_id",
    "geo_name",
    "segment",
    "metric",
    "timeframe",
    "current_value",
    "prev_value",
    "delta_value",
    "delta_pct",
    "confidence_score",
    "evidence",
    "signal_key",
)

# Refreshed on conflict. Identity columns, status and created_at are kept.
UPDATABLE_COLUMNS: tuple[str, ...] = (
    "severity",
    "geo_name",
    "metric",
    "current_value",
    "prev_value",
    "delta_value",
    "delta_pct",
    "confidence_score",
    "evidence",
    "updated_at",
)

_TRANSACTION_COLUMNS = (
    "transaction_id",
    "instance_date",
    "trans_group_en",
    "area_name_en",
    "property_type_en",
    "property_sub_type_en",
    "rooms_en",
    "actual_worth",
    "meter_sale_price",
    "procedure_area",
)


def _ensure_parent_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def get_database_path(override: str | os.PathLike[str] | None = None) -> Path:
    """Resolve the DuckDB file path from an explicit override or environment variable."""

    if override is not None:
        return Path(override)
    env_value = os.getenv(DB_ENV_VAR)
    if env_value:
        return Path(env_value)
    return DEFAULT_DB_PATH


def connect(
    path: str | os.PathLike[str] | None = None,
    *,
    read_only: bool = False,
    ensure: bool = True,
) -> duckdb.DuckDBPyConnection:
    """Create a DuckDB connection, optionally ensuring schema availability."""

    db_path = get_database_path(path)
    if not read_only:
        _ensure_parent_dir(db_path)
    conn = duckdb.connect(str(db_path), read_only=read_only)
    if ensure and not read_only:
        ensure_schema(conn)
    return conn


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create the tenant, transaction and signal tables if they do not exist."""

    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {TENANTS_TABLE} (
            id TEXT PRIMARY KEY,
            name TEXT,
            created_at TIMESTAMP NOT NULL DEFAULT current_timestamp
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {TRANSACTIONS_TABLE} (
            org_id TEXT NOT NULL,
            transaction_id TEXT NOT NULL,
            instance_date DATE,
            trans_group_en TEXT,
            area_name_en TEXT,
            property_type_en TEXT,
            property_sub_type_en TEXT,
            rooms_en TEXT,
            actual_worth DOUBLE,
            meter_sale_price DOUBLE,
            procedure_area DOUBLE,
            PRIMARY KEY (org_id, transaction_id)
        )
        """
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {MARKET_SIGNALS_TABLE} (
            id UUID DEFAULT gen_random_uuid(),
            org_id TEXT NOT NULL,
            source_type TEXT NOT NULL,
            source TEXT NOT NULL,
            type TEXT NOT NULL,
            severity TEXT NOT NULL DEFAULT 'info',
            status TEXT NOT NULL DEFAULT 'new',
            geo_type TEXT NOT NULL,
            geo_id TEXT NOT NULL,
            geo_name TEXT,
            segment TEXT NOT NULL,
            metric TEXT NOT NULL,
            timeframe TEXT NOT NULL,
            current_value DOUBLE NOT NULL,
            prev_value DOUBLE,
            delta_value DOUBLE,
            delta_pct DOUBLE,
            confidence_score DOUBLE,
            evidence JSON,
            signal_key TEXT NOT NULL,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            UNIQUE (org_id, signal_key)
        )
        """
    )


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(UTC).replace(tzinfo=None)


def insert_tenant(
    conn: duckdb.DuckDBPyConnection,
    tenant_id: str,
    *,
    name: str | None = None,
    created_at: datetime | None = None,
) -> None:
    conn.execute(
        f"INSERT OR REPLACE INTO {TENANTS_TABLE} (id, name, created_at) VALUES (?, ?, ?)",
        [tenant_id, name or tenant_id, _naive_utc(created_at or datetime.now(UTC))],
    )


def insert_transactions(
    conn: duckdb.DuckDBPyConnection, tenant_id: str, transactions: Iterable[Transaction]
) -> int:
    """Insert or replace raw transactions for ``tenant_id``; used for seeding."""

    rows = [
        (
            tenant_id,
            txn.id,
            txn.transaction_date,
            txn.category,
            txn.area,
            txn.property_type,
            txn.property_sub_type,
            txn.rooms,
            txn.price,
            txn.unit_price,
            txn.procedure_area,
        )
        for txn in transactions
    ]
    if not rows:
        return 0
    placeholders = ", ".join("?" for _ in range(len(_TRANSACTION_COLUMNS) + 1))
    conn.executemany(
        f"""
        INSERT OR REPLACE INTO {TRANSACTIONS_TABLE} (org_id, {", ".join(_TRANSACTION_COLUMNS)})
        VALUES ({placeholders})
        """,
        rows,
    )
    return len(rows)


def _row_to_transaction(row: Sequence[Any]) -> Transaction:
    return Transaction(
        id=str(row[0]),
        transaction_date=row[1],
        category=row[2],
        area=row[3],
        property_type=row[4],
        property_sub_type=row[5],
        rooms=row[6],
        price=row[7],
        unit_price=row[8],
        procedure_area=row[9],
    )


def fetch_sale_transactions(
    conn: duckdb.DuckDBPyConnection,
    tenant_id: str,
    *,
    category: str,
    offset: int,
    limit: int,
) -> list[Transaction]:
    """Return one page of priced, dated sale transactions in a stable order."""

    cursor = conn.execute(
        f"""
        SELECT {", ".join(_TRANSACTION_COLUMNS)}
        FROM {TRANSACTIONS_TABLE}
        WHERE org_id = ?
          AND trans_group_en = ?
          AND actual_worth > 0
          AND instance_date IS NOT NULL
        ORDER BY transaction_id
        LIMIT ? OFFSET ?
        """,
        [tenant_id, category, limit, offset],
    )
    return [_row_to_transaction(row) for row in cursor.fetchall()]


def _serialize_signal(signal: MarketSignal, now: datetime) -> tuple:
    data = signal.model_dump(mode="json")
    values = [data[column] for column in SIGNAL_COLUMNS]
    values[SIGNAL_COLUMNS.index("evidence")] = json.dumps(data["evidence"], sort_keys=True)
    return (*values, now, now)


def stored_signal_keys(
    conn: duckdb.DuckDBPyConnection, signals: Sequence[MarketSignal]
) -> set[tuple[str, str]]:
    """Return the ``(org_id, signal_key)`` pairs of ``signals`` already stored."""

    if not signals:
        return set()
    keys = sorted({signal.signal_key for signal in signals})
    tenants = sorted({signal.org_id for signal in signals})
    cursor = conn.execute(
        f"""
        SELECT org_id, signal_key FROM {MARKET_SIGNALS_TABLE}
        WHERE org_id IN ({", ".join("?" for _ in tenants)})
          AND signal_key IN ({", ".join("?" for _ in keys)})
        """,
        [*tenants, *keys],
    )
    return {(row[0], row[1]) for row in cursor.fetchall()}


def upsert_market_signals(
    conn: duckdb.DuckDBPyConnection,
    signals: Sequence[MarketSignal],
    *,
    now: datetime | None = None,
) -> UpsertResult:
    """Insert or update a batch of signals in one transaction.

    Rows are unique per tenant on ``signal_key``, so the same key computed for
    two tenants yields two rows.
    """

    if not signals:
        return UpsertResult(inserted=0, updated=0)
    stamp = _naive_utc(now or datetime.now(UTC))
    columns = (*SIGNAL_COLUMNS, "created_at", "updated_at")
    placeholders = ", ".join("?" for _ in columns)
    assignments = ", ".join(f"{column} = EXCLUDED.{column}" for column in UPDATABLE_COLUMNS)

    conn.begin()
    try:
        existing = stored_signal_keys(conn, signals)
        conn.executemany(
            f"""
            INSERT INTO {MARKET_SIGNALS_TABLE} ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT (org_id, signal_key) DO UPDATE SET {assignments}
            """,
            [_serialize_signal(signal, stamp) for signal in signals],
        )
        conn.commit()
    except duckdb.Error:
        conn.rollback()
        raise

    updated = sum(1 for signal in signals if (signal.org_id, signal.signal_key) in existing)
    return UpsertResult(inserted=len(signals) - updated, updated=updated)


def _row_to_stored_signal(columns: Sequence[str], row: Sequence[Any]) -> StoredSignal:
    data = dict(zip(columns, row, strict=True))
    evidence = data.get("evidence")
    if isinstance(evidence, str):
        data["evidence"] = json.loads(evidence)
    return StoredSignal(**data)


def fetch_market_signals(
    conn: duckdb.DuckDBPyConnection,
    *,
    where: str | None = None,
    params: Sequence[object] | None = None,
    limit: int | None = None,
) -> list[StoredSignal]:
    """Query stored rows and reconstruct ``StoredSignal`` models, newest first."""

    columns = (*SIGNAL_COLUMNS, "created_at", "updated_at")
    sql = f"SELECT {', '.join(columns)} FROM {MARKET_SIGNALS_TABLE}"
    if where:
        sql += f" WHERE {where}"
    sql += " ORDER BY updated_at DESC, signal_key"
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    cursor = conn.execute(sql, params or [])
    return [_row_to_stored_signal(columns, row) for row in cursor.fetchall()]


def count_market_signals(
    conn: duckdb.DuckDBPyConnection, tenant_id: str, *, status: str | None = None
) -> int:
    sql = f"SELECT COUNT(*) FROM {MARKET_SIGNALS_TABLE} WHERE org_id = ?"
    params: list[object] = [tenant_id]
    if status:
        sql += " AND status = ?"
        params.append(status)
    return int(conn.execute(sql, params).fetchone()[0])


def first_tenant_id(conn: duckdb.DuckDBPyConnection) -> str | None:
    row = conn.execute(
        f"SELECT id FROM {TENANTS_TABLE} ORDER BY created_at ASC, id LIMIT 1"
    ).fetchone()
    return row[0] if row else None


def latest_transaction_date(conn: duckdb.DuckDBPyConnection, tenant_id: str) -> date | None:
    row = conn.execute(
        f"SELECT MAX(instance_date) FROM {TRANSACTIONS_TABLE} WHERE org_id = ?",
        [tenant_id],
    ).fetchone()
    return row[0] if row else None


def latest_signal_at(conn: duckdb.DuckDBPyConnection, tenant_id: str) -> datetime | None:
    row = conn.execute(
        f"SELECT MAX(updated_at) FROM {MARKET_SIGNALS_TABLE} WHERE org_id = ?",
        [tenant_id],
    ).fetchone()
    return row[0] if row else None


def fetch_market_signal(
    conn: duckdb.DuckDBPyConnection, tenant_id: str, signal_key: str
) -> StoredSignal | None:
    rows = fetch_market_signals(
        conn, where="org_id = ? AND signal_key = ?", params=[tenant_id, signal_key], limit=1
    )
    return rows[0] if rows else None


def update_signal_status(
    conn: duckdb.DuckDBPyConnection,
    tenant_id: str,
    signal_key: str,
    status: SignalStatus,
    *,
    now: datetime | None = None,
) -> bool:
    """Move one of ``tenant_id``'s signals to ``status``; False when it does not exist."""

    row = conn.execute(
        f"""
        UPDATE {MARKET_SIGNALS_TABLE}
        SET status = ?, updated_at = ?
        WHERE org_id = ? AND signal_key = ?
        RETURNING signal_key
        """,
        [status, _naive_utc(now or datetime.now(UTC)), tenant_id, signal_key],
    ).fetchone()
    return row is not None


class DuckDBSignalStore:
    """``SignalStore`` backed by a local DuckDB file.

    Every query runs in a worker thread so a run inside the API never blocks
    the event loop. Calls are awaited one at a time, so the connection is
    never used concurrently.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection, *, owns_connection: bool = True):
        self.conn = conn
        self._owns_connection = owns_connection

    @classmethod
    def open(cls, path: str | os.PathLike[str] | None = None) -> "DuckDBSignalStore":
        try:
            return cls(connect(path))
        except duckdb.Error as exc:
            raise SignalStoreError(f"Could not open DuckDB store: {exc}") from exc

    async def _call(
        self, description: str, fn: Callable[..., T], *args: Any, **kwargs: Any
    ) -> T:
        try:
            return await asyncio.to_thread(fn, self.conn, *args, **kwargs)
        except duckdb.Error as exc:
            raise SignalStoreError(f"{description} failed: {exc}") from exc

    async def resolve_tenant(self, override: str | None = None) -> str:
        if override:
            return override
        tenant_id = await self._call("Tenant lookup", first_tenant_id)
        if not tenant_id:
            raise TenantResolutionError("No tenants found. Seed the tenants table first.")
        return tenant_id

    async def fetch_sale_transactions(
        self, tenant_id: str, *, category: str, offset: int, limit: int
    ) -> list[Transaction]:
        return await self._call(
            f"Transaction page at offset {offset}",
            fetch_sale_transactions,
            tenant_id,
            category=category,
            offset=offset,
            limit=limit,
        )

    async def upsert_signals(
        self, signals: Sequence[MarketSignal], *, now: datetime
    ) -> UpsertResult:
        return await self._call("Signal upsert", upsert_market_signals, signals, now=now)

    async def count_signals(self, tenant_id: str) -> int:
        return await self._call("Signal count", count_market_signals, tenant_id)

    async def close(self) -> None:
        if self._owns_connection:
            self.conn.close()


__all__ = [
    "DuckDBSignalStore",
    "MARKET_SIGNALS_TABLE",
    "TENANTS_TABLE",
    "TRANSACTIONS_TABLE",
    "connect",
    "count_market_signals",
    "ensure_schema",
    "fetch_market_signal",
    "fetch_market_signals",
    "fetch_sale_transactions",
    "first_tenant_id",
    "get_database_path",
    "insert_tenant",
    "insert_transactions",
    "latest_signal_at",
    "latest_transaction_date",
    "stored_signal_keys",
    "update_signal_status",
    "upsert_market_signals",
]
