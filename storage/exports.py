"""Export helpers for signal rows persisted inside DuckDB."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

import duckdb

from storage.db import MARKET_SIGNALS_TABLE


def _ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _default_query() -> str:
    return f"SELECT * EXCLUDE (id) FROM {MARKET_SIGNALS_TABLE} ORDER BY updated_at DESC"


def _copy(
    conn: duckdb.DuckDBPyConnection,
    destination: str | Path,
    options: str,
    query: str | None,
    params: Sequence[Any] | None,
) -> Path:
    dest_path = Path(destination)
    _ensure_parent(dest_path)
    sql = query or _default_query()
    sanitized_path = str(dest_path).replace("'", "''")
    conn.execute(f"COPY ({sql}) TO '{sanitized_path}' ({options})", params or [])
    return dest_path


def export_to_csv(
    conn: duckdb.DuckDBPyConnection,
    destination: str | Path,
    *,
    query: str | None = None,
    params: Sequence[Any] | None = None,
    include_header: bool = True,
) -> Path:
    """Materialize query results into a CSV file using DuckDB's COPY command."""

    header = "TRUE" if include_header else "FALSE"
    return _copy(conn, destination, f"FORMAT CSV, HEADER {header}", query, params)


def export_to_parquet(
    conn: duckdb.DuckDBPyConnection,
    destination: str | Path,
    *,
    query: str | None = None,
    params: Sequence[Any] | None = None,
) -> Path:
    """Export query results to a Parquet file."""

    return _copy(conn, destination, "FORMAT PARQUET", query, params)


__all__ = ["export_to_csv", "export_to_parquet"]
