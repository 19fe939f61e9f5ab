"""FastAPI service exposing generated market signals and a job trigger."""

from __future__ import annotations

import os
import tempfile
from collections import Counter
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Sequence

import duckdb
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from jobs.generate_signals import TENANT_OVERRIDE_ENV, generate_signals_async
from pipelines.freshness import assess_freshness
from pipelines.model import SignalStatus, StoredSignal
from storage.base import SignalStoreError, TenantResolutionError
from storage.db import (
    MARKET_SIGNALS_TABLE,
    DuckDBSignalStore,
    connect,
    count_market_signals,
    fetch_market_signal,
    fetch_market_signals,
    first_tenant_id,
    latest_signal_at,
    latest_transaction_date,
    update_signal_status,
)
from storage.exports import export_to_csv, export_to_parquet

DEFAULT_LIMIT = 50
MAX_LIMIT = 2000
ALLOWED_FORMATS = {"json", "csv", "parquet"}
JOB_SECRET_ENV = "JOB_SECRET"
load_dotenv()


@asynccontextmanager
async def lifespan(_: FastAPI):
    conn = connect()
    conn.close()
    yield


app = FastAPI(title="Market Signals API", version="0.1.0", lifespan=lifespan)


def _configure_cors() -> None:
    raw_origins = os.getenv("API_CORS_ORIGINS", "*")
    origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )


_configure_cors()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def _build_filters(
    *,
    tenant_id: str | None,
    status: str | None,
    signal_type: str | None,
    severity: str | None,
    area: str | None,
) -> tuple[str | None, list[Any]]:
    filters: list[str] = []
    params: list[Any] = []

    for column, value in (
        ("org_id", tenant_id),
        ("status", status),
        ("type", signal_type),
        ("severity", severity),
    ):
        if value:
            filters.append(f"{column} = ?")
            params.append(value)
    if area:
        filters.append("geo_id ILIKE ?")
        params.append(f"%{area}%")

    if not filters:
        return None, params
    return " AND ".join(filters), params


def _build_query(where: str | None, limit: int) -> str:
    sql = f"SELECT * EXCLUDE (id) FROM {MARKET_SIGNALS_TABLE}"
    if where:
        sql += f" WHERE {where}"
    sql += " ORDER BY updated_at DESC, signal_key"
    sql += f" LIMIT {limit}"
    return sql


def _serialize_signals(signals: Sequence[StoredSignal]) -> list[dict[str, Any]]:
    return [signal.model_dump(mode="json") for signal in signals]


@app.get("/signals")
def get_signals(
    background_tasks: BackgroundTasks,
    format: str = Query("json", description="Response format: json, csv, or parquet"),
    tenant_id: str | None = Query(None, description="Tenant that owns the signals"),
    status: str | None = Query(None, description="Workflow status (e.g. 'new')"),
    type: str | None = Query(None, description="Signal type to filter"),
    severity: str | None = Query(None, description="Severity tier: info, watch, urgent"),
    area: str | None = Query(None, description="Case-insensitive area name fragment"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description="Maximum records returned"),
):
    fmt = format.lower()
    if fmt not in ALLOWED_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported format '{format}'.")

    where, params = _build_filters(
        tenant_id=tenant_id,
        status=status,
        signal_type=type,
        severity=severity,
        area=area,
    )

    conn = connect(read_only=True)
    try:
        if fmt == "json":
            signals = fetch_market_signals(conn, where=where, params=params, limit=limit)
            payload = {
                "filters": {
                    "tenant_id": tenant_id,
                    "status": status,
                    "type": type,
                    "severity": severity,
                    "area": area,
                },
                "count": len(signals),
                "summary": dict(Counter(signal.type for signal in signals)),
                "items": _serialize_signals(signals),
            }
            return JSONResponse(content=payload)

        query = _build_query(where, limit)
        suffix = ".csv" if fmt == "csv" else ".parquet"
        media_type = "text/csv" if fmt == "csv" else "application/vnd.apache.parquet"
        filename = f"signals{suffix}"
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
            dest = Path(tmp.name)

        if fmt == "csv":
            export_to_csv(conn, dest, query=query, params=params)
        else:
            export_to_parquet(conn, dest, query=query, params=params)

        def _cleanup(path: Path) -> None:
            try:
                path.unlink()
            except FileNotFoundError:
                pass

        background_tasks.add_task(_cleanup, dest)
        return FileResponse(dest, media_type=media_type, filename=filename, background=background_tasks)
    except duckdb.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail="Database query failed") from exc
    finally:
        conn.close()


@app.get("/signals/freshness")
def get_freshness(
    tenant_id: str | None = Query(None, description="Tenant to inspect (defaults to the oldest)"),
):
    conn = connect(read_only=True)
    try:
        resolved = tenant_id or os.getenv(TENANT_OVERRIDE_ENV) or first_tenant_id(conn)
        if not resolved:
            raise HTTPException(status_code=404, detail="No tenants found.")
        report = assess_freshness(
            latest_transaction_date(conn, resolved),
            latest_signal_at(conn, resolved),
            new_signals=count_market_signals(conn, resolved, status="new"),
        )
    except duckdb.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail="Database query failed") from exc
    finally:
        conn.close()
    return {"tenant_id": resolved, **report}


@app.get("/signals/{signal_key}")
def get_signal(
    signal_key: str,
    tenant_id: str = Query(..., description="Tenant that owns the signal"),
):
    conn = connect(read_only=True)
    try:
        signal = fetch_market_signal(conn, tenant_id, signal_key)
    except duckdb.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail="Database query failed") from exc
    finally:
        conn.close()
    if signal is None:
        raise HTTPException(status_code=404, detail="Signal not found")
    return signal.model_dump(mode="json")


class StatusUpdateRequest(BaseModel):
    tenant_id: str
    status: SignalStatus


class DismissRequest(BaseModel):
    tenant_id: str


def _set_status(signal_key: str, tenant_id: str, status: SignalStatus) -> dict[str, Any]:
    conn = connect()
    try:
        updated = update_signal_status(conn, tenant_id, signal_key, status)
    except duckdb.Error as exc:  # pragma: no cover - defensive
        raise HTTPException(status_code=500, detail="Database update failed") from exc
    finally:
        conn.close()
    if not updated:
        raise HTTPException(status_code=404, detail="Signal not found")
    return {"ok": True, "signal_key": signal_key, "status": status}


@app.post("/signals/{signal_key}/status")
def set_signal_status(signal_key: str, body: StatusUpdateRequest):
    return _set_status(signal_key, body.tenant_id, body.status)


@app.post("/signals/{signal_key}/dismiss")
def dismiss_signal(signal_key: str, body: DismissRequest):
    return _set_status(signal_key, body.tenant_id, "dismissed")


class RunSignalsRequest(BaseModel):
    tenant_id: str | None = None


def _authorize_job(provided: str | None) -> None:
    expected = os.getenv(JOB_SECRET_ENV)
    if expected:
        if provided != expected:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return
    if os.getenv("APP_ENV", "development").lower() == "production":
        raise HTTPException(status_code=500, detail=f"{JOB_SECRET_ENV} not configured in production")


@app.post("/jobs/run-signals")
async def run_signals(
    body: RunSignalsRequest | None = None,
    x_job_secret: str | None = Header(None),
):
    _authorize_job(x_job_secret)
    store = DuckDBSignalStore(connect())
    try:
        report = await generate_signals_async(body.tenant_id if body else None, store=store)
    except TenantResolutionError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SignalStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        await store.close()
    return {"ok": True, "result": report.as_dict()}
