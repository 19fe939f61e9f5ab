"""Signal store backed by a Supabase (PostgREST) REST endpoint.

Requests go through a single retrying helper: transport errors and 5xx
responses back off exponentially, anything else surfaces immediately as a
``SignalStoreError``.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any, Mapping, Sequence

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from pipelines.model import MarketSignal, Transaction
from storage.base import SignalStoreError, TenantResolutionError, UpsertResult

DEFAULT_TIMEOUT_SECONDS = 30.0
_DEFAULT_WAIT = wait_exponential(min=1, max=16)
_DEFAULT_STOP = stop_after_attempt(5)

SUPABASE_URL_ENV = "SUPABASE_URL"
SUPABASE_KEY_ENV = "SUPABASE_SERVICE_ROLE_KEY"

_TRANSACTION_FIELDS = (
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

# Left to table defaults so a re-run never resets them.
_INSERT_ONLY_FIELDS = ("status",)

logger = logging.getLogger(__name__)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _in_filter(values: Sequence[str]) -> str:
    return "in.(" + ",".join(_quote(value) for value in values) + ")"


def _parse_count(content_range: str | None) -> int:
    # "0-24/3573" or "*/3573"
    if not content_range or "/" not in content_range:
        raise SignalStoreError(f"Missing exact count in Content-Range: {content_range!r}")
    total = content_range.rsplit("/", 1)[1]
    if total == "*":
        raise SignalStoreError("Store did not return an exact count.")
    return int(total)


def _record_to_transaction(record: Mapping[str, Any]) -> Transaction:
    raw_date = record.get("instance_date")
    return Transaction(
        id=str(record["transaction_id"]),
        transaction_date=raw_date[:10] if isinstance(raw_date, str) else raw_date,
        category=record.get("trans_group_en") or "",
        area=record.get("area_name_en"),
        property_type=record.get("property_type_en"),
        property_sub_type=record.get("property_sub_type_en"),
        rooms=record.get("rooms_en"),
        price=record["actual_worth"],
        unit_price=record.get("meter_sale_price"),
        procedure_area=record.get("procedure_area"),
    )


def _signal_row(signal: MarketSignal, now: datetime) -> dict[str, Any]:
    row = signal.model_dump(mode="json", exclude=set(_INSERT_ONLY_FIELDS))
    row["updated_at"] = now.astimezone(UTC).isoformat()
    return row


class PostgrestSignalStore:
    """``SignalStore`` speaking the PostgREST dialect used by Supabase."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_env(cls, **kwargs: Any) -> "PostgrestSignalStore":
        url = os.getenv(SUPABASE_URL_ENV)
        key = os.getenv(SUPABASE_KEY_ENV)
        if not url or not key:
            raise SignalStoreError(
                f"Missing {SUPABASE_URL_ENV} or {SUPABASE_KEY_ENV} for the PostgREST store."
            )
        return cls(url, key, **kwargs)

    @retry(
        wait=_DEFAULT_WAIT,
        stop=_DEFAULT_STOP,
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        response = await self._client.request(
            method.upper(), path, params=params, headers=headers, content=content
        )
        response.raise_for_status()
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._send(method, path, **kwargs)
        except httpx.HTTPStatusError as exc:
            raise SignalStoreError(
                f"{method} {path} failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SignalStoreError(f"{method} {path} failed: {exc}") from exc

    async def resolve_tenant(self, override: str | None = None) -> str:
        if override:
            return override
        response = await self._request(
            "GET",
            "/tenants",
            params={"select": "id", "order": "created_at.asc", "limit": 1},
        )
        rows = response.json()
        if not rows:
            raise TenantResolutionError("No tenants found. Run migrations + seed.")
        return str(rows[0]["id"])

    async def fetch_sale_transactions(
        self, tenant_id: str, *, category: str, offset: int, limit: int
    ) -> list[Transaction]:
        response = await self._request(
            "GET",
            "/dld_transactions",
            params={
                "select": ",".join(_TRANSACTION_FIELDS),
                "org_id": f"eq.{tenant_id}",
                "trans_group_en": f"eq.{category}",
                "actual_worth": "gt.0",
                "instance_date": "not.is.null",
                "order": "transaction_id.asc",
                "offset": offset,
                "limit": limit,
            },
        )
        return [_record_to_transaction(record) for record in response.json()]

    async def _key_owners(self, keys: Sequence[str]) -> dict[str, str]:
        response = await self._request(
            "GET",
            "/market_signal",
            params={"select": "signal_key,org_id", "signal_key": _in_filter(keys)},
        )
        return {row["signal_key"]: str(row["org_id"]) for row in response.json()}

    async def upsert_signals(
        self, signals: Sequence[MarketSignal], *, now: datetime
    ) -> UpsertResult:
        if not signals:
            return UpsertResult(inserted=0, updated=0)
        owners = await self._key_owners([signal.signal_key for signal in signals])
        accepted = [
            signal
            for signal in signals
            if owners.get(signal.signal_key, signal.org_id) == signal.org_id
        ]
        if accepted:
            await self._request(
                "POST",
                "/market_signal",
                params={"on_conflict": "signal_key"},
                headers={
                    "Content-Type": "application/json",
                    "Prefer": "resolution=merge-duplicates,return=minimal",
                },
                content=json.dumps([_signal_row(signal, now) for signal in accepted]).encode(),
            )
        updated = sum(1 for signal in accepted if signal.signal_key in owners)
        return UpsertResult(
            inserted=len(accepted) - updated,
            updated=updated,
            rejected=len(signals) - len(accepted),
        )

    async def count_signals(self, tenant_id: str) -> int:
        response = await self._request(
            "HEAD",
            "/market_signal",
            params={"select": "signal_key", "org_id": f"eq.{tenant_id}"},
            headers={"Prefer": "count=exact"},
        )
        return _parse_count(response.headers.get("content-range"))

    async def close(self) -> None:
        await self._client.aclose()


__all__ = ["DEFAULT_TIMEOUT_SECONDS", "PostgrestSignalStore"]
