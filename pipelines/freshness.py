"""Staleness checks for the transaction feed and the generated signals."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any

TRANSACTIONS_MAX_AGE_DAYS = 7
SIGNALS_MAX_AGE = timedelta(hours=24)


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps from the stores are UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def assess_freshness(
    latest_transaction_date: date | None,
    latest_signal_at: datetime | None,
    *,
    new_signals: int = 0,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Summarise how current the inputs and outputs of the pipeline are."""

    current = _as_utc(now or datetime.now(UTC))
    alerts: list[str] = []

    days_old: int | None = None
    transactions_stale = False
    if latest_transaction_date is not None:
        days_old = (current.date() - latest_transaction_date).days
        transactions_stale = days_old > TRANSACTIONS_MAX_AGE_DAYS
        if transactions_stale:
            alerts.append(f"Transaction data is {days_old} days old")

    hours_old: int | None = None
    signals_stale = False
    latest_generated: str | None = None
    if latest_signal_at is not None:
        generated = _as_utc(latest_signal_at)
        latest_generated = generated.isoformat()
        age = current - generated
        hours_old = int(age.total_seconds() // 3600)
        signals_stale = age > SIGNALS_MAX_AGE
        if signals_stale:
            alerts.append(f"Signal pipeline hasn't run in {hours_old} hours")

    return {
        "transactions": {
            "latest_date": latest_transaction_date.isoformat() if latest_transaction_date else None,
            "days_old": days_old,
            "status": "stale" if transactions_stale else "fresh",
        },
        "signals": {
            "latest_generated": latest_generated,
            "new_count": new_signals,
            "hours_old": hours_old,
            "status": "stale" if signals_stale else "fresh",
        },
        "alerts": alerts,
        "overall_status": "warning" if alerts else "healthy",
        "timestamp": current.isoformat(),
    }


__all__ = ["SIGNALS_MAX_AGE", "TRANSACTIONS_MAX_AGE_DAYS", "assess_freshness"]
