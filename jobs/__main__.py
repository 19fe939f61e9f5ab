"""Command-line entrypoint for batch jobs."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from dataclasses import asdict

from jobs.config import thresholds_from_env
from jobs.generate_signals import TENANT_OVERRIDE_ENV
from jobs.generate_signals import main as run_generate_signals
from pipelines.freshness import assess_freshness
from storage.base import SignalStoreError
from storage.db import (
    MARKET_SIGNALS_TABLE,
    DuckDBSignalStore,
    connect,
    count_market_signals,
    latest_signal_at,
    latest_transaction_date,
)
from storage.exports import export_to_csv, export_to_parquet


def _freshness_report(tenant_id: str | None) -> dict:
    store = DuckDBSignalStore.open()
    try:
        resolved = asyncio.run(
            store.resolve_tenant(tenant_id or os.getenv(TENANT_OVERRIDE_ENV))
        )
        report = assess_freshness(
            latest_transaction_date(store.conn, resolved),
            latest_signal_at(store.conn, resolved),
            new_signals=count_market_signals(store.conn, resolved, status="new"),
        )
        return {"tenant_id": resolved, **report}
    finally:
        asyncio.run(store.close())


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Market signal job runner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate_parser = subparsers.add_parser(
        "generate-signals", help="Derive market signals for a tenant and upsert them"
    )
    generate_parser.add_argument(
        "--tenant",
        help=f"Tenant id to process (defaults to ${TENANT_OVERRIDE_ENV}, then the oldest tenant)",
    )
    generate_parser.add_argument(
        "--log-level",
        help="Override LOG_LEVEL for this invocation (e.g. DEBUG, INFO)",
    )

    subparsers.add_parser("show-thresholds", help="Show the effective detector thresholds")

    freshness_parser = subparsers.add_parser(
        "freshness", help="Report how current transactions and signals are"
    )
    freshness_parser.add_argument("--tenant", help="Tenant id to inspect")

    export_parser = subparsers.add_parser("export", help="Write stored signals to a file")
    export_parser.add_argument("destination", help="Output file path")
    export_parser.add_argument("--format", choices=("csv", "parquet"), default="csv")
    export_parser.add_argument("--tenant", help="Only export signals owned by this tenant")

    args = parser.parse_args(argv)

    if args.command == "export":
        conn = connect(read_only=True)
        try:
            query = None
            params: list[str] = []
            if args.tenant:
                query = (
                    f"SELECT * EXCLUDE (id) FROM {MARKET_SIGNALS_TABLE}"
                    " WHERE org_id = ? ORDER BY updated_at DESC, signal_key"
                )
                params.append(args.tenant)
            exporter = export_to_csv if args.format == "csv" else export_to_parquet
            path = exporter(conn, args.destination, query=query, params=params)
        finally:
            conn.close()
        print(f"Exported signals to {path}")
        return 0

    if args.command == "show-thresholds":
        for name, value in asdict(thresholds_from_env()).items():
            print(f"{name}={value}")
        return 0

    if args.command == "freshness":
        try:
            report = _freshness_report(args.tenant)
        except SignalStoreError as exc:
            print(f"error: {exc}")
            return 1
        print(json.dumps(report, indent=2))
        return 0

    if args.command == "generate-signals":
        if args.log_level:
            os.environ["LOG_LEVEL"] = args.log_level
        return run_generate_signals(args.tenant)

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
