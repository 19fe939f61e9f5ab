import json
from datetime import date

from helpers import make_transactions
from jobs.__main__ import main
from storage.db import connect, insert_tenant, insert_transactions


def test_show_thresholds(capsys, monkeypatch):
    monkeypatch.setenv("SIGNAL_HOT_AREA_THRESHOLD", "45")

    assert main(["show-thresholds"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert "hot_area_threshold=45" in lines
    assert "min_transactions=5" in lines


def test_generate_then_freshness(capsys):
    conn = connect()
    try:
        insert_tenant(conn, "tenant-1")
        insert_transactions(
            conn, "tenant-1", make_transactions("Marina", date.today(), [900_000.0] * 30)
        )
    finally:
        conn.close()

    assert main(["generate-signals", "--tenant", "tenant-1"]) == 0
    capsys.readouterr()

    assert main(["freshness"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["tenant_id"] == "tenant-1"
    assert report["signals"]["new_count"] == 1
    assert report["overall_status"] == "healthy"


def test_freshness_without_tenants(capsys):
    assert main(["freshness"]) == 1
    assert "No tenants found" in capsys.readouterr().out


def test_export_scoped_to_tenant(tmp_path):
    conn = connect()
    try:
        insert_tenant(conn, "tenant-1")
        insert_tenant(conn, "tenant-2")
        insert_transactions(
            conn, "tenant-1", make_transactions("Marina", date.today(), [900_000.0] * 30)
        )
        insert_transactions(conn, "tenant-2", make_transactions("JVC", date.today(), [1.0] * 30))
    finally:
        conn.close()
    assert main(["generate-signals", "--tenant", "tenant-1"]) == 0
    assert main(["generate-signals", "--tenant", "tenant-2"]) == 0

    destination = tmp_path / "out" / "signals.csv"
    assert main(["export", str(destination), "--tenant", "tenant-2"]) == 0

    body = destination.read_text()
    assert "JVC" in body
    assert "Marina" not in body
