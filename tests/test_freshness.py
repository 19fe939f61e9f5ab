from datetime import UTC, date, datetime

from pipelines.freshness import assess_freshness

NOW = datetime(2025, 3, 10, 12, tzinfo=UTC)


def test_fresh_inputs_are_healthy():
    report = assess_freshness(date(2025, 3, 5), datetime(2025, 3, 10, 6), new_signals=4, now=NOW)

    assert report["overall_status"] == "healthy"
    assert report["alerts"] == []
    assert report["transactions"]["days_old"] == 5
    assert report["signals"]["hours_old"] == 6
    assert report["signals"]["new_count"] == 4


def test_stale_inputs_raise_alerts():
    report = assess_freshness(date(2025, 2, 1), datetime(2025, 3, 8, 12, tzinfo=UTC), now=NOW)

    assert report["overall_status"] == "warning"
    assert report["transactions"]["status"] == "stale"
    assert report["signals"]["status"] == "stale"
    assert report["alerts"] == [
        "Transaction data is 37 days old",
        "Signal pipeline hasn't run in 48 hours",
    ]


def test_missing_data_is_not_stale():
    report = assess_freshness(None, None, now=NOW)

    assert report["overall_status"] == "healthy"
    assert report["transactions"]["latest_date"] is None
    assert report["signals"]["hours_old"] is None
