import asyncio
from datetime import date

import pytest

from helpers import make_transactions
from jobs.config import SignalThresholds
from pipelines.aggregate import bin_transactions
from pipelines.detectors import (
    DetectorContext,
    detect_hot_areas,
    detect_price_changes,
    detect_supply_spikes,
    run_detectors,
)

Q1 = date(2024, 2, 10)
Q2 = date(2024, 5, 10)
Q3 = date(2024, 8, 10)

CTX = DetectorContext(tenant_id="tenant-1")


def _index(*groups):
    transactions = []
    for area, on, prices in groups:
        transactions.extend(make_transactions(area, on, prices))
    return bin_transactions(transactions)


def test_price_change_of_exactly_five_percent_triggers():
    index = _index(("Marina", Q1, [100.0] * 5), ("Marina", Q2, [105.0] * 5))

    (signal,) = detect_price_changes(index, CTX)

    assert signal.type == "price_change"
    assert signal.metric == "median_price"
    assert signal.delta_pct == pytest.approx(0.05)
    assert signal.severity == "info"
    assert signal.confidence_score == 0.7
    assert signal.evidence.prev_quarter == "2024-Q1"
    assert signal.evidence.current_quarter == "2024-Q2"


def test_price_change_just_below_threshold_is_ignored():
    index = _index(("Marina", Q1, [100.0] * 5), ("Marina", Q2, [104.99] * 5))

    assert detect_price_changes(index, CTX) == []


def test_price_drop_triggers_with_negative_delta():
    index = _index(("Marina", Q1, [100.0] * 50), ("Marina", Q2, [80.0] * 50))

    (signal,) = detect_price_changes(index, CTX)

    assert signal.delta_pct == pytest.approx(-0.2)
    assert signal.delta_value == pytest.approx(-20.0)
    assert signal.severity == "urgent"
    assert signal.confidence_score == 0.9


def test_small_samples_never_produce_price_change():
    index = _index(("Marina", Q1, [100.0] * 4), ("Marina", Q2, [300.0] * 40))

    assert detect_price_changes(index, CTX) == []


def test_one_price_signal_per_consecutive_jump():
    index = _index(
        ("Marina", Q1, [100.0] * 5),
        ("Marina", Q2, [110.0] * 5),
        ("Marina", Q3, [130.0] * 5),
    )

    signals = detect_price_changes(index, CTX)

    assert [s.evidence.current_quarter for s in signals] == ["2024-Q2", "2024-Q3"]
    assert len({s.signal_key for s in signals}) == 2
    assert "anchor:2024-06-30" in signals[0].signal_key


def test_hot_area_threshold_boundary_and_escalation():
    index = _index(
        ("Marina", Q2, [1_000_000.0] * 30),
        ("JVC", Q2, [1_000_000.0] * 29),
        ("Downtown", Q2, [2_000_000.0] * 200),
        ("Old Town", Q1, [2_000_000.0] * 500),
    )

    signals = {s.geo_id: s for s in detect_hot_areas(index, CTX)}

    assert set(signals) == {"Marina", "Downtown"}
    assert signals["Marina"].severity == "watch"
    assert signals["Downtown"].severity == "urgent"
    assert signals["Downtown"].current_value == 200
    assert signals["Downtown"].prev_value is None
    assert signals["Downtown"].delta_pct is None
    assert signals["Downtown"].confidence_score == 0.85


def test_hot_area_evidence_carries_quarter_figures():
    transactions = [
        *make_transactions("Marina", Q2, [1_000_000.0] * 20, unit_price=15_000.4),
        *make_transactions("Marina", Q2, [2_000_000.0] * 10),
        *make_transactions("JVC", Q2, [500_000.0] * 30),
    ]
    signals = {s.geo_id: s for s in detect_hot_areas(bin_transactions(transactions), CTX)}

    evidence = signals["Marina"].evidence
    assert evidence.quarter == "2024-Q2"
    assert evidence.transaction_count == 30
    assert evidence.total_value == pytest.approx(40_000_000.0)
    assert evidence.avg_price == 1_333_333
    assert evidence.avg_price_per_sqm == 15_000
    assert signals["JVC"].evidence.avg_price_per_sqm is None


@pytest.mark.parametrize(
    ("prev", "curr", "expected"),
    [
        (10, 13, "watch"),
        (10, 12, None),
        (10, 15, "urgent"),
        (20, 29, "watch"),
        (9, 30, None),
    ],
)
def test_supply_spike_thresholds(prev, curr, expected):
    index = _index(("Marina", Q1, [1.0] * prev), ("Marina", Q2, [1.0] * curr))

    signals = detect_supply_spikes(index, CTX)

    if expected is None:
        assert signals == []
    else:
        (signal,) = signals
        assert signal.severity == expected
        assert signal.metric == "transaction_count"
        assert signal.current_value == curr
        assert signal.prev_value == prev
        assert signal.delta_pct == pytest.approx((curr - prev) / prev)
        assert signal.confidence_score == 0.8


def test_thresholds_are_injected_not_hardcoded():
    index = _index(("Marina", Q1, [100.0] * 5), ("Marina", Q2, [103.0] * 5))
    ctx = DetectorContext(
        tenant_id="tenant-1", thresholds=SignalThresholds(price_change_threshold=0.02)
    )

    assert len(detect_price_changes(index, ctx)) == 1
    assert detect_price_changes(index, CTX) == []


def test_run_detectors_isolates_a_failing_detector():
    index = _index(("Marina", Q1, [100.0] * 40), ("Marina", Q2, [120.0] * 40))

    def broken(_index, _ctx):
        raise RuntimeError("boom")

    results = asyncio.run(
        run_detectors(
            index,
            CTX,
            detectors=(("price_change", detect_price_changes), ("supply_spike", broken)),
        )
    )

    assert len(results["price_change"]) == 1
    assert results["supply_spike"] == []


def test_run_detectors_is_order_independent():
    index = _index(
        ("Marina", Q1, [100.0] * 40),
        ("Marina", Q2, [120.0] * 60),
        ("JVC", Q2, [90.0] * 35),
    )

    results = asyncio.run(run_detectors(index, CTX))

    assert {k: len(v) for k, v in results.items()} == {
        "price_change": 1,
        "yield_opportunity": 2,
        "supply_spike": 1,
    }
    assert results["price_change"] == detect_price_changes(index, CTX)
