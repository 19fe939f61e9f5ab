import pytest

from jobs.config import (
    DEFAULT_SETTINGS,
    DEFAULT_THRESHOLDS,
    settings_from_env,
    thresholds_from_env,
)


def test_defaults_match_documented_thresholds():
    assert DEFAULT_THRESHOLDS.min_transactions == 5
    assert DEFAULT_THRESHOLDS.price_change_threshold == 0.05
    assert DEFAULT_THRESHOLDS.hot_area_threshold == 30
    assert DEFAULT_THRESHOLDS.supply_spike_threshold == 0.30
    assert DEFAULT_THRESHOLDS.supply_spike_urgent == 0.50
    assert DEFAULT_SETTINGS.page_size == 1000
    assert DEFAULT_SETTINGS.batch_size == 100


def test_thresholds_can_be_overridden_from_environment():
    thresholds = thresholds_from_env(
        {"SIGNAL_HOT_AREA_THRESHOLD": "40", "SIGNAL_PRICE_CHANGE_THRESHOLD": "0.1"}
    )

    assert thresholds.hot_area_threshold == 40
    assert thresholds.price_change_threshold == pytest.approx(0.1)
    assert thresholds.min_transactions == 5
    assert thresholds_from_env({}) is DEFAULT_THRESHOLDS


def test_malformed_threshold_names_the_variable():
    with pytest.raises(ValueError, match="SIGNAL_MIN_TRANSACTIONS"):
        thresholds_from_env({"SIGNAL_MIN_TRANSACTIONS": "five"})


def test_settings_from_environment():
    settings = settings_from_env(
        {"SIGNAL_PAGE_SIZE": "500", "SIGNAL_BATCH_SIZE": "25", "SIGNAL_SALE_CATEGORY": "Sales"}
    )

    assert (settings.page_size, settings.batch_size, settings.sale_category) == (500, 25, "Sales")
    with pytest.raises(ValueError, match="SIGNAL_BATCH_SIZE"):
        settings_from_env({"SIGNAL_BATCH_SIZE": "0"})
