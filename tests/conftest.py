import pytest

from storage.db import DuckDBSignalStore, connect


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    for key in ("DEMO_TENANT_ID", "SIGNALS_STORE_BACKEND", "JOB_SECRET", "APP_ENV"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("MARKET_SIGNALS_DB_PATH", str(tmp_path / "signals.duckdb"))


@pytest.fixture()
def duck_store(tmp_path):
    store = DuckDBSignalStore(connect(tmp_path / "store.duckdb"))
    yield store
    store.conn.close()
