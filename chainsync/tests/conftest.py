"""
Pytest configuration and fixtures for chainsync tests.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from _chainsync_test_helpers import LISTUNSPENT, FakeConnector

from chainsync.connection import ConnectionManager
from chainsync.settings import reset_settings


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector({LISTUNSPENT: []})


@pytest.fixture
def connections(connector: FakeConnector) -> ConnectionManager:
    return ConnectionManager(host="test", port=50001, keepalive_interval=0, connector=connector)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch) -> Iterator[None]:
    """Keep tests away from the real ~/.chainsync and the caller's environment."""
    monkeypatch.setenv("CHAINSYNC_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CHAINSYNC_CONFIG_FILE", str(tmp_path / "config.toml"))
    for name in (
        "ELECTRUM__SERVER",
        "ELECTRUM__USE_TLS",
        "NETWORK_CONFIG__NETWORK",
        "FUNDING__TIMEOUT",
        "LOGGING__LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()
