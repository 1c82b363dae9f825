"""
Root pytest configuration.

Tests marked ``live`` talk to a real Electrum server and are skipped unless
``--live-electrum`` is given. The server comes from the usual settings
sources (ELECTRUM__SERVER, NETWORK_CONFIG__NETWORK, config file).
"""

from __future__ import annotations

import pytest


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live-electrum",
        action="store_true",
        default=False,
        help="Run tests that need a reachable Electrum server",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--live-electrum"):
        return
    skip_live = pytest.mark.skip(reason="needs --live-electrum")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)
