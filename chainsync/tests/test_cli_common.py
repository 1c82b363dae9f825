"""
Tests for the CLI common module.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from loguru import logger

from chainsync.cli_common import setup_cli, setup_logging
from chainsync.models import NetworkType
from chainsync.settings import ChainSyncSettings


class TestSetupLogging:
    def test_setup_logging_case_insensitive(self) -> None:
        # Should not raise
        setup_logging("trace")
        setup_logging("Trace")
        setup_logging("INFO")


class TestSetupCli:
    def test_setup_cli_returns_settings(self) -> None:
        assert isinstance(setup_cli(), ChainSyncSettings)

    def test_cli_log_level_overrides_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOGGING__LEVEL", "DEBUG")

        with patch.object(logger, "remove"), patch.object(logger, "add") as mock_add:
            setup_cli(log_level="TRACE")

            mock_add.assert_called_once()
            assert mock_add.call_args[1]["level"] == "TRACE"

    def test_uses_settings_when_no_cli_arg(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOGGING__LEVEL", "TRACE")

        with patch.object(logger, "remove"), patch.object(logger, "add") as mock_add:
            setup_cli(log_level=None)

            assert mock_add.call_args[1]["level"] == "TRACE"

    def test_defaults_to_info(self) -> None:
        with patch.object(logger, "remove"), patch.object(logger, "add") as mock_add:
            setup_cli()

            assert mock_add.call_args[1]["level"] == "INFO"

    def test_network_and_server_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ELECTRUM__SERVER", "from-env:1")
        monkeypatch.setenv("ELECTRUM__USE_TLS", "false")

        settings = setup_cli(network="mainnet", server="from-cli:2")

        assert settings.network_config.network == NetworkType.MAINNET
        assert settings.get_electrum_server() == ("from-cli", 2)
        # Untouched fields keep their lower-priority values
        assert settings.electrum.use_tls is False

    def test_tls_override(self) -> None:
        settings = setup_cli(tls=False)
        assert settings.electrum.use_tls is False
        assert settings.get_electrum_server() == ("chipnet.imaginary.cash", 50002)

    def test_invalid_network(self) -> None:
        with pytest.raises(ValueError):
            setup_cli(network="dogecoin")
