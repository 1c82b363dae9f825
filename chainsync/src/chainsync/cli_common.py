"""
Common CLI helpers: logging setup and settings resolution.

Kept free of typer so library users can reuse setup_logging.
"""

from __future__ import annotations

import sys
from typing import Any

from loguru import logger

from chainsync.models import NetworkType
from chainsync.settings import ChainSyncSettings, get_settings, reset_settings


def setup_logging(level: str = "INFO") -> None:
    """
    Configure loguru logging with consistent format.

    Args:
        level: Log level (TRACE, DEBUG, INFO, WARNING, ERROR)
    """
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level.upper(),
        colorize=True,
    )


def setup_cli(
    log_level: str | None = None,
    network: str | None = None,
    server: str | None = None,
    tls: bool | None = None,
) -> ChainSyncSettings:
    """
    Common CLI setup: reload settings with CLI overrides, configure logging.

    Priority: CLI argument > environment > config file > default
    """
    reset_settings()
    base = get_settings()

    overrides: dict[str, Any] = {}
    if network is not None:
        overrides["network_config"] = {
            **base.network_config.model_dump(),
            "network": NetworkType(network),
        }
    if server is not None or tls is not None:
        electrum = base.electrum.model_dump()
        if server is not None:
            electrum["server"] = server
        if tls is not None:
            electrum["use_tls"] = tls
        overrides["electrum"] = electrum

    settings = get_settings(**overrides) if overrides else base

    effective_log_level = log_level if log_level is not None else settings.logging.level
    setup_logging(effective_log_level)

    host, port = settings.get_electrum_server()
    logger.debug(
        f"Network: {settings.network_config.network.value}, "
        f"Electrum: {host}:{port} (tls={settings.electrum.use_tls})"
    )
    return settings
