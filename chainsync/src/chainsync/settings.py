"""
Settings management for chainsync.

Uses pydantic-settings with these sources, highest priority first:
1. CLI arguments / constructor overrides
2. Environment variables (nested with "__", e.g. ELECTRUM__SERVER)
3. TOML config file (~/.chainsync/config.toml, $CHAINSYNC_CONFIG_FILE)
4. Default values

Usage:
    from chainsync.settings import get_settings

    settings = get_settings()
    host, port = settings.get_electrum_server()
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from chainsync.constants import (
    DEFAULT_ELECTRUM_SERVERS,
    DEFAULT_EXPLORER_URLS,
    DEFAULT_FAUCET_URL,
    DEFAULT_FUNDING_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
)
from chainsync.models import NetworkType
from chainsync.paths import get_config_path
from chainsync.tasks import parse_server_address


class ElectrumSettings(BaseModel):
    """Electrum / Fulcrum index server connection."""

    server: str | None = Field(
        default=None,
        description="Server as host:port. Uses the network default if empty.",
    )
    use_tls: bool = Field(
        default=True,
        description="Connect with TLS",
    )
    tls_verify: bool = Field(
        default=False,
        description="Verify the server certificate (most public servers are self-signed)",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout in seconds for connecting and for each request",
    )
    keepalive_interval: float = Field(
        default=60.0,
        ge=0.0,
        description="Seconds between server.ping keepalives (0 disables)",
    )


class NetworkSettings(BaseModel):
    """Network selection."""

    network: NetworkType = Field(
        default=NetworkType.CHIPNET,
        description="Bitcoin Cash network (mainnet, chipnet, testnet4, regtest)",
    )
    explorer_url: str | None = Field(
        default=None,
        description="Block explorer base URL. Uses the network default if empty.",
    )


class FundingSettings(BaseModel):
    """Funding watcher defaults."""

    poll_interval: float = Field(
        default=DEFAULT_POLL_INTERVAL,
        gt=0.0,
        description="Seconds between UTXO polls",
    )
    timeout: float = Field(
        default=DEFAULT_FUNDING_TIMEOUT,
        gt=0.0,
        description="Seconds before a funding watch gives up",
    )
    accept_unconfirmed: bool = Field(
        default=True,
        description=(
            "Count unconfirmed (0-conf) outputs toward the required amount. "
            "Fine for test networks; disable wherever a double spend would matter."
        ),
    )


class FaucetSettings(BaseModel):
    """Testnet faucet."""

    url: str = Field(
        default=DEFAULT_FAUCET_URL,
        description="Faucet endpoint (POST {cashaddr})",
    )
    timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="HTTP timeout in seconds",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        description="Log level: TRACE, DEBUG, INFO, WARNING, ERROR",
    )

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


class ChainSyncSettings(BaseSettings):
    """Main settings class."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    electrum: ElectrumSettings = Field(default_factory=ElectrumSettings)
    network_config: NetworkSettings = Field(default_factory=NetworkSettings)
    funding: FundingSettings = Field(default_factory=FundingSettings)
    faucet: FaucetSettings = Field(default_factory=FaucetSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    def get_electrum_server(self) -> tuple[str, int]:
        """Configured server, falling back to the network default."""
        default_host, default_port = DEFAULT_ELECTRUM_SERVERS[self.network_config.network]
        if self.electrum.server:
            return parse_server_address(self.electrum.server, default_port=default_port)
        return default_host, default_port

    def get_explorer_url(self) -> str:
        if self.network_config.explorer_url:
            return self.network_config.explorer_url
        return DEFAULT_EXPLORER_URLS[self.network_config.network]


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Reads settings from the TOML config file, if it exists."""

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._config: dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        config_path = get_config_path()

        if not config_path.exists():
            logger.debug(f"Config file not found at {config_path}, using defaults")
            return

        try:
            with open(config_path, "rb") as f:
                self._config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Invalid TOML syntax in config file {config_path}: {e}")
            logger.error("Tip: make sure section headers like [electrum] are uncommented")
            raise SystemExit(1) from e
        except OSError as e:
            logger.error(f"Failed to read config from {config_path}: {e}")
            raise SystemExit(1) from e

        logger.debug(f"Loaded config from {config_path}")

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        value = self._config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return self._config


def generate_config_template() -> str:
    """
    Generate a config file template with every setting commented out.
    """
    lines: list[str] = [
        "# chainsync configuration",
        "#",
        "# All settings are commented out - uncomment to override the default.",
        "#",
        "# Priority (highest to lowest):",
        "#   1. CLI arguments",
        "#   2. Environment variables (ELECTRUM__SERVER=host:port, FUNDING__TIMEOUT=600)",
        "#   3. This config file",
        "#   4. Built-in defaults",
        "",
    ]

    def add_section(title: str, model_cls: type[BaseModel], prefix: str) -> None:
        lines.append(f"# {'=' * 60}")
        lines.append(f"# {title}")
        lines.append(f"# {'=' * 60}")
        lines.append(f"[{prefix}]")
        lines.append("")

        for field_name, field_info in model_cls.model_fields.items():
            if field_info.description:
                lines.append(f"# {field_info.description}")

            default = field_info.default
            if isinstance(default, bool):
                value_str = str(default).lower()
            elif default is None:
                lines.append(f"# {field_name} = ")
                lines.append("")
                continue
            elif hasattr(default, "value"):  # Enum
                value_str = f'"{default.value}"'
            elif isinstance(default, str):
                value_str = f'"{default}"'
            else:
                value_str = str(default)

            lines.append(f"# {field_name} = {value_str}")
            lines.append("")

    add_section("Electrum Server", ElectrumSettings, "electrum")
    add_section("Network", NetworkSettings, "network_config")
    add_section("Funding Watcher", FundingSettings, "funding")
    add_section("Faucet", FaucetSettings, "faucet")
    add_section("Logging", LoggingSettings, "logging")

    return "\n".join(lines)


def ensure_config_file() -> tuple[bool, Path]:
    """
    Create the config template if no config file exists.

    Returns:
        (created, path)
    """
    config_path = get_config_path()
    if config_path.exists():
        return False, config_path

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(generate_config_template())
    logger.info(f"Created config file template at {config_path}")
    return True, config_path


_settings: ChainSyncSettings | None = None


def get_settings(**overrides: Any) -> ChainSyncSettings:
    """
    Get the settings instance.

    Loaded on first call and cached; passing overrides rebuilds it.
    """
    global _settings
    if _settings is None or overrides:
        _settings = ChainSyncSettings(**overrides)
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (used by the CLI and tests)."""
    global _settings
    _settings = None


__all__ = [
    "ChainSyncSettings",
    "ElectrumSettings",
    "NetworkSettings",
    "FundingSettings",
    "FaucetSettings",
    "LoggingSettings",
    "get_settings",
    "reset_settings",
    "generate_config_template",
    "ensure_config_file",
]
