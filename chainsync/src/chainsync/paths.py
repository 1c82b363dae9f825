"""
Data directory resolution.
"""

from __future__ import annotations

import os
from pathlib import Path

DATA_DIR_ENV = "CHAINSYNC_DATA_DIR"
CONFIG_FILE_ENV = "CHAINSYNC_CONFIG_FILE"


def get_default_data_dir(create: bool = True) -> Path:
    """
    Get the default chainsync data directory.

    Returns ~/.chainsync or $CHAINSYNC_DATA_DIR if set.
    """
    env_path = os.getenv(DATA_DIR_ENV)
    data_dir = Path(env_path) if env_path else Path.home() / ".chainsync"

    if create:
        data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_config_path() -> Path:
    """Path of the TOML config file ($CHAINSYNC_CONFIG_FILE wins)."""
    env_path = os.getenv(CONFIG_FILE_ENV)
    if env_path:
        return Path(env_path)
    return get_default_data_dir(create=False) / "config.toml"
