"""
Single source of truth for the chainsync version.
"""

from __future__ import annotations

__version__ = "0.3.0"

# Sent to the Electrum server in the server.version handshake
CLIENT_NAME = f"chainsync/{__version__}"
