"""Configuration management for the focus ledger server and CLI."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".focus-ledger" / "ledger.db"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 7788
DEFAULT_TICK_SECONDS = 1.0


@dataclass
class LedgerConfig:
    db_path: Path = DEFAULT_DB_PATH
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    tick_seconds: float = DEFAULT_TICK_SECONDS

    @property
    def base_url(self) -> str:
        """Where local clients reach the server. Wildcard binds are reached over loopback."""
        host = DEFAULT_HOST if self.host in ("", "0.0.0.0", "::") else self.host
        return f"http://{host}:{self.port}"


def _env_number(name: str, default, cast):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r, using %r", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %r", name, raw, default)
        return default
    return value


def get_config() -> LedgerConfig:
    """Build configuration from FOCUS_LEDGER_* environment variables."""
    db_path = os.environ.get("FOCUS_LEDGER_DB")
    return LedgerConfig(
        db_path=Path(db_path).expanduser() if db_path else DEFAULT_DB_PATH,
        host=os.environ.get("FOCUS_LEDGER_HOST", DEFAULT_HOST),
        port=_env_number("FOCUS_LEDGER_PORT", DEFAULT_PORT, int),
        tick_seconds=_env_number("FOCUS_LEDGER_TICK_SECONDS", DEFAULT_TICK_SECONDS, float),
    )
