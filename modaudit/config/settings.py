from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from ..scanner.integrity import TAMPER_THRESHOLD_BYTES

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://api.modrinth.com/v2"
DEFAULT_USER_AGENT = "modaudit/0.1.0"


@dataclass(slots=True)
class ScannerSettings:
    """
    Runtime knobs for a scan run.

    Values come from ``MODAUDIT_*`` environment variables (a ``.env`` file
    in the working directory is honoured); anything unset or unparsable
    keeps its default.
    """

    registry_url: str = DEFAULT_REGISTRY_URL
    secondary_db_url: Optional[str] = None
    request_timeout: float = 10.0
    max_workers: int = 4
    tamper_threshold_bytes: int = TAMPER_THRESHOLD_BYTES
    max_entry_bytes: int = 16 * 1024 * 1024
    search_limit: int = 10
    user_agent: str = DEFAULT_USER_AGENT
    prefer_strings_utility: bool = True
    strings_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "ScannerSettings":
        load_dotenv(find_dotenv(usecwd=True))
        defaults = cls()
        return cls(
            registry_url=(os.getenv("MODAUDIT_REGISTRY_URL") or defaults.registry_url).rstrip("/"),
            secondary_db_url=(os.getenv("MODAUDIT_SECONDARY_DB_URL") or "").rstrip("/") or None,
            request_timeout=_float_env("MODAUDIT_TIMEOUT", defaults.request_timeout),
            max_workers=max(1, _int_env("MODAUDIT_WORKERS", defaults.max_workers)),
            tamper_threshold_bytes=_int_env("MODAUDIT_TAMPER_THRESHOLD", defaults.tamper_threshold_bytes),
            max_entry_bytes=_int_env("MODAUDIT_MAX_ENTRY_BYTES", defaults.max_entry_bytes),
            search_limit=max(1, _int_env("MODAUDIT_SEARCH_LIMIT", defaults.search_limit)),
            user_agent=os.getenv("MODAUDIT_USER_AGENT") or defaults.user_agent,
            prefer_strings_utility=os.getenv("MODAUDIT_USE_STRINGS", "1").lower() not in {"0", "false", "no"},
            strings_timeout=_float_env("MODAUDIT_STRINGS_TIMEOUT", defaults.strings_timeout),
        )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer", name, raw)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, raw)
        return default
