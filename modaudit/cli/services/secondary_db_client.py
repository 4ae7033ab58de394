"""Client for the independent hash-indexed mod database.

The database only answers "do you know this SHA-256?" with a display name,
so a hit identifies an archive but carries no size or version to audit.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional
from urllib.parse import quote

import httpx

from .registry_client import Found, NotFound, RegistryResult, TransportError

logger = logging.getLogger(__name__)


class SecondaryDbClient:
    DEFAULT_TIMEOUT = 10.0  # seconds

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout)
            return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "SecondaryDbClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def lookup(self, sha256: str) -> RegistryResult[str]:
        """Return the display name recorded for ``sha256``."""
        try:
            response = self._get_client().get(f"/{quote(sha256, safe='')}")
        except httpx.HTTPError as exc:
            logger.debug("Secondary database lookup failed: %s", exc)
            return TransportError(f"Unable to reach secondary database: {exc}")

        if response.status_code == 404:
            return NotFound()
        if response.status_code != 200:
            return TransportError(
                f"Secondary database returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError:
            return TransportError("Invalid JSON from secondary database")

        name = payload.get("name") if isinstance(payload, dict) else None
        if not isinstance(name, str) or not name.strip():
            return NotFound()
        return Found(name.strip())
