"""Async client for the REST key-value store (Upstash / Vercel KV).

Only GET and SET are used. Values are stored as JSON text; depending on the
backend, GET may hand back either the decoded object or the JSON string, so
callers go through decode_value().
"""

import json
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)

# RuntimeError covers requests on a client that was already closed.
_TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError, RuntimeError, ValueError)


class StoreError(Exception):
    """Transport or protocol failure talking to the key-value store."""
    pass


def decode_value(raw: Any) -> Any:
    """Decode a stored value that may be an object or (nested) JSON text.

    Returns None for missing values. Raises ValueError on undecodable text.
    """
    value = raw
    # Some writers double-encode, so unwrap strings until we hit a non-string.
    for _ in range(3):
        if not isinstance(value, (str, bytes)):
            return value
        if not value:
            return None
        value = json.loads(value)
    return value


class KVStore:
    """Thin wrapper over the REST API with bearer auth."""

    def __init__(self, url: str, token: str, timeout: float = 5.0,
                 client: httpx.AsyncClient | None = None):
        self._url = (url or "").rstrip("/")
        self._token = token or ""
        self._client = client
        self._owns_client = client is None
        if self.enabled and self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._url,
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=timeout,
            )

    @property
    def enabled(self) -> bool:
        return bool(self._url and self._token)

    def is_healthy(self) -> bool:
        return self.enabled and self._client is not None

    async def get(self, key: str) -> Any:
        """Fetch the raw "result" for key (None when absent).

        Raises:
            StoreError: If the store is disabled, unreachable or replies with an error.
        """
        if not self.is_healthy():
            raise StoreError("Key-value store is not configured.")
        try:
            response = await self._client.get(f"/get/{key}")
            response.raise_for_status()
            payload = response.json()
        except _TRANSPORT_ERRORS as e:
            raise StoreError(f"GET {key} failed: {e}") from e

        if isinstance(payload, dict) and payload.get("error"):
            raise StoreError(f"GET {key} failed: {payload['error']}")
        result = payload.get("result") if isinstance(payload, dict) else None
        logger.debug("kv.get", key=key, found=result is not None)
        return result

    async def get_json(self, key: str, default: Any = None) -> Any:
        """GET and decode. Undecodable values raise StoreError."""
        raw = await self.get(key)
        try:
            value = decode_value(raw)
        except ValueError as e:
            raise StoreError(f"GET {key} returned invalid JSON: {e}") from e
        return default if value is None else value

    async def set(self, key: str, value: Any, ex: int | None = None) -> None:
        """Store value (JSON-encoded unless already a string) with optional TTL in seconds.

        Raises:
            StoreError: If the write fails.
        """
        if not self.is_healthy():
            raise StoreError("Key-value store is not configured.")
        body = value if isinstance(value, str) else json.dumps(value)
        params = {"EX": str(ex)} if ex else None
        try:
            response = await self._client.post(f"/set/{key}", content=body, params=params)
            response.raise_for_status()
            payload = response.json()
        except _TRANSPORT_ERRORS as e:
            raise StoreError(f"SET {key} failed: {e}") from e

        if isinstance(payload, dict) and payload.get("error"):
            raise StoreError(f"SET {key} failed: {payload['error']}")
        logger.debug("kv.set", key=key, ttl=ex)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
