"""Gemini context-cache provisioning.

Wraps the google-genai SDK to materialize the course payload as a shared
cachedContents entry that every request can reference by name.
"""

import time
from dataclasses import dataclass

import structlog
from google import genai
from google.genai import types

logger = structlog.get_logger(__name__)


class ProvisionError(Exception):
    """The backend refused or failed to create a cached context."""
    pass


@dataclass
class ProvisionedContext:
    """A freshly created cachedContents entry.

    Attributes:
        name: Resource name, e.g. "cachedContents/abc123".
        expires_at_ms: Expiry reported by the backend, epoch milliseconds.
    """
    name: str
    expires_at_ms: int


class GeminiBackend:
    """Creates shared cached contexts on the Gemini API."""

    def __init__(self, api_key: str, cache_model: str, client: genai.Client | None = None):
        self.cache_model = cache_model
        self._client = client or genai.Client(api_key=api_key)

    async def create_cached_context(
        self,
        payload: str,
        ttl_seconds: int,
        display_name: str = "cache_default",
    ) -> ProvisionedContext:
        """Upload payload as a cached context with the given TTL.

        Args:
            payload: Full instruction + course text.
            ttl_seconds: Requested lifetime of the cache on the backend.
            display_name: Human-readable label shown in the Gemini console.

        Returns:
            ProvisionedContext with the backend's name and expiry.

        Raises:
            ProvisionError: On any SDK or API failure (quota, too-small payload, network).
        """
        logger.info("gemini.cache_create", model=self.cache_model, ttl=ttl_seconds,
                    payload_chars=len(payload))
        started_ms = int(time.time() * 1000)
        try:
            cache = await self._client.aio.caches.create(
                model=self.cache_model,
                config=types.CreateCachedContentConfig(
                    display_name=display_name,
                    ttl=f"{ttl_seconds}s",
                    contents=[
                        types.Content(role="user", parts=[types.Part(text=payload)]),
                    ],
                ),
            )
        except Exception as e:
            logger.error("gemini.cache_create_failed", error=str(e))
            raise ProvisionError(f"Gemini cache creation failed: {e}") from e

        if not cache.name:
            raise ProvisionError("Gemini returned a cache without a name.")

        if cache.expire_time is not None:
            expires_at_ms = int(cache.expire_time.timestamp() * 1000)
        else:
            expires_at_ms = started_ms + ttl_seconds * 1000

        logger.info("gemini.cache_created", name=cache.name, expires_at_ms=expires_at_ms)
        return ProvisionedContext(name=cache.name, expires_at_ms=expires_at_ms)
