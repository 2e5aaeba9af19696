"""Runtime configuration.

Settings are read from the environment once at startup and passed into every
component explicitly. Nothing under tutor_api.core reads os.environ.
"""

import os
from dataclasses import dataclass


class ConfigError(Exception):
    """Required configuration (e.g. the generation credential) is missing."""
    pass


def _first_env(*names: str, default: str = "") -> str:
    """Return the first non-empty env var among several aliases."""
    for name in names:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Explicit configuration value for the tutor API.

    Attributes:
        api_key: Gemini credential. Empty means chat requests fail with 500.
        kv_url: Base URL of the REST key-value store, or "" when disabled.
        kv_token: Bearer token for the key-value store.
        course_id: Optional scope identifier used to namespace store keys.
        chat_model: Model used for full-context (fallback) invocations.
        cache_model: Model the shared context cache is created for.
        history_window: Max number of messages kept from the client log.
        cache_ttl_seconds: TTL requested for new cached contexts.
        cache_safety_margin_ms: Handles this close to expiry count as expired.
        request_deadline_seconds: Wall-clock budget for one chat request.
        kv_timeout_seconds: HTTP timeout for store calls.
        single_flight: Serialize provisioning per scope key inside one process.
        course_content_path: Optional file overriding the built-in course text.
    """
    api_key: str = ""
    kv_url: str = ""
    kv_token: str = ""
    course_id: str = ""
    chat_model: str = "gemini-2.5-flash"
    cache_model: str = "gemini-2.5-flash"
    history_window: int = 6
    cache_ttl_seconds: int = 3600
    cache_safety_margin_ms: int = 60_000
    request_deadline_seconds: float = 9.0
    kv_timeout_seconds: float = 5.0
    single_flight: bool = False
    course_content_path: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (Vercel/Upstash aliases supported)."""
        return cls(
            api_key=_first_env("GEMINI_API_KEY", "API_KEY", "VITE_API_KEY", "GOOGLE_API_KEY"),
            kv_url=_first_env("KV_REST_API_URL", "UPSTASH_REDIS_REST_URL", "STORAGE_REST_API_URL").rstrip("/"),
            kv_token=_first_env("KV_REST_API_TOKEN", "UPSTASH_REDIS_REST_TOKEN", "STORAGE_REST_API_TOKEN"),
            course_id=_first_env("COURSE_ID"),
            chat_model=_first_env("CHAT_MODEL", default="gemini-2.5-flash"),
            cache_model=_first_env("CACHE_MODEL", default="gemini-2.5-flash"),
            history_window=int(os.environ.get("HISTORY_WINDOW", "6")),
            cache_ttl_seconds=int(os.environ.get("CACHE_TTL_SECONDS", "3600")),
            cache_safety_margin_ms=int(os.environ.get("CACHE_SAFETY_MARGIN_MS", "60000")),
            request_deadline_seconds=float(os.environ.get("REQUEST_DEADLINE_SECONDS", "9")),
            kv_timeout_seconds=float(os.environ.get("KV_TIMEOUT_SECONDS", "5")),
            single_flight=_env_bool("CACHE_SINGLE_FLIGHT"),
            course_content_path=_first_env("COURSE_CONTENT_PATH"),
        )

    @property
    def kv_enabled(self) -> bool:
        return bool(self.kv_url and self.kv_token)

    @property
    def key_prefix(self) -> str:
        return f"{self.course_id}_" if self.course_id else ""

    @property
    def cache_key(self) -> str:
        """Store key holding the shared cache handle for this scope."""
        return f"{self.key_prefix}active_cache_info"

    def require_api_key(self) -> str:
        """Return the credential or raise ConfigError."""
        if not self.api_key:
            raise ConfigError("Missing or invalid generation API key")
        return self.api_key
