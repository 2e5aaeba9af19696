"""Course-scoped student profiles and dashboard config in the key-value store.

Plain read-modify-write, last writer wins.
"""

from typing import Any

import structlog

from tutor_api.core.kv_store import KVStore

logger = structlog.get_logger(__name__)


class ProfileSync:
    """Reads and writes `{prefix}global_profiles` and `{prefix}global_config`."""

    def __init__(self, store: KVStore | None, key_prefix: str = ""):
        self.store = store
        self.profiles_key = f"{key_prefix}global_profiles"
        self.config_key = f"{key_prefix}global_config"

    @property
    def enabled(self) -> bool:
        return self.store is not None and self.store.enabled

    async def get_profiles(self) -> list:
        value = await self.store.get_json(self.profiles_key, default=[])
        return value if isinstance(value, list) else []

    async def get_config(self) -> dict:
        value = await self.store.get_json(self.config_key, default={})
        return value if isinstance(value, dict) else {}

    async def save_config(self, data: Any) -> None:
        await self.store.set(self.config_key, data)
        logger.info("sync.config_saved")

    async def upsert_profile(self, profile: dict) -> list:
        """Replace the profile with the same id, or append it.

        Returns:
            The updated profile list as written.
        """
        profiles = await self.get_profiles()
        for i, existing in enumerate(profiles):
            if isinstance(existing, dict) and existing.get("id") == profile.get("id"):
                profiles[i] = profile
                break
        else:
            profiles.append(profile)

        await self.store.set(self.profiles_key, profiles)
        logger.info("sync.profile_saved", profile_id=profile.get("id"), total=len(profiles))
        return profiles
