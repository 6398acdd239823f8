"""Cached profile lookups."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from campuslive.app.session import StoragePort
from campuslive.client.rest import RestClient, eq, in_
from campuslive.core.decode import decode_profile
from campuslive.core.entities import Profile, unknown_profile
from campuslive.core.errors import DecodeError, FetchError

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "id,name,role,avatar_url"


class ProfileDirectory:
    """Resolves user ids to profiles.

    Lookups go memory cache -> optional persistent storage -> REST. Concurrent
    lookups for the same id share one request, and a failed or missing lookup
    resolves to the "Unknown User" placeholder (which is not cached).
    """

    def __init__(self, rest: RestClient, storage: StoragePort | None = None) -> None:
        self.rest = rest
        self.storage = storage
        self._cache: dict[str, Profile] = {}
        self._inflight: dict[str, asyncio.Task[Profile]] = {}

    def cached(self, user_id: str) -> Profile | None:
        return self._cache.get(user_id)

    def remember(self, profile: Profile) -> None:
        self._cache[profile.id] = profile

    async def get(self, user_id: str) -> Profile:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached
        task = self._inflight.get(user_id)
        if task is None:
            task = asyncio.ensure_future(self._load(user_id))
            self._inflight[user_id] = task
            task.add_done_callback(lambda _t: self._inflight.pop(user_id, None))
        # shielded: a cancelled caller must not cancel the shared lookup
        return await asyncio.shield(task)

    async def prefetch(self, user_ids: Iterable[str]) -> dict[str, Profile]:
        user_ids = list(user_ids)
        wanted = sorted({uid for uid in user_ids if uid and uid not in self._cache})
        if wanted:
            try:
                rows = await self.rest.select("profiles", columns=PROFILE_COLUMNS, filters={"id": in_(wanted)})
            except FetchError as exc:
                logger.warning("profile prefetch failed: %s", exc)
                rows = []
            for row in rows:
                try:
                    profile = decode_profile(row)
                except DecodeError as exc:
                    logger.debug("skipping malformed profile row: %s", exc)
                    continue
                await self._store(profile)
        return {uid: self._cache[uid] for uid in user_ids if uid in self._cache}

    async def _load(self, user_id: str) -> Profile:
        if self.storage is not None:
            stored = await self.storage.get_profile(user_id)
            if stored is not None:
                self._cache[user_id] = stored
                return stored
        try:
            row = await self.rest.select_one("profiles", columns=PROFILE_COLUMNS, filters={"id": eq(user_id)})
        except FetchError as exc:
            logger.warning("profile lookup for %s failed: %s", user_id, exc)
            return unknown_profile(user_id)
        if row is None:
            return unknown_profile(user_id)
        try:
            profile = decode_profile(row)
        except DecodeError as exc:
            logger.warning("profile %s is malformed: %s", user_id, exc)
            return unknown_profile(user_id)
        await self._store(profile)
        return profile

    async def _store(self, profile: Profile) -> None:
        self._cache[profile.id] = profile
        if self.storage is not None:
            await self.storage.save_profile(profile)
