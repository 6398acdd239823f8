"""Signed-in session and storage interface."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol

from campuslive.core.entities import Profile


@dataclass
class Session:
    access_token: str
    user: Profile
    refresh_token: str | None = None
    expires_at: int | None = None

    @property
    def user_id(self) -> str:
        return self.user.id

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current >= self.expires_at


class StoragePort(Protocol):
    async def get_session(self) -> Session | None: ...

    async def save_session(self, session: Session) -> None: ...

    async def clear_session(self) -> None: ...

    async def get_profile(self, user_id: str) -> Profile | None: ...

    async def save_profile(self, profile: Profile) -> None: ...
