import asyncio
import json
from typing import Any

import aiosqlite

from campuslive.app.session import Session
from campuslive.core.entities import Profile

_SESSION_KEY = "current"


class SQLiteStorage:
    """
    Async SQLite store for the signed-in session and the profile cache.
    """
    def __init__(self, db_path: str = "campuslive.db"):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def connect(self):
        if not self._db:
            self._db = await aiosqlite.connect(self.db_path)
            await self._init_db()

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None

    async def _init_db(self):
        await self._db.execute('''
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                data TEXT
            )
        ''')
        await self._db.execute('''
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                data TEXT
            )
        ''')
        await self._db.commit()

    def _session_to_json(self, session: Session) -> str:
        return json.dumps({
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "expires_at": session.expires_at,
            "user": self._profile_to_dict(session.user),
        })

    def _session_from_json(self, data: str) -> Session:
        d = json.loads(data)
        return Session(
            access_token=d["access_token"],
            refresh_token=d.get("refresh_token"),
            expires_at=d.get("expires_at"),
            user=Profile(**d["user"]),
        )

    @staticmethod
    def _profile_to_dict(profile: Profile) -> dict[str, Any]:
        return {
            "id": profile.id,
            "name": profile.name,
            "role": profile.role,
            "avatar_url": profile.avatar_url,
        }

    async def get_session(self) -> Session | None:
        await self.connect()
        async with self._lock:
            async with self._db.execute("SELECT data FROM sessions WHERE id = ?", (_SESSION_KEY,)) as cursor:
                row = await cursor.fetchone()
                if row:
                    return self._session_from_json(row[0])
        return None

    async def save_session(self, session: Session) -> None:
        await self.connect()
        async with self._lock:
            await self._db.execute(
                "INSERT OR REPLACE INTO sessions (id, data) VALUES (?, ?)",
                (_SESSION_KEY, self._session_to_json(session)),
            )
            await self._db.commit()

    async def clear_session(self) -> None:
        await self.connect()
        async with self._lock:
            await self._db.execute("DELETE FROM sessions WHERE id = ?", (_SESSION_KEY,))
            await self._db.commit()

    async def get_profile(self, user_id: str) -> Profile | None:
        await self.connect()
        async with self._lock:
            async with self._db.execute("SELECT data FROM profiles WHERE id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
                if row:
                    return Profile(**json.loads(row[0]))
        return None

    async def save_profile(self, profile: Profile) -> None:
        await self.connect()
        async with self._lock:
            await self._db.execute(
                "INSERT OR REPLACE INTO profiles (id, data) VALUES (?, ?)",
                (profile.id, json.dumps(self._profile_to_dict(profile))),
            )
            await self._db.commit()
