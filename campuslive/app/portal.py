"""Explicit dependency bundle handed to every screen."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from campuslive.app.session import Session, StoragePort
from campuslive.client.profiles import ProfileDirectory
from campuslive.client.rest import RestClient
from campuslive.core.errors import CampusLiveError
from campuslive.defaults.config import DEFAULT_REALTIME_CONFIG, PortalSettings, settings_from_env
from campuslive.realtime.client import RealtimeClient
from campuslive.sync.scheduler import LoopScheduler, Scheduler

logger = logging.getLogger(__name__)


@dataclass
class Portal:
    session: Session
    rest: RestClient
    realtime: RealtimeClient
    profiles: ProfileDirectory
    config: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_REALTIME_CONFIG))
    scheduler: Scheduler = field(default_factory=LoopScheduler)
    storage: StoragePort | None = None

    @classmethod
    def create(
        cls,
        settings: PortalSettings,
        session: Session,
        *,
        storage: StoragePort | None = None,
        **config_overrides: Any,
    ) -> "Portal":
        config = {**DEFAULT_REALTIME_CONFIG, **config_overrides}
        rest = RestClient(
            settings.rest_url,
            settings.anon_key,
            access_token=session.access_token,
            timeout=float(config["request_timeout"]),
        )
        realtime = RealtimeClient(
            settings.realtime_url,
            settings.anon_key,
            access_token=session.access_token,
            **config_overrides,
        )
        profiles = ProfileDirectory(rest, storage)
        profiles.remember(session.user)
        return cls(
            session=session,
            rest=rest,
            realtime=realtime,
            profiles=profiles,
            config=config,
            storage=storage,
        )

    async def start(self) -> None:
        await self.realtime.connect()

    async def close(self) -> None:
        await self.realtime.disconnect()
        await self.rest.aclose()

    async def update_session(self, session: Session) -> None:
        """Swap in a refreshed token without rebuilding the screens."""
        self.session = session
        self.rest.access_token = session.access_token
        await self.realtime.set_access_token(session.access_token)
        if self.storage is not None:
            await self.storage.save_session(session)


async def open_portal(
    settings: PortalSettings | None = None,
    *,
    storage: StoragePort | None = None,
    **config_overrides: Any,
) -> Portal:
    """Restore the stored session and connect the realtime socket."""
    settings = settings or settings_from_env()
    if storage is None:
        from campuslive.infra.storage_sqlite import SQLiteStorage

        storage = SQLiteStorage(settings.session_db)
    session = await storage.get_session()
    if session is None:
        raise CampusLiveError("no stored session; sign in through the portal first")
    if session.is_expired():
        raise CampusLiveError("stored session has expired; sign in again")
    portal = Portal.create(settings, session, storage=storage, **config_overrides)
    await portal.start()
    logger.info("portal ready for %s", session.user.name)
    return portal
