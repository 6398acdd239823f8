"""Default realtime and data-access configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass

REALTIME_PATH = "/realtime/v1/websocket"
REST_PATH = "/rest/v1"
REALTIME_TOPIC_PREFIX = "realtime:"
PHOENIX_TOPIC = "phoenix"

TYPING_EVENT = "typing"
TYPING_STOPPED_EVENT = "typing_stopped"

DEFAULT_REALTIME_CONFIG = {
    "realtime_vsn": "1.0.0",
    "connect_timeout": 20.0,
    "join_timeout": 10.0,
    "heartbeat_interval": 25.0,
    "reconnect_base_delay": 1.0,
    "reconnect_max_delay": 30.0,
    "max_reconnect_attempts": None,
    "auto_reconnect": True,
    "typing_interval": 2.0,
    "typing_expiry": 6.0,
    "request_timeout": 10.0,
}


@dataclass
class PortalSettings:
    url: str
    anon_key: str
    session_db: str = "campuslive.db"
    log_level: str = "INFO"

    @property
    def rest_url(self) -> str:
        return self.url.rstrip("/") + REST_PATH

    @property
    def realtime_url(self) -> str:
        base = self.url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return base + REALTIME_PATH


def settings_from_env() -> PortalSettings:
    url = os.getenv("CAMPUSLIVE_URL") or os.getenv("SUPABASE_URL")
    key = os.getenv("CAMPUSLIVE_ANON_KEY") or os.getenv("SUPABASE_ANON_KEY")
    if not url or not key:
        raise RuntimeError("Backend URL and anon key must be set (CAMPUSLIVE_URL / CAMPUSLIVE_ANON_KEY).")
    return PortalSettings(
        url=url,
        anon_key=key,
        session_db=os.getenv("CAMPUSLIVE_SESSION_DB", "campuslive.db"),
        log_level=os.getenv("CAMPUSLIVE_LOG_LEVEL", "INFO").upper(),
    )
