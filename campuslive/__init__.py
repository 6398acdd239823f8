"""Realtime view synchronisation for the campus community portal."""

__version__ = "0.1.0"

__all__ = [
    "Portal",
    "open_portal",
    "Session",
    "ChannelScreen",
    "DirectMessagesScreen",
    "LiveList",
    "merge",
    "RealtimeClient",
    "EqFilter",
    "ChangeEvent",
    "Operation",
    "CampusLiveError",
    "SubscribeError",
    "FetchError",
    "DecodeError",
]


def __getattr__(name: str) -> object:
    """Lazy exports so importing the package does not pull in network dependencies."""
    if name in {"Portal", "open_portal"}:
        from .app.portal import Portal, open_portal

        return {"Portal": Portal, "open_portal": open_portal}[name]

    if name == "Session":
        from .app.session import Session

        return Session

    if name in {"ChannelScreen", "DirectMessagesScreen"}:
        from .app.channel import ChannelScreen
        from .app.direct import DirectMessagesScreen

        return {"ChannelScreen": ChannelScreen, "DirectMessagesScreen": DirectMessagesScreen}[name]

    if name in {"LiveList", "merge"}:
        from .sync.live_list import LiveList
        from .sync.merge import merge

        return {"LiveList": LiveList, "merge": merge}[name]

    if name in {"RealtimeClient", "EqFilter"}:
        from .realtime.client import RealtimeClient
        from .realtime.protocol import EqFilter

        return {"RealtimeClient": RealtimeClient, "EqFilter": EqFilter}[name]

    if name in {"ChangeEvent", "Operation"}:
        from .core.events import ChangeEvent, Operation

        return {"ChangeEvent": ChangeEvent, "Operation": Operation}[name]

    if name in {"CampusLiveError", "SubscribeError", "FetchError", "DecodeError"}:
        from .core.errors import CampusLiveError, DecodeError, FetchError, SubscribeError

        return {
            "CampusLiveError": CampusLiveError,
            "SubscribeError": SubscribeError,
            "FetchError": FetchError,
            "DecodeError": DecodeError,
        }[name]

    raise AttributeError(f"module 'campuslive' has no attribute {name!r}")
