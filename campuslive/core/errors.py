from enum import IntEnum
from typing import Optional


class CampusLiveError(Exception):
    """Base exception for campuslive."""
    pass


class ConnectionError(CampusLiveError):
    """Raised when the realtime socket cannot be reached or used."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SubscribeError(CampusLiveError):
    """Raised when a topic join is rejected, times out or collides."""
    def __init__(self, message: str, topic: Optional[str] = None):
        super().__init__(message)
        self.topic = topic


class FetchError(CampusLiveError):
    """Raised when a REST read or write fails."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(CampusLiveError):
    """Raised when a backend record does not have the expected shape."""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class CloseReason(IntEnum):
    """Websocket close codes (RFC 6455) carried as ``ConnectionError.status_code``."""
    NORMAL = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    ABNORMAL = 1006
    POLICY_VIOLATION = 1008
    INTERNAL_ERROR = 1011
    SERVICE_RESTART = 1012
    TRY_AGAIN_LATER = 1013
