from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    BROADCAST = "broadcast"


class SubscriptionStatus(str, Enum):
    JOINING = "joining"
    SUBSCRIBED = "subscribed"
    RESUBSCRIBED = "resubscribed"
    ERRORED = "errored"
    CLOSED = "closed"


@dataclass
class ConnectionEvent:
    status: str  # "connecting", "open", "reconnecting", "close"
    reason: Any | None = None
    attempt: int = 0


@dataclass
class ChangeEvent:
    topic: str
    operation: Operation
    payload: dict[str, Any] = field(default_factory=dict)
    affected_id: str = ""
    old: dict[str, Any] = field(default_factory=dict)
    table: Optional[str] = None
    event: Optional[str] = None  # broadcast event name
    commit_timestamp: Optional[str] = None
