from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

UNKNOWN_USER_NAME = "Unknown User"


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    role: str = "student"
    avatar_url: Optional[str] = None


def unknown_profile(user_id: str = "") -> Profile:
    return Profile(id=user_id, name=UNKNOWN_USER_NAME)


@dataclass(frozen=True)
class Channel:
    id: str
    name: str
    type: str
    description: str = ""


@dataclass(frozen=True)
class Message:
    id: str
    channel_id: str
    user_id: str
    content: str
    created_at: datetime
    is_pinned: bool = False
    author: Optional[Profile] = None

    @property
    def timestamp(self) -> datetime:
        return self.created_at

    def with_author(self, author: Profile) -> "Message":
        return replace(self, author=author)


@dataclass(frozen=True)
class Member:
    id: str
    channel_id: str
    user_id: str
    joined_at: datetime
    profile: Optional[Profile] = None

    @property
    def timestamp(self) -> datetime:
        return self.joined_at

    def with_profile(self, profile: Profile) -> "Member":
        return replace(self, profile=profile)


@dataclass(frozen=True)
class TypingUser:
    user_id: str
    name: str
    started_at: float

    @property
    def id(self) -> str:
        return self.user_id

    @property
    def timestamp(self) -> float:
        return self.started_at


@dataclass(frozen=True)
class DirectMessage:
    id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    is_read: bool = False

    @property
    def timestamp(self) -> datetime:
        return self.created_at
