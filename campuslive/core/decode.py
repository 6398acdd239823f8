"""Boundary decoding from loosely typed backend records into entities.

Every decoder fails fast with :class:`DecodeError` naming the offending field
instead of letting ``None`` or a missing key leak into view state.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from campuslive.core.entities import (
    Channel,
    DirectMessage,
    Member,
    Message,
    Profile,
    unknown_profile,
)
from campuslive.core.errors import DecodeError
from campuslive.core.events import ChangeEvent, Operation

_ROW_OPERATIONS = {
    "INSERT": Operation.INSERT,
    "UPDATE": Operation.UPDATE,
    "DELETE": Operation.DELETE,
}

PROFILE_ROLES = frozenset({"student", "academic", "nonacademic"})
CHANNEL_TYPES = frozenset({"year", "course", "department", "interest"})


def _require_mapping(value: Any, field: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise DecodeError(f"{field} must be an object, got {type(value).__name__}", field=field)
    return value


def _str(row: Mapping[str, Any], field: str) -> str:
    value = row.get(field)
    if isinstance(value, str) and value:
        return value
    # numeric primary keys are valid ids too
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise DecodeError(f"missing or invalid {field!r}", field=field)


def _optional_str(row: Mapping[str, Any], field: str, default: str | None = None) -> str | None:
    value = row.get(field)
    if value is None:
        return default
    if not isinstance(value, str):
        raise DecodeError(f"{field!r} must be a string", field=field)
    return value


def _bool(row: Mapping[str, Any], field: str, default: bool = False) -> bool:
    value = row.get(field)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise DecodeError(f"{field!r} must be a boolean", field=field)
    return value


_ISO_TIMESTAMP = re.compile(
    r"(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>Z|[+-]\d{2}(?::?\d{2})?)?"
)


def _normalise_iso(text: str) -> str:
    # Postgres trims fractional zeros and short offsets; fromisoformat on 3.10 wants 6 digits and +HH:MM
    match = _ISO_TIMESTAMP.fullmatch(text)
    if match is None:
        return text
    normalised = match["base"]
    if match["fraction"]:
        normalised += "." + match["fraction"][:6].ljust(6, "0")
    offset = match["offset"]
    if offset == "Z":
        normalised += "+00:00"
    elif offset:
        digits = offset[1:].replace(":", "")
        normalised += f"{offset[0]}{digits[:2]}:{digits[2:] or '00'}"
    return normalised


def parse_timestamp(value: Any, field: str = "timestamp") -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(_normalise_iso(value))
        except ValueError as exc:
            raise DecodeError(f"{field!r} is not an ISO-8601 timestamp: {value!r}", field=field) from exc
    else:
        raise DecodeError(f"missing or invalid {field!r}", field=field)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def decode_profile(row: Any) -> Profile:
    row = _require_mapping(row, "profile")
    role = _optional_str(row, "role", "student") or "student"
    if role not in PROFILE_ROLES:
        raise DecodeError(f"unknown role {role!r}", field="role")
    return Profile(
        id=_str(row, "id"),
        name=_str(row, "name"),
        role=role,
        avatar_url=_optional_str(row, "avatar_url"),
    )


def _joined_profile(row: Mapping[str, Any], user_id: str) -> Profile | None:
    joined = row.get("profiles")
    if joined is None:
        return None
    try:
        return decode_profile(joined)
    except DecodeError:
        return unknown_profile(user_id)


def decode_channel(row: Any) -> Channel:
    row = _require_mapping(row, "channel")
    kind = _str(row, "type")
    if kind not in CHANNEL_TYPES:
        raise DecodeError(f"unknown channel type {kind!r}", field="type")
    return Channel(
        id=_str(row, "id"),
        name=_str(row, "name"),
        type=kind,
        description=_optional_str(row, "description", "") or "",
    )


def decode_message(row: Any) -> Message:
    row = _require_mapping(row, "message")
    user_id = _str(row, "user_id")
    content = row.get("content")
    if not isinstance(content, str):
        raise DecodeError("missing or invalid 'content'", field="content")
    return Message(
        id=_str(row, "id"),
        channel_id=_str(row, "channel_id"),
        user_id=user_id,
        content=content,
        created_at=parse_timestamp(row.get("created_at"), "created_at"),
        is_pinned=_bool(row, "is_pinned"),
        author=_joined_profile(row, user_id),
    )


def decode_member(row: Any) -> Member:
    row = _require_mapping(row, "member")
    user_id = _str(row, "user_id")
    return Member(
        id=_str(row, "id"),
        channel_id=_str(row, "channel_id"),
        user_id=user_id,
        joined_at=parse_timestamp(row.get("joined_at"), "joined_at"),
        profile=_joined_profile(row, user_id),
    )


def decode_direct_message(row: Any) -> DirectMessage:
    row = _require_mapping(row, "direct_message")
    content = row.get("content")
    if not isinstance(content, str):
        raise DecodeError("missing or invalid 'content'", field="content")
    return DirectMessage(
        id=_str(row, "id"),
        sender_id=_str(row, "sender_id"),
        receiver_id=_str(row, "receiver_id"),
        content=content,
        created_at=parse_timestamp(row.get("created_at"), "created_at"),
        is_read=_bool(row, "is_read"),
    )


def decode_change(topic: str, event: str, payload: Any) -> ChangeEvent:
    """Decode a ``postgres_changes`` or ``broadcast`` frame payload."""
    payload = _require_mapping(payload, "payload")

    if event == "broadcast":
        name = payload.get("event")
        if not isinstance(name, str) or not name:
            raise DecodeError("broadcast without event name", field="event")
        body = payload.get("payload") or {}
        body = _require_mapping(body, "payload")
        return ChangeEvent(
            topic=topic,
            operation=Operation.BROADCAST,
            payload=dict(body),
            affected_id=str(body.get("user_id") or body.get("id") or ""),
            event=name,
        )

    if event != "postgres_changes":
        raise DecodeError(f"unsupported change event {event!r}", field="event")

    data = _require_mapping(payload.get("data"), "data")
    kind = data.get("type") or data.get("eventType")
    operation = _ROW_OPERATIONS.get(str(kind).upper()) if kind else None
    if operation is None:
        raise DecodeError(f"unknown row operation {kind!r}", field="type")

    record = data.get("record", data.get("new")) or {}
    old = data.get("old_record", data.get("old")) or {}
    record = _require_mapping(record, "record")
    old = _require_mapping(old, "old_record")

    image = old if operation is Operation.DELETE else record
    affected = image.get("id")
    if affected is None or affected == "":
        raise DecodeError("change without primary key 'id'", field="id")

    return ChangeEvent(
        topic=topic,
        operation=operation,
        payload=dict(record),
        affected_id=str(affected),
        old=dict(old),
        table=data.get("table"),
        commit_timestamp=data.get("commit_timestamp"),
    )
