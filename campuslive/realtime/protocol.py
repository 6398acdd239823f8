"""Phoenix channel frames as spoken by the realtime endpoint (JSON, vsn 1.0.0)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from campuslive.core.errors import DecodeError
from campuslive.defaults.config import PHOENIX_TOPIC, REALTIME_TOPIC_PREFIX

PHX_JOIN = "phx_join"
PHX_LEAVE = "phx_leave"
PHX_REPLY = "phx_reply"
PHX_CLOSE = "phx_close"
PHX_ERROR = "phx_error"
HEARTBEAT = "heartbeat"
ACCESS_TOKEN = "access_token"
POSTGRES_CHANGES = "postgres_changes"
BROADCAST = "broadcast"
SYSTEM = "system"

CHANGE_EVENTS = frozenset({POSTGRES_CHANGES, BROADCAST})


@dataclass
class Frame:
    topic: str
    event: str
    payload: dict[str, Any] = field(default_factory=dict)
    ref: str | None = None
    join_ref: str | None = None


@dataclass(frozen=True)
class EqFilter:
    """Equality predicate over a single column."""

    column: str
    value: str

    def __post_init__(self) -> None:
        if not self.column:
            raise ValueError("filter column must be non-empty")

    def render(self) -> str:
        return f"{self.column}=eq.{self.value}"


def wire_topic(topic: str) -> str:
    if not topic:
        raise ValueError("topic must be non-empty")
    if topic.startswith(REALTIME_TOPIC_PREFIX):
        return topic
    return REALTIME_TOPIC_PREFIX + topic


def encode_frame(frame: Frame) -> str:
    return json.dumps(
        {
            "topic": frame.topic,
            "event": frame.event,
            "payload": frame.payload,
            "ref": frame.ref,
            "join_ref": frame.join_ref,
        },
        separators=(",", ":"),
    )


def decode_frame(raw: str) -> Frame:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"frame is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise DecodeError("frame must be a JSON object")
    topic = data.get("topic")
    event = data.get("event")
    if not isinstance(topic, str) or not isinstance(event, str):
        raise DecodeError("frame without topic or event", field="topic" if not isinstance(topic, str) else "event")
    payload = data.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise DecodeError("frame payload must be an object", field="payload")
    ref = data.get("ref")
    join_ref = data.get("join_ref")
    return Frame(
        topic=topic,
        event=event,
        payload=payload,
        ref=str(ref) if ref is not None else None,
        join_ref=str(join_ref) if join_ref is not None else None,
    )


def build_join_payload(
    *,
    table: str | None = None,
    filter: EqFilter | None = None,
    schema: str = "public",
    access_token: str | None = None,
) -> dict[str, Any]:
    postgres_changes: list[dict[str, Any]] = []
    if table is not None:
        binding: dict[str, Any] = {"event": "*", "schema": schema, "table": table}
        if filter is not None:
            binding["filter"] = filter.render()
        postgres_changes.append(binding)
    payload: dict[str, Any] = {
        "config": {
            "broadcast": {"ack": False, "self": False},
            "presence": {"key": ""},
            "postgres_changes": postgres_changes,
            "private": False,
        }
    }
    if access_token:
        payload["access_token"] = access_token
    return payload


def heartbeat_frame(ref: str) -> Frame:
    return Frame(topic=PHOENIX_TOPIC, event=HEARTBEAT, payload={}, ref=ref)


def broadcast_payload(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"type": BROADCAST, "event": event, "payload": payload}


def reply_status(frame: Frame) -> tuple[str, dict[str, Any]]:
    status = frame.payload.get("status")
    response = frame.payload.get("response")
    if not isinstance(response, dict):
        response = {}
    return (status if isinstance(status, str) else "error"), response
