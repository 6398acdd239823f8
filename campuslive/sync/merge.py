"""Pure reconciliation of an ordered list with one change event.

Nothing in here performs I/O or mutates its inputs; every function returns a
new list.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Callable, Iterable, Sequence
from operator import attrgetter
from typing import Any, TypeVar

from campuslive.core.events import ChangeEvent, Operation

T = TypeVar("T")

Decoder = Callable[[dict[str, Any]], T]

default_key = attrgetter("id")
default_timestamp = attrgetter("timestamp")


def _index_of(items: Sequence[T], item_id: str, key: Callable[[T], Any]) -> int:
    for index, item in enumerate(items):
        if str(key(item)) == item_id:
            return index
    return -1


def insert_ordered(
    items: Sequence[T],
    item: T,
    *,
    timestamp: Callable[[T], Any] = default_timestamp,
) -> list[T]:
    """Insert after every item with a timestamp <= the new one's."""
    stamps = [timestamp(existing) for existing in items]
    position = bisect_right(stamps, timestamp(item))
    result = list(items)
    result.insert(position, item)
    return result


def apply_item(
    items: Sequence[T],
    operation: Operation,
    item_id: str,
    item: T | None = None,
    *,
    key: Callable[[T], Any] = default_key,
    timestamp: Callable[[T], Any] = default_timestamp,
) -> list[T]:
    """Apply an already decoded item to ``items``."""
    index = _index_of(items, item_id, key)

    if operation is Operation.DELETE:
        if index < 0:
            return list(items)
        return [existing for position, existing in enumerate(items) if position != index]

    if operation is Operation.BROADCAST or item is None:
        return list(items)

    if operation is Operation.INSERT:
        if index >= 0:
            return list(items)
        return insert_ordered(items, item, timestamp=timestamp)

    if operation is Operation.UPDATE:
        if index < 0:
            return insert_ordered(items, item, timestamp=timestamp)
        result = list(items)
        result[index] = item
        return result

    return list(items)


def merge(
    current: Sequence[T],
    event: ChangeEvent,
    decode: Decoder[T],
    *,
    key: Callable[[T], Any] = default_key,
    timestamp: Callable[[T], Any] = default_timestamp,
) -> list[T]:
    """Fold ``event`` into ``current``.

    insert: no-op when the id is present, else ordered insert.
    update: replace in place, insert when absent.
    delete: remove, no-op when absent.
    broadcast: unchanged.

    Raises ``DecodeError`` (from ``decode``) when the row is malformed.
    """
    if event.operation in (Operation.DELETE, Operation.BROADCAST):
        return apply_item(current, event.operation, event.affected_id, key=key, timestamp=timestamp)
    item = decode(event.payload)
    return apply_item(current, event.operation, event.affected_id, item, key=key, timestamp=timestamp)


def bulk_load(
    rows: Iterable[T],
    *,
    key: Callable[[T], Any] = default_key,
    timestamp: Callable[[T], Any] = default_timestamp,
) -> list[T]:
    """Build an initial snapshot with the same dedupe and ordering rules."""
    result: list[T] = []
    for row in rows:
        result = apply_item(result, Operation.INSERT, str(key(row)), row, key=key, timestamp=timestamp)
    return result
