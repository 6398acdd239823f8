"""Per-screen list state with change listeners."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from typing import Generic, TypeVar

T = TypeVar("T")

Listener = Callable[[list[T]], None]

logger = logging.getLogger(__name__)


class ViewStore(Generic[T]):
    """Holds the rendered list of one screen.

    Owned exclusively by a single live list; listeners are the rendering side
    and receive a fresh copy on every change.
    """

    def __init__(self) -> None:
        self._items: list[T] = []
        self._listeners: list[Listener[T]] = []
        self.version = 0

    @property
    def items(self) -> list[T]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def ids(self) -> list[str]:
        return [str(getattr(item, "id")) for item in self._items]

    def get(self, item_id: str) -> T | None:
        for item in self._items:
            if str(getattr(item, "id")) == item_id:
                return item
        return None

    def listen(self, listener: Listener[T]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def set(self, items: Sequence[T]) -> None:
        if list(items) == self._items:
            return
        self._items = list(items)
        self.version += 1
        snapshot = list(self._items)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                logger.warning("view listener failed: %s", exc, exc_info=True)

    def clear(self) -> None:
        self.set([])
