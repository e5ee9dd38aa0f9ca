"""In-process publish/subscribe channel owned by a cart store."""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[T], None]


class Channel(Generic[T]):
    """Synchronous fan-out of typed messages to registered listeners."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener[T]] = []

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, message: T) -> None:
        # Iterate over a copy in case listeners unsubscribe while handling.
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                _LOGGER.exception("Listener on %s channel failed", self.name)

    def __len__(self) -> int:
        return len(self._listeners)
