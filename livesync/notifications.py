"""Notification port: fire-and-forget messages for the toast layer."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from config.logging_config import logger


class NotificationKind(str, Enum):
    ENTITY_ADDED   = "entity-added"
    ENTITY_UPDATED = "entity-updated"
    ENTITY_DELETED = "entity-deleted"


@dataclass(frozen=True)
class Notification:
    kind:         NotificationKind
    collection:   str
    id:           str
    display_name: str


Listener = Callable[[Notification], None]


class Notifier:
    """Synchronous fan-out to registered listeners. No acknowledgment."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def register(self, listener: Listener) -> Callable[[], None]:
        """Add a listener; returns a callable that removes it again."""
        self._listeners.append(listener)

        def unregister() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unregister

    def emit(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception(f"Notification listener failed for {notification.kind.value}")
