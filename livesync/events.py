"""
Change Events
=============
Closed set of row-change events delivered by the change stream, and the
parser that turns raw Realtime ``postgres_changes`` payloads into them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union


class EventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ALL    = "*"

    def admits(self, other: "EventType") -> bool:
        return self is EventType.ALL or self is other


@dataclass(frozen=True)
class Inserted:
    record: dict[str, Any]

    event_type = EventType.INSERT

    @property
    def record_id(self) -> str:
        return str(self.record["id"])


@dataclass(frozen=True)
class Updated:
    new: dict[str, Any]
    old: dict[str, Any] = field(default_factory=dict)

    event_type = EventType.UPDATE

    @property
    def record_id(self) -> str:
        return str(self.new["id"])


@dataclass(frozen=True)
class Deleted:
    id: str
    old: dict[str, Any] = field(default_factory=dict)

    event_type = EventType.DELETE

    @property
    def record_id(self) -> str:
        return self.id


ChangeEvent = Union[Inserted, Updated, Deleted]


def parse_change_payload(payload: Mapping[str, Any]) -> ChangeEvent:
    """
    Build a ChangeEvent from a Realtime message.

    Accepts both the flattened shape (``eventType`` / ``new`` / ``old``) and
    the wire shape nested under ``data`` (``type`` / ``record`` /
    ``old_record``).
    """
    data = payload.get("data", payload)
    if not isinstance(data, Mapping):
        raise ValueError(f"Malformed change payload: {payload!r}")

    raw_type = data.get("eventType") or data.get("type")
    new = data.get("new") or data.get("record") or {}
    old = data.get("old") or data.get("old_record") or {}

    try:
        event_type = EventType(str(raw_type).upper())
    except ValueError:
        raise ValueError(f"Unknown change event type: {raw_type!r}") from None

    if event_type is EventType.INSERT:
        if "id" not in new:
            raise ValueError("INSERT payload has no record id")
        return Inserted(record=dict(new))

    if event_type is EventType.UPDATE:
        if "id" not in new:
            raise ValueError("UPDATE payload has no record id")
        return Updated(new=dict(new), old=dict(old))

    if event_type is EventType.DELETE:
        if "id" not in old:
            raise ValueError("DELETE payload has no record id")
        return Deleted(id=str(old["id"]), old=dict(old))

    raise ValueError(f"Change payload cannot carry event type {event_type.value}")
