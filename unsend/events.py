"""
Change events emitted by the observer.

A ChangeEvent is a tagged variant: each concrete class carries a fixed
``kind`` so consumers can dispatch on it or on the class.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Union


class EventKind(str, Enum):
    """Types of observer events."""

    ITEMS_ADDED = "items_added"
    ITEMS_MODIFIED = "items_modified"
    HEARTBEAT = "heartbeat"
    OBSERVER_ERROR = "observer_error"


@dataclass(frozen=True)
class ItemsAdded:
    """Changed ids with no tracked baseline yet."""

    kind: ClassVar[EventKind] = EventKind.ITEMS_ADDED
    ids: tuple[int, ...]


@dataclass(frozen=True)
class ItemsModified:
    """Tracked ids that changed or vanished since the last poll."""

    kind: ClassVar[EventKind] = EventKind.ITEMS_MODIFIED
    ids: tuple[int, ...]


@dataclass(frozen=True)
class Heartbeat:
    """The store's change signal moved; emitted once per changed tick."""

    kind: ClassVar[EventKind] = EventKind.HEARTBEAT
    log_size: int
    timestamp: datetime


@dataclass(frozen=True)
class ObserverError:
    kind: ClassVar[EventKind] = EventKind.OBSERVER_ERROR
    message: str


ChangeEvent = Union[ItemsAdded, ItemsModified, Heartbeat, ObserverError]


def format_event(event: ChangeEvent) -> str:
    """Format an event for human-readable display."""
    icon = {
        EventKind.ITEMS_ADDED: "+",
        EventKind.ITEMS_MODIFIED: "~",
        EventKind.HEARTBEAT: ".",
        EventKind.OBSERVER_ERROR: "!",
    }.get(event.kind, "?")

    if isinstance(event, (ItemsAdded, ItemsModified)):
        shown = ", ".join(str(i) for i in event.ids[:10])
        more = f" (+{len(event.ids) - 10} more)" if len(event.ids) > 10 else ""
        return f"{icon} [{event.kind.value}] {len(event.ids)} items: {shown}{more}"
    if isinstance(event, Heartbeat):
        return f"{icon} [{event.kind.value}] log size {event.log_size} bytes at {event.timestamp.isoformat()}"
    return f"{icon} [{event.kind.value}] {event.message}"
