# Overview: Bounded in-memory log of QuickBooks sync, webhook and token events.

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from flask import current_app

from ..time_utils import to_utc_z, utcnow


DEFAULT_CAPACITY = 500
EXTENSION_KEY = "shopfloor.sync_log"


@dataclass(frozen=True)
class SyncEvent:
    level: str
    source: str
    message: str
    occurred_at: object = field(default_factory=utcnow)
    details: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "source": self.source,
            "message": self.message,
            "occurredAt": to_utc_z(self.occurred_at),
            "details": self.details or {},
        }


class SyncEventLog:
    """
    Ring buffer of recent integration events for the diagnostics endpoint.

    One instance per application (see init_app); tests build their own.
    Oldest events fall off once capacity is reached.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._events: deque[SyncEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(self, level: str, source: str, message: str, **details) -> SyncEvent:
        event = SyncEvent(level=level.upper(), source=source, message=message, details=details or None)
        with self._lock:
            self._events.append(event)
        return event

    def info(self, source: str, message: str, **details) -> SyncEvent:
        return self.record("INFO", source, message, **details)

    def warning(self, source: str, message: str, **details) -> SyncEvent:
        return self.record("WARNING", source, message, **details)

    def error(self, source: str, message: str, **details) -> SyncEvent:
        return self.record("ERROR", source, message, **details)

    def recent(self, limit: Optional[int] = None, *, level: Optional[str] = None, source: Optional[str] = None) -> list[SyncEvent]:
        """Newest first."""
        with self._lock:
            events = list(self._events)
        events.reverse()
        if level:
            events = [e for e in events if e.level == level.upper()]
        if source:
            events = [e for e in events if e.source == source]
        if limit is not None:
            events = events[:limit]
        return events

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def init_app(self, app) -> "SyncEventLog":
        app.extensions[EXTENSION_KEY] = self
        return self


def get_sync_log() -> SyncEventLog:
    """The current application's event log."""
    log = current_app.extensions.get(EXTENSION_KEY)
    if log is None:
        log = SyncEventLog(current_app.config.get("SYNC_LOG_CAPACITY", DEFAULT_CAPACITY))
        log.init_app(current_app)
    return log
