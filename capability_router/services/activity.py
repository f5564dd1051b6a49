"""
Activity events: a privacy-first narrative stream of routing decisions.

Events describe what the router decided in first person ("I need to check the
weather") and never carry message content, requester ids or secrets. The
store is an in-memory ring buffer meant for a polling UI; nothing here is part
of the router's return contract.
"""

from __future__ import annotations

import itertools
import re
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..core.config import ActivitySettings

__all__ = [
    "ActivityEvent",
    "ActivityEventStore",
    "ActivityEventType",
    "ActivitySink",
    "api_narrative",
    "redact_sensitive",
]

_SNOWFLAKE_RE = re.compile(r"\b\d{17,20}\b")
_TOKEN_RE = re.compile(r"\b[A-Za-z0-9_\-]{32,}\b")

_API_NARRATIVES = {
    "accuweather": "check the weather",
    "weather": "check the weather",
    "comfyui": "create some images",
    "nfl": "look up NFL data",
    "serpapi": "search the web",
    "ollama": "think about that",
}


class ActivityEventType(str, Enum):
    MESSAGE_RECEIVED = "message_received"
    ROUTING_DECISION = "routing_decision"
    BOT_REPLY = "bot_reply"
    ERROR = "error"
    WARNING = "warning"


class ActivityEvent(BaseModel):
    id: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: ActivityEventType
    narrative: str
    metadata: dict[str, str | int | float | bool] = Field(default_factory=dict)


@runtime_checkable
class ActivitySink(Protocol):
    def emit(
        self,
        event_type: ActivityEventType,
        narrative: str,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityEvent | None: ...


def api_narrative(api: str) -> str:
    return _API_NARRATIVES.get(api.lower(), f"use {api}")


def redact_sensitive(text: str) -> str:
    """Strip platform ids and key-like tokens from free-form narrative text."""
    result = _SNOWFLAKE_RE.sub("[redacted-id]", text)
    return _TOKEN_RE.sub("[redacted-token]", result)


class ActivityEventStore:
    """Bounded, thread-safe ring buffer of sanitized activity events."""

    def __init__(
        self,
        *,
        capacity: int = 100,
        max_event_age_seconds: float = 4 * 60 * 60,
        routing_dedupe_seconds: float = 5.0,
    ) -> None:
        self._events: deque[ActivityEvent] = deque(maxlen=capacity)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._max_age = timedelta(seconds=max_event_age_seconds)
        self._dedupe_window = timedelta(seconds=routing_dedupe_seconds)
        self._last_routing: tuple[str, datetime] | None = None

    @classmethod
    def from_settings(cls, settings: ActivitySettings) -> "ActivityEventStore":
        return cls(
            capacity=settings.capacity,
            max_event_age_seconds=settings.max_event_age_seconds,
            routing_dedupe_seconds=settings.routing_dedupe_seconds,
        )

    def emit(
        self,
        event_type: ActivityEventType,
        narrative: str,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityEvent | None:
        now = datetime.now(timezone.utc)
        clean_metadata = {
            str(key): redact_sensitive(value) if isinstance(value, str) else value
            for key, value in (metadata or {}).items()
            if isinstance(value, (str, int, float, bool))
        }
        clean_narrative = redact_sensitive(narrative)
        with self._lock:
            if event_type is ActivityEventType.ROUTING_DECISION:
                fingerprint = f"{clean_narrative}|{sorted(clean_metadata.items())}"
                if self._last_routing is not None:
                    last_fingerprint, last_at = self._last_routing
                    if fingerprint == last_fingerprint and now - last_at < self._dedupe_window:
                        return None
                self._last_routing = (fingerprint, now)
            event = ActivityEvent(
                id=next(self._ids),
                timestamp=now,
                type=event_type,
                narrative=clean_narrative,
                metadata=clean_metadata,
            )
            self._events.append(event)
            self._groom(now)
        return event

    def recent(self, count: int = 50) -> list[ActivityEvent]:
        """Return up to ``count`` events, newest first."""
        with self._lock:
            self._groom(datetime.now(timezone.utc))
            events = list(self._events)
        return list(reversed(events))[: max(0, count)]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._last_routing = None

    def _groom(self, now: datetime) -> None:
        cutoff = now - self._max_age
        while self._events and self._events[0].timestamp < cutoff:
            self._events.popleft()
