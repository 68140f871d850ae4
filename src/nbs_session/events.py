"""
Structured session events.

Every state change and every operation outcome of a Session is emitted as an
Event and handed to each registered sink: an in-memory EventCollector for
tests and inspection, a JSONLEventSink for an append-only log file, or any
object with emit() and close().

Event types:
- CONNECT: connect attempted, completed or failed
- HOST_KEY: fingerprint computed, known_hosts checked or appended
- AUTH: authentication attempted, succeeded or failed
- STATE: lifecycle state transition
- DISCONNECT: transport released
- ERROR: any error recorded as the session's last error

A JSONL line looks like:
    {"event_type": "STATE", "timestamp": 1718000000000.0,
     "session": "alice@example.com:22",
     "data": {"old": "connecting", "new": "connected"}}

Values under secret-looking keys (password, passphrase, ...) are replaced
with "[REDACTED]" before any sink sees them.
"""
from __future__ import annotations

import json
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Iterator, Protocol

REDACTED = "[REDACTED]"

REDACT_KEYS = frozenset({
    "password",
    "passphrase",
    "private_key",
    "responses",
    "secret",
})


class EventType(str, Enum):
    """Session event types for structured logging."""
    CONNECT = "CONNECT"
    HOST_KEY = "HOST_KEY"
    AUTH = "AUTH"
    STATE = "STATE"
    DISCONNECT = "DISCONNECT"
    ERROR = "ERROR"


def redact(data: dict[str, Any]) -> dict[str, Any]:
    """Copy data with secret values replaced, descending into nested dicts."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() in REDACT_KEYS:
            result[key] = REDACTED
        elif isinstance(value, dict):
            result[key] = redact(value)
        else:
            result[key] = value
    return result


@dataclass(frozen=True)
class Event:
    """
    One session event.

    Attributes:
        event_type: An EventType value
        timestamp: Unix time in milliseconds
        session: "user@host:port" of the emitting session, if any
        data: Event-specific fields
    """
    event_type: str
    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    session: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        valid_types = {e.value for e in EventType}
        assert self.event_type in valid_types, \
            f"Invalid event_type '{self.event_type}'. Must be one of: {valid_types}"
        assert self.timestamp > 0, \
            f"Timestamp must be positive, got {self.timestamp}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"event_type": self.event_type, "timestamp": self.timestamp}
        if self.session is not None:
            result["session"] = self.session
        result["data"] = self.data
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        raw = json.loads(json_str)
        return cls(
            event_type=raw["event_type"],
            timestamp=raw["timestamp"],
            session=raw.get("session"),
            data=raw.get("data", {}),
        )


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------

class EventCollector:
    """
    Keeps events in memory.

    Shared between sessions it simply interleaves their events; filter on
    Event.session to separate them.
    """

    def __init__(self) -> None:
        self._events: list[Event] = []

    def emit(self, event: Event) -> None:
        assert isinstance(event, Event), f"Expected Event, got {type(event)}"
        self._events.append(event)

    def close(self) -> None:
        pass

    @property
    def events(self) -> list[Event]:
        """A copy of the collected events."""
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        if isinstance(event_type, EventType):
            event_type = event_type.value
        return [e for e in self._events if e.event_type == event_type]

    def transitions(self) -> list[tuple[str, str]]:
        """(old, new) pairs of every STATE event, in order."""
        return [
            (e.data["old"], e.data["new"])
            for e in self.get_by_type(EventType.STATE)
        ]


class JSONLEventSink:
    """
    Appends events to a JSONL file, one line per event, flushed per write.

    The file and its directory are created on open().
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._file: IO[str] | None = None

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "a", encoding="utf-8")

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def emit(self, event: Event) -> None:
        assert self._file is not None, "Sink not opened. Call open() first."
        self._file.write(event.to_json() + "\n")
        self._file.flush()

    def __enter__(self) -> "JSONLEventSink":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Emitter
# ---------------------------------------------------------------------------

class EventEmitter:
    """
    Builds events for one session and fans them out to its sinks.

    Args:
        collector: Optional in-memory sink
        jsonl_path: Optional JSONL file, opened immediately
        session: Label stamped on every event
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
        session: str | None = None,
    ) -> None:
        self.session = session
        self._sinks: list[EventSink] = []
        self._owned: list[EventSink] = []

        if collector is not None:
            self._sinks.append(collector)
        if jsonl_path:
            sink = JSONLEventSink(jsonl_path)
            sink.open()
            self._sinks.append(sink)
            self._owned.append(sink)

    def add_sink(self, sink: EventSink) -> None:
        """Register an extra sink. The caller keeps ownership of it."""
        self._sinks.append(sink)

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        """
        Create an event, redact it and hand it to every sink.

        Returns:
            The emitted event
        """
        if isinstance(event_type, EventType):
            event_type = event_type.value

        event = Event(event_type=event_type, session=self.session, data=redact(data))
        for sink in self._sinks:
            sink.emit(event)
        return event

    def close(self) -> None:
        """Close the sinks this emitter opened itself."""
        for sink in self._owned:
            sink.close()
            self._sinks.remove(sink)
        self._owned.clear()

    @contextmanager
    def timed_event(
        self,
        event_type: str | EventType,
        **initial_data: Any,
    ) -> Iterator[dict[str, Any]]:
        """
        Time the body and emit one event when it finishes.

        duration_ms is added on exit. If the body raises, status becomes
        "error" and error_type the exception name, unless the body already
        set them.

        Usage:
            with emitter.timed_event(EventType.AUTH, method="password") as data:
                await attempt()
                data["status"] = "success"
        """
        start_ms = time.time() * 1000
        event_data = dict(initial_data)

        try:
            yield event_data
        except BaseException as exc:
            event_data.setdefault("status", "error")
            event_data.setdefault("error_type", type(exc).__name__)
            raise
        finally:
            event_data["duration_ms"] = (time.time() * 1000) - start_ms
            self.emit(event_type, **event_data)


def iter_jsonl_events(path: Path | str) -> Iterator[Event]:
    """Yield events from a JSONL file, skipping blank lines."""
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                yield Event.from_json(line)


def read_jsonl_events(path: Path | str) -> list[Event]:
    """
    Read all events from a JSONL file.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    return list(iter_jsonl_events(path))
