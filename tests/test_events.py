"""
Tests for structured session events.

Verifies:
- Event validation and JSON serialisation
- Secret redaction before any sink sees an event
- EventCollector filtering and transitions
- JSONL files are append-only, one object per line
- timed_event records duration and error status
"""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from nbs_session.events import (
    REDACTED,
    Event,
    EventCollector,
    EventEmitter,
    EventType,
    JSONLEventSink,
    read_jsonl_events,
    redact,
)


class TestEvent:
    """Test the Event record."""

    def test_defaults(self) -> None:
        event = Event(event_type=EventType.STATE.value)
        assert event.timestamp > 0
        assert event.session is None
        assert event.data == {}

    def test_rejects_unknown_type(self) -> None:
        with pytest.raises(AssertionError, match="Invalid event_type"):
            Event(event_type="SHELL")

    def test_json_roundtrip(self) -> None:
        event = Event(
            event_type=EventType.AUTH.value,
            timestamp=1234.5,
            session="alice@example.com:22",
            data={"method": "password", "status": "success"},
        )
        assert Event.from_json(event.to_json()) == event

    def test_session_omitted_when_unset(self) -> None:
        raw = json.loads(Event(event_type="ERROR", timestamp=1.0).to_json())
        assert raw == {"event_type": "ERROR", "timestamp": 1.0, "data": {}}

    def test_unserialisable_values_stringified(self) -> None:
        event = Event(event_type=EventType.HOST_KEY.value, data={"path": Path("/tmp/kh")})
        assert json.loads(event.to_json())["data"]["path"] == "/tmp/kh"


class TestRedaction:
    """Secret values never reach a sink."""

    def test_redact_nested(self) -> None:
        data = {"method": "password", "password": "hunter2", "extra": {"Passphrase": "x"}}
        assert redact(data) == {
            "method": "password",
            "password": REDACTED,
            "extra": {"Passphrase": REDACTED},
        }

    def test_emitter_redacts(self) -> None:
        collector = EventCollector()
        EventEmitter(collector=collector).emit(EventType.AUTH, password="hunter2")
        assert collector.events[0].data == {"password": REDACTED}


class TestEventCollector:
    """Test the in-memory collector."""

    def test_get_by_type(self) -> None:
        collector = EventCollector()
        emitter = EventEmitter(collector=collector, session="bob@h:22")
        emitter.emit(EventType.STATE, old="disconnected", new="connecting")
        emitter.emit(EventType.CONNECT, status="connected")
        emitter.emit("STATE", old="connecting", new="connected")

        assert len(collector.events) == 3
        assert {e.session for e in collector.events} == {"bob@h:22"}
        assert len(collector.get_by_type("CONNECT")) == 1
        assert collector.transitions() == [
            ("disconnected", "connecting"),
            ("connecting", "connected"),
        ]

    def test_events_is_a_copy(self) -> None:
        collector = EventCollector()
        collector.emit(Event(event_type="ERROR"))
        collector.events.clear()
        assert len(collector.events) == 1
        collector.clear()
        assert collector.events == []

    def test_extra_sink(self) -> None:
        first = EventCollector()
        second = EventCollector()
        emitter = EventEmitter(collector=first)
        emitter.add_sink(second)
        emitter.emit(EventType.DISCONNECT, reason="normal")
        emitter.close()
        assert first.events == second.events


class TestJSONL:
    """Test JSONL writing and reading."""

    def test_one_line_per_event(self, temp_jsonl_path: Path) -> None:
        emitter = EventEmitter(jsonl_path=temp_jsonl_path)
        emitter.emit(EventType.CONNECT, status="initiating")
        emitter.emit(EventType.DISCONNECT, reason="normal")
        emitter.close()

        lines = temp_jsonl_path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["data"] == {"reason": "normal"}

    def test_appends(self, temp_jsonl_path: Path) -> None:
        with JSONLEventSink(temp_jsonl_path) as sink:
            sink.emit(Event(event_type="STATE"))
        with JSONLEventSink(temp_jsonl_path) as sink:
            sink.emit(Event(event_type="ERROR"))

        events = read_jsonl_events(temp_jsonl_path)
        assert [e.event_type for e in events] == ["STATE", "ERROR"]

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "events.jsonl"
        emitter = EventEmitter(jsonl_path=path)
        emitter.emit(EventType.AUTH, method="agent")
        emitter.close()
        assert read_jsonl_events(path)[0].data == {"method": "agent"}

    def test_emit_before_open(self, temp_jsonl_path: Path) -> None:
        sink = JSONLEventSink(temp_jsonl_path)
        with pytest.raises(AssertionError, match="not opened"):
            sink.emit(Event(event_type="STATE"))

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            read_jsonl_events(tmp_path / "absent.jsonl")


class TestTimedEvent:
    """Test the timed_event context manager."""

    def test_success(self) -> None:
        collector = EventCollector()
        emitter = EventEmitter(collector=collector)

        with emitter.timed_event(EventType.AUTH, method="password") as data:
            data["status"] = "success"

        (event,) = collector.events
        assert event.data["method"] == "password"
        assert event.data["status"] == "success"
        assert event.data["duration_ms"] >= 0

    def test_error_status(self) -> None:
        collector = EventCollector()
        emitter = EventEmitter(collector=collector)

        with pytest.raises(ValueError):
            with emitter.timed_event(EventType.CONNECT, host="h"):
                raise ValueError("boom")

        (event,) = collector.events
        assert event.data["status"] == "error"
        assert event.data["error_type"] == "ValueError"
        assert "duration_ms" in event.data

    def test_error_keeps_explicit_status(self) -> None:
        collector = EventCollector()
        emitter = EventEmitter(collector=collector)

        with pytest.raises(RuntimeError):
            with emitter.timed_event(EventType.AUTH) as data:
                data["status"] = "failed"
                raise RuntimeError("rejected")

        assert collector.events[0].data["status"] == "failed"
