"""
Diagnostic events for shell-session.

Two observational channels, neither of which affects control flow:

- Structured events (Event, EventCollector, EventEmitter): JSONL-friendly
  records of connects, auth, sends, receives, disconnects and errors.
- Trace lines (Tracer): human-readable "[label] message" status lines,
  emitted only while tracing is enabled.

Event types:
- CONNECT: Connection initiated/established/failed
- AUTH: Authentication challenge answered / password supplied
- SEND: Command line written to the shell stream
- RECEIVE: Inbound data drained and segmented
- DISCONNECT: Session torn down
- ERROR: Any error condition
- STATE_CHANGE: Session state machine transition
- TRACE: A trace line (only when tracing is enabled)
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Callable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Diagnostic event types."""
    CONNECT = "CONNECT"
    AUTH = "AUTH"
    SEND = "SEND"
    RECEIVE = "RECEIVE"
    DISCONNECT = "DISCONNECT"
    ERROR = "ERROR"
    STATE_CHANGE = "STATE_CHANGE"
    TRACE = "TRACE"


_EVENT_TYPES = frozenset(t.value for t in EventType)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class Event:
    """
    One diagnostic record.

    Attributes:
        event_type: EventType value
        timestamp: Unix time in milliseconds
        data: Structured payload; values that are not JSON types are
              written as str()
    """
    event_type: str
    timestamp: float = field(default_factory=_now_ms)
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        assert self.event_type in _EVENT_TYPES, \
            f"Invalid event_type '{self.event_type}'. Must be one of: {sorted(_EVENT_TYPES)}"
        assert self.timestamp > 0, f"Timestamp must be positive, got {self.timestamp}"

    def to_dict(self) -> dict[str, Any]:
        return {"event_type": self.event_type, "timestamp": self.timestamp, "data": self.data}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, line: str) -> "Event":
        record = json.loads(line)
        return cls(record["event_type"], record["timestamp"], record.get("data") or {})


class EventCollector:
    """In-memory event store, mainly for tests and the CLI --events dump."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def emit(self, event: Event) -> None:
        assert isinstance(event, Event), f"Expected Event, got {type(event).__name__}"
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        """Snapshot of everything collected so far."""
        return self._events[:]

    def clear(self) -> None:
        del self._events[:]

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        wanted = EventType(event_type).value
        return [event for event in self._events if event.event_type == wanted]


class JSONLEventWriter:
    """
    Appends events to a file as JSON lines.

    Each line is flushed as it is written, so a log being tailed during a
    field session is always complete up to the last event.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._file: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._path.open("a", encoding="utf-8")

    def close(self) -> None:
        handle, self._file = self._file, None
        if handle is not None:
            handle.close()

    def emit(self, event: Event) -> None:
        assert self._file is not None, "Writer not opened. Call open() first."
        print(event.to_json(), file=self._file, flush=True)

    def __enter__(self) -> "JSONLEventWriter":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class EventEmitter:
    """
    Builds events and hands them to the configured outputs.

    Outputs are an optional EventCollector and an optional JSONL file. An
    emitter with neither still returns each event it builds, which keeps
    the session code free of "is diagnostics on" checks.
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
    ) -> None:
        self._collector = collector
        self._writer: JSONLEventWriter | None = None
        if jsonl_path:
            self._writer = JSONLEventWriter(jsonl_path)
            self._writer.open()

    @property
    def collector(self) -> EventCollector | None:
        return self._collector

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        """
        Build an event from keyword data and dispatch it.

        Returns:
            The event, whether or not any output is configured
        """
        event = Event(EventType(event_type).value, data=data)
        if self._collector is not None:
            self._collector.emit(event)
        if self._writer is not None:
            self._writer.emit(event)
        return event

    def close(self) -> None:
        """Close the JSONL file, if any. Safe to call more than once."""
        if self._writer is not None:
            self._writer.close()
            self._writer = None


def read_jsonl_events(path: Path | str) -> list[Event]:
    """Load every event from a JSONL log, skipping blank lines."""
    path = Path(path)
    assert path.exists(), f"JSONL file not found: {path}"

    with path.open("r", encoding="utf-8") as f:
        return [Event.from_json(line) for line in f if line.strip()]


class Tracer:
    """
    Human-readable trace lines for one session.

    Lines have the form "[label] message". They go to the shell_session
    logger at INFO, to the optional trace_sink callable, and to the event
    emitter as TRACE events. Nothing is emitted while tracing is disabled.

    Usage:
        tracer = Tracer("Projector", enabled=True, sink=print)
        tracer("Connect() connection successful.")
    """

    def __init__(
        self,
        label: str,
        enabled: bool = False,
        sink: Callable[[str], None] | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        assert label, "Tracer label must be non-empty"
        self.label = label
        self.enabled = enabled
        self._sink = sink
        self._emitter = emitter

    def __call__(self, message: str) -> None:
        if not self.enabled:
            return

        line = f"[{self.label}] {message.strip()}"
        logger.info(line)

        if self._emitter is not None:
            self._emitter.emit(EventType.TRACE, label=self.label, message=message.strip())

        if self._sink is not None:
            try:
                self._sink(line)
            except Exception:
                logger.exception("Trace sink raised; ignoring")
