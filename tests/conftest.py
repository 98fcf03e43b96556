"""
Pytest fixtures for shell-session tests.

Provides:
- MockSSHServer fixture for integration tests (real asyncssh, port 0)
- Stub transport factory and stub shell stream for deterministic
  state-machine tests
- Recording sink and event collector fixtures
- wait_for helper for polling conditions on the event loop
"""
from __future__ import annotations

import asyncio
from collections import deque
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncGenerator, Callable, Generator

import pytest

if TYPE_CHECKING:
    from shell_session.events import EventCollector
    from shell_session.session import Session
    from shell_session.testing.mock_server import MockSSHServer


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll predicate on the event loop until it holds or timeout expires."""
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class RecordingSink:
    """EventSink that records every notification in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def on_connection_state(self, connected: bool) -> None:
        self.events.append(("state", connected))

    def on_data_chunk(self, chunk: str) -> None:
        self.events.append(("data", chunk))

    def on_initialized(self, ok: bool) -> None:
        self.events.append(("init", ok))

    @property
    def states(self) -> list[bool]:
        return [value for kind, value in self.events if kind == "state"]

    @property
    def chunks(self) -> list[str]:
        return [value for kind, value in self.events if kind == "data"]

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    @property
    def delivered(self) -> list[tuple[str, Any]]:
        """State and data notifications, without on_initialized."""
        return [(kind, value) for kind, value in self.events if kind != "init"]


# ---------------------------------------------------------------------------
# Stub transport / stream
# ---------------------------------------------------------------------------

class StubStream:
    """In-memory stand-in for ShellStream."""

    def __init__(
        self,
        on_data: Callable[[], None] | None = None,
        on_closed: Callable[[Exception | None], None] | None = None,
    ) -> None:
        self.on_data = on_data
        self.on_closed = on_closed
        self.buffer: deque[str] = deque()
        self.written: list[str] = []
        self.writable = True
        self.write_error: Exception | None = None
        self.closed = False
        self.close_count = 0

    @property
    def data_available(self) -> bool:
        return bool(self.buffer)

    def read(self) -> str:
        return self.buffer.popleft() if self.buffer else ""

    @property
    def can_write(self) -> bool:
        return self.writable and not self.closed

    def write_line(self, line: str, terminator: str = "\n") -> None:
        if self.write_error is not None:
            raise self.write_error
        self.written.append(line + terminator)

    def close(self) -> None:
        self.closed = True
        self.close_count += 1

    # Test controls

    def push(self, text: str) -> None:
        """Simulate inbound data followed by a data-available notification."""
        self.buffer.append(text)
        if self.on_data is not None:
            self.on_data()

    def remote_close(self, exc: Exception | None = None) -> None:
        """Simulate the remote end closing the channel."""
        if self.on_closed is not None:
            self.on_closed(exc)


class StubTransport:
    """In-memory stand-in for SSHTransport."""

    def __init__(
        self,
        factory: "StubTransportFactory",
        on_lost: Callable[[Exception | None], None] | None,
    ) -> None:
        self._factory = factory
        self._on_lost = on_lost
        self.connected = True
        self.closed = False
        self.close_count = 0
        self.stream: StubStream | None = None

    @property
    def is_connected(self) -> bool:
        return self.connected and not self.closed

    async def open_shell(
        self,
        terminal: Any,
        encoding: str = "utf-8",
        on_data: Callable[[], None] | None = None,
        on_closed: Callable[[Exception | None], None] | None = None,
    ) -> StubStream:
        self._factory.shell_calls += 1
        self._factory.last_terminal = terminal
        if self._factory.shell_gate is not None:
            await self._factory.shell_gate.wait()
        if self._factory.shell_error is not None:
            raise self._factory.shell_error

        self.stream = StubStream(on_data=on_data, on_closed=on_closed)
        if self._factory.early_data:
            self.stream.push(self._factory.early_data)
        return self.stream

    def close(self) -> None:
        self.closed = True
        self.close_count += 1

    async def wait_closed(self) -> None:
        pass

    def drop(self, exc: Exception | None = None) -> None:
        """Simulate the transport failing underneath the session."""
        self.connected = False
        if self._on_lost is not None:
            self._on_lost(exc if exc is not None else ConnectionResetError("reset by peer"))


class StubTransportFactory:
    """
    Transport factory double for Session(transport_factory=...).

    Controls:
        error: Raised from the handshake instead of connecting
        gate: Handshake waits on this event before completing
        shell_error: Raised from open_shell()
        shell_gate: open_shell() waits on this event
        early_data: Pushed into the stream before the session publishes CONNECTED
    """

    def __init__(self) -> None:
        self.calls = 0
        self.shell_calls = 0
        self.transports: list[StubTransport] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.shell_error: Exception | None = None
        self.shell_gate: asyncio.Event | None = None
        self.early_data: str | None = None
        self.last_config: Any = None
        self.last_mediator: Any = None
        self.last_terminal: Any = None

    async def __call__(
        self,
        config: Any,
        mediator: Any,
        trust_policy: Any,
        on_lost: Callable[[Exception | None], None] | None = None,
    ) -> StubTransport:
        self.calls += 1
        self.last_config = config
        self.last_mediator = mediator
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

        transport = StubTransport(self, on_lost)
        self.transports.append(transport)
        return transport

    @property
    def transport(self) -> StubTransport:
        assert self.transports, "No transport created yet"
        return self.transports[-1]

    @property
    def stream(self) -> StubStream:
        stream = self.transport.stream
        assert stream is not None, "No stream opened yet"
        return stream


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def event_collector() -> Generator["EventCollector", None, None]:
    """
    Fixture for capturing and asserting event sequences.

    Usage:
        def test_example(event_collector):
            session = Session(config, emitter=EventEmitter(collector=event_collector))
            ...
            assert event_collector.get_by_type("CONNECT")
    """
    from shell_session.events import EventCollector

    collector = EventCollector()
    yield collector
    collector.clear()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def stub_factory() -> StubTransportFactory:
    return StubTransportFactory()


@pytest.fixture
def session_config():
    """Scenario A credentials: op@10.0.0.5:22."""
    from shell_session.config import SessionConfig

    return SessionConfig.create("10.0.0.5", 22, "op", "s3cr3t", label="Projector")


@pytest.fixture
def trace_lines() -> list[str]:
    return []


@pytest.fixture
def session(
    session_config,
    recording_sink: RecordingSink,
    stub_factory: StubTransportFactory,
    event_collector: "EventCollector",
    trace_lines: list[str],
) -> "Session":
    """Initialised Session wired to the stub transport and recording sink."""
    from shell_session.events import EventEmitter
    from shell_session.session import Session

    return Session(
        session_config,
        sink=recording_sink,
        transport_factory=stub_factory,
        trace_sink=trace_lines.append,
        emitter=EventEmitter(collector=event_collector),
    )


@pytest.fixture
async def mock_ssh_server() -> AsyncGenerator["MockSSHServer", None]:
    """
    Fixture providing a MockSSHServer for integration tests.

    Usage:
        @pytest.mark.asyncio
        async def test_example(mock_ssh_server):
            config = SessionConfig.create("127.0.0.1", mock_ssh_server.port, "test", "test")
            ...
    """
    from shell_session.testing.mock_server import MockServerConfig, MockSSHServer

    config = MockServerConfig(
        username="test",
        password="test",
        shell_replies={"status": "OK\n"},
    )

    async with MockSSHServer(config) as server:
        yield server


@pytest.fixture
def temp_jsonl_path(tmp_path: Path) -> Path:
    """Provide a temporary path for JSONL event log output."""
    return tmp_path / "events.jsonl"
