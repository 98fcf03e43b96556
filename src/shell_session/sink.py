"""
Outbound event interface to the embedding application.

A Session holds exactly one EventSink, set at construction. The session
calls it synchronously on its event loop, so sink methods must return
promptly; an application that wants to await events should use QueueSink
and consume the queue from its own task.

Provides:
- EventSink: the protocol (connection state, data chunks, initialised)
- CallbackSink: adapts plain callables
- QueueSink: pushes ConnectionEvent / DataChunk items onto an asyncio.Queue
- NullSink: discards everything
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Protocol, Union, runtime_checkable


@runtime_checkable
class EventSink(Protocol):
    """Receives connection-state transitions and inbound chunks."""

    def on_connection_state(self, connected: bool) -> None:
        """Called once per CONNECTED or DISCONNECTED transition."""
        ...

    def on_data_chunk(self, chunk: str) -> None:
        """Called once per bounded-size chunk, in production order."""
        ...

    def on_initialized(self, ok: bool) -> None:
        """Called after Session.initialize() with the validation outcome."""
        ...


class NullSink:
    """Sink that discards every event."""

    def on_connection_state(self, connected: bool) -> None:
        pass

    def on_data_chunk(self, chunk: str) -> None:
        pass

    def on_initialized(self, ok: bool) -> None:
        pass


class CallbackSink:
    """
    Sink built from plain callables; any of them may be omitted.

    Usage:
        sink = CallbackSink(
            on_connection_state=lambda up: print("online" if up else "offline"),
            on_data_chunk=print,
        )
    """

    def __init__(
        self,
        on_connection_state: Callable[[bool], None] | None = None,
        on_data_chunk: Callable[[str], None] | None = None,
        on_initialized: Callable[[bool], None] | None = None,
    ) -> None:
        self._on_connection_state = on_connection_state
        self._on_data_chunk = on_data_chunk
        self._on_initialized = on_initialized

    def on_connection_state(self, connected: bool) -> None:
        if self._on_connection_state is not None:
            self._on_connection_state(connected)

    def on_data_chunk(self, chunk: str) -> None:
        if self._on_data_chunk is not None:
            self._on_data_chunk(chunk)

    def on_initialized(self, ok: bool) -> None:
        if self._on_initialized is not None:
            self._on_initialized(ok)


@dataclass(frozen=True)
class ConnectionEvent:
    """Connection state transition as queued by QueueSink."""
    connected: bool


@dataclass(frozen=True)
class DataChunk:
    """One inbound chunk as queued by QueueSink."""
    data: str


SinkItem = Union[ConnectionEvent, DataChunk]


class QueueSink:
    """
    Sink that queues events for an async consumer.

    The queue is unbounded so the session never blocks on delivery;
    ordering is the order the session produced them.

    Usage:
        sink = QueueSink()
        session = Session(config, sink=sink)
        async for item in sink:
            ...
    """

    def __init__(self, queue: asyncio.Queue[SinkItem] | None = None) -> None:
        self.queue: asyncio.Queue[SinkItem] = queue if queue is not None else asyncio.Queue()

    def on_connection_state(self, connected: bool) -> None:
        self.queue.put_nowait(ConnectionEvent(connected))

    def on_data_chunk(self, chunk: str) -> None:
        self.queue.put_nowait(DataChunk(chunk))

    def on_initialized(self, ok: bool) -> None:
        pass

    async def get(self) -> SinkItem:
        return await self.queue.get()

    def __aiter__(self) -> AsyncIterator[SinkItem]:
        return self

    async def __anext__(self) -> SinkItem:
        return await self.queue.get()
