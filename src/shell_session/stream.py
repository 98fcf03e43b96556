"""
Interactive shell stream and the reader loop that drains it.

ShellStream wraps the single asyncssh channel a session opens. asyncssh
pushes inbound data into it from the event loop; the stream buffers every
payload (stdout and stderr, in arrival order) and notifies its owner that
data is available. The owner then calls drain_stream(), which takes
everything buffered at that moment without ever waiting for more.

The owner is notified through two plain callables:

- on_data(): data has been buffered
- on_closed(exc): the channel closed; exc is None for an orderly close
"""
from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable

import asyncssh

logger = logging.getLogger(__name__)


class _ShellChannelSession(asyncssh.SSHClientSession):
    """asyncssh session protocol that forwards into a ShellStream."""

    def __init__(self, stream: "ShellStream") -> None:
        self._stream = stream

    def data_received(self, data: str, datatype: asyncssh.DataType) -> None:
        self._stream.feed(data)

    def eof_received(self) -> bool:
        # Returning False lets asyncssh close the channel, which ends in
        # connection_lost(None) below.
        logger.debug("Shell stream received EOF")
        return False

    def connection_lost(self, exc: Exception | None) -> None:
        self._stream.mark_closed(exc)


class ShellStream:
    """
    Buffered, writable interactive shell stream.

    Usage:
        stream = ShellStream(on_data=..., on_closed=...)
        chan, _ = await conn.create_session(stream.session_factory, ...)
        stream.attach(chan)
    """

    def __init__(
        self,
        on_data: Callable[[], None] | None = None,
        on_closed: Callable[[Exception | None], None] | None = None,
    ) -> None:
        self._on_data = on_data
        self._on_closed = on_closed
        self._buffer: deque[str] = deque()
        self._channel: Any = None
        self._closed = False

    def session_factory(self) -> asyncssh.SSHClientSession:
        """Factory handed to asyncssh create_session()."""
        return _ShellChannelSession(self)

    def attach(self, channel: Any) -> None:
        """Bind the opened asyncssh channel."""
        assert self._channel is None, "ShellStream already attached"
        self._channel = channel

    # -----------------------------------------------------------------------
    # Inbound
    # -----------------------------------------------------------------------

    @property
    def data_available(self) -> bool:
        """True while buffered data remains unread."""
        return bool(self._buffer)

    def read(self) -> str:
        """Take the oldest buffered payload; empty string if none."""
        if not self._buffer:
            return ""
        return self._buffer.popleft()

    def feed(self, data: str) -> None:
        """Buffer an inbound payload and notify the owner."""
        if not data or self._closed:
            return
        self._buffer.append(data)
        if self._on_data is not None:
            self._on_data()

    def mark_closed(self, exc: Exception | None) -> None:
        """Record that the channel has gone; notifies the owner once."""
        if self._closed:
            return
        self._closed = True
        if exc is not None:
            logger.debug("Shell stream closed with error: %s", exc)
        if self._on_closed is not None:
            self._on_closed(exc)

    # -----------------------------------------------------------------------
    # Outbound
    # -----------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def can_write(self) -> bool:
        """True if the channel is open and accepting writes."""
        if self._closed or self._channel is None:
            return False
        return not self._channel.is_closing()

    def write_line(self, line: str, terminator: str = "\n") -> None:
        """
        Write one command line followed by the terminator.

        Raises:
            BrokenPipeError: If no channel is attached
            Exception: Whatever the channel raises on write
        """
        if self._channel is None:
            raise BrokenPipeError("Shell stream channel not open")
        self._channel.write(line + terminator)

    def close(self) -> None:
        """Close the channel. Owner notifications are suppressed from here on."""
        self._on_data = None
        self._on_closed = None
        self._closed = True
        if self._channel is not None:
            self._channel.close()


def drain_stream(stream: Any) -> str:
    """
    Read everything currently buffered on stream and coalesce it.

    Never waits for more data: the loop stops as soon as the stream
    reports nothing available.
    """
    parts: list[str] = []
    while stream.data_available:
        parts.append(stream.read())
    return "".join(parts)
