"""
Blocking facade over a Session for thread-based callers.

SessionClient owns a private event loop running in a daemon thread and a
Session bound to that loop. Its methods may be called from any other
thread; each one is marshalled onto the loop with
asyncio.run_coroutine_threadsafe() and blocks until it completes.

The surface is deliberately narrow: initialize, connect, disconnect, send,
an integer trace flag and the connection state. Callbacks are invoked on
the loop thread.

Usage:
    with SessionClient(on_data=print) as client:
        client.initialize("10.0.0.5", 22, "op", "s3cr3t")
        client.connect()
        client.send("status")
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Coroutine, TypeVar

from shell_session.config import SessionConfig
from shell_session.errors import ConfigurationError, SessionError
from shell_session.events import EventEmitter
from shell_session.host_key import HostTrustPolicy
from shell_session.session import Session, SessionState, TransportFactory
from shell_session.sink import CallbackSink

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionClient:
    """Thread-safe, blocking wrapper around one Session."""

    def __init__(
        self,
        on_connection_state: Callable[[bool], None] | None = None,
        on_data: Callable[[str], None] | None = None,
        on_initialized: Callable[[bool], None] | None = None,
        trace_sink: Callable[[str], None] | None = None,
        trust_policy: HostTrustPolicy | None = None,
        transport_factory: TransportFactory | None = None,
        emitter: EventEmitter | None = None,
        call_timeout: float | None = None,
    ) -> None:
        """
        Start the loop thread and create the session on it.

        Args:
            on_connection_state: Called with True/False on each transition
            on_data: Called with each inbound chunk
            on_initialized: Called with the initialize() outcome
            trace_sink: Receives trace lines when tracing is enabled
            trust_policy: Host key policy (default: trust all)
            transport_factory: Transport factory override (tests)
            emitter: Structured diagnostic events
            call_timeout: Seconds to wait for each blocking call (None: forever)
        """
        self._sink = CallbackSink(
            on_connection_state=on_connection_state,
            on_data_chunk=on_data,
            on_initialized=on_initialized,
        )
        self._call_timeout = call_timeout
        self._closed = False

        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="shell-session-loop", daemon=True,
        )
        self._thread.start()

        async def create() -> Session:
            return Session(
                sink=self._sink,
                trust_policy=trust_policy,
                transport_factory=transport_factory,
                trace_sink=trace_sink,
                emitter=emitter,
            )

        self._session = self._call(create())

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _call(self, coro: Coroutine[Any, Any, T]) -> T:
        assert threading.current_thread() is not self._thread, \
            "SessionClient methods must not be called from its own loop thread"
        if self._closed:
            coro.close()
            raise RuntimeError("SessionClient is closed")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result(self._call_timeout)

    # -----------------------------------------------------------------------
    # Public surface
    # -----------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def connected(self) -> bool:
        return self._session.is_connected

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def last_error(self) -> SessionError | None:
        return self._session.last_error

    @property
    def trace_enabled(self) -> int:
        """Trace flag as 0/1 for control programs that only pass integers."""
        return 1 if self._session.trace_enabled else 0

    @trace_enabled.setter
    def trace_enabled(self, value: int) -> None:
        enabled = bool(value)

        async def apply() -> None:
            self._session.trace_enabled = enabled

        self._call(apply())

    def initialize(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        label: str | None = None,
        **options: Any,
    ) -> bool:
        """
        Validate and install connection parameters.

        Returns:
            True if the parameters were accepted
        """
        async def apply() -> bool:
            try:
                config = SessionConfig.create(
                    host, port, username, password, label=label, **options,
                )
            except ConfigurationError as e:
                logger.error("Invalid session parameters: %s", e)
                try:
                    self._sink.on_initialized(False)
                except Exception:
                    logger.exception("on_initialized callback raised")
                return False

            try:
                self._session.initialize(config)
            except ConfigurationError as e:
                logger.error("Cannot initialise session: %s", e)
                return False
            return True

        return self._call(apply())

    def connect(self) -> bool:
        """Connect; True if connected afterwards."""
        return bool(self._call(self._session.connect()))

    def disconnect(self) -> bool:
        return self._call(self._session.disconnect())

    def send(self, line: str) -> bool:
        """Send one command line; True if it was written."""
        return bool(self._call(self._session.send(line)))

    def close(self) -> None:
        """Disconnect, stop the loop thread and close the loop. Idempotent."""
        if self._closed:
            return
        try:
            self._call(self._session.disconnect())
        finally:
            self._closed = True
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
            self._loop.close()

    def __enter__(self) -> "SessionClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
