"""
Session state machine, reader loop wiring and send gate.

A Session manages one authenticated interactive shell to one host:

    DISCONNECTED --connect()--> CONNECTING --ok--> CONNECTED
         ^                          |                  |
         +------ failure/cancel ----+                  |
         +------------ teardown (any cause) -----------+

Invariants:
- A shell stream exists only while CONNECTED; a transport only while
  CONNECTING or CONNECTED. Both are released together by _teardown().
- A CONNECTED notification is published only after the transport and the
  stream are both established, and at most once per transition; the same
  holds for DISCONNECTED, which follows only a CONNECTED session.
- Notifications from an earlier connection (a stale generation) are
  ignored.

Concurrency: a Session belongs to the event loop it is used on. One
asyncio.Lock serialises connect, disconnect and reconnect-then-send.
Handles and state change only in synchronous sections, so the asyncssh
callbacks that run teardown on the same loop see a consistent session.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import asyncssh

from shell_session.auth import AuthenticationMediator
from shell_session.config import SessionConfig
from shell_session.errors import (
    ConfigurationError,
    ConnectCancelled,
    DisconnectReason,
    ErrorContext,
    NotConnected,
    SendError,
    SessionError,
    StreamCreationError,
    StreamNotWritable,
)
from shell_session.events import EventEmitter, EventType, Tracer
from shell_session.host_key import HostTrustPolicy, TrustAllPolicy
from shell_session.segmenter import segment
from shell_session.sink import EventSink, NullSink
from shell_session.stream import drain_stream
from shell_session.transport import map_exception, open_transport

logger = logging.getLogger(__name__)

TransportFactory = Callable[..., Awaitable[Any]]


class SessionState(str, Enum):
    """Lifecycle state of a Session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectStatus(str, Enum):
    """Outcome of Session.connect()."""
    ALREADY_CONNECTED = "already_connected"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectResult:
    """
    Result of a connect attempt.

    Truthy when the session is connected afterwards.
    """
    status: ConnectStatus
    error: SessionError | None = None

    def __bool__(self) -> bool:
        return self.status != ConnectStatus.FAILED


@dataclass(frozen=True)
class SendResult:
    """
    Result of Session.send().

    Attributes:
        sent: The line was written onto the shell stream
        error: Why it was not, if it was not
        reconnected: A reconnect was made before writing
    """
    sent: bool
    error: SessionError | None = None
    reconnected: bool = False

    def __bool__(self) -> bool:
        return self.sent


_CONNECTION_LOSS_TYPES = (
    ConnectionError,
    EOFError,
    asyncssh.DisconnectError,
)

_CONNECTION_LOSS_CUES = (
    "not connected",
    "connection lost",
    "connection closed",
    "broken pipe",
    "channel not open",
)


def is_connection_loss(exc: BaseException) -> bool:
    """
    Classify a write failure.

    True when the exception means the connection is dead (its type, or a
    message cue such as "not connected"); False for transient errors that
    leave the session usable.
    """
    if isinstance(exc, _CONNECTION_LOSS_TYPES):
        return True
    message = str(exc).lower()
    return any(cue in message for cue in _CONNECTION_LOSS_CUES)


class Session:
    """
    Managed SSH shell session.

    Usage:
        session = Session(SessionConfig.create("10.0.0.5", 22, "op", "s3cr3t"),
                          sink=CallbackSink(on_data_chunk=print))
        result = await session.connect()
        await session.send("status")
        await session.disconnect()
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        sink: EventSink | None = None,
        trust_policy: HostTrustPolicy | None = None,
        transport_factory: TransportFactory | None = None,
        trace_sink: Callable[[str], None] | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        """
        Initialise a session.

        Args:
            config: Session configuration; may be supplied later via initialize()
            sink: Receives connection state and data chunks
            trust_policy: Host key policy (default: TrustAllPolicy)
            transport_factory: Coroutine function opening the transport
                               (default: open_transport)
            trace_sink: Optional callable receiving "[label] message" lines
            emitter: Structured diagnostic events
        """
        self._sink: EventSink = sink if sink is not None else NullSink()
        self._trust_policy = trust_policy if trust_policy is not None else TrustAllPolicy()
        self._transport_factory = transport_factory or open_transport
        self._emitter = emitter if emitter is not None else EventEmitter()
        self._tracer = Tracer(type(self).__name__, sink=trace_sink, emitter=self._emitter)

        self._config: SessionConfig | None = None
        self._mediator: AuthenticationMediator | None = None
        self._state = SessionState.DISCONNECTED
        self._transport: Any = None
        self._stream: Any = None
        self._generation = 0
        self._lock = asyncio.Lock()
        self._handshake_task: asyncio.Future[Any] | None = None
        self._abort_reason: str | None = None
        self._last_error: SessionError | None = None

        if config is not None:
            self.initialize(config)

    # -----------------------------------------------------------------------
    # Properties
    # -----------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """CONNECTED and the transport still reports itself connected."""
        return (
            self._state == SessionState.CONNECTED
            and self._transport is not None
            and self._transport.is_connected
        )

    @property
    def initialized(self) -> bool:
        return self._config is not None

    @property
    def config(self) -> SessionConfig | None:
        return self._config

    @property
    def label(self) -> str:
        return self._tracer.label

    @property
    def trace_enabled(self) -> bool:
        return self._tracer.enabled

    @trace_enabled.setter
    def trace_enabled(self, enabled: bool) -> None:
        self._tracer.enabled = bool(enabled)

    @property
    def trust_policy(self) -> HostTrustPolicy:
        return self._trust_policy

    @property
    def emitter(self) -> EventEmitter:
        return self._emitter

    @property
    def last_error(self) -> SessionError | None:
        """Most recent connect or send failure, for diagnostics."""
        return self._last_error

    # -----------------------------------------------------------------------
    # Initialisation
    # -----------------------------------------------------------------------

    def initialize(self, config: SessionConfig) -> None:
        """
        Install the session configuration.

        Reports the outcome through the sink's optional on_initialized().

        Raises:
            ConfigurationError: config is not a SessionConfig, or the
                                session is not DISCONNECTED
        """
        try:
            if not isinstance(config, SessionConfig):
                raise ConfigurationError(
                    f"Expected SessionConfig, got {type(config).__name__}",
                    field_name="config",
                )
            if self._state != SessionState.DISCONNECTED:
                raise ConfigurationError(
                    f"Cannot initialise while {self._state.value}",
                    context=self._error_context(),
                )
        except ConfigurationError as e:
            self._trace(f"Initialize() error validating parameters: {e}")
            self._notify_initialized(False)
            raise

        self._config = config
        self._tracer.label = config.label or type(self).__name__
        self._tracer.enabled = config.trace_enabled
        self._mediator = AuthenticationMediator(
            config.credentials.secret,
            prompt_cue=config.password_prompt,
            on_challenge=self._on_auth_challenge,
        )
        self._trace("Initialize() initialized successfully.")
        self._notify_initialized(True)

    # -----------------------------------------------------------------------
    # Connect
    # -----------------------------------------------------------------------

    async def connect(self) -> ConnectResult:
        """
        Connect the session, creating the transport and shell stream.

        Never raises for connection problems; the outcome is in the
        returned ConnectResult. Cancelling the caller cancels the attempt.
        """
        if self._config is None:
            self._trace("Connect() called but data is not initialized.")
            error = ConfigurationError("Session not initialised; call initialize() first")
            self._last_error = error
            return ConnectResult(ConnectStatus.FAILED, error)

        async with self._lock:
            return await self._connect_locked()

    async def _connect_locked(self) -> ConnectResult:
        assert self._config is not None and self._mediator is not None
        config = self._config

        if self._state == SessionState.CONNECTED:
            if self._transport is not None and self._transport.is_connected:
                self._trace("Connect() called, but session already connected.")
                return ConnectResult(ConnectStatus.ALREADY_CONNECTED)
            self._teardown(DisconnectReason.TRANSPORT_ERROR)

        self._generation += 1
        generation = self._generation
        self._abort_reason = None
        self._set_state(SessionState.CONNECTING)
        self._trace(
            f"Connect() attempting connection to {config.host} on port {config.port}."
        )
        self._emitter.emit(
            EventType.CONNECT,
            status="initiating",
            host=config.host,
            port=config.port,
            username=config.username,
        )

        self._handshake_task = asyncio.ensure_future(self._handshake(config, generation))
        try:
            await self._handshake_task
        except asyncio.CancelledError:
            if self._abort_reason is None:
                # The caller was cancelled, not the attempt
                self._release_partial()
                raise
            return self._fail_connect(
                ConnectCancelled(
                    f"Connect cancelled: {self._abort_reason}",
                    context=self._error_context(),
                )
            )
        except Exception as e:
            return self._fail_connect(map_exception(e, self._error_context()))
        finally:
            self._handshake_task = None

        if self._abort_reason is not None:
            return self._fail_connect(
                ConnectCancelled(
                    f"Connect cancelled: {self._abort_reason}",
                    context=self._error_context(),
                )
            )

        self._set_state(SessionState.CONNECTED)
        self._trace("Connect() connection successful.")
        self._emitter.emit(
            EventType.CONNECT,
            status="connected",
            host=config.host,
            port=config.port,
            username=config.username,
        )
        self._notify_connection_state(True)
        self._drain(generation)
        return ConnectResult(ConnectStatus.CONNECTED)

    async def _handshake(self, config: SessionConfig, generation: int) -> None:
        """Open transport then shell stream, storing each as it appears."""
        transport = await self._transport_factory(
            config,
            self._mediator,
            self._trust_policy,
            lambda exc: self._on_transport_lost(generation, exc),
        )
        self._transport = transport

        try:
            stream = await transport.open_shell(
                config.terminal,
                config.encoding,
                on_data=lambda: self._on_stream_data(generation),
                on_closed=lambda exc: self._on_stream_closed(generation, exc),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            ctx = self._error_context()
            ctx.original_error = str(e)
            raise StreamCreationError(f"Could not open shell stream: {e}", context=ctx) from e

        self._stream = stream

    def _fail_connect(self, error: SessionError) -> ConnectResult:
        self._release_partial()
        self._last_error = error
        self._trace(f"Connect() connection exception: {error}")
        logger.warning("[%s] Connect failed: %s", self.label, error)
        self._emitter.emit(EventType.ERROR, **error.to_dict())
        self._emitter.emit(EventType.CONNECT, status="failed", error_type=error.error_type)
        return ConnectResult(ConnectStatus.FAILED, error)

    def _release_partial(self) -> None:
        """Drop whatever a failed attempt created; no DISCONNECTED event."""
        stream, transport = self._stream, self._transport
        self._stream = None
        self._transport = None
        self._set_state(SessionState.DISCONNECTED)
        self._close_handles(stream, transport)

    def _abort_connect(self, reason: str) -> None:
        if self._abort_reason is None:
            self._abort_reason = reason
        task = self._handshake_task
        if task is not None and not task.done():
            task.cancel()

    # -----------------------------------------------------------------------
    # Disconnect / teardown
    # -----------------------------------------------------------------------

    async def disconnect(self) -> bool:
        """
        Disconnect from any state. Idempotent.

        A connect in progress is cancelled; it reports ConnectCancelled.

        Returns:
            True once the session is DISCONNECTED
        """
        if self._state == SessionState.CONNECTING:
            self._trace("Disconnect() cancelling connection in progress.")
            self._abort_connect("disconnect requested")

        async with self._lock:
            transport = self._transport
            if not self._teardown(DisconnectReason.EXPLICIT):
                self._trace("Disconnect() already disconnected.")
                return True

            if transport is not None:
                try:
                    await transport.wait_closed()
                except Exception as e:
                    logger.debug("Error waiting for transport close: %s", e)

        return True

    def _teardown(self, reason: DisconnectReason) -> bool:
        """
        Release stream and transport together and go DISCONNECTED.

        Idempotent: returns False if there was nothing to tear down.
        DISCONNECTED is published only when leaving CONNECTED.
        """
        if (
            self._state == SessionState.DISCONNECTED
            and self._transport is None
            and self._stream is None
        ):
            return False

        was_connected = self._state == SessionState.CONNECTED
        stream, transport = self._stream, self._transport
        self._stream = None
        self._transport = None
        self._set_state(SessionState.DISCONNECTED)

        self._trace(f"Reset() resetting all objects ({reason.value}).")
        self._close_handles(stream, transport)

        if was_connected:
            self._emitter.emit(
                EventType.DISCONNECT,
                reason=reason.value,
                host=self._config.host if self._config else None,
            )
            self._notify_connection_state(False)
        return True

    @staticmethod
    def _close_handles(stream: Any, transport: Any) -> None:
        if stream is not None:
            try:
                stream.close()
            except Exception as e:
                logger.debug("Error closing shell stream: %s", e)
        if transport is not None:
            try:
                transport.close()
            except Exception as e:
                logger.debug("Error closing transport: %s", e)

    # -----------------------------------------------------------------------
    # Send gate
    # -----------------------------------------------------------------------

    async def send(self, line: str) -> SendResult:
        """
        Write one command line, reconnecting once first if needed.

        Never raises for connection or write problems; see SendResult.
        """
        if self._config is None:
            error = ConfigurationError("Session not initialised; call initialize() first")
            self._last_error = error
            return SendResult(False, error)

        async with self._lock:
            config = self._config
            reconnected = False

            if not self.is_connected:
                if not config.reconnect_on_send:
                    self._trace("Send() not connected.")
                    return self._send_failed(
                        NotConnected("Session is not connected", context=self._error_context())
                    )

                self._trace("Send() Not connected. Will attempt connection...")
                result = await self._connect_locked()
                if not result:
                    self._trace("Send() error, could not connect.")
                    assert result.error is not None
                    return self._send_failed(result.error)
                reconnected = result.status == ConnectStatus.CONNECTED

            stream = self._stream
            if stream is None or not stream.can_write:
                self._trace("Send() stream is null or not writable.")
                self._teardown(DisconnectReason.STREAM_NOT_WRITABLE)
                return self._send_failed(
                    StreamNotWritable(
                        "Shell stream is not writable", context=self._error_context()
                    ),
                    reconnected,
                )

            try:
                stream.write_line(line, config.line_terminator)
            except Exception as e:
                lost = is_connection_loss(e)
                ctx = self._error_context()
                ctx.original_error = str(e)
                self._trace(f"Send() exception occurred: {e}")
                if lost:
                    self._teardown(DisconnectReason.SEND_FAILURE)
                return self._send_failed(
                    SendError(f"Send failed: {e}", connection_lost=lost, context=ctx),
                    reconnected,
                )

            self._trace(f"Send() sending: {line.strip()}")
            self._emitter.emit(EventType.SEND, length=len(line), reconnected=reconnected)
            return SendResult(True, None, reconnected)

    def _send_failed(self, error: SessionError, reconnected: bool = False) -> SendResult:
        self._last_error = error
        self._emitter.emit(EventType.ERROR, **error.to_dict())
        return SendResult(False, error, reconnected)

    # -----------------------------------------------------------------------
    # Transport / stream notifications
    # -----------------------------------------------------------------------

    def _on_transport_lost(self, generation: int, exc: Exception | None) -> None:
        if generation != self._generation:
            logger.debug("Ignoring transport loss from stale connection")
            return

        self._trace(f"Transport error occurred: {exc or 'connection closed'}")
        if self._state == SessionState.CONNECTING:
            self._abort_connect(f"transport error: {exc or 'connection closed'}")
        elif self._state == SessionState.CONNECTED:
            self._emitter.emit(
                EventType.ERROR,
                error_type="transport_lost",
                message=str(exc) if exc else "connection closed",
            )
            self._teardown(DisconnectReason.TRANSPORT_ERROR)

    def _on_stream_closed(self, generation: int, exc: Exception | None) -> None:
        if generation != self._generation:
            return

        reason = DisconnectReason.STREAM_ERROR if exc else DisconnectReason.STREAM_CLOSED
        self._trace(f"Stream closed: {exc or 'end of stream'}")
        if self._state == SessionState.CONNECTING:
            self._abort_connect(f"shell stream closed: {exc or 'end of stream'}")
        elif self._state == SessionState.CONNECTED:
            # Deliver whatever the shell wrote before closing
            self._drain(generation)
            self._teardown(reason)

    def _on_stream_data(self, generation: int) -> None:
        if generation != self._generation or self._state != SessionState.CONNECTED:
            # Left buffered; drained once CONNECTED is published
            return
        self._drain(generation)

    def _drain(self, generation: int) -> None:
        """Reader loop body: drain, segment and deliver in order."""
        stream = self._stream
        if stream is None or generation != self._generation:
            return

        text = drain_stream(stream)
        if not text:
            return

        assert self._config is not None
        chunks = segment(text, self._config.max_chunk_size)
        self._trace(f"Stream data received. Length: {len(text)}")
        self._emitter.emit(EventType.RECEIVE, length=len(text), chunks=len(chunks))
        for chunk in chunks:
            self._notify_data(chunk)

    def _on_auth_challenge(self, message: str) -> None:
        self._trace(f"Authenticate() {message}")
        self._emitter.emit(EventType.AUTH, message=message)

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        logger.debug("[%s] %s -> %s", self.label, self._state.value, state.value)
        self._emitter.emit(
            EventType.STATE_CHANGE,
            from_state=self._state.value,
            to_state=state.value,
        )
        self._state = state

    def _trace(self, message: str) -> None:
        self._tracer(message)

    def _error_context(self) -> ErrorContext:
        if self._config is None:
            return ErrorContext(label=self.label)
        return ErrorContext(
            host=self._config.host,
            port=self._config.port,
            username=self._config.username,
            label=self.label,
        )

    def _notify_connection_state(self, connected: bool) -> None:
        try:
            self._sink.on_connection_state(connected)
        except Exception:
            logger.exception("Event sink raised in on_connection_state")

    def _notify_data(self, chunk: str) -> None:
        try:
            self._sink.on_data_chunk(chunk)
        except Exception:
            logger.exception("Event sink raised in on_data_chunk")

    def _notify_initialized(self, ok: bool) -> None:
        callback = getattr(self._sink, "on_initialized", None)
        if callback is None:
            return
        try:
            callback(ok)
        except Exception:
            logger.exception("Event sink raised in on_initialized")

    # -----------------------------------------------------------------------
    # Context manager
    # -----------------------------------------------------------------------

    async def __aenter__(self) -> "Session":
        result = await self.connect()
        if not result:
            assert result.error is not None
            raise result.error
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()
