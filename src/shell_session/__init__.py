"""shell-session: managed SSH shell session client for control systems."""

__version__ = "0.1.0"

from shell_session.auth import AuthenticationMediator
from shell_session.client import SessionClient
from shell_session.config import (
    Credentials,
    KeepaliveConfig,
    SessionConfig,
    TerminalConfig,
)
from shell_session.errors import (
    AuthFailed,
    ConfigurationError,
    ConnectCancelled,
    ConnectionLostError,
    ConnectionRefused,
    ConnectionTimeout,
    DisconnectReason,
    ErrorContext,
    HandshakeError,
    HostKeyRejected,
    HostUnreachable,
    NoMutualKex,
    NotConnected,
    SendError,
    SessionError,
    StreamCreationError,
    StreamNotWritable,
)
from shell_session.events import (
    Event,
    EventCollector,
    EventEmitter,
    EventType,
    Tracer,
)
from shell_session.host_key import (
    HostKeyResult,
    HostTrustPolicy,
    KnownHostsStore,
    StrictFingerprintPolicy,
    TrustAllPolicy,
    TrustOnFirstUsePolicy,
    get_key_fingerprint,
)
from shell_session.segmenter import MAX_CHUNK_SIZE, segment
from shell_session.session import (
    ConnectResult,
    ConnectStatus,
    SendResult,
    Session,
    SessionState,
    is_connection_loss,
)
from shell_session.sink import (
    CallbackSink,
    ConnectionEvent,
    DataChunk,
    EventSink,
    NullSink,
    QueueSink,
)
from shell_session.stream import ShellStream, drain_stream
from shell_session.transport import SSHTransport, open_transport
from shell_session.validation import (
    validate_hostname,
    validate_port,
    validate_username,
)

__all__ = [
    "__version__",
    # Session
    "Session",
    "SessionState",
    "ConnectResult",
    "ConnectStatus",
    "SendResult",
    "is_connection_loss",
    # Facade
    "SessionClient",
    # Config
    "Credentials",
    "KeepaliveConfig",
    "SessionConfig",
    "TerminalConfig",
    # Auth
    "AuthenticationMediator",
    # Host trust
    "HostKeyResult",
    "HostTrustPolicy",
    "KnownHostsStore",
    "StrictFingerprintPolicy",
    "TrustAllPolicy",
    "TrustOnFirstUsePolicy",
    "get_key_fingerprint",
    # Stream and segmentation
    "MAX_CHUNK_SIZE",
    "ShellStream",
    "drain_stream",
    "segment",
    # Sinks
    "CallbackSink",
    "ConnectionEvent",
    "DataChunk",
    "EventSink",
    "NullSink",
    "QueueSink",
    # Transport
    "SSHTransport",
    "open_transport",
    # Errors
    "AuthFailed",
    "ConfigurationError",
    "ConnectCancelled",
    "ConnectionLostError",
    "ConnectionRefused",
    "ConnectionTimeout",
    "DisconnectReason",
    "ErrorContext",
    "HandshakeError",
    "HostKeyRejected",
    "HostUnreachable",
    "NoMutualKex",
    "NotConnected",
    "SendError",
    "SessionError",
    "StreamCreationError",
    "StreamNotWritable",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
    "Tracer",
    # Validation
    "validate_hostname",
    "validate_port",
    "validate_username",
]
