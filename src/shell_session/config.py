"""
Session configuration.

Provides:
- Credentials: validated, immutable host/port/username/secret
- TerminalConfig: shell stream terminal geometry
- KeepaliveConfig: transport keepalive, mapped to asyncssh options
- SessionConfig: everything a Session needs before its first connect

All configuration objects are frozen dataclasses. Invalid credentials raise
ConfigurationError at construction, so a Session never holds a config that
could not be used for a connect attempt.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from shell_session.errors import ConfigurationError, ErrorContext
from shell_session.validation import (
    validate_hostname,
    validate_port,
    validate_secret,
    validate_username,
)

DEFAULT_PORT = 22
DEFAULT_MAX_CHUNK_SIZE = 250
DEFAULT_CONNECT_TIMEOUT = 30.0


@dataclass(frozen=True)
class Credentials:
    """
    Target host and login secret for one session.

    The secret is excluded from repr() so credentials can be logged.
    """
    host: str
    port: int
    username: str
    secret: str = field(repr=False)

    def __post_init__(self) -> None:
        """Validate all four fields; normalise the hostname."""
        checks = (
            ("host", validate_hostname, self.host),
            ("port", validate_port, self.port),
            ("username", validate_username, self.username),
            ("secret", validate_secret, self.secret),
        )
        for name, check, value in checks:
            try:
                normalised = check(value)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid {name}: {e}",
                    field_name=name,
                    context=ErrorContext(
                        host=self.host if isinstance(self.host, str) else None,
                        username=self.username if isinstance(self.username, str) else None,
                    ),
                ) from e
            if name == "host":
                object.__setattr__(self, "host", normalised)


@dataclass(frozen=True)
class TerminalConfig:
    """
    Terminal requested for the interactive shell stream.

    Defaults match the control systems this client was built for: an
    80x24 "terminal" with an 800x600 pixel hint.
    """
    term_type: str = "terminal"
    cols: int = 80
    rows: int = 24
    width_px: int = 800
    height_px: int = 600

    def __post_init__(self) -> None:
        assert self.term_type, "term_type must be non-empty"
        assert self.cols > 0 and self.rows > 0, \
            f"Terminal size must be positive, got {self.cols}x{self.rows}"
        assert self.width_px >= 0 and self.height_px >= 0, \
            f"Pixel size must be non-negative, got {self.width_px}x{self.height_px}"

    @property
    def term_size(self) -> tuple[int, int, int, int]:
        """Terminal size in the tuple form asyncssh expects."""
        return (self.cols, self.rows, self.width_px, self.height_px)


@dataclass(frozen=True)
class KeepaliveConfig:
    """
    Configuration for transport keepalive.

    Default: 30s interval, 3 max count = 90s before the transport is
    declared dead and the session torn down.
    """
    interval_sec: float = 30.0
    max_count: int = 3

    def __post_init__(self) -> None:
        """Validate configuration."""
        assert self.interval_sec > 0, \
            f"interval_sec must be positive, got {self.interval_sec}"
        assert self.max_count > 0, \
            f"max_count must be positive, got {self.max_count}"

    def to_asyncssh_options(self) -> dict[str, Any]:
        """
        Convert to asyncssh connection options.

        Returns:
            Dict with keepalive_interval and keepalive_count_max keys.
        """
        return {
            "keepalive_interval": self.interval_sec,
            "keepalive_count_max": self.max_count,
        }


@dataclass(frozen=True)
class SessionConfig:
    """
    Complete configuration for a Session.

    Attributes:
        credentials: Validated target and secret
        label: Human-readable session name used as the trace prefix
        trace_enabled: Emit human-readable trace lines
        connect_timeout: Seconds allowed for the transport handshake
        keepalive: Transport keepalive, None to disable
        terminal: Shell stream terminal settings
        max_chunk_size: Largest chunk handed to the event sink
        line_terminator: Appended to every command sent
        reconnect_on_send: Send on a dropped session reconnects once first
        password_prompt: Case-insensitive cue identifying password prompts
        encoding: Text encoding of the shell stream
    """
    credentials: Credentials
    label: str | None = None
    trace_enabled: bool = False
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    keepalive: KeepaliveConfig | None = field(default_factory=KeepaliveConfig)
    terminal: TerminalConfig = field(default_factory=TerminalConfig)
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE
    line_terminator: str = "\n"
    reconnect_on_send: bool = True
    password_prompt: str = "password"
    encoding: str = "utf-8"

    def __post_init__(self) -> None:
        if not isinstance(self.credentials, Credentials):
            raise ConfigurationError(
                f"credentials must be Credentials, got {type(self.credentials).__name__}",
                field_name="credentials",
            )
        if self.connect_timeout <= 0:
            raise ConfigurationError(
                f"connect_timeout must be positive, got {self.connect_timeout}",
                field_name="connect_timeout",
            )
        if self.max_chunk_size < 1:
            raise ConfigurationError(
                f"max_chunk_size must be at least 1, got {self.max_chunk_size}",
                field_name="max_chunk_size",
            )
        if not self.password_prompt:
            raise ConfigurationError(
                "password_prompt must not be empty", field_name="password_prompt",
            )

    @property
    def host(self) -> str:
        return self.credentials.host

    @property
    def port(self) -> int:
        return self.credentials.port

    @property
    def username(self) -> str:
        return self.credentials.username

    @classmethod
    def create(
        cls,
        host: str,
        port: int,
        username: str,
        secret: str,
        **options: Any,
    ) -> "SessionConfig":
        """Build a config from the four credential fields plus options."""
        return cls(
            credentials=Credentials(host=host, port=port, username=username, secret=secret),
            **options,
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SessionConfig":
        """
        Build a config from a plain mapping (parsed JSON/TOML, CLI args).

        Recognised keys: host, port, username, secret (or password), label,
        trace, connect_timeout, keepalive_interval, keepalive_count,
        max_chunk_size, line_terminator, reconnect_on_send, password_prompt,
        term_type, cols, rows.

        Raises:
            ConfigurationError: On missing or invalid values
        """
        for required in ("host", "username"):
            if not data.get(required):
                raise ConfigurationError(f"Missing required setting: {required}", field_name=required)

        secret = data.get("secret", data.get("password"))
        if secret is None:
            raise ConfigurationError("Missing required setting: secret", field_name="secret")

        port = _setting(data, "port", int, DEFAULT_PORT)

        options: dict[str, Any] = {}
        if "label" in data:
            options["label"] = data["label"]
        if "trace" in data:
            options["trace_enabled"] = bool(data["trace"])
        if "connect_timeout" in data:
            options["connect_timeout"] = _setting(data, "connect_timeout", float)
        if "max_chunk_size" in data:
            options["max_chunk_size"] = _setting(data, "max_chunk_size", int)
        if "line_terminator" in data:
            options["line_terminator"] = data["line_terminator"]
        if "reconnect_on_send" in data:
            options["reconnect_on_send"] = bool(data["reconnect_on_send"])
        if "password_prompt" in data:
            options["password_prompt"] = data["password_prompt"]

        if "keepalive_interval" in data or "keepalive_count" in data:
            interval = _setting(data, "keepalive_interval", float, KeepaliveConfig.interval_sec)
            count = _setting(data, "keepalive_count", int, KeepaliveConfig.max_count)
            if interval == 0:
                options["keepalive"] = None
            else:
                options["keepalive"] = _build(
                    "keepalive", KeepaliveConfig, interval_sec=interval, max_count=count,
                )

        if {"term_type", "cols", "rows"} & data.keys():
            options["terminal"] = _build(
                "terminal",
                TerminalConfig,
                term_type=data.get("term_type", TerminalConfig.term_type),
                cols=_setting(data, "cols", int, TerminalConfig.cols),
                rows=_setting(data, "rows", int, TerminalConfig.rows),
            )

        return cls.create(
            host=data["host"],
            port=port,
            username=data["username"],
            secret=secret,
            **options,
        )


def _setting(
    data: Mapping[str, Any],
    key: str,
    convert: Callable[[Any], Any],
    default: Any = None,
) -> Any:
    """Convert data[key] (or the default when absent or None)."""
    value = data.get(key)
    if value is None:
        return default
    try:
        return convert(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid {key}: {value!r}", field_name=key) from e


def _build(field_name: str, factory: Callable[..., Any], **kwargs: Any) -> Any:
    """Construct a sub-config, reporting its checks as ConfigurationError."""
    try:
        return factory(**kwargs)
    except (AssertionError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid {field_name}: {e}", field_name=field_name) from e
