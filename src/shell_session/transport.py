"""
asyncssh transport adapter.

open_transport() performs the SSH handshake for a session: TCP connect,
key exchange, host key check through the session's HostTrustPolicy, and
authentication through the AuthenticationMediator. The result is an
SSHTransport, which can open the session's single interactive shell.

Only keyboard-interactive and password authentication are offered.
asyncssh is told not to read OpenSSH config files, not to use an agent and
not to load default client keys, so a session depends on nothing but its
SessionConfig.

asyncssh and OS failures are mapped onto the shell_session error taxonomy
at this boundary by map_exception().
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import asyncssh

from shell_session.auth import AuthenticationMediator
from shell_session.config import SessionConfig, TerminalConfig
from shell_session.errors import (
    AuthFailed,
    ConnectionLostError,
    ConnectionRefused,
    ConnectionTimeout,
    ErrorContext,
    HandshakeError,
    HostKeyRejected,
    HostUnreachable,
    NoMutualKex,
    SessionError,
)
from shell_session.host_key import HostTrustPolicy, get_key_fingerprint
from shell_session.stream import ShellStream

logger = logging.getLogger(__name__)

PREFERRED_AUTH = ["keyboard-interactive", "password"]


def map_exception(exc: BaseException, ctx: ErrorContext) -> SessionError:
    """Map asyncssh and OS exceptions onto the session error taxonomy."""
    ctx.original_error = str(exc)

    if isinstance(exc, SessionError):
        return exc

    if isinstance(exc, asyncssh.PermissionDenied):
        return AuthFailed(f"Authentication failed: {exc}", context=ctx)

    if isinstance(exc, asyncssh.HostKeyNotVerifiable):
        return HostKeyRejected(f"Host key rejected: {exc}", context=ctx)

    if isinstance(exc, asyncssh.KeyExchangeFailed):
        return NoMutualKex(f"Key exchange failed: {exc}", context=ctx)

    if isinstance(exc, asyncssh.ConnectionLost):
        return ConnectionLostError(f"Connection lost: {exc}", context=ctx)

    if isinstance(exc, asyncio.TimeoutError):
        return ConnectionTimeout(f"Connection timed out: {exc}", context=ctx)

    if isinstance(exc, OSError):
        error_str = str(exc).lower()
        if isinstance(exc, ConnectionRefusedError) or "connection refused" in error_str:
            return ConnectionRefused(f"Connection refused: {exc}", context=ctx)
        if "timed out" in error_str or "timeout" in error_str:
            return ConnectionTimeout(f"Connection timed out: {exc}", context=ctx)
        if "unreachable" in error_str or "no route" in error_str:
            return HostUnreachable(f"Host unreachable: {exc}", context=ctx)
        return HandshakeError(f"Connection failed: {exc}", context=ctx)

    if isinstance(exc, asyncssh.Error):
        return HandshakeError(f"SSH error: {exc}", context=ctx)

    return SessionError(f"Unexpected error: {exc}", context=ctx)


class _SessionSSHClient(asyncssh.SSHClient):
    """
    asyncssh client callbacks for one session connection.

    Routes host key validation to the trust policy, answers
    keyboard-interactive and password requests from the mediator, and
    reports connection loss to the owner.
    """

    def __init__(
        self,
        host: str,
        port: int,
        mediator: AuthenticationMediator,
        trust_policy: HostTrustPolicy,
        on_lost: Callable[[Exception | None], None] | None = None,
    ) -> None:
        super().__init__()
        self._host = host
        self._port = port
        self._mediator = mediator
        self._trust_policy = trust_policy
        self._on_lost = on_lost
        self.lost = False
        self._kbdint_tried = False
        self._password_tried = False
        self.server_key: asyncssh.SSHKey | None = None
        self.host_key_accepted: bool | None = None

    def connection_lost(self, exc: Exception | None) -> None:
        self.lost = True
        if exc is not None:
            logger.debug("Transport to %s:%d lost: %s", self._host, self._port, exc)
        if self._on_lost is not None:
            on_lost, self._on_lost = self._on_lost, None
            on_lost(exc)

    def detach(self) -> None:
        """Stop reporting connection loss (used for deliberate closes)."""
        self._on_lost = None

    def validate_host_public_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        self.server_key = key
        self.host_key_accepted = self._trust_policy.check(self._host, self._port, key)
        return self.host_key_accepted

    def kbdint_auth_requested(self) -> str | None:
        # One keyboard-interactive exchange, then one password attempt
        if self._kbdint_tried:
            return None
        self._kbdint_tried = True
        return ""

    def kbdint_challenge_received(
        self,
        name: str,
        instructions: str,
        lang: str,
        prompts: list[tuple[str, bool]],
    ) -> list[str]:
        return self._mediator.responses(prompts)

    def password_auth_requested(self) -> str | None:
        if self._password_tried:
            return None
        self._password_tried = True
        return self._mediator.password()


class SSHTransport:
    """
    An authenticated asyncssh connection owned by one session.

    Opens at most the one interactive shell the session needs.
    """

    def __init__(self, conn: asyncssh.SSHClientConnection, client: _SessionSSHClient) -> None:
        self._conn = conn
        self._client = client
        self._closed = False

    @property
    def is_connected(self) -> bool:
        """True until the connection is closed or reported lost."""
        return not (self._closed or self._client.lost)

    @property
    def server_fingerprint(self) -> str | None:
        key = self._client.server_key
        return get_key_fingerprint(key) if key is not None else None

    async def open_shell(
        self,
        terminal: TerminalConfig,
        encoding: str = "utf-8",
        on_data: Callable[[], None] | None = None,
        on_closed: Callable[[Exception | None], None] | None = None,
    ) -> ShellStream:
        """
        Open the interactive shell channel.

        Args:
            terminal: Terminal type and geometry to request
            encoding: Text encoding; undecodable bytes are replaced
            on_data: Called whenever inbound data is buffered
            on_closed: Called once when the channel closes

        Returns:
            Attached ShellStream

        Raises:
            asyncssh.ChannelOpenError: If the server refuses the channel
        """
        stream = ShellStream(on_data=on_data, on_closed=on_closed)
        chan, _ = await self._conn.create_session(
            stream.session_factory,
            term_type=terminal.term_type,
            term_size=terminal.term_size,
            encoding=encoding,
            errors="replace",
        )
        stream.attach(chan)
        return stream

    def close(self) -> None:
        """Close the connection without reporting it as lost."""
        if self._closed:
            return
        self._closed = True
        self._client.detach()
        self._conn.close()

    async def wait_closed(self) -> None:
        await self._conn.wait_closed()


async def open_transport(
    config: SessionConfig,
    mediator: AuthenticationMediator,
    trust_policy: HostTrustPolicy,
    on_lost: Callable[[Exception | None], None] | None = None,
) -> SSHTransport:
    """
    Connect and authenticate to config's host.

    Args:
        config: Session configuration
        mediator: Answers authentication requests
        trust_policy: Decides on the server's host key
        on_lost: Called once if the connection is lost later

    Returns:
        Connected SSHTransport

    Raises:
        HandshakeError: Mapped connect, key exchange, host key or auth failure
    """
    client: _SessionSSHClient | None = None

    def create_client() -> _SessionSSHClient:
        nonlocal client
        client = _SessionSSHClient(
            host=config.host,
            port=config.port,
            mediator=mediator,
            trust_policy=trust_policy,
            on_lost=on_lost,
        )
        return client

    options: dict[str, Any] = {
        "host": config.host,
        "port": config.port,
        "username": config.username,
        "client_factory": create_client,
        "connect_timeout": config.connect_timeout,
        # Explicit empty (host keys, CA keys, revoked) lists; () would load
        # ~/.ssh/known_hosts and bypass validate_host_public_key
        "known_hosts": ([], [], []),
        "client_keys": None,
        "agent_path": None,
        "config": None,
        "preferred_auth": PREFERRED_AUTH,
        "kbdint_auth": True,
        "password_auth": True,
    }
    if config.keepalive is not None:
        options.update(config.keepalive.to_asyncssh_options())

    ctx = ErrorContext(
        host=config.host,
        port=config.port,
        username=config.username,
        label=config.label,
    )

    try:
        conn = await asyncssh.connect(**options)
    except asyncio.CancelledError:
        raise
    except asyncssh.HostKeyNotVerifiable as e:
        fingerprint = None
        if client is not None and client.server_key is not None:
            fingerprint = get_key_fingerprint(client.server_key)
        ctx.original_error = str(e)
        raise HostKeyRejected(
            f"Host key for {config.host}:{config.port} rejected by trust policy",
            fingerprint=fingerprint,
            context=ctx,
        ) from e
    except Exception as e:
        raise map_exception(e, ctx) from e

    assert client is not None
    logger.debug("Transport connected to %s:%d", config.host, config.port)
    return SSHTransport(conn, client)
