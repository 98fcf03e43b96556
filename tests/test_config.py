"""
Tests for session configuration.

Tests cover:
- Credentials validation and secret redaction
- TerminalConfig and KeepaliveConfig defaults and asyncssh mapping
- SessionConfig option validation
- SessionConfig.from_mapping for CLI/file configuration
"""
from __future__ import annotations

import dataclasses

import pytest

from shell_session.config import (
    Credentials,
    KeepaliveConfig,
    SessionConfig,
    TerminalConfig,
)
from shell_session.errors import ConfigurationError


class TestCredentials:
    """Credential validation."""

    def test_valid(self) -> None:
        creds = Credentials("10.0.0.5", 22, "op", "s3cr3t")

        assert creds.host == "10.0.0.5"
        assert creds.port == 22

    def test_hostname_normalised(self) -> None:
        assert Credentials("Projector.Local", 22, "op", "x").host == "projector.local"

    def test_secret_not_in_repr(self) -> None:
        assert "s3cr3t" not in repr(Credentials("10.0.0.5", 22, "op", "s3cr3t"))

    def test_frozen(self) -> None:
        creds = Credentials("10.0.0.5", 22, "op", "s3cr3t")

        with pytest.raises(dataclasses.FrozenInstanceError):
            creds.port = 2222  # type: ignore[misc]

    @pytest.mark.parametrize("host, port, username, secret, field_name", [
        ("", 22, "op", "x", "host"),
        ("bad host", 22, "op", "x", "host"),
        ("host;rm", 22, "op", "x", "host"),
        ("10.0.0.5", 0, "op", "x", "port"),
        ("10.0.0.5", 70000, "op", "x", "port"),
        ("10.0.0.5", "22", "op", "x", "port"),
        ("10.0.0.5", 22, "", "x", "username"),
        ("10.0.0.5", 22, "1op", "x", "username"),
        ("10.0.0.5", 22, "op", "", "secret"),
    ])
    def test_invalid(self, host, port, username, secret, field_name) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Credentials(host, port, username, secret)

        assert exc_info.value.field_name == field_name

    def test_error_never_contains_secret(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Credentials("10.0.0.5", 22, "op", "bad\x00secret")

        assert "secret" in str(exc_info.value)
        assert "bad\x00secret" not in str(exc_info.value)


class TestTerminalConfig:
    """Shell stream terminal settings."""

    def test_defaults(self) -> None:
        terminal = TerminalConfig()

        assert terminal.term_type == "terminal"
        assert terminal.term_size == (80, 24, 800, 600)

    def test_invalid_size(self) -> None:
        with pytest.raises(AssertionError):
            TerminalConfig(cols=0)


class TestKeepaliveConfig:
    """Keepalive settings."""

    def test_defaults(self) -> None:
        keepalive = KeepaliveConfig()

        assert keepalive.interval_sec == 30.0
        assert keepalive.max_count == 3

    def test_asyncssh_options(self) -> None:
        options = KeepaliveConfig(interval_sec=5.0, max_count=2).to_asyncssh_options()

        assert options == {"keepalive_interval": 5.0, "keepalive_count_max": 2}

    @pytest.mark.parametrize("kwargs", [{"interval_sec": 0}, {"max_count": 0}])
    def test_invalid(self, kwargs) -> None:
        with pytest.raises(AssertionError):
            KeepaliveConfig(**kwargs)


class TestSessionConfig:
    """Whole-session configuration."""

    def test_create_defaults(self) -> None:
        config = SessionConfig.create("10.0.0.5", 22, "op", "s3cr3t")

        assert config.host == "10.0.0.5"
        assert config.port == 22
        assert config.username == "op"
        assert config.label is None
        assert not config.trace_enabled
        assert config.max_chunk_size == 250
        assert config.line_terminator == "\n"
        assert config.reconnect_on_send
        assert config.password_prompt == "password"
        assert config.keepalive == KeepaliveConfig()

    def test_create_options(self) -> None:
        config = SessionConfig.create(
            "10.0.0.5", 22, "op", "s3cr3t",
            label="Projector", trace_enabled=True, keepalive=None,
        )

        assert config.label == "Projector"
        assert config.trace_enabled
        assert config.keepalive is None

    def test_invalid_credentials_propagate(self) -> None:
        with pytest.raises(ConfigurationError):
            SessionConfig.create("10.0.0.5", 0, "op", "s3cr3t")

    @pytest.mark.parametrize("option, value", [
        ("connect_timeout", 0),
        ("max_chunk_size", 0),
        ("password_prompt", ""),
    ])
    def test_invalid_options(self, option: str, value) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            SessionConfig.create("10.0.0.5", 22, "op", "s3cr3t", **{option: value})

        assert exc_info.value.field_name == option

    def test_credentials_type_checked(self) -> None:
        with pytest.raises(ConfigurationError):
            SessionConfig(credentials=("10.0.0.5", 22, "op", "s3cr3t"))  # type: ignore[arg-type]


class TestFromMapping:
    """Configuration from plain mappings."""

    def test_minimal(self) -> None:
        config = SessionConfig.from_mapping({
            "host": "10.0.0.5", "username": "op", "password": "s3cr3t",
        })

        assert config.port == 22
        assert config.credentials.secret == "s3cr3t"

    def test_full(self) -> None:
        config = SessionConfig.from_mapping({
            "host": "10.0.0.5",
            "port": "2222",
            "username": "op",
            "secret": "s3cr3t",
            "label": "Projector",
            "trace": 1,
            "connect_timeout": "10",
            "keepalive_interval": 15,
            "keepalive_count": 5,
            "max_chunk_size": 100,
            "line_terminator": "\r\n",
            "reconnect_on_send": False,
            "password_prompt": "passcode",
            "term_type": "vt100",
            "cols": 132,
        })

        assert config.port == 2222
        assert config.label == "Projector"
        assert config.trace_enabled
        assert config.connect_timeout == 10.0
        assert config.keepalive == KeepaliveConfig(interval_sec=15.0, max_count=5)
        assert config.max_chunk_size == 100
        assert config.line_terminator == "\r\n"
        assert not config.reconnect_on_send
        assert config.password_prompt == "passcode"
        assert config.terminal.term_type == "vt100"
        assert config.terminal.cols == 132
        assert config.terminal.rows == 24

    def test_zero_keepalive_disables(self) -> None:
        config = SessionConfig.from_mapping({
            "host": "h", "username": "op", "secret": "x", "keepalive_interval": 0,
        })

        assert config.keepalive is None

    @pytest.mark.parametrize("data, field_name", [
        ({"username": "op", "secret": "x"}, "host"),
        ({"host": "h", "secret": "x"}, "username"),
        ({"host": "h", "username": "op"}, "secret"),
        ({"host": "h", "username": "op", "secret": "x", "port": "ssh"}, "port"),
    ])
    def test_missing_or_invalid(self, data, field_name: str) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            SessionConfig.from_mapping(data)

        assert exc_info.value.field_name == field_name

    @pytest.mark.parametrize("key, value, field_name", [
        ("max_chunk_size", "abc", "max_chunk_size"),
        ("max_chunk_size", 0, "max_chunk_size"),
        ("connect_timeout", "x", "connect_timeout"),
        ("connect_timeout", [], "connect_timeout"),
        ("keepalive_interval", "often", "keepalive_interval"),
        ("keepalive_interval", -5, "keepalive"),
        ("keepalive_count", "many", "keepalive_count"),
        ("keepalive_count", 0, "keepalive"),
        ("cols", "wide", "cols"),
        ("cols", 0, "terminal"),
        ("rows", -1, "terminal"),
        ("term_type", "", "terminal"),
    ])
    def test_bad_option_is_configuration_error(self, key: str, value, field_name: str) -> None:
        data = {"host": "h", "username": "op", "secret": "x", key: value}

        with pytest.raises(ConfigurationError) as exc_info:
            SessionConfig.from_mapping(data)

        assert exc_info.value.field_name == field_name
