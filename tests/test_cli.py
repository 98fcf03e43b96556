"""
Tests for the shell-session console harness.

Tests the command-line interface for:
- Argument parsing (user@host, port, password source, trust options)
- Trust policy selection
- Console command handling
- main() wiring, exit codes and --events output
"""
from __future__ import annotations

import io
import subprocess
import sys
from unittest.mock import MagicMock, patch

import pytest


class TestArgumentParsing:
    """Tests for CLI argument parsing."""

    def test_parse_target_with_user(self) -> None:
        """Test parsing user@host format."""
        from shell_session.__main__ import parse_target

        host, user = parse_target("op@10.0.0.5")
        assert host == "10.0.0.5"
        assert user == "op"

    def test_parse_target_without_user(self) -> None:
        """Test parsing host-only format."""
        from shell_session.__main__ import parse_target

        host, user = parse_target("projector.local")
        assert host == "projector.local"
        assert user is None

    def test_parse_target_splits_on_last_at(self) -> None:
        from shell_session.__main__ import parse_target

        assert parse_target("a@b@host") == ("host", "a@b")

    def test_create_parser_defaults(self) -> None:
        """Test parser creates correct defaults."""
        from shell_session.__main__ import create_parser

        args = create_parser().parse_args(["10.0.0.5"])

        assert args.target == "10.0.0.5"
        assert args.port == 22
        assert args.login is None
        assert args.password_env is None
        assert args.label is None
        assert args.trace is False
        assert args.verbose == 0
        assert args.no_reconnect is False
        assert args.known_hosts is None
        assert args.fingerprint is None
        assert args.events is False

    def test_create_parser_options(self) -> None:
        from shell_session.__main__ import create_parser

        args = create_parser().parse_args([
            "-p", "2222", "-l", "op", "--label", "Projector", "--trace", "-vv",
            "--password-env", "PANEL_PW", "--no-reconnect", "--events", "10.0.0.5",
        ])

        assert args.port == 2222
        assert args.login == "op"
        assert args.label == "Projector"
        assert args.trace is True
        assert args.verbose == 2
        assert args.password_env == "PANEL_PW"
        assert args.no_reconnect is True
        assert args.events is True

    def test_repeated_fingerprints(self) -> None:
        from shell_session.__main__ import create_parser

        args = create_parser().parse_args([
            "--fingerprint", "SHA256:aaa", "--fingerprint", "SHA256:bbb", "h",
        ])

        assert args.fingerprint == ["SHA256:aaa", "SHA256:bbb"]

    def test_trust_options_exclusive(self) -> None:
        from shell_session.__main__ import create_parser

        with pytest.raises(SystemExit):
            create_parser().parse_args([
                "--known-hosts", "kh", "--fingerprint", "SHA256:aaa", "h",
            ])


class TestTrustPolicySelection:
    """build_trust_policy() mapping."""

    def test_default_trusts_all(self) -> None:
        from shell_session.__main__ import build_trust_policy, create_parser
        from shell_session.host_key import TrustAllPolicy

        args = create_parser().parse_args(["h"])

        assert isinstance(build_trust_policy(args), TrustAllPolicy)

    def test_known_hosts(self, tmp_path) -> None:
        from shell_session.__main__ import build_trust_policy, create_parser
        from shell_session.host_key import TrustOnFirstUsePolicy

        path = tmp_path / "known_hosts"
        args = create_parser().parse_args(["--known-hosts", str(path), "h"])

        policy = build_trust_policy(args)
        assert isinstance(policy, TrustOnFirstUsePolicy)
        assert policy.store.path == path

    def test_fingerprint(self) -> None:
        from shell_session.__main__ import build_trust_policy, create_parser
        from shell_session.host_key import StrictFingerprintPolicy

        args = create_parser().parse_args(["--fingerprint", "SHA256:aaa", "h"])

        assert isinstance(build_trust_policy(args), StrictFingerprintPolicy)


class TestReadPassword:
    """Password source."""

    def test_from_environment(self, monkeypatch) -> None:
        from shell_session.__main__ import create_parser, read_password

        monkeypatch.setenv("PANEL_PW", "s3cr3t")
        args = create_parser().parse_args(["--password-env", "PANEL_PW", "h"])

        assert read_password(args) == "s3cr3t"

    def test_missing_environment(self, monkeypatch) -> None:
        from shell_session.__main__ import create_parser, read_password

        monkeypatch.delenv("PANEL_PW", raising=False)
        args = create_parser().parse_args(["--password-env", "PANEL_PW", "h"])

        with pytest.raises(ValueError, match="PANEL_PW"):
            read_password(args)

    def test_prompted(self) -> None:
        from shell_session.__main__ import create_parser, read_password

        args = create_parser().parse_args(["h"])
        with patch("shell_session.__main__.getpass.getpass", return_value="typed") as prompt:
            assert read_password(args) == "typed"

        prompt.assert_called_once()


class TestConsoleHarness:
    """Console command handling against a mocked client."""

    @pytest.fixture
    def harness(self):
        from shell_session.__main__ import ConsoleHarness

        client = MagicMock()
        client.last_error = "boom"
        return ConsoleHarness(client, out=io.StringIO())

    def output(self, harness) -> str:
        return harness._out.getvalue()

    def test_connect_success(self, harness) -> None:
        harness.client.connect.return_value = True

        assert harness.handle("connect")
        assert "Connected successfully." in self.output(harness)

    def test_connect_failure(self, harness) -> None:
        harness.client.connect.return_value = False

        harness.handle("connect")

        assert "Error, could not connect: boom" in self.output(harness)

    def test_disconnect(self, harness) -> None:
        harness.client.disconnect.return_value = True

        harness.handle("disconnect")

        assert "Disconnected successfully." in self.output(harness)

    def test_send_passes_text(self, harness) -> None:
        harness.client.send.return_value = True

        harness.handle("send POWR 1")

        harness.client.send.assert_called_once_with("POWR 1")
        assert self.output(harness) == ""

    def test_send_failure(self, harness) -> None:
        harness.client.send.return_value = False

        harness.handle("send status")

        assert "Error, could not send: boom" in self.output(harness)

    @pytest.mark.parametrize("value, expected, message", [
        ("on", 1, "Enabled debugging."),
        ("1", 1, "Enabled debugging."),
        ("off", 0, "Disabled debugging."),
    ])
    def test_trace(self, harness, value: str, expected: int, message: str) -> None:
        harness.handle(f"trace {value}")

        assert harness.client.trace_enabled == expected
        assert message in self.output(harness)

    def test_trace_usage(self, harness) -> None:
        harness.handle("trace maybe")

        assert "Usage: trace on|off" in self.output(harness)

    def test_status(self, harness) -> None:
        harness.client.connected = False

        harness.handle("status")

        assert "Connection offline." in self.output(harness)

    def test_help(self, harness) -> None:
        harness.handle("HELP")

        assert "Commands:" in self.output(harness)

    def test_unknown_command(self, harness) -> None:
        assert harness.handle("frobnicate")
        assert "Unknown command: frobnicate" in self.output(harness)

    def test_blank_line(self, harness) -> None:
        assert harness.handle("   ")
        assert self.output(harness) == ""

    @pytest.mark.parametrize("command", ["quit", "exit"])
    def test_quit(self, harness, command: str) -> None:
        assert harness.handle(command) is False

    def test_run_stops_at_quit(self, harness) -> None:
        harness.run(["status", "quit", "connect"])

        harness.client.connect.assert_not_called()

    def test_callbacks(self, harness) -> None:
        harness.on_connection_state(True)
        harness.on_data("OK\r\n")
        harness.on_connection_state(False)
        harness.on_trace("[Projector] Reset() resetting all objects (explicit).")

        assert self.output(harness).splitlines() == [
            "Connection online.",
            "OK",
            "Connection offline.",
            "[Projector] Reset() resetting all objects (explicit).",
        ]


class TestMain:
    """main() wiring with the SessionClient replaced."""

    def run_main(self, monkeypatch, argv, stdin: str, client: MagicMock) -> int:
        from shell_session.__main__ import main

        monkeypatch.setenv("PANEL_PW", "s3cr3t")
        monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
        with patch("shell_session.client.SessionClient", return_value=client) as cls, \
                patch("shell_session.__main__.logging.basicConfig"):
            code = main(argv)
        self.client_kwargs = cls.call_args.kwargs
        return code

    def test_runs_commands(self, monkeypatch, capsys) -> None:
        client = MagicMock()
        client.initialize.return_value = True
        client.connect.return_value = True

        code = self.run_main(
            monkeypatch,
            ["--password-env", "PANEL_PW", "--trace", "--label", "Projector", "op@10.0.0.5"],
            "connect\nsend status\nquit\n",
            client,
        )

        assert code == 0
        client.initialize.assert_called_once_with(
            "10.0.0.5", 22, "op", "s3cr3t",
            label="Projector", trace_enabled=True, reconnect_on_send=True,
        )
        client.send.assert_called_once_with("status")
        client.close.assert_called_once()
        assert "Connected successfully." in capsys.readouterr().out

    def test_login_overrides_target_user(self, monkeypatch) -> None:
        client = MagicMock()
        client.initialize.return_value = True

        self.run_main(
            monkeypatch,
            ["--password-env", "PANEL_PW", "-l", "admin", "--no-reconnect", "op@h"],
            "",
            client,
        )

        args = client.initialize.call_args
        assert args.args[2] == "admin"
        assert args.kwargs["reconnect_on_send"] is False

    def test_invalid_parameters(self, monkeypatch, capsys) -> None:
        client = MagicMock()
        client.initialize.return_value = False

        code = self.run_main(monkeypatch, ["--password-env", "PANEL_PW", "op@h"], "", client)

        assert code == 1
        assert "invalid connection parameters" in capsys.readouterr().err
        client.close.assert_called_once()

    def test_missing_password(self, monkeypatch, capsys) -> None:
        from shell_session.__main__ import main

        monkeypatch.delenv("NO_SUCH_PW", raising=False)
        with patch("shell_session.__main__.logging.basicConfig"):
            code = main(["--password-env", "NO_SUCH_PW", "op@h"])

        assert code == 1
        assert "NO_SUCH_PW" in capsys.readouterr().err

    def test_events_printed(self, monkeypatch, capsys) -> None:
        client = MagicMock()
        client.initialize.return_value = True

        self.run_main(monkeypatch, ["--password-env", "PANEL_PW", "--events", "op@h"], "", client)

        emitter = self.client_kwargs["emitter"]
        assert emitter.collector is not None


def test_help_runs_as_module() -> None:
    """python -m shell_session --help exits cleanly."""
    result = subprocess.run(
        [sys.executable, "-m", "shell_session", "--help"],
        capture_output=True,
        text=True,
        timeout=30,
    )

    assert result.returncode == 0
    assert "[user@]host" in result.stdout
    assert "--known-hosts" in result.stdout
