"""
Console harness for shell-session.

Usage:
    python -m shell_session user@host
    python -m shell_session -p 2222 --label Projector --trace user@host
    python -m shell_session --password-env PANEL_PW user@host
    python -m shell_session --known-hosts ~/.config/shell-session/known_hosts user@host
    python -m shell_session --fingerprint SHA256:abc... user@host

Once started, commands are read from stdin, one per line:

    connect             connect the session
    disconnect          disconnect the session
    send <text>         send one command line to the remote shell
    trace on|off        enable or disable trace output
    status              show connection state
    help                list commands
    quit                disconnect and exit
"""
from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from typing import IO, Any, Iterable

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

HELP_TEXT = """\
Commands:
  connect             Connect to the host
  disconnect          Disconnect from the host
  send <text>         Send a command line to the remote shell
  trace on|off        Enable / disable trace output
  status              Show connection state
  help                Show this help
  quit                Disconnect and exit"""


def parse_target(target: str) -> tuple[str, str | None]:
    """
    Parse user@host target string.

    Returns:
        Tuple of (host, username) where username may be None.
    """
    if "@" in target:
        username, host = target.rsplit("@", 1)
        return host, username
    return target, None


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the console harness."""
    parser = argparse.ArgumentParser(
        prog="shell-session",
        description="Interactive console for a managed SSH shell session",
        epilog="Example: python -m shell_session --trace op@10.0.0.5",
    )

    parser.add_argument(
        "target",
        metavar="[user@]host",
        help="Target host (optionally with username)",
    )

    parser.add_argument(
        "-p", "--port",
        type=int,
        default=22,
        help="SSH port (default: 22)",
    )

    parser.add_argument(
        "-l", "--login",
        metavar="USER",
        help="Login username (alternative to user@host)",
    )

    parser.add_argument(
        "--password-env",
        metavar="VAR",
        help="Read the password from this environment variable instead of prompting",
    )

    parser.add_argument(
        "--label",
        help="Session label used as the trace prefix",
    )

    parser.add_argument(
        "--trace",
        action="store_true",
        help="Start with trace output enabled",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v, -vv, -vvv)",
    )

    parser.add_argument(
        "--no-reconnect",
        action="store_true",
        help="Do not reconnect automatically when sending on a dropped session",
    )

    trust = parser.add_mutually_exclusive_group()
    trust.add_argument(
        "--known-hosts",
        metavar="FILE",
        help="Trust hosts on first use, recording keys in FILE",
    )
    trust.add_argument(
        "--fingerprint",
        metavar="FP",
        action="append",
        help="Only accept a host key with this SHA256 fingerprint (repeatable)",
    )

    parser.add_argument(
        "--events",
        action="store_true",
        help="Print collected diagnostic events as JSONL to stderr on exit",
    )

    return parser


def configure_logging(verbose: int) -> None:
    """Configure root logging from the -v count."""
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)

    if verbose >= 3:
        logging.getLogger("asyncssh").setLevel(logging.DEBUG)
    elif verbose >= 2:
        logging.getLogger("asyncssh").setLevel(logging.INFO)
    else:
        logging.getLogger("asyncssh").setLevel(logging.WARNING)


def build_trust_policy(args: argparse.Namespace) -> Any:
    """Host trust policy selected by --known-hosts / --fingerprint."""
    from shell_session.host_key import (
        StrictFingerprintPolicy,
        TrustAllPolicy,
        TrustOnFirstUsePolicy,
    )

    if args.fingerprint:
        return StrictFingerprintPolicy(args.fingerprint)
    if args.known_hosts:
        return TrustOnFirstUsePolicy(args.known_hosts)
    return TrustAllPolicy()


def read_password(args: argparse.Namespace) -> str:
    """Password from --password-env, else prompted for."""
    if args.password_env:
        value = os.environ.get(args.password_env)
        if not value:
            raise ValueError(f"Environment variable {args.password_env} is not set")
        return value
    return getpass.getpass("Password: ")


class ConsoleHarness:
    """
    Line-oriented command loop driving a SessionClient.

    Kept separate from main() so the command handling can be exercised
    with any object offering the SessionClient surface.
    """

    def __init__(self, client: Any, out: IO[str] | None = None) -> None:
        self.client = client
        self._out = out or sys.stdout

    def print(self, text: str) -> None:
        self._out.write(text + "\n")
        self._out.flush()

    # Callbacks wired into the SessionClient

    def on_connection_state(self, connected: bool) -> None:
        self.print("Connection online." if connected else "Connection offline.")

    def on_data(self, chunk: str) -> None:
        self.print(chunk.rstrip("\r\n"))

    def on_trace(self, line: str) -> None:
        self.print(line)

    def handle(self, line: str) -> bool:
        """
        Execute one console command.

        Returns:
            False when the loop should stop
        """
        command, _, rest = line.strip().partition(" ")
        command = command.lower()

        if not command:
            return True

        if command == "connect":
            if self.client.connect():
                self.print("Connected successfully.")
            else:
                self.print(f"Error, could not connect: {self.client.last_error}")

        elif command == "disconnect":
            if self.client.disconnect():
                self.print("Disconnected successfully.")
            else:
                self.print("Error, could not disconnect.")

        elif command == "send":
            if not self.client.send(rest.strip()):
                self.print(f"Error, could not send: {self.client.last_error}")

        elif command == "trace":
            value = rest.strip().lower()
            if value in ("on", "1", "true"):
                self.client.trace_enabled = 1
                self.print("Enabled debugging.")
            elif value in ("off", "0", "false"):
                self.client.trace_enabled = 0
                self.print("Disabled debugging.")
            else:
                self.print("Usage: trace on|off")

        elif command == "status":
            state = "online" if self.client.connected else "offline"
            self.print(f"Connection {state}.")

        elif command == "help":
            self.print(HELP_TEXT)

        elif command in ("quit", "exit"):
            return False

        else:
            self.print(f"Unknown command: {command} (type 'help')")

        return True

    def run(self, lines: Iterable[str]) -> None:
        for line in lines:
            if not self.handle(line):
                break


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    from shell_session.client import SessionClient
    from shell_session.events import EventCollector, EventEmitter

    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    host, target_user = parse_target(args.target)
    username = args.login or target_user or getpass.getuser()

    try:
        password = read_password(args)
    except (ValueError, EOFError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    collector = EventCollector() if args.events else None
    emitter = EventEmitter(collector=collector)

    harness = ConsoleHarness(client=None)
    client = SessionClient(
        on_connection_state=harness.on_connection_state,
        on_data=harness.on_data,
        trace_sink=harness.on_trace,
        trust_policy=build_trust_policy(args),
        emitter=emitter,
    )
    harness.client = client

    exit_code = 0
    try:
        if not client.initialize(
            host,
            args.port,
            username,
            password,
            label=args.label,
            trace_enabled=args.trace,
            reconnect_on_send=not args.no_reconnect,
        ):
            print("Error: invalid connection parameters", file=sys.stderr)
            return 1

        harness.print(f"Session for {username}@{host}:{args.port}. Type 'help' for commands.")
        harness.run(sys.stdin)

    except KeyboardInterrupt:
        exit_code = 130

    finally:
        client.close()
        emitter.close()
        if collector is not None:
            for event in collector.events:
                print(event.to_json(), file=sys.stderr)

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
