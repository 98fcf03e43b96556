"""
Host trust policies.

The transport asks the session's HostTrustPolicy whether to accept the
host key presented during the handshake. Three policies are provided:

- TrustAllPolicy: accept every key. This disables host verification and
  is only appropriate on a closed control network; it is the default
  because the deployed control systems have always behaved this way.
- TrustOnFirstUsePolicy: accept and record unknown hosts in an OpenSSH
  known_hosts file, reject keys that differ from (or are revoked in) it.
- StrictFingerprintPolicy: accept only keys whose SHA256 fingerprint is
  in a configured set.

KnownHostsStore implements the known_hosts reading/writing the TOFU policy
relies on: plain and bracketed [host]:port entries, hashed |1|salt|hash
entries and @revoked markers.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

import asyncssh

logger = logging.getLogger(__name__)


class HostKeyResult(str, Enum):
    """Outcome of looking a host key up in a known_hosts store."""
    TRUSTED = "trusted"     # Key matches a stored entry
    UNKNOWN = "unknown"     # Host not in the store
    CHANGED = "changed"     # Host known with a different key
    REVOKED = "revoked"     # Key is marked @revoked


@dataclass
class HostKeyEntry:
    """
    One parsed known_hosts line.

    Attributes:
        hostnames: Hostnames/patterns this entry matches
        key_type: SSH key type (ssh-rsa, ssh-ed25519, ...)
        key_data: Base64-encoded public key
        is_revoked: Entry carried the @revoked marker
    """
    hostnames: list[str]
    key_type: str
    key_data: str
    is_revoked: bool = False


@dataclass(frozen=True)
class TrustDecision:
    """Last decision taken by a policy, kept for diagnostics."""
    host: str
    port: int
    fingerprint: str
    accepted: bool
    result: HostKeyResult | None = None


def get_key_fingerprint(key: asyncssh.SSHKey) -> str:
    """
    SHA256 fingerprint of an SSH public key, as printed by OpenSSH.

    Returns:
        Fingerprint string (e.g. "SHA256:...")
    """
    digest = hashlib.sha256(key.public_data).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def _key_type(key: asyncssh.SSHKey) -> str:
    algorithm = key.algorithm
    return algorithm.decode("ascii") if isinstance(algorithm, bytes) else algorithm


def hash_hostname(hostname: str, salt: bytes) -> str:
    """Hash a hostname with OpenSSH's |1|salt|hash known_hosts scheme."""
    digest = hmac.new(salt, hostname.encode("utf-8"), hashlib.sha1).digest()
    salt_b64 = base64.b64encode(salt).decode("ascii")
    hash_b64 = base64.b64encode(digest).decode("ascii")
    return f"|1|{salt_b64}|{hash_b64}"


def _matches_hashed(pattern: str, hostname: str) -> bool:
    parts = pattern.split("|")
    if len(parts) != 4:
        return False

    try:
        salt = base64.b64decode(parts[2])
        stored = base64.b64decode(parts[3])
    except (ValueError, binascii.Error):
        return False

    computed = hmac.new(salt, hostname.encode("utf-8"), hashlib.sha1).digest()
    return hmac.compare_digest(stored, computed)


def format_known_host(host: str, port: int) -> str:
    """known_hosts host field: bare host on port 22, else [host]:port."""
    return host if port == 22 else f"[{host}]:{port}"


def host_matches_pattern(host: str, port: int, pattern: str) -> bool:
    """Check if host:port matches one known_hosts hostname pattern."""
    if pattern.startswith("|1|"):
        if _matches_hashed(pattern, host):
            return port == 22
        return _matches_hashed(pattern, f"[{host}]:{port}")

    bracketed = re.match(r"^\[([^\]]+)\]:(\d+)$", pattern)
    if bracketed:
        return (
            host.lower() == bracketed.group(1).lower()
            and port == int(bracketed.group(2))
        )

    return host.lower() == pattern.lower() and port == 22


class KnownHostsStore:
    """
    Reads, checks and appends OpenSSH known_hosts entries.

    Usage:
        store = KnownHostsStore(Path("~/.config/shell-session/known_hosts"))
        if store.check(host, port, key) == HostKeyResult.UNKNOWN:
            store.add(host, port, key)
    """

    def __init__(self, path: Path | str, hash_hostnames: bool = False) -> None:
        self._path = Path(path).expanduser()
        self._hash_hostnames = hash_hostnames
        self._entries: list[HostKeyEntry] = []
        self.reload()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def entries(self) -> list[HostKeyEntry]:
        return list(self._entries)

    def reload(self) -> None:
        """(Re)load entries from disk; a missing file is an empty store."""
        self._entries = []
        if not self._path.exists():
            return

        with open(self._path, "r", encoding="utf-8") as f:
            for line in f:
                entry = self.parse_line(line)
                if entry is not None:
                    self._entries.append(entry)

    @staticmethod
    def parse_line(line: str) -> HostKeyEntry | None:
        """
        Parse one known_hosts line.

        Format:
            [@revoked] hostname[,hostname2] key_type key_data [comment]

        Returns:
            HostKeyEntry, or None for blank lines, comments and junk
        """
        line = line.strip()
        if not line or line.startswith("#"):
            return None

        is_revoked = False
        if line.startswith("@revoked "):
            is_revoked = True
            line = line[len("@revoked "):]

        parts = line.split()
        if len(parts) < 3:
            return None

        return HostKeyEntry(
            hostnames=[h.strip() for h in parts[0].split(",")],
            key_type=parts[1],
            key_data=parts[2],
            is_revoked=is_revoked,
        )

    def check(self, host: str, port: int, key: asyncssh.SSHKey) -> HostKeyResult:
        """Look a presented key up against the stored entries."""
        key_type = _key_type(key)
        key_data = base64.b64encode(key.public_data).decode("ascii")

        matching = [
            entry for entry in self._entries
            if any(host_matches_pattern(host, port, p) for p in entry.hostnames)
        ]
        if not matching:
            return HostKeyResult.UNKNOWN

        for entry in matching:
            if entry.key_type == key_type and entry.key_data == key_data:
                return HostKeyResult.REVOKED if entry.is_revoked else HostKeyResult.TRUSTED

        return HostKeyResult.CHANGED

    def add(self, host: str, port: int, key: asyncssh.SSHKey) -> None:
        """Append an entry for host:port and key to the file and the store."""
        key_line = key.export_public_key("openssh").decode("utf-8").strip()
        key_type, key_data = key_line.split(None, 2)[:2]

        host_field = format_known_host(host, port)
        if self._hash_hostnames:
            host_field = hash_hostname(host_field, secrets.token_bytes(20))

        self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(f"{host_field} {key_type} {key_data}\n")

        self._entries.append(HostKeyEntry(
            hostnames=[host_field],
            key_type=key_type,
            key_data=key_data,
        ))


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------

@runtime_checkable
class HostTrustPolicy(Protocol):
    """Decides whether a presented host key is accepted."""

    last_decision: TrustDecision | None

    def check(self, host: str, port: int, key: asyncssh.SSHKey) -> bool:
        """Return True to accept the key and continue the handshake."""
        ...


class TrustAllPolicy:
    """
    Accept every host key.

    Security trade-off: this gives no protection against an impostor
    host or a man-in-the-middle. Use only on closed control networks;
    prefer TrustOnFirstUsePolicy or StrictFingerprintPolicy elsewhere.
    """

    def __init__(self) -> None:
        self.last_decision: TrustDecision | None = None
        self._warned = False

    def check(self, host: str, port: int, key: asyncssh.SSHKey) -> bool:
        if not self._warned:
            logger.warning(
                "Host key verification disabled: accepting any key presented by %s:%d",
                host, port,
            )
            self._warned = True

        self.last_decision = TrustDecision(
            host=host, port=port, fingerprint=get_key_fingerprint(key), accepted=True,
        )
        return True


class TrustOnFirstUsePolicy:
    """
    Accept unknown hosts once and remember them.

    Unknown keys are written to the known_hosts store and accepted;
    matching keys are accepted; changed or revoked keys are rejected.
    """

    def __init__(self, store: KnownHostsStore | Path | str) -> None:
        self._store = store if isinstance(store, KnownHostsStore) else KnownHostsStore(store)
        self.last_decision: TrustDecision | None = None

    @property
    def store(self) -> KnownHostsStore:
        return self._store

    def check(self, host: str, port: int, key: asyncssh.SSHKey) -> bool:
        result = self._store.check(host, port, key)
        fingerprint = get_key_fingerprint(key)

        if result == HostKeyResult.UNKNOWN:
            logger.info("Recording new host key for %s:%d (%s)", host, port, fingerprint)
            self._store.add(host, port, key)
            accepted = True
        elif result == HostKeyResult.TRUSTED:
            accepted = True
        else:
            logger.error(
                "Rejecting %s host key for %s:%d (%s)",
                result.value, host, port, fingerprint,
            )
            accepted = False

        self.last_decision = TrustDecision(
            host=host, port=port, fingerprint=fingerprint, accepted=accepted, result=result,
        )
        return accepted


class StrictFingerprintPolicy:
    """Accept only keys whose SHA256 fingerprint is listed."""

    def __init__(self, fingerprints: Iterable[str]) -> None:
        self._fingerprints = {self._normalise(fp) for fp in fingerprints}
        assert self._fingerprints, "At least one fingerprint is required"
        self.last_decision: TrustDecision | None = None

    @staticmethod
    def _normalise(fingerprint: str) -> str:
        fingerprint = fingerprint.strip().rstrip("=")
        if not fingerprint.startswith("SHA256:"):
            fingerprint = "SHA256:" + fingerprint
        return fingerprint

    def check(self, host: str, port: int, key: asyncssh.SSHKey) -> bool:
        fingerprint = get_key_fingerprint(key)
        accepted = fingerprint in self._fingerprints
        if not accepted:
            logger.error("Host key %s for %s:%d is not in the trusted set", fingerprint, host, port)

        self.last_decision = TrustDecision(
            host=host, port=port, fingerprint=fingerprint, accepted=accepted,
        )
        return accepted
