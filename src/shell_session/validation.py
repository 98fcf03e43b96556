"""
Input validation for session credentials.

Hostnames, usernames, ports and secrets are checked once, when the
credentials are built, so that a session never attempts a connection
with values that could not possibly work or that carry control
characters into the transport.

Every validator returns the (possibly normalised) value or raises
ValueError with a message naming the field.
"""

import ipaddress
import re
from typing import Final, Optional

MAX_HOSTNAME_LENGTH: Final[int] = 253   # RFC 1123
MAX_LABEL_LENGTH: Final[int] = 63
MAX_USERNAME_LENGTH: Final[int] = 32    # useradd default

# Never allowed in a hostname or username
DANGEROUS_CHARS: Final[frozenset[str]] = frozenset("\x00\n\r\t`$(){}[]|;&<>\\'\"")

_CHAR_NAMES: Final[dict[str, str]] = {
    "\x00": "null byte",
    "\n": "newline",
    "\r": "carriage return",
    "\t": "tab",
}

_LABEL_RE: Final[re.Pattern[str]] = re.compile(r"[a-z0-9]([a-z0-9-]*[a-z0-9])?", re.IGNORECASE)

# Control devices often use dotted service accounts
_USERNAME_RE: Final[re.Pattern[str]] = re.compile(r"[a-z_][a-z0-9_.-]*", re.IGNORECASE)
_USERNAME_CHARS: Final[str] = "_.-"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require_text(value: object, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {type(value).__name__}")
    if value == "":
        raise ValueError(f"{field_name} must not be empty")
    return value


def _reject_forbidden(value: str, field_name: str) -> None:
    bad = next((c for c in value if c in DANGEROUS_CHARS), None)
    if bad is not None:
        raise ValueError(
            f"{field_name} contains forbidden character: {_CHAR_NAMES.get(bad, repr(bad))}"
        )


def _reject_overlong(value: str, limit: int, what: str) -> None:
    if len(value) > limit:
        raise ValueError(
            f"{what} exceeds maximum length of {limit} characters (got {len(value)})"
        )


def _label_problem(label: str) -> Optional[str]:
    """Why a single dot-separated hostname label is unusable, or None."""
    if len(label) > MAX_LABEL_LENGTH:
        return (
            f"hostname label '{label}' exceeds maximum length of "
            f"{MAX_LABEL_LENGTH} characters (got {len(label)})"
        )
    if _LABEL_RE.fullmatch(label):
        return None
    if label.startswith("-"):
        return f"hostname label '{label}' must not start with a hyphen"
    if label.endswith("-"):
        return f"hostname label '{label}' must not end with a hyphen"
    return (
        f"hostname label '{label}' contains invalid characters "
        "(only alphanumeric and hyphens allowed)"
    )


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------

def validate_hostname(hostname: str) -> str:
    """
    Validate and normalise a hostname or IP address.

    IPv4 and IPv6 literals pass unchanged apart from case. Names must
    follow RFC 952/1123: at most 253 characters, dot-separated labels of
    at most 63 alphanumerics and hyphens, no label starting or ending
    with a hyphen.

    Returns:
        The hostname in lower case

    Raises:
        ValueError: If the hostname is invalid
    """
    hostname = _require_text(hostname, "hostname")

    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        pass
    else:
        return hostname.lower()

    _reject_forbidden(hostname, "hostname")
    _reject_overlong(hostname, MAX_HOSTNAME_LENGTH, "hostname")

    if hostname.startswith("."):
        raise ValueError("hostname must not start with a dot")
    if hostname.endswith("."):
        raise ValueError("hostname must not end with a dot")
    if ".." in hostname:
        raise ValueError("hostname must not contain consecutive dots")

    for label in hostname.split("."):
        problem = _label_problem(label)
        if problem:
            raise ValueError(problem)

    return hostname.lower()


def validate_username(username: str) -> str:
    """
    Validate a login username.

    Up to 32 characters, starting with a letter or underscore, then
    letters, digits, underscores, dots and hyphens.
    """
    username = _require_text(username, "username")
    _reject_forbidden(username, "username")
    _reject_overlong(username, MAX_USERNAME_LENGTH, "username")

    if _USERNAME_RE.fullmatch(username):
        return username

    head = username[0]
    if not (head.isalpha() or head == "_"):
        raise ValueError(f"username must start with a letter or underscore, got '{head}'")

    for char in username:
        if not (char.isascii() and char.isalnum()) and char not in _USERNAME_CHARS:
            raise ValueError(f"username contains invalid character: {char!r}")
    raise ValueError("username contains invalid characters")


def validate_port(port: int) -> int:
    """Validate a TCP port number (1-65535)."""
    # bool is a subclass of int
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {type(port).__name__}")
    if port < 1:
        raise ValueError(f"port must be at least 1, got {port}")
    if port > 65535:
        raise ValueError(f"port must be at most 65535, got {port}")
    return port


def validate_secret(secret: str) -> str:
    """
    Validate a password or challenge-response secret.

    The secret itself never appears in an error message.
    """
    secret = _require_text(secret, "secret")
    if "\x00" in secret:
        raise ValueError("secret contains forbidden character: null byte")
    return secret
