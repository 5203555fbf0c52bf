"""
tcpgate.auth
~~~~~~~~~~~~
Basic-Auth credential store, header scanner and validator.

The store holds at most one username/password pair, resolved once at
startup and shared read-only by every session.  An empty store means
authentication is disabled and every connection passes.
"""

from __future__ import annotations

import base64
import binascii
import hmac
from dataclasses import dataclass
from typing import Optional

from .logger import GateLogger

HEADER_PREFIX = "Authorization: "
SCHEME_PREFIX = "Basic "

# rejection reasons, as logged in auth_fail events
MALFORMED_HEADER = "malformed_header"
DECODE_FAILURE = "decode_failure"
CREDENTIAL_PARSE_FAILURE = "credential_parse_failure"
INVALID_CREDENTIAL_FORMAT = "invalid_credential_format"
BAD_CREDENTIALS = "bad_credentials"


class AuthError(Exception):
    def __init__(self, reason: str, supplied_user: str | None = None):
        self.reason = reason
        self.supplied_user = supplied_user
        super().__init__(reason)


@dataclass(frozen=True, slots=True)
class CredentialStore:
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return self.username is not None and self.password is not None

    def is_authorized(self, username: str, password: str) -> bool:
        """True if the pair matches byte-for-byte, or if auth is disabled."""
        if not self.enabled:
            return True
        user_ok = hmac.compare_digest(username.encode(), self.username.encode())
        pass_ok = hmac.compare_digest(password.encode(), self.password.encode())
        return user_ok & pass_ok


def scan_auth_header(data: bytes) -> Optional[str]:
    """
    Return the first line of *data* starting with ``Authorization: ``.

    Undecodable input yields None, the same as a buffer with no header.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    return find_auth_header(text)


def find_auth_header(text: str) -> Optional[str]:
    for line in text.split("\n"):
        line = line.rstrip("\r")
        if line.startswith(HEADER_PREFIX):
            return line
    return None


def _decode_basic(header_line: str) -> tuple[str, str]:
    value = header_line.removeprefix(HEADER_PREFIX).strip()
    if not value.startswith(SCHEME_PREFIX):
        raise AuthError(MALFORMED_HEADER)

    token = value[len(SCHEME_PREFIX):]
    try:
        raw = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AuthError(DECODE_FAILURE) from e
    # b64decode ignores stray bits before the padding
    if base64.b64encode(raw).decode("ascii") != token:
        raise AuthError(DECODE_FAILURE)

    try:
        decoded = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise AuthError(CREDENTIAL_PARSE_FAILURE) from e

    username, sep, password = decoded.partition(":")
    if not sep:
        raise AuthError(INVALID_CREDENTIAL_FORMAT)
    return username, password


def authenticate(header_line: str, store: CredentialStore) -> str:
    """Return the authenticated username or raise AuthError."""
    username, password = _decode_basic(header_line)
    if not store.is_authorized(username, password):
        raise AuthError(BAD_CREDENTIALS, supplied_user=username)
    return username


def validate_basic_auth(
    header_line: str,
    store: CredentialStore,
    peer: str = "-",
    log: GateLogger | None = None,
) -> bool:
    """
    Check one ``Authorization`` line against *store*.

    Never raises: every failure is logged as an ``auth_fail`` event and
    reported as False.  Only the attempted username is ever logged.
    """
    log = log or GateLogger()
    try:
        username = authenticate(header_line, store)
    except AuthError as exc:
        if exc.supplied_user is not None:
            log.auth_attempt(peer, exc.supplied_user)
        log.auth_fail(peer, exc.reason, exc.supplied_user)
        return False

    log.auth_attempt(peer, username)
    return True
