"""
Exceptions and error classification for sftpkit.

Every failure surfaced by a client operation is an ``SFTPError`` whose message
names the operation and path. The underlying paramiko/OS exception is chained
via ``__cause__`` (standard ``raise SFTPError(...) from cause`` pattern).

The classification helpers decide how an error is treated:

- ``connection_error_kind`` - error means the SSH/SFTP connection is unusable
  and must be torn down and re-established
- ``is_not_exist`` - the remote path does not exist
- ``is_unsupported`` - the server does not implement the requested operation
"""

from __future__ import annotations

import errno
import socket
from typing import Optional

import paramiko
from paramiko.sftp import SFTP_DESC, SFTP_BAD_MESSAGE, SFTP_CONNECTION_LOST, SFTP_FAILURE, SFTP_NO_CONNECTION


class SFTPError(Exception):
    """Base exception for SFTP operations.

    Attributes:
        path: Remote path the failing operation was working on, if any
    """

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class SFTPConnectionError(SFTPError):
    """Connection, authentication, or subsystem setup failure."""

    def __init__(self, message: str, hostname: Optional[str] = None):
        self.hostname = hostname
        super().__init__(message)


class HostKeyMismatchError(SFTPConnectionError):
    """The server presented a host key that matches none of the trusted keys."""


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

EOF = "eof"
FAILURE = "failure"
BAD_MESSAGE = "bad-message"
NO_CONNECTION = "no-connection"
CONNECTION_LOST = "connection-lost"

# paramiko raises IOError(text) for these status codes; OpenSSH sends the
# standard description as the text.
_STATUS_KINDS = {
    SFTP_DESC[SFTP_FAILURE].lower(): FAILURE,
    SFTP_DESC[SFTP_BAD_MESSAGE].lower(): BAD_MESSAGE,
    SFTP_DESC[SFTP_NO_CONNECTION].lower(): NO_CONNECTION,
    SFTP_DESC[SFTP_CONNECTION_LOST].lower(): CONNECTION_LOST,
}

_NOT_EXIST_TEXT = ("no such file", "does not exist")


def connection_error_kind(exc: Optional[BaseException]) -> Optional[str]:
    """Return the connection-breaking category of exc, or None.

    Categories: ``eof``, ``failure``, ``bad-message``, ``no-connection``,
    ``connection-lost``. Errors in any of them mean the session can no longer
    be trusted.
    """
    if exc is None:
        return None
    if isinstance(exc, EOFError):
        return EOF
    if isinstance(exc, (paramiko.SSHException, ConnectionError, socket.timeout)):
        return CONNECTION_LOST
    if isinstance(exc, OSError):
        if exc.errno is not None:
            return None
        text = str(exc).strip().lower()
        if text in _STATUS_KINDS:
            return _STATUS_KINDS[text]
        if text == "socket is closed":
            return NO_CONNECTION
    return None


def _chain(exc: Optional[BaseException]):
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__


def is_not_exist(exc: Optional[BaseException]) -> bool:
    """True if exc (or anything in its cause chain) says the path is missing.

    Not every server returns a typed not-found status, so the message text is
    checked as well.
    """
    for e in _chain(exc):
        if isinstance(e, FileNotFoundError):
            return True
        if isinstance(e, OSError) and e.errno == errno.ENOENT:
            return True
        text = str(e).lower()
        if any(t in text for t in _NOT_EXIST_TEXT):
            return True
    return False


def is_unsupported(exc: Optional[BaseException]) -> bool:
    """True if exc is the server refusing an operation it does not implement."""
    for e in _chain(exc):
        text = str(e).lower()
        if "unsupported" in text or "ssh_fx_op_unsupported" in text:
            return True
    return False


__all__ = [
    "SFTPError",
    "SFTPConnectionError",
    "HostKeyMismatchError",
    "connection_error_kind",
    "is_not_exist",
    "is_unsupported",
]
