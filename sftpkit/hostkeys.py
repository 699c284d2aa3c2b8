"""
Host key validation and client key loading.

HostKeyMatcher accepts a server only if its presented host key equals one of
the trusted keys. Keys are given in authorized_keys or known_hosts line format
("ssh-ed25519 AAAA...", "example.io ecdsa-sha2-nistp256 AAAA..."), or as the
base64 encoding of such a line.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import threading
from typing import Iterable, Optional, Union

import paramiko

from sftpkit.errors import HostKeyMismatchError

logger = logging.getLogger(__name__)

_KEY_TYPE_PREFIXES = ("ssh-", "ecdsa-", "sk-")

# Tried in order; each raises SSHException for a file of another type
_PRIVATE_KEY_CLASSES = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)


def _b64decode(text: str) -> bytes:
    """Strict base64 decode ignoring whitespace; b"" if text isn't base64."""
    try:
        return base64.b64decode("".join(text.split()), validate=True)
    except (binascii.Error, ValueError):
        return b""


def _key_from_blob(key_type: str, blob: bytes) -> paramiko.PKey:
    try:
        return paramiko.PKey.from_type_string(key_type, blob)
    except (paramiko.SSHException, paramiko.UnknownKeyType, ValueError, TypeError) as e:
        raise ValueError(f"invalid {key_type} public key: {e}") from e


def _key_from_wire(blob: bytes) -> Optional[paramiko.PKey]:
    """Key from a raw wire-format blob (uint32 length + key type first), or None."""
    if len(blob) <= 4:
        return None
    length = int.from_bytes(blob[:4], "big")
    if length == 0 or 4 + length >= len(blob):
        return None
    try:
        key_type = blob[4 : 4 + length].decode("ascii")
    except UnicodeDecodeError:
        return None
    if not key_type.startswith(_KEY_TYPE_PREFIXES):
        return None
    return _key_from_blob(key_type, blob)


def parse_public_key(data: Union[str, bytes]) -> paramiko.PKey:
    """Parse a public key line into a paramiko key.

    Raises:
        ValueError: If no supported key can be read from data
    """
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    text = text.strip()
    fields = text.split()

    for i, token in enumerate(fields[:-1]):
        if token.startswith(_KEY_TYPE_PREFIXES):
            blob = _b64decode(fields[i + 1])
            if not blob:
                raise ValueError(f"invalid base64 key data for {token}")
            return _key_from_blob(token, blob)

    decoded = _b64decode(text)
    if decoded:
        key = _key_from_wire(decoded)
        if key is not None:
            return key
        # base64 of a key line
        try:
            line = decoded.decode("utf-8")
        except UnicodeDecodeError:
            line = ""
        if any(token.startswith(_KEY_TYPE_PREFIXES) for token in line.split()):
            return parse_public_key(line)

    raise ValueError(f"no public key found in {text[:40]!r}")


class HostKeyMatcher:
    """Predicate over a presented host key against an ordered set of trusted keys.

    Example:
        matcher = HostKeyMatcher.from_strings(["ssh-ed25519 AAAA..."])
        matcher.check("sftp.example.com", transport.get_remote_server_key())
    """

    def __init__(self, keys: Iterable[paramiko.PKey]):
        by_blob = {}
        for key in keys:
            by_blob.setdefault(key.asbytes(), key)
        self._keys = tuple(by_blob.values())

    @classmethod
    def from_strings(cls, keys: Iterable[str]) -> "HostKeyMatcher":
        """Parse each key string.

        Raises:
            ValueError: If a key cannot be parsed (message names its index)
        """
        parsed = []
        for i, key in enumerate(keys):
            try:
                parsed.append(parse_public_key(key))
            except ValueError as e:
                raise ValueError(f"sftp: reading host key at index {i}: {e}") from e
        return cls(parsed)

    @property
    def keys(self) -> tuple[paramiko.PKey, ...]:
        return self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def matches(self, key: paramiko.PKey) -> bool:
        presented = key.asbytes()
        return any(presented == trusted.asbytes() for trusted in self._keys)

    def check(self, hostname: str, key: paramiko.PKey) -> None:
        """Raise HostKeyMismatchError unless key is trusted."""
        if not self.matches(key):
            raise HostKeyMismatchError("sftp: no matching host keys", hostname=hostname)


# ---------------------------------------------------------------------------
# Insecure default notice
# ---------------------------------------------------------------------------


class InsecureHostKeyNotice:
    """Logs the "host key not verified" warning at most once.

    One instance is shared by every client in the process (INSECURE_HOST_KEY_NOTICE);
    tests pass their own to count emissions.
    """

    MESSAGE = (
        "sftp: WARNING!!! Insecure default of skipping SFTP host key validation. "
        "Please set host_public_keys"
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._count = 0

    @property
    def count(self) -> int:
        """Number of times the warning was logged (0 or 1)."""
        with self._lock:
            return self._count

    def emit(self, log: Optional[logging.Logger] = None) -> bool:
        """Log the warning if it hasn't been logged yet. Returns True if it was."""
        with self._lock:
            if self._count:
                return False
            self._count += 1
        (log or logger).warning(self.MESSAGE)
        return True


INSECURE_HOST_KEY_NOTICE = InsecureHostKeyNotice()


# ---------------------------------------------------------------------------
# Client keys
# ---------------------------------------------------------------------------


def read_private_key(data: bytes, passphrase: str = "") -> paramiko.PKey:
    """Load a PEM or OpenSSH private key of any supported type.

    Raises:
        paramiko.PasswordRequiredException: Key is encrypted and no passphrase given
        paramiko.SSHException: Key can't be parsed (or the passphrase is wrong)
    """
    text = data.decode("utf-8", errors="replace")
    password = passphrase or None
    last_exc: Optional[Exception] = None
    for key_class in _PRIVATE_KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(text), password=password)
        except paramiko.PasswordRequiredException:
            raise
        except (paramiko.SSHException, ValueError, TypeError) as e:
            last_exc = e
    raise paramiko.SSHException(f"unable to parse private key: {last_exc}")


def read_signer(raw: str, passphrase: str = "") -> paramiko.PKey:
    """Load the client key from base64-encoded key text, or the raw text itself."""
    decoded = _b64decode(raw)
    if decoded:
        return read_private_key(decoded, passphrase)
    return read_private_key(raw.encode("utf-8"), passphrase)


__all__ = [
    "HostKeyMatcher",
    "InsecureHostKeyNotice",
    "INSECURE_HOST_KEY_NOTICE",
    "parse_public_key",
    "read_private_key",
    "read_signer",
]
