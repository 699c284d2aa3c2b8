"""
Client configuration.

Example:
    from sftpkit import ClientConfig

    cfg = ClientConfig("sftp.example.com:22", username="demo", password="secret")

    # Or from SFTP_* environment variables
    cfg = ClientConfig.from_env()
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_PORT = 22
DEFAULT_TIMEOUT = 10.0


def _get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Get environment variable as int."""
    val = os.environ.get(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {val!r}")


def _get_env_float(name: str, default: Optional[float] = None) -> Optional[float]:
    """Get environment variable as float."""
    val = os.environ.get(name)
    if val is None or val == "":
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {val!r}")


def _get_env_bool(name: str, default: bool = False) -> bool:
    """Get environment variable as bool (1/true/yes/on)."""
    val = os.environ.get(name)
    if val is None or val == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _split_host_port(hostname: str) -> tuple[str, int]:
    """Split "host" or "host:port" ("[::1]:22" for IPv6) into its parts."""
    if hostname.endswith("]"):
        return hostname.strip("[]"), DEFAULT_PORT
    host, sep, port_str = hostname.rpartition(":")
    if not sep or (host.count(":") and not host.startswith("[")):
        # no port, or a bare IPv6 address
        return hostname.strip("[]"), DEFAULT_PORT
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in hostname {hostname!r}")
    return host.strip("[]"), port


def dedupe(values) -> list:
    """Drop repeated values, keeping first-seen order."""
    seen = set()
    out = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


@dataclass(frozen=True)
class ClientConfig:
    """Connection and behavior settings for an SFTP client.

    Args:
        hostname: "host" or "host:port" (default port 22)
        username: SSH username
        password: Password auth (excluded from repr)
        timeout: Dial and channel-open timeout in seconds (None = no timeout)
        max_connections: Max concurrent read requests per file (0 = paramiko default)
        packet_size: Max SFTP channel packet size (0 = paramiko default)
        host_public_key: Single trusted host key, merged into host_public_keys
        host_public_keys: Trusted server host keys (authorized_keys / known_hosts format)
        client_private_key: Private key text, base64 encoded or raw PEM/OpenSSH
        client_private_key_password: Passphrase for client_private_key (not base64)
        skip_chmod_after_upload: Don't chmod 0600 uploaded files
        skip_directory_creation: Don't create missing parent dirs on upload
        skip_sync_after_upload: Don't fsync uploaded files

    With no host keys configured the server's identity is NOT verified.
    This default is insecure; a warning is logged once per process.
    """

    hostname: str
    username: str = ""
    password: str = field(default="", repr=False)

    timeout: Optional[float] = DEFAULT_TIMEOUT
    max_connections: int = 0
    packet_size: int = 0

    host_public_key: str = ""
    host_public_keys: tuple[str, ...] = ()

    client_private_key: str = field(default="", repr=False)
    client_private_key_password: str = field(default="", repr=False)

    skip_chmod_after_upload: bool = False
    skip_directory_creation: bool = False
    skip_sync_after_upload: bool = False

    def __post_init__(self):
        if not self.hostname or not self.hostname.strip():
            raise ValueError("hostname must be a non-empty string")
        _, port = _split_host_port(self.hostname)
        if port < 1 or port > 65535:
            raise ValueError(f"port must be 1-65535, got {port}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.max_connections < 0:
            raise ValueError(f"max_connections must be non-negative, got {self.max_connections}")
        if self.packet_size < 0:
            raise ValueError(f"packet_size must be non-negative, got {self.packet_size}")
        if isinstance(self.host_public_keys, (list, str)):
            keys = [self.host_public_keys] if isinstance(self.host_public_keys, str) else self.host_public_keys
            object.__setattr__(self, "host_public_keys", tuple(keys))

    @property
    def address(self) -> tuple[str, int]:
        """(host, port) to dial."""
        return _split_host_port(self.hostname)

    def host_keys(self) -> list[str]:
        """Trusted host keys: host_public_keys plus host_public_key, de-duplicated."""
        keys = list(self.host_public_keys)
        if self.host_public_key:
            keys.append(self.host_public_key)
        return dedupe(keys)

    @classmethod
    def from_env(cls, prefix: str = "SFTP_") -> "ClientConfig":
        """Create a ClientConfig from environment variables.

        Reads ``<prefix>HOSTNAME`` (required), ``USERNAME``, ``PASSWORD``,
        ``TIMEOUT``, ``MAX_CONNECTIONS``, ``PACKET_SIZE``, ``HOST_PUBLIC_KEYS``
        (one key per line), ``CLIENT_PRIVATE_KEY``,
        ``CLIENT_PRIVATE_KEY_PASSWORD`` and the ``SKIP_*`` flags.

        Raises:
            ValueError: If HOSTNAME is unset or a numeric variable is malformed
        """
        hostname = os.environ.get(f"{prefix}HOSTNAME")
        if not hostname:
            raise ValueError(f"Environment variable {prefix}HOSTNAME is required")

        keys = os.environ.get(f"{prefix}HOST_PUBLIC_KEYS", "")
        return cls(
            hostname=hostname,
            username=os.environ.get(f"{prefix}USERNAME", ""),
            password=os.environ.get(f"{prefix}PASSWORD", ""),
            timeout=_get_env_float(f"{prefix}TIMEOUT", DEFAULT_TIMEOUT),
            max_connections=_get_env_int(f"{prefix}MAX_CONNECTIONS", 0),
            packet_size=_get_env_int(f"{prefix}PACKET_SIZE", 0),
            host_public_keys=tuple(line.strip() for line in keys.splitlines() if line.strip()),
            client_private_key=os.environ.get(f"{prefix}CLIENT_PRIVATE_KEY", ""),
            client_private_key_password=os.environ.get(f"{prefix}CLIENT_PRIVATE_KEY_PASSWORD", ""),
            skip_chmod_after_upload=_get_env_bool(f"{prefix}SKIP_CHMOD_AFTER_UPLOAD"),
            skip_directory_creation=_get_env_bool(f"{prefix}SKIP_DIRECTORY_CREATION"),
            skip_sync_after_upload=_get_env_bool(f"{prefix}SKIP_SYNC_AFTER_UPLOAD"),
        )


__all__ = ["ClientConfig", "DEFAULT_PORT", "DEFAULT_TIMEOUT"]
