"""
sftpkit - Resilient SFTP client built on paramiko.

Quick start:
    import io
    from sftpkit import ClientConfig, new_client

    cfg = ClientConfig("sftp.example.com", username="demo", password="secret")
    with new_client(cfg) as client:
        client.upload_file("outbox/report.csv", io.BytesIO(b"a,b\\n"))
        print(client.list_files("outbox"))

Connections are opened lazily, health-checked before each operation and
re-established after errors that break them.
"""

from sftpkit.client import Client, SFTPClient, new_client
from sftpkit.config import ClientConfig
from sftpkit.errors import (
    HostKeyMismatchError,
    SFTPConnectionError,
    SFTPError,
    connection_error_kind,
    is_not_exist,
    is_unsupported,
)
from sftpkit.file import File
from sftpkit.hostkeys import HostKeyMatcher, InsecureHostKeyNotice, parse_public_key, read_signer
from sftpkit.metrics import DEFAULT_METRICS, ClientMetrics
from sftpkit.types import SKIP_DIR, WalkEntry, WalkFunc

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Clients
    "Client",
    "SFTPClient",
    "new_client",
    "ClientConfig",
    "File",
    # Walk
    "SKIP_DIR",
    "WalkEntry",
    "WalkFunc",
    # Host keys
    "HostKeyMatcher",
    "InsecureHostKeyNotice",
    "parse_public_key",
    "read_signer",
    # Metrics
    "ClientMetrics",
    "DEFAULT_METRICS",
    # Errors
    "SFTPError",
    "SFTPConnectionError",
    "HostKeyMismatchError",
    "connection_error_kind",
    "is_not_exist",
    "is_unsupported",
]
