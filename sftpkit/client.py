"""
SFTP clients.

Client is the capability set shared by the remote SFTPClient and the local
sftpkit.testing.MockClient.

Example:
    from sftpkit import ClientConfig, new_client

    cfg = ClientConfig("sftp.example.com:22", username="demo", password="secret",
                       host_public_keys=("ssh-ed25519 AAAA...",))
    with new_client(cfg) as client:
        client.upload_file("outbox/a.txt", io.BytesIO(b"hello"))
        for path in client.list_files("outbox"):
            print(path)
"""

from __future__ import annotations

import io
import logging
import posixpath
from abc import ABC, abstractmethod
from typing import BinaryIO, NoReturn, Optional

import paramiko

from sftpkit.config import ClientConfig
from sftpkit.connection import ConnectionManager
from sftpkit.errors import SFTPError, is_not_exist, is_unsupported
from sftpkit.file import File
from sftpkit.hostkeys import InsecureHostKeyNotice
from sftpkit.metrics import ClientMetrics
from sftpkit.paths import derive_pattern, match_fold, restore_case, under_prefix
from sftpkit.session import RemoteSession
from sftpkit.types import SKIP_DIR, WalkEntry, WalkFunc

COPY_CHUNK_SIZE = 32 * 1024
UPLOAD_MODE = 0o600

# What paramiko raises for failed remote operations
REMOTE_ERRORS = (OSError, EOFError, paramiko.SSHException)


class Client(ABC):
    """
    Operations on a file store reached over SFTP.

    Lifecycle:
        - Use as context manager (recommended): `with client: ...`
        - Or manually call close() when done

    Thread Safety:
        Every operation is serialized on the client's single connection.
    """

    @abstractmethod
    def ping(self) -> None:
        """
        Verify the server is reachable and the session works.

        Raises:
            SFTPError: If the server can't be reached
        """

    @abstractmethod
    def close(self) -> None:
        """Release the connection. Never raises."""

    @abstractmethod
    def open(self, path: str) -> File:
        """
        Read the whole file at path into memory.

        Returns:
            File whose contents is an in-memory buffer

        Raises:
            SFTPError: If the file can't be opened or read
        """

    @abstractmethod
    def reader(self, path: str) -> File:
        """
        Open path for streaming. The caller must close the returned File.

        Raises:
            SFTPError: If the file can't be opened
        """

    @abstractmethod
    def delete(self, path: str) -> None:
        """
        Remove path. Deleting a path that doesn't exist succeeds.

        Raises:
            SFTPError: If the path exists but can't be removed
        """

    @abstractmethod
    def upload_file(self, path: str, contents: BinaryIO) -> None:
        """
        Write contents to path, creating parent directories as needed.
        contents is always closed.

        Raises:
            SFTPError: If any step of the upload fails
        """

    @abstractmethod
    def list_files(self, dir: str) -> list[str]:
        """
        Paths of the files directly under dir.

        Absolute dir gives absolute paths, relative gives relative. Names are
        matched ignoring case and returned with the server's casing.
        """

    @abstractmethod
    def walk(self, dir: str, fn: WalkFunc) -> None:
        """
        Call fn(path, entry, err) for dir and everything below it, depth-first.

        fn may return SKIP_DIR to skip a directory (or, from a file, the rest
        of its directory). An exception raised by fn stops the walk.
        """

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def _close_quietly(obj, log: logging.Logger) -> None:
    try:
        obj.close()
    except Exception as e:
        log.debug("Ignoring error closing %r: %s", obj, e)


class SFTPClient(Client):
    """Client for a remote SFTP server.

    Construction doesn't touch the network; the first operation connects.
    Use new_client() to connect (and fail) right away.

    Args:
        cfg: Client configuration
        logger: Logger for client events (default: this module's logger)
        metrics: Connection metrics sink (default: sftpkit.metrics.DEFAULT_METRICS)
        notice: Guard for the one-time insecure host key warning

    Raises:
        ValueError: If a configured host key can't be parsed
    """

    def __init__(
        self,
        cfg: ClientConfig,
        logger: Optional[logging.Logger] = None,
        metrics: Optional[ClientMetrics] = None,
        notice: Optional[InsecureHostKeyNotice] = None,
    ):
        self._cfg = cfg
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._conn = ConnectionManager(cfg, logger=self._logger, metrics=metrics, notice=notice)

    @property
    def config(self) -> ClientConfig:
        return self._cfg

    @property
    def connected(self) -> bool:
        return self._conn.connected

    def _fail(self, exc: BaseException, message: str, path: Optional[str] = None) -> NoReturn:
        """Classify exc (reconnecting if it broke the connection) and raise it as SFTPError."""
        err = self._conn.recover(exc) or exc
        raise SFTPError(f"{message}: {err}", path=path) from err

    # -- Client --------------------------------------------------------------

    def ping(self) -> None:
        with self._conn.lock:
            session = self._conn.acquire()
            try:
                session.read_dir(".")
            except REMOTE_ERRORS as e:
                self._conn.record(e)
                err = self._conn.recover(e)
                if err is None:
                    return
                raise SFTPError(f"sftp: ping {err}") from err
            self._conn.record(None)

    def close(self) -> None:
        self._conn.close()

    def getwd(self) -> str:
        """The server-side working directory."""
        with self._conn.lock:
            session = self._conn.acquire()
            try:
                return session.getwd()
            except REMOTE_ERRORS as e:
                self._fail(e, "sftp: getwd")

    def delete(self, path: str) -> None:
        with self._conn.lock:
            session = self._conn.acquire()
            try:
                session.stat(path)
            except REMOTE_ERRORS as e:
                if is_not_exist(e):
                    return
                self._fail(e, f"sftp: delete stat {path}", path)
            try:
                session.remove(path)
            except REMOTE_ERRORS as e:
                self._fail(e, f"sftp: delete {path}", path)

    def upload_file(self, path: str, contents: BinaryIO) -> None:
        try:
            with self._conn.lock:
                session = self._conn.acquire()
                if not self._cfg.skip_directory_creation:
                    self._ensure_parent(session, path)
                self._write(session, path, contents)
        finally:
            _close_quietly(contents, self._logger)

    def _ensure_parent(self, session: RemoteSession, path: str) -> None:
        parent = posixpath.dirname(path)
        if not parent:
            return
        try:
            session.stat(parent)
            return
        except REMOTE_ERRORS as e:
            if not is_not_exist(e):
                self._fail(e, f"sftp: problem checking if {parent} exists", path)
        try:
            session.mkdir_all(parent)
        except REMOTE_ERRORS as e:
            self._fail(e, f"sftp: problem creating {parent} as parent dir", path)

    def _write(self, session: RemoteSession, path: str, contents: BinaryIO) -> None:
        try:
            fd = session.open_for_write(path)
        except REMOTE_ERRORS as e:
            self._fail(e, f"sftp: problem creating remote file {path}", path)

        try:
            n = 0
            while True:
                try:
                    chunk = contents.read(COPY_CHUNK_SIZE)
                except Exception as e:
                    # Local source failure; the connection is fine
                    raise SFTPError(f"sftp: problem copying (n={n}) {path}: {e}", path=path) from e
                if not chunk:
                    break
                try:
                    fd.write(chunk)
                except REMOTE_ERRORS as e:
                    self._fail(e, f"sftp: problem copying (n={n}) {path}", path)
                n += len(chunk)

            if not self._cfg.skip_sync_after_upload:
                try:
                    session.sync(fd)
                except REMOTE_ERRORS as e:
                    if not is_unsupported(e):
                        self._fail(e, f"sftp: problem with sync on {path}", path)
                    self._logger.debug("sftp: server doesn't support fsync, skipped for %s", path)

            if not self._cfg.skip_chmod_after_upload:
                try:
                    fd.chmod(UPLOAD_MODE)
                except REMOTE_ERRORS as e:
                    self._fail(e, f"sftp: problem chmod {path}", path)
        except Exception:
            _close_quietly(fd, self._logger)
            raise

        try:
            fd.close()
        except REMOTE_ERRORS as e:
            self._fail(e, f"sftp: closing {path} after writing failed", path)
        self._logger.debug("sftp: uploaded %d bytes to %s", n, path)

    def reader(self, path: str) -> File:
        with self._conn.lock:
            return self._reader(self._conn.acquire(), path)

    def _reader(self, session: RemoteSession, path: str) -> File:
        try:
            fd = session.open(path)
        except REMOTE_ERRORS as e:
            self._fail(e, f"sftp: open {path}", path)
        try:
            attrs = fd.stat()
        except REMOTE_ERRORS as e:
            self._logger.debug("sftp: stat of open file %s failed: %s", path, e)
            attrs = None
        return File(path, fd, attrs=attrs)

    def open(self, path: str) -> File:
        with self._conn.lock:
            session = self._conn.acquire()
            r = self._reader(session, path)
            buf = io.BytesIO()
            n = 0
            try:
                session.prefetch(r.contents, getattr(r.attrs, "st_size", None))
                while True:
                    chunk = r.contents.read(COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    buf.write(chunk)
                    n += len(chunk)
            except REMOTE_ERRORS as e:
                _close_quietly(r, self._logger)
                self._fail(e, f"sftp: read (n={n}) {path}", path)
            _close_quietly(r, self._logger)
        buf.seek(0)
        return File(path, buf, mod_time=r.mod_time, attrs=r.attrs)

    def list_files(self, dir: str) -> list[str]:
        pattern, needs_wd = derive_pattern(dir)
        filenames: list[str] = []

        def collect(path: str, entry: Optional[WalkEntry], err: Optional[BaseException]):
            if err is not None:
                raise err
            if entry is None or entry.is_dir:
                return None
            if match_fold(pattern, path):
                filenames.append(restore_case(dir, pattern, path))
            return None

        with self._conn.lock:
            wd = self.getwd() if needs_wd else "."
            try:
                self.walk(wd, collect)
            except ValueError as e:
                raise SFTPError(f"sftp: listing {dir} failed: {e}", path=dir) from e
        return filenames

    def walk(self, dir: str, fn: WalkFunc) -> None:
        with self._conn.lock:
            session = self._conn.acquire()
            walker = session.walk(dir)
            skipped: list[str] = []

            while walker.step():
                path = walker.path()
                err = walker.err()
                if err is not None:
                    self._fail(err, f"sftp: walk {path}", path)

                if any(under_prefix(path, prefix) for prefix in skipped):
                    walker.skip_dir()
                    continue

                attrs = walker.stat()
                if attrs is None:
                    continue

                entry = WalkEntry.from_attrs(posixpath.basename(path) or path, attrs)
                if fn(path, entry, None) is SKIP_DIR:
                    skipped.append(path if entry.is_dir else posixpath.dirname(path) or ".")
                    walker.skip_dir()

    def __repr__(self):
        return f"SFTPClient({self._cfg.hostname!r}, connected={self.connected})"


def new_client(cfg: ClientConfig, logger: Optional[logging.Logger] = None, **kwargs) -> SFTPClient:
    """Create an SFTPClient and connect it immediately.

    Keyword arguments are passed to SFTPClient.

    Raises:
        SFTPError: If the first connection fails (the client is closed)
    """
    client = SFTPClient(cfg, logger=logger, **kwargs)
    try:
        wd = client.getwd()
    except Exception:
        client.close()
        raise
    client._logger.info("starting SFTP client in %s", wd)
    return client


__all__ = ["Client", "SFTPClient", "new_client", "COPY_CHUNK_SIZE", "UPLOAD_MODE", "REMOTE_ERRORS"]
