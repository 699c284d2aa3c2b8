"""
Testing utilities - MockClient for unit tests without an SFTP server.

MockClient implements the Client operations against a local directory and can
be told to fail a number of calls.

Example:
    def test_retry(mock_client):
        mock_client.err = SFTPError("sftp: boom")
        mock_client.desired_err_responses = 1
        with pytest.raises(SFTPError):
            mock_client.delete("a.txt")
        mock_client.delete("a.txt")  # succeeds
        assert mock_client.calls == 2
"""

from __future__ import annotations

import os
import posixpath
import threading
from typing import BinaryIO, Optional, Union

from sftpkit.client import UPLOAD_MODE, Client
from sftpkit.errors import SFTPError
from sftpkit.file import File, mod_time_of
from sftpkit.paths import clean
from sftpkit.types import SKIP_DIR, WalkEntry, WalkFunc


class MockClient(Client):
    """Client backed by a local directory.

    Attributes:
        err: Exception to raise from the next calls (None = never fail)
        calls: Number of calls to open/reader/delete/upload_file/list_files/walk
        desired_err_responses: How many more calls raise err
    """

    def __init__(self, root: Union[str, os.PathLike]):
        self._root = os.fspath(root)
        self._lock = threading.RLock()
        self.err: Optional[BaseException] = None
        self.calls = 0
        self.desired_err_responses = 0

    @property
    def dir(self) -> str:
        """The local directory standing in for the server."""
        return self._root

    def _local(self, path: str) -> str:
        return os.path.join(self._root, path.lstrip("/"))

    def _count_call(self) -> None:
        """Count a call and raise the injected error while it has responses left."""
        self.calls += 1
        if self.err is not None and self.desired_err_responses > 0:
            self.desired_err_responses -= 1
            raise self.err

    # -- Client --------------------------------------------------------------

    def ping(self) -> None:
        if self.err is not None:
            raise self.err

    def close(self) -> None:
        pass

    def reader(self, path: str) -> File:
        return self.open(path)

    def open(self, path: str) -> File:
        with self._lock:
            self._count_call()
            local = self._local(path)
            try:
                fd = open(local, "rb")
            except OSError as e:
                raise SFTPError(f"sftp: open {path}: {e}", path=path) from e
            attrs = os.fstat(fd.fileno())
            return File(posixpath.basename(path), fd, mod_time=mod_time_of(attrs), attrs=attrs)

    def delete(self, path: str) -> None:
        with self._lock:
            self._count_call()
            try:
                os.remove(self._local(path))
            except FileNotFoundError:
                return
            except OSError as e:
                raise SFTPError(f"sftp: delete {path}: {e}", path=path) from e

    def upload_file(self, path: str, contents: BinaryIO) -> None:
        try:
            with self._lock:
                self._count_call()
                local = self._local(path)
                os.makedirs(os.path.dirname(local) or self._root, exist_ok=True)
                data = contents.read()
                fd = os.open(local, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, UPLOAD_MODE)
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.chmod(local, UPLOAD_MODE)
        finally:
            contents.close()

    def list_files(self, dir: str) -> list[str]:
        with self._lock:
            self._count_call()
            local = self._local(dir)
            os.makedirs(local, exist_ok=True)
            with os.scandir(local) as it:
                names = sorted(e.name for e in it if e.is_file())
            return [clean(posixpath.join(dir, name)) for name in names]

    def walk(self, dir: str, fn: WalkFunc) -> None:
        """Walk root/dir; paths passed to fn are relative to it ("." first)."""
        with self._lock:
            self._count_call()
            base = os.path.abspath(self._local(dir))
            os.makedirs(base, exist_ok=True)
            root = WalkEntry.from_attrs(".", os.lstat(base))
            if fn(".", root, None) is SKIP_DIR:
                return
            self._walk_dir(base, ".", fn)

    def _walk_dir(self, base: str, rel: str, fn: WalkFunc) -> None:
        try:
            names = sorted(os.listdir(os.path.join(base, rel)))
        except OSError as e:
            fn(rel, None, e)
            return
        for name in names:
            path = name if rel == "." else posixpath.join(rel, name)
            entry = WalkEntry.from_attrs(name, os.lstat(os.path.join(base, path)))
            if fn(path, entry, None) is SKIP_DIR:
                if entry.is_dir:
                    continue
                # From a file: skip the rest of this directory
                return
            if entry.is_dir:
                self._walk_dir(base, path, fn)

    def __repr__(self):
        return f"MockClient({self._root!r}, calls={self.calls})"


# ---------------------------------------------------------------------------
# Optional pytest integration
# ---------------------------------------------------------------------------

try:
    import pytest

    @pytest.fixture
    def mock_client(tmp_path):
        """Pytest fixture providing a MockClient rooted in a temp directory.

        Usage:
            def test_something(mock_client):
                mock_client.upload_file("outbox/a.txt", io.BytesIO(b"hi"))
                assert mock_client.list_files("outbox") == ["outbox/a.txt"]
        """
        client = MockClient(tmp_path)
        yield client
        client.close()

except ImportError:
    # pytest not installed, fixtures not available
    pass


__all__ = ["MockClient"]
