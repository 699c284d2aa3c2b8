"""
Thin adapter over paramiko.SFTPClient.

RemoteSession exposes the primitives the client is built from (getwd, stat,
open, remove, mkdir_all, read_dir, walk, sync, ...). RemoteWalker is a
depth-first pre-order cursor over a remote tree, driven with step():

    walker = session.walk(".")
    while walker.step():
        if walker.err() is not None:
            ...
        print(walker.path(), walker.stat())
"""

from __future__ import annotations

import posixpath
import stat
from typing import Optional

import paramiko
from paramiko.sftp import CMD_EXTENDED

from sftpkit.errors import is_not_exist

FSYNC_EXTENSION = "fsync@openssh.com"


def join(base: str, name: str) -> str:
    """Join and clean a remote path ("." + "a" -> "a")."""
    return posixpath.normpath(posixpath.join(base, name))


class RemoteSession:
    """SFTP session bound to one SSH transport.

    Args:
        sftp: Open paramiko SFTP client
        max_connections: Max concurrent read requests when prefetching (0 = paramiko default)
    """

    def __init__(self, sftp: paramiko.SFTPClient, max_connections: int = 0):
        self._sftp = sftp
        self.max_connections = max_connections

    @property
    def sftp(self) -> paramiko.SFTPClient:
        return self._sftp

    def getwd(self) -> str:
        """Server-side working directory. Also serves as the liveness probe."""
        return self._sftp.normalize(".")

    def stat(self, path: str) -> paramiko.SFTPAttributes:
        return self._sftp.stat(path)

    def lstat(self, path: str) -> paramiko.SFTPAttributes:
        return self._sftp.lstat(path)

    def open(self, path: str) -> paramiko.SFTPFile:
        """Open path for reading."""
        return self._sftp.open(path, "rb")

    def open_for_write(self, path: str) -> paramiko.SFTPFile:
        """Open path write-only, creating or truncating it."""
        return self._sftp.open(path, "wb")

    def prefetch(self, f: paramiko.SFTPFile, file_size: Optional[int] = None) -> None:
        f.prefetch(file_size, max_concurrent_requests=self.max_connections or None)

    def remove(self, path: str) -> None:
        self._sftp.remove(path)

    def mkdir_all(self, path: str, mode: int = 0o777) -> None:
        """Create path and any missing parents. Existing directories are fine."""
        try:
            attrs = self._sftp.stat(path)
        except IOError as e:
            if not is_not_exist(e):
                raise
        else:
            if stat.S_ISDIR(attrs.st_mode or 0):
                return
            raise IOError(f"{path}: not a directory")

        parent = posixpath.dirname(path.rstrip("/"))
        if parent and parent not in (path, ".", "/"):
            self.mkdir_all(parent, mode)

        try:
            self._sftp.mkdir(path, mode)
        except IOError:
            # Lost a race with another creator
            try:
                attrs = self._sftp.lstat(path)
            except IOError:
                attrs = None
            if attrs is None or not stat.S_ISDIR(attrs.st_mode or 0):
                raise

    def read_dir(self, path: str) -> list[paramiko.SFTPAttributes]:
        """Entries of path sorted by name."""
        return sorted(self._sftp.listdir_attr(path), key=lambda a: a.filename)

    def walk(self, root: str) -> "RemoteWalker":
        return RemoteWalker(self, root)

    def sync(self, f: paramiko.SFTPFile) -> None:
        """Flush f and ask the server to fsync it.

        Servers without the fsync@openssh.com extension answer
        "Operation unsupported" (see sftpkit.errors.is_unsupported).
        """
        f.flush()
        self._sftp._request(CMD_EXTENDED, FSYNC_EXTENSION, f.handle)

    def close(self) -> None:
        self._sftp.close()


class _Item:
    __slots__ = ("path", "attrs", "err")

    def __init__(self, path: str, attrs, err: Optional[BaseException] = None):
        self.path = path
        self.attrs = attrs
        self.err = err


class RemoteWalker:
    """Depth-first pre-order cursor over a remote tree.

    The root is lstat-ed (a failure is reported by err() on the first step).
    Directory entries are listed in name order.
    """

    def __init__(self, session: RemoteSession, root: str):
        self._session = session
        try:
            root_item = _Item(root, session.lstat(root))
        except (IOError, paramiko.SSHException, EOFError) as e:
            root_item = _Item(root, None, e)
        self._stack: list[_Item] = [root_item]
        self._cur: Optional[_Item] = None
        self._descend = False

    def step(self) -> bool:
        """Advance to the next entry. Returns False when the walk is done."""
        cur = self._cur
        if self._descend and cur is not None and cur.err is None and self._is_dir(cur):
            try:
                entries = self._session.read_dir(cur.path)
            except (IOError, paramiko.SSHException, EOFError) as e:
                cur.err = e
                self._stack.append(cur)
            else:
                for attrs in reversed(entries):
                    self._stack.append(_Item(join(cur.path, attrs.filename), attrs))

        if not self._stack:
            return False
        self._cur = self._stack.pop()
        self._descend = True
        return True

    def path(self) -> str:
        return self._cur.path if self._cur else ""

    def stat(self) -> Optional[paramiko.SFTPAttributes]:
        return self._cur.attrs if self._cur else None

    def err(self) -> Optional[BaseException]:
        return self._cur.err if self._cur else None

    def skip_dir(self) -> None:
        """Don't descend into the current entry."""
        self._descend = False

    @staticmethod
    def _is_dir(item: _Item) -> bool:
        mode = getattr(item.attrs, "st_mode", None)
        return mode is not None and stat.S_ISDIR(mode)


__all__ = ["RemoteSession", "RemoteWalker", "FSYNC_EXTENSION", "join"]
