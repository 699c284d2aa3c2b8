"""
File handle returned by Client.open() and Client.reader().
"""

from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import Any, BinaryIO, Optional

from sftpkit.errors import SFTPError


def mod_time_of(attrs: Any) -> datetime:
    """Modification time from stat attrs as aware UTC; now if unavailable."""
    mtime = getattr(attrs, "st_mtime", None)
    if mtime is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(mtime, tz=timezone.utc)


class File:
    """A remote file's name, contents and modification time.

    ``contents`` is a live SFTP stream (reader) or an in-memory buffer (open).
    The caller closes the File; close() is idempotent.

    Example:
        with client.open("outbox/a.txt") as f:
            data = f.read()
    """

    def __init__(
        self,
        filename: str,
        contents: Optional[BinaryIO] = None,
        mod_time: Optional[datetime] = None,
        attrs: Any = None,
    ):
        self.filename = filename
        self.contents = contents
        self.mod_time = mod_time if mod_time is not None else mod_time_of(attrs)
        self.attrs = attrs
        self._closed = False

    @classmethod
    def from_bytes(cls, filename: str, data: bytes, **kwargs) -> "File":
        return cls(filename, io.BytesIO(data), **kwargs)

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes (all remaining if negative). b"" at EOF or without contents."""
        if self.contents is None:
            return b""
        return self.contents.read(size)

    def stat(self) -> Any:
        """Cached attrs, else the stream's own stat().

        Raises:
            SFTPError: If no file info is available
        """
        if self.attrs is not None:
            return self.attrs
        stat = getattr(self.contents, "stat", None)
        if stat is None:
            raise SFTPError(f"sftp: stat {self.filename}: no file info", path=self.filename)
        self.attrs = stat()
        return self.attrs

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.contents is not None:
            self.contents.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def __repr__(self):
        return f"File({self.filename!r}, mod_time={self.mod_time.isoformat()})"


__all__ = ["File", "mod_time_of"]
