"""
Tests for sftpkit.types module.
"""

import stat

import paramiko
import pytest

from sftpkit.types import SKIP_DIR, WalkControl, WalkEntry


def _attrs(mode, size=0):
    a = paramiko.SFTPAttributes()
    a.st_mode = mode
    a.st_size = size
    return a


class TestWalkEntry:
    def test_directory(self):
        entry = WalkEntry.from_attrs("outbox", _attrs(stat.S_IFDIR | 0o755))
        assert entry.is_dir
        assert entry.name == "outbox"

    def test_regular_file(self):
        entry = WalkEntry.from_attrs("a.txt", _attrs(stat.S_IFREG | 0o644, size=12))
        assert not entry.is_dir
        assert entry.size == 12

    def test_symlink_is_not_dir(self):
        assert not WalkEntry.from_attrs("link", _attrs(stat.S_IFLNK | 0o777)).is_dir

    def test_no_mode(self):
        entry = WalkEntry.from_attrs("x", paramiko.SFTPAttributes())
        assert not entry.is_dir
        assert entry.size is None

    def test_frozen(self):
        entry = WalkEntry("a", False)
        with pytest.raises(AttributeError):
            entry.name = "b"


def test_skip_dir_sentinel():
    assert SKIP_DIR is WalkControl.SKIP_DIR
