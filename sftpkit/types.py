"""
Shared types - WalkEntry, SKIP_DIR, WalkFunc.
"""

import stat
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional


class WalkControl(Enum):
    """Values a walk callback may return to steer the traversal."""

    SKIP_DIR = "skip_dir"


# Returned by a walk callback: skip this directory (or, for a file, the rest of its directory)
SKIP_DIR = WalkControl.SKIP_DIR


@dataclass(frozen=True)
class WalkEntry:
    """One entry seen during a walk.

    Attributes:
        name: Base name of the entry
        is_dir: True for directories
        attrs: paramiko.SFTPAttributes (remote) or os.stat_result (local)
    """

    name: str
    is_dir: bool
    attrs: Any = None

    @classmethod
    def from_attrs(cls, name: str, attrs: Any) -> "WalkEntry":
        mode = getattr(attrs, "st_mode", None)
        return cls(name=name, is_dir=mode is not None and stat.S_ISDIR(mode), attrs=attrs)

    @property
    def size(self) -> Optional[int]:
        return getattr(self.attrs, "st_size", None)


# Walk callback - receives (path, entry, error); error is set when the entry couldn't be read
WalkFunc = Callable[[str, Optional[WalkEntry], Optional[BaseException]], Optional[WalkControl]]


__all__ = ["WalkControl", "SKIP_DIR", "WalkEntry", "WalkFunc"]
