"""
Remote path resolution for list_files() and walk().

list_files(dir) walks from "." or the server's working directory and keeps
the files whose path matches a pattern derived from dir. Matching ignores case;
results keep the server's casing. Patterns follow shell glob rules where
"*" and "?" never cross a "/":

    *           any run of non-/ characters
    ?           one non-/ character
    [abc] [a-z] character class; [^...] negates
    \\c         literal c
"""

from __future__ import annotations

import posixpath
from typing import Optional

ANY_SEP = "[/?]"
_BAD_PATTERN = "syntax error in pattern"


def clean(path: str) -> str:
    """Lexically clean a POSIX path ("" -> ".", "//a/./b/" -> "/a/b")."""
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def derive_pattern(dir: str) -> tuple[str, bool]:
    """Pattern matching the files directly under dir.

    Returns (pattern, needs_wd). When needs_wd is True the walk must start at
    the server's working directory, otherwise at ".".
    """
    cleaned = clean(dir[1:] if dir.startswith("/") else dir)
    if dir == "/":
        return "*", False
    if cleaned == ".":
        if dir == "":
            return "*", False
        return clean(posixpath.join(dir, "*")), False
    return f"{ANY_SEP}{cleaned}/*", True


def restore_case(dir: str, pattern: str, path: str) -> str:
    """Rebuild a listing result from a matched server path, keeping its casing.

    The pattern's directory part is located case-insensitively in path and
    the result starts there. If it can't be found (e.g. dir holds glob
    metacharacters) the result is dir joined with path's base name.
    """
    needle = pattern
    if needle.endswith("*"):
        needle = needle[:-1]
    if needle.startswith(ANY_SEP):
        needle = needle[len(ANY_SEP) :]
    idx = path.lower().find(needle.lower())
    if idx < 0:
        return clean(posixpath.join(dir, posixpath.basename(path)))
    out = path[idx:]
    if dir.startswith("/") and not out.startswith("/"):
        out = "/" + out
    return out


def under_prefix(path: str, prefix: str) -> bool:
    """True if path is prefix or lies below it."""
    if prefix in ("", "."):
        return not path.startswith("/")
    if path == prefix:
        return True
    return path.startswith(prefix.rstrip("/") + "/")


# ---------------------------------------------------------------------------
# Glob matching
# ---------------------------------------------------------------------------


def match_fold(pattern: str, path: str) -> bool:
    """Case-insensitive glob_match."""
    return glob_match(pattern.lower(), path.lower())


def glob_match(pattern: str, name: str) -> bool:
    """True if the whole of name matches the glob pattern.

    Raises:
        ValueError: If the pattern is malformed ("syntax error in pattern")
    """
    while pattern:
        star, chunk, pattern = _scan_chunk(pattern)
        if star and not chunk:
            # Trailing * matches the rest unless it crosses a separator
            return "/" not in name

        rest = _match_chunk(chunk, name)
        if rest is not None and (not rest or pattern):
            name = rest
            continue

        if star:
            advanced = False
            for i in range(len(name)):
                if name[i] == "/":
                    break
                rest = _match_chunk(chunk, name[i + 1 :])
                if rest is None or (not pattern and rest):
                    continue
                name = rest
                advanced = True
                break
            if advanced:
                continue

        # No match; the remaining pattern must still be well-formed
        while pattern:
            _, chunk, pattern = _scan_chunk(pattern)
            _match_chunk(chunk, "")
        return False

    return not name


def _scan_chunk(pattern: str) -> tuple[bool, str, str]:
    """Split off leading stars and the literal/class chunk up to the next star."""
    star = False
    while pattern.startswith("*"):
        pattern = pattern[1:]
        star = True

    in_range = False
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\":
            if i + 1 < len(pattern):
                i += 1
        elif c == "[":
            in_range = True
        elif c == "]":
            in_range = False
        elif c == "*" and not in_range:
            break
        i += 1
    return star, pattern[:i], pattern[i:]


def _match_chunk(chunk: str, s: str) -> Optional[str]:
    """Match chunk against the start of s. Returns the rest of s, or None.

    The whole chunk is parsed even after a mismatch so that bad syntax is
    always reported.
    """
    failed = False
    while chunk:
        if not failed and not s:
            failed = True
        c = chunk[0]

        if c == "[":
            r = ""
            if not failed:
                r, s = s[0], s[1:]
            chunk = chunk[1:]
            negated = chunk.startswith("^")
            if negated:
                chunk = chunk[1:]
            matched = False
            nrange = 0
            while True:
                if chunk.startswith("]") and nrange > 0:
                    chunk = chunk[1:]
                    break
                lo, chunk = _get_esc(chunk)
                hi = lo
                if chunk[0] == "-":
                    hi, chunk = _get_esc(chunk[1:])
                if not failed and lo <= r <= hi:
                    matched = True
                nrange += 1
            if matched == negated:
                failed = True

        elif c == "?":
            if not failed:
                if s[0] == "/":
                    failed = True
                s = s[1:]
            chunk = chunk[1:]

        else:
            if c == "\\":
                chunk = chunk[1:]
                if not chunk:
                    raise ValueError(_BAD_PATTERN)
            if not failed:
                if chunk[0] != s[0]:
                    failed = True
                s = s[1:]
            chunk = chunk[1:]

    return None if failed else s


def _get_esc(chunk: str) -> tuple[str, str]:
    """One (possibly escaped) character of a class range."""
    if not chunk or chunk[0] in "-]":
        raise ValueError(_BAD_PATTERN)
    if chunk[0] == "\\":
        chunk = chunk[1:]
        if not chunk:
            raise ValueError(_BAD_PATTERN)
    r, rest = chunk[0], chunk[1:]
    if not rest:
        raise ValueError(_BAD_PATTERN)
    return r, rest


__all__ = ["ANY_SEP", "clean", "derive_pattern", "glob_match", "match_fold", "restore_case", "under_prefix"]
