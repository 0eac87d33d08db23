"""Path string normalization helpers.

All package-relative paths are kept in posix form ("/" separators) so that
destinations line up with archive entry names on every platform.
"""

import posixpath
import re
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]

_SEPARATORS = re.compile(r"[\\/]+")


def to_posix(path: PathLike) -> str:
    """Replace backslashes and repeated separators with a single "/"."""
    return _SEPARATORS.sub("/", str(path))


def standardize_path(path: Optional[PathLike]) -> Optional[str]:
    """Canonicalize separators and collapse "." / ".." segments.

    Args:
        path: Path string or Path, may be None

    Returns:
        Normalized posix string, or None for None/empty input
    """
    if path is None:
        return None
    text = str(path)
    if text == "":
        return None
    return posixpath.normpath(to_posix(text))


def strip_leading_slashes(path: str) -> str:
    return re.sub(r"^[\\/]+", "", path)


def absolute_path(path: PathLike, base: Optional[PathLike] = None) -> str:
    """Resolve path against base (default: cwd) without following symlinks."""
    text = to_posix(path)
    if not posixpath.isabs(text):
        base_text = to_posix(base) if base is not None else to_posix(Path.cwd())
        text = posixpath.join(base_text, text)
    return posixpath.normpath(text)


def is_parent_of_path(parent: PathLike, child: PathLike) -> bool:
    """Return True when child lies strictly underneath parent."""
    parent_text = posixpath.normpath(to_posix(parent))
    child_text = posixpath.normpath(to_posix(child))
    if parent_text == child_text:
        return False
    prefix = parent_text if parent_text.endswith("/") else parent_text + "/"
    return child_text.startswith(prefix)


def relative_to(path: PathLike, base: PathLike) -> str:
    """Posix relative path of path from base (both absolute)."""
    return posixpath.relpath(
        posixpath.normpath(to_posix(path)), posixpath.normpath(to_posix(base))
    )


def escapes_root(relative: str) -> bool:
    """True when a normalized relative path points above its root."""
    return relative == ".." or relative.startswith("../") or posixpath.isabs(relative)
