"""Glob pattern matching over absolute posix paths.

Supports the glob dialect used by file-selection patterns:

- ``*`` / ``?`` / ``[...]`` within a single path segment
- ``**`` as a whole segment (zero or more directories)
- ``{a,b}`` alternation, expanded before matching (alternatives may contain "/")
- extglobs ``!(a|b)``, ``@(a|b)``, ``?(a)``, ``+(a)``, ``*(a)``

Wildcard-led segments never match names starting with ".", so ``**/*``
skips dotfiles and dot-directories unless the pattern names them.
"""

import logging
import os
import posixpath
import re
from typing import Iterator, Optional

from rokudeploy.utils.paths import to_posix

logger = logging.getLogger("rokudeploy.files")

_MAGIC = re.compile(r"[*?\[]|[!@+]\(")
_NO_DOT = r"(?!\.)"


def has_magic(pattern: str) -> bool:
    """Return True when a brace-free pattern contains any glob syntax."""
    return _MAGIC.search(pattern) is not None


def _find_closing(text: str, open_index: int) -> Optional[int]:
    """Index of the bracket closing text[open_index], honoring nesting."""
    opener = text[open_index]
    closer = {"(": ")", "{": "}"}[opener]
    depth = 0
    for index in range(open_index, len(text)):
        char = text[index]
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return index
    return None


def _split_top_level(text: str, separator: str) -> list[str]:
    parts = []
    depth = 0
    current = []
    for char in text:
        if char in "({[":
            depth += 1
        elif char in ")}]":
            depth -= 1
        if char == separator and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def _translate_class(text: str, index: int) -> tuple[Optional[str], int]:
    """Translate a [...] class starting at text[index]; returns (regex, next_index)."""
    end = index + 1
    if end < len(text) and text[end] in "!^":
        end += 1
    if end < len(text) and text[end] == "]":
        end += 1
    while end < len(text) and text[end] != "]":
        end += 1
    if end >= len(text):
        return None, index + 1

    body = text[index + 1:end]
    negate = body[:1] in ("!", "^")
    if negate:
        body = body[1:]
    body = "".join("\\" + char if char in "\\^[]" else char for char in body)
    if negate:
        return f"[^/{body}]", end + 1
    return f"[{body}]", end + 1


def _translate_part(text: str) -> str:
    """Translate a fragment of one path segment into a regex."""
    out = []
    index = 0
    length = len(text)
    while index < length:
        char = text[index]

        if char in "!@?+*" and index + 1 < length and text[index + 1] == "(":
            close = _find_closing(text, index + 1)
            if close is not None:
                alternatives = "|".join(
                    _translate_part(alt)
                    for alt in _split_top_level(text[index + 2:close], "|")
                )
                if char == "!":
                    rest = _translate_part(text[close + 1:])
                    out.append(f"(?:(?!(?:{alternatives}){rest}(?:/|$))[^/]*?){rest}")
                    return "".join(out)
                suffix = {"@": "", "?": "?", "+": "+", "*": "*"}[char]
                out.append(f"(?:{alternatives}){suffix}")
                index = close + 1
                continue

        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "[":
            translated, next_index = _translate_class(text, index)
            if translated is None:
                out.append(re.escape(char))
            else:
                out.append(translated)
                index = next_index
                continue
        else:
            out.append(re.escape(char))
        index += 1
    return "".join(out)


def _translate_segment(segment: str) -> str:
    body = _translate_part(segment)
    if segment[:1] in ("*", "?", "[") or segment[:2] in ("!(", "@(", "+("):
        body = _NO_DOT + body
    return body


def expand_braces(pattern: str) -> list[str]:
    """Expand every {a,b} alternation into separate patterns.

    Alternatives may contain "/", so expansion happens before a pattern is
    split into segments. Braces with fewer than two alternatives stay
    literal.
    """
    start = 0
    while True:
        index = pattern.find("{", start)
        if index < 0:
            return [pattern]
        close = _find_closing(pattern, index)
        if close is None:
            return [pattern]
        alternatives = _split_top_level(pattern[index + 1:close], ",")
        if len(alternatives) >= 2:
            break
        start = index + 1

    head, tail = pattern[:index], pattern[close + 1:]
    expanded = []
    for alternative in alternatives:
        for candidate in expand_braces(head + alternative + tail):
            if candidate not in expanded:
                expanded.append(candidate)
    return expanded


def translate(pattern: str) -> str:
    """Translate a brace-free posix glob pattern into a regex matching whole paths."""
    segments = pattern.split("/")
    last = len(segments) - 1
    parts = []
    for index, segment in enumerate(segments):
        if segment == "**":
            if index == last:
                parts.append(r"(?:(?!\.)[^/]+(?:/(?!\.)[^/]+)*)?")
            else:
                parts.append(r"(?:(?!\.)[^/]+/)*")
            continue
        parts.append(_translate_segment(segment) + ("" if index == last else "/"))
    return "".join(parts)


def absolute_pattern(pattern: str, cwd: str) -> str:
    """Anchor a relative pattern at cwd and collapse "." / ".." segments."""
    text = to_posix(pattern)
    if not text.startswith("/"):
        text = posixpath.join(to_posix(cwd), text)
    return posixpath.normpath(text)


def expand_pattern(pattern: str, cwd: Optional[str] = None) -> list[str]:
    """Brace-expand pattern, then anchor each alternative at cwd (when given)."""
    expanded = []
    for candidate in expand_braces(to_posix(pattern)):
        text = absolute_pattern(candidate, cwd) if cwd is not None else posixpath.normpath(candidate)
        if text not in expanded:
            expanded.append(text)
    return expanded


def compile_expanded(patterns: list[str]) -> "re.Pattern[str]":
    """Full-match regex accepting a path matched by any of the brace-free patterns."""
    return re.compile("(?:" + "|".join(translate(p) for p in patterns) + r")\Z")


def compile_pattern(pattern: str, cwd: Optional[str] = None) -> "re.Pattern[str]":
    """Compile pattern into a full-match regex; anchored at cwd when given."""
    return compile_expanded(expand_pattern(pattern, cwd))


def matching_expansion(path: str, pattern: str, cwd: str) -> Optional[str]:
    """The first brace alternative of pattern (anchored at cwd) that matches path."""
    for candidate in expand_pattern(pattern, cwd):
        if compile_expanded([candidate]).match(path):
            return candidate
    return None


def _walk_files(
    directory: str,
    max_depth: Optional[int],
    depth: int,
    ancestors: frozenset,
) -> Iterator[str]:
    """Yield files below directory, following symlinks without looping."""
    try:
        with os.scandir(directory) as iterator:
            entries = sorted(iterator, key=lambda entry: entry.name)
    except PermissionError as e:
        logger.debug(f"Skipping unreadable directory {directory}: {e}")
        return

    for entry in entries:
        path = f"{directory.rstrip('/')}/{entry.name}"
        if entry.is_dir(follow_symlinks=True):
            if max_depth is not None and depth >= max_depth:
                continue
            real = os.path.realpath(path)
            if real in ancestors:
                logger.debug(f"Skipping symlink cycle at {path}")
                continue
            yield from _walk_files(path, max_depth, depth + 1, ancestors | {real})
        elif entry.is_file(follow_symlinks=True):
            if max_depth is None or depth == max_depth:
                yield path


def _glob_expanded(absolute: str) -> list[str]:
    if not has_magic(absolute):
        return [absolute] if os.path.isfile(absolute) else []

    segments = absolute.split("/")
    literal = []
    for segment in segments:
        if has_magic(segment):
            break
        literal.append(segment)
    base = "/".join(literal) or "/"
    remaining = segments[len(literal):]
    if not os.path.isdir(base):
        return []

    max_depth = None if "**" in remaining else len(remaining)
    regex = compile_expanded([absolute])
    ancestors = frozenset({os.path.realpath(base)})
    return [path for path in _walk_files(base, max_depth, 1, ancestors) if regex.match(path)]


def glob_files(pattern: str, cwd: str) -> list[str]:
    """Expand pattern relative to cwd into a sorted list of absolute file paths.

    Directories are never returned. Symlinked files and directories are
    followed, but each match keeps its path on the symlink side. Each brace
    alternative is globbed on its own and the results are merged.

    Args:
        pattern: Glob pattern, absolute or relative to cwd
        cwd: Absolute directory relative patterns are anchored at

    Returns:
        Sorted absolute posix paths of matching files
    """
    matches: set[str] = set()
    for absolute in expand_pattern(pattern, cwd):
        matches.update(_glob_expanded(absolute))
    return sorted(matches)
