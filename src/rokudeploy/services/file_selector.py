"""File selection: turn pattern lists into source -> destination mappings."""

import asyncio
import logging
import os
import posixpath
from collections.abc import Mapping
from typing import Any, Iterable, Optional

import aiofiles.os

from rokudeploy.errors import OutOfRootError, SpecificationError
from rokudeploy.models.file_entry import PatternEntry, ResolvedFile
from rokudeploy.models.options import normalize_root_dir
from rokudeploy.utils.globbing import (
    compile_expanded,
    compile_pattern,
    expand_pattern,
    glob_files,
    has_magic,
    matching_expansion,
)
from rokudeploy.utils.paths import (
    absolute_path,
    escapes_root,
    is_parent_of_path,
    relative_to,
    standardize_path,
    strip_leading_slashes,
    to_posix,
)


class FileSelector:
    """Resolves file patterns against a root directory.

    Patterns are applied in order. A later pattern that produces an
    already-seen destination replaces the earlier file, and a negated
    pattern ("!glob") removes what earlier patterns added.
    """

    def __init__(self):
        self.logger = logging.getLogger("rokudeploy.files")

    def normalize_files(self, patterns: Optional[Iterable[Any]]) -> list[PatternEntry]:
        """Convert mixed pattern input into a flat list of PatternEntry.

        Args:
            patterns: Strings, {"src", "dest"} mappings, or falsy placeholders

        Returns:
            One entry per string and per src item of each mapping

        Raises:
            SpecificationError: If an entry has an unsupported shape
        """
        entries: list[PatternEntry] = []
        for index, item in enumerate(patterns or []):
            if not item and not isinstance(item, (Mapping, list, tuple)):
                continue

            if isinstance(item, str):
                entries.append(PatternEntry(src=to_posix(item), top_level=True))
                continue

            if not isinstance(item, Mapping):
                raise SpecificationError(
                    f"Entry at index {index} has invalid type: {item!r}"
                )

            src = item.get("src")
            dest = item.get("dest")
            if src is None:
                raise SpecificationError(
                    f"Entry at index {index} is missing 'src': {dict(item)!r}"
                )
            if dest is not None and not isinstance(dest, str):
                raise SpecificationError(
                    f"Entry at index {index} has a non-string 'dest': {dict(item)!r}"
                )

            if isinstance(src, str):
                sources = [src]
            elif isinstance(src, (list, tuple)):
                sources = list(src)
            else:
                raise SpecificationError(
                    f"Entry at index {index} has invalid 'src': {dict(item)!r}"
                )

            for source in sources:
                if not isinstance(source, str) or not source:
                    raise SpecificationError(
                        f"Entry at index {index} has invalid 'src' item {source!r}"
                    )
                entries.append(
                    PatternEntry(
                        src=to_posix(source),
                        dest=to_posix(dest) if dest else dest,
                    )
                )
        return entries

    async def get_file_paths(
        self, patterns: Optional[Iterable[Any]], root_dir: Optional[str]
    ) -> list[ResolvedFile]:
        """Resolve patterns into concrete files, deduplicated by destination.

        Args:
            patterns: Raw pattern list (see normalize_files)
            root_dir: Package root; relative paths resolve against cwd

        Returns:
            Resolved files sorted by source path

        Raises:
            FileNotFoundError: If root_dir does not exist
            NotADirectoryError: If root_dir is not a directory
            SpecificationError: On invalid patterns or destinations
            OutOfRootError: If a bare string pattern matches outside root_dir
        """
        root = normalize_root_dir(root_dir)
        if not await aiofiles.os.path.exists(root):
            raise FileNotFoundError(f"rootDir does not exist at {root}")
        if not await aiofiles.os.path.isdir(root):
            raise NotADirectoryError(f"rootDir is not a directory: {root}")

        entries = self.normalize_files(patterns)
        resolved: dict[str, ResolvedFile] = {}

        for entry in entries:
            if entry.negated:
                removed = self._apply_negation(entry, resolved, root)
                self.logger.debug(f"Pattern {entry.src} removed {removed} file(s)")
                continue

            matches = await asyncio.to_thread(glob_files, entry.pattern, root)
            self.logger.debug(f"Pattern {entry.src} matched {len(matches)} file(s)")
            for match in matches:
                dest = self.compute_dest_path(match, entry, root)
                resolved.pop(dest, None)
                resolved[dest] = ResolvedFile(src=match, dest=dest)

        files = sorted(resolved.values(), key=lambda f: (f.src, f.dest))
        self.logger.info(f"Resolved {len(files)} file(s) from {len(entries)} pattern(s)")
        return files

    def _apply_negation(
        self, entry: PatternEntry, resolved: dict[str, ResolvedFile], root: str
    ) -> int:
        """Drop records whose source or destination matches a negated pattern."""
        source_regex = compile_pattern(entry.pattern, root)
        dest_regex = self._dest_regex(entry.pattern)

        doomed = [
            dest
            for dest, record in resolved.items()
            if source_regex.match(record.src)
            or (dest_regex is not None and dest_regex.match(dest))
        ]
        for dest in doomed:
            del resolved[dest]
        return len(doomed)

    @staticmethod
    def _dest_regex(pattern: str):
        inside = [text for text in expand_pattern(pattern) if not escapes_root(text)]
        if not inside:
            return None
        return compile_expanded(inside)

    def compute_dest_path(self, src_path: str, entry: PatternEntry, root_dir: str) -> str:
        """Compute the package-relative destination of one matched file.

        Args:
            src_path: Absolute path of the matched file
            entry: The (non-negated) pattern that matched it
            root_dir: Absolute package root

        Returns:
            Normalized posix destination relative to the package root

        Raises:
            OutOfRootError: Bare string pattern matched a file outside root_dir
            SpecificationError: Destination would escape the package root
        """
        src = absolute_path(src_path)
        relative = relative_to(src, root_dir)

        if entry.top_level:
            if not is_parent_of_path(root_dir, src):
                raise OutOfRootError(
                    "Cannot reference a file outside of rootDir when using a top-level "
                    f"string. Please use a src;dest; object instead: {src}"
                )
            dest = relative
        else:
            pattern = (
                matching_expansion(src, entry.pattern, root_dir)
                or expand_pattern(entry.pattern, root_dir)[0]
            )
            segments = pattern.split("/")
            prefix = entry.dest or ""
            if not has_magic(pattern):
                if entry.dest is None:
                    dest = relative if is_parent_of_path(root_dir, src) else posixpath.basename(src)
                elif entry.dest == "" or entry.dest.endswith("/"):
                    dest = posixpath.join(prefix, posixpath.basename(src))
                else:
                    dest = entry.dest
            elif "**" in segments:
                # segments before "**" line up one-to-one with the match
                tail = src.split("/")[segments.index("**"):]
                dest = posixpath.join(prefix, *tail)
            else:
                dest = posixpath.join(prefix, posixpath.basename(src))

        dest = standardize_path(strip_leading_slashes(dest)) or ""
        if not dest or dest == "." or escapes_root(dest):
            raise SpecificationError(
                f"Destination for {src} resolves outside the package root: {dest!r}"
            )
        return dest

    def get_dest_path(
        self,
        src_path: str,
        patterns: Optional[Iterable[Any]],
        root_dir: Optional[str] = None,
    ) -> Optional[str]:
        """Destination a full resolve would give one file, without walking disk.

        Later literal entries that send another existing file to the same
        destination take it over, as they would in get_file_paths. Globbed
        entries are only checked against src_path itself.

        Args:
            src_path: File path (relative paths resolve against cwd)
            patterns: Raw pattern list
            root_dir: Package root; relative paths resolve against cwd

        Returns:
            Package-relative destination, or None when the file is excluded,
            unmatched, or overridden
        """
        root = normalize_root_dir(root_dir)
        src = absolute_path(src_path)
        dest: Optional[str] = None

        for entry in self.normalize_files(patterns):
            if entry.negated:
                if dest is None:
                    continue
                dest_regex = self._dest_regex(entry.pattern)
                if compile_pattern(entry.pattern, root).match(src) or (
                    dest_regex is not None and dest_regex.match(dest)
                ):
                    dest = None
                continue

            if not compile_pattern(entry.pattern, root).match(src):
                if dest is not None and self._claims_dest(entry, src, dest, root):
                    self.logger.debug(f"{entry.src} takes over {dest} from {src}")
                    dest = None
                continue
            try:
                dest = self.compute_dest_path(src, entry, root)
            except OutOfRootError:
                self.logger.debug(f"Ignoring {src}: outside rootDir for {entry.src}")
                dest = None
        return dest

    def _claims_dest(self, entry: PatternEntry, src: str, dest: str, root: str) -> bool:
        """True when a literal alternative of entry maps another existing file to dest."""
        for other in expand_pattern(entry.pattern, root):
            if has_magic(other) or other == src or not os.path.isfile(other):
                continue
            try:
                if self.compute_dest_path(other, entry, root) == dest:
                    return True
            except SpecificationError:
                continue
        return False
