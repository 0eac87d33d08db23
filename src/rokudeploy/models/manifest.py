"""Channel manifest codec.

The manifest is a newline-delimited ``key=value`` text file. Parsing keeps
the original lines next to the values so that an unmodified document
serializes back to the exact input text, and edits only touch the lines of
the keys that changed.
"""

from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Union

import aiofiles
import aiofiles.os


class ManifestDocument:
    """Ordered manifest values plus the layout needed to rewrite them.

    Attributes:
        lines: Original text split on "\\n"
        line_numbers: Zero-based line where each key first appeared
        key_indexes: Insertion order of every key ever set
    """

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.line_numbers: dict[str, int] = {}
        self.key_indexes: dict[str, int] = {}
        self._values: dict[str, str] = {}
        self._line_keys: dict[int, str] = {}
        self._dirty: set[str] = set()
        self._next_index = 0

    @classmethod
    def parse(cls, text: str) -> "ManifestDocument":
        """Parse manifest text; lines without a key are kept but not indexed."""
        doc = cls()
        doc.lines = text.split("\n")
        for number, line in enumerate(doc.lines):
            if "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            if not key:
                continue
            doc._line_keys[number] = key
            doc.line_numbers.setdefault(key, number)
            doc._values[key] = value.rstrip()
            if key not in doc.key_indexes:
                doc.key_indexes[key] = doc._next_index
                doc._next_index += 1
        return doc

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __setitem__(self, key: str, value: str) -> None:
        value = str(value)
        if key in self._values and self._values[key] == value:
            return
        self._values[key] = value
        self._dirty.add(key)
        if key not in self.key_indexes:
            self.key_indexes[key] = self._next_index
            self._next_index += 1

    def __delitem__(self, key: str) -> None:
        del self._values[key]
        self._dirty.discard(key)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    def keys(self):
        return self._values.keys()

    def items(self):
        return self._values.items()

    def to_dict(self) -> dict[str, str]:
        return dict(self._values)

    def serialize(self) -> str:
        """Render the document, preserving every untouched line verbatim.

        Changed keys are rewritten on their first line (later duplicates are
        dropped), deleted keys lose their lines, and new keys are inserted in
        insertion order after the last line that held a key. A document with
        no keys gets new keys at the end, ahead of a trailing newline.
        """
        new_keys = sorted(
            (key for key in self._values if key not in self.line_numbers),
            key=lambda key: self.key_indexes[key],
        )
        new_lines = [f"{key}={self._values[key]}" for key in new_keys]

        if self._line_keys:
            insert_after = max(self._line_keys)
        elif self.lines and self.lines[-1] == "":
            insert_after = len(self.lines) - 2
        else:
            insert_after = len(self.lines) - 1

        out = []
        if insert_after < 0:
            out.extend(new_lines)
        for number, line in enumerate(self.lines):
            key = self._line_keys.get(number)
            if key is None:
                out.append(line)
            elif key not in self._values:
                pass
            elif key in self._dirty:
                if number == self.line_numbers[key]:
                    ending = "\r" if line.endswith("\r") else ""
                    out.append(f"{key}={self._values[key]}{ending}")
            else:
                out.append(line)
            if number == insert_after:
                out.extend(new_lines)
        return "\n".join(out)

    def increment_build_version(self, now: Optional[datetime] = None) -> str:
        """Stamp build_version with the current time (yymmddHHMM).

        When the stamp equals the existing value, the existing value plus one
        is used instead, so the result always differs from the prior value.

        Returns:
            The new build_version
        """
        stamp = (now or datetime.now()).strftime("%y%m%d%H%M")
        current = self.get("build_version")
        if current is not None and stamp == current.strip():
            stamp = str(int(stamp) + 1)
        self["build_version"] = stamp
        return stamp


async def read_manifest(path: Union[str, Path]) -> ManifestDocument:
    """Read and parse a manifest file.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    if not await aiofiles.os.path.isfile(path):
        raise FileNotFoundError(f"{path} does not exist")
    async with aiofiles.open(path, "r", encoding="utf-8", newline="") as f:
        text = await f.read()
    return ManifestDocument.parse(text)


async def write_manifest(path: Union[str, Path], doc: ManifestDocument) -> None:
    async with aiofiles.open(path, "w", encoding="utf-8", newline="") as f:
        await f.write(doc.serialize())
