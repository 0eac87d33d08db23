"""File selection data models."""

from typing import Optional

from pydantic import BaseModel, Field


class PatternEntry(BaseModel):
    """One normalized file-selection pattern.

    Bare string patterns become entries with ``top_level=True`` and no
    destination; their matches keep their path relative to rootDir.
    """

    src: str = Field(..., min_length=1, description="Glob pattern, '!' prefix negates")
    dest: Optional[str] = Field(
        None, description="Destination directory (or file, for literal src)"
    )
    top_level: bool = Field(False, description="Came from a bare string pattern")

    @property
    def negated(self) -> bool:
        return self.src.startswith("!") and not self.src.startswith("!(")

    @property
    def pattern(self) -> str:
        """The glob with any negation prefix removed."""
        return self.src[1:] if self.negated else self.src


class ResolvedFile(BaseModel):
    """A concrete source file and where it lands inside the package."""

    model_config = {"frozen": True}

    src: str = Field(..., description="Absolute posix path of the source file")
    dest: str = Field(..., description="Posix path relative to the package root")
