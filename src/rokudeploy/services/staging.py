"""Staging service: materialize resolved files into the staging folder."""

import asyncio
import logging
import posixpath
from typing import Any, Iterable, Optional

import aiofiles
import aiofiles.os

from rokudeploy.errors import SpecificationError
from rokudeploy.models.file_entry import ResolvedFile
from rokudeploy.models.options import normalize_root_dir
from rokudeploy.services.file_selector import FileSelector
from rokudeploy.utils.paths import absolute_path, strip_leading_slashes
from rokudeploy.utils.retry import RetryPolicy, try_repeat_async


class StagingService:
    """Copies resolved files into a staging directory with bounded retry."""

    def __init__(
        self,
        file_selector: Optional[FileSelector] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrency: int = 32,
    ):
        """Initialize staging service.

        Args:
            file_selector: FileSelector instance (new one if None)
            retry_policy: Per-file copy retry policy (10 attempts, 20ms apart if None)
            max_concurrency: Maximum number of copies in flight at once
        """
        self.logger = logging.getLogger("rokudeploy.staging")
        self.file_selector = file_selector or FileSelector()
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrency = max_concurrency
        self.chunk_size = 64 * 1024

    async def copy_to_staging(
        self,
        patterns: Optional[Iterable[Any]],
        staging_path: Optional[str],
        root_dir: Optional[str],
    ) -> list[ResolvedFile]:
        """Resolve patterns under root_dir and copy the files into staging_path.

        Returns:
            The resolved file records that were copied

        Raises:
            SpecificationError: If staging_path or root_dir is missing
            FileNotFoundError: If root_dir does not exist
            OSError: Last copy failure after the retry budget is spent
        """
        if not staging_path:
            raise SpecificationError("stagingPath is required")
        if not root_dir:
            raise SpecificationError("rootDir is required")
        root = normalize_root_dir(root_dir)
        if not await aiofiles.os.path.exists(root):
            raise FileNotFoundError(f"rootDir does not exist at {root}")

        files = await self.file_selector.get_file_paths(patterns, root)
        await self.stage(files, staging_path)
        return files

    async def stage(self, files: list[ResolvedFile], staging_path: str) -> None:
        """Copy pre-resolved files to staging_path/<dest>.

        Destination directories are created once each before any copy
        starts; copies then run concurrently.

        Raises:
            SpecificationError: If staging_path is missing
        """
        if not staging_path or not str(staging_path).strip():
            raise SpecificationError("stagingPath is required")
        staging = absolute_path(staging_path)
        targets = [
            (f.src, posixpath.join(staging, strip_leading_slashes(f.dest))) for f in files
        ]

        for directory in sorted({posixpath.dirname(dest) for _, dest in targets}):
            await aiofiles.os.makedirs(directory, exist_ok=True)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def copy_one(src: str, dest: str) -> None:
            async with semaphore:
                await try_repeat_async(lambda: self._copy_file(src, dest), self.retry_policy)

        try:
            await asyncio.gather(*(copy_one(src, dest) for src, dest in targets))
        except OSError as e:
            self.logger.error(f"Staging copy failed: {e}")
            raise

        self.logger.info(f"Staged {len(targets)} file(s) into {staging}")

    async def _copy_file(self, src: str, dest: str) -> None:
        """Byte copy; symlinked sources are read through."""
        async with aiofiles.open(src, "rb") as reader, aiofiles.open(dest, "wb") as writer:
            while True:
                chunk = await reader.read(self.chunk_size)
                if not chunk:
                    break
                await writer.write(chunk)
