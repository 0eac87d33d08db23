"""Package service: archive a staged folder into a channel zip."""

import asyncio
import inspect
import logging
import os
import shutil
import time
import zipfile
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

import aiofiles
import aiofiles.os

from rokudeploy.models.file_entry import ResolvedFile
from rokudeploy.models.options import DeployOptions
from rokudeploy.utils.paths import absolute_path, relative_to, to_posix

# Already-compressed formats are stored as-is
STORED_EXTENSIONS = {".jpg", ".jpeg", ".png"}
COMPRESS_LEVEL = 2

Transform = Callable[[ResolvedFile, bytes], Union[Optional[bytes], Awaitable[Optional[bytes]]]]


class PackageService:
    """Builds zip archives from staging folders."""

    def __init__(self):
        self.logger = logging.getLogger("rokudeploy.package")

    async def zip_folder(
        self,
        src_folder: Union[str, Path],
        zip_path: Union[str, Path],
        transform: Optional[Transform] = None,
    ) -> Path:
        """Zip every regular file under src_folder, keyed by relative path.

        The archive is written to "<zip_path>.tmp" and renamed into place only
        once complete; on any failure the partial file is removed.

        Args:
            src_folder: Folder to archive (recursively)
            zip_path: Output archive path
            transform: Optional hook receiving (file, bytes); may be async and
                may return replacement bytes (None keeps the original)

        Returns:
            Path to the written archive

        Raises:
            FileNotFoundError: If src_folder does not exist
        """
        src = absolute_path(src_folder)
        if not await aiofiles.os.path.isdir(src):
            raise FileNotFoundError(f"Cannot zip folder: {src} does not exist")

        target = Path(zip_path)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        tmp_path = target.parent / f"{target.name}.tmp"

        files = await asyncio.to_thread(self._list_files, src)
        self.logger.info(f"Zipping {len(files)} file(s) from {src} to {target}")

        try:
            with zipfile.ZipFile(tmp_path, "w") as zf:
                for file_path in files:
                    entry_name = relative_to(file_path, src)
                    async with aiofiles.open(file_path, "rb") as f:
                        data = await f.read()

                    if transform is not None:
                        result = transform(ResolvedFile(src=file_path, dest=entry_name), data)
                        if inspect.isawaitable(result):
                            result = await result
                        if result is not None:
                            data = result

                    self._write_entry(zf, file_path, entry_name, data)

            tmp_path.replace(target)
        except Exception as e:
            self.logger.error(f"Failed to zip {src}: {e}")
            tmp_path.unlink(missing_ok=True)
            raise

        return target

    async def zip_package(
        self, options: DeployOptions, transform: Optional[Transform] = None
    ) -> Path:
        """Zip the staging folder to the configured output path.

        Raises:
            FileNotFoundError: If the staging folder has no manifest file
        """
        staging = options.staging_folder_path
        if not await asyncio.to_thread(self._has_manifest, staging):
            raise FileNotFoundError(
                f"Cannot zip package: missing manifest file in {staging}"
            )

        zip_path = await self.zip_folder(staging, options.get_output_zip_file_path(), transform)

        if not options.retain_staging_folder:
            self.logger.debug(f"Removing staging folder {staging}")
            await asyncio.to_thread(shutil.rmtree, staging)
        return zip_path

    @staticmethod
    def _has_manifest(folder: str) -> bool:
        try:
            names = os.listdir(folder)
        except FileNotFoundError:
            return False
        return any(
            name.lower() == "manifest" and os.path.isfile(os.path.join(folder, name))
            for name in names
        )

    @staticmethod
    def _list_files(folder: str) -> list[str]:
        files = []
        for dirpath, dirnames, filenames in os.walk(folder, followlinks=True):
            dirnames.sort()
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                if os.path.isfile(path):
                    files.append(to_posix(path))
        return files

    @staticmethod
    def _write_entry(zf: zipfile.ZipFile, file_path: str, entry_name: str, data: bytes) -> None:
        mtime = time.localtime(os.stat(file_path).st_mtime)
        # zip timestamps cannot predate 1980
        date_time = mtime[:6] if mtime.tm_year >= 1980 else (1980, 1, 1, 0, 0, 0)
        info = zipfile.ZipInfo(entry_name, date_time=date_time)
        info.external_attr = 0o644 << 16

        if os.path.splitext(entry_name)[1].lower() in STORED_EXTENSIONS:
            info.compress_type = zipfile.ZIP_STORED
            zf.writestr(info, data)
        else:
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, data, compresslevel=COMPRESS_LEVEL)
