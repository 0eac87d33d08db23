"""Deploy service: stage, package, and ship a channel to a device."""

import asyncio
import inspect
import logging
import os
import posixpath
import shutil
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import aiofiles.os

from rokudeploy.models.file_entry import ResolvedFile
from rokudeploy.models.manifest import read_manifest, write_manifest
from rokudeploy.models.options import BeforeZipInfo, DeployOptions
from rokudeploy.models.device import PublishResult
from rokudeploy.services.device import DeviceClient
from rokudeploy.services.file_selector import FileSelector
from rokudeploy.services.package import PackageService, Transform
from rokudeploy.services.staging import StagingService
from rokudeploy.utils.logging import setup_logger

BeforeZipHook = Callable[[BeforeZipInfo], Union[None, Awaitable[None]]]


class DeployService:
    """Runs the package -> publish -> sign workflows."""

    def __init__(
        self,
        file_selector: Optional[FileSelector] = None,
        staging: Optional[StagingService] = None,
        packager: Optional[PackageService] = None,
        device: Optional[DeviceClient] = None,
    ):
        """Initialize deploy service.

        Args:
            file_selector: FileSelector instance (new one if None)
            staging: StagingService instance (shares file_selector if None)
            packager: PackageService instance (new one if None)
            device: DeviceClient instance (new one if None)
        """
        self.logger = logging.getLogger("rokudeploy.deploy")
        self.file_selector = file_selector or FileSelector()
        self.staging = staging or StagingService(file_selector=self.file_selector)
        self.packager = packager or PackageService()
        self.device = device or DeviceClient()

    async def prepublish_to_staging(self, options: DeployOptions) -> str:
        """Fill a fresh staging folder with the selected files.

        Returns:
            Absolute staging folder path

        Raises:
            FileExistsError: Staging folder is non-empty and cleaning is disabled
        """
        setup_logger(level=options.log_level)
        staging = options.staging_folder_path
        if await aiofiles.os.path.isdir(staging):
            if options.clean_staging_folder:
                self.logger.debug(f"Cleaning staging folder {staging}")
                await asyncio.to_thread(shutil.rmtree, staging)
            elif await asyncio.to_thread(os.listdir, staging):
                raise FileExistsError(f"Staging folder is not empty: {staging}")
        await aiofiles.os.makedirs(staging, exist_ok=True)

        files = await self.staging.copy_to_staging(options.files, staging, options.root_dir)
        self.logger.info(f"Prepared staging folder {staging} with {len(files)} file(s)")
        return staging

    async def create_package(
        self, options: DeployOptions, before_zip: Optional[BeforeZipHook] = None
    ) -> Path:
        """Stage files, update the manifest, run the hook, and zip.

        Args:
            options: Deploy options
            before_zip: Hook called with BeforeZipInfo right before zipping;
                may be async, and is awaited to completion

        Returns:
            Path to the output zip

        Raises:
            FileNotFoundError: No manifest was staged
        """
        staging = await self.prepublish_to_staging(options)

        manifest_path = posixpath.join(staging, "manifest")
        if not await aiofiles.os.path.isfile(manifest_path):
            raise FileNotFoundError(f"Cannot zip package: missing manifest file in {staging}")
        manifest = await read_manifest(manifest_path)

        if options.increment_build_number:
            previous = manifest.get("build_version")
            build_version = manifest.increment_build_version()
            await write_manifest(manifest_path, manifest)
            self.logger.info(f"build_version {previous} -> {build_version}")

        if before_zip is not None:
            result = before_zip(
                BeforeZipInfo(staging_folder_path=staging, manifest_data=manifest.to_dict())
            )
            if inspect.isawaitable(result):
                await result

        return await self.packager.zip_package(options)

    async def deploy(
        self, options: DeployOptions, before_zip: Optional[BeforeZipHook] = None
    ) -> PublishResult:
        """Package the channel and side-load it onto the device.

        A failing delete of the previously installed channel is logged and
        does not stop the publish.
        """
        await self.create_package(options, before_zip)

        if options.delete_installed_channel:
            try:
                await self.device.delete_installed_channel(options)
            except Exception as e:
                self.logger.debug(f"Ignoring failed delete of installed channel: {e}")

        return await self.device.publish(options)

    async def deploy_and_sign_package(
        self, options: DeployOptions, before_zip: Optional[BeforeZipHook] = None
    ) -> Path:
        """Deploy, optionally convert to squashfs, sign, and download the pkg.

        Returns:
            Local path of the signed .pkg
        """
        retain_staging = options.retain_staging_folder
        # signing reads the staged manifest, so keep staging through deploy
        working = options.model_copy(update={"retain_staging_folder": True})

        await self.deploy(working, before_zip)
        if working.convert_to_squashfs:
            await self.device.convert_to_squashfs(working)

        remote_pkg_path = await self.device.sign_existing_package(working)
        pkg_path = await self.device.retrieve_signed_package(remote_pkg_path, working)

        if not retain_staging:
            await asyncio.to_thread(shutil.rmtree, working.staging_folder_path, True)
        self.logger.info(f"Signed package written to {pkg_path}")
        return pkg_path

    # --- passthroughs ---

    async def get_file_paths(
        self, patterns: Optional[Iterable[Any]], root_dir: Optional[str]
    ) -> list[ResolvedFile]:
        return await self.file_selector.get_file_paths(patterns, root_dir)

    def get_dest_path(
        self, src_path: str, patterns: Optional[Iterable[Any]], root_dir: Optional[str] = None
    ) -> Optional[str]:
        return self.file_selector.get_dest_path(src_path, patterns, root_dir)

    async def zip_folder(
        self, src_folder: str, zip_path: str, transform: Optional[Transform] = None
    ) -> Path:
        return await self.packager.zip_folder(src_folder, zip_path, transform)
