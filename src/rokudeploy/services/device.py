"""Device client for the developer web server and ECP endpoints."""

import json
import logging
import os
import posixpath
import re
import time
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import BinaryIO, Optional

import aiofiles
import aiofiles.os
import httpx

from rokudeploy.errors import (
    CompileError,
    ConvertError,
    FailedDeviceResponseError,
    InvalidDeviceResponseCodeError,
    MissingRequiredOptionError,
    UnauthorizedDeviceResponseError,
    UnknownDeviceResponseError,
    UnparsableDeviceResponseError,
)
from rokudeploy.models.device import DeviceMessages, DeviceResponse, PublishResult
from rokudeploy.models.manifest import read_manifest
from rokudeploy.models.options import DeployOptions

COMPILE_FAILURE_MARKER = "Install Failure: Compilation Failed"
IDENTICAL_VERSION_MARKER = "Identical to previous version -- not replacing"
CONVERSION_SUCCESS_MARKER = "Conversion succeeded"

_SHELL_MESSAGE = re.compile(
    r"Shell\.create\('Roku\.Message'\)\.trigger\('[\w\s]+',\s+'(\w+)'\)"
    r"\.trigger\('[\w\s]+',\s+'(.*?)'\)",
    re.IGNORECASE,
)
_JSON_MESSAGES = re.compile(r"JSON\.parse\('(.+?)'\);", re.IGNORECASE)
_RED_FONT = re.compile(r'<font color="red">([^<]+)</font>')
_SIGN_FAILURE = re.compile(r"<font.*>Failed: (.*)")
_SIGNED_PACKAGE_LINK = re.compile(r'<a href="(pkgs/[^\.]+\.pkg)">')


class DeviceClient:
    """Talks to one device over HTTP.

    Each call opens its own httpx.AsyncClient. Transport errors (refused
    connections, timeouts) propagate unchanged and are never retried here.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize device client.

        Args:
            transport: Optional httpx transport (mock or ASGI transport in tests)
        """
        self.logger = logging.getLogger("rokudeploy.device")
        self.transport = transport
        self.chunk_size = 64 * 1024  # 64KB chunks for package downloads

    def _client(self, timeout: float, auth: Optional[httpx.Auth] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, auth=auth, transport=self.transport)

    @staticmethod
    def _auth(options: DeployOptions) -> Optional[httpx.Auth]:
        if not options.password:
            return None
        return httpx.DigestAuth(options.username, options.password)

    # --- transport primitives ---

    async def get_request(
        self,
        url: str,
        timeout: float,
        auth: Optional[httpx.Auth] = None,
        check_response: bool = True,
    ) -> DeviceResponse:
        """GET url and wrap the reply.

        Raises:
            httpx.TransportError: On connection failures and timeouts
            DeviceResponseError: When check_response is set and the reply fails classification
        """
        self.logger.debug(f"GET {url}")
        async with self._client(timeout, auth) as client:
            response = await client.get(url)
        results = DeviceResponse(status_code=response.status_code, body=response.text)
        if check_response:
            self.check_request(results)
        return results

    async def post_request(
        self,
        url: str,
        timeout: float,
        form: Optional[dict[str, str]] = None,
        archive: Optional[tuple[str, BinaryIO]] = None,
        auth: Optional[httpx.Auth] = None,
        check_response: bool = True,
    ) -> DeviceResponse:
        """POST form fields (and optionally an archive) as multipart/form-data.

        Args:
            url: Target URL
            timeout: Request timeout in seconds
            form: Plain form fields, sent in order
            archive: (filename, binary stream) uploaded as the "archive" field
            auth: Optional httpx auth (digest for the developer web server)
            check_response: Run check_request on the reply

        Raises:
            httpx.TransportError: On connection failures and timeouts
            DeviceResponseError: When check_response is set and the reply fails classification
        """
        files = {key: (None, str(value).encode("utf-8")) for key, value in (form or {}).items()}
        if archive is not None:
            filename, stream = archive
            files["archive"] = (filename, stream, "application/octet-stream")

        self.logger.debug(f"POST {url} fields={list(files)}")
        async with self._client(timeout, auth) as client:
            response = await client.post(url, files=files or None)
        results = DeviceResponse(status_code=response.status_code, body=response.text)
        if check_response:
            self.check_request(results)
        return results

    # --- response classification ---

    def check_request(self, results: DeviceResponse) -> DeviceMessages:
        """Classify a device reply, raising on anything but a clean success.

        Returns:
            Messages found in the body

        Raises:
            UnauthorizedDeviceResponseError: Status 401, whatever the body
            UnparsableDeviceResponseError: No body at all
            FailedDeviceResponseError: Body carries at least one error message
            InvalidDeviceResponseCodeError: Any other status than 200
        """
        if results.status_code == 401:
            raise UnauthorizedDeviceResponseError(
                "Unauthorized. Please verify username and password for target Roku.",
                results,
            )
        if results.body is None:
            raise UnparsableDeviceResponseError("Invalid response", results)

        messages = self.get_device_messages(results.body)
        if messages.errors:
            raise FailedDeviceResponseError(messages.errors[0], results, messages)
        if results.status_code != 200:
            raise InvalidDeviceResponseCodeError(
                f"Invalid response code: {results.status_code}", results
            )
        return messages

    def get_device_messages(self, body: Optional[str]) -> DeviceMessages:
        """Scrape error/info/success messages out of a device HTML page.

        Both the scripted ``Shell.create('Roku.Message')`` directives and the
        ``JSON.parse('{"messages": [...]}')`` blocks of newer firmware are
        read. Unknown message types are ignored.
        """
        messages = DeviceMessages()
        if not body:
            return messages
        buckets = {
            "error": messages.errors,
            "info": messages.infos,
            "success": messages.successes,
        }

        for match in _SHELL_MESSAGE.finditer(body):
            bucket = buckets.get(match.group(1).lower())
            if bucket is not None:
                bucket.append(match.group(2))

        for match in _JSON_MESSAGES.finditer(body):
            try:
                payload = json.loads(match.group(1).replace("\\'", "'"))
            except ValueError:
                self.logger.debug("Skipping unparsable JSON message block")
                continue
            if not isinstance(payload, dict):
                continue
            for message in payload.get("messages") or []:
                if not isinstance(message, dict):
                    continue
                bucket = buckets.get(str(message.get("type", "")).lower())
                if bucket is not None and message.get("text") is not None:
                    bucket.append(str(message["text"]))

        return messages

    # --- urls ---

    @staticmethod
    def generate_base_url(path: str, options: DeployOptions) -> str:
        return f"http://{options.host}:{options.package_port}/{path}"

    @staticmethod
    def _require_host(options: DeployOptions) -> None:
        if not options.host:
            raise MissingRequiredOptionError("must specify the host for the Roku device")

    # --- ECP ---

    async def get_device_info(self, options: DeployOptions) -> dict[str, str]:
        """Fetch /query/device-info as a flat {tag: text} mapping.

        Raises:
            UnparsableDeviceResponseError: Empty or malformed XML body
        """
        self._require_host(options)
        url = f"http://{options.host}:{options.remote_port}/query/device-info"
        results = await self.get_request(url, options.timeout)

        try:
            root = ET.fromstring(results.body or "")
        except ET.ParseError as e:
            raise UnparsableDeviceResponseError("Could not retrieve device info", results) from e

        info = {child.tag: (child.text or "").strip() for child in root}
        if not info:
            raise UnparsableDeviceResponseError("Could not retrieve device info", results)
        return info

    async def get_dev_id(self, options: DeployOptions) -> Optional[str]:
        info = await self.get_device_info(options)
        return info.get("keyed-developer-id")

    async def press_home_button(
        self, host: str, port: Optional[int] = None, timeout: Optional[float] = None
    ) -> DeviceResponse:
        """Simulate a Home key press; the reply is not classified."""
        defaults = DeployOptions()
        port = port or defaults.remote_port
        timeout = timeout or defaults.timeout
        url = f"http://{host}:{port}/keypress/Home"
        return await self.post_request(url, timeout, check_response=False)

    # --- developer web server ---

    async def delete_installed_channel(self, options: DeployOptions) -> DeviceResponse:
        self._require_host(options)
        self.logger.info(f"Deleting installed dev channel on {options.host}")
        return await self.post_request(
            self.generate_base_url("plugin_install", options),
            options.timeout,
            form={"mysubmit": "Delete", "archive": ""},
            auth=self._auth(options),
        )

    def _open_archive(self, path: str) -> BinaryIO:
        return open(path, "rb")

    async def publish(self, options: DeployOptions) -> PublishResult:
        """Upload the output zip as the side-loaded dev channel.

        The "identical to previous version" reply counts as success when
        fail_on_compile_error is off; its result carries that marker as the
        message instead of "Successful deploy".

        Returns:
            PublishResult with the device reply

        Raises:
            MissingRequiredOptionError: No host configured
            FileNotFoundError: Output zip does not exist
            CompileError: Device reports a compile failure (strict mode)
            DeviceResponseError: Any other classified failure
        """
        self._require_host(options)
        await aiofiles.os.makedirs(options.out_dir, exist_ok=True)

        zip_path = options.get_output_zip_file_path()
        if not await aiofiles.os.path.isfile(zip_path):
            raise FileNotFoundError(f"Cannot publish because file does not exist at '{zip_path}'")

        form = {"mysubmit": "Replace"}
        if options.remote_debug:
            form["remotedebug"] = "1"

        self.logger.info(f"Publishing {zip_path} to {options.host}")
        stream = self._open_archive(zip_path)
        try:
            results = await self.post_request(
                self.generate_base_url("plugin_install", options),
                options.timeout,
                form=form,
                archive=(posixpath.basename(zip_path), stream),
                auth=self._auth(options),
                check_response=False,
            )
            return self._classify_install(results, options)
        finally:
            try:
                stream.close()
            except Exception as e:
                self.logger.debug(f"Ignoring error while closing upload stream: {e}")
            if not options.retain_deployment_archive:
                await aiofiles.os.remove(zip_path)

    def _classify_install(self, results: DeviceResponse, options: DeployOptions) -> PublishResult:
        body = results.body
        if results.status_code == 401:
            # 401 wins over any body marker; check_request raises it
            body = None
        if body is not None:
            if options.fail_on_compile_error and COMPILE_FAILURE_MARKER in body:
                self.logger.error("Device reported a compile failure")
                raise CompileError(
                    "Compile error", results, self.get_device_messages(body)
                )
            if not options.fail_on_compile_error and IDENTICAL_VERSION_MARKER in body:
                if results.status_code != 200:
                    raise InvalidDeviceResponseCodeError(
                        f"Invalid response code: {results.status_code}", results
                    )
                self.logger.info("Device already has this version installed")
                return PublishResult(message=IDENTICAL_VERSION_MARKER, results=results)

        self.check_request(results)
        self.logger.info(f"Published to {options.host}")
        return PublishResult(message="Successful deploy", results=results)

    async def convert_to_squashfs(self, options: DeployOptions) -> DeviceResponse:
        """Ask the device to convert the installed dev channel to squashfs.

        Raises:
            MissingRequiredOptionError: No host configured
            ConvertError: Reply does not report a successful conversion
        """
        if not options.host:
            raise MissingRequiredOptionError("Missing host option")
        results = await self.post_request(
            self.generate_base_url("plugin_install", options),
            options.timeout,
            form={"archive": "", "mysubmit": "Convert to squashfs"},
            auth=self._auth(options),
        )
        if CONVERSION_SUCCESS_MARKER not in (results.body or ""):
            detail = _RED_FONT.search(results.body or "")
            raise ConvertError(
                "There was an error converting to squashfs",
                results,
                detail.group(1).strip() if detail else None,
            )
        return results

    async def rekey_device(self, options: DeployOptions) -> DeviceResponse:
        """Rekey the device with the signing key inside a signed package.

        Raises:
            MissingRequiredOptionError: rekey_signed_package or signing_password unset
            UnparsableDeviceResponseError: No status message in the reply
            FailedDeviceResponseError: Device reported anything but "Success."
            UnknownDeviceResponseError: Resulting dev id differs from options.dev_id
        """
        if not options.rekey_signed_package:
            raise MissingRequiredOptionError("Must supply rekeySignedPackage")
        if not options.signing_password:
            raise MissingRequiredOptionError("Must supply signingPassword")

        package_path = options.rekey_signed_package
        if not os.path.isabs(package_path):
            package_path = os.path.join(options.root_dir, package_path)

        stream = self._open_archive(package_path)
        try:
            results = await self.post_request(
                self.generate_base_url("plugin_inspect", options),
                options.timeout,
                form={"mysubmit": "Rekey", "passwd": options.signing_password},
                archive=(os.path.basename(package_path), stream),
                auth=self._auth(options),
            )
        finally:
            stream.close()

        match = _RED_FONT.search(results.body or "")
        if not match:
            raise UnparsableDeviceResponseError("Unknown Rekey Failure", results)
        status = match.group(1).strip()
        if status != "Success.":
            raise FailedDeviceResponseError(f"Rekey Failure: {status}", results)

        if options.dev_id:
            dev_id = await self.get_dev_id(options)
            if dev_id != options.dev_id:
                raise UnknownDeviceResponseError(
                    f"Rekey was successful but resulting Dev ID '{dev_id}' did not match "
                    f"expected value of '{options.dev_id}'",
                    results,
                )
        self.logger.info(f"Rekeyed {options.host}")
        return results

    async def sign_existing_package(self, options: DeployOptions) -> str:
        """Sign the currently side-loaded channel.

        Returns:
            Device-relative path of the signed package (e.g. "pkgs//P123.pkg")

        Raises:
            MissingRequiredOptionError: signing_password unset
            FailedDeviceResponseError: Device reported a signing failure
            UnknownDeviceResponseError: Neither a failure nor a package link was found
        """
        if not options.signing_password:
            raise MissingRequiredOptionError("Must supply signingPassword")

        manifest = await read_manifest(posixpath.join(options.staging_folder_path, "manifest"))
        app_name = (
            f"{manifest.get('title', '')}/"
            f"{manifest.get('major_version', '')}.{manifest.get('minor_version', '')}"
        )

        results = await self.post_request(
            self.generate_base_url("plugin_package", options),
            options.timeout,
            form={
                "mysubmit": "Package",
                "pkg_time": str(int(time.time() * 1000)),
                "passwd": options.signing_password,
                "app_name": app_name,
            },
            auth=self._auth(options),
        )

        body = results.body or ""
        failure = _SIGN_FAILURE.search(body)
        if failure:
            raise FailedDeviceResponseError(failure.group(1).strip(), results)
        link = _SIGNED_PACKAGE_LINK.search(body)
        if link:
            self.logger.info(f"Signed package available at {link.group(1)}")
            return link.group(1)
        raise UnknownDeviceResponseError("Unknown error signing package", results)

    async def retrieve_signed_package(self, pkg_path: str, options: DeployOptions) -> Path:
        """Stream a signed package from the device into the output folder.

        Returns:
            Local path of the downloaded .pkg

        Raises:
            InvalidDeviceResponseCodeError: Status other than 200
            httpx.TransportError: Stream failures, with the partial file removed
        """
        url = self.generate_base_url(pkg_path, options)
        target = Path(options.get_output_pkg_file_path())
        await aiofiles.os.makedirs(target.parent, exist_ok=True)

        self.logger.info(f"Downloading signed package {url} to {target}")
        try:
            async with self._client(options.timeout, self._auth(options)) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        raise InvalidDeviceResponseCodeError(
                            f"Invalid response code: {response.status_code}",
                            DeviceResponse(status_code=response.status_code),
                        )
                    async with aiofiles.open(target, "wb") as f:
                        async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                            await f.write(chunk)
        except Exception as e:
            self.logger.error(f"Signed package download failed: {e}")
            target.unlink(missing_ok=True)
            raise

        return target
