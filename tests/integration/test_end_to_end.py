"""End-to-end workflows against the mock device."""

import io
import zipfile
from pathlib import Path

import pytest

from mock_device import roku_message, roku_page

from rokudeploy.errors import (
    CompileError,
    FailedDeviceResponseError,
    UnauthorizedDeviceResponseError,
)


@pytest.mark.integration
class TestDeployFlow:
    @pytest.mark.asyncio
    async def test_deploy_uploads_selected_files_only(
        self, deploy_service, device_state, deploy_options, root_dir, make_files
    ):
        make_files(root_dir, {"source/main.brs": "sub main()\nend sub\n", "components/unused.xml": ""})
        options = deploy_options.model_copy(update={"files": ["manifest", "source/**/*"]})

        result = await deploy_service.deploy(options)

        assert result.message == "Successful deploy"
        assert [path for path, _ in device_state.requests] == ["/plugin_install", "/plugin_install"]
        assert device_state.requests[0][1]["mysubmit"] == "Delete"
        install = device_state.fields_of("/plugin_install")
        assert install["mysubmit"] == "Replace"
        assert install["archive"] == "roku-deploy.zip"

        with zipfile.ZipFile(io.BytesIO(device_state.uploads["/plugin_install"])) as zf:
            assert sorted(zf.namelist()) == ["manifest", "source/main.brs"]

    @pytest.mark.asyncio
    async def test_form_error_fails_publish(self, deploy_service, device_state, deploy_options):
        device_state.install_body = roku_page(roku_message("error", "Failure: Form Error"))

        with pytest.raises(FailedDeviceResponseError, match="Failure: Form Error"):
            await deploy_service.deploy(deploy_options)

    @pytest.mark.asyncio
    async def test_unauthorized(self, deploy_service, device_state, deploy_options):
        device_state.install_status = 401
        device_state.install_body = "Unauthorized"

        with pytest.raises(UnauthorizedDeviceResponseError):
            await deploy_service.deploy(deploy_options)

    @pytest.mark.asyncio
    async def test_compile_failure(self, deploy_service, device_state, deploy_options):
        device_state.install_body = roku_page(roku_message("error", "Install Failure: Compilation Failed"))

        with pytest.raises(CompileError):
            await deploy_service.deploy(deploy_options)

    @pytest.mark.asyncio
    async def test_remote_debug_flag_reaches_device(self, deploy_service, device_state, deploy_options):
        await deploy_service.deploy(deploy_options.model_copy(update={"remote_debug": True}))

        assert device_state.fields_of("/plugin_install")["remotedebug"] == "1"


@pytest.mark.integration
class TestSignFlow:
    @pytest.mark.asyncio
    async def test_deploy_and_sign(self, deploy_service, device_state, sample_project, deploy_options):
        options = deploy_options.model_copy(update={"convert_to_squashfs": True})

        pkg_path = await deploy_service.deploy_and_sign_package(options)

        assert pkg_path == Path(options.out_dir) / "roku-deploy.pkg"
        assert pkg_path.read_bytes() == device_state.signed_package
        assert not Path(options.staging_folder_path).exists()

        paths = [path for path, _ in device_state.requests]
        assert paths == ["/plugin_install", "/plugin_install", "/plugin_install", "/plugin_package"]
        assert device_state.requests[2][1]["mysubmit"] == "Convert to squashfs"
        package = device_state.fields_of("/plugin_package")
        assert package["app_name"] == "RokuDeployTestChannel/1.0"
        assert package["passwd"] == "12345"

    @pytest.mark.asyncio
    async def test_rekey(self, device_client, device_state, deploy_options, root_dir):
        (root_dir / "testSignedPackage.pkg").write_bytes(b"signed-bytes")

        await device_client.rekey_device(deploy_options)

        fields = device_state.fields_of("/plugin_inspect")
        assert fields["mysubmit"] == "Rekey"
        assert fields["archive"] == "testSignedPackage.pkg"
        assert device_state.uploads["/plugin_inspect"] == b"signed-bytes"

    @pytest.mark.asyncio
    async def test_home_button(self, device_client, device_state):
        await device_client.press_home_button("192.168.1.10")

        assert device_state.requests == [("/keypress/Home", {})]
