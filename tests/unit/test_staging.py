"""Unit tests for StagingService."""

import pytest

from rokudeploy.errors import SpecificationError
from rokudeploy.models.file_entry import ResolvedFile
from rokudeploy.services.staging import StagingService
from rokudeploy.utils.retry import RetryPolicy


@pytest.fixture
def staging_service():
    return StagingService(retry_policy=RetryPolicy(delay_s=0))


@pytest.mark.unit
class TestCopyToStaging:
    @pytest.mark.asyncio
    async def test_copies_resolved_files(self, staging_service, sample_project, tmp_path):
        staging = tmp_path / "staging"

        files = await staging_service.copy_to_staging(
            ["manifest", "source/**/*", {"src": "images/*.jpg", "dest": "img"}],
            str(staging),
            str(sample_project),
        )

        assert len(files) == 4
        assert (staging / "manifest").read_text().startswith("title=RokuDeployTestChannel")
        assert (staging / "source" / "main.brs").read_text() == "sub main()\nend sub\n"
        assert (staging / "img" / "splash_hd.jpg").read_bytes() == b"\xff\xd8\xff\xe0fakejpeg"
        assert not (staging / "components").exists()

    @pytest.mark.asyncio
    async def test_staging_path_required(self, staging_service, sample_project):
        with pytest.raises(SpecificationError, match="stagingPath is required"):
            await staging_service.copy_to_staging(["manifest"], None, str(sample_project))

    @pytest.mark.asyncio
    async def test_root_dir_required(self, staging_service, tmp_path):
        with pytest.raises(SpecificationError, match="rootDir is required"):
            await staging_service.copy_to_staging(["manifest"], str(tmp_path / "staging"), "")

    @pytest.mark.asyncio
    async def test_missing_root_dir(self, staging_service, tmp_path):
        with pytest.raises(FileNotFoundError, match="rootDir does not exist"):
            await staging_service.copy_to_staging(
                ["manifest"], str(tmp_path / "staging"), str(tmp_path / "missing")
            )


@pytest.mark.unit
class TestStage:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("staging_path", ["", None, "   "])
    async def test_staging_path_required(self, staging_service, sample_project, tmp_path, monkeypatch, staging_path):
        monkeypatch.chdir(tmp_path)
        files = [ResolvedFile(src=f"{sample_project}/manifest", dest="manifest")]

        with pytest.raises(SpecificationError, match="stagingPath is required"):
            await staging_service.stage(files, staging_path)

        assert not (tmp_path / "manifest").exists()

    @pytest.mark.asyncio
    async def test_leading_slash_in_dest_stays_inside_staging(self, staging_service, sample_project, tmp_path):
        staging = tmp_path / "staging"
        files = [ResolvedFile(src=f"{sample_project}/manifest", dest="/manifest")]

        await staging_service.stage(files, str(staging))

        assert (staging / "manifest").exists()

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, staging_service, sample_project, tmp_path, monkeypatch):
        staging = tmp_path / "staging"
        original = staging_service._copy_file
        calls = []

        async def flaky_copy(src, dest):
            calls.append(src)
            if len(calls) <= 4:
                raise PermissionError("file is locked")
            await original(src, dest)

        monkeypatch.setattr(staging_service, "_copy_file", flaky_copy)

        await staging_service.stage(
            [ResolvedFile(src=f"{sample_project}/manifest", dest="manifest")], str(staging)
        )

        assert len(calls) == 5
        assert (staging / "manifest").exists()

    @pytest.mark.asyncio
    async def test_gives_up_with_original_error(self, staging_service, sample_project, tmp_path, monkeypatch):
        calls = []

        async def broken_copy(src, dest):
            calls.append(src)
            raise PermissionError("file is locked")

        monkeypatch.setattr(staging_service, "_copy_file", broken_copy)

        with pytest.raises(PermissionError, match="file is locked"):
            await staging_service.stage(
                [ResolvedFile(src=f"{sample_project}/manifest", dest="manifest")],
                str(tmp_path / "staging"),
            )
        assert len(calls) == 10
