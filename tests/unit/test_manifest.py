"""Unit tests for the manifest codec."""

from datetime import datetime

import pytest

from rokudeploy.models.manifest import ManifestDocument, read_manifest, write_manifest

SAMPLE = (
    "# Channel Details\n"
    "title=HeroGridChannel\n"
    "subtitle=Roku Sample Channel App\n"
    "major_version=1\n"
    "minor_version=1\n"
    "build_version=00001\n"
    "\n"
    "# Compile-time constants\n"
    "bs_const=IS_DEV_BUILD=false\n"
    "splash_color=#000000\n"
)


@pytest.mark.unit
class TestParse:
    def test_values(self):
        doc = ManifestDocument.parse(SAMPLE)

        assert doc["title"] == "HeroGridChannel"
        assert doc["build_version"] == "00001"
        assert doc["bs_const"] == "IS_DEV_BUILD=false"
        assert doc["splash_color"] == "#000000"
        assert "# Channel Details" not in doc

    def test_line_numbers_and_key_order(self):
        doc = ManifestDocument.parse(SAMPLE)

        assert doc.line_numbers["title"] == 1
        assert doc.line_numbers["bs_const"] == 8
        assert list(doc.keys())[:3] == ["title", "subtitle", "major_version"]
        assert doc.key_indexes["title"] == 0

    def test_strips_key_and_trailing_value_whitespace(self):
        doc = ManifestDocument.parse("  title = My Channel  \r\n")

        assert doc["title"] == " My Channel"

    def test_first_line_position_wins_last_value_wins(self):
        doc = ManifestDocument.parse("a=1\nb=2\na=3\n")

        assert doc["a"] == "3"
        assert doc.line_numbers["a"] == 0


@pytest.mark.unit
class TestSerialize:
    @pytest.mark.parametrize(
        "text",
        [SAMPLE, "", "title=x", "title=x\r\nmajor_version=1\r\n", "a=1\nb=2\na=3\n", "\n\n# only comments\n"],
    )
    def test_unmodified_round_trip_is_identical(self, text):
        assert ManifestDocument.parse(text).serialize() == text

    def test_update_in_place(self):
        doc = ManifestDocument.parse(SAMPLE)
        doc["major_version"] = "2"

        assert doc.serialize() == SAMPLE.replace("major_version=1", "major_version=2")

    def test_setting_same_value_keeps_original_line(self):
        doc = ManifestDocument.parse("title = spaced\n")
        doc["title"] = " spaced"

        assert doc.serialize() == "title = spaced\n"

    def test_update_keeps_crlf(self):
        doc = ManifestDocument.parse("title=x\r\nbuild_version=1\r\n")
        doc["build_version"] = "2"

        assert doc.serialize() == "title=x\r\nbuild_version=2\r\n"

    def test_update_drops_duplicate_lines(self):
        doc = ManifestDocument.parse("a=1\nb=2\na=3\n")
        doc["a"] = "9"

        assert doc.serialize() == "a=9\nb=2\n"

    def test_new_keys_after_last_key(self):
        doc = ManifestDocument.parse(SAMPLE)
        doc["bs_libs_required"] = "roku_ads_lib"
        doc["ui_resolutions"] = "fhd"

        assert doc.serialize() == SAMPLE + "bs_libs_required=roku_ads_lib\nui_resolutions=fhd\n"

    def test_new_keys_in_empty_document(self):
        doc = ManifestDocument.parse("")
        doc["title"] = "x"

        assert doc.serialize() == "title=x\n"

    def test_delete_removes_lines(self):
        doc = ManifestDocument.parse(SAMPLE)
        del doc["subtitle"]

        assert "subtitle" not in doc.serialize()
        assert doc.to_dict().get("subtitle") is None


@pytest.mark.unit
class TestIncrementBuildVersion:
    def test_uses_timestamp(self):
        doc = ManifestDocument.parse(SAMPLE)

        stamp = doc.increment_build_version(datetime(2024, 3, 5, 14, 7))

        assert stamp == "2403051407"
        assert "build_version=2403051407\n" in doc.serialize()

    def test_always_changes_within_same_minute(self):
        doc = ManifestDocument.parse(SAMPLE)
        now = datetime(2024, 3, 5, 14, 7)

        first = doc.increment_build_version(now)
        second = doc.increment_build_version(now)

        assert first != second
        assert second == "2403051408"


@pytest.mark.unit
class TestManifestFiles:
    @pytest.mark.asyncio
    async def test_read_missing_file(self, tmp_path):
        path = tmp_path / "manifest"

        with pytest.raises(FileNotFoundError, match="does not exist"):
            await read_manifest(path)

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path):
        path = tmp_path / "manifest"
        path.write_bytes(b"title=x\r\nbuild_version=1\r\n")

        doc = await read_manifest(path)
        doc["build_version"] = "5"
        await write_manifest(path, doc)

        assert path.read_bytes() == b"title=x\r\nbuild_version=5\r\n"
        assert (await read_manifest(path))["build_version"] == "5"
