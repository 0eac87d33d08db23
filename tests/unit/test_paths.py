"""Unit tests for utils/paths.py."""

import os

import pytest

from rokudeploy.utils.paths import (
    absolute_path,
    escapes_root,
    is_parent_of_path,
    relative_to,
    standardize_path,
    strip_leading_slashes,
    to_posix,
)


@pytest.mark.unit
class TestPaths:
    def test_to_posix_collapses_separators(self):
        assert to_posix("source\\\\components//main.brs") == "source/components/main.brs"

    def test_standardize_path(self):
        assert standardize_path("a\\b/../c/./d.brs") == "a/c/d.brs"
        assert standardize_path(None) is None
        assert standardize_path("") is None

    def test_strip_leading_slashes(self):
        assert strip_leading_slashes("//source/main.brs") == "source/main.brs"
        assert strip_leading_slashes("\\source") == "source"

    def test_absolute_path_uses_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        expected = to_posix(os.getcwd()) + "/project"
        assert absolute_path("./project") == expected

    def test_absolute_path_with_base(self):
        assert absolute_path("../lib/a.brs", "/work/root") == "/work/lib/a.brs"
        assert absolute_path("/abs/file", "/work/root") == "/abs/file"

    def test_is_parent_of_path(self):
        assert is_parent_of_path("/root/dir", "/root/dir/a/b.brs")
        assert not is_parent_of_path("/root/dir", "/root/dir")
        assert not is_parent_of_path("/root/dir", "/root/directory/a.brs")

    def test_relative_to_and_escapes_root(self):
        assert relative_to("/root/dir/source/a.brs", "/root/dir") == "source/a.brs"
        outside = relative_to("/root/README.md", "/root/dir")
        assert outside == "../README.md"
        assert escapes_root(outside)
        assert escapes_root("..")
        assert not escapes_root("source/..hidden")
