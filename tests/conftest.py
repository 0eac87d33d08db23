"""Global pytest fixtures and configuration."""

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rokudeploy.models.options import DeployOptions  # noqa: E402


def write_files(root: Path, files: dict) -> None:
    """Create files under root from a {relative_path: content} mapping."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)


@pytest.fixture
def temp_dir(tmp_path):
    """Create a temporary directory for test files."""
    yield tmp_path


@pytest.fixture
def make_files():
    """The write_files helper, for tests that build their own trees."""
    return write_files


@pytest.fixture
def root_dir(tmp_path):
    """Channel project folder with an empty manifest."""
    root = tmp_path / "rootDir"
    root.mkdir()
    (root / "manifest").write_text("")
    return root


@pytest.fixture
def sample_project(root_dir):
    """Channel project with a handful of source, component and image files."""
    write_files(
        root_dir,
        {
            "manifest": "title=RokuDeployTestChannel\nmajor_version=1\nminor_version=0\nbuild_version=0\n",
            "source/main.brs": "sub main()\nend sub\n",
            "source/lib.brs": "function lib()\nend function\n",
            "components/component1.brs": "' component1\n",
            "components/component1.xml": "<component name=\"component1\" />\n",
            "components/screen1/screen1.brs": "' screen1\n",
            "components/screen1/screen1.xml": "<component name=\"screen1\" />\n",
            "images/splash_hd.jpg": b"\xff\xd8\xff\xe0fakejpeg",
        },
    )
    return root_dir


@pytest.fixture
def deploy_options(tmp_path, root_dir):
    """DeployOptions pointed at temp folders and a fake host."""
    return DeployOptions(
        host="192.168.1.10",
        password="secret",
        root_dir=str(root_dir),
        out_dir=str(tmp_path / "out"),
        staging_folder_path=str(tmp_path / "staging"),
        signing_password="12345",
        dev_id="abcde",
        rekey_signed_package="testSignedPackage.pkg",
    )
