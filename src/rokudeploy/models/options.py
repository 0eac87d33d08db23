"""Deploy configuration models."""

import posixpath
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from rokudeploy.utils.paths import absolute_path

FilePattern = Any

DEFAULT_FILES: list[FilePattern] = [
    "source/**/*.*",
    "components/**/*.*",
    "images/**/*.*",
    "manifest",
]


def normalize_root_dir(value: Optional[str]) -> str:
    """Absolute posix rootDir; blank means the current directory."""
    if value is None or not str(value).strip():
        return absolute_path(".")
    return absolute_path(str(value).strip())


class DeployOptions(BaseModel):
    """Already-merged configuration for packaging and device calls.

    Relative directories are resolved against the current working directory
    when the options are built.
    """

    host: Optional[str] = Field(None, description="Device IP or hostname")
    username: str = Field("rokudev", description="Developer web server user")
    password: Optional[str] = Field(None, description="Developer web server password")

    root_dir: str = Field("./", description="Folder pattern paths are relative to")
    files: list[FilePattern] = Field(default_factory=lambda: list(DEFAULT_FILES))
    out_dir: str = Field("./out", description="Where archives and packages are written")
    out_file: str = Field("roku-deploy", description="Archive base name")
    staging_folder_path: Optional[str] = Field(
        None, description="Defaults to <out_dir>/.roku-deploy-staging"
    )

    retain_staging_folder: bool = False
    clean_staging_folder: bool = True
    retain_deployment_archive: bool = True
    increment_build_number: bool = False
    fail_on_compile_error: bool = True
    delete_installed_channel: bool = True

    package_port: int = Field(80, ge=1, le=65535)
    remote_port: int = Field(8060, ge=1, le=65535)
    timeout: float = Field(150.0, gt=0, description="Per-request timeout in seconds")
    remote_debug: bool = False

    convert_to_squashfs: bool = False
    signing_password: Optional[str] = None
    rekey_signed_package: Optional[str] = Field(
        None, description="Signed package used to rekey; relative to root_dir"
    )
    dev_id: Optional[str] = Field(None, description="Expected keyed developer id")

    log_level: str = "INFO"

    @field_validator("root_dir", mode="before")
    @classmethod
    def resolve_root_dir(cls, v: Optional[str]) -> str:
        return normalize_root_dir(v)

    @field_validator("out_dir")
    @classmethod
    def resolve_out_dir(cls, v: str) -> str:
        return absolute_path(v)

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def default_staging_folder(self) -> "DeployOptions":
        if self.staging_folder_path:
            self.staging_folder_path = absolute_path(self.staging_folder_path)
        else:
            self.staging_folder_path = posixpath.join(self.out_dir, ".roku-deploy-staging")
        return self

    def _out_base_name(self) -> str:
        name = self.out_file
        if name.lower().endswith(".zip"):
            name = name[: -len(".zip")]
        return name

    def get_output_zip_file_path(self) -> str:
        return posixpath.join(self.out_dir, self._out_base_name() + ".zip")

    def get_output_pkg_file_path(self) -> str:
        return posixpath.join(self.out_dir, self._out_base_name() + ".pkg")


class BeforeZipInfo(BaseModel):
    """Passed to the pre-archive hook."""

    staging_folder_path: str
    manifest_data: dict[str, str]
