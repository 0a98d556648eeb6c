"""Pydantic models for build manifest validation.

A manifest describes the packages to build (identity, repository, command
templates, dependency names), the global replacement table, the
cross-compiler token, and the settings for the runtime image.
"""

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PACKAGE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.+\-]+$")

DEFAULT_PACKAGE_COMMAND = "mksquashfs $image_root$ $output$ -noappend -all-root"


class PackageSchema(BaseModel):
    """Schema for a single source package.

    Attributes:
        name: Unique package name.
        repo: Repository URI (https://github.com/owner/name).
        source_directory: Local source tree; when set the package is not fetched.
        configure_opts: Configure command template.
        build: Build command template (empty = parallel make).
        install: Install command template (empty = no install step).
        depends: Names of packages that must be built first.
        patches_dir: Directory of *.patch files applied before building.
    """

    model_config = ConfigDict(extra="forbid")

    name: Annotated[
        str, Field(description="Unique package name", min_length=1, max_length=255)
    ]
    repo: str | None = Field(default=None, description="Repository URI")
    source_directory: str | None = Field(
        default=None, description="Local source directory (skips acquisition)"
    )
    configure_opts: str = Field(default="", description="Configure command")
    build: str = Field(default="", description="Build command")
    install: str = Field(default="", description="Install command")
    depends: list[str] = Field(
        default_factory=list, description="Names of packages this one depends on"
    )
    patches_dir: str | None = Field(
        default=None, description="Directory holding *.patch files"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name matches safe pattern."""
        if not PACKAGE_NAME_PATTERN.match(v):
            raise ValueError(
                f"name must match pattern {PACKAGE_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("depends")
    @classmethod
    def validate_depends(cls, v: list[str]) -> list[str]:
        """Validate dependency names are non-empty."""
        for item in v:
            if not item or not item.strip():
                raise ValueError("depends entries must be non-empty strings")
        return v

    @model_validator(mode="after")
    def validate_source(self) -> "PackageSchema":
        """Require a repository or a local source directory."""
        if not self.repo and not self.source_directory:
            raise ValueError(
                f"package {self.name} needs either 'repo' or 'source_directory'"
            )
        return self

    @property
    def is_local(self) -> bool:
        """True when the package builds from a local source directory."""
        return bool(self.source_directory)


class ImageSettingsSchema(BaseModel):
    """Schema for runtime image assembly.

    Attributes:
        build_root: Tree the executables are resolved under (install prefix).
        cross_compiler_lib_root: Toolchain sysroot library directory.
        executables: Glob patterns, relative to build_root, selecting key executables.
        ld_library_paths: Ordered library search directories.
        config_overlay: Static configuration tree copied onto the image root.
        strip: Strip debug symbols from every regular file in the image.
        strip_tool: Strip command.
        readelf_tool: Binary metadata inspection command.
        library_dir: Image directory receiving all resolved libraries.
        package_command: Packaging command template ($image_root$, $output$).
    """

    model_config = ConfigDict(extra="forbid")

    build_root: Annotated[str, Field(min_length=1, description="Build tree root")]
    cross_compiler_lib_root: str | None = Field(
        default=None, description="Toolchain library root"
    )
    executables: list[str] = Field(
        default_factory=list, description="Key executable glob patterns"
    )
    ld_library_paths: list[str] = Field(
        default_factory=list, description="Library search directories, in order"
    )
    config_overlay: str | None = Field(
        default=None, description="Configuration overlay directory"
    )
    strip: bool = Field(default=False, description="Strip debug symbols")
    strip_tool: str = Field(default="strip", description="Strip command")
    readelf_tool: str = Field(default="readelf", description="readelf command")
    library_dir: str = Field(default="lib", description="Library directory in image")
    package_command: str = Field(
        default=DEFAULT_PACKAGE_COMMAND,
        description="Filesystem image packaging command",
    )

    @field_validator("executables")
    @classmethod
    def validate_executables(cls, v: list[str]) -> list[str]:
        """Validate executable patterns are relative globs."""
        for pattern in v:
            if not pattern or not pattern.strip():
                raise ValueError("executables entries must be non-empty patterns")
            if pattern.startswith("/"):
                raise ValueError(
                    f"executables patterns must be relative to build_root, got '{pattern}'"
                )
        return v

    @field_validator("library_dir")
    @classmethod
    def validate_library_dir(cls, v: str) -> str:
        """Validate library_dir stays inside the image root."""
        if v.startswith("/") or ".." in v.split("/"):
            raise ValueError(f"library_dir must be a relative path, got '{v}'")
        return v


class ManifestSchema(BaseModel):
    """Complete manifest schema.

    Attributes:
        replacements: Table of $key$ placeholders and their values.
        oauth_token: GitHub token for tag lookups.
        cross_compiler: Value substituted for $cross_compiler$.
        packages: Packages to build.
        image_settings: Optional image assembly settings.
    """

    model_config = ConfigDict(extra="forbid")

    replacements: dict[str, str] = Field(default_factory=dict)
    oauth_token: str | None = Field(default=None)
    cross_compiler: str = Field(default="")
    packages: list[PackageSchema] = Field(default_factory=list)
    image_settings: ImageSettingsSchema | None = Field(default=None)

    @model_validator(mode="after")
    def validate_unique_names(self) -> "ManifestSchema":
        """Reject duplicate package names."""
        seen: set[str] = set()
        for package in self.packages:
            if package.name in seen:
                raise ValueError(f"duplicate package name '{package.name}'")
            seen.add(package.name)
        return self


__all__ = [
    "DEFAULT_PACKAGE_COMMAND",
    "ImageSettingsSchema",
    "ManifestSchema",
    "PackageSchema",
]
