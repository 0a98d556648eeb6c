"""Tests for manifest/schema.py module."""

import pytest
from pydantic import ValidationError

from crossbuild.manifest.schema import (
    DEFAULT_PACKAGE_COMMAND,
    ImageSettingsSchema,
    ManifestSchema,
    PackageSchema,
)


class TestPackageSchema:
    """Tests for PackageSchema validation."""

    def test_minimal_remote_package(self) -> None:
        """A name and a repo are enough."""
        package = PackageSchema(name="zlib", repo="https://github.com/madler/zlib")

        assert package.configure_opts == ""
        assert package.build == ""
        assert package.install == ""
        assert package.depends == []
        assert package.is_local is False

    def test_local_package(self) -> None:
        """A package with a source_directory is local."""
        package = PackageSchema(name="app", source_directory="/src/app")
        assert package.is_local is True

    def test_requires_repo_or_source(self) -> None:
        """A package with neither repo nor source_directory is invalid."""
        with pytest.raises(ValidationError) as exc_info:
            PackageSchema(name="orphan")
        assert "repo" in str(exc_info.value)

    @pytest.mark.parametrize("name", ["with space", "slash/name", ""])
    def test_invalid_names(self, name: str) -> None:
        """Names must be non-empty and file-name safe."""
        with pytest.raises(ValidationError):
            PackageSchema(name=name, repo="https://github.com/a/b")

    def test_empty_dependency_rejected(self) -> None:
        """Dependency names must be non-empty."""
        with pytest.raises(ValidationError):
            PackageSchema(name="x", repo="https://github.com/a/b", depends=[" "])

    def test_extra_fields_forbidden(self) -> None:
        """Unknown fields should be rejected."""
        with pytest.raises(ValidationError):
            PackageSchema(name="x", repo="https://github.com/a/b", unknown="y")


class TestImageSettingsSchema:
    """Tests for ImageSettingsSchema validation."""

    def test_defaults(self) -> None:
        """Optional image settings should have working defaults."""
        image = ImageSettingsSchema(build_root="/out")

        assert image.executables == []
        assert image.strip is False
        assert image.library_dir == "lib"
        assert image.package_command == DEFAULT_PACKAGE_COMMAND

    def test_absolute_executable_pattern_rejected(self) -> None:
        """Executable patterns are relative to build_root."""
        with pytest.raises(ValidationError):
            ImageSettingsSchema(build_root="/out", executables=["/usr/bin/app"])

    @pytest.mark.parametrize("library_dir", ["/lib", "../lib", "usr/../../lib"])
    def test_library_dir_must_stay_inside(self, library_dir: str) -> None:
        """library_dir may not escape the image root."""
        with pytest.raises(ValidationError):
            ImageSettingsSchema(build_root="/out", library_dir=library_dir)


class TestManifestSchema:
    """Tests for ManifestSchema validation."""

    def test_empty_manifest(self) -> None:
        """An empty manifest is valid."""
        manifest = ManifestSchema()
        assert manifest.packages == []
        assert manifest.image_settings is None

    def test_duplicate_names_rejected(self) -> None:
        """Package names must be unique."""
        with pytest.raises(ValidationError) as exc_info:
            ManifestSchema(
                packages=[
                    {"name": "a", "repo": "https://github.com/o/a"},
                    {"name": "a", "repo": "https://github.com/o/b"},
                ]
            )
        assert "duplicate package name 'a'" in str(exc_info.value)
