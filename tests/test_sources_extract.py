"""Tests for sources/extract.py module.

Archives are built in memory with explicit directory entries, the way
forge-exported source archives are laid out.
"""

import io
import os
import tarfile
from pathlib import Path

import pytest

from crossbuild.errors import ExtractionError
from crossbuild.sources.extract import ensure_extracted, extract_tar_gz


def add_dir(tar: tarfile.TarFile, name: str, mode: int = 0o755) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = mode
    tar.addfile(info)


def add_file(tar: tarfile.TarFile, name: str, data: bytes, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = mode
    tar.addfile(info, io.BytesIO(data))


def add_symlink(tar: tarfile.TarFile, name: str, target: str) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    tar.addfile(info)


@pytest.fixture
def source_archive(tmp_path: Path) -> Path:
    """A typical source archive with one top-level directory."""
    path = tmp_path / "zlib-v1.3.1.tar.gz"
    with tarfile.open(path, "w:gz") as tar:
        add_dir(tar, "zlib-abc123")
        add_dir(tar, "zlib-abc123/src")
        add_file(tar, "zlib-abc123/configure", b"#!/bin/sh\n", mode=0o755)
        add_file(tar, "zlib-abc123/src/zlib.c", b"int main;\n")
        add_symlink(tar, "zlib-abc123/link", "configure")
    return path


class TestExtractTarGz:
    """Tests for extract_tar_gz function."""

    def test_extracts_and_returns_top_dir(
        self, source_archive: Path, tmp_path: Path
    ) -> None:
        """The first directory entry is the returned source directory."""
        dest = tmp_path / "source"
        result = extract_tar_gz(source_archive, dest)

        assert result == (dest / "zlib-abc123").absolute()
        assert (result / "configure").read_bytes() == b"#!/bin/sh\n"
        assert (result / "src" / "zlib.c").read_bytes() == b"int main;\n"

    def test_preserves_file_mode(self, source_archive: Path, tmp_path: Path) -> None:
        """Regular files keep their declared permission bits."""
        result = extract_tar_gz(source_archive, tmp_path / "source")
        assert (result / "configure").stat().st_mode & 0o111

    def test_declared_mode_exact(self, tmp_path: Path) -> None:
        """Declared modes are applied exactly, also over existing files."""
        archive = tmp_path / "pkg.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            add_dir(tar, "pkg")
            add_file(tar, "pkg/run.sh", b"#!/bin/sh\n", mode=0o750)
            add_file(tar, "pkg/private", b"key", mode=0o600)
        dest = tmp_path / "source"
        (dest / "pkg").mkdir(parents=True)
        (dest / "pkg" / "run.sh").write_bytes(b"old")
        (dest / "pkg" / "run.sh").chmod(0o644)
        old_umask = os.umask(0o077)
        try:
            result = extract_tar_gz(archive, dest)
        finally:
            os.umask(old_umask)

        assert (result / "run.sh").read_bytes() == b"#!/bin/sh\n"
        assert (result / "run.sh").stat().st_mode & 0o7777 == 0o750
        assert (result / "private").stat().st_mode & 0o7777 == 0o600

    def test_skips_non_regular_entries(
        self, source_archive: Path, tmp_path: Path
    ) -> None:
        """Symlinks and other entry types are ignored."""
        result = extract_tar_gz(source_archive, tmp_path / "source")
        assert not (result / "link").exists()
        assert not (result / "link").is_symlink()

    def test_extract_twice(self, source_archive: Path, tmp_path: Path) -> None:
        """Re-extracting over an existing tree succeeds."""
        dest = tmp_path / "source"
        first = extract_tar_gz(source_archive, dest)
        second = extract_tar_gz(source_archive, dest)
        assert first == second

    def test_path_traversal_rejected(self, tmp_path: Path) -> None:
        """Entries escaping the destination are refused."""
        archive = tmp_path / "evil.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            add_dir(tar, "pkg")
            add_file(tar, "../escape.txt", b"x")

        with pytest.raises(ExtractionError) as exc_info:
            extract_tar_gz(archive, tmp_path / "source")

        assert exc_info.value.code == "path_traversal"
        assert not (tmp_path / "escape.txt").exists()

    def test_no_directory_entry(self, tmp_path: Path) -> None:
        """An archive without any directory entry is an error."""
        archive = tmp_path / "flat.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            add_file(tar, "README", b"hi")

        with pytest.raises(ExtractionError) as exc_info:
            extract_tar_gz(archive, tmp_path / "source")
        assert exc_info.value.code == "no_directory"

    def test_corrupt_archive(self, tmp_path: Path) -> None:
        """A file that is not gzip is reported as a tar error."""
        archive = tmp_path / "bad.tar.gz"
        archive.write_bytes(b"this is not gzip data at all")

        with pytest.raises(ExtractionError) as exc_info:
            extract_tar_gz(archive, tmp_path / "source")
        assert exc_info.value.code == "tar_error"


class TestEnsureExtracted:
    """Tests for ensure_extracted function."""

    def test_directory_unchanged(self, tmp_path: Path) -> None:
        """An existing directory is returned as-is."""
        source = tmp_path / "already"
        source.mkdir()
        assert ensure_extracted(source, tmp_path / "dest") == source

    def test_archive_extracted(self, source_archive: Path, tmp_path: Path) -> None:
        """An archive is extracted into the destination."""
        result = ensure_extracted(source_archive, tmp_path / "dest")
        assert result.is_dir()
        assert result.name == "zlib-abc123"

    def test_idempotent(self, source_archive: Path, tmp_path: Path) -> None:
        """Feeding the result back in returns it unchanged."""
        first = ensure_extracted(source_archive, tmp_path / "dest")
        assert ensure_extracted(first, tmp_path / "dest") == first

    def test_missing_path(self, tmp_path: Path) -> None:
        """A path that does not exist cannot be extracted."""
        with pytest.raises(ExtractionError) as exc_info:
            ensure_extracted(tmp_path / "nothing.tar.gz", tmp_path / "dest")
        assert exc_info.value.code == "not_found"
