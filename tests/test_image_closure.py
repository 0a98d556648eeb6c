"""Tests for image/closure.py module.

A fake inspector stands in for readelf so the graph of library
requirements can be described directly.
"""

from pathlib import Path

import pytest

from crossbuild.errors import ImageAssemblyError, LibraryNotFoundError, MetadataToolError
from crossbuild.image.closure import (
    LibraryClosure,
    compute_closure,
    copy_closure,
    find_library,
    library_file_name,
    library_search_dirs,
    resolve_executables,
)
from crossbuild.manifest.schema import ImageSettingsSchema


class FakeInspector:
    """LibraryInspector answering from a file-name -> needed mapping."""

    def __init__(self, needed: dict[str, list[str]], broken: set[str] | None = None):
        self.needed = needed
        self.broken = broken or set()
        self.inspected: list[str] = []

    def required_libraries(self, path: Path) -> list[str]:
        self.inspected.append(path.name)
        if path.name in self.broken:
            raise MetadataToolError(path, "not an ELF file")
        return self.needed.get(path.name, [])


def touch(path: Path, content: bytes = b"\x7fELF") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


class TestResolveExecutables:
    """Tests for resolve_executables function."""

    def test_globs_sorted_unique(self, tmp_path: Path) -> None:
        """Overlapping patterns yield each file once, sorted."""
        touch(tmp_path / "bin" / "b")
        touch(tmp_path / "bin" / "a")
        touch(tmp_path / "sbin" / "c")
        (tmp_path / "bin" / "subdir").mkdir()

        found = resolve_executables(tmp_path, ["bin/*", "bin/a", "sbin/*"])

        assert found == [tmp_path / "bin" / "a", tmp_path / "bin" / "b", tmp_path / "sbin" / "c"]

    def test_no_match(self, tmp_path: Path) -> None:
        """A pattern matching nothing contributes nothing."""
        assert resolve_executables(tmp_path, ["bin/*"]) == []


class TestFindLibrary:
    """Tests for find_library function."""

    def test_first_directory_wins(self, tmp_path: Path) -> None:
        """Search directories are consulted in order."""
        first = touch(tmp_path / "one" / "libz.so.1")
        touch(tmp_path / "two" / "libz.so.1")

        found = find_library("libz.so.1", [tmp_path / "one", tmp_path / "two"])
        assert found == first

    def test_not_found(self, tmp_path: Path) -> None:
        """A library in no directory raises with the requiring file."""
        with pytest.raises(LibraryNotFoundError) as exc_info:
            find_library("libx.so", [tmp_path], required_by=Path("/bin/app"))

        assert exc_info.value.library == "libx.so"
        assert exc_info.value.required_by == Path("/bin/app")
        assert "libx.so" in str(exc_info.value)

    def test_absolute_name_searched_in_dirs(self, tmp_path: Path) -> None:
        """An absolute name is found in the search dirs, not at its host path."""
        host = touch(tmp_path / "host" / "ld.so", b"host")
        sysroot = touch(tmp_path / "sysroot" / "ld.so", b"target")

        found = find_library(str(host), [tmp_path / "sysroot"])

        assert found == sysroot

    def test_absolute_name_not_in_dirs(self, tmp_path: Path) -> None:
        """An absolute name missing from the search dirs is not found on the host."""
        host = touch(tmp_path / "host" / "ld.so")

        with pytest.raises(LibraryNotFoundError):
            find_library(str(host), [tmp_path / "sysroot"])


class TestLibraryFileName:
    """Tests for library_file_name function."""

    def test_plain_name(self) -> None:
        assert library_file_name("libc.so.6") == "libc.so.6"

    def test_absolute_reduced(self) -> None:
        """An absolute entry is reduced to its file name."""
        assert library_file_name("/lib/ld-linux-armhf.so.3") == "ld-linux-armhf.so.3"

    @pytest.mark.parametrize("name", ["../../etc/passwd", "lib/../x.so", "..", ""])
    def test_rejected(self, name: str) -> None:
        """Entries escaping the library directory or naming no file fail."""
        with pytest.raises(ImageAssemblyError) as exc_info:
            library_file_name(name)
        assert exc_info.value.code == "invalid_library_name"


class TestLibrarySearchDirs:
    """Tests for library_search_dirs function."""

    def test_toolchain_root_last(self) -> None:
        """ld_library_paths come first, the toolchain root last."""
        image = ImageSettingsSchema(
            build_root="/out",
            ld_library_paths=["/out/lib", "/out/usr/lib"],
            cross_compiler_lib_root="/toolchain/lib",
        )
        assert library_search_dirs(image) == [
            Path("/out/lib"),
            Path("/out/usr/lib"),
            Path("/toolchain/lib"),
        ]


class TestComputeClosure:
    """Tests for compute_closure function."""

    def test_transitive_once(self, tmp_path: Path) -> None:
        """E -> L1 -> L2 yields L1 and L2 exactly once each."""
        lib = tmp_path / "lib"
        exe = touch(tmp_path / "bin" / "E")
        exe2 = touch(tmp_path / "bin" / "F")
        touch(lib / "L1")
        touch(lib / "L2")
        inspector = FakeInspector({"E": ["L1"], "F": ["L1", "L2"], "L1": ["L2"]})

        closure = compute_closure([exe, exe2], [lib], inspector)

        assert closure.libraries == {"L1": lib / "L1", "L2": lib / "L2"}
        assert sorted(inspector.inspected) == ["E", "F", "L1", "L2"]

    def test_shared_cycle_terminates(self, tmp_path: Path) -> None:
        """Libraries requiring each other are each resolved once."""
        lib = tmp_path / "lib"
        exe = touch(tmp_path / "bin" / "E")
        touch(lib / "La")
        touch(lib / "Lb")
        inspector = FakeInspector({"E": ["La"], "La": ["Lb"], "Lb": ["La"]})

        closure = compute_closure([exe], [lib], inspector)

        assert set(closure.libraries) == {"La", "Lb"}
        assert inspector.inspected.count("La") == 1

    def test_missing_library_fatal(self, tmp_path: Path) -> None:
        """A library in no search directory aborts the closure."""
        exe = touch(tmp_path / "bin" / "E")
        inspector = FakeInspector({"E": ["libmissing.so"]})

        with pytest.raises(LibraryNotFoundError) as exc_info:
            compute_closure([exe], [tmp_path / "lib"], inspector)
        assert exc_info.value.required_by == exe

    def test_unreadable_file_skipped(self, tmp_path: Path) -> None:
        """A file whose metadata cannot be read is skipped, not fatal."""
        lib = tmp_path / "lib"
        script = touch(tmp_path / "bin" / "script.sh", b"#!/bin/sh\n")
        exe = touch(tmp_path / "bin" / "E")
        touch(lib / "L1")
        inspector = FakeInspector({"E": ["L1"]}, broken={"script.sh"})

        closure = compute_closure([script, exe], [lib], inspector)

        assert closure.skipped == [script]
        assert closure.executables == [script, exe]
        assert list(closure.libraries) == ["L1"]


    def test_absolute_needed_entry(self, tmp_path: Path) -> None:
        """An absolute interpreter entry resolves in the sysroot and copies flat."""
        host = touch(tmp_path / "host" / "ld.so", b"host")
        sysroot = tmp_path / "sysroot"
        touch(sysroot / "ld.so", b"target")
        build_root = tmp_path / "build"
        exe = touch(build_root / "bin" / "E")
        inspector = FakeInspector({"E": [str(host)]})

        closure = compute_closure([exe], [sysroot], inspector)
        copy_closure(closure, build_root, tmp_path / "image")

        assert closure.libraries == {"ld.so": sysroot / "ld.so"}
        assert (tmp_path / "image" / "lib" / "ld.so").read_bytes() == b"target"
        assert host.read_bytes() == b"host"

    def test_parent_reference_rejected(self, tmp_path: Path) -> None:
        """A required name climbing out of the library directory is refused."""
        exe = touch(tmp_path / "bin" / "E")
        touch(tmp_path / "lib" / "evil.so")
        inspector = FakeInspector({"E": ["../lib/evil.so"]})

        with pytest.raises(ImageAssemblyError) as exc_info:
            compute_closure([exe], [tmp_path / "lib"], inspector)
        assert exc_info.value.code == "invalid_library_name"


class TestCopyClosure:
    """Tests for copy_closure function."""

    def test_layout(self, tmp_path: Path) -> None:
        """Executables keep their relative path; libraries are flattened."""
        build_root = tmp_path / "build"
        exe = touch(build_root / "usr" / "bin" / "app", b"app")
        real = touch(tmp_path / "toolchain" / "libc.so.6.real", b"libc")
        link = tmp_path / "toolchain" / "libc.so.6"
        link.symlink_to(real.name)
        closure = LibraryClosure(executables=[exe], libraries={"libc.so.6": link})
        image_root = tmp_path / "image"

        written = copy_closure(closure, build_root, image_root)

        assert (image_root / "usr" / "bin" / "app").read_bytes() == b"app"
        copied_lib = image_root / "lib" / "libc.so.6"
        assert copied_lib.read_bytes() == b"libc"
        assert not copied_lib.is_symlink()
        assert written == [image_root / "usr" / "bin" / "app", copied_lib]

    def test_executable_outside_build_root(self, tmp_path: Path) -> None:
        """An executable not under build_root cannot be placed."""
        exe = touch(tmp_path / "elsewhere" / "app")
        closure = LibraryClosure(executables=[exe])

        with pytest.raises(ImageAssemblyError) as exc_info:
            copy_closure(closure, tmp_path / "build", tmp_path / "image")
        assert exc_info.value.code == "copy_error"
