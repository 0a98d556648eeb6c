"""Shared-library dependency closure.

Starting from the selected executables, the resolver asks a
LibraryInspector which libraries each file requires, locates every library
in an ordered list of search directories, and repeats over newly found
libraries until no new name appears. Every library name is resolved and
inspected at most once.

A file whose metadata cannot be read is logged and skipped. A required
library that cannot be located is fatal, since the image would not run.
"""

from __future__ import annotations

import logging
import shutil
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from crossbuild.errors import (
    ImageAssemblyError,
    LibraryNotFoundError,
    MetadataToolError,
)

if TYPE_CHECKING:
    from crossbuild.image.inspect import LibraryInspector
    from crossbuild.manifest.schema import ImageSettingsSchema

logger = logging.getLogger(__name__)


@dataclass
class LibraryClosure:
    """Executables and the full set of libraries they need.

    Attributes:
        executables: Resolved executable paths.
        libraries: Library name -> resolved path, in discovery order.
        skipped: Files whose metadata could not be read.
    """

    executables: list[Path] = field(default_factory=list)
    libraries: dict[str, Path] = field(default_factory=dict)
    skipped: list[Path] = field(default_factory=list)


def resolve_executables(build_root: Path, patterns: Iterable[str]) -> list[Path]:
    """Expand glob patterns to files under the build tree.

    Args:
        build_root: Root the patterns are relative to.
        patterns: Glob patterns (e.g. "usr/bin/*").

    Returns:
        Sorted, de-duplicated list of matching files.
    """
    found: set[Path] = set()
    for pattern in patterns:
        matches = [p for p in build_root.glob(pattern) if p.is_file()]
        if not matches:
            logger.warning("No executables match %s under %s", pattern, build_root)
        found.update(matches)
    return sorted(found)


def library_search_dirs(image: ImageSettingsSchema) -> list[Path]:
    """Return the ordered library search directories of an image.

    The ld_library_paths entries come first, the cross-compiler library
    root last.
    """
    dirs = [Path(p) for p in image.ld_library_paths]
    if image.cross_compiler_lib_root:
        dirs.append(Path(image.cross_compiler_lib_root))
    return dirs


def library_file_name(name: str) -> str:
    """Reduce a required library entry to the file name to search for.

    Absolute entries such as "/lib/ld-linux-armhf.so.3" are looked up by
    their file name in the search directories, never on the host.

    Raises:
        ImageAssemblyError: If the entry has a ".." component or no file name.
    """
    path = PurePosixPath(name)
    if ".." in path.parts or not path.name:
        raise ImageAssemblyError(
            f"Invalid library name: {name!r}", code="invalid_library_name"
        )
    return path.name


def find_library(
    name: str,
    search_dirs: list[Path],
    required_by: Path | None = None,
) -> Path:
    """Locate a library by name in the first directory that contains it.

    Args:
        name: Library name (e.g. "libc.so.6"); only its file name is used.
        search_dirs: Directories to search, in order.
        required_by: File that needs the library (for error messages).

    Returns:
        Path of the library in the first matching directory.

    Raises:
        LibraryNotFoundError: If no directory contains the library.
        ImageAssemblyError: If the name is not a plain library name.
    """
    file_name = library_file_name(name)
    for directory in search_dirs:
        candidate = directory / file_name
        if candidate.exists():
            return candidate
    raise LibraryNotFoundError(name, search_dirs, required_by=required_by)


def compute_closure(
    executables: list[Path],
    search_dirs: list[Path],
    inspector: LibraryInspector,
) -> LibraryClosure:
    """Compute the transitive library closure of a set of executables.

    Args:
        executables: Executables whose requirements are resolved.
        search_dirs: Ordered library search directories.
        inspector: Source of each file's required library names.

    Returns:
        LibraryClosure holding every transitively required library once,
        keyed by file name.

    Raises:
        LibraryNotFoundError: If a required library cannot be located.
        ImageAssemblyError: If a required library name is invalid.
    """
    closure = LibraryClosure(executables=list(executables))
    queue: deque[Path] = deque(executables)

    while queue:
        current = queue.popleft()
        try:
            needed = inspector.required_libraries(current)
        except MetadataToolError as e:
            logger.warning("Skipping %s: %s", current, e)
            closure.skipped.append(current)
            continue

        for entry in needed:
            name = library_file_name(entry)
            if name in closure.libraries:
                continue
            path = find_library(name, search_dirs, required_by=current)
            closure.libraries[name] = path
            queue.append(path)
            logger.debug("%s -> %s (%s)", current.name, name, path)

    logger.info(
        "Resolved %d executable(s) needing %d librar(ies), %d skipped",
        len(closure.executables),
        len(closure.libraries),
        len(closure.skipped),
    )
    return closure


def copy_closure(
    closure: LibraryClosure,
    build_root: Path,
    image_root: Path,
    library_dir: str = "lib",
) -> list[Path]:
    """Copy executables and libraries into the image tree.

    Executables keep their path relative to the build root; libraries are
    flattened into library_dir. Symlinked libraries are copied as files
    under the requested name.

    Args:
        closure: Resolved closure.
        build_root: Build tree root executables are relative to.
        image_root: Image tree root.
        library_dir: Directory (relative to image_root) for libraries.

    Returns:
        Paths of every file written into the image.

    Raises:
        ImageAssemblyError: If a file cannot be copied.
    """
    written: list[Path] = []
    try:
        for executable in closure.executables:
            dest = image_root / executable.relative_to(build_root)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(executable, dest)
            written.append(dest)

        lib_root = image_root / library_dir
        lib_root.mkdir(parents=True, exist_ok=True)
        for name, path in closure.libraries.items():
            dest = lib_root / library_file_name(name)
            shutil.copy2(path, dest, follow_symlinks=True)
            written.append(dest)
    except (OSError, ValueError) as e:
        raise ImageAssemblyError(
            f"Failed to copy closure into {image_root}: {e}", code="copy_error"
        ) from e

    logger.info("Copied %d file(s) into %s", len(written), image_root)
    return written


__all__ = [
    "LibraryClosure",
    "compute_closure",
    "copy_closure",
    "find_library",
    "library_file_name",
    "library_search_dirs",
    "resolve_executables",
]
