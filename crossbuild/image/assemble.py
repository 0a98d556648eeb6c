"""Image assembly.

Builds the runtime image tree from completed build outputs:
1. resolve the key executables and their library closure, copy them in;
2. optionally strip debug symbols from every regular file (best effort);
3. optionally overlay a static configuration directory;
4. write a content manifest next to the image output;
5. run the external filesystem-image packaging command.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from crossbuild.errors import ImageAssemblyError
from crossbuild.image.closure import (
    LibraryClosure,
    compute_closure,
    copy_closure,
    library_search_dirs,
    resolve_executables,
)
from crossbuild.image.inspect import LibraryInspector, ReadelfInspector
from crossbuild.image.manifest import describe_image, generate_manifest, write_manifest
from crossbuild.image.overlay import apply_overlay
from crossbuild.types import ImageFileInfo

if TYPE_CHECKING:
    from crossbuild.config import Settings
    from crossbuild.manifest.schema import ImageSettingsSchema

logger = logging.getLogger(__name__)

MANIFEST_SUFFIX = ".manifest.json"

# Timeout for a single strip invocation (seconds)
STRIP_TIMEOUT = 120


@dataclass
class ImageResult:
    """Result of an image assembly run."""

    image_root: Path
    output: Path | None
    manifest_path: Path
    closure: LibraryClosure
    files: list[ImageFileInfo] = field(default_factory=list)
    stripped: list[Path] = field(default_factory=list)


def reset_image_root(image_root: Path) -> None:
    """Remove any previous image tree and create an empty one."""
    try:
        if image_root.exists():
            logger.debug("Removing previous image tree %s", image_root)
            shutil.rmtree(image_root)
        image_root.mkdir(parents=True)
    except OSError as e:
        raise ImageAssemblyError(
            f"Cannot prepare image root {image_root}: {e}", code="image_root_error"
        ) from e


def strip_tree(
    image_root: Path, strip_tool: str = "strip", timeout: int = STRIP_TIMEOUT
) -> list[Path]:
    """Strip debug symbols from every regular file of a tree.

    Failures are logged and do not stop the remaining files.

    Args:
        image_root: Tree to process.
        strip_tool: Strip command (may include arguments).
        timeout: Timeout per file in seconds.

    Returns:
        Files that were stripped successfully.
    """
    base = shlex.split(strip_tool)
    stripped: list[Path] = []

    for path in sorted(image_root.rglob("*")):
        if path.is_symlink() or not path.is_file():
            continue
        try:
            result = subprocess.run(
                [*base, "--strip-debug", str(path)],
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not strip %s: %s", path, e)
            continue

        if result.returncode != 0:
            logger.warning("Could not strip %s: %s", path, result.stderr.strip())
            continue
        stripped.append(path)

    logger.info("Stripped %d file(s) in %s", len(stripped), image_root)
    return stripped


def render_package_command(template: str, image_root: Path, output: Path) -> str:
    """Fill the $image_root$ and $output$ placeholders of a packaging command."""
    return template.replace("$image_root$", shlex.quote(str(image_root))).replace(
        "$output$", shlex.quote(str(output))
    )


def package_image(
    template: str,
    image_root: Path,
    output: Path,
    timeout: int | None = None,
) -> Path:
    """Run the filesystem-image packaging command over the image tree.

    Args:
        template: Command template with $image_root$ and $output$.
        image_root: Assembled image tree.
        output: Packaged image path.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        The output path.

    Raises:
        ImageAssemblyError: If the command cannot run or exits non-zero.
    """
    command = render_package_command(template, image_root, output)
    output.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Packaging image: %s", command)

    try:
        result = subprocess.run(
            ["bash", "-c", command],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise ImageAssemblyError(
            f"Packaging timed out after {timeout} seconds", code="package_timeout"
        ) from e
    except OSError as e:
        raise ImageAssemblyError(
            f"Failed to run packaging command: {e}", code="execution_error"
        ) from e

    if result.returncode != 0:
        raise ImageAssemblyError(
            f"Packaging command exited with {result.returncode}: "
            f"{result.stderr.strip()}",
            code="package_failed",
        )

    logger.info("Packaged image %s", output)
    return output


def assemble_image(
    image: ImageSettingsSchema,
    settings: Settings,
    inspector: LibraryInspector | None = None,
    package: bool = True,
) -> ImageResult:
    """Assemble the runtime image.

    Args:
        image: Image settings from the manifest.
        settings: Settings (image dir, image output path).
        inspector: Binary metadata inspector (readelf if omitted).
        package: Run the packaging command after assembling the tree.

    Returns:
        ImageResult describing the assembled tree.

    Raises:
        LibraryNotFoundError: If a required library cannot be located.
        ImageAssemblyError: If the tree cannot be assembled or packaged.
    """
    if inspector is None:
        inspector = ReadelfInspector(image.readelf_tool)

    build_root = Path(image.build_root)
    image_root = settings.image_dir
    output = settings.image_output

    if not build_root.is_dir():
        raise ImageAssemblyError(
            f"Build root {build_root} does not exist", code="build_root_missing"
        )

    reset_image_root(image_root)

    executables = resolve_executables(build_root, image.executables)
    closure = compute_closure(executables, library_search_dirs(image), inspector)
    copy_closure(closure, build_root, image_root, library_dir=image.library_dir)

    exe_paths = [image_root / e.relative_to(build_root) for e in closure.executables]
    lib_paths = [image_root / image.library_dir / name for name in closure.libraries]

    stripped: list[Path] = []
    if image.strip:
        stripped = strip_tree(image_root, image.strip_tool)

    if image.config_overlay:
        apply_overlay(Path(image.config_overlay), image_root)

    files = describe_image(image_root, exe_paths, lib_paths)
    manifest_path = output.with_name(output.name + MANIFEST_SUFFIX)
    try:
        write_manifest(
            generate_manifest(
                files,
                image_output=output if package else None,
                skipped=closure.skipped,
            ),
            manifest_path,
        )
    except OSError as e:
        raise ImageAssemblyError(
            f"Cannot write image manifest {manifest_path}: {e}",
            code="manifest_write_error",
        ) from e

    if package:
        package_image(image.package_command, image_root, output)

    return ImageResult(
        image_root=image_root,
        output=output if package else None,
        manifest_path=manifest_path,
        closure=closure,
        files=files,
        stripped=stripped,
    )


__all__ = [
    "ImageResult",
    "assemble_image",
    "package_image",
    "render_package_command",
    "reset_image_root",
    "strip_tree",
]
