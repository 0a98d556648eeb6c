"""Configuration overlay staging.

Copies a static configuration tree onto the image root. Files from the
overlay replace files already in the image. Symlinks are copied as the
content they point to and must not point outside the overlay tree.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from crossbuild.errors import ImageAssemblyError

logger = logging.getLogger(__name__)


def stage_directory(source_dir: Path, dest_dir: Path) -> list[Path]:
    """Copy a directory tree into dest_dir.

    Args:
        source_dir: Source directory path.
        dest_dir: Destination directory.

    Returns:
        Destination paths of the copied files.

    Raises:
        ImageAssemblyError: If copying fails or a symlink escapes source_dir.
    """
    source_dir_resolved = source_dir.resolve()
    copied: list[Path] = []

    try:
        for item in sorted(source_dir.rglob("*")):
            rel_path = item.relative_to(source_dir)
            dest_path = dest_dir / rel_path

            if item.is_symlink():
                target = item.resolve()
                try:
                    target.relative_to(source_dir_resolved)
                except ValueError:
                    raise ImageAssemblyError(
                        f"Symlink {item} points outside overlay tree: {target}",
                        code="symlink_escape",
                    ) from None

            if item.is_dir() and not item.is_symlink():
                dest_path.mkdir(parents=True, exist_ok=True)
            elif item.is_file():
                dest_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(item.resolve(), dest_path)
                copied.append(dest_path)

    except OSError as e:
        raise ImageAssemblyError(
            f"Failed to stage overlay {source_dir}: {e}",
            code="overlay_error",
        ) from e

    return copied


def apply_overlay(overlay_dir: Path, image_root: Path) -> list[Path]:
    """Overlay a configuration directory onto the image root.

    Args:
        overlay_dir: Configuration tree to copy.
        image_root: Image tree root.

    Returns:
        Destination paths of the copied files.

    Raises:
        ImageAssemblyError: If the overlay is missing or cannot be copied.
    """
    if not overlay_dir.exists():
        raise ImageAssemblyError(
            f"Overlay directory not found: {overlay_dir}",
            code="overlay_not_found",
        )
    if not overlay_dir.is_dir():
        raise ImageAssemblyError(
            f"Overlay path is not a directory: {overlay_dir}",
            code="overlay_not_dir",
        )

    logger.info("Applying configuration overlay %s", overlay_dir)
    copied = stage_directory(overlay_dir, image_root)
    logger.debug("Overlay copied %d file(s)", len(copied))
    return copied


__all__ = ["apply_overlay", "stage_directory"]
