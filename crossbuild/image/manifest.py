"""Image content manifest.

This module handles:
- Listing the files of an assembled image tree
- Classifying each file (executable, library, config)
- Computing checksums
- Writing the manifest as JSON next to the packaged image
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from crossbuild.types import ImageFileInfo, ImageFileKind

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def describe_image(
    image_root: Path,
    executables: Iterable[Path],
    libraries: Iterable[Path],
) -> list[ImageFileInfo]:
    """List every regular file of an image tree.

    Files written as executables or libraries are classified as such;
    everything else came from the configuration overlay.

    Args:
        image_root: Image tree root.
        executables: Image paths of the copied executables.
        libraries: Image paths of the copied libraries.

    Returns:
        ImageFileInfo per file, sorted by relative path.
    """
    executable_set = {p.resolve() for p in executables}
    library_set = {p.resolve() for p in libraries}

    files: list[ImageFileInfo] = []
    for path in sorted(image_root.rglob("*")):
        if path.is_symlink() or not path.is_file():
            continue

        resolved = path.resolve()
        if resolved in executable_set:
            kind = ImageFileKind.EXECUTABLE
        elif resolved in library_set:
            kind = ImageFileKind.LIBRARY
        else:
            kind = ImageFileKind.CONFIG

        files.append(
            ImageFileInfo(
                relative_path=path.relative_to(image_root).as_posix(),
                size_bytes=path.stat().st_size,
                sha256=compute_file_hash(path),
                kind=kind,
            )
        )

    return files


def generate_manifest(
    files: list[ImageFileInfo],
    image_output: Path | None = None,
    skipped: Iterable[Path] = (),
) -> dict[str, Any]:
    """Generate an image manifest.

    Args:
        files: Files of the image tree.
        image_output: Path of the packaged image, if any.
        skipped: Files whose metadata could not be read.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    now = datetime.now(timezone.utc)

    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": now.isoformat(),
        "files": [{**asdict(f), "kind": f.kind.value} for f in files],
    }

    if image_output is not None:
        manifest["image"] = str(image_output)

    skipped_list = [str(p) for p in skipped]
    if skipped_list:
        manifest["skipped"] = skipped_list

    manifest["summary"] = {
        "total_files": len(files),
        "total_size_bytes": sum(f.size_bytes for f in files),
        "executables": sum(1 for f in files if f.kind is ImageFileKind.EXECUTABLE),
        "libraries": sum(1 for f in files if f.kind is ImageFileKind.LIBRARY),
    }

    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file.

    Args:
        manifest: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote image manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "compute_file_hash",
    "describe_image",
    "generate_manifest",
    "write_manifest",
]
