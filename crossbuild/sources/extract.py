"""Archive extraction.

Turns downloaded .tar.gz source archives into source directories. Archives
are read as a stream; directory and regular-file entries are written with
their declared permissions and every other entry type is ignored. The first
directory entry is taken as the archive's top-level directory, which holds
for archives exported by the usual forges.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import zlib
from pathlib import Path, PurePosixPath

from crossbuild.errors import ExtractionError

logger = logging.getLogger(__name__)

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644


def _member_path(member: tarfile.TarInfo, dest_dir: Path) -> Path:
    member_path = PurePosixPath(member.name)
    if member_path.is_absolute() or ".." in member_path.parts:
        raise ExtractionError(
            f"Refusing to extract {member.name}: path traversal detected",
            code="path_traversal",
        )
    return dest_dir / Path(*member_path.parts)


def _write_file(tar: tarfile.TarFile, member: tarfile.TarInfo, path: Path) -> None:
    source = tar.extractfile(member)
    if source is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = (member.mode & 0o7777) or DEFAULT_FILE_MODE
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as out, source:
        shutil.copyfileobj(source, out)
    # os.open applies the mode only to new files, and through the umask
    os.chmod(path, mode)


def extract_tar_gz(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a gzip-compressed tar archive.

    Args:
        archive_path: Path to the .tar.gz file.
        dest_dir: Directory the archive's entries are created under.

    Returns:
        Absolute path of the archive's top-level directory.

    Raises:
        ExtractionError: If the archive is unreadable, contains unsafe
            paths, or holds no directory entry.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    output_dir: Path | None = None

    try:
        with tarfile.open(archive_path, mode="r|gz") as tar:
            for member in tar:
                path = _member_path(member, dest_dir)

                if member.isdir():
                    if output_dir is None:
                        output_dir = path
                    if path.is_dir():
                        continue
                    path.mkdir(
                        mode=(member.mode & 0o7777) or DEFAULT_DIR_MODE,
                        parents=True,
                    )
                elif member.isreg():
                    _write_file(tar, member, path)
                else:
                    logger.debug("Skipping %s (type %r)", member.name, member.type)

    except (tarfile.TarError, EOFError, zlib.error) as e:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {e}",
            code="tar_error",
        ) from e
    except OSError as e:
        raise ExtractionError(
            f"OS error extracting {archive_path}: {e}",
            code="os_error",
        ) from e

    if output_dir is None:
        raise ExtractionError(
            f"Archive {archive_path} contains no directory entry",
            code="no_directory",
        )

    output_dir = output_dir.absolute()
    logger.info("Extracted %s to %s", archive_path.name, output_dir)
    return output_dir


def ensure_extracted(path: Path, dest_dir: Path) -> Path:
    """Return the source directory for a path that may still be an archive.

    A directory is returned unchanged; anything else is extracted as a
    .tar.gz archive into dest_dir.

    Args:
        path: Extracted directory or archive path.
        dest_dir: Directory archives are extracted under.

    Returns:
        Path of the extracted source directory.

    Raises:
        ExtractionError: If extraction fails.
    """
    if path.is_dir():
        return path
    if not path.exists():
        raise ExtractionError(f"Source archive not found: {path}", code="not_found")
    return extract_tar_gz(path, dest_dir)


__all__ = ["ensure_extracted", "extract_tar_gz"]
