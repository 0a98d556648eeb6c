"""Persistent source cache state.

Two pieces of state survive between runs:
- the source index, a JSON mapping of package name to extracted source
  directory, stored at a fixed path under the source directory;
- the validation token store, one file per URL (named by the SHA-1 of the
  URL) holding the last seen ETag of that URL.

Both are discarded by clean().
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from crossbuild.config import Settings

logger = logging.getLogger(__name__)

SOURCE_INDEX_NAME = "valid_sources"


def source_index_path(source_dir: Path) -> Path:
    """Return the path of the source index under a source directory."""
    return source_dir / SOURCE_INDEX_NAME


def load_source_index(path: Path) -> dict[str, str]:
    """Load the name -> extracted path index.

    Args:
        path: Index file path.

    Returns:
        The stored mapping, or an empty mapping if no index exists.

    Raises:
        ValueError: If the index exists but is not a JSON object of strings.
    """
    if not path.exists():
        return {}

    with path.open(encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in data.items()
    ):
        raise ValueError(f"Source index {path} is not a mapping of strings")

    logger.info("Cache exists, using %d cached source(s) from %s", len(data), path)
    return data


def write_source_index(path: Path, mapping: dict[str, str]) -> Path:
    """Rewrite the source index atomically.

    The new content is written to a temporary file in the same directory
    and renamed over the index, so readers never see a partial file.

    Args:
        path: Index file path.
        mapping: Full name -> path mapping to store.

    Returns:
        Path to the written index.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".valid_sources.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(mapping, f, indent=2, sort_keys=True)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.debug("Wrote source index with %d entries to %s", len(mapping), path)
    return path


def url_hash(url: str) -> str:
    """Return the stable key of a URL in the validation token store."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()


class ValidationTokenStore:
    """ETag store keyed by the SHA-1 of the URL."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = cache_dir

    def _path(self, url: str) -> Path:
        return self.cache_dir / url_hash(url)

    def get(self, url: str) -> str | None:
        """Return the stored token for a URL, or None if none is stored."""
        path = self._path(url)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def put(self, url: str, token: str) -> None:
        """Store (overwrite) the token for a URL."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(url)
        path.write_text(token, encoding="utf-8")
        path.chmod(0o600)


def clean(settings: Settings) -> list[Path]:
    """Delete all downloaded sources and cached validation tokens.

    Args:
        settings: Settings naming the source and cache directories.

    Returns:
        Directories that were removed.
    """
    removed: list[Path] = []
    for directory in (settings.source_dir, settings.cache_dir):
        if directory.exists():
            logger.info("Removing %s", directory)
            shutil.rmtree(directory)
            removed.append(directory)
    return removed


__all__ = [
    "SOURCE_INDEX_NAME",
    "ValidationTokenStore",
    "clean",
    "load_source_index",
    "source_index_path",
    "url_hash",
    "write_source_index",
]
