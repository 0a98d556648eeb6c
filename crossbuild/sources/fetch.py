"""Source archive fetch module.

This module handles:
- Parsing repository URIs into (owner, name)
- Building the tagged archive URL of a commit
- ETag revalidation against the persisted token store
- Streaming downloads of source archives
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import httpx

from crossbuild.errors import DownloadError, InvalidRepositoryFormatError
from crossbuild.sources.cache import ValidationTokenStore
from crossbuild.sources.tags import TagLookup

logger = logging.getLogger(__name__)

GITHUB_ARCHIVE_BASE = "https://github.com"

# Timeout for HEAD requests (seconds)
HEAD_TIMEOUT = 30

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


@dataclass
class DownloadResult:
    """Result of a source archive download."""

    archive_path: Path
    checksum: str
    size_bytes: int


def parse_repository(repository: str) -> tuple[str, str]:
    """Split a repository URI into (owner, name).

    Args:
        repository: URI like https://github.com/owner/name.

    Returns:
        Tuple of (owner, name).

    Raises:
        InvalidRepositoryFormatError: If the path is not exactly owner/name.
    """
    parsed = urlparse(repository)
    if not parsed.scheme or not parsed.netloc:
        raise InvalidRepositoryFormatError(repository)

    parts = parsed.path.strip("/").split("/")
    if len(parts) != 2 or not all(parts):
        raise InvalidRepositoryFormatError(repository)

    owner, name = parts
    name = name.removesuffix(".git")
    if not name:
        raise InvalidRepositoryFormatError(repository)
    return owner, name


def build_archive_url(
    owner: str, name: str, commit: str, base_url: str = GITHUB_ARCHIVE_BASE
) -> str:
    """Return the canonical .tar.gz archive URL of a commit."""
    return f"{base_url.rstrip('/')}/{owner}/{name}/archive/{commit}.tar.gz"


def archive_path_for(source_dir: Path, name: str, tag: str) -> Path:
    """Return the local archive path for a (name, tag) pair."""
    safe_tag = tag.replace("/", "_")
    return (source_dir / f"{name}-{safe_tag}.tar.gz").absolute()


def head_validation_token(
    client: httpx.Client,
    url: str,
    timeout: float = HEAD_TIMEOUT,
) -> str | None:
    """Fetch the validation token (ETag) of a URL with a HEAD request.

    Args:
        client: HTTPX client instance.
        url: URL to probe.
        timeout: Request timeout in seconds.

    Returns:
        The ETag header value, or None if the server sends none.

    Raises:
        DownloadError: On HTTP or transport failure.
    """
    try:
        response = client.head(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"HTTP error probing {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(f"Timeout probing {url}", code="timeout") from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Network error probing {url}: {e}", code="network_error"
        ) from e

    return response.headers.get("ETag")


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a file, streaming it to disk.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path, SHA-256 checksum, and size.

    Raises:
        DownloadError: If download fails.
    """
    logger.info("Downloading %s to %s", url, dest_path)

    try:
        with client.stream(
            "GET", url, timeout=timeout, follow_redirects=True
        ) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()

            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)

            computed_checksum = sha256.hexdigest()
            logger.info(
                "Downloaded %s (%d bytes, checksum: %s)",
                dest_path.name,
                total_bytes,
                computed_checksum[:16] + "...",
            )

            return DownloadResult(
                archive_path=dest_path,
                checksum=computed_checksum,
                size_bytes=total_bytes,
            )

    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Timeout downloading {url}",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"Network error downloading {url}: {e}",
            code="network_error",
        ) from e


def fetch_if_changed(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    token_store: ValidationTokenStore,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> bool:
    """Download a URL unless the stored validation token is still current.

    The download is skipped when the live ETag is non-empty, equals the
    stored one, and the destination file exists. Otherwise the file is
    downloaded in full and the stored token overwritten.

    Args:
        client: HTTPX client instance.
        url: URL to fetch.
        dest_path: Destination path.
        token_store: Persisted validation tokens.
        timeout: Download timeout in seconds.

    Returns:
        True if the file was downloaded, False if the cached copy was reused.

    Raises:
        DownloadError: On HTTP or transport failure.
    """
    live_token = head_validation_token(client, url)
    stored_token = token_store.get(url)

    if live_token and live_token == stored_token and dest_path.exists():
        logger.info("Cached %s is current (ETag %s)", dest_path.name, live_token)
        return False

    download_file(client, url, dest_path, timeout=timeout)

    if live_token:
        token_store.put(url, live_token)
    return True


def fetch_package_source(
    client: httpx.Client,
    repository: str,
    tag_lookup: TagLookup,
    source_dir: Path,
    token_store: ValidationTokenStore,
    archive_base: str = GITHUB_ARCHIVE_BASE,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> Path:
    """Fetch the latest tagged archive of a repository.

    Args:
        client: HTTPX client instance.
        repository: Repository URI.
        tag_lookup: Service naming the latest tag and its commit.
        source_dir: Directory the archive is stored in.
        token_store: Persisted validation tokens.
        archive_base: Base URL of the archive host.
        timeout: Download timeout in seconds.

    Returns:
        Absolute path of the local archive.

    Raises:
        InvalidRepositoryFormatError: If the repository URI is malformed.
        TagResolutionError: If the latest tag cannot be determined.
        DownloadError: On transport failure.
    """
    owner, name = parse_repository(repository)
    tag = tag_lookup.latest_tag(owner, name)

    url = build_archive_url(owner, name, tag.commit, base_url=archive_base)
    dest_path = archive_path_for(source_dir, name, tag.name)

    fetch_if_changed(client, url, dest_path, token_store, timeout=timeout)
    return dest_path


__all__ = [
    "DownloadResult",
    "GITHUB_ARCHIVE_BASE",
    "archive_path_for",
    "build_archive_url",
    "download_file",
    "fetch_if_changed",
    "fetch_package_source",
    "head_validation_token",
    "parse_repository",
]
