"""Source acquisition service.

This module provides the high-level acquisition API:
- acquire_sources(): resolve every package to a populated source directory

Packages with a local source_directory are used as-is. Packages present in
the persisted source index are trusted without re-checking the filesystem
unless Settings.verify_cached_sources is on. All other packages are fetched
concurrently, then every non-local package is extracted concurrently. The
source index is rewritten once, after both phases succeed; any failure
aborts the phase and leaves the index untouched.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from crossbuild.errors import CrossBuildError, TagResolutionError
from crossbuild.sources.cache import (
    ValidationTokenStore,
    load_source_index,
    source_index_path,
    write_source_index,
)
from crossbuild.sources.extract import ensure_extracted
from crossbuild.sources.fetch import fetch_package_source
from crossbuild.sources.tags import GitHubTagLookup, TagLookup
from crossbuild.workers import run_units

if TYPE_CHECKING:
    from crossbuild.config import Settings
    from crossbuild.manifest.schema import PackageSchema

logger = logging.getLogger(__name__)


def _load_index(path: Path) -> dict[str, str]:
    try:
        return load_source_index(path)
    except ValueError as e:
        raise CrossBuildError(
            f"Source index {path} is corrupt: {e}", code="source_index_invalid"
        ) from e


def _fetch_missing(
    missing: dict[str, str],
    settings: Settings,
    token: str | None,
    client: httpx.Client | None,
    tag_lookup: TagLookup | None,
) -> dict[str, Path]:
    if not token and tag_lookup is None:
        raise TagResolutionError(
            "No OAuth token specified (manifest oauth_token or XBUILD_GITHUB_TOKEN)",
            code="missing_token",
        )

    owns_client = client is None
    http = client if client is not None else httpx.Client()
    try:
        lookup = tag_lookup or GitHubTagLookup(
            http, token or "", api_url=settings.github_api_url
        )
        store = ValidationTokenStore(settings.cache_dir)

        def fetch_one(name: str, repository: str) -> Path:
            logger.info("[Missing %s] Downloading %s", name, repository)
            return fetch_package_source(
                http,
                repository,
                lookup,
                settings.source_dir,
                store,
                archive_base=settings.github_archive_base,
                timeout=settings.download_timeout,
            )

        return run_units(
            missing,
            fetch_one,
            max_workers=settings.max_concurrent_downloads,
            label="fetch",
        )
    finally:
        if owns_client:
            http.close()


def acquire_sources(
    packages: list[PackageSchema],
    settings: Settings,
    token: str | None = None,
    client: httpx.Client | None = None,
    tag_lookup: TagLookup | None = None,
) -> dict[str, Path]:
    """Resolve every package to an extracted source directory.

    Args:
        packages: Packages to acquire.
        settings: Settings (source/cache dirs, concurrency, timeouts).
        token: GitHub token from the manifest; Settings.github_token wins.
        client: Optional HTTPX client (created and closed here if omitted).
        tag_lookup: Optional tag lookup service (GitHub GraphQL if omitted).

    Returns:
        Mapping of package name to source directory.

    Raises:
        InvalidRepositoryFormatError: If a repository URI is malformed.
        TagResolutionError: If a latest tag cannot be determined.
        DownloadError: On transport failure.
        ExtractionError: If an archive cannot be extracted.
    """
    settings.source_dir.mkdir(parents=True, exist_ok=True)
    settings.cache_dir.mkdir(parents=True, exist_ok=True)

    index_path = source_index_path(settings.source_dir)
    cached = _load_index(index_path)

    sources: dict[str, Path] = {}
    missing: dict[str, str] = {}
    local: set[str] = set()

    for package in packages:
        if package.source_directory:
            local.add(package.name)
            sources[package.name] = Path(package.source_directory)
            logger.info("[Local %s] %s", package.name, package.source_directory)
            continue

        cached_path = cached.get(package.name)
        if cached_path is not None:
            if settings.verify_cached_sources and not Path(cached_path).exists():
                logger.warning(
                    "[Stale %s] %s no longer exists, fetching again",
                    package.name,
                    cached_path,
                )
            else:
                sources[package.name] = Path(cached_path)
                logger.info("[Found %s] %s", package.name, cached_path)
                continue

        # A repo is guaranteed by schema validation when there is no local source
        missing[package.name] = package.repo or ""

    if missing:
        sources.update(
            _fetch_missing(
                missing, settings, settings.github_token or token, client, tag_lookup
            )
        )

    to_extract = {name: path for name, path in sources.items() if name not in local}
    extracted = run_units(
        to_extract,
        lambda name, path: ensure_extracted(path, settings.source_dir),
        max_workers=settings.max_concurrent_downloads,
        label="extract",
    )
    sources.update(extracted)

    # Merge so a partial run does not drop other packages' cached sources
    merged = dict(cached)
    merged.update({name: str(path) for name, path in extracted.items()})
    try:
        write_source_index(index_path, merged)
    except OSError as e:
        raise CrossBuildError(
            f"Cannot write source index {index_path}: {e}",
            code="source_index_write_error",
        ) from e

    return {p.name: sources[p.name] for p in packages}


__all__ = ["acquire_sources"]
