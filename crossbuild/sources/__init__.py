"""Source acquisition and cache module.

This module handles:
- Resolving the latest tag of each package repository
- Downloading tagged archives with ETag revalidation
- Extracting archives into source directories
- Persisting the name -> source directory index
"""

from crossbuild.sources.cache import ValidationTokenStore, clean
from crossbuild.sources.extract import ensure_extracted, extract_tar_gz
from crossbuild.sources.fetch import fetch_package_source, parse_repository
from crossbuild.sources.service import acquire_sources
from crossbuild.sources.tags import GitHubTagLookup, TagLookup

__all__ = [
    "GitHubTagLookup",
    "TagLookup",
    "ValidationTokenStore",
    "acquire_sources",
    "clean",
    "ensure_extracted",
    "extract_tar_gz",
    "fetch_package_source",
    "parse_repository",
]
