"""Manifest model.

This module handles:
- Validating package and image settings from YAML/JSON manifests
- Substituting $key$ placeholders into command templates
- Resolving manifest-relative paths
"""

from crossbuild.manifest.io import load_manifest, packages_by_name, substitute
from crossbuild.manifest.schema import (
    ImageSettingsSchema,
    ManifestSchema,
    PackageSchema,
)

__all__ = [
    "ImageSettingsSchema",
    "ManifestSchema",
    "PackageSchema",
    "load_manifest",
    "packages_by_name",
    "substitute",
]
