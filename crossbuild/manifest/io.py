"""Manifest loading.

This module loads manifests from YAML/JSON files, validates them against
the schema, substitutes $key$ placeholders into command templates, and
resolves relative paths against the manifest's directory.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from crossbuild.errors import ManifestError
from crossbuild.manifest.schema import (
    ImageSettingsSchema,
    ManifestSchema,
    PackageSchema,
)

CROSS_COMPILER_KEY = "cross_compiler"


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def substitute(template: str, replacements: dict[str, str], cross_compiler: str) -> str:
    """Replace $key$ placeholders in a command template.

    Entries of the replacement table are applied first, then the
    $cross_compiler$ token.

    Args:
        template: Command template.
        replacements: Placeholder table (keys without the surrounding $).
        cross_compiler: Value for $cross_compiler$.

    Returns:
        The substituted command.
    """
    for key, value in replacements.items():
        template = template.replace(f"${key}$", value)
    return template.replace(f"${CROSS_COMPILER_KEY}$", cross_compiler)


def _resolve(path: str | None, base_path: Path) -> str | None:
    if not path:
        return path
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = base_path / candidate
    return str(candidate.resolve())


def _render_package(
    package: PackageSchema, manifest: ManifestSchema, base_path: Path
) -> PackageSchema:
    def render(template: str) -> str:
        return substitute(template, manifest.replacements, manifest.cross_compiler)

    return package.model_copy(
        update={
            "configure_opts": render(package.configure_opts),
            "build": render(package.build),
            "install": render(package.install),
            "source_directory": _resolve(package.source_directory, base_path),
            "patches_dir": _resolve(package.patches_dir, base_path),
        }
    )


def _render_image_settings(
    image: ImageSettingsSchema, manifest: ManifestSchema, base_path: Path
) -> ImageSettingsSchema:
    def render(template: str) -> str:
        return substitute(template, manifest.replacements, manifest.cross_compiler)

    build_root = _resolve(render(image.build_root), base_path)
    lib_root = image.cross_compiler_lib_root
    if lib_root:
        lib_root = _resolve(render(lib_root), base_path)

    # Library search dirs are relative to the build tree, not the manifest
    search: list[str] = []
    for entry in image.ld_library_paths:
        rendered = Path(render(entry))
        if not rendered.is_absolute():
            rendered = Path(build_root or ".") / rendered
        search.append(str(rendered))

    overlay = image.config_overlay
    if overlay:
        overlay = _resolve(render(overlay), base_path)

    return image.model_copy(
        update={
            "build_root": build_root,
            "cross_compiler_lib_root": lib_root,
            "ld_library_paths": search,
            "config_overlay": overlay,
            "strip_tool": render(image.strip_tool),
            "readelf_tool": render(image.readelf_tool),
            "package_command": render(image.package_command),
        }
    )


def parse_manifest_data(
    data: dict[str, Any], base_path: Path | None = None
) -> ManifestSchema:
    """Validate manifest data and render its templates.

    Args:
        data: Dictionary containing manifest data.
        base_path: Directory relative paths are resolved against.
                   Defaults to the current working directory.

    Returns:
        Validated ManifestSchema with substituted commands and absolute paths.

    Raises:
        ManifestError: If data does not match the schema.
    """
    if base_path is None:
        base_path = Path.cwd()

    try:
        manifest = ManifestSchema.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"Invalid manifest: {e}", code="manifest_invalid") from e

    packages = [_render_package(p, manifest, base_path) for p in manifest.packages]
    image = manifest.image_settings
    if image is not None:
        image = _render_image_settings(image, manifest, base_path)

    return manifest.model_copy(update={"packages": packages, "image_settings": image})


def load_manifest(path: Path) -> ManifestSchema:
    """Load and validate a manifest from a file (YAML or JSON).

    File format is determined by extension (.yaml, .yml for YAML,
    .json for JSON).

    Args:
        path: Path to the manifest file.

    Returns:
        Validated, rendered ManifestSchema.

    Raises:
        ManifestError: If the file is missing, unreadable, has an unsupported
            extension, or does not match the schema.
    """
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = load_yaml(path)
        elif suffix == ".json":
            data = load_json(path)
        else:
            raise ManifestError(
                f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json",
                code="unsupported_format",
            )
    except FileNotFoundError as e:
        raise ManifestError(
            f"Manifest not found: {path}", code="manifest_not_found"
        ) from e
    except OSError as e:
        raise ManifestError(
            f"Cannot read manifest {path}: {e}", code="manifest_read_error"
        ) from e
    except (yaml.YAMLError, json.JSONDecodeError, ValueError) as e:
        raise ManifestError(
            f"Cannot parse manifest {path}: {e}", code="manifest_parse_error"
        ) from e

    return parse_manifest_data(data, base_path=path.resolve().parent)


def packages_by_name(manifest: ManifestSchema) -> dict[str, PackageSchema]:
    """Index manifest packages by name, preserving manifest order."""
    return {p.name: p for p in manifest.packages}


__all__ = [
    "load_json",
    "load_manifest",
    "load_yaml",
    "packages_by_name",
    "parse_manifest_data",
    "substitute",
]
