"""Error taxonomy for crossbuild.

Every fatal condition is a subclass of CrossBuildError carrying a stable
``code`` string, so the CLI can report failures uniformly. Modules translate
library exceptions (httpx, tarfile, subprocess, OSError) into these types at
the point where the library is called.
"""

from __future__ import annotations

from pathlib import Path

# Error code constants
MANIFEST_ERROR = "manifest_error"
CYCLIC_DEPENDENCY = "cyclic_dependency"
MISSING_DEPENDENCY = "missing_dependency"
INVALID_REPOSITORY = "invalid_repository"
TAG_RESOLUTION_ERROR = "tag_resolution_error"
DOWNLOAD_ERROR = "download_error"
EXTRACTION_ERROR = "extraction_error"
BUILD_STEP_FAILED = "build_step_failed"
LIBRARY_NOT_FOUND = "library_not_found"
METADATA_TOOL_ERROR = "metadata_tool_error"
IMAGE_ASSEMBLY_ERROR = "image_assembly_error"


class CrossBuildError(Exception):
    """Base class for all crossbuild errors."""

    def __init__(self, message: str, code: str = "crossbuild_error") -> None:
        """Initialize CrossBuildError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class ManifestError(CrossBuildError):
    """Raised when a manifest cannot be read or fails validation."""

    def __init__(self, message: str, code: str = MANIFEST_ERROR) -> None:
        super().__init__(message, code)


class CyclicDependencyError(CrossBuildError):
    """Raised when the package dependency graph contains a cycle."""

    def __init__(self, cycle: list[str], code: str = CYCLIC_DEPENDENCY) -> None:
        super().__init__(f"Cyclic dependency: {' -> '.join(cycle)}", code)
        self.cycle = cycle


class MissingDependencyError(CrossBuildError):
    """Raised when a package depends on a package that is not defined."""

    def __init__(
        self, package: str, dependency: str, code: str = MISSING_DEPENDENCY
    ) -> None:
        super().__init__(
            f"Package {package} depends on unknown package {dependency}", code
        )
        self.package = package
        self.dependency = dependency


class InvalidRepositoryFormatError(CrossBuildError):
    """Raised when a repository URI is not of the form https://host/owner/name."""

    def __init__(self, repository: str, code: str = INVALID_REPOSITORY) -> None:
        super().__init__(
            f"Repository {repository} is not in the required "
            "https://github.com/owner/repo format",
            code,
        )
        self.repository = repository


class TagResolutionError(CrossBuildError):
    """Raised when the latest tag of a repository cannot be determined."""

    def __init__(self, message: str, code: str = TAG_RESOLUTION_ERROR) -> None:
        super().__init__(message, code)


class DownloadError(CrossBuildError):
    """Raised when a transport failure prevents fetching a source."""

    def __init__(self, message: str, code: str = DOWNLOAD_ERROR) -> None:
        super().__init__(message, code)


class ExtractionError(CrossBuildError):
    """Raised when archive extraction fails."""

    def __init__(self, message: str, code: str = EXTRACTION_ERROR) -> None:
        super().__init__(message, code)


class BuildStepError(CrossBuildError):
    """Raised when a configure/patch/build/install step fails."""

    def __init__(
        self,
        package: str,
        step: str,
        message: str,
        exit_code: int | None = None,
        log_path: Path | None = None,
        code: str = BUILD_STEP_FAILED,
    ) -> None:
        super().__init__(f"{package}: {step} failed: {message}", code)
        self.package = package
        self.step = step
        self.exit_code = exit_code
        self.log_path = log_path


class LibraryNotFoundError(CrossBuildError):
    """Raised when a required shared library is in none of the search dirs."""

    def __init__(
        self,
        library: str,
        search_dirs: list[Path],
        required_by: Path | None = None,
        code: str = LIBRARY_NOT_FOUND,
    ) -> None:
        where = ", ".join(str(d) for d in search_dirs) or "(no search dirs)"
        needed = f" (required by {required_by})" if required_by else ""
        super().__init__(f"Library {library}{needed} not found in: {where}", code)
        self.library = library
        self.search_dirs = search_dirs
        self.required_by = required_by


class MetadataToolError(CrossBuildError):
    """Raised when binary metadata cannot be read for a file."""

    def __init__(
        self, path: Path, message: str, code: str = METADATA_TOOL_ERROR
    ) -> None:
        super().__init__(f"Cannot read metadata of {path}: {message}", code)
        self.path = path


class ImageAssemblyError(CrossBuildError):
    """Raised when the image tree cannot be assembled or packaged."""

    def __init__(self, message: str, code: str = IMAGE_ASSEMBLY_ERROR) -> None:
        super().__init__(message, code)


__all__ = [
    "BuildStepError",
    "CrossBuildError",
    "CyclicDependencyError",
    "DownloadError",
    "ExtractionError",
    "ImageAssemblyError",
    "InvalidRepositoryFormatError",
    "LibraryNotFoundError",
    "ManifestError",
    "MetadataToolError",
    "MissingDependencyError",
    "TagResolutionError",
]
