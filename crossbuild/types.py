"""Shared type definitions for crossbuild.

This module contains dataclasses and enums shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class BuildStep(str, Enum):
    """A single stage of a package's build pipeline."""

    CONFIGURE = "configure"
    PATCH = "patch"
    BUILD = "build"
    INSTALL = "install"


class ImageFileKind(str, Enum):
    """Role of a file inside the assembled image."""

    EXECUTABLE = "executable"
    LIBRARY = "library"
    CONFIG = "config"


@dataclass
class PackageNode:
    """Scheduling record for one package, rebuilt every run."""

    name: str
    priority: int


@dataclass(frozen=True)
class TagInfo:
    """Most recent tag of a repository and the commit it points to."""

    name: str
    commit: str


@dataclass
class StepResult:
    """Result of one executed build action."""

    step: BuildStep
    command: str
    exit_code: int
    started_at: datetime
    finished_at: datetime

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass
class PackageBuildResult:
    """Result of running the whole pipeline for one package."""

    name: str
    source_dir: Path
    log_path: Path
    steps: list[StepResult] = field(default_factory=list)


@dataclass
class ImageFileInfo:
    """Information about a file placed in the image tree."""

    relative_path: str
    size_bytes: int
    sha256: str
    kind: ImageFileKind


__all__ = [
    "BuildStep",
    "ImageFileInfo",
    "ImageFileKind",
    "PackageBuildResult",
    "PackageNode",
    "StepResult",
    "TagInfo",
]
