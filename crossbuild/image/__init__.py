"""Runtime image module.

This module handles:
- Inspecting binaries for required shared libraries
- Computing the transitive library closure of key executables
- Assembling, stripping, overlaying and packaging the image tree
"""

from crossbuild.image.assemble import ImageResult, assemble_image
from crossbuild.image.closure import LibraryClosure, compute_closure
from crossbuild.image.inspect import LibraryInspector, ReadelfInspector

__all__ = [
    "ImageResult",
    "LibraryClosure",
    "LibraryInspector",
    "ReadelfInspector",
    "assemble_image",
    "compute_closure",
]
