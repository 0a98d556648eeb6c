"""Binary metadata inspection.

The closure resolver only needs one capability: given a binary, name the
shared libraries it requires. ReadelfInspector provides it by parsing the
NEEDED entries of `readelf -d`; any other LibraryInspector can replace it.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Protocol

from crossbuild.errors import MetadataToolError

logger = logging.getLogger(__name__)

# 0x0000000000000001 (NEEDED)             Shared library: [libc.so.6]
NEEDED_PATTERN = re.compile(r"\(NEEDED\)\s+Shared library:\s+\[([^\]]+)\]")

INSPECT_TIMEOUT = 60


class LibraryInspector(Protocol):
    """Names the shared libraries a binary requires."""

    def required_libraries(self, path: Path) -> list[str]: ...


def parse_needed(output: str) -> list[str]:
    """Extract required library names from `readelf -d` output.

    Args:
        output: Text output of readelf.

    Returns:
        Library names in the order listed.
    """
    return [m.group(1) for m in NEEDED_PATTERN.finditer(output)]


class ReadelfInspector:
    """LibraryInspector backed by readelf."""

    def __init__(self, tool: str = "readelf", timeout: int = INSPECT_TIMEOUT) -> None:
        self.tool = tool
        self.timeout = timeout

    def required_libraries(self, path: Path) -> list[str]:
        """Return the NEEDED libraries of a binary.

        Raises:
            MetadataToolError: If the file is not an ELF binary or the tool fails.
        """
        try:
            result = subprocess.run(
                [self.tool, "-d", str(path)],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise MetadataToolError(
                path, f"{self.tool} timed out after {self.timeout}s", code="timeout"
            ) from e
        except OSError as e:
            raise MetadataToolError(
                path, f"cannot run {self.tool}: {e}", code="execution_error"
            ) from e

        if result.returncode != 0:
            raise MetadataToolError(
                path, result.stderr.strip() or f"{self.tool} exited {result.returncode}"
            )

        needed = parse_needed(result.stdout)
        logger.debug("%s needs %s", path, needed)
        return needed


__all__ = ["LibraryInspector", "ReadelfInspector", "parse_needed"]
