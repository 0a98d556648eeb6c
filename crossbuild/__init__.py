"""crossbuild - unattended cross-build orchestration.

This package fetches the latest tagged sources of a set of interdependent
packages, builds them in dependency order, and assembles a minimal runtime
image holding selected executables plus their shared-library closure.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
