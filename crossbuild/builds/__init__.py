"""Build orchestration module.

This module handles:
- Computing a dependency-safe build order
- Running each package's configure/patch/build/install pipeline
"""

from crossbuild.builds.order import compute_priorities, create_order
from crossbuild.builds.runner import run_package, run_pipeline

__all__ = ["compute_priorities", "create_order", "run_package", "run_pipeline"]
