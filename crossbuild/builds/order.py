"""Build-order scheduling.

Each package gets a priority from its dependency depth: packages with no
dependencies get 1, every other package gets 2 plus the highest priority
among its dependencies. A package's priority therefore always exceeds the
priority of each of its dependencies, so sorting by ascending priority puts
every dependency ahead of its dependents.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping

from crossbuild.errors import CyclicDependencyError, MissingDependencyError
from crossbuild.manifest.schema import PackageSchema
from crossbuild.types import PackageNode

logger = logging.getLogger(__name__)

LEAF_PRIORITY = 1
DEPENDENT_PRIORITY_STEP = 2


def validate_dependencies(packages: Mapping[str, PackageSchema]) -> None:
    """Check that every dependency names a known package.

    Args:
        packages: Packages indexed by name.

    Raises:
        MissingDependencyError: If a depends entry names an unknown package.
    """
    for name, package in packages.items():
        for dependency in package.depends:
            if dependency not in packages:
                raise MissingDependencyError(name, dependency)


def compute_priorities(packages: Mapping[str, PackageSchema]) -> dict[str, PackageNode]:
    """Compute the scheduling priority of every package.

    Args:
        packages: Packages indexed by name.

    Returns:
        PackageNode per package name.

    Raises:
        MissingDependencyError: If a depends entry names an unknown package.
        CyclicDependencyError: If the dependency graph has a cycle.
    """
    validate_dependencies(packages)

    graph: dict[str, PackageNode] = {}

    for root in packages:
        if root in graph:
            continue

        # Depth-first walk with an explicit stack. in_progress mirrors the
        # stack and is the current path from root, used to report cycles.
        in_progress: list[str] = [root]
        stack: list[Iterator[str]] = [iter(packages[root].depends)]

        while stack:
            for dependency in stack[-1]:
                if dependency in graph:
                    continue
                if dependency in in_progress:
                    cycle = in_progress[in_progress.index(dependency) :] + [dependency]
                    raise CyclicDependencyError(cycle)
                in_progress.append(dependency)
                stack.append(iter(packages[dependency].depends))
                break
            else:
                stack.pop()
                name = in_progress.pop()
                depends = packages[name].depends
                if depends:
                    highest = max(graph[d].priority for d in depends)
                    priority = DEPENDENT_PRIORITY_STEP + highest
                else:
                    priority = LEAF_PRIORITY
                graph[name] = PackageNode(name=name, priority=priority)

    return graph


def create_order(packages: Mapping[str, PackageSchema]) -> list[PackageSchema]:
    """Produce a dependency-safe build order.

    Equal-priority packages are ordered by name so logs are reproducible;
    only dependency precedence is guaranteed.

    Args:
        packages: Packages indexed by name.

    Returns:
        Packages in build order.

    Raises:
        MissingDependencyError: If a depends entry names an unknown package.
        CyclicDependencyError: If the dependency graph has a cycle.
    """
    graph = compute_priorities(packages)
    nodes = sorted(graph.values(), key=lambda n: (n.priority, n.name))

    logger.debug(
        "Build order: %s",
        ", ".join(f"{n.name}({n.priority})" for n in nodes),
    )
    return [packages[n.name] for n in nodes]


def select_packages(
    order: list[PackageSchema], names: Iterable[str]
) -> list[PackageSchema]:
    """Restrict a build order to the named packages, keeping its sequence.

    Args:
        order: Full build order.
        names: Package names to keep.

    Returns:
        The filtered order.

    Raises:
        MissingDependencyError: If a name is not in the order.
    """
    wanted = set(names)
    unknown = sorted(wanted - {p.name for p in order})
    if unknown:
        raise MissingDependencyError("(command line)", unknown[0])
    return [p for p in order if p.name in wanted]


__all__ = [
    "compute_priorities",
    "create_order",
    "select_packages",
    "validate_dependencies",
]
