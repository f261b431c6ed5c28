"""Dependency resolution between sibling packages.

This module handles:
- Discovering sub-packages of a directory by their entry module
- Turning a dependency declaration into a directed edge set
- Sorting packages topologically (Kahn's algorithm) with cycle detection

Ties between packages without a dependency relation are broken by
discovery order, which is lexicographic, so builds are reproducible.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from libpackager.errors import DependencyCycleError, UnknownDependencyError
from libpackager.packages.io import load_dependency_declaration
from libpackager.packages.schema import DependencyDeclaration

logger = logging.getLogger(__name__)

Edge = tuple[str, str]


@dataclass
class ResolvedPackages:
    """Sub-packages of a directory and their build order.

    Attributes:
        discovered: Package names in discovery (lexicographic) order.
        order: Package names in a valid build order.
        dependencies: Direct dependencies of each package, in build order.
    """

    discovered: list[str]
    order: list[str]
    dependencies: dict[str, list[str]] = field(default_factory=dict)


def discover_packages(directory: Path, entry_module: str = "index.ts") -> list[str]:
    """List the immediate sub-packages of a directory.

    A sub-directory is a package when it contains the entry module file.

    Args:
        directory: Directory to scan.
        entry_module: Entry module file name.

    Returns:
        Sorted list of package names.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    if not directory.is_dir():
        raise FileNotFoundError(f"Package directory not found: {directory}")

    return sorted(
        child.name
        for child in directory.iterdir()
        if child.is_dir() and (child / entry_module).is_file()
    )


def build_dependency_edges(
    packages: Sequence[str],
    declaration: DependencyDeclaration,
) -> list[Edge]:
    """Build the ``(dependency, package)`` edge list for a set of packages.

    Wildcard dependencies apply to every package except the dependency
    itself, so a wildcard never produces a self-loop.

    Args:
        packages: Discovered package names.
        declaration: Dependency declaration of the directory.

    Returns:
        Deduplicated edge list in deterministic order.

    Raises:
        UnknownDependencyError: If a dependency is not a discovered package.
    """
    known = set(packages)
    edges: dict[Edge, None] = {}

    for pkg in packages:
        for dep in declaration.wildcard:
            if dep == pkg:
                continue
            if dep not in known:
                raise UnknownDependencyError("*", dep)
            edges[(dep, pkg)] = None

        for dep in declaration.dependencies_of(pkg):
            if dep not in known:
                raise UnknownDependencyError(pkg, dep)
            edges[(dep, pkg)] = None

    for name in declaration.declared_packages():
        if name not in known:
            logger.warning("Dependency declaration names unknown package '%s'", name)

    return list(edges)


def _find_cycle_edge(remaining: set[str], edges: Iterable[Edge]) -> Edge:
    """Return one edge lying on a cycle among the remaining nodes."""
    predecessors: dict[str, list[str]] = {}
    for dep, pkg in edges:
        if dep in remaining and pkg in remaining:
            predecessors.setdefault(pkg, []).append(dep)

    # Every remaining node has a remaining predecessor, so walking
    # backwards must revisit a node.
    node = min(remaining)
    seen: set[str] = set()
    while True:
        seen.add(node)
        pred = predecessors[node][0]
        if pred in seen:
            return (pred, node)
        node = pred


def sort_packages(packages: Sequence[str], edges: Iterable[Edge]) -> list[str]:
    """Sort packages so every dependency precedes its dependents.

    Args:
        packages: Package names in discovery order.
        edges: ``(dependency, package)`` pairs over those names.

    Returns:
        Package names in build order.

    Raises:
        DependencyCycleError: If the edges contain a cycle.
    """
    edge_list = list(edges)
    rank = {name: index for index, name in enumerate(packages)}
    indegree = dict.fromkeys(packages, 0)
    dependents: dict[str, list[str]] = {name: [] for name in packages}

    for dep, pkg in edge_list:
        dependents[dep].append(pkg)
        indegree[pkg] += 1

    ready = [(rank[name], name) for name, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        _, name = heapq.heappop(ready)
        order.append(name)
        for pkg in dependents[name]:
            indegree[pkg] -= 1
            if indegree[pkg] == 0:
                heapq.heappush(ready, (rank[pkg], pkg))

    if len(order) != len(packages):
        remaining = {name for name, degree in indegree.items() if degree > 0}
        edge = _find_cycle_edge(remaining, edge_list)
        raise DependencyCycleError(edge, sorted(remaining))

    return order


def resolve_packages(
    directory: Path,
    entry_module: str = "index.ts",
    dependency_file: str = "package-config.json",
) -> ResolvedPackages:
    """Discover the sub-packages of a directory and resolve their build order.

    Args:
        directory: Directory holding the sub-packages.
        entry_module: Entry module file marking a package.
        dependency_file: Dependency declaration file name.

    Returns:
        ResolvedPackages with discovery order, build order and direct deps.

    Raises:
        DependencyCycleError: If the declaration contains a cycle.
        UnknownDependencyError: If a declared dependency is not discovered.
        ConfigurationError: If the declaration file is invalid.
    """
    discovered = discover_packages(directory, entry_module)
    declaration = load_dependency_declaration(directory, dependency_file)
    edges = build_dependency_edges(discovered, declaration)
    order = sort_packages(discovered, edges)

    position = {name: index for index, name in enumerate(order)}
    dependencies: dict[str, list[str]] = {name: [] for name in order}
    for dep, pkg in edges:
        dependencies[pkg].append(dep)
    for deps in dependencies.values():
        deps.sort(key=position.__getitem__)

    logger.debug("Resolved build order in %s: %s", directory, order)
    return ResolvedPackages(
        discovered=discovered,
        order=order,
        dependencies=dependencies,
    )


def get_sorted_secondaries(
    directory: Path,
    entry_module: str = "index.ts",
    dependency_file: str = "package-config.json",
) -> list[str]:
    """Return the sub-packages of a directory in build order."""
    return resolve_packages(directory, entry_module, dependency_file).order


__all__ = [
    "Edge",
    "ResolvedPackages",
    "build_dependency_edges",
    "discover_packages",
    "get_sorted_secondaries",
    "resolve_packages",
    "sort_packages",
]
