"""Package discovery module.

This module handles:
- Dependency declarations (JSON/YAML) between sibling packages
- Topological ordering of secondary entry points
- The build node model (primary package and secondary entry points)
"""

from libpackager.packages.models import (
    BuildPackage,
    PackageLayout,
    create_build_package,
)
from libpackager.packages.resolver import (
    ResolvedPackages,
    discover_packages,
    get_sorted_secondaries,
    resolve_packages,
    sort_packages,
)
from libpackager.packages.schema import DependencyDeclaration, SecondaryPackageJson

__all__ = [
    "BuildPackage",
    "DependencyDeclaration",
    "PackageLayout",
    "ResolvedPackages",
    "SecondaryPackageJson",
    "create_build_package",
    "discover_packages",
    "get_sorted_secondaries",
    "resolve_packages",
    "sort_packages",
]
