"""Build node model: primary packages and their secondary entry points.

A primary package owns an ordered tuple of secondary entry points. The
ordering is the resolved build order of its source directory. Secondary
entry points never have secondaries of their own.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from libpackager.errors import NestingError
from libpackager.packages.resolver import resolve_packages
from libpackager.types import BundleArtifacts

if TYPE_CHECKING:
    from libpackager.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageLayout:
    """Naming and output conventions shared by every package of a build.

    Attributes:
        dist_root: Root of all build outputs.
        scope: npm scope, e.g. ``@angular``.
        global_namespace: Prefix of UMD global names, e.g. ``ng``.
    """

    dist_root: Path
    scope: str = "@angular"
    global_namespace: str = "ng"

    @classmethod
    def from_settings(cls, settings: Settings) -> PackageLayout:
        return cls(
            dist_root=settings.dist_dir,
            scope=settings.scope,
            global_namespace=settings.global_namespace,
        )

    @property
    def packages_root(self) -> Path:
        return self.dist_root / "packages"

    @property
    def bundles_root(self) -> Path:
        return self.dist_root / "bundles"

    @property
    def releases_root(self) -> Path:
        return self.dist_root / "releases"


class BuildPackage:
    """A buildable entry point (primary package or secondary entry point).

    Derived names and paths are computed from ``name`` and the parent
    chain; they cannot be set independently.
    """

    def __init__(
        self,
        name: str,
        source_path: Path,
        layout: PackageLayout,
        parent: BuildPackage | None = None,
        dependencies: Sequence[str] = (),
    ) -> None:
        self.name = name
        self.source_path = source_path
        self.layout = layout
        # Non-owning; only read to derive names and paths.
        self.parent = parent
        self.dependencies: tuple[str, ...] = tuple(dependencies)
        self._secondaries: tuple[BuildPackage, ...] = ()
        self._attached = False

    def __repr__(self) -> str:
        return f"BuildPackage({self.import_name!r})"

    @property
    def is_secondary(self) -> bool:
        return self.parent is not None

    @property
    def secondaries(self) -> tuple[BuildPackage, ...]:
        return self._secondaries

    def attach_secondaries(self, secondaries: Sequence[BuildPackage]) -> None:
        """Set the secondary entry points of this package, once.

        Raises:
            NestingError: If this is a secondary entry point, or if
                secondaries were already attached.
        """
        if self.is_secondary and secondaries:
            raise NestingError(
                f"Secondary entry point '{self.import_name}' cannot contain "
                "further entry points"
            )
        if self._attached:
            raise NestingError(f"Secondaries of '{self.name}' are already set")

        names = [s.name for s in secondaries]
        if len(set(names)) != len(names):
            raise NestingError(f"Duplicate secondary names under '{self.name}'")
        for secondary in secondaries:
            if secondary.parent is not self:
                raise NestingError(
                    f"'{secondary.name}' is not a child of '{self.name}'"
                )

        self._secondaries = tuple(secondaries)
        self._attached = True

    @property
    def key(self) -> str:
        """Identity of the package within a build graph."""
        return self.import_name

    @property
    def module_name(self) -> str:
        """Dotted UMD global name, e.g. ``ng.material.core``."""
        parts = [self.layout.global_namespace]
        if self.parent is not None:
            parts.append(self.parent.name)
        parts.append(self.name)
        return ".".join(parts)

    @property
    def import_name(self) -> str:
        """Public import path, e.g. ``@angular/material/core``."""
        parts = [self.layout.scope]
        if self.parent is not None:
            parts.append(self.parent.name)
        parts.append(self.name)
        return "/".join(parts)

    @property
    def output_path(self) -> Path:
        """Directory of the compiled ES module output."""
        if self.parent is not None:
            return self.layout.packages_root / self.parent.name / self.name
        return self.layout.packages_root / self.name

    @property
    def release_path(self) -> Path:
        """Directory of the composed release (shared with the parent)."""
        root = self.parent if self.parent is not None else self
        return self.layout.releases_root / root.name

    @property
    def bundles_path(self) -> Path:
        """Directory the bundles of this entry point are written to."""
        if self.parent is not None:
            return self.layout.bundles_root / self.parent.name
        return self.layout.bundles_root

    @property
    def entry_file(self) -> Path:
        """Flat ES module entry file emitted by the compiler."""
        return self.output_path / f"{self.name}-flat.js"

    def bundle_artifacts(self) -> BundleArtifacts:
        """Return the bundle paths of this entry point."""
        return BundleArtifacts.for_bundle(self.bundles_path, self.name)

    def iter_packages(self) -> Iterator[BuildPackage]:
        """Yield the secondaries in build order, then this package."""
        yield from self._secondaries
        yield self


def create_build_package(
    name: str,
    source_path: Path,
    layout: PackageLayout,
    entry_module: str = "index.ts",
    dependency_file: str = "package-config.json",
) -> BuildPackage:
    """Create a primary package and its secondary entry points.

    Args:
        name: Package name.
        source_path: Source directory of the package.
        layout: Naming and output conventions.
        entry_module: Entry module file marking a secondary entry point.
        dependency_file: Dependency declaration file name.

    Returns:
        The primary BuildPackage with secondaries attached.

    Raises:
        FileNotFoundError: If the source directory does not exist.
        ConfigurationError: If the dependency declaration is invalid.
    """
    package = BuildPackage(name, source_path, layout)
    resolved = resolve_packages(source_path, entry_module, dependency_file)

    package.attach_secondaries(
        [
            BuildPackage(
                secondary,
                source_path / secondary,
                layout,
                parent=package,
                dependencies=resolved.dependencies[secondary],
            )
            for secondary in resolved.order
        ]
    )

    logger.info(
        "Package %s has %d secondary entry point(s)",
        package.import_name,
        len(package.secondaries),
    )
    return package


__all__ = ["BuildPackage", "PackageLayout", "create_build_package"]
