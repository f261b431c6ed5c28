"""Shared type definitions for libpackager.

This module contains dataclasses, enums, and type aliases shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class BuildStatus(str, Enum):
    """Status of a package build record."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StageName(str, Enum):
    """Stages a package passes through, in execution order."""

    COMPILE = "compile"
    BUNDLE_ES = "bundle-es"
    DOWNLEVEL = "downlevel"
    ANNOTATE = "annotate"
    BUNDLE_UMD = "bundle-umd"
    MINIFY = "minify"


class BundleFormat(str, Enum):
    """Output format of the module bundler."""

    ES = "es"
    UMD = "umd"


@dataclass
class BundleArtifacts:
    """Paths of the bundles produced for one entry point.

    Attributes:
        fesm2015: Flat ES2015 bundle.
        fesm5: Flat ES5 bundle (ES2015 module syntax).
        umd: UMD bundle.
        umd_min: Minified UMD bundle.
    """

    fesm2015: Path
    fesm5: Path
    umd: Path
    umd_min: Path

    @classmethod
    def for_bundle(cls, bundles_dir: Path, name: str) -> "BundleArtifacts":
        """Return the conventional bundle paths of an entry point."""
        return cls(
            fesm2015=bundles_dir / f"{name}.js",
            fesm5=bundles_dir / f"{name}.es5.js",
            umd=bundles_dir / f"{name}.umd.js",
            umd_min=bundles_dir / f"{name}.umd.min.js",
        )

    def files(self) -> list[Path]:
        """Return every bundle file in stage order."""
        return [self.fesm2015, self.fesm5, self.umd, self.umd_min]


@dataclass
class ArtifactInfo:
    """Information about a released file."""

    filename: str
    relative_path: str
    size_bytes: int
    sha256: str
    kind: str | None = None
    labels: list[str] = field(default_factory=list)


__all__ = [
    "ArtifactInfo",
    "BuildStatus",
    "BundleArtifacts",
    "BundleFormat",
    "StageName",
]
