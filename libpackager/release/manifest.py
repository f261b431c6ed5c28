"""Release manifest generation.

This module handles:
- Discovering the files of a composed release
- Classifying them (UMD, flat ES bundles, typings, metadata, ...)
- Computing checksums
- Writing ``release-manifest.json``
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from libpackager.types import ArtifactInfo

logger = logging.getLogger(__name__)

MANIFEST_NAME = "release-manifest.json"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def classify_artifact(filename: str) -> str:
    """Classify a release file by its name.

    Returns:
        One of sourcemap, umd-min, umd, fesm5, typings, metadata,
        package-json, fesm2015, other.
    """
    name = filename.lower()

    if name.endswith(".map"):
        return "sourcemap"
    if name.endswith(".umd.min.js"):
        return "umd-min"
    if name.endswith(".umd.js"):
        return "umd"
    if name.endswith(".es5.js"):
        return "fesm5"
    if name.endswith(".d.ts"):
        return "typings"
    if name.endswith(".metadata.json"):
        return "metadata"
    if name == "package.json":
        return "package-json"
    if name.endswith(".js"):
        return "fesm2015"
    return "other"


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def discover_release_files(release_dir: Path) -> list[ArtifactInfo]:
    """Describe every file of a release directory.

    Args:
        release_dir: Composed release directory.

    Returns:
        ArtifactInfo per file, sorted by relative path.
    """
    artifacts: list[ArtifactInfo] = []
    for path in sorted(release_dir.rglob("*")):
        if not path.is_file() or path.name == MANIFEST_NAME:
            continue

        relative_path = path.relative_to(release_dir).as_posix()
        kind = classify_artifact(path.name)
        artifact = ArtifactInfo(
            filename=path.name,
            relative_path=relative_path,
            size_bytes=path.stat().st_size,
            sha256=compute_file_hash(path),
            kind=kind,
        )
        if kind in ("umd", "umd-min"):
            artifact.labels.append("for_script_tag")
        artifacts.append(artifact)

    logger.debug("Discovered %d release files in %s", len(artifacts), release_dir)
    return artifacts


def generate_manifest(
    artifacts: list[ArtifactInfo],
    package_name: str | None = None,
    version: str | None = None,
    entry_points: list[str] | None = None,
) -> dict[str, Any]:
    """Generate a release manifest.

    Args:
        artifacts: Files of the release.
        package_name: Import name of the primary package.
        version: Released version.
        entry_points: Import names of all entry points.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "artifacts": [asdict(a) for a in artifacts],
    }
    if package_name:
        manifest["package"] = package_name
    if version:
        manifest["release_version"] = version
    if entry_points:
        manifest["entry_points"] = entry_points

    manifest["summary"] = {
        "total_artifacts": len(artifacts),
        "total_size_bytes": sum(a.size_bytes for a in artifacts),
        "kinds": sorted({a.kind for a in artifacts if a.kind}),
    }
    return manifest


def write_manifest(manifest: dict[str, Any], output_path: Path) -> Path:
    """Write manifest to a JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "MANIFEST_NAME",
    "classify_artifact",
    "compute_file_hash",
    "discover_release_files",
    "generate_manifest",
    "write_manifest",
]
