"""Release composition.

Copies the outputs of a built package graph into a folder structure that
follows the ``angular/angular`` release layout::

    releases/<package>/
        bundles/            UMD and minified UMD bundles
        @scope/             flat ES2015 and ES5 bundles
        @scope/<package>/   flat bundles of secondary entry points
        typings/            declarations and metadata
        <secondary>/package.json
        <package>.d.ts, <package>.metadata.json
        LICENSE, README.md, package.json, release-manifest.json

Composition runs once, after every bundle of the graph exists.
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Any

from libpackager.errors import ReleaseError
from libpackager.packages.schema import SecondaryPackageJson
from libpackager.release.files import copy_files, rename_files
from libpackager.release.inline import inline_package_metadata_files
from libpackager.release.manifest import (
    MANIFEST_NAME,
    discover_release_files,
    generate_manifest,
    write_manifest,
)

if TYPE_CHECKING:
    from libpackager.config import Settings
    from libpackager.packages.models import BuildPackage

logger = logging.getLogger(__name__)

METADATA_RE_EXPORT = {
    "__symbolic": "module",
    "version": 3,
    "metadata": {},
    "exports": [{"from": "./typings/index"}],
}


def _replace_in_strings(value: Any, old: str, new: str) -> Any:
    if isinstance(value, str):
        return value.replace(old, new)
    if isinstance(value, dict):
        return {k: _replace_in_strings(v, old, new) for k, v in value.items()}
    if isinstance(value, list):
        return [_replace_in_strings(v, old, new) for v in value]
    return value


def update_package_version(release_dir: Path, placeholder: str, version: str) -> None:
    """Replace the placeholder version in the released ``package.json``.

    Every string value is rewritten, so peer dependency ranges written
    against the placeholder follow the release version as well.

    Raises:
        ReleaseError: If the file is missing or is not valid JSON.
    """
    path = release_dir / "package.json"
    try:
        config = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ReleaseError(
            f"package.json not found in {release_dir}", code="package_json_missing"
        ) from e
    except json.JSONDecodeError as e:
        raise ReleaseError(
            f"Invalid package.json in {release_dir}: {e}", code="package_json_invalid"
        ) from e

    config = _replace_in_strings(config, placeholder, version)
    path.write_text(json.dumps(config, indent=2) + "\n", encoding="utf-8")
    logger.debug("Set version of %s to %s", path, version)


def create_typing_file(release_dir: Path, entry_name: str, banner: str) -> Path:
    """Create a typing file that re-exports the bundled declarations."""
    path = release_dir / f"{entry_name}.d.ts"
    path.write_text(
        banner.rstrip("\n") + '\nexport * from "./typings/index";\n', encoding="utf-8"
    )
    return path


def create_metadata_file(release_dir: Path, entry_name: str) -> Path:
    """Create a metadata file that re-exports the typings metadata."""
    path = release_dir / f"{entry_name}.metadata.json"
    path.write_text(
        json.dumps(METADATA_RE_EXPORT, separators=(",", ":")), encoding="utf-8"
    )
    return path


def create_secondary_package_file(secondary: BuildPackage) -> Path:
    """Create the nested ``package.json`` of a secondary entry point.

    The descriptor lets consumers import the entry point as a module of
    its own. All paths are relative to ``<release>/<secondary>/``.
    """
    if secondary.parent is None:
        raise ReleaseError(
            f"'{secondary.import_name}' is not a secondary entry point",
            code="not_secondary",
        )

    name = secondary.name
    fesm_dir = f"../{secondary.layout.scope}/{secondary.parent.name}"
    descriptor = SecondaryPackageJson(
        name=secondary.import_name,
        typings=f"../typings/{name}/index.d.ts",
        main=f"../bundles/{name}.umd.js",
        module=f"{fesm_dir}/{name}.es5.js",
        es2015=f"{fesm_dir}/{name}.js",
    )

    path = secondary.release_path / name / "package.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(descriptor.model_dump_json(indent=2) + "\n", encoding="utf-8")
    logger.debug("Wrote package descriptor for %s", secondary.import_name)
    return path


def _copy_bundles(
    bundles_dir: Path,
    name: str,
    umd_dir: Path,
    fesm_dir: Path,
    import_name: str,
) -> list[Path]:
    """Copy the bundles of one entry point and their sourcemaps."""
    copied = copy_files(bundles_dir, f"{name}.umd.js*", umd_dir)
    copied += copy_files(bundles_dir, f"{name}.umd.min.js*", umd_dir)
    copied += copy_files(bundles_dir, f"{name}.js*", fesm_dir)
    copied += copy_files(bundles_dir, f"{name}.es5.js*", fesm_dir)

    copied_names = {path.name for path in copied}
    missing = [
        filename
        for filename in (
            f"{name}.js",
            f"{name}.es5.js",
            f"{name}.umd.js",
            f"{name}.umd.min.js",
        )
        if filename not in copied_names
    ]
    if missing:
        raise ReleaseError(
            f"Missing bundles for {import_name}: {', '.join(missing)}",
            code="bundle_missing",
        )
    return copied


def compose_release(root: BuildPackage, settings: Settings) -> Path:
    """Compose the release tree of a built primary package.

    Args:
        root: Primary package whose graph has been built.
        settings: Application settings.

    Returns:
        Path to the release directory.

    Raises:
        ReleaseError: If bundles or the package's package.json are missing.
        ResourceError: If a component resource cannot be resolved.
    """
    if root.is_secondary:
        raise ReleaseError(
            f"Releases are composed for primary packages, not '{root.import_name}'",
            code="not_primary",
        )

    release_dir = root.release_path
    bundles_root = root.layout.bundles_root
    umd_dir = release_dir / "bundles"
    fesm_dir = release_dir / root.layout.scope

    if release_dir.exists():
        logger.debug("Removing previous release %s", release_dir)
        shutil.rmtree(release_dir)

    inlined = inline_package_metadata_files(root.output_path)
    logger.debug("Inlined %d resource(s) for %s", inlined, root.import_name)

    _copy_bundles(bundles_root, root.name, umd_dir, fesm_dir, root.import_name)
    for secondary in root.secondaries:
        _copy_bundles(
            secondary.bundles_path,
            secondary.name,
            umd_dir,
            fesm_dir / root.name,
            secondary.import_name,
        )

    typings_dir = release_dir / "typings"
    copy_files(root.output_path, "**/*.d.ts", typings_dir)
    copy_files(root.output_path, "**/*.metadata.json", typings_dir)
    copy_files(settings.project_root, "LICENSE", release_dir)
    copy_files(settings.source_dir, "README.md", release_dir)
    if not copy_files(root.source_path, "package.json", release_dir):
        raise ReleaseError(
            f"package.json not found in {root.source_path}",
            code="package_json_missing",
        )

    # Flat module typings replace the per-module index emitted by the compiler.
    rename_files(release_dir, "**/*-flat.d.ts", "index.d.ts")
    rename_files(release_dir, "**/*-flat.metadata.json", "index.metadata.json")

    update_package_version(
        release_dir, settings.version_placeholder, settings.release_version
    )
    create_typing_file(release_dir, root.name, settings.license_banner)
    create_metadata_file(release_dir, root.name)

    for secondary in root.secondaries:
        create_secondary_package_file(secondary)

    manifest = generate_manifest(
        discover_release_files(release_dir),
        package_name=root.import_name,
        version=settings.release_version,
        entry_points=[package.import_name for package in root.iter_packages()],
    )
    write_manifest(manifest, release_dir / MANIFEST_NAME)

    logger.info("Composed release of %s in %s", root.import_name, release_dir)
    return release_dir


__all__ = [
    "METADATA_RE_EXPORT",
    "compose_release",
    "create_metadata_file",
    "create_secondary_package_file",
    "create_typing_file",
    "update_package_version",
]
