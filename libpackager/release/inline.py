"""Inlining of component resources into compiler metadata.

Component metadata references templates and styles by file name only,
since in the sources they live next to the component. Before release,
the references are resolved against the built package tree and the file
contents are inlined, so consumers of the metadata need no resource
files.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from pathlib import Path, PurePosixPath
from typing import Any

from libpackager.errors import AmbiguousResourceError, MissingResourceError

logger = logging.getLogger(__name__)

RESOURCE_PATTERNS = ("*.html", "*.css")


class ResourceResolver:
    """Resolves bare resource file names to files of a package tree.

    Args:
        resources: File name -> every path with that name.
    """

    def __init__(self, resources: dict[str, list[Path]]) -> None:
        self.resources = resources

    @classmethod
    def scan(cls, package_dir: Path) -> ResourceResolver:
        """Collect every template and style file below a directory."""
        resources: dict[str, list[Path]] = defaultdict(list)
        for pattern in RESOURCE_PATTERNS:
            for path in sorted(package_dir.rglob(pattern)):
                if path.is_file():
                    resources[path.name].append(path)
        return cls(dict(resources))

    def ambiguous(self) -> dict[str, list[Path]]:
        """Return the file names that occur more than once."""
        return {
            name: paths for name, paths in self.resources.items() if len(paths) > 1
        }

    def resolve(self, url: str, referrer: Path | None = None) -> Path:
        """Resolve a resource reference to exactly one file.

        Style references to ``.scss`` files resolve to the compiled
        ``.css`` file of the same name.

        Raises:
            AmbiguousResourceError: If several files have the name.
            MissingResourceError: If no file has the name.
        """
        filename = PurePosixPath(url).name
        if filename.endswith(".scss"):
            filename = filename[: -len(".scss")] + ".css"

        candidates = self.resources.get(filename, [])
        if len(candidates) > 1:
            raise AmbiguousResourceError(filename, candidates)
        if not candidates:
            raise MissingResourceError(filename, referrer)
        return candidates[0]


def inline_metadata_resources(
    metadata: Any,
    resolver: ResourceResolver,
    referrer: Path | None = None,
) -> int:
    """Replace ``templateUrl``/``styleUrls`` with inlined content, in place.

    Args:
        metadata: Parsed metadata JSON (any nesting).
        resolver: Resource resolver of the package tree.
        referrer: Metadata file, for error messages.

    Returns:
        Number of resources inlined.
    """
    count = 0
    if isinstance(metadata, list):
        for item in metadata:
            count += inline_metadata_resources(item, resolver, referrer)
        return count
    if not isinstance(metadata, dict):
        return 0

    template_url = metadata.get("templateUrl")
    if isinstance(template_url, str):
        path = resolver.resolve(template_url, referrer)
        metadata["template"] = path.read_text(encoding="utf-8")
        del metadata["templateUrl"]
        count += 1

    style_urls = metadata.get("styleUrls")
    if isinstance(style_urls, list):
        styles = list(metadata.get("styles") or [])
        for url in style_urls:
            path = resolver.resolve(url, referrer)
            styles.append(path.read_text(encoding="utf-8"))
            count += 1
        metadata["styles"] = styles
        del metadata["styleUrls"]

    for value in metadata.values():
        count += inline_metadata_resources(value, resolver, referrer)
    return count


def inline_package_metadata_files(package_dir: Path) -> int:
    """Inline resources into every ``*.metadata.json`` below a directory.

    Args:
        package_dir: Built package tree (primary and secondaries).

    Returns:
        Total number of resources inlined.

    Raises:
        AmbiguousResourceError: If a referenced name is not unique.
        MissingResourceError: If a referenced name matches no file.
    """
    resolver = ResourceResolver.scan(package_dir)
    for name, paths in resolver.ambiguous().items():
        logger.warning("Resource name %s is not unique (%d files)", name, len(paths))
    total = 0

    for path in sorted(package_dir.rglob("*.metadata.json")):
        with path.open(encoding="utf-8") as f:
            metadata = json.load(f)
        count = inline_metadata_resources(metadata, resolver, path)
        if count:
            with path.open("w", encoding="utf-8") as f:
                json.dump(metadata, f)
        total += count

    logger.info("Inlined %d resource(s) in %s", total, package_dir)
    return total


__all__ = [
    "RESOURCE_PATTERNS",
    "ResourceResolver",
    "inline_metadata_resources",
    "inline_package_metadata_files",
]
