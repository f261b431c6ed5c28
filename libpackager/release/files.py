"""Filesystem helpers for composing releases."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def copy_files(from_dir: Path, pattern: str, out_dir: Path) -> list[Path]:
    """Copy files matching a glob, preserving their relative paths.

    Args:
        from_dir: Directory the pattern is evaluated in.
        pattern: Glob pattern (``**`` matches nested directories).
        out_dir: Destination directory; created as needed.

    Returns:
        Destination paths of the copied files, sorted.
    """
    if not from_dir.is_dir():
        logger.debug("Copy source does not exist: %s", from_dir)
        return []

    copied: list[Path] = []
    for path in sorted(from_dir.glob(pattern)):
        if not path.is_file():
            continue
        dest = out_dir / path.relative_to(from_dir)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, dest)
        copied.append(dest)
        logger.debug("Copied %s -> %s", path, dest)

    return copied


def rename_files(root: Path, pattern: str, new_name: str) -> list[Path]:
    """Rename every file matching a glob to ``new_name`` in its directory.

    An existing file with the target name is replaced.

    Returns:
        New paths of the renamed files.
    """
    renamed: list[Path] = []
    for path in sorted(root.glob(pattern)):
        target = path.with_name(new_name)
        if target.exists():
            logger.debug("Replacing %s with %s", target, path.name)
        path.replace(target)
        renamed.append(target)

    return renamed


__all__ = ["copy_files", "rename_files"]
