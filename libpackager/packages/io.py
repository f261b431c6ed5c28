"""Loading of per-directory dependency declarations.

A declaration is read from ``package-config.json`` by default; YAML
variants (``.yaml``/``.yml``) of the same file name are accepted too.
A directory without a declaration has no dependencies.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from libpackager.errors import ConfigurationError
from libpackager.packages.schema import DependencyDeclaration

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def find_dependency_file(directory: Path, filename: str) -> Path | None:
    """Locate the dependency declaration file of a directory.

    Args:
        directory: Directory to look in.
        filename: Configured declaration file name.

    Returns:
        Path of the first existing candidate, or None.
    """
    stem = Path(filename).stem
    candidates = [filename, f"{stem}.yaml", f"{stem}.yml"]
    for candidate in dict.fromkeys(candidates):
        path = directory / candidate
        if path.is_file():
            return path
    return None


def load_dependency_declaration(
    directory: Path,
    filename: str = "package-config.json",
) -> DependencyDeclaration:
    """Load and validate the dependency declaration of a directory.

    Args:
        directory: Directory holding the sub-packages.
        filename: Declaration file name.

    Returns:
        Validated declaration; empty when no file exists.

    Raises:
        ConfigurationError: If the file cannot be parsed or validated.
    """
    path = find_dependency_file(directory, filename)
    if path is None:
        logger.debug("No dependency declaration in %s", directory)
        return DependencyDeclaration({})

    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = load_yaml(path)
        else:
            data = load_json(path)
        declaration = DependencyDeclaration.model_validate(data)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot parse dependency declaration {path}: {e}",
            code="dependency_file_invalid",
        ) from e
    except (ValidationError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid dependency declaration {path}: {e}",
            code="dependency_file_invalid",
        ) from e

    logger.debug("Loaded dependency declaration %s", path)
    return declaration


__all__ = [
    "find_dependency_file",
    "load_dependency_declaration",
    "load_json",
    "load_yaml",
]
