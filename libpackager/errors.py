"""Error definitions for libpackager.

Every error carries a stable ``code`` attribute for programmatic
handling (CLI JSON output, logs). The taxonomy mirrors the stages of a
release build: configuration, per-package stages, resource inlining and
release composition.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class PackagerError(Exception):
    """Base error for libpackager operations."""

    def __init__(self, message: str, code: str = "packager_error") -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(PackagerError):
    """Raised for invalid build configuration. Fatal to the whole graph."""

    def __init__(self, message: str, code: str = "configuration_error") -> None:
        super().__init__(message, code=code)


class DependencyCycleError(ConfigurationError):
    """Raised when declared package dependencies form a cycle."""

    def __init__(self, edge: tuple[str, str], remaining: Sequence[str]) -> None:
        super().__init__(
            f"Dependency cycle detected: {edge[0]} <-> {edge[1]} "
            f"(unresolved: {', '.join(remaining)})",
            code="dependency_cycle",
        )
        self.edge = edge
        self.remaining = list(remaining)


class UnknownDependencyError(ConfigurationError):
    """Raised when a package declares a dependency that was not discovered."""

    def __init__(self, package: str, dependency: str) -> None:
        super().__init__(
            f"Package '{package}' depends on unknown package '{dependency}'",
            code="unknown_dependency",
        )
        self.package = package
        self.dependency = dependency


class TemplatePlaceholderError(ConfigurationError):
    """Raised when a compiler configuration template has bad placeholders."""

    def __init__(self, message: str, placeholders: Sequence[str]) -> None:
        super().__init__(message, code="template_placeholder")
        self.placeholders = list(placeholders)


class NestingError(ConfigurationError):
    """Raised when an entry point would contain further entry points."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="invalid_nesting")


class StageError(PackagerError):
    """Raised when a pipeline stage fails for a package."""

    def __init__(
        self,
        message: str,
        stage: str,
        package: str | None = None,
        exit_code: int | None = None,
        log_path: Path | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, code=code or f"{stage}_failed")
        self.stage = stage
        self.package = package
        self.exit_code = exit_code
        self.log_path = log_path


class CompilationError(StageError):
    """Raised when the ahead-of-time compiler reports diagnostics."""

    def __init__(
        self,
        message: str,
        package: str | None = None,
        exit_code: int | None = None,
        log_path: Path | None = None,
    ) -> None:
        super().__init__(
            message,
            stage="compile",
            package=package,
            exit_code=exit_code,
            log_path=log_path,
            code="compilation_failed",
        )


class DependencyFailedError(PackagerError):
    """Raised for a package that was skipped because a dependency failed."""

    def __init__(self, package: str, dependency: str) -> None:
        super().__init__(
            f"Package '{package}' not built: dependency '{dependency}' failed",
            code="dependency_failed",
        )
        self.package = package
        self.dependency = dependency


class BuildAbortedError(PackagerError):
    """Raised when the graph build was aborted by the caller."""

    def __init__(self, message: str = "Build aborted") -> None:
        super().__init__(message, code="build_aborted")


class BuildGraphError(PackagerError):
    """Raised when one or more packages of a graph failed to build.

    The message names the first failure; ``errors`` holds every root
    failure so all breaks can be reported in one pass.
    """

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        first = self.errors[0] if self.errors else None
        message = f"{len(self.errors)} package build(s) failed"
        if first is not None:
            message += f"; first: {first}"
        super().__init__(message, code="build_graph_failed")

    @property
    def first(self) -> BaseException | None:
        return self.errors[0] if self.errors else None


class ResourceError(PackagerError):
    """Raised when a component resource cannot be inlined."""

    def __init__(self, message: str, code: str = "resource_error") -> None:
        super().__init__(message, code=code)


class AmbiguousResourceError(ResourceError):
    """Raised when a resource filename matches more than one file."""

    def __init__(self, filename: str, candidates: Sequence[Path]) -> None:
        super().__init__(
            f"Ambiguous resource '{filename}': "
            + ", ".join(str(c) for c in candidates),
            code="ambiguous_resource",
        )
        self.filename = filename
        self.candidates = list(candidates)


class MissingResourceError(ResourceError):
    """Raised when a referenced resource filename matches no file."""

    def __init__(self, filename: str, metadata_path: Path | None = None) -> None:
        where = f" (referenced from {metadata_path})" if metadata_path else ""
        super().__init__(
            f"Resource not found: '{filename}'{where}",
            code="missing_resource",
        )
        self.filename = filename
        self.metadata_path = metadata_path


class ReleaseError(PackagerError):
    """Raised when the release tree cannot be composed."""

    def __init__(self, message: str, code: str = "release_error") -> None:
        super().__init__(message, code=code)


__all__ = [
    "AmbiguousResourceError",
    "BuildAbortedError",
    "BuildGraphError",
    "CompilationError",
    "ConfigurationError",
    "DependencyCycleError",
    "DependencyFailedError",
    "MissingResourceError",
    "NestingError",
    "PackagerError",
    "ReleaseError",
    "ResourceError",
    "StageError",
    "TemplatePlaceholderError",
    "UnknownDependencyError",
]
