"""Package build orchestration.

This module provides the high-level build API:
- PackageBuilder.build_graph(): build all secondaries, then the primary
- Memoized build records so a shared dependency is built exactly once
- Failure propagation to dependents, independent branches keep going
- Best-effort abort of the whole graph

Builds run as asyncio tasks. A package's task first waits for the
records of everything it depends on, then compiles its sources and runs
the bundle pipeline. Packages without a dependency path between them
run concurrently, bounded by ``max_concurrent_builds``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from libpackager.builds.pipeline import run_pipeline, run_stage
from libpackager.builds.runner import SubprocessToolchain, Toolchain
from libpackager.builds.tsconfig import (
    load_template,
    materialize_compiler_config,
    validate_template,
)
from libpackager.config import get_settings
from libpackager.errors import (
    BuildAbortedError,
    BuildGraphError,
    DependencyFailedError,
    NestingError,
)
from libpackager.packages.models import (
    BuildPackage,
    PackageLayout,
    create_build_package,
)
from libpackager.types import BuildStatus, BundleArtifacts, StageName

if TYPE_CHECKING:
    from libpackager.config import Settings

logger = logging.getLogger(__name__)


class BuildRecord:
    """Single-resolution record of one package build.

    Created on the first build request for a package; every later
    request for the same package receives this record.
    """

    def __init__(self, package: BuildPackage) -> None:
        self.package = package
        self.status = BuildStatus.PENDING
        self.task: asyncio.Task[BundleArtifacts] | None = None
        self.started_at: float | None = None
        self.finished_at: float | None = None

    def __repr__(self) -> str:
        return f"BuildRecord({self.package.key!r}, status={self.status.value})"

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    @property
    def started(self) -> bool:
        """Whether the package's own compilation was started."""
        return self.started_at is not None

    def error(self) -> BaseException | None:
        """Return the failure of a finished record, or None."""
        if self.task is None or not self.task.done():
            return None
        if self.task.cancelled():
            return BuildAbortedError(f"Build of {self.package.key} was cancelled")
        return self.task.exception()

    def result(self) -> BundleArtifacts:
        """Return the artifacts of a succeeded record.

        Raises:
            The record's failure, or RuntimeError if still in progress.
        """
        if self.task is None or not self.task.done():
            raise RuntimeError(f"Build of {self.package.key} is not complete")
        return self.task.result()


def bundle_globals(root: BuildPackage, settings: Settings) -> dict[str, str]:
    """Return the external module mapping used when bundling a graph.

    Sibling entry points are external to each other, so every secondary
    is mapped to its UMD global name.
    """
    mapping = dict(settings.rollup_globals)
    for secondary in root.secondaries:
        mapping[secondary.import_name] = secondary.module_name
    return mapping


class PackageBuilder:
    """Builds a package graph, memoizing one build record per package.

    Args:
        settings: Application settings.
        toolchain: External tools; defaults to SubprocessToolchain.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        toolchain: Toolchain | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.toolchain = toolchain or SubprocessToolchain(self.settings)
        self._records: dict[str, BuildRecord] = {}
        self._abort = asyncio.Event()
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_builds)
        self._template: dict[str, Any] | None = None
        self._globals: dict[str, dict[str, str]] = {}

    @property
    def records(self) -> dict[str, BuildRecord]:
        return dict(self._records)

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def get_record(self, package: BuildPackage) -> BuildRecord | None:
        return self._records.get(package.key)

    def prepare(self, root: BuildPackage) -> None:
        """Validate configuration of a graph before any package is built.

        Raises:
            ConfigurationError: On an invalid compiler template or graph.
        """
        if root.is_secondary:
            raise NestingError(f"'{root.import_name}' is not a primary package")
        for secondary in root.secondaries:
            if secondary.secondaries:
                raise NestingError(
                    f"Secondary entry point '{secondary.import_name}' has "
                    "secondaries of its own"
                )

        if self.settings.tsconfig_template is not None and self._template is None:
            template = load_template(
                self.settings.resolve_path(self.settings.tsconfig_template)
            )
            validate_template(template)
            self._template = template

        self._globals.setdefault(root.key, bundle_globals(root, self.settings))

    def build_package(self, package: BuildPackage) -> BuildRecord:
        """Return the build record of a package, starting it if needed.

        Must be called from a running event loop.
        """
        record = self._records.get(package.key)
        if record is not None:
            return record

        record = BuildRecord(package)
        self._records[package.key] = record
        record.task = asyncio.create_task(
            self._build(package, record), name=f"build:{package.key}"
        )
        return record

    def _dependency_records(self, package: BuildPackage) -> list[BuildRecord]:
        if package.parent is None:
            return [self.build_package(s) for s in package.secondaries]

        siblings = {s.name: s for s in package.parent.secondaries}
        return [self.build_package(siblings[name]) for name in package.dependencies]

    async def _wait_for_dependencies(self, package: BuildPackage) -> None:
        """Wait until every dependency succeeded.

        Raises:
            DependencyFailedError: As soon as one dependency fails.
            BuildAbortedError: If a dependency was cancelled.
        """
        records = self._dependency_records(package)
        if not records:
            return

        tasks = [r.task for r in records if r.task is not None]
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)

        for record in records:
            error = record.error()
            if error is None:
                continue
            if isinstance(error, BuildAbortedError):
                raise BuildAbortedError(
                    f"Build of {package.key} aborted: {record.package.key} "
                    "was cancelled"
                )
            raise DependencyFailedError(package.key, record.package.key) from error

    async def _build(
        self, package: BuildPackage, record: BuildRecord
    ) -> BundleArtifacts:
        label = package.key
        try:
            await self._wait_for_dependencies(package)

            async with self._semaphore:
                if self._abort.is_set():
                    raise BuildAbortedError(f"Build of {label} aborted")

                record.status = BuildStatus.RUNNING
                record.started_at = time.monotonic()
                logger.info("Building %s", label)
                artifacts = await self._compile_and_bundle(package)

        except DependencyFailedError as e:
            record.status = BuildStatus.FAILED
            logger.warning("Skipping %s: %s", label, e)
            raise
        except BaseException as e:
            record.status = BuildStatus.FAILED
            if not isinstance(e, (asyncio.CancelledError, BuildAbortedError)):
                logger.error("Build of %s failed: %s", label, e)
            raise
        finally:
            record.finished_at = time.monotonic()

        record.status = BuildStatus.SUCCEEDED
        logger.info("Built %s", label)
        return artifacts

    async def _compile_and_bundle(self, package: BuildPackage) -> BundleArtifacts:
        label = package.key
        root = package.parent if package.parent is not None else package

        async def compile_package() -> None:
            config_path = await asyncio.to_thread(
                materialize_compiler_config, package, self.settings, self._template
            )
            await self.toolchain.compile(config_path, package.source_path, label)

        await run_stage(StageName.COMPILE, label, compile_package, self._abort)

        external = self._globals.get(root.key)
        if external is None:
            external = self._globals[root.key] = bundle_globals(root, self.settings)

        return await run_pipeline(
            package.entry_file,
            package.module_name,
            package.bundles_path,
            self.toolchain,
            bundle_name=package.name,
            external_globals=external,
            banner=self.settings.license_banner,
            label=label,
            abort=self._abort,
        )

    async def build_graph(self, root: BuildPackage) -> dict[str, BundleArtifacts]:
        """Build every secondary entry point of ``root``, then ``root``.

        Args:
            root: Primary package with its secondaries attached.

        Returns:
            Mapping of package key to bundle artifacts.

        Raises:
            ConfigurationError: Before any build starts, on bad config.
            BuildGraphError: If any package failed; ``errors`` holds
                every root failure in the order they occurred.
        """
        self.prepare(root)
        records = [self.build_package(p) for p in root.iter_packages()]
        tasks = [r.task for r in records if r.task is not None]

        try:
            await asyncio.wait(tasks)
        except asyncio.CancelledError:
            self.abort()
            raise

        failed = [r for r in records if r.error() is not None]
        if failed:
            failed.sort(key=lambda r: r.finished_at or 0.0)
            causes = [
                r.error()
                for r in failed
                if not isinstance(r.error(), DependencyFailedError)
            ]
            errors = causes or [r.error() for r in failed]
            raise BuildGraphError([e for e in errors if e is not None])

        return {r.package.key: r.result() for r in records}

    def abort(self) -> None:
        """Stop the graph build: no new stages start, running tools are stopped."""
        if self._abort.is_set():
            return
        logger.warning("Aborting build")
        self._abort.set()
        for record in self._records.values():
            if record.task is not None and not record.task.done():
                record.task.cancel()


async def build_library(
    package_name: str,
    settings: Settings | None = None,
    toolchain: Toolchain | None = None,
    compose: bool = True,
) -> BuildPackage:
    """Build a library from the source root and compose its release.

    Args:
        package_name: Directory name of the primary package.
        settings: Application settings.
        toolchain: External tools.
        compose: Compose the release tree after building.

    Returns:
        The built primary package.
    """
    from libpackager.release.compose import compose_release

    if settings is None:
        settings = get_settings()

    root = create_build_package(
        package_name,
        settings.source_dir / package_name,
        PackageLayout.from_settings(settings),
        entry_module=settings.entry_module,
        dependency_file=settings.dependency_file,
    )

    builder = PackageBuilder(settings=settings, toolchain=toolchain)
    started = time.monotonic()
    await builder.build_graph(root)
    logger.info(
        "Built %d package(s) in %.1fs",
        len(list(root.iter_packages())),
        time.monotonic() - started,
    )

    if compose:
        await asyncio.to_thread(compose_release, root, settings)
    return root


__all__ = [
    "BuildRecord",
    "PackageBuilder",
    "build_library",
    "bundle_globals",
]
