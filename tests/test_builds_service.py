"""Tests for builds/service.py module.

Tests the package build graph: ordering, memoization, concurrency,
failure propagation and abort, using the fake toolchain.
"""

import asyncio
import json
from collections.abc import Callable
from pathlib import Path

import pytest

from libpackager.builds.service import PackageBuilder, build_library, bundle_globals
from libpackager.config import Settings
from libpackager.errors import (
    BuildAbortedError,
    BuildGraphError,
    CompilationError,
    DependencyFailedError,
    StageError,
    TemplatePlaceholderError,
)
from libpackager.packages.models import (
    BuildPackage,
    PackageLayout,
    create_build_package,
)
from libpackager.types import BuildStatus, StageName
from tests.conftest import FakeToolchain

ROOT = "@angular/material"
A = "@angular/material/a"
B = "@angular/material/b"
C = "@angular/material/c"


def load_package(settings: Settings, name: str = "material") -> BuildPackage:
    return create_build_package(
        name,
        settings.source_dir / name,
        PackageLayout.from_settings(settings),
    )


def event_index(toolchain: FakeToolchain, kind: str, label: str) -> int:
    return toolchain.events.index((kind, label))


class TestBundleGlobals:
    """Tests for bundle_globals function."""

    def test_includes_secondaries(
        self, settings: Settings, create_library: Callable[..., Path]
    ) -> None:
        """Sibling entry points are external to each other."""
        create_library("material", secondaries=("a", "b"))
        root = load_package(settings)

        mapping = bundle_globals(root, settings)

        assert mapping[A] == "ng.material.a"
        assert mapping[B] == "ng.material.b"
        assert mapping["@angular/core"] == "ng.core"


class TestBuildOrder:
    """Tests for dependency ordering of builds."""

    @pytest.mark.asyncio
    async def test_dependency_builds_before_dependent(
        self,
        settings: Settings,
        create_library: Callable[..., Path],
        fake_toolchain: FakeToolchain,
    ) -> None:
        """b depends on a: a completes before b starts, root is last."""
        create_library("material", secondaries=("a", "b"), dependencies={"b": ["a"]})
        root = load_package(settings)
        builder = PackageBuilder(settings, fake_toolchain)

        results = await builder.build_graph(root)

        assert set(results) == {A, B, ROOT}
        assert fake_toolchain.compiled() == [A, B, ROOT]
        assert event_index(fake_toolchain, "end", A) < event_index(
            fake_toolchain, "start", B
        )
        for secondary in (A, B):
            assert event_index(fake_toolchain, "end", secondary) < event_index(
                fake_toolchain, "start", ROOT
            )

    @pytest.mark.asyncio
    async def test_independent_secondaries_run_concurrently(
        self, settings: Settings, create_library: Callable[..., Path]
    ) -> None:
        """Packages without a dependency path are built at the same time."""
        create_library("material", secondaries=("a", "b"))
        root = load_package(settings)
        toolchain = FakeToolchain(delays={A: 0.05, B: 0.05})

        await PackageBuilder(settings, toolchain).build_graph(root)

        assert toolchain.max_running == 2

    @pytest.mark.asyncio
    async def test_pool_limit_keeps_order(
        self, settings: Settings, create_library: Callable[..., Path]
    ) -> None:
        """A pool of one serializes builds without reordering them."""
        create_library(
            "material", secondaries=("a", "b", "c"), dependencies={"a": ["c"]}
        )
        root = load_package(settings)
        settings = settings.model_copy(update={"max_concurrent_builds": 1})
        toolchain = FakeToolchain(delays={B: 0.02, C: 0.02})

        await PackageBuilder(settings, toolchain).build_graph(root)

        assert toolchain.max_running == 1
        compiled = toolchain.compiled()
        assert compiled.index(C) < compiled.index(A)
        assert compiled[-1] == ROOT

    @pytest.mark.asyncio
    async def test_records_succeeded(
        self,
        settings: Settings,
        create_library: Callable[..., Path],
        fake_toolchain: FakeToolchain,
    ) -> None:
        """Finished records hold their artifacts."""
        create_library("material", secondaries=("a",))
        root = load_package(settings)
        builder = PackageBuilder(settings, fake_toolchain)

        results = await builder.build_graph(root)

        record = builder.get_record(root.secondaries[0])
        assert record is not None
        assert record.status is BuildStatus.SUCCEEDED
        assert record.started and record.done
        assert record.result() == results[A]
        assert results[A].umd.is_file()
        assert results[ROOT].umd == settings.dist_dir / "bundles" / "material.umd.js"


class TestMemoization:
    """Tests for build-once semantics."""

    @pytest.mark.asyncio
    async def test_same_record_returned(
        self,
        settings: Settings,
        create_library: Callable[..., Path],
        fake_toolchain: FakeToolchain,
    ) -> None:
        """Requesting a package twice returns the in-flight record."""
        create_library("material", secondaries=("a",))
        root = load_package(settings)
        builder = PackageBuilder(settings, fake_toolchain)
        secondary = root.secondaries[0]

        first = builder.build_package(secondary)
        second = builder.build_package(secondary)
        assert first is second
        assert first.task is not None
        await first.task

        assert fake_toolchain.compiled() == [A]

    @pytest.mark.asyncio
    async def test_shared_dependency_built_once(
        self, settings: Settings, create_library: Callable[..., Path]
    ) -> None:
        """A dependency of two packages runs its pipeline once."""
        create_library(
            "material",
            secondaries=("a", "b", "c"),
            dependencies={"b": ["a"], "c": ["a"]},
        )
        root = load_package(settings)
        toolchain = FakeToolchain(delays={A: 0.02})

        await PackageBuilder(settings, toolchain).build_graph(root)

        assert toolchain.compiled().count(A) == 1
        assert toolchain.compiled(StageName.MINIFY).count(A) == 1

    @pytest.mark.asyncio
    async def test_concurrent_graph_requests(
        self,
        settings: Settings,
        create_library: Callable[..., Path],
        fake_toolchain: FakeToolchain,
    ) -> None:
        """Concurrent graph builds share every record."""
        create_library("material", secondaries=("a", "b"))
        root = load_package(settings)
        builder = PackageBuilder(settings, fake_toolchain)

        first, second = await asyncio.gather(
            builder.build_graph(root), builder.build_graph(root)
        )

        assert first == second
        assert sorted(fake_toolchain.compiled()) == sorted([A, B, ROOT])


class TestFailures:
    """Tests for failure propagation."""

    @pytest.mark.asyncio
    async def test_compile_failure_blocks_dependent(
        self, settings: Settings, create_library: Callable[..., Path]
    ) -> None:
        """A compile error in a keeps b from starting and rejects a's record."""
        create_library("material", secondaries=("a", "b"), dependencies={"b": ["a"]})
        root = load_package(settings)
        toolchain = FakeToolchain(failures={A: StageName.COMPILE})
        builder = PackageBuilder(settings, toolchain)

        with pytest.raises(BuildGraphError) as exc_info:
            await builder.build_graph(root)

        errors = exc_info.value.errors
        assert len(errors) == 1
        assert isinstance(errors[0], CompilationError)
        assert errors[0].package == A
        assert exc_info.value.first is errors[0]

        record_a = builder.get_record(root.secondaries[0])
        record_b = builder.get_record(root.secondaries[1])
        record_root = builder.get_record(root)
        assert record_a is not None and record_b is not None and record_root
        assert record_a.status is BuildStatus.FAILED
        assert isinstance(record_a.error(), CompilationError)
        assert isinstance(record_b.error(), DependencyFailedError)
        assert not record_b.started
        assert not record_root.started
        assert toolchain.compiled() == [A]

    @pytest.mark.asyncio
    async def test_independent_branch_continues(
        self, settings: Settings, create_library: Callable[..., Path]
    ) -> None:
        """Packages that do not depend on the failure still build."""
        create_library(
            "material", secondaries=("a", "b", "c"), dependencies={"b": ["a"]}
        )
        root = load_package(settings)
        toolchain = FakeToolchain(failures={A: StageName.BUNDLE_UMD})
        builder = PackageBuilder(settings, toolchain)

        with pytest.raises(BuildGraphError) as exc_info:
            await builder.build_graph(root)

        error = exc_info.value.errors[0]
        assert isinstance(error, StageError)
        assert error.stage == "bundle-umd"
        record_c = builder.get_record(root.secondaries[2])
        assert record_c is not None
        assert record_c.status is BuildStatus.SUCCEEDED
        assert (settings.dist_dir / "bundles" / "material" / "c.umd.min.js").is_file()

    @pytest.mark.asyncio
    async def test_all_independent_failures_collected(
        self, settings: Settings, create_library: Callable[..., Path]
    ) -> None:
        """Every independent failure is reported, not only the first."""
        create_library("material", secondaries=("a", "b", "c"))
        root = load_package(settings)
        toolchain = FakeToolchain(
            failures={A: StageName.COMPILE, C: StageName.MINIFY},
            delays={C: 0.02},
        )

        with pytest.raises(BuildGraphError) as exc_info:
            await PackageBuilder(settings, toolchain).build_graph(root)

        errors = exc_info.value.errors
        assert [e.package for e in errors] == [A, C]
        assert exc_info.value.code == "build_graph_failed"

    @pytest.mark.asyncio
    async def test_template_error_before_any_stage(
        self,
        settings: Settings,
        create_library: Callable[..., Path],
        fake_toolchain: FakeToolchain,
        tmp_path: Path,
    ) -> None:
        """Invalid configuration aborts the graph before anything runs."""
        create_library("material", secondaries=("a",))
        root = load_package(settings)
        template = tmp_path / "tsconfig-build.json"
        template.write_text(json.dumps({"files": ["${entryFile}"]}))
        settings = settings.model_copy(update={"tsconfig_template": template})
        builder = PackageBuilder(settings, fake_toolchain)

        with pytest.raises(TemplatePlaceholderError):
            await builder.build_graph(root)

        assert fake_toolchain.calls == []
        assert builder.records == {}

    @pytest.mark.asyncio
    async def test_valid_template_used(
        self,
        settings: Settings,
        create_library: Callable[..., Path],
        fake_toolchain: FakeToolchain,
        tmp_path: Path,
    ) -> None:
        """A valid template drives compilation of every package."""
        create_library("material", secondaries=("a",))
        root = load_package(settings)
        template = tmp_path / "tsconfig-build.json"
        template.write_text(
            json.dumps(
                {
                    "compilerOptions": {
                        "outDir": "${outDir}",
                        "baseUrl": "${basePath}",
                    },
                    "files": ["${entryFile}"],
                    "angularCompilerOptions": {
                        "flatModuleOutFile": "${packageName}-flat.js",
                        "flatModuleId": "${moduleId}",
                    },
                }
            )
        )
        settings = settings.model_copy(update={"tsconfig_template": template})

        results = await PackageBuilder(settings, fake_toolchain).build_graph(root)

        assert set(results) == {A, ROOT}


class TestAbort:
    """Tests for aborting a graph build."""

    @pytest.mark.asyncio
    async def test_abort_stops_outstanding_builds(
        self, settings: Settings, create_library: Callable[..., Path]
    ) -> None:
        """Aborting cancels running builds and starts nothing new."""
        create_library("material", secondaries=("a", "b"), dependencies={"b": ["a"]})
        root = load_package(settings)
        toolchain = FakeToolchain(delays={A: 5})
        builder = PackageBuilder(settings, toolchain)

        graph = asyncio.create_task(builder.build_graph(root))
        await asyncio.sleep(0.05)
        builder.abort()

        with pytest.raises(BuildGraphError) as exc_info:
            await graph

        assert builder.aborted
        assert all(isinstance(e, BuildAbortedError) for e in exc_info.value.errors)
        assert toolchain.calls == []
        assert ("start", B) not in toolchain.events

    @pytest.mark.asyncio
    async def test_cancelling_graph_aborts(
        self, settings: Settings, create_library: Callable[..., Path]
    ) -> None:
        """Cancelling the graph build aborts every package build."""
        create_library("material", secondaries=("a",))
        root = load_package(settings)
        toolchain = FakeToolchain(delays={A: 5})
        builder = PackageBuilder(settings, toolchain)

        graph = asyncio.create_task(builder.build_graph(root))
        await asyncio.sleep(0.05)
        graph.cancel()

        with pytest.raises(asyncio.CancelledError):
            await graph
        assert builder.aborted
        await asyncio.gather(
            *(r.task for r in builder.records.values() if r.task is not None),
            return_exceptions=True,
        )
        assert all(r.status is BuildStatus.FAILED for r in builder.records.values())


class TestBuildLibrary:
    """Tests for build_library function."""

    @pytest.mark.asyncio
    async def test_without_release(
        self,
        settings: Settings,
        create_library: Callable[..., Path],
        fake_toolchain: FakeToolchain,
    ) -> None:
        """Bundles are built and the release step can be skipped."""
        create_library("material", secondaries=("a",))

        root = await build_library(
            "material", settings=settings, toolchain=fake_toolchain, compose=False
        )

        assert root.import_name == ROOT
        assert root.bundle_artifacts().umd_min.is_file()
        assert not root.release_path.exists()

    @pytest.mark.asyncio
    async def test_missing_package(
        self, settings: Settings, fake_toolchain: FakeToolchain
    ) -> None:
        """An unknown package directory is surfaced immediately."""
        with pytest.raises(FileNotFoundError):
            await build_library("nope", settings=settings, toolchain=fake_toolchain)
