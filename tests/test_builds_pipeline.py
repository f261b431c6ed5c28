"""Tests for builds/pipeline.py module.

Runs the five bundle stages against the fake toolchain.
"""

import asyncio
import json
from pathlib import Path

import pytest

from libpackager.builds.annotate import PURE_ANNOTATION
from libpackager.builds.pipeline import run_pipeline, run_stage
from libpackager.errors import BuildAbortedError, StageError
from libpackager.types import BundleFormat, StageName
from tests.conftest import ENTRY_SOURCE, FakeToolchain, write_generated

LABEL = "@angular/widgets"


@pytest.fixture
def entry_file(tmp_path: Path) -> Path:
    """Create a compiled flat module mapped onto its TypeScript source."""
    source = tmp_path / "src" / "widgets" / "index.ts"
    source.parent.mkdir(parents=True)
    source.write_text(ENTRY_SOURCE)
    lines = ENTRY_SOURCE.rstrip("\n").split("\n")
    entry = tmp_path / "dist" / "packages" / "widgets" / "widgets-flat.js"
    write_generated(entry, lines, source, [(i, 0) for i in range(len(lines))])
    return entry


async def run(entry_file: Path, toolchain: FakeToolchain, **kwargs):
    output_dir = entry_file.parents[2] / "bundles"
    return await run_pipeline(
        entry_file,
        "ng.widgets",
        output_dir,
        toolchain,
        bundle_name="widgets",
        label=LABEL,
        **kwargs,
    )


class TestRunStage:
    """Tests for run_stage function."""

    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        """The action's result is passed through."""

        async def action() -> int:
            return 7

        assert await run_stage(StageName.ANNOTATE, LABEL, action) == 7

    @pytest.mark.asyncio
    async def test_wraps_unexpected_errors(self) -> None:
        """Unexpected exceptions are attributed to the stage and package."""

        async def action() -> None:
            raise OSError("disk full")

        with pytest.raises(StageError) as exc_info:
            await run_stage(StageName.ANNOTATE, LABEL, action)
        assert exc_info.value.stage == "annotate"
        assert exc_info.value.package == LABEL
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_fills_missing_package(self) -> None:
        """Stage errors without a package get the stage's package."""

        async def action() -> None:
            raise StageError("boom", stage="minify")

        with pytest.raises(StageError) as exc_info:
            await run_stage(StageName.MINIFY, LABEL, action)
        assert exc_info.value.package == LABEL

    @pytest.mark.asyncio
    async def test_aborted_before_start(self) -> None:
        """A set abort event prevents the stage from running."""
        abort = asyncio.Event()
        abort.set()
        ran = []

        async def action() -> None:
            ran.append(True)

        with pytest.raises(BuildAbortedError):
            await run_stage(StageName.BUNDLE_ES, LABEL, action, abort)
        assert ran == []


class TestRunPipeline:
    """Tests for run_pipeline function."""

    @pytest.mark.asyncio
    async def test_stage_order(self, entry_file: Path) -> None:
        """Stages run strictly in order, once each."""
        toolchain = FakeToolchain()
        await run(entry_file, toolchain)

        assert [stage for stage, _ in toolchain.calls] == [
            "bundle-es",
            "downlevel",
            "bundle-umd",
            "minify",
        ]

    @pytest.mark.asyncio
    async def test_all_bundles_written(self, entry_file: Path) -> None:
        """Four bundles and their maps are produced."""
        artifacts = await run(entry_file, FakeToolchain())

        for path in artifacts.files():
            assert path.is_file()
            assert Path(f"{path}.map").is_file()
        assert artifacts.umd_min.name == "widgets.umd.min.js"

    @pytest.mark.asyncio
    async def test_bundle_options(self, entry_file: Path) -> None:
        """Both bundles share externals; only UMD has the banner."""
        toolchain = FakeToolchain()
        external = {"@angular/core": "ng.core"}
        await run(entry_file, toolchain, external_globals=external, banner="/** b */")

        es, umd = toolchain.bundle_options
        assert es.format is BundleFormat.ES
        assert es.entry == entry_file
        assert es.banner == ""
        assert umd.format is BundleFormat.UMD
        assert umd.entry.name == "widgets.es5.js"
        assert umd.banner == "/** b */"
        assert es.globals == umd.globals == external
        assert es.module_name == umd.module_name == "ng.widgets"

    @pytest.mark.asyncio
    async def test_es5_bundle_annotated(self, entry_file: Path) -> None:
        """The ES5 bundle carries pure annotations, the ES2015 one does not."""
        artifacts = await run(entry_file, FakeToolchain())

        assert PURE_ANNOTATION in artifacts.fesm5.read_text()
        assert PURE_ANNOTATION in artifacts.umd.read_text()
        assert PURE_ANNOTATION not in artifacts.fesm2015.read_text()

    @pytest.mark.asyncio
    async def test_maps_point_to_original_source(self, entry_file: Path) -> None:
        """Every bundle map references the TypeScript source directly."""
        artifacts = await run(entry_file, FakeToolchain())
        source = entry_file.parents[3] / "src" / "widgets" / "index.ts"

        for path in artifacts.files():
            data = json.loads(Path(f"{path}.map").read_text())
            resolved = [(path.parent / s).resolve() for s in data["sources"]]
            assert resolved == [source.resolve()]
            assert data["sourcesContent"] == [ENTRY_SOURCE]

    @pytest.mark.asyncio
    async def test_stage_failure_stops_pipeline(self, entry_file: Path) -> None:
        """A failing stage is reported and later stages never run."""
        toolchain = FakeToolchain(failures={LABEL: StageName.DOWNLEVEL})

        with pytest.raises(StageError) as exc_info:
            await run(entry_file, toolchain)

        assert exc_info.value.stage == "downlevel"
        assert exc_info.value.package == LABEL
        assert [stage for stage, _ in toolchain.calls] == ["bundle-es", "downlevel"]

    @pytest.mark.asyncio
    async def test_abort_between_stages(self, entry_file: Path) -> None:
        """Setting the abort event stops the pipeline before the next stage."""
        abort = asyncio.Event()
        toolchain = FakeToolchain()
        original_bundle = toolchain.bundle

        async def bundle_then_abort(options, label):
            await original_bundle(options, label)
            abort.set()

        toolchain.bundle = bundle_then_abort  # type: ignore[method-assign]

        with pytest.raises(BuildAbortedError):
            await run(entry_file, toolchain, abort=abort)
        assert [stage for stage, _ in toolchain.calls] == ["bundle-es"]
