"""Shared fixtures for libpackager tests.

Provides a fake toolchain that writes real output files with source
maps, so the pipeline, source map collapsing and release composition can
be exercised without the Node.js build tools.
"""

import asyncio
import json
import os
import shutil
from collections.abc import Callable
from pathlib import Path

import pytest

from libpackager.builds.runner import BundleOptions
from libpackager.builds.sourcemaps import (
    SOURCE_MAPPING_URL_RE,
    SourceMap,
    encode_mappings,
)
from libpackager.config import Settings
from libpackager.errors import CompilationError, StageError
from libpackager.types import BundleFormat, StageName

ENTRY_SOURCE = """\
import { InjectionToken } from '@angular/core';
export var WIDGET_OPTIONS = new InjectionToken('widget-options');
var Widget = (function () {
    function Widget() {
        this.size = 1;
    }
    return Widget;
}());
export { Widget };
"""


FLAT_TYPINGS = """\
export * from './widget';
export { WidgetBase as \u0275a } from './widget-base';
"""


def code_lines(path: Path) -> list[str]:
    """Return the lines of a generated file without its map comment."""
    text = SOURCE_MAPPING_URL_RE.sub("", path.read_text(encoding="utf-8"))
    return text.rstrip("\n").split("\n")


def write_generated(
    dest: Path,
    lines: list[str],
    source: Path,
    origins: list[tuple[int, int] | None],
) -> None:
    """Write a generated file and a map of its lines onto ``source``.

    ``origins[i]`` is the ``(line, column)`` in ``source`` that line ``i``
    of the output starts at, or None for unmapped lines.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    mappings = [
        [] if origin is None else [(0, 0, origin[0], origin[1])]
        for origin in origins
    ]
    sourcemap = SourceMap(
        file=dest.name,
        sources=[Path(os.path.relpath(source, dest.parent)).as_posix()],
        mappings=encode_mappings(mappings),
    )
    Path(f"{dest}.map").write_text(sourcemap.to_json(), encoding="utf-8")
    dest.write_text(
        "\n".join(lines) + f"\n//# sourceMappingURL={dest.name}.map\n",
        encoding="utf-8",
    )


class FakeToolchain:
    """In-process stand-in for the compiler, bundler, transpiler and minifier.

    Args:
        failures: Package label -> stage that should fail for it.
        delays: Package label -> seconds the compile step takes.
    """

    def __init__(
        self,
        failures: dict[str, StageName] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.failures = dict(failures or {})
        self.delays = dict(delays or {})
        self.calls: list[tuple[str, str]] = []
        self.events: list[tuple[str, str]] = []
        self.bundle_options: list[BundleOptions] = []
        self.running = 0
        self.max_running = 0

    def _record(self, stage: StageName, label: str) -> None:
        self.calls.append((stage.value, label))
        if self.failures.get(label) is not stage:
            return
        if stage is StageName.COMPILE:
            raise CompilationError(
                f"compile of {label} failed", package=label, exit_code=2
            )
        raise StageError(
            f"{stage.value} for {label} failed",
            stage=stage.value,
            package=label,
            exit_code=1,
        )

    def compiled(self, stage: StageName = StageName.COMPILE) -> list[str]:
        """Return the labels a stage ran for, in call order."""
        return [label for name, label in self.calls if name == stage.value]

    async def compile(self, config_path: Path, base_path: Path, label: str) -> None:
        self.events.append(("start", label))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await asyncio.sleep(self.delays.get(label, 0))
            self._record(StageName.COMPILE, label)

            config = json.loads(config_path.read_text(encoding="utf-8"))
            out_dir = Path(config["compilerOptions"]["outDir"])
            flat_file = config["angularCompilerOptions"]["flatModuleOutFile"]
            entry = Path(config["files"][0])

            lines = entry.read_text(encoding="utf-8").rstrip("\n").split("\n")
            write_generated(
                out_dir / flat_file, lines, entry, [(i, 0) for i in range(len(lines))]
            )
            stem = flat_file[: -len(".js")]
            (out_dir / "index.d.ts").write_text(
                "export * from './widget';\n", encoding="utf-8"
            )
            (out_dir / f"{stem}.d.ts").write_text(FLAT_TYPINGS, encoding="utf-8")
            (out_dir / f"{stem}.metadata.json").write_text(
                json.dumps({"__symbolic": "module", "version": 3, "metadata": {}}),
                encoding="utf-8",
            )
            for pattern in ("*.html", "*.css", "*.metadata.json"):
                for resource in base_path.rglob(pattern):
                    target = out_dir / resource.relative_to(base_path)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copyfile(resource, target)
        finally:
            self.running -= 1
            self.events.append(("end", label))

    async def bundle(self, options: BundleOptions, label: str) -> None:
        await asyncio.sleep(0)
        stage = (
            StageName.BUNDLE_ES
            if options.format is BundleFormat.ES
            else StageName.BUNDLE_UMD
        )
        self.bundle_options.append(options)
        self._record(stage, label)

        banner = options.banner.split("\n") if options.banner else []
        lines = code_lines(options.entry)
        write_generated(
            options.dest,
            banner + lines,
            options.entry,
            [None] * len(banner) + [(i, 0) for i in range(len(lines))],
        )

    async def downlevel(self, source: Path, dest: Path, label: str) -> None:
        await asyncio.sleep(0)
        self._record(StageName.DOWNLEVEL, label)
        lines = code_lines(source)
        write_generated(dest, lines, source, [(i, 0) for i in range(len(lines))])

    async def minify(self, source: Path, dest: Path, label: str) -> None:
        await asyncio.sleep(0)
        self._record(StageName.MINIFY, label)
        lines = code_lines(source)
        write_generated(
            dest,
            [line.lstrip() for line in lines],
            source,
            [(i, len(line) - len(line.lstrip())) for i, line in enumerate(lines)],
        )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create settings rooted in a temporary project directory."""
    return Settings(
        project_root=tmp_path,
        release_version="4.2.0",
        max_concurrent_builds=4,
    )


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    """Create a fake toolchain with no failures."""
    return FakeToolchain()


@pytest.fixture
def create_library(settings: Settings) -> Callable[..., Path]:
    """Return a factory writing a library source tree.

    The factory takes the package name, secondary entry point names and
    an optional dependency declaration, and returns the package source
    directory.
    """

    def factory(
        name: str,
        secondaries: tuple[str, ...] = (),
        dependencies: dict[str, list[str]] | None = None,
    ) -> Path:
        package_dir = settings.source_dir / name
        package_dir.mkdir(parents=True)
        (package_dir / "index.ts").write_text(ENTRY_SOURCE, encoding="utf-8")
        (package_dir / "package.json").write_text(
            json.dumps(
                {
                    "name": f"@angular/{name}",
                    "version": "0.0.0-PLACEHOLDER",
                    "peerDependencies": {"@angular/core": "^0.0.0-PLACEHOLDER"},
                },
                indent=2,
            ),
            encoding="utf-8",
        )
        for secondary in secondaries:
            secondary_dir = package_dir / secondary
            secondary_dir.mkdir()
            (secondary_dir / "index.ts").write_text(ENTRY_SOURCE, encoding="utf-8")
        if dependencies is not None:
            (package_dir / "package-config.json").write_text(
                json.dumps(dependencies), encoding="utf-8"
            )
        return package_dir

    return factory
