"""Runner for the external JavaScript build tools.

This module handles:
- Composing compiler, bundler, transpiler and minifier command lines
- Executing them as asyncio subprocesses
- Capturing stdout/stderr to per-package log files
- Enforcing tool timeouts and stopping tools on cancellation

The pipeline only depends on the ``Toolchain`` protocol, so tests and
alternative tool setups can provide their own implementation.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shlex
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from libpackager.builds.sourcemaps import load_sourcemap, set_sourcemap_url
from libpackager.errors import CompilationError, StageError
from libpackager.types import BundleFormat, StageName

if TYPE_CHECKING:
    from libpackager.config import Settings

logger = logging.getLogger(__name__)

LICENSE_COMMENTS_RE = "/@license|@preserve|^!/"


@dataclass
class BundleOptions:
    """Options of one bundler invocation.

    Attributes:
        entry: Entry module of the bundle.
        dest: Bundle file to write.
        format: Output module format.
        module_name: Global name of the bundle (UMD).
        globals: External module id to global variable name.
        banner: License banner prepended to the bundle.
    """

    entry: Path
    dest: Path
    format: BundleFormat
    module_name: str
    globals: dict[str, str] = field(default_factory=dict)
    banner: str = ""


class Toolchain(Protocol):
    """External tools driven by the pipeline.

    Every method writes its output file plus a source map next to it
    and raises ``StageError`` (``CompilationError`` for ``compile``)
    when the tool fails.
    """

    async def compile(self, config_path: Path, base_path: Path, label: str) -> None:
        """Run the ahead-of-time compiler on a configuration file."""
        ...

    async def bundle(self, options: BundleOptions, label: str) -> None:
        """Bundle a module graph into one file."""
        ...

    async def downlevel(self, source: Path, dest: Path, label: str) -> None:
        """Transpile an ES2015 file to ES5 syntax, keeping ES modules."""
        ...

    async def minify(self, source: Path, dest: Path, label: str) -> None:
        """Minify a file, preserving license comments."""
        ...


def compose_compile_command(settings: Settings, config_path: Path) -> list[str]:
    """Compose the ahead-of-time compiler command."""
    return [*settings.ngc_command, "-p", str(config_path)]


def compose_bundle_command(settings: Settings, options: BundleOptions) -> list[str]:
    """Compose the module bundler command.

    External modules are exactly the keys of ``options.globals``.
    """
    cmd = [
        *settings.rollup_command,
        "--input",
        str(options.entry),
        "--file",
        str(options.dest),
        "--format",
        options.format.value,
        "--name",
        options.module_name,
        "--context",
        "this",
        "--sourcemap",
    ]
    if options.globals:
        cmd.extend(["--external", ",".join(options.globals)])
        cmd.extend(
            [
                "--globals",
                ",".join(f"{mod}:{name}" for mod, name in options.globals.items()),
            ]
        )
    if options.banner:
        cmd.extend(["--banner", options.banner])
    return cmd


def compose_downlevel_command(
    settings: Settings, source: Path, out_dir: Path
) -> list[str]:
    """Compose the ES5 downleveling command."""
    return [
        *settings.tsc_command,
        "--target",
        "es5",
        "--module",
        "es2015",
        "--allowJs",
        "--sourceMap",
        "--outDir",
        str(out_dir),
        str(source),
    ]


def compose_minify_command(settings: Settings, source: Path, dest: Path) -> list[str]:
    """Compose the minifier command."""
    return [
        *settings.uglify_command,
        str(source),
        "--comments",
        LICENSE_COMMENTS_RE,
        "--source-map",
        f"url='{dest.name}.map'",
        "--output",
        str(dest),
    ]


def _safe_label(label: str) -> str:
    return re.sub(r"[^\w.\-]+", "_", label).strip("_") or "package"


def relocate_output(produced: Path, dest: Path) -> None:
    """Move a generated file and its source map, keeping the map valid.

    Source paths are rebased onto the new map directory and the
    ``sourceMappingURL`` comment is pointed at the moved map.
    """
    loaded = load_sourcemap(produced)
    dest.parent.mkdir(parents=True, exist_ok=True)
    text = produced.read_text(encoding="utf-8")

    if loaded is None:
        dest.write_text(text, encoding="utf-8")
        produced.unlink()
        return

    sourcemap, map_path = loaded
    old_dir = map_path.parent if map_path is not None else produced.parent
    dest_map = Path(f"{dest}.map")
    rebased = [
        None
        if source is None
        else Path(
            os.path.relpath(
                os.path.normpath(old_dir / (sourcemap.source_root or "") / source),
                dest_map.parent,
            )
        ).as_posix()
        for source in sourcemap.sources
    ]
    moved = sourcemap.model_copy(
        update={"file": dest.name, "sources": rebased, "source_root": None}
    )
    dest_map.write_text(moved.to_json(), encoding="utf-8")
    dest.write_text(set_sourcemap_url(text, dest_map.name), encoding="utf-8")

    produced.unlink()
    if map_path is not None and map_path.exists():
        map_path.unlink()


class SubprocessToolchain:
    """Toolchain running the configured command line tools.

    Args:
        settings: Application settings (commands, globals, timeout).
        log_dir: Directory for tool logs; defaults to ``<dist>/logs``.
    """

    def __init__(self, settings: Settings, log_dir: Path | None = None) -> None:
        self.settings = settings
        self.log_dir = log_dir or settings.dist_dir / "logs"

    def log_path(self, label: str, stage: StageName) -> Path:
        return self.log_dir / _safe_label(label) / f"{stage.value}.log"

    async def _run(
        self,
        cmd: list[str],
        stage: StageName,
        label: str,
        cwd: Path | None = None,
    ) -> None:
        """Run one tool invocation.

        Raises:
            StageError: If the tool cannot start, times out or fails.
        """
        log_path = self.log_path(label, stage)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        cmd_str = shlex.join(cmd)
        timeout = self.settings.tool_timeout
        logger.debug("Executing %s for %s: %s", stage.value, label, cmd_str)

        started_at = datetime.now(timezone.utc)
        with log_path.open("w") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {cwd or Path.cwd()}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    cwd=cwd,
                    stdout=log_file,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError as e:
                raise StageError(
                    f"Failed to execute {stage.value} for {label}: {e}",
                    stage=stage.value,
                    package=label,
                    log_path=log_path,
                    code="execution_error",
                ) from e

            try:
                exit_code = await asyncio.wait_for(proc.wait(), timeout=timeout)
            except asyncio.TimeoutError as e:
                proc.kill()
                await proc.wait()
                log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
                raise StageError(
                    f"{stage.value} for {label} timed out after {timeout} seconds",
                    stage=stage.value,
                    package=label,
                    exit_code=-1,
                    log_path=log_path,
                    code=f"{stage.value}_timeout",
                ) from e
            except asyncio.CancelledError:
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()
                log_file.write("\n# CANCELLED\n")
                raise

            finished_at = datetime.now(timezone.utc)
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            log_file.write(f"# Duration: {duration:.1f}s\n")

        if exit_code != 0:
            message = f"{stage.value} for {label} failed with exit code {exit_code}"
            logger.error("%s. See log: %s", message, log_path)
            if stage is StageName.COMPILE:
                raise CompilationError(
                    message, package=label, exit_code=exit_code, log_path=log_path
                )
            raise StageError(
                message,
                stage=stage.value,
                package=label,
                exit_code=exit_code,
                log_path=log_path,
            )

    async def compile(self, config_path: Path, base_path: Path, label: str) -> None:
        cmd = compose_compile_command(self.settings, config_path)
        await self._run(cmd, StageName.COMPILE, label, cwd=base_path)

    async def bundle(self, options: BundleOptions, label: str) -> None:
        options.dest.parent.mkdir(parents=True, exist_ok=True)
        stage = (
            StageName.BUNDLE_ES
            if options.format is BundleFormat.ES
            else StageName.BUNDLE_UMD
        )
        await self._run(compose_bundle_command(self.settings, options), stage, label)

    async def downlevel(self, source: Path, dest: Path, label: str) -> None:
        out_dir = dest.parent / f".downlevel-{_safe_label(label)}"
        if out_dir.exists():
            shutil.rmtree(out_dir)
        try:
            cmd = compose_downlevel_command(self.settings, source, out_dir)
            await self._run(cmd, StageName.DOWNLEVEL, label)
            relocate_output(out_dir / source.name, dest)
        finally:
            shutil.rmtree(out_dir, ignore_errors=True)

    async def minify(self, source: Path, dest: Path, label: str) -> None:
        cmd = compose_minify_command(self.settings, source, dest)
        await self._run(cmd, StageName.MINIFY, label)


__all__ = [
    "BundleOptions",
    "SubprocessToolchain",
    "Toolchain",
    "compose_bundle_command",
    "compose_compile_command",
    "compose_downlevel_command",
    "compose_minify_command",
    "relocate_output",
]
