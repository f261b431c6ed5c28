"""Per-package bundle pipeline.

Turns the compiler's flat ES module output of one entry point into four
bundles, strictly in sequence:

1. flat ES2015 bundle (external imports left unresolved)
2. ES5 downlevel of that bundle, still using ES module syntax
3. pure-call annotation of the ES5 bundle
4. UMD bundle of the ES5 bundle
5. minified UMD bundle

After every stage that writes a new file, the file's source map is
collapsed onto the original sources.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

from libpackager.builds.annotate import add_pure_annotations_to_file
from libpackager.builds.runner import BundleOptions, Toolchain
from libpackager.builds.sourcemaps import remap_sourcemap
from libpackager.errors import BuildAbortedError, StageError
from libpackager.types import BundleArtifacts, BundleFormat, StageName

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_stage(
    stage: StageName,
    label: str,
    action: Callable[[], Awaitable[T]],
    abort: asyncio.Event | None = None,
) -> T:
    """Run one stage, attributing any failure to the stage and package.

    Raises:
        BuildAbortedError: If the build was aborted before the stage.
        StageError: If the stage fails.
    """
    if abort is not None and abort.is_set():
        raise BuildAbortedError(f"Build aborted before {stage.value} of {label}")

    logger.info("[%s] %s", label, stage.value)
    try:
        result = await action()
    except StageError as e:
        if e.package is None:
            e.package = label
        raise
    except (BuildAbortedError, asyncio.CancelledError):
        raise
    except Exception as e:
        raise StageError(
            f"{stage.value} for {label} failed: {e}",
            stage=stage.value,
            package=label,
        ) from e
    logger.debug("[%s] %s done", label, stage.value)
    return result


async def run_pipeline(
    entry_file: Path,
    module_name: str,
    output_dir: Path,
    toolchain: Toolchain,
    *,
    bundle_name: str,
    external_globals: dict[str, str] | None = None,
    banner: str = "",
    label: str | None = None,
    abort: asyncio.Event | None = None,
) -> BundleArtifacts:
    """Build the bundles of one entry point.

    Args:
        entry_file: Flat ES module entry emitted by the compiler.
        module_name: UMD global name of the entry point.
        output_dir: Directory receiving the bundles.
        toolchain: External tools.
        bundle_name: Base file name of the bundles.
        external_globals: External module id to global name mapping.
        banner: License banner of the UMD bundle.
        label: Name used in logs and errors (defaults to module name).
        abort: Event that stops the pipeline before its next stage.

    Returns:
        Paths of the produced bundles.

    Raises:
        StageError: If any stage fails; remaining stages are skipped.
        BuildAbortedError: If ``abort`` was set.
    """
    label = label or module_name
    external = dict(external_globals or {})
    artifacts = BundleArtifacts.for_bundle(output_dir, bundle_name)
    output_dir.mkdir(parents=True, exist_ok=True)

    async def bundle_es() -> None:
        await toolchain.bundle(
            BundleOptions(
                entry=entry_file,
                dest=artifacts.fesm2015,
                format=BundleFormat.ES,
                module_name=module_name,
                globals=external,
            ),
            label,
        )
        await remap_sourcemap(artifacts.fesm2015)

    async def downlevel() -> None:
        await toolchain.downlevel(artifacts.fesm2015, artifacts.fesm5, label)
        await remap_sourcemap(artifacts.fesm5)

    async def annotate() -> int:
        return await asyncio.to_thread(add_pure_annotations_to_file, artifacts.fesm5)

    async def bundle_umd() -> None:
        await toolchain.bundle(
            BundleOptions(
                entry=artifacts.fesm5,
                dest=artifacts.umd,
                format=BundleFormat.UMD,
                module_name=module_name,
                globals=external,
                banner=banner,
            ),
            label,
        )
        await remap_sourcemap(artifacts.umd)

    async def minify() -> None:
        await toolchain.minify(artifacts.umd, artifacts.umd_min, label)
        await remap_sourcemap(artifacts.umd_min)

    await run_stage(StageName.BUNDLE_ES, label, bundle_es, abort)
    await run_stage(StageName.DOWNLEVEL, label, downlevel, abort)
    await run_stage(StageName.ANNOTATE, label, annotate, abort)
    await run_stage(StageName.BUNDLE_UMD, label, bundle_umd, abort)
    await run_stage(StageName.MINIFY, label, minify, abort)

    logger.info("[%s] bundles written to %s", label, output_dir)
    return artifacts


__all__ = ["run_pipeline", "run_stage"]
