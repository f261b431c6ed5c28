"""Thin CLI wrapper for libpackager.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import asyncio
from typing import Annotated, Any

import typer
from rich.console import Console

from libpackager import __version__
from libpackager.config import get_settings, print_settings_json
from libpackager.errors import BuildGraphError, PackagerError, StageError
from libpackager.log import setup_logging

app = typer.Typer(
    name="libpackager",
    help="Library packager - build bundles and releases of component libraries",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"libpackager version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Library packager - build bundles and releases of component libraries."""


def _error_to_dict(error: BaseException) -> dict[str, Any]:
    data: dict[str, Any] = {
        "type": type(error).__name__,
        "code": getattr(error, "code", None),
        "message": str(error),
    }
    if isinstance(error, StageError):
        data["stage"] = error.stage
        data["package"] = error.package
        data["exit_code"] = error.exit_code
        data["log_path"] = str(error.log_path) if error.log_path else None
    return data


def _report_errors(errors: list[BaseException], json_output: bool) -> None:
    if json_output:
        console.print_json(
            data={"success": False, "errors": [_error_to_dict(e) for e in errors]}
        )
        return

    console.print(f"[red]Build failed with {len(errors)} error(s):[/red]")
    for error in errors:
        if isinstance(error, StageError) and error.package:
            console.print(f"  [red]✗ {error.package}[/red] ({error.stage})")
            console.print(f"      {error}", markup=False)
            if error.log_path:
                console.print(f"      Log: {error.log_path}", markup=False)
        else:
            code = getattr(error, "code", type(error).__name__)
            console.print(f"  [red]✗ {code}[/red]")
            console.print(f"      {error}", markup=False)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print_json(print_settings_json(settings))
    else:
        template_display = (
            str(settings.tsconfig_template)
            if settings.tsconfig_template
            else "(typed configuration)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Project root:        {settings.project_root}")
        console.print(f"  Source directory:    {settings.source_dir}")
        console.print(f"  Dist directory:      {settings.dist_dir}")
        console.print(f"  Compiler template:   {template_display}")
        console.print()
        console.print("[bold]Packages:[/bold]")
        console.print(f"  Scope:               {settings.scope}", markup=False)
        console.print(f"  Global namespace:    {settings.global_namespace}")
        console.print(f"  Release version:     {settings.release_version}")
        console.print(f"  Dependency file:     {settings.dependency_file}")
        console.print(f"  Entry module:        {settings.entry_module}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")
        console.print(f"  Tool timeout:        {settings.tool_timeout}")


@app.command()
def resolve(
    package: Annotated[str, typer.Argument(help="Name of the primary package")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the build order of a package's secondary entry points."""
    from libpackager.packages import PackageLayout, create_build_package

    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        root = create_build_package(
            package,
            settings.source_dir / package,
            PackageLayout.from_settings(settings),
            entry_module=settings.entry_module,
            dependency_file=settings.dependency_file,
        )
    except FileNotFoundError as e:
        console.print(f"[red]Package not found: {e}[/red]")
        raise typer.Exit(code=1) from None
    except PackagerError as e:
        console.print(f"[red]Error ({e.code}):[/red] {e}")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print_json(
            data={
                "package": root.import_name,
                "order": [s.name for s in root.secondaries],
                "dependencies": {
                    s.name: list(s.dependencies) for s in root.secondaries
                },
            }
        )
        return

    console.print(f"[bold]{root.import_name}[/bold]")
    if not root.secondaries:
        console.print("  No secondary entry points")
        return
    for index, secondary in enumerate(root.secondaries, start=1):
        deps = ", ".join(secondary.dependencies) or "-"
        console.print(f"  {index}. {secondary.name} (depends on: {deps})")


@app.command()
def build(
    package: Annotated[str, typer.Argument(help="Name of the primary package")],
    release_version: Annotated[
        str | None,
        typer.Option("--version", help="Release version (overrides settings)"),
    ] = None,
    no_release: Annotated[
        bool,
        typer.Option("--no-release", help="Only build bundles, skip the release"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build a package and its secondary entry points.

    Compiles every entry point in dependency order, produces the flat
    ES2015, ES5, UMD and minified UMD bundles, and composes the release
    tree. All failed entry points are listed when the build fails.
    """
    from libpackager.builds.service import build_library

    settings = get_settings()
    if release_version:
        settings = settings.model_copy(update={"release_version": release_version})
    setup_logging(settings.log_level)

    try:
        root = asyncio.run(
            build_library(package, settings=settings, compose=not no_release)
        )
    except BuildGraphError as e:
        _report_errors(e.errors, json_output)
        raise typer.Exit(code=1) from None
    except (FileNotFoundError, PackagerError) as e:
        _report_errors([e], json_output)
        raise typer.Exit(code=1) from None

    release_dir = None if no_release else root.release_path
    if json_output:
        console.print_json(
            data={
                "success": True,
                "package": root.import_name,
                "entry_points": [
                    {
                        "name": p.import_name,
                        "module_name": p.module_name,
                        "bundles": [str(f) for f in p.bundle_artifacts().files()],
                    }
                    for p in root.iter_packages()
                ],
                "release": str(release_dir) if release_dir else None,
            }
        )
        return

    console.print(f"[green]✓ Built {root.import_name}[/green]")
    for p in root.iter_packages():
        console.print(f"  {p.import_name} ({p.module_name})", markup=False)
    if release_dir:
        console.print(f"  Release: {release_dir}", markup=False)


__all__ = ["app"]
