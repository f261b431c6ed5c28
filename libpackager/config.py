"""Configuration settings for libpackager.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LICENSE_BANNER = """/**
 * @license
 * Copyright Google Inc. All Rights Reserved.
 *
 * Use of this source code is governed by an MIT-style license that can be
 * found in the LICENSE file at https://angular.io/license
 */"""


def _default_rollup_globals() -> dict[str, str]:
    """Return the default external module to UMD global mapping."""
    observable = "Rx.Observable"
    prototype = "Rx.Observable.prototype"
    return {
        # Framework packages
        "@angular/animations": "ng.animations",
        "@angular/core": "ng.core",
        "@angular/common": "ng.common",
        "@angular/forms": "ng.forms",
        "@angular/http": "ng.http",
        "@angular/platform-browser": "ng.platformBrowser",
        "@angular/platform-browser-dynamic": "ng.platformBrowserDynamic",
        "@angular/platform-browser/animations": "ng.platformBrowser.animations",
        # Reactive streams
        "rxjs/Subject": "Rx",
        "rxjs/Observable": "Rx",
        "rxjs/add/observable/fromEvent": observable,
        "rxjs/add/observable/forkJoin": observable,
        "rxjs/add/observable/of": observable,
        "rxjs/add/observable/merge": observable,
        "rxjs/add/observable/throw": observable,
        "rxjs/add/operator/auditTime": prototype,
        "rxjs/add/operator/toPromise": prototype,
        "rxjs/add/operator/map": prototype,
        "rxjs/add/operator/filter": prototype,
        "rxjs/add/operator/do": prototype,
        "rxjs/add/operator/share": prototype,
        "rxjs/add/operator/finally": prototype,
        "rxjs/add/operator/catch": prototype,
        "rxjs/add/operator/first": prototype,
        "rxjs/add/operator/startWith": prototype,
        "rxjs/add/operator/switchMap": prototype,
    }


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the LIBPKG_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIBPKG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    project_root: Path = Field(
        default_factory=Path.cwd,
        description="Root of the project (holds LICENSE)",
    )
    source_root: Path = Field(
        default=Path("src"),
        description="Directory containing package sources and README.md",
    )
    dist_root: Path = Field(
        default=Path("dist"),
        description="Root directory for build outputs and releases",
    )
    tsconfig_template: Path | None = Field(
        default=None,
        description="Optional JSON compiler configuration template",
    )

    # Naming
    scope: str = Field(
        default="@angular",
        description="npm scope of released packages",
    )
    global_namespace: str = Field(
        default="ng",
        description="Prefix of UMD global module names",
    )
    release_version: str = Field(
        default="0.0.0",
        description="Version written into released package.json files",
    )
    version_placeholder: str = Field(
        default="0.0.0-PLACEHOLDER",
        description="Placeholder version string in source package.json files",
    )
    license_banner: str = Field(
        default=DEFAULT_LICENSE_BANNER,
        description="License comment prepended to bundles and typings",
    )

    # Package discovery
    dependency_file: str = Field(
        default="package-config.json",
        description="Per-directory dependency declaration file",
    )
    entry_module: str = Field(
        default="index.ts",
        description="File whose presence marks a directory as a sub-package",
    )
    rollup_globals: dict[str, str] = Field(
        default_factory=_default_rollup_globals,
        description="External module id to UMD global name mapping",
    )

    # External tools
    ngc_command: list[str] = Field(default_factory=lambda: ["ngc"])
    rollup_command: list[str] = Field(default_factory=lambda: ["rollup"])
    tsc_command: list[str] = Field(default_factory=lambda: ["tsc"])
    uglify_command: list[str] = Field(default_factory=lambda: ["uglifyjs"])

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    max_concurrent_builds: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum package pipelines running at the same time",
    )
    tool_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for a single external tool invocation (seconds)",
    )

    def resolve_path(self, path: Path) -> Path:
        """Resolve a configured path against the project root."""
        if path.is_absolute():
            return path
        return self.project_root / path

    @property
    def source_dir(self) -> Path:
        return self.resolve_path(self.source_root)

    @property
    def dist_dir(self) -> Path:
        return self.resolve_path(self.dist_root)


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
