"""Package-scoped compiler configuration.

Each package is compiled with its own configuration file. By default the
configuration is built from typed models; a JSON template with
``${placeholder}`` markers can be supplied instead. Templates are
validated once, before any package is built, so an unknown or missing
placeholder aborts the whole build.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from libpackager.errors import ConfigurationError, TemplatePlaceholderError

if TYPE_CHECKING:
    from libpackager.config import Settings
    from libpackager.packages.models import BuildPackage

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\$\{(\w+)\}")

KNOWN_PLACEHOLDERS = frozenset(
    {"basePath", "entryFile", "projectRoot", "moduleId", "packageName", "outDir"}
)
REQUIRED_PLACEHOLDERS = frozenset({"basePath", "entryFile", "moduleId"})


class CompilerOptions(BaseModel):
    """TypeScript compiler options used for library builds."""

    model_config = ConfigDict(populate_by_name=True)

    base_url: str = Field(alias="baseUrl")
    root_dir: str = Field(alias="rootDir")
    out_dir: str = Field(alias="outDir")
    declaration: bool = True
    strip_internal: bool = Field(default=False, alias="stripInternal")
    experimental_decorators: bool = Field(default=True, alias="experimentalDecorators")
    emit_decorator_metadata: bool = Field(default=True, alias="emitDecoratorMetadata")
    module: str = "es2015"
    module_resolution: str = Field(default="node", alias="moduleResolution")
    target: str = "es2015"
    lib: list[str] = Field(default_factory=lambda: ["es2015", "dom"])
    source_map: bool = Field(default=True, alias="sourceMap")
    inline_sources: bool = Field(default=True, alias="inlineSources")
    skip_lib_check: bool = Field(default=True, alias="skipLibCheck")
    types: list[str] = Field(default_factory=list)
    paths: dict[str, list[str]] = Field(default_factory=dict)


class AngularCompilerOptions(BaseModel):
    """Ahead-of-time compiler options producing a flat module."""

    model_config = ConfigDict(populate_by_name=True)

    annotate_for_closure_compiler: bool = Field(
        default=True, alias="annotateForClosureCompiler"
    )
    strict_metadata_emit: bool = Field(default=True, alias="strictMetadataEmit")
    skip_template_codegen: bool = Field(default=True, alias="skipTemplateCodegen")
    flat_module_out_file: str = Field(alias="flatModuleOutFile")
    flat_module_id: str = Field(alias="flatModuleId")


class CompilerConfig(BaseModel):
    """A complete package-scoped compiler configuration document."""

    model_config = ConfigDict(populate_by_name=True)

    compiler_options: CompilerOptions = Field(alias="compilerOptions")
    files: list[str]
    angular_compiler_options: AngularCompilerOptions = Field(
        alias="angularCompilerOptions"
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def placeholder_values(package: BuildPackage, settings: Settings) -> dict[str, str]:
    """Return the placeholder substitutions for a package."""
    return {
        "basePath": str(package.source_path),
        "entryFile": str(package.source_path / settings.entry_module),
        "projectRoot": str(settings.project_root),
        "moduleId": package.import_name,
        "packageName": package.name,
        "outDir": str(package.output_path),
    }


def build_compiler_config(package: BuildPackage, settings: Settings) -> CompilerConfig:
    """Build the default compiler configuration of a package."""
    root = package.parent if package.parent is not None else package
    values = placeholder_values(package, settings)

    return CompilerConfig(
        compiler_options=CompilerOptions(
            base_url=values["basePath"],
            root_dir=values["basePath"],
            out_dir=values["outDir"],
            paths={
                f"{root.import_name}/*": [
                    str(package.layout.packages_root / root.name / "*")
                ],
            },
        ),
        files=[values["entryFile"]],
        angular_compiler_options=AngularCompilerOptions(
            flat_module_out_file=package.entry_file.name,
            flat_module_id=values["moduleId"],
        ),
    )


def _collect_placeholders(value: Any, found: set[str]) -> None:
    if isinstance(value, str):
        found.update(PLACEHOLDER_RE.findall(value))
    elif isinstance(value, dict):
        for key, item in value.items():
            _collect_placeholders(key, found)
            _collect_placeholders(item, found)
    elif isinstance(value, list):
        for item in value:
            _collect_placeholders(item, found)


def _substitute(value: Any, values: dict[str, str]) -> Any:
    if isinstance(value, str):
        return PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], value)
    if isinstance(value, dict):
        return {
            _substitute(key, values): _substitute(item, values)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_substitute(item, values) for item in value]
    return value


def load_template(path: Path) -> dict[str, Any]:
    """Load a compiler configuration template.

    Raises:
        ConfigurationError: If the template is not a JSON object.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot read compiler configuration template {path}: {e}",
            code="template_invalid",
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Compiler configuration template {path} must be a JSON object",
            code="template_invalid",
        )
    return data


def validate_template(template: dict[str, Any]) -> None:
    """Check a template for unknown and missing placeholders.

    Raises:
        TemplatePlaceholderError: If a placeholder is unknown or a
            required one is absent.
    """
    found: set[str] = set()
    _collect_placeholders(template, found)

    unknown = sorted(found - KNOWN_PLACEHOLDERS)
    if unknown:
        raise TemplatePlaceholderError(
            f"Unknown placeholder(s) in compiler template: {', '.join(unknown)}",
            unknown,
        )

    missing = sorted(REQUIRED_PLACEHOLDERS - found)
    if missing:
        raise TemplatePlaceholderError(
            f"Missing required placeholder(s) in compiler template: "
            f"{', '.join(missing)}",
            missing,
        )


def render_template(
    template: dict[str, Any], package: BuildPackage, settings: Settings
) -> dict[str, Any]:
    """Substitute a package's values into a validated template."""
    validate_template(template)
    return _substitute(template, placeholder_values(package, settings))


def materialize_compiler_config(
    package: BuildPackage,
    settings: Settings,
    template: dict[str, Any] | None = None,
) -> Path:
    """Write the compiler configuration of a package to a file.

    Args:
        package: Package to configure.
        settings: Application settings.
        template: Optional validated template; typed defaults otherwise.

    Returns:
        Path of the written configuration file.
    """
    if template is not None:
        document = render_template(template, package, settings)
    else:
        document = build_compiler_config(package, settings).to_dict()

    config_dir = package.layout.dist_root / "tsconfig"
    if package.parent is not None:
        config_dir = config_dir / package.parent.name
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / f"{package.name}.json"

    with config_path.open("w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
        f.write("\n")

    logger.debug("Wrote compiler configuration for %s: %s", package.name, config_path)
    return config_path


__all__ = [
    "KNOWN_PLACEHOLDERS",
    "REQUIRED_PLACEHOLDERS",
    "AngularCompilerOptions",
    "CompilerConfig",
    "CompilerOptions",
    "build_compiler_config",
    "load_template",
    "materialize_compiler_config",
    "placeholder_values",
    "render_template",
    "validate_template",
]
