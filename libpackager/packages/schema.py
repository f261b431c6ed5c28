"""Pydantic models for package configuration files.

This module defines the models for validating per-directory dependency
declarations and for emitting package descriptors of secondary entry
points in the release tree.
"""

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

# Key of a dependency declaration that applies to every package at a level
WILDCARD = "*"


class DependencyDeclaration(RootModel[dict[str, list[str]]]):
    """Mapping from package name (or ``*``) to the packages it builds after.

    Example::

        {"*": ["core"], "dialog": ["overlay", "portal"]}
    """

    root: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("root")
    @classmethod
    def validate_names(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        """Validate that package names are non-empty strings."""
        for name, deps in v.items():
            if not name.strip():
                raise ValueError("package names must not be empty")
            for dep in deps:
                if not dep.strip():
                    raise ValueError(f"empty dependency name declared for '{name}'")
        return v

    @property
    def wildcard(self) -> list[str]:
        """Dependencies shared by every package at this level."""
        return self.root.get(WILDCARD, [])

    def dependencies_of(self, name: str) -> list[str]:
        """Return the dependencies declared specifically for ``name``."""
        return self.root.get(name, [])

    def declared_packages(self) -> list[str]:
        """Return every package name used as a key (wildcard excluded)."""
        return [name for name in self.root if name != WILDCARD]


class SecondaryPackageJson(BaseModel):
    """Nested ``package.json`` of a secondary entry point in a release.

    All paths are relative to the secondary entry point's directory.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(description="Import name of the entry point")
    typings: str = Field(description="Path to the type declarations")
    main: str = Field(description="Path to the UMD bundle")
    module: str = Field(description="Path to the flat ES5 bundle")
    es2015: str = Field(description="Path to the flat ES2015 bundle")


__all__ = [
    "WILDCARD",
    "DependencyDeclaration",
    "SecondaryPackageJson",
]
