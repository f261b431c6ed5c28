"""Build orchestration module.

This module handles:
- Compiler configuration per entry point
- Running the external compiler, bundler, transpiler and minifier
- Collapsing sourcemap chains
- Pure-call annotation of ES5 bundles
- Build records and the package build graph
"""

from libpackager.builds.service import BuildRecord, PackageBuilder, build_library

__all__ = ["BuildRecord", "PackageBuilder", "build_library"]

# Lazy imports for submodules to avoid circular imports
# Access via libpackager.builds.sourcemaps, etc.
