"""Release composition module.

This module handles:
- Inlining component templates and styles into metadata
- Copying bundles, typings and package files into the release tree
- Package descriptors for secondary entry points
- Release manifest generation
"""

from libpackager.release.compose import compose_release

__all__ = ["compose_release"]
