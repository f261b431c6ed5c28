"""libpackager - Release packaging for modular front-end component libraries.

This package builds a primary package and its secondary entry points into
flat ES2015, ES5, UMD and minified UMD bundles, and composes a versioned
release tree from them.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
