"""Allow running the CLI with ``python -m libpackager``."""

from libpackager.cli import app

if __name__ == "__main__":
    app()
