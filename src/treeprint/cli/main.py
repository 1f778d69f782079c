"""Main CLI entry point for treeprint."""  # pragma: no cover

from treeprint.cli.app import app  # pragma: no cover

# Register commands
from treeprint.cli.commands import diff, scan, verify  # pragma: no cover

__all__ = ["app", "diff", "scan", "verify"]  # pragma: no cover

if __name__ == "__main__":  # pragma: no cover
    app()
