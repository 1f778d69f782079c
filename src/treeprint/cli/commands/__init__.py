"""CLI commands for treeprint."""

from . import diff, scan, verify

__all__ = ["diff", "scan", "verify"]
