"""Command line interface for treeprint."""
