"""
Command-line interface for zenith.

This package contains CLI implementations using Click.
Uses only the public API: from zenith import ...
"""

from zenith.cli.commands import cli, main

__all__ = ["cli", "main"]
