"""Command line entry point."""

from lifestory.cli.main import cli

__all__ = ["cli"]
