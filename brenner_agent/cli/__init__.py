"""Brenner Agent CLI."""

from .app import build_parser, main, run_command

__all__ = ["build_parser", "main", "run_command"]
