"""Brenner Agent - delta parsing, merge, lint and rendering for research threads."""

__version__ = "0.1.0"
