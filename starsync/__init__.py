"""Incremental mirror of a GitHub user's starred repositories."""

__version__ = "0.4.0"
