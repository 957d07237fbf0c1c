"""Incremental sync of Readeck bookmarks into a Markdown vault."""

__version__ = "0.4.0"
