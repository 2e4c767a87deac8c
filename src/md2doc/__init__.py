"""Markdown to HTML/PDF document assembly."""

from .version import __version__

__all__ = ["__version__"]
