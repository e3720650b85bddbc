"""Mockify: overlay an image onto a background video and render the result."""

__version__ = "0.1.0"
