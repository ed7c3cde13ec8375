"""Batch receipt extraction through an external inference service."""

__version__ = "0.3.0"
