"""Phrames campaign monetization backend."""

__version__ = "1.4.0"
