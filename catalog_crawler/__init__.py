"""Stealth crawler for JavaScript-rendered retail catalogs."""

__version__ = "0.1.0"
