# weblog/__init__.py
"""Embedded analytics for comma-delimited web access logs."""

__version__ = "0.1.0"
