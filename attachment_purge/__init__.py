"""Bulk attachment removal gated on verified backups."""

__version__ = '0.1.0'
