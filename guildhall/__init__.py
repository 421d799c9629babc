"""Guildhall: Discord community bot with a premium dashboard API."""

__version__ = "1.0.0"
