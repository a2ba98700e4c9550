"""Marketplace synchronization and caching core for the inventory system."""

__version__ = "0.1.0"
