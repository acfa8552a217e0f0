"""NOVA Library - catalog, search and lending backend."""

__version__ = '0.1.0'
