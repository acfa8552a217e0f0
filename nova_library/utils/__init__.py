"""Utilities package for the library backend.

This package contains exceptions, decorators and helpers used across
the application.
"""
from nova_library.utils.decorators import fallback_on_error, login_required
from nova_library.utils.exceptions import (
    CoverStorageError,
    LibraryError,
    PersistenceError,
    ValidationError,
)

__all__ = [
    'fallback_on_error',
    'login_required',
    'LibraryError',
    'ValidationError',
    'PersistenceError',
    'CoverStorageError',
]
