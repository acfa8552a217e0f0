"""Decorators for repositories and routes.

This module contains the error fallback used at the repository boundary
and the login check used to protect routes.
"""
import logging
from functools import wraps
from typing import Any, Callable

from flask import abort, session

from nova_library.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def fallback_on_error(default: Callable[[], Any]) -> Callable:
    """Decorator converting a ``PersistenceError`` into a benign result.

    The failure is logged and ``default()`` is returned, so callers see an
    empty list, zero, ``None`` or ``False`` instead of an exception.
    Repositories created with ``strict=True`` re-raise the error instead.

    Args:
        default: Factory for the value returned on failure.

    Returns:
        A decorator for repository methods.

    Example:
        @fallback_on_error(list)
        def list_all(self):
            return self.db.fetch_all('SELECT * FROM books')
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(self, *args, **kwargs):
            try:
                return f(self, *args, **kwargs)
            except PersistenceError as e:
                logger.error(f"Error in {type(self).__name__}.{f.__name__}(): {e}")
                if getattr(self, 'strict', False):
                    raise
                return default()
        return decorated_function
    return decorator


def login_required(f: Callable) -> Callable:
    """Decorator to require an authenticated borrower for a route.

    Authentication itself happens elsewhere; this only checks that
    ``session['user_id']`` has been set.

    Args:
        f: The function to decorate.

    Returns:
        The decorated function, which aborts with 401 when nobody is logged in.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            abort(401)
        return f(*args, **kwargs)
    return decorated_function
