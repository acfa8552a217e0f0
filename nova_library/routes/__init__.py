"""Routes package initialization.

This module exports all blueprints for registration in the main app.

Blueprint organization:
    - main_bp: Server-rendered pages (dashboard, catalog, book details, loans)
    - api_bp: AJAX/JSON API endpoints (search, catalog, lending)
"""
from nova_library.routes.api_routes import api_bp
from nova_library.routes.main_routes import main_bp

__all__ = [
    'main_bp',
    'api_bp',
]
