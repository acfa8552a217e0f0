"""Request-scoped helpers shared by the blueprints."""
from datetime import date

from flask import current_app, jsonify

from nova_library.models.book import BookRepository
from nova_library.models.database import get_db
from nova_library.models.loan import LoanRepository


def book_repository(strict: bool = False) -> BookRepository:
    return BookRepository(get_db(), strict=strict)


def loan_repository(strict: bool = False) -> LoanRepository:
    library = current_app.extensions['nova_library']
    return LoanRepository(
        get_db(),
        refresher=library['refresher'],
        clock=library.get('clock') or date.today,
        strict=strict
    )


def json_response(data=None, message=None, success=True, status=200, **extra):
    """Build the ``{success, message?, data}`` envelope used by the API."""
    payload = {'success': success}
    if message:
        payload['message'] = message
    payload.update(extra)
    payload['data'] = data if data is not None else []
    return jsonify(payload), status
