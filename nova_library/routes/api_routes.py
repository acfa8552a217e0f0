"""API endpoints for AJAX requests.

This module handles the JSON endpoints used by the search box and by
catalog and lending tools. Every response uses the
``{success, message?, data}`` envelope.
"""
import logging
import os
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, request, session

from nova_library.models.book import BookRepository, image_url, upload_cover
from nova_library.routes.helpers import book_repository, json_response, loan_repository
from nova_library.utils.decorators import login_required
from nova_library.utils.exceptions import CoverStorageError, LibraryError, ValidationError

logger = logging.getLogger(__name__)

# Create API blueprint
api_bp = Blueprint('api', __name__)

SEARCH_ERROR_MESSAGE = 'Something went wrong while searching. Please try again.'


def _with_image_url(book: Dict[str, Any]) -> Dict[str, Any]:
    book['image_url'] = image_url(book.get('image_path'), current_app.config['ASSET_URL_PREFIX'])
    return book


def _parse_limit(raw: Optional[str]) -> int:
    """Parse the ``limit`` query parameter, clamped to ``[0, SEARCH_MAX_LIMIT]``."""
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        limit = current_app.config['SEARCH_LIMIT']
    return max(0, min(limit, current_app.config['SEARCH_MAX_LIMIT']))


def _parse_popular_limit(raw: Optional[str]) -> int:
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        limit = 5
    return max(0, min(limit, current_app.config['SEARCH_MAX_LIMIT']))


def _book_payload() -> Dict[str, Any]:
    """Collect and validate book fields from a JSON body or a form."""
    data = request.get_json(silent=True) or request.form.to_dict()
    BookRepository.validate(data)
    return data


def _store_cover(data: Dict[str, Any]) -> Optional[str]:
    """Save the uploaded ``cover`` file, if any, into ``data['image_path']``."""
    cover = request.files.get('cover')
    if not (cover and cover.filename):
        return None
    data['image_path'] = upload_cover(cover, current_app.config['UPLOAD_FOLDER'])
    return data['image_path']


def _discard_cover(image_path: Optional[str]) -> None:
    """Remove a cover stored for a request that did not persist it."""
    if not image_path:
        return
    path = os.path.join(current_app.config['UPLOAD_FOLDER'], os.path.basename(image_path))
    try:
        os.remove(path)
    except OSError as e:
        logger.warning(f"Could not remove unused cover {path}: {e}")


@api_bp.errorhandler(ValidationError)
def handle_validation_error(error: ValidationError):
    return json_response(message=str(error), success=False, status=400)


@api_bp.errorhandler(CoverStorageError)
def handle_storage_error(error: CoverStorageError):
    logger.error(f"Cover storage error: {error}")
    return json_response(message='Could not store the cover image', success=False, status=500)


# ==================== Search ====================

@api_bp.route('/books/search', methods=['GET'])
def search_books():
    """Search books by title, author or category.

    Query params:
        q: Search query, at least 2 characters.
        limit: Maximum results (default 20, at most 50).

    Returns:
        JSON envelope with the matching books and their ``image_url``.
    """
    query = request.args.get('q', '').strip()
    limit = _parse_limit(request.args.get('limit'))
    min_length = current_app.config['SEARCH_MIN_QUERY_LENGTH']

    if len(query) < min_length:
        return json_response(
            message=f'Query must be at least {min_length} characters',
            success=False
        )

    try:
        books = book_repository(strict=True).search(query, limit)
    except LibraryError as e:
        logger.error(f"Search error: {e}")
        return json_response(message=SEARCH_ERROR_MESSAGE, success=False)

    books = [_with_image_url(book) for book in books]
    return json_response(books, count=len(books))


# ==================== Catalog ====================

@api_bp.route('/books', methods=['GET'])
def list_books():
    books = book_repository()
    if request.args.get('category'):
        rows = books.list_by_category(request.args.get('category', type=int))
    elif request.args.get('available') == '1':
        rows = books.list_available()
    else:
        rows = books.list_all()
    return json_response([_with_image_url(row) for row in rows])


@api_bp.route('/books/popular', methods=['GET'])
def popular_books():
    limit = _parse_popular_limit(request.args.get('limit'))
    rows = book_repository().list_popular(limit)
    return json_response([_with_image_url(row) for row in rows])


@api_bp.route('/books/<int:book_id>', methods=['GET'])
def get_book(book_id: int):
    book = book_repository().get_by_id(book_id)
    if not book:
        return json_response(message='Book not found', success=False, status=404)
    book = _with_image_url(book)
    book['on_loan'] = loan_repository().has_active_loan(book_id)
    return json_response(book)


@api_bp.route('/books', methods=['POST'])
def create_book():
    """Add a book to the catalog.

    Accepts JSON or a multipart form with an optional ``cover`` file. The
    cover is only kept when the book is stored.

    Returns:
        JSON envelope with the new ``book_id``.
    """
    data = _book_payload()
    cover_path = _store_cover(data)
    book_id = None
    try:
        book_id = book_repository().create(data)
    finally:
        if book_id is None:
            _discard_cover(cover_path)
    if book_id is None:
        return json_response(message='Failed to create book', success=False, status=500)
    return json_response({'book_id': book_id}, message='Book created successfully', status=201)


@api_bp.route('/books/<int:book_id>', methods=['PUT'])
def update_book(book_id: int):
    books = book_repository()
    existing = books.get_by_id(book_id)
    if not existing:
        return json_response(message='Book not found', success=False, status=404)

    data = _book_payload()
    cover_path = _store_cover(data)
    data.setdefault('image_path', existing['image_path'])
    updated = False
    try:
        updated = books.update(book_id, data)
    finally:
        if not updated:
            _discard_cover(cover_path)
    if not updated:
        return json_response(message='Failed to update book', success=False, status=500)
    return json_response({'book_id': book_id}, message='Book updated successfully')


@api_bp.route('/books/<int:book_id>', methods=['DELETE'])
def delete_book(book_id: int):
    if not book_repository().delete(book_id):
        return json_response(message='Book not found or still referenced by loans',
                             success=False, status=400)
    return json_response(message='Book deleted successfully')


@api_bp.route('/categories', methods=['GET'])
def list_categories():
    return json_response(book_repository().list_categories())


# ==================== Lending ====================

@api_bp.route('/loans', methods=['GET'])
def list_loans():
    loans = loan_repository()
    rows = loans.list_all() if request.args.get('all') == '1' else loans.list_active()
    return json_response(rows)


@api_bp.route('/loans/overdue', methods=['GET'])
def list_overdue_loans():
    return json_response(loan_repository().list_overdue())


@api_bp.route('/loans', methods=['POST'])
def create_loan():
    """Lend a book.

    Body:
        book_id: Book to lend.
        user_id: Borrower; defaults to the logged-in user.
        duration_days: Loan period (default 14).

    Returns:
        JSON envelope with the new ``loan_id``.
    """
    data = request.get_json(silent=True) or request.form.to_dict()
    try:
        book_id = int(data['book_id'])
        user_id = int(data.get('user_id') or session['user_id'])
        duration = data.get('duration_days')
        if duration in (None, ''):
            duration = current_app.config['LOAN_DURATION_DAYS']
        duration = int(duration)
    except (KeyError, TypeError, ValueError):
        raise ValidationError('book_id, user_id and a numeric duration_days are required')
    if duration <= 0:
        raise ValidationError('duration_days must be positive')

    books = book_repository()
    if not books.get_by_id(book_id):
        return json_response(message='Book not found', success=False, status=404)

    loan_id = loan_repository().create_loan(user_id, book_id, duration)
    if loan_id is None:
        return json_response(message='Failed to create loan', success=False, status=500)
    return json_response({'loan_id': loan_id}, message='Loan created successfully', status=201)


@api_bp.route('/loans/<int:loan_id>/return', methods=['POST'])
def return_loan(loan_id: int):
    penalty = loan_repository().return_loan(loan_id)
    if penalty is None:
        return json_response(message='No active loan found', success=False, status=404)
    return json_response({'loan_id': loan_id, 'penalty_amount': penalty},
                         message='Book returned successfully')


# ==================== Current borrower ====================

@api_bp.route('/me/loans', methods=['GET'])
@login_required
def my_loans():
    loans = loan_repository()
    if request.args.get('active') == '1':
        rows = loans.list_active_by_user(session['user_id'])
    else:
        rows = loans.list_by_user(session['user_id'])
    return json_response(rows)


@api_bp.route('/me/penalty', methods=['GET'])
@login_required
def my_penalty():
    total = loan_repository().get_total_penalty_by_user(session['user_id'])
    return json_response({'total_penalty': total})


@api_bp.route('/me/stats', methods=['GET'])
@login_required
def my_stats():
    stats = loan_repository().get_member_stats(session['user_id'])
    return json_response(stats or {})
