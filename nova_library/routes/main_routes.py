"""Server-rendered pages for the library backend.

This module handles the dashboard, catalog browsing, book details and
the borrower's loan overview.
"""
from flask import (Blueprint, current_app, flash, redirect, render_template,
                   request, send_from_directory, session, url_for)

from nova_library.models.book import image_url
from nova_library.routes.helpers import book_repository, loan_repository
from nova_library.utils.decorators import login_required

# Create main blueprint
main_bp = Blueprint('main', __name__)


@main_bp.app_template_filter('cover_url')
def cover_url_filter(image_path):
    return image_url(image_path, current_app.config['ASSET_URL_PREFIX'])


@main_bp.route('/')
def dashboard():
    """Display the dashboard with catalog and lending figures.

    Returns:
        Rendered dashboard template.
    """
    books = book_repository()
    loans = loan_repository()
    return render_template(
        'pages/dashboard.html',
        total_books=books.count_all(),
        available_books=books.count_available(),
        active_loans=loans.count_active(),
        overdue_loans=loans.count_overdue(),
        recent_loans=loans.list_recent(limit=5),
        popular_books=books.list_popular(limit=5)
    )


@main_bp.route('/catalog')
def catalog():
    """Browse the catalog.

    Query parameters:
        category: Only show books of this category id
        available: ``1`` to only show available books

    Returns:
        Rendered catalog page.
    """
    books = book_repository()
    category_id = request.args.get('category', type=int)
    available_only = request.args.get('available') == '1'

    if category_id:
        rows = books.list_by_category(category_id)
    elif available_only:
        rows = books.list_available()
    else:
        rows = books.list_all()

    return render_template(
        'pages/catalog.html',
        books=rows,
        categories=books.list_categories(),
        selected_category=category_id,
        available_only=available_only
    )


@main_bp.route('/book/<int:book_id>')
def book_detail(book_id: int):
    """Display detailed information about a specific book.

    Args:
        book_id: Unique identifier of the book.

    Returns:
        Rendered book detail page or redirect to the catalog if not found.
    """
    book = book_repository().get_by_id(book_id)
    if not book:
        flash('Book not found', 'error')
        return redirect(url_for('main.catalog'))

    return render_template(
        'pages/book_detail.html',
        book=book,
        on_loan=loan_repository().has_active_loan(book_id)
    )


@main_bp.route('/my-loans')
@login_required
def my_loans():
    """Display the logged-in borrower's loans, penalties and statistics."""
    user_id = session['user_id']
    loans = loan_repository()
    return render_template(
        'pages/my_loans.html',
        active_loans=loans.list_active_by_user(user_id),
        history=loans.list_by_user(user_id),
        total_penalty=loans.get_total_penalty_by_user(user_id),
        stats=loans.get_member_stats(user_id),
        max_loans=current_app.config['MAX_LOANS_PER_USER']
    )


@main_bp.route('/public/<path:filename>')
def public_asset(filename: str):
    """Serve covers and other files stored under the public folder."""
    return send_from_directory(current_app.config['PUBLIC_FOLDER'], filename)
