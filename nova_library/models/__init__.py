"""
Models package

Repositories:
    BookRepository - Book catalog and categories (book.py)
    LoanRepository - Loans, penalties and member statistics (loan.py)
    SystemLog      - Audit trail of scheduler and lifecycle events (system_log.py)
"""
from nova_library.models.book import BookRepository, image_url, resolve_image_path, upload_cover
from nova_library.models.database import Database, close_db, get_db, init_db
from nova_library.models.loan import LoanRepository, calculate_penalty
from nova_library.models.statistics import StatisticsRefresher, refresh_materialized_view
from nova_library.models.system_log import SystemLog

__all__ = [
    'BookRepository', 'LoanRepository', 'SystemLog',
    'resolve_image_path', 'image_url', 'upload_cover', 'calculate_penalty',
    'StatisticsRefresher', 'refresh_materialized_view',
    'Database', 'init_db', 'get_db', 'close_db'
]
