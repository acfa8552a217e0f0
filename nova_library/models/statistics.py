"""Precomputed statistics tables.

The popularity ranking and the per-member summary are stored as plain
tables and rebuilt on demand instead of being aggregated on every read.
Writes that affect them ask a ``StatisticsRefresher`` to rebuild them
after commit, either inline or as a one-shot background job.
"""
import logging
from datetime import date, datetime
from typing import Iterable, Optional

from nova_library.models.database import Database
from nova_library.utils.exceptions import LibraryError

logger = logging.getLogger(__name__)

POPULAR_BOOKS = 'popular_books_stats'
MEMBER_STATS = 'member_stats'

MATERIALIZED_VIEWS = {
    POPULAR_BOOKS: '''
        INSERT INTO popular_books_stats (book_id, book_title, total_borrowed)
        SELECT b.book_id, b.title, COUNT(l.loan_id)
        FROM loans l
        JOIN books b ON l.book_id = b.book_id
        GROUP BY b.book_id, b.title
    ''',
    MEMBER_STATS: '''
        INSERT INTO member_stats (user_id, total_loans, active_loans, returned_loans,
                                  overdue_loans, total_penalty, last_loan_date, refreshed_at)
        SELECT l.user_id,
               COUNT(*),
               SUM(CASE WHEN l.return_date IS NULL THEN 1 ELSE 0 END),
               SUM(CASE WHEN l.return_date IS NOT NULL THEN 1 ELSE 0 END),
               SUM(CASE WHEN l.return_date IS NULL AND l.due_date < :today THEN 1 ELSE 0 END),
               COALESCE((SELECT SUM(p.amount) FROM penalties p WHERE p.user_id = l.user_id), 0),
               MAX(l.loan_date),
               :now
        FROM loans l
        GROUP BY l.user_id
    ''',
}

LOAN_STATISTICS = (MEMBER_STATS, POPULAR_BOOKS)


def refresh_materialized_view(db: Database, name: str, today: Optional[date] = None) -> None:
    """Rebuild one statistics table in a single transaction.

    Args:
        db: Query gateway.
        name: One of ``MATERIALIZED_VIEWS``.
        today: Reference date for overdue counts. Defaults to today.

    Raises:
        ValueError: If ``name`` is not a known statistics table.
        PersistenceError: If the rebuild fails; the old contents are kept.
    """
    if name not in MATERIALIZED_VIEWS:
        raise ValueError(f"Unknown materialized view: {name}")

    params = {
        'today': (today or date.today()).isoformat(),
        'now': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
    }
    with db.transaction():
        db.execute(f'DELETE FROM {name}')
        db.execute(MATERIALIZED_VIEWS[name], params)
    logger.debug(f"Refreshed {name}")


def refresh_best_effort(db: Database, names: Iterable[str], today: Optional[date] = None) -> bool:
    """Refresh statistics tables, logging failures instead of raising.

    Returns:
        True if every table was refreshed.
    """
    ok = True
    for name in names:
        try:
            refresh_materialized_view(db, name, today)
        except LibraryError as e:
            logger.error(f"Error refreshing {name}: {e}")
            ok = False
    return ok


def refresh_views_job(database_path: str, names: Iterable[str]) -> None:
    """Background job body: refresh using a dedicated connection."""
    try:
        db = Database(database_path)
    except LibraryError as e:
        logger.error(f"Statistics refresh skipped, cannot open database: {e}")
        return
    try:
        refresh_best_effort(db, names)
    finally:
        db.close()


class StatisticsRefresher:
    """Post-commit hook that keeps the statistics tables fresh.

    Without a running scheduler the refresh happens inline on the caller's
    connection. With one, a one-shot job is queued per set of tables; a
    job still pending is replaced, so bursts of writes cause one refresh.
    Either way a failing refresh is logged and never reaches the caller.

    Attributes:
        scheduler: APScheduler scheduler used for background refreshes.
    """

    def __init__(self, scheduler=None) -> None:
        self.scheduler = scheduler

    @property
    def background(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def request(self, db: Database, names: Iterable[str] = LOAN_STATISTICS,
                today: Optional[date] = None) -> None:
        names = tuple(names)
        if self.background and db.path != ':memory:':
            try:
                self.scheduler.add_job(
                    func=refresh_views_job,
                    trigger='date',
                    args=[db.path, names],
                    id=f"refresh_{'_'.join(names)}",
                    name='Refresh statistics tables',
                    replace_existing=True
                )
                return
            except Exception as e:
                logger.error(f"Could not queue statistics refresh, refreshing inline: {e}")
        refresh_best_effort(db, names, today)
