"""Book lending module.

Loans move from active to returned; being overdue is never stored and is
derived from the due date whenever loans are listed. Penalties grow
linearly with the number of calendar days a loan is late.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from nova_library.config.config import Config
from nova_library.models.database import Database, get_db
from nova_library.models.statistics import StatisticsRefresher
from nova_library.utils.decorators import fallback_on_error

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime, str]

LOAN_COLUMNS = '''l.loan_id, l.user_id, l.book_id, l.loan_date, l.due_date, l.return_date,
                  b.title, b.author, b.image_path'''


def to_date(value: DateLike) -> date:
    """Coerce a date, datetime or ISO string to a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def days_overdue(due_date: DateLike, today: Optional[date] = None) -> int:
    """Whole calendar days between the due date and today, floored at 0."""
    today = today or date.today()
    return max(0, (today - to_date(due_date)).days)


def calculate_penalty(due_date: DateLike, base_rate: int = Config.PENALTY_BASE_RATE,
                      today: Optional[date] = None) -> int:
    """Calculate the penalty owed for a loan.

    Only the calendar date matters, so repeated calls on the same day give
    the same amount whatever the time of day.

    Args:
        due_date: Loan due date.
        base_rate: Amount charged per day late.
        today: Reference date. Defaults to today.

    Returns:
        0 if the loan is not late, otherwise ``base_rate * days_late``.

    Example:
        >>> calculate_penalty(date(2024, 1, 1), 2000, today=date(2024, 1, 11))
        20000
    """
    if Config.PENALTY_TYPE != 'linear':
        raise ValueError(f"Unsupported penalty type: {Config.PENALTY_TYPE}")
    return base_rate * days_overdue(due_date, today)


class LoanRepository:
    """Data access for book loans, penalties and member statistics.

    Attributes:
        db (Database): Query gateway.
        refresher (StatisticsRefresher): Hook run after loan writes.
        clock (Callable[[], date]): Source of today's date.
        strict (bool): Re-raise ``PersistenceError`` instead of degrading.
    """

    def __init__(self, db: Optional[Database] = None,
                 refresher: Optional[StatisticsRefresher] = None,
                 clock: Callable[[], date] = date.today,
                 strict: bool = False) -> None:
        self.db = db if db is not None else get_db()
        self.refresher = refresher or StatisticsRefresher()
        self.clock = clock
        self.strict = strict

    def _annotate(self, rows: List[Dict[str, Any]], with_penalty: bool = False) -> List[Dict[str, Any]]:
        today = self.clock()
        for row in rows:
            overdue = row.get('return_date') is None and to_date(row['due_date']) < today
            row['is_overdue'] = overdue
            row['days_overdue'] = days_overdue(row['due_date'], today) if overdue else 0
            if with_penalty:
                row['penalty_amount'] = calculate_penalty(row['due_date'], today=today) if overdue else 0
        return rows

    @fallback_on_error(list)
    def list_active(self) -> List[Dict[str, Any]]:
        """Loans not yet returned, newest first."""
        return self.db.fetch_all(f'''
            SELECT {LOAN_COLUMNS}
            FROM loans l
            JOIN books b ON l.book_id = b.book_id
            WHERE l.return_date IS NULL
            ORDER BY l.loan_date DESC, l.loan_id DESC
        ''')

    @fallback_on_error(list)
    def list_all(self) -> List[Dict[str, Any]]:
        """Every loan, newest first, flagged with ``is_overdue``."""
        rows = self.db.fetch_all(f'''
            SELECT {LOAN_COLUMNS}
            FROM loans l
            JOIN books b ON l.book_id = b.book_id
            ORDER BY l.loan_date DESC, l.loan_id DESC
        ''')
        return self._annotate(rows)

    @fallback_on_error(list)
    def list_overdue(self) -> List[Dict[str, Any]]:
        """Active loans past their due date, oldest due date first.

        Each row carries ``days_overdue`` and ``penalty_amount``.
        """
        rows = self.db.fetch_all(f'''
            SELECT {LOAN_COLUMNS}
            FROM loans l
            JOIN books b ON l.book_id = b.book_id
            WHERE l.return_date IS NULL AND l.due_date < ?
            ORDER BY l.due_date ASC, l.loan_id ASC
        ''', (self.clock().isoformat(),))
        return self._annotate(rows, with_penalty=True)

    @fallback_on_error(int)
    def count_active(self) -> int:
        return self.db.scalar('SELECT COUNT(*) FROM loans WHERE return_date IS NULL')

    @fallback_on_error(int)
    def count_overdue(self) -> int:
        return self.db.scalar(
            'SELECT COUNT(*) FROM loans WHERE return_date IS NULL AND due_date < ?',
            (self.clock().isoformat(),)
        )

    @fallback_on_error(list)
    def list_recent(self, limit: int = 5) -> List[Dict[str, Any]]:
        """Most recent active loans for dashboard widgets."""
        return self.db.fetch_all('''
            SELECT l.loan_id, l.user_id, l.book_id, l.loan_date, l.due_date,
                   b.title, b.author
            FROM loans l
            JOIN books b ON l.book_id = b.book_id
            WHERE l.return_date IS NULL
            ORDER BY l.loan_date DESC, l.loan_id DESC
            LIMIT ?
        ''', (limit,))

    @fallback_on_error(list)
    def list_by_user(self, user_id: int) -> List[Dict[str, Any]]:
        """Full loan history of one borrower, newest first."""
        rows = self.db.fetch_all(f'''
            SELECT {LOAN_COLUMNS}, b.synopsis, c.category_name
            FROM loans l
            JOIN books b ON l.book_id = b.book_id
            LEFT JOIN categories c ON b.category_id = c.category_id
            WHERE l.user_id = ?
            ORDER BY l.loan_date DESC, l.loan_id DESC
        ''', (user_id,))
        return self._annotate(rows)

    @fallback_on_error(list)
    def list_active_by_user(self, user_id: int) -> List[Dict[str, Any]]:
        """Active loans of one borrower with the penalty accrued so far."""
        rows = self.db.fetch_all(f'''
            SELECT {LOAN_COLUMNS}, b.synopsis, c.category_name
            FROM loans l
            JOIN books b ON l.book_id = b.book_id
            LEFT JOIN categories c ON b.category_id = c.category_id
            WHERE l.user_id = ? AND l.return_date IS NULL
            ORDER BY l.due_date ASC, l.loan_id ASC
        ''', (user_id,))
        return self._annotate(rows, with_penalty=True)

    @fallback_on_error(int)
    def count_active_by_user(self, user_id: int) -> int:
        return self.db.scalar(
            'SELECT COUNT(*) FROM loans WHERE user_id = ? AND return_date IS NULL',
            (user_id,)
        )

    @fallback_on_error(lambda: False)
    def has_active_loan(self, book_id: int) -> bool:
        """True if the book is currently lent out."""
        return self.db.scalar(
            'SELECT COUNT(*) FROM loans WHERE book_id = ? AND return_date IS NULL',
            (book_id,)
        ) > 0

    @fallback_on_error(int)
    def get_total_penalty_by_user(self, user_id: int) -> int:
        """Sum of the penalties recorded in the ledger for one borrower."""
        return self.db.scalar(
            'SELECT COALESCE(SUM(amount), 0) FROM penalties WHERE user_id = ?',
            (user_id,)
        )

    @fallback_on_error(lambda: None)
    def get_member_stats(self, user_id: int) -> Optional[Dict[str, Any]]:
        """Precomputed summary of one borrower, or None."""
        return self.db.fetch_one(
            'SELECT * FROM member_stats WHERE user_id = ? LIMIT 1',
            (user_id,)
        )

    @fallback_on_error(lambda: None)
    def create_loan(self, user_id: int, book_id: int,
                    duration_days: int = Config.LOAN_DURATION_DAYS) -> Optional[int]:
        """Lend a book to a borrower.

        The loan starts today and is due ``duration_days`` later. Neither the
        borrower's loan count nor the book's availability is checked here.

        Args:
            user_id: Borrower identifier.
            book_id: Book being lent.
            duration_days: Loan period in days.

        Returns:
            The new ``loan_id``, or None if the insert failed.
        """
        loan_date = self.clock()
        due_date = loan_date + timedelta(days=int(duration_days))
        with self.db.transaction():
            cursor = self.db.execute('''
                INSERT INTO loans (user_id, book_id, loan_date, due_date)
                VALUES (?, ?, ?, ?)
            ''', (user_id, book_id, loan_date.isoformat(), due_date.isoformat()))
        loan_id = cursor.lastrowid
        logger.info(f"Created loan {loan_id}: book {book_id} to user {user_id}, "
                    f"due {due_date.isoformat()}")

        self.refresher.request(self.db, today=loan_date)
        return loan_id

    @fallback_on_error(lambda: None)
    def return_loan(self, loan_id: int) -> Optional[int]:
        """Close an active loan and charge any late penalty.

        Args:
            loan_id: Loan to close.

        Returns:
            The penalty charged (0 when on time), or None if the loan does
            not exist or was already returned.
        """
        today = self.clock()
        loan = self.db.fetch_one(
            'SELECT loan_id, user_id, due_date FROM loans WHERE loan_id = ? AND return_date IS NULL',
            (loan_id,)
        )
        if loan is None:
            return None

        penalty = calculate_penalty(loan['due_date'], today=today)
        with self.db.transaction():
            cursor = self.db.execute(
                'UPDATE loans SET return_date = ? WHERE loan_id = ? AND return_date IS NULL',
                (today.isoformat(), loan_id)
            )
            if cursor.rowcount == 0:
                return None
            if penalty > 0:
                self.db.execute('''
                    INSERT INTO penalties (user_id, loan_id, amount, recorded_at)
                    VALUES (?, ?, ?, ?)
                ''', (loan['user_id'], loan_id, penalty, today.isoformat()))
        logger.info(f"Returned loan {loan_id} with penalty {penalty}")

        self.refresher.request(self.db, today=today)
        return penalty
