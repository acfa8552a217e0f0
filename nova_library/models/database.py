"""Database initialization and connection management.

This module provides the query gateway used by every repository, the
per-request connection handling for Flask, schema initialization and
sample data loading for the library backend.
"""
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from flask import current_app, g

from nova_library.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

Params = Union[Sequence[Any], Dict[str, Any]]

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS categories (
        category_id INTEGER PRIMARY KEY AUTOINCREMENT,
        category_name TEXT NOT NULL,
        explanation TEXT
    );

    CREATE TABLE IF NOT EXISTS books (
        book_id INTEGER PRIMARY KEY AUTOINCREMENT,
        category_id INTEGER,
        title TEXT NOT NULL,
        author TEXT NOT NULL,
        publisher TEXT,
        published_year INTEGER,
        image_path TEXT DEFAULT 'public/img/books/default-book.jpg',
        synopsis TEXT,
        book_status INTEGER NOT NULL DEFAULT 1
    );

    CREATE INDEX IF NOT EXISTS idx_books_title ON books (title);
    CREATE INDEX IF NOT EXISTS idx_books_author ON books (author);
    CREATE INDEX IF NOT EXISTS idx_books_category ON books (category_id);

    CREATE TABLE IF NOT EXISTS loans (
        loan_id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        book_id INTEGER NOT NULL,
        loan_date TEXT NOT NULL,
        due_date TEXT NOT NULL,
        return_date TEXT,
        FOREIGN KEY (book_id) REFERENCES books (book_id)
    );

    CREATE INDEX IF NOT EXISTS idx_loans_user ON loans (user_id);
    CREATE INDEX IF NOT EXISTS idx_loans_active ON loans (return_date, due_date);

    CREATE TABLE IF NOT EXISTS penalties (
        penalty_id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        loan_id INTEGER,
        amount INTEGER NOT NULL,
        recorded_at TEXT NOT NULL,
        FOREIGN KEY (loan_id) REFERENCES loans (loan_id)
    );

    CREATE TABLE IF NOT EXISTS popular_books_stats (
        book_id INTEGER PRIMARY KEY,
        book_title TEXT NOT NULL,
        total_borrowed INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS member_stats (
        user_id INTEGER PRIMARY KEY,
        total_loans INTEGER NOT NULL,
        active_loans INTEGER NOT NULL,
        returned_loans INTEGER NOT NULL,
        overdue_loans INTEGER NOT NULL,
        total_penalty INTEGER NOT NULL,
        last_loan_date TEXT,
        refreshed_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS system_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        action TEXT NOT NULL,
        details TEXT,
        log_type TEXT DEFAULT 'info',
        user_id INTEGER
    );
'''

SAMPLE_CATEGORIES = [
    ('Fiction', 'Novels and short stories'),
    ('Science', 'Natural and applied sciences'),
    ('History', 'Historical accounts and biographies'),
    ('Technology', 'Computing, engineering and programming'),
]


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if isinstance(value, str) else value


class Database:
    """Query gateway over a single SQLite connection.

    Every statement is parameterized. Driver errors are re-raised as
    ``PersistenceError`` so callers never see ``sqlite3`` exceptions.

    Attributes:
        path (str): Database file path, or ``:memory:``.
        conn (sqlite3.Connection): The open connection.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        try:
            if path != ':memory:':
                directory = os.path.dirname(path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
            self.conn = sqlite3.connect(path)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Cannot open database {path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        self.conn.execute('PRAGMA foreign_keys = ON')
        # SQLite's LIKE only folds ASCII letters
        self.conn.create_function('casefold', 1, _casefold, deterministic=True)

    def execute(self, query: str, params: Params = ()) -> sqlite3.Cursor:
        """Execute one parameterized statement.

        Raises:
            PersistenceError: If the driver rejects the statement.
        """
        try:
            return self.conn.execute(query, params)
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    def fetch_all(self, query: str, params: Params = ()) -> List[Dict[str, Any]]:
        return [dict(row) for row in self.execute(query, params).fetchall()]

    def fetch_one(self, query: str, params: Params = ()) -> Optional[Dict[str, Any]]:
        row = self.execute(query, params).fetchone()
        return dict(row) if row else None

    def scalar(self, query: str, params: Params = ()) -> Any:
        row = self.execute(query, params).fetchone()
        return row[0] if row else None

    def commit(self) -> None:
        try:
            self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    def rollback(self) -> None:
        try:
            self.conn.rollback()
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    @contextmanager
    def transaction(self) -> Iterator['Database']:
        """Commit on success, roll back and re-raise on any error."""
        try:
            yield self
            self.commit()
        except Exception:
            try:
                self.conn.rollback()
            except sqlite3.Error as e:
                logger.error(f"Rollback failed: {e}")
            raise

    def executescript(self, script: str) -> None:
        try:
            self.conn.executescript(script)
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    def close(self) -> None:
        self.conn.close()


def get_db() -> Database:
    """Get the database gateway bound to the Flask application context.

    Returns:
        Database gateway for the configured ``DATABASE_PATH``.
    """
    if 'db' not in g:
        g.db = Database(current_app.config['DATABASE_PATH'])
    return g.db


def close_db(e=None):
    """Close database connection"""
    db = g.pop('db', None)
    if db is not None:
        db.close()


def init_db(db: Database, load_sample_data: bool = False) -> None:
    """Create the schema and optionally seed default categories.

    Args:
        db: Gateway to initialize.
        load_sample_data: Insert ``SAMPLE_CATEGORIES`` when the table is empty.
    """
    db.executescript(SCHEMA)
    if load_sample_data:
        insert_sample_data(db)


def insert_sample_data(db: Database) -> None:
    """Insert default categories on an empty database."""
    if db.scalar('SELECT COUNT(*) FROM categories') > 0:
        return

    with db.transaction():
        for name, explanation in SAMPLE_CATEGORIES:
            db.execute(
                'INSERT INTO categories (category_name, explanation) VALUES (?, ?)',
                (name, explanation)
            )
    logger.info(f"Inserted {len(SAMPLE_CATEGORIES)} sample categories")
