import os
from datetime import date, timedelta

import pytest

from nova_library.app import create_app
from nova_library.config.config import TestConfig
from nova_library.models.book import BookRepository
from nova_library.models.database import Database, init_db
from nova_library.models.loan import LoanRepository


class FakeClock:
    """Settable replacement for ``date.today``."""

    def __init__(self, today):
        self.today = today

    def __call__(self):
        return self.today

    def advance(self, days):
        self.today += timedelta(days=days)


@pytest.fixture
def clock():
    return FakeClock(date(2024, 3, 1))


@pytest.fixture
def db(tmp_path, request):
    # One database file per test
    database = Database(str(tmp_path / f"test_{request.node.name}.db"))
    init_db(database)
    yield database
    database.close()


@pytest.fixture
def category_id(db):
    with db.transaction():
        cursor = db.execute(
            "INSERT INTO categories (category_name, explanation) VALUES (?, ?)",
            ("Fiction", "Novels and short stories")
        )
    return cursor.lastrowid


@pytest.fixture
def books(db):
    return BookRepository(db)


@pytest.fixture
def loans(db, clock):
    return LoanRepository(db, clock=clock)


@pytest.fixture
def make_book(books, category_id):
    def _make_book(title, author="Some Author", **fields):
        data = {"category_id": category_id, "title": title, "author": author}
        data.update(fields)
        return books.create(data)
    return _make_book


@pytest.fixture
def app(tmp_path, clock):
    class AppTestConfig(TestConfig):
        DATABASE_PATH = str(tmp_path / "app.db")
        PUBLIC_FOLDER = str(tmp_path / "public")
        UPLOAD_FOLDER = os.path.join(str(tmp_path), "public", "img", "books")

    yield create_app(AppTestConfig, clock=clock)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_category_id(app):
    from nova_library.models.database import get_db

    with app.app_context():
        db = get_db()
        with db.transaction():
            cursor = db.execute(
                "INSERT INTO categories (category_name, explanation) VALUES (?, ?)",
                ("Science", "Natural and applied sciences")
            )
        return cursor.lastrowid
