"""Configuration file for the NOVA Library Flask application.

This module contains all configuration settings for the library backend,
including database paths, cover upload settings, search limits and
lending business rules.
"""
import os
from typing import Dict

BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class Config:
    """Base configuration class for the Flask application.

    Contains all application settings including:
    - Database connection settings
    - Cover upload restrictions and image path conventions
    - Search limits
    - Lending business rules (loan duration, penalties, loan cap)

    Attributes:
        SECRET_KEY (str): Secret key for session signing.
        DATABASE_PATH (str): Path to the SQLite database file.
        LOAD_SAMPLE_DATA (bool): Seed default categories on an empty database.
        PUBLIC_FOLDER (str): Directory served under ``/public``.
        UPLOAD_FOLDER (str): Directory where book covers are stored.
        ALLOWED_COVER_TYPES (Dict[str, str]): Accepted MIME types and the
            file extension used for each.
        MAX_COVER_SIZE (int): Maximum cover size in bytes.
        MAX_CONTENT_LENGTH (int): Maximum request body size in bytes.
        PENALTY_BASE_RATE (int): Penalty per day late, in minor currency units.
        PENALTY_TYPE (str): Penalty model tag, only ``linear`` is supported.
        LOAN_DURATION_DAYS (int): Default loan period in days.
        MAX_LOANS_PER_USER (int): Declared loan cap, not enforced here.
        SEARCH_LIMIT (int): Default number of search results.
        SEARCH_MAX_LIMIT (int): Hard cap on search results.
        SEARCH_MIN_QUERY_LENGTH (int): Shortest accepted search query.
        STATS_REFRESH_MODE (str): ``inline`` or ``background``.
        START_SCHEDULER (bool): Start the background task scheduler.
    """

    SECRET_KEY: str = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database configuration
    DATABASE_PATH: str = os.environ.get('DATABASE_PATH') or os.path.join(
        BASE_DIR, 'data', 'library.db'
    )
    LOAD_SAMPLE_DATA: bool = os.environ.get('LOAD_SAMPLE_DATA', '1') == '1'

    # Image and upload configuration
    PUBLIC_FOLDER: str = os.path.join(BASE_DIR, 'public')
    UPLOAD_FOLDER: str = os.path.join(BASE_DIR, 'public', 'img', 'books')
    IMAGE_PATH_PREFIX: str = 'public/'
    COVER_PATH_PREFIX: str = 'public/img/books/'
    LEGACY_IMAGE_PREFIX: str = '/images/books/'
    DEFAULT_BOOK_IMAGE: str = 'public/img/books/default-book.jpg'
    ASSET_URL_PREFIX: str = os.environ.get('ASSET_URL_PREFIX', '/')
    ALLOWED_COVER_TYPES: Dict[str, str] = {
        'image/jpeg': 'jpg',
        'image/png': 'png',
        'image/webp': 'webp',
    }
    MAX_COVER_SIZE: int = 5 * 1024 * 1024  # 5MB
    MAX_CONTENT_LENGTH: int = 6 * 1024 * 1024  # cover plus form fields

    # Lending business rules
    PENALTY_BASE_RATE: int = 2000  # per day late
    PENALTY_TYPE: str = 'linear'
    LOAN_DURATION_DAYS: int = 14
    MAX_LOANS_PER_USER: int = 3

    # Search configuration
    SEARCH_LIMIT: int = 20
    SEARCH_MAX_LIMIT: int = 50
    SEARCH_MIN_QUERY_LENGTH: int = 2

    # Background tasks
    STATS_REFRESH_MODE: str = os.environ.get('STATS_REFRESH_MODE', 'background')
    START_SCHEDULER: bool = os.environ.get('START_SCHEDULER', '1') == '1'
    LOG_LEVEL: str = os.environ.get('LOG_LEVEL', 'INFO')


class TestConfig(Config):
    """Configuration used by the test suite."""

    TESTING: bool = True
    SECRET_KEY: str = 'test-secret-key'
    LOAD_SAMPLE_DATA: bool = False
    STATS_REFRESH_MODE: str = 'inline'
    START_SCHEDULER: bool = False
