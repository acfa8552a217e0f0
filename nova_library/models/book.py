"""Book catalog module.

This module defines the catalog repository for books and categories,
the image path resolution rules and the cover upload helper.
"""
import logging
import os
import time
import uuid
from typing import Any, Dict, List, Mapping, Optional

from werkzeug.datastructures import FileStorage

from nova_library.config.config import Config
from nova_library.models.database import Database, get_db
from nova_library.utils.decorators import fallback_on_error
from nova_library.utils.exceptions import CoverStorageError, ValidationError

logger = logging.getLogger(__name__)

BOOK_COLUMNS = '''b.book_id, b.title, b.author, b.publisher, b.published_year,
                  b.image_path, b.book_status, b.synopsis,
                  c.category_id, c.category_name'''

REQUIRED_FIELDS = ('category_id', 'title', 'author')


def resolve_image_path(image_path: Optional[str]) -> str:
    """Normalize a stored image path to the current storage layout.

    Args:
        image_path: Path as stored, possibly empty or in the legacy form.

    Returns:
        The path unchanged when it already uses the ``public/`` prefix,
        the legacy ``/images/books/`` form rewritten to ``public/img/books/``,
        or the default cover for anything else.

    Example:
        >>> resolve_image_path('/images/books/x.jpg')
        'public/img/books/x.jpg'
    """
    if not image_path:
        return Config.DEFAULT_BOOK_IMAGE
    if image_path.startswith(Config.IMAGE_PATH_PREFIX):
        return image_path
    if image_path.startswith(Config.LEGACY_IMAGE_PREFIX):
        return Config.COVER_PATH_PREFIX + image_path[len(Config.LEGACY_IMAGE_PREFIX):]
    return Config.DEFAULT_BOOK_IMAGE


def image_url(image_path: Optional[str], prefix: Optional[str] = None) -> str:
    """Build the public URL of a book cover under the asset root."""
    if prefix is None:
        prefix = Config.ASSET_URL_PREFIX
    return prefix.rstrip('/') + '/' + resolve_image_path(image_path)


def _stream_size(file: FileStorage) -> int:
    stream = file.stream
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def upload_cover(file: FileStorage, upload_folder: Optional[str] = None) -> str:
    """Store an uploaded book cover.

    Args:
        file: Uploaded file with a declared MIME type.
        upload_folder: Target directory. Defaults to ``Config.UPLOAD_FOLDER``.

    Returns:
        Relative path of the stored cover, e.g. ``public/img/books/book_...jpg``.

    Raises:
        ValidationError: If the type is not JPEG, PNG or WEBP, or the file
            is larger than 5MB.
        CoverStorageError: If the folder cannot be created or written to.
    """
    extension = Config.ALLOWED_COVER_TYPES.get(file.mimetype)
    if extension is None:
        logger.warning(f"Upload rejected: invalid file type {file.mimetype}")
        raise ValidationError('Invalid file type. Allowed: JPG, PNG, WEBP')

    size = _stream_size(file)
    if size > Config.MAX_COVER_SIZE:
        logger.warning(f"Upload rejected: file too large ({size} bytes)")
        raise ValidationError('File too large. Max 5MB')

    folder = upload_folder or Config.UPLOAD_FOLDER
    try:
        os.makedirs(folder, exist_ok=True)
    except OSError as e:
        raise CoverStorageError(f'Cannot create upload directory: {folder}') from e
    if not os.access(folder, os.W_OK):
        raise CoverStorageError(f'Upload directory is not writable: {folder}')

    filename = f'book_{int(time.time())}_{uuid.uuid4().hex[:13]}.{extension}'
    try:
        file.save(os.path.join(folder, filename))
    except OSError as e:
        logger.error(f"Upload failed: could not save {filename}: {e}")
        raise CoverStorageError('Failed to save uploaded file. Check permissions.') from e

    logger.info(f"Stored cover {filename}")
    return Config.COVER_PATH_PREFIX + filename


def _none_if_empty(value: Any) -> Any:
    return value if value not in (None, '') else None


class BookRepository:
    """Data access for the book catalog.

    Every query method logs and degrades to an empty result when the
    database fails, unless the repository was created with ``strict=True``.

    Attributes:
        db (Database): Query gateway.
        strict (bool): Re-raise ``PersistenceError`` instead of degrading.
    """

    def __init__(self, db: Optional[Database] = None, strict: bool = False) -> None:
        self.db = db if db is not None else get_db()
        self.strict = strict

    @fallback_on_error(list)
    def list_all(self) -> List[Dict[str, Any]]:
        """Retrieve all books with their category, ordered by id."""
        return self.db.fetch_all(f'''
            SELECT {BOOK_COLUMNS}
            FROM books b
            LEFT JOIN categories c ON b.category_id = c.category_id
            ORDER BY b.book_id ASC
        ''')

    @fallback_on_error(lambda: None)
    def get_by_id(self, book_id: int) -> Optional[Dict[str, Any]]:
        """Retrieve a book by its ID.

        Args:
            book_id: The unique identifier of the book.

        Returns:
            Book row including ``category_explanation``, or None.
        """
        return self.db.fetch_one(f'''
            SELECT {BOOK_COLUMNS}, c.explanation AS category_explanation
            FROM books b
            LEFT JOIN categories c ON b.category_id = c.category_id
            WHERE b.book_id = ?
            LIMIT 1
        ''', (book_id,))

    @fallback_on_error(lambda: None)
    def create(self, data: Mapping[str, Any]) -> Optional[int]:
        """Create a new book in the catalog.

        Args:
            data: Book fields. ``category_id``, ``title`` and ``author`` are
                required; ``publisher``, ``published_year``, ``synopsis`` and
                ``image_path`` are optional.

        Returns:
            The new ``book_id``, or None if the insert failed.

        Raises:
            ValidationError: If a required field is missing.
        """
        self.validate(data)
        with self.db.transaction():
            cursor = self.db.execute('''
                INSERT INTO books (category_id, title, author, publisher, published_year,
                                   image_path, synopsis, book_status)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1)
            ''', (data['category_id'], data['title'], data['author'],
                  _none_if_empty(data.get('publisher')),
                  _none_if_empty(data.get('published_year')),
                  data.get('image_path') or Config.DEFAULT_BOOK_IMAGE,
                  _none_if_empty(data.get('synopsis'))))
        logger.info(f"Created book {cursor.lastrowid}: {data['title']}")
        return cursor.lastrowid

    @fallback_on_error(lambda: False)
    def update(self, book_id: int, data: Mapping[str, Any]) -> bool:
        """Replace every editable field of a book.

        Returns:
            True if a book was updated.
        """
        self.validate(data)
        with self.db.transaction():
            cursor = self.db.execute('''
                UPDATE books
                SET category_id = ?, title = ?, author = ?, publisher = ?,
                    published_year = ?, image_path = ?, synopsis = ?
                WHERE book_id = ?
            ''', (data['category_id'], data['title'], data['author'],
                  _none_if_empty(data.get('publisher')),
                  _none_if_empty(data.get('published_year')),
                  data.get('image_path') or Config.DEFAULT_BOOK_IMAGE,
                  _none_if_empty(data.get('synopsis')),
                  book_id))
        return cursor.rowcount > 0

    @fallback_on_error(lambda: False)
    def delete(self, book_id: int) -> bool:
        """Delete a book permanently.

        Books with loan history are protected by the loans foreign key,
        so the delete fails for them.
        """
        with self.db.transaction():
            cursor = self.db.execute('DELETE FROM books WHERE book_id = ?', (book_id,))
        return cursor.rowcount > 0

    @fallback_on_error(list)
    def list_by_category(self, category_id: int) -> List[Dict[str, Any]]:
        return self.db.fetch_all(f'''
            SELECT {BOOK_COLUMNS}
            FROM books b
            LEFT JOIN categories c ON b.category_id = c.category_id
            WHERE b.category_id = ?
            ORDER BY b.title ASC
        ''', (category_id,))

    @fallback_on_error(list)
    def list_available(self) -> List[Dict[str, Any]]:
        return self.db.fetch_all(f'''
            SELECT {BOOK_COLUMNS}
            FROM books b
            LEFT JOIN categories c ON b.category_id = c.category_id
            WHERE b.book_status = 1
            ORDER BY b.title ASC
        ''')

    @fallback_on_error(list)
    def search(self, keyword: str, limit: int = Config.SEARCH_LIMIT) -> List[Dict[str, Any]]:
        """Search books by title, author or category name.

        Matching is a case-insensitive substring test that also folds
        non-ASCII letters, so ``éclair`` finds "Éclair". Keywords shorter
        than ``SEARCH_MIN_QUERY_LENGTH`` return no rows without querying.

        Args:
            keyword: Text to look for.
            limit: Maximum number of rows.

        Returns:
            Matching books ordered by title.
        """
        keyword = (keyword or '').strip()
        if len(keyword) < Config.SEARCH_MIN_QUERY_LENGTH:
            return []

        escaped = keyword.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
        term = f'%{escaped.casefold()}%'
        return self.db.fetch_all(f'''
            SELECT {BOOK_COLUMNS}
            FROM books b
            LEFT JOIN categories c ON b.category_id = c.category_id
            WHERE casefold(b.title) LIKE ? ESCAPE '\\'
               OR casefold(b.author) LIKE ? ESCAPE '\\'
               OR casefold(c.category_name) LIKE ? ESCAPE '\\'
            ORDER BY b.title ASC
            LIMIT ?
        ''', (term, term, term, max(0, int(limit))))

    @fallback_on_error(list)
    def list_categories(self) -> List[Dict[str, Any]]:
        return self.db.fetch_all('''
            SELECT category_id, category_name, explanation
            FROM categories
            ORDER BY category_name ASC
        ''')

    @fallback_on_error(int)
    def count_all(self) -> int:
        return self.db.scalar('SELECT COUNT(*) FROM books')

    @fallback_on_error(int)
    def count_available(self) -> int:
        return self.db.scalar('SELECT COUNT(*) FROM books WHERE book_status = 1')

    @fallback_on_error(list)
    def list_popular(self, limit: int = 5) -> List[Dict[str, Any]]:
        """Retrieve the most borrowed books from the popularity statistics.

        The statistics are precomputed and may lag behind the loans table
        until the next refresh.
        """
        return self.db.fetch_all('''
            SELECT p.book_title AS title, p.total_borrowed,
                   b.book_id, b.author, b.image_path, c.category_name
            FROM popular_books_stats p
            LEFT JOIN books b ON p.book_id = b.book_id
            LEFT JOIN categories c ON b.category_id = c.category_id
            ORDER BY p.total_borrowed DESC, p.book_title ASC
            LIMIT ?
        ''', (max(0, int(limit)),))

    @staticmethod
    def validate(data: Mapping[str, Any]) -> None:
        """Raise ``ValidationError`` if a required book field is missing."""
        missing = [field for field in REQUIRED_FIELDS if data.get(field) in (None, '')]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
