"""Exception types raised by the library backend."""


class LibraryError(Exception):
    """Base class for all library backend errors."""


class ValidationError(LibraryError):
    """Bad input: short query, missing book fields, rejected cover upload."""


class PersistenceError(LibraryError):
    """A query or transaction failed in the database."""


class CoverStorageError(LibraryError, IOError):
    """A cover file could not be written to the upload folder."""
