"""
Roost error taxonomy.

Every failure the credential store reports derives from RoostError so the
front-end can catch one type and print one line. Low-level errors (OSError,
JSON and base64 decoding errors) are translated at the module boundary that
first sees them.
"""


class RoostError(Exception):
    """Base exception for all Roost failures."""


class ValidationError(RoostError):
    """A required field is empty or an optional field is malformed."""


class InvalidPassword(RoostError):
    """The supplied master password does not match the database."""

    def __init__(self, message: str = "Invalid password"):
        super().__init__(message)


class AlreadyExists(RoostError):
    """The database file to be created is already present."""


class NotFound(RoostError):
    """The database file does not exist."""


class StorageError(RoostError):
    """Reading or writing a database file failed at the filesystem level."""


class FormatError(RoostError):
    """The database document is corrupt or does not match the schema."""


class UnsupportedCipher(FormatError):
    """The document names a cipher this build does not implement."""


class DecryptError(RoostError):
    """An encrypted blob is malformed (bad base64 or shorter than an IV)."""


class IndexOutOfRange(RoostError, IndexError):
    """An entry index is outside the current entry list."""


class SessionClosed(RoostError):
    """A closed session was used for a store operation."""


class EntropyUnavailable(RoostError):
    """The operating system's secure random source failed."""


class ConfigError(RoostError):
    """The settings file is unreadable or holds invalid values."""
