"""
Roost Database File Format

One database is one JSON document on disk:

    {
      "header": {"crypto": {"cipher": "AES-256", "compression": "none"}},
      "database": {
        "meta": {"name": ..., "description": ..., "hash": ..., "salt": ...},
        "entries": [{"id": ..., "title": ..., "username": ..., "password": ...,
                     "url": ..., "notes": ..., "created": ...}, ...]
      }
    }

The document is indented with a fixed key order so that successive
versions of a database diff cleanly. Every write replaces the whole file:
the new content goes to a temporary sibling file which is fsynced and then
renamed over the target, so a crash never leaves a half-written database.
Files are created owner-only (0600) and rewrites keep that mode.

The "compression" field is declared for forward compatibility but no
compression is ever applied.
"""

import os
import json
import logging
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .crypto import CIPHER_ID, SALT_SIZE
from .exceptions import (
    AlreadyExists, FormatError, NotFound, StorageError, UnsupportedCipher
)

logger = logging.getLogger(__name__)

# ==============================================================================
# FORMAT CONSTANTS
# ==============================================================================

# File suffix of database documents
DB_SUFFIX = ".json"

# Compression identifier written to new documents
COMPRESSION_NONE = "none"

# Compression identifiers accepted on read. "GZip" was declared by older
# files but never applied to their content.
ACCEPTED_COMPRESSION = (COMPRESSION_NONE, "GZip")

DEFAULT_DESCRIPTION = "Personal password database"

# Owner read/write only
FILE_MODE = 0o600

# ==============================================================================
# DOCUMENT MODEL
# ==============================================================================

@dataclass
class Entry:
    """One stored credential. Only the secret is encrypted."""

    id: str
    title: str
    secret_ciphertext: str
    username: str = ""
    url: str = ""
    notes: str = ""
    created: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "title": self.title,
            "username": self.username,
            "password": self.secret_ciphertext,
            "url": self.url,
            "notes": self.notes,
            "created": self.created,
        }

    @classmethod
    def from_dict(cls, data: Any, position: int) -> "Entry":
        where = f"entries[{position}]"
        if not isinstance(data, dict):
            raise FormatError(f"{where} must be an object")

        return cls(
            id=_require_str(data, "id", where),
            title=_require_str(data, "title", where),
            secret_ciphertext=_require_str(data, "password", where),
            username=_optional_str(data, "username", where),
            url=_optional_str(data, "url", where),
            notes=_optional_str(data, "notes", where),
            created=_optional_str(data, "created", where),
        )


@dataclass
class Document:
    """
    In-memory form of one database file.

    Attributes:
        name (str): Logical title, by convention the file name ("vault.json")
        description (str): Free text
        verification_tag (str): Hex tag over (name, master password)
        salt (str): Hex-encoded key derivation salt
        entries (List[Entry]): Ordered entries; list position is the index
            callers use for removal
        cipher_id (str): Symmetric algorithm identifier
        compression_id (str): Declared compression (never applied)
    """

    name: str
    description: str
    verification_tag: str
    salt: str
    entries: List[Entry] = field(default_factory=list)
    cipher_id: str = CIPHER_ID
    compression_id: str = COMPRESSION_NONE

    @property
    def salt_bytes(self) -> bytes:
        return bytes.fromhex(self.salt)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "header": {
                "crypto": {
                    "cipher": self.cipher_id,
                    "compression": self.compression_id,
                },
            },
            "database": {
                "meta": {
                    "name": self.name,
                    "description": self.description,
                    "hash": self.verification_tag,
                    "salt": self.salt,
                },
                "entries": [entry.to_dict() for entry in self.entries],
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Document":
        """
        Build a Document from parsed JSON, enforcing the schema.

        Raises:
            FormatError: On a missing field, a field of the wrong type,
                malformed hex, or an unknown compression identifier
            UnsupportedCipher: If the header names a different cipher
        """
        if not isinstance(data, dict):
            raise FormatError("Document root must be an object")

        header = _require_dict(data, "header", "document")
        crypto = _require_dict(header, "crypto", "header")
        cipher_id = _require_str(crypto, "cipher", "header.crypto")
        compression_id = _require_str(crypto, "compression", "header.crypto")

        if cipher_id != CIPHER_ID:
            raise UnsupportedCipher(
                f"Database uses cipher '{cipher_id}', this build implements '{CIPHER_ID}'"
            )
        if compression_id not in ACCEPTED_COMPRESSION:
            raise FormatError(f"Unsupported compression '{compression_id}'")

        database = _require_dict(data, "database", "document")
        meta = _require_dict(database, "meta", "database")
        raw_entries = database.get("entries")
        if raw_entries is None:
            raw_entries = []
        if not isinstance(raw_entries, list):
            raise FormatError("database.entries must be a list")

        document = cls(
            name=_require_str(meta, "name", "database.meta"),
            description=_optional_str(meta, "description", "database.meta"),
            verification_tag=_require_hex(meta, "hash", "database.meta"),
            salt=_require_hex(meta, "salt", "database.meta"),
            entries=[Entry.from_dict(item, i) for i, item in enumerate(raw_entries)],
            cipher_id=cipher_id,
            compression_id=compression_id,
        )

        if len(document.salt_bytes) != SALT_SIZE:
            raise FormatError(f"database.meta.salt must encode {SALT_SIZE} bytes")

        return document


def _require_dict(data: Dict, key: str, where: str) -> Dict:
    value = data.get(key)
    if not isinstance(value, dict):
        raise FormatError(f"{where}.{key} must be an object")
    return value


def _require_str(data: Dict, key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise FormatError(f"{where}.{key} must be a string")
    return value


def _optional_str(data: Dict, key: str, where: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise FormatError(f"{where}.{key} must be a string")
    return value


def _require_hex(data: Dict, key: str, where: str) -> str:
    value = _require_str(data, key, where)
    try:
        bytes.fromhex(value)
    except ValueError:
        raise FormatError(f"{where}.{key} is not valid hex") from None
    if not value:
        raise FormatError(f"{where}.{key} is empty")
    return value


def _fsync_directory(directory: str) -> None:
    """Persist a rename by syncing the directory entry (POSIX only)."""
    try:
        dir_fd = os.open(directory, os.O_RDONLY)
    except OSError as err:
        logger.debug("Cannot open %s for fsync: %s", directory, err)
        return
    try:
        os.fsync(dir_fd)
    except OSError as err:
        logger.debug("Directory fsync not supported on %s: %s", directory, err)
    finally:
        os.close(dir_fd)

# ==============================================================================
# FILE HANDLER
# ==============================================================================

class DatabaseFile:
    """
    Reads and writes one database document.

    The handler holds no state besides the path: every read goes to disk,
    every write replaces the whole file.
    """

    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def read(self) -> Document:
        """
        Read and parse the document.

        Raises:
            NotFound: If the file does not exist
            StorageError: On any other filesystem error
            FormatError: If the content is not a valid document
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            raise NotFound(f"Database not found: {self.path}") from None
        except UnicodeDecodeError as err:
            raise FormatError(f"Database is not UTF-8 text: {err}") from err
        except OSError as err:
            raise StorageError(f"Failed to read {self.path}: {err}") from err

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as err:
            raise FormatError(f"Database is not valid JSON: {err}") from err

        return Document.from_dict(data)

    @staticmethod
    def serialize(document: Document) -> bytes:
        """Render a document as indented UTF-8 JSON with a trailing newline."""
        text = json.dumps(document.to_dict(), indent=2, ensure_ascii=False)
        return (text + "\n").encode("utf-8")

    def write(self, document: Document) -> None:
        """
        Atomically replace the file with the serialized document.

        The data is written to a temporary file in the same directory
        (created 0600), flushed and fsynced, then renamed over the target;
        the directory is synced afterwards so the rename itself is durable.

        Raises:
            StorageError: If any step fails; the temporary file is removed
                and the previous content of the target is left intact
        """
        data = self.serialize(document)
        directory = os.path.dirname(os.path.abspath(self.path))
        prefix = "." + os.path.basename(self.path) + "."

        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=prefix, suffix=".tmp")
        except OSError as err:
            raise StorageError(f"Failed to write {self.path}: {err}") from err

        try:
            try:
                f = os.fdopen(fd, "wb")
            except Exception:
                os.close(fd)
                raise
            with f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, FILE_MODE)
            os.replace(tmp_path, self.path)
        except OSError as err:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"Failed to write {self.path}: {err}") from err

        _fsync_directory(directory)
        logger.debug("Wrote %d bytes to %s", len(data), self.path)

    def create(self, document: Document) -> None:
        """
        Write a new document, refusing to overwrite an existing file.

        The path is reserved with O_CREAT | O_EXCL before the atomic write,
        so two creators can never both succeed.

        Raises:
            AlreadyExists: If the file is already present
            StorageError: On any filesystem error
        """
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, mode=0o700, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        except FileExistsError:
            raise AlreadyExists(f"Database already exists: {self.path}") from None
        except OSError as err:
            raise StorageError(f"Failed to create {self.path}: {err}") from err
        os.close(fd)

        try:
            self.write(document)
        except StorageError:
            # Drop the empty reservation so the name can be reused
            try:
                os.remove(self.path)
            except OSError:
                logger.warning("Could not remove partial database %s", self.path)
            raise
