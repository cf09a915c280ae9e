"""
Roost Credential Store

This module is the interface between the front-end and the encrypted
database files. It combines key derivation, entry encryption and the
document file handler into the create/open/list/add/remove operations:

- create: fresh salt + verification tag, empty document, exclusive write
- open: verify the master password against the stored tag, derive the
  data-encryption key, decrypt every entry
- add/remove: re-read the latest document from disk, mutate, rewrite
  the whole file atomically

The derived key lives only inside an explicit Session object handed back
by open() and passed into every later call. Closing the session scrubs
the key; opening again requires the password.
"""

import os
import uuid
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from .crypto import (
    DEFAULT_KDF_PARAMS, KdfParams, compute_verification_tag, decrypt_secret,
    derive_key, encrypt_secret, generate_salt, secure_erase_bytes,
    verify_password
)
from .db_format import DB_SUFFIX, DEFAULT_DESCRIPTION, DatabaseFile, Document, Entry
from .exceptions import (
    DecryptError, IndexOutOfRange, InvalidPassword, SessionClosed,
    StorageError, ValidationError
)
from .validation import validate_database_name, validate_entry_data, validate_secret

logger = logging.getLogger(__name__)

# ==============================================================================
# RESULT TYPES
# ==============================================================================

@dataclass
class DecryptedEntry:
    """
    Plaintext view of one entry.

    index is the entry's position in the document, which is the value
    remove_entry() expects. It stays correct when other entries were
    skipped during decryption.
    """

    index: int
    id: str
    title: str
    secret: str
    username: str = ""
    url: str = ""
    notes: str = ""
    created: str = ""


@dataclass
class SkippedEntry:
    """An entry that could not be decrypted, with the reason."""

    index: int
    id: str
    title: str
    reason: str


@dataclass
class EntryListing:
    entries: List[DecryptedEntry] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)


@dataclass
class OpenResult:
    """Returned by CredentialStore.open(): the live session plus its entries."""

    session: "Session"
    entries: List[DecryptedEntry] = field(default_factory=list)
    skipped: List[SkippedEntry] = field(default_factory=list)

# ==============================================================================
# SESSION
# ==============================================================================

class SessionState(Enum):
    CLOSED = "closed"
    AUTHENTICATING = "authenticating"
    OPEN = "open"


class Session:
    """
    Holds the data-encryption key for one open database.

    Lifecycle: AUTHENTICATING (password supplied, not yet verified) ->
    OPEN (key held) -> CLOSED (key scrubbed). A failed authentication goes
    straight to CLOSED. There is no way back from CLOSED.
    """

    def __init__(self, path: str):
        self.path = path
        self.state = SessionState.AUTHENTICATING
        self._key: Optional[bytearray] = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self.state is SessionState.OPEN

    @property
    def key(self) -> bytes:
        """
        The data-encryption key.

        Returns an immutable bytes copy. close() scrubs only the session's
        own buffer, so callers should drop the copy as soon as they are done.

        Raises:
            SessionClosed: If the session is not open
        """
        with self._lock:
            if self.state is not SessionState.OPEN or self._key is None:
                raise SessionClosed(f"Session for {self.name} is not open")
            return bytes(self._key)

    def ensure_open(self) -> None:
        if not self.is_open:
            raise SessionClosed(f"Session for {self.name} is not open")

    def _unlock(self, key: bytes) -> None:
        with self._lock:
            if self.state is not SessionState.AUTHENTICATING:
                raise SessionClosed(f"Session for {self.name} cannot be unlocked again")
            self._key = bytearray(key)
            self.state = SessionState.OPEN

    def close(self) -> None:
        """Discard the key. Safe to call more than once."""
        with self._lock:
            if self._key is not None:
                secure_erase_bytes(self._key)
                self._key = None
            self.state = SessionState.CLOSED

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Session(path={self.path!r}, state={self.state.value})"

# ==============================================================================
# CREDENTIAL STORE
# ==============================================================================

class CredentialStore:
    """
    Façade over a folder of database files.

    The store keeps no per-database state between calls: every operation
    reads the current file from disk, so a mutation always applies to the
    latest on-disk document. Key material is only held by Session objects.

    Args:
        folder (str): Directory holding the database files
        kdf_params (KdfParams): Argon2id cost parameters. Must be the same
            for create and open of a given database.
    """

    def __init__(self, folder: str, kdf_params: KdfParams = DEFAULT_KDF_PARAMS):
        self.folder = folder
        self.kdf_params = kdf_params

    # ==========================================================================
    # DATABASE DISCOVERY
    # ==========================================================================

    @staticmethod
    def file_name(name: str) -> str:
        """Database file name for a logical name ("vault" -> "vault.json")."""
        return name if name.endswith(DB_SUFFIX) else name + DB_SUFFIX

    def database_path(self, name: str) -> str:
        """
        Resolve a database name to its path inside the folder.

        Raises:
            ValidationError: If the name is empty or could escape the folder
        """
        ok, message = validate_database_name(name)
        if not ok:
            raise ValidationError(message)
        return os.path.join(self.folder, self.file_name(name))

    def list_databases(self) -> List[str]:
        """
        List database file names in the folder (non-recursive, sorted).

        A missing folder simply has no databases.
        """
        try:
            names = os.listdir(self.folder)
        except FileNotFoundError:
            return []
        except OSError as err:
            raise StorageError(f"Failed to list {self.folder}: {err}") from err

        return sorted(
            name for name in names
            if name.endswith(DB_SUFFIX)
            and not name.startswith('.')
            and os.path.isfile(os.path.join(self.folder, name))
        )

    # ==========================================================================
    # CREATE / AUTHENTICATE / OPEN
    # ==========================================================================

    def create(self, name: str, password: str,
               description: str = DEFAULT_DESCRIPTION) -> str:
        """
        Create a new, empty database.

        Args:
            name (str): Database name; ".json" is appended if missing
            password (str): Master password, must be non-empty
            description (str): Free-text description

        Returns:
            str: Path of the created file

        Raises:
            ValidationError: Empty name or password
            AlreadyExists: A database with this name already exists
            EntropyUnavailable: No secure random source (fatal)
            StorageError: The file could not be written
        """
        path = self.database_path(name)
        ok, message = validate_secret("password", password)
        if not ok:
            raise ValidationError(message)

        file_name = self.file_name(name)
        salt = generate_salt()

        document = Document(
            name=file_name,
            description=description,
            verification_tag=compute_verification_tag(file_name, password),
            salt=salt.hex(),
            entries=[],
        )
        DatabaseFile(path).create(document)

        logger.info("Created database %s", path)
        return path

    def _authenticate(self, document: Document, password: str) -> bool:
        return verify_password(document.name, password, document.verification_tag)

    def is_password_valid(self, path: str, password: str) -> Tuple[bool, Optional[bytes]]:
        """
        Check a master password without deriving the key.

        Returns:
            Tuple[bool, Optional[bytes]]: (True, salt) on a match,
            (False, None) otherwise

        Raises:
            NotFound, StorageError, FormatError: If the file cannot be read
        """
        if not password:
            return False, None

        document = DatabaseFile(path).read()
        if not self._authenticate(document, password):
            return False, None
        return True, document.salt_bytes

    def open(self, path: str, password: str) -> OpenResult:
        """
        Authenticate and open a database.

        The password is checked against the verification tag first; only
        on a match is the (expensive) key derived. Entries that fail to
        decrypt are skipped rather than failing the whole open, so one
        corrupted entry cannot lock the user out of the rest.

        Returns:
            OpenResult: Open session, decrypted entries, skipped entries

        Raises:
            ValidationError: Empty password
            InvalidPassword: Password does not match
            NotFound, StorageError, FormatError: If the file cannot be read
        """
        ok, message = validate_secret("password", password)
        if not ok:
            raise ValidationError(message)

        session = Session(path)
        try:
            document = DatabaseFile(path).read()
            if not self._authenticate(document, password):
                raise InvalidPassword()
            session._unlock(derive_key(password, document.salt_bytes, self.kdf_params))
            listing = self._decrypt_entries(document, session.key)
        except Exception:
            session.close()
            raise

        logger.info(
            "Opened database %s (%d entries, %d skipped)",
            path, len(listing.entries), len(listing.skipped)
        )
        return OpenResult(session=session, entries=listing.entries, skipped=listing.skipped)

    def close(self, session: Session) -> None:
        session.close()

    # ==========================================================================
    # ENTRY OPERATIONS
    # ==========================================================================

    def _decrypt_entries(self, document: Document, key: bytes) -> EntryListing:
        listing = EntryListing()

        for index, entry in enumerate(document.entries):
            try:
                secret = decrypt_secret(entry.secret_ciphertext, key).decode("utf-8")
            except DecryptError as err:
                reason = str(err)
            except UnicodeDecodeError:
                reason = "Decrypted secret is not valid UTF-8"
            else:
                listing.entries.append(DecryptedEntry(
                    index=index,
                    id=entry.id,
                    title=entry.title,
                    secret=secret,
                    username=entry.username,
                    url=entry.url,
                    notes=entry.notes,
                    created=entry.created,
                ))
                continue

            logger.warning("Skipping entry %d (%s) of %s: %s",
                           index, entry.id, document.name, reason)
            listing.skipped.append(SkippedEntry(index, entry.id, entry.title, reason))

        return listing

    def list_entries(self, session: Session) -> EntryListing:
        """Re-read the database and decrypt its entries with the session key."""
        key = session.key
        document = DatabaseFile(session.path).read()
        return self._decrypt_entries(document, key)

    def add_entry(self, session: Session, title: str, secret: str,
                  username: str = "", url: str = "", notes: str = "") -> Entry:
        """
        Encrypt a secret and append it as a new entry.

        Returns:
            Entry: The stored (encrypted) entry

        Raises:
            SessionClosed: The session is not open
            ValidationError: Empty title/secret or malformed optional field
            NotFound, StorageError, FormatError: File access failed
        """
        ok, message = validate_entry_data({
            'title': title,
            'secret': secret,
            'username': username,
            'url': url,
            'notes': notes,
        })
        if not ok:
            raise ValidationError(message)

        key = session.key
        db_file = DatabaseFile(session.path)
        document = db_file.read()

        entry = Entry(
            id=str(uuid.uuid4()),
            title=title,
            secret_ciphertext=encrypt_secret(secret.encode("utf-8"), key),
            username=username,
            url=url,
            notes=notes,
            created=datetime.now(timezone.utc).isoformat(),
        )
        document.entries.append(entry)
        db_file.write(document)

        logger.info("Added entry %s (%s) to %s", entry.id, entry.title, session.name)
        return entry

    def remove_entry(self, session: Session, index: int) -> Entry:
        """
        Remove the entry at a position; later entries shift down by one.

        Returns:
            Entry: The removed entry

        Raises:
            SessionClosed: The session is not open
            IndexOutOfRange: index < 0 or index >= number of entries; the
                file is left untouched
            NotFound, StorageError, FormatError: File access failed
        """
        session.ensure_open()
        db_file = DatabaseFile(session.path)
        document = db_file.read()

        if not 0 <= index < len(document.entries):
            raise IndexOutOfRange(
                f"Entry index {index} out of range (database has {len(document.entries)} entries)"
            )

        entry = document.entries.pop(index)
        db_file.write(document)

        logger.info("Removed entry %s (%s) from %s", entry.id, entry.title, session.name)
        return entry
