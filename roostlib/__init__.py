"""
Roost Modules
"""

from .config import RoostConfig, load_config
from .crypto import KdfParams, DEFAULT_KDF_PARAMS
from .database import (
    CredentialStore, DecryptedEntry, EntryListing, OpenResult, Session,
    SessionState, SkippedEntry
)
from .db_format import DatabaseFile, Document, Entry
from .exceptions import *
