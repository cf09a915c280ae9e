"""
Cryptographic operations for the Roost credential store.

This module provides the primitives the store is built on:
- Key derivation using Argon2id (memory-hard KDF)
- Per-entry secret encryption using AES-256 in counter mode
- The master password verification tag (HMAC-SHA256)
- Best-effort scrubbing of key material held in memory

Known limitation: entry secrets are encrypted with AES-CTR and carry no
authentication tag. A corrupted or tampered blob decrypts to garbage
without raising. Moving to an authenticated mode requires a new cipher
identifier in the document header so older files stay readable.
"""

import os
import base64
import binascii
import ctypes
import hashlib
import hmac
from dataclasses import dataclass

# Cryptography library imports for the Argon2id KDF and the AES block cipher
from cryptography.hazmat.primitives.kdf.argon2 import Argon2id
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .exceptions import DecryptError, EntropyUnavailable

# ==============================================================================
# CRYPTOGRAPHIC CONSTANTS
# ==============================================================================

# Identifier written to the document header for the cipher implemented here
CIPHER_ID = "AES-256"

# Size of the per-database salt in bytes (stored as 32 hex characters)
SALT_SIZE = 16

# Size of the AES-CTR initialization vector in bytes (one AES block)
IV_SIZE = 16

# Size of the data-encryption key in bytes (256 bits for AES-256)
KEY_SIZE = 32

# Argon2id parameters for memory-hard key derivation
# Time cost: Number of passes over memory
ARGON2_TIME_COST = 1

# Memory cost in KiB (64 MiB)
ARGON2_MEMORY_COST = 64 * 1024

# Parallelism: Number of lanes
ARGON2_PARALLELISM = 4


@dataclass(frozen=True)
class KdfParams:
    """Tunable Argon2id cost parameters."""

    time_cost: int = ARGON2_TIME_COST
    memory_cost: int = ARGON2_MEMORY_COST
    parallelism: int = ARGON2_PARALLELISM


DEFAULT_KDF_PARAMS = KdfParams()

# ==============================================================================
# KEY DERIVATION FUNCTIONS
# ==============================================================================

def derive_key(password: str, salt: bytes, params: KdfParams = DEFAULT_KDF_PARAMS) -> bytes:
    """
    Derive the data-encryption key from a master password using Argon2id.

    The key is never stored: it is re-derived from the same password and
    the database's salt every time a database is opened, so this function
    must be deterministic for identical inputs.

    Args:
        password (str): Master password (encoded to UTF-8). Must be
            non-empty; callers reject empty passwords before this point.
        salt (bytes): The database's random salt
        params (KdfParams): Argon2id cost parameters

    Returns:
        bytes: KEY_SIZE (32) byte key for AES-256

    Security Notes:
        - Argon2id is memory-hard, so brute-forcing the master password
          costs both CPU time and memory
        - Runs to completion on the calling thread
    """
    kdf = Argon2id(
        salt=salt,
        length=KEY_SIZE,
        iterations=params.time_cost,
        lanes=params.parallelism,
        memory_cost=params.memory_cost,
    )
    return kdf.derive(password.encode("utf-8"))


def generate_salt() -> bytes:
    """
    Generate a cryptographically secure random salt.

    Returns:
        bytes: SALT_SIZE bytes from os.urandom()

    Raises:
        EntropyUnavailable: If the operating system has no usable
            randomness source. Database creation cannot continue.
    """
    try:
        return os.urandom(SALT_SIZE)
    except NotImplementedError as err:
        raise EntropyUnavailable(f"Secure random source unavailable: {err}") from err

# ==============================================================================
# MASTER PASSWORD VERIFICATION
# ==============================================================================

def compute_verification_tag(name: str, password: str) -> str:
    """
    Compute the hex verification tag over (database name, master password).

    The tag is HMAC-SHA256 keyed by the database name over the password.
    It does not depend on the salt, so it can be checked before the
    expensive key derivation runs.

    Args:
        name (str): Database name as stored in the document (e.g. "vault.json")
        password (str): Master password

    Returns:
        str: 64 lowercase hex characters
    """
    return hmac.new(
        name.encode("utf-8"),
        password.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_password(name: str, password: str, expected_tag: str) -> bool:
    """
    Check a master password against a stored verification tag.

    Uses hmac.compare_digest() so the comparison time does not depend on
    how many leading characters match.
    """
    return hmac.compare_digest(
        compute_verification_tag(name, password),
        expected_tag.lower(),
    )

# ==============================================================================
# ENTRY SECRET ENCRYPTION / DECRYPTION
# ==============================================================================

def _normalize_aes_key(key: bytes) -> bytes:
    """
    Ensure a key is valid for AES-256.

    Raises:
        ValueError: If key is not exactly KEY_SIZE bytes
    """
    if len(key) != KEY_SIZE:
        raise ValueError(f"Encryption key must be {KEY_SIZE} bytes for AES-256")
    return bytes(key)


def encrypt_secret(plaintext: bytes, key: bytes) -> str:
    """
    Encrypt an entry secret with AES-256-CTR.

    A fresh random IV is generated for every call and prepended to the
    ciphertext, so the result is self-describing and two encryptions of the
    same plaintext never produce the same blob.

    Args:
        plaintext (bytes): Secret to encrypt
        key (bytes): 32-byte data-encryption key

    Returns:
        str: base64(IV || ciphertext), ASCII

    Security Notes:
        - Counter mode: ciphertext length equals plaintext length, no padding
        - No authentication tag is attached (see module docstring)
    """
    key = _normalize_aes_key(key)
    iv = os.urandom(IV_SIZE)

    encryptor = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
    ciphertext = encryptor.update(plaintext) + encryptor.finalize()

    return base64.b64encode(iv + ciphertext).decode("ascii")


def decrypt_secret(blob: str, key: bytes) -> bytes:
    """
    Decrypt an entry secret produced by encrypt_secret().

    Args:
        blob (str): base64(IV || ciphertext)
        key (bytes): 32-byte data-encryption key

    Returns:
        bytes: Decrypted plaintext

    Raises:
        DecryptError: If the blob is not valid base64 or is shorter than
            one IV. A tampered ciphertext or a wrong key is NOT detected
            and yields garbage bytes.
    """
    key = _normalize_aes_key(key)

    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError, TypeError) as err:
        raise DecryptError(f"Ciphertext is not valid base64: {err}") from err

    if len(raw) < IV_SIZE:
        raise DecryptError("Ciphertext is shorter than the IV")

    iv, ciphertext = raw[:IV_SIZE], raw[IV_SIZE:]
    decryptor = Cipher(algorithms.AES(key), modes.CTR(iv)).decryptor()
    return decryptor.update(ciphertext) + decryptor.finalize()

# ==============================================================================
# SECURE MEMORY MANAGEMENT
# ==============================================================================

def secure_erase_bytes(data: bytearray) -> None:
    """
    Overwrite a mutable bytearray with zeros.

    Python may already hold other copies of the data, so this is a best
    effort only.
    """
    if not data:
        return

    for i in range(len(data)):
        data[i] = 0

    # Attempt low-level memory overwrite using ctypes
    ctypes.memset(
        ctypes.addressof(ctypes.c_char.from_buffer(data)),
        0,
        len(data)
    )


def secure_erase(data: str) -> None:
    """Best-effort erase of a password string's encoded copy."""
    if isinstance(data, str):
        secure_erase_bytes(bytearray(data.encode("utf-8")))
