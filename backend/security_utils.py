"""Canonical security utility functions for MoviePolls.

Centralizes password hashing, random token generation and path traversal
prevention. All security-sensitive operations should use these helpers.
"""

import hashlib
import os
import secrets

# Token sizes in characters
SESSION_AUTH_KEY_SIZE = 64
SESSION_ENCRYPT_KEY_SIZE = 32
PASS_SALT_SIZE = 32
URL_KEY_SIZE = 20

_RAND_BITS = 60


def get_crypt_rand_key(size: int) -> str:
    """Return ``size`` upper-case hex characters of cryptographic randomness.

    Uniform 60-bit integers are drawn repeatedly, hex-formatted and
    concatenated until the requested length is reached.

    Args:
        size: Number of characters wanted. Must be positive.

    Raises:
        ValueError: If size is not positive.
    """
    if size <= 0:
        raise ValueError(f"Key size must be positive, got {size}")
    out = ""
    while len(out) < size:
        out += "%X" % secrets.randbits(_RAND_BITS)
    return out[:size]


def hash_password(password: str, salt: str) -> str:
    """Salted SHA-512 of a password, hex-encoded.

    Deterministic for a given salt; changing the salt invalidates every
    stored hash.
    """
    return hashlib.sha512((salt + password).encode("utf-8")).hexdigest()


def is_safe_path(file_path: str, base_dir: str) -> bool:
    """Return True iff file_path resolves inside base_dir (symlinks resolved).

    Args:
        file_path: Path to validate.
        base_dir: Allowed base directory.

    Returns:
        True if file_path is inside base_dir after resolving symlinks.
    """
    real_path = os.path.realpath(file_path)
    real_base = os.path.realpath(base_dir)
    return real_path.startswith(real_base + os.sep) or real_path == real_base


def safe_file_stem(name: str) -> str:
    """Reduce an arbitrary title to a filesystem-safe file stem."""
    stem = "".join(c if c.isalnum() or c in "-_" else "_" for c in name.strip())
    return stem.strip("_")[:64] or "poster"
