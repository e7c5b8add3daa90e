"""
bcrypt hashes for local account passwords.
"""
import logging

import bcrypt

from paisen.config import PASSWORD_HASH_ROUNDS

logger = logging.getLogger(__name__)

# bcrypt ignores input past 72 bytes; truncate explicitly so hashing and checking agree
_BCRYPT_MAX_BYTES = 72


def _secret(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = PASSWORD_HASH_ROUNDS) -> str:
    return bcrypt.hashpw(_secret(password), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_password(password: str, password_hash: str | None) -> bool:
    """False for a wrong password and for a missing or malformed stored hash."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_secret(password), password_hash.encode("ascii"))
    except ValueError:
        logger.warning("Stored password hash is not a bcrypt hash")
        return False
