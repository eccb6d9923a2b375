"""
Password verification against EventApp's stored bcrypt hashes.

bcrypt.checkpw re-derives the salted hash and compares it in constant
time, so the check does not leak how many bytes matched.
"""

import bcrypt

DEFAULT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes; EventApp (bcryptjs) truncates the same way
MAX_PASSWORD_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:MAX_PASSWORD_BYTES]


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a password in the same format EventApp stores ($2b$...)."""
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds)).decode("ascii")


def verify_password(candidate: str, password_hash: str | None) -> bool:
    """
    Return True when candidate matches password_hash.

    Empty or malformed hashes never match.
    """
    if not candidate or not password_hash:
        return False
    try:
        return bcrypt.checkpw(_encode(candidate), password_hash.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash (e.g. "Invalid salt")
        return False
