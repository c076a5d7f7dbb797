"""
auth/passwords.py -- bcrypt password hashing.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects.

The salt and cost are embedded in the hash string, so nothing besides the
hash needs to be stored. verify() never raises on malformed input.
"""

from __future__ import annotations

import bcrypt

DEFAULT_ROUNDS = 10


class PasswordHasher:
    """Salted one-way password hashing with a fixed work factor.

    The dummy hash is computed once per hasher so verify_dummy() costs the
    same as a real check. Login calls it when the username is unknown, which
    keeps response time from revealing whether an account exists.
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("stockroom_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the plaintext password.

        bcrypt only looks at the first 72 bytes; the API layer caps password
        length well below that.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the hash. False on any malformed input."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def verify_dummy(self, plain: str) -> None:
        self.verify(plain, self._dummy_hash)
