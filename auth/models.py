"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in catalog/models.py -- dataclasses own domain shape; stores and services
do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# Closed set of user groups. Order is the order shown in validation messages.
GROUPS: tuple[str, ...] = ("admin", "user", "guest")
ADMIN = "admin"


@dataclass
class User:
    """A registered identity.

    hashed_password never leaves the service layer: route handlers map User
    to a public response model that has no password field.
    """

    username: str
    email: str
    group: str  # "admin" | "user" | "guest"
    hashed_password: str = ""
    avatar_url: str | None = None
    id: int | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass
class RefreshSession:
    """Server-side record of the single outstanding refresh secret for a user.

    token_hash is SHA-256 of the secret handed to the client; the secret
    itself is never persisted. At most one row exists per user_id.
    """

    user_id: int
    token_hash: str
    expires_at: datetime  # timezone-aware UTC
    created_at: datetime | None = None
    id: int | None = None


@dataclass(frozen=True)
class Actor:
    """The authenticated identity attached to a request.

    Built from access-token claims only, so it can lag behind the store:
    a group change is invisible here until the token is reissued.
    """

    id: int
    username: str
    email: str
    group: str
    avatar_url: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.group == ADMIN


@dataclass(frozen=True)
class TokenPair:
    """Credentials handed to the client after register, login, or refresh.

    refresh_token is the plaintext secret; it exists only in this object and
    in the client's cookie.
    """

    access_token: str
    refresh_token: str
    access_expires_in: int  # seconds
    refresh_expires_in: int  # seconds
