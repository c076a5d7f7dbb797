"""
auth/tokens.py -- Access/refresh token issuance and the session cookies.

Security design decisions:
  Access token: python-jose JWT, HS256, signed with the server secret. Carries
       the public identity (sub, username, email, group, avatar_url) and a
       short expiry. Expiry is checked against the issuer's own clock, the
       same one that stamped iat and exp. Verification is pure computation
       -- no store access -- so it runs on every request. verify_access_token()
       returns None on ANY failure (bad signature, malformed, expired);
       callers never learn which.

  Refresh token: secrets.token_hex(40) gives 320 bits of entropy. Only its
       SHA-256 is stored. No salt and no bcrypt: the input is high-entropy and
       single-use, so a fast deterministic hash allows lookup by hash.

  Expired-token carve-out: the refresh flow needs the user id from an access
       token that may already be past its expiry. subject_from_expired() checks
       the signature but skips the exp claim. It is used by the refresh flow
       and nowhere else.

  Secret injection: TokenIssuer receives the secret and lifetimes at
       construction (api/main.py lifespan). Nothing here reads settings.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from auth.models import Actor, TokenPair, User

ALGORITHM = "HS256"
ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

_TOKEN_TYPE = "access"
_REQUIRED_CLAIMS = ("sub", "username", "email", "group")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mints and verifies the two cooperating credentials.

    Args:
        secret_key:      HMAC key for access tokens.
        access_ttl:      access token lifetime in seconds.
        refresh_ttl:     refresh session lifetime.
        clock:           source of "now" for both issuing and expiry checks;
                         tests pass a shifted clock.
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: int = 30 * 60,
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must be non-empty")
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Access token
    # ------------------------------------------------------------------

    def issue_access_token(self, user: User) -> str:
        """Encode a signed JWT with the user's public identity."""
        now = self._clock()
        payload: dict[str, Any] = {
            "sub": str(user.id),
            "username": user.username,
            "email": user.email,
            "group": user.group,
            "avatar_url": user.avatar_url,
            "type": _TOKEN_TYPE,
            "iat": now,
            "exp": now + timedelta(seconds=self.access_ttl),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def _decode(self, token: str) -> dict[str, Any] | None:
        """Check the signature only. Expiry is judged against self._clock by callers."""
        try:
            return jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError:
            return None

    def verify_access_token(self, token: str) -> Actor | None:
        """Decode and verify a JWT. Returns the Actor or None on any failure."""
        payload = self._decode(token)
        if payload is None:
            return None
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self._clock().timestamp():
            return None
        return _claims_to_actor(payload)

    def subject_from_expired(self, token: str) -> int | None:
        """Return the user id from a correctly signed token, ignoring expiry.

        Only the refresh flow may call this.
        """
        payload = self._decode(token)
        if payload is None:
            return None
        actor = _claims_to_actor(payload)
        return actor.id if actor is not None else None

    # ------------------------------------------------------------------
    # Refresh token
    # ------------------------------------------------------------------

    def issue_refresh_token(self) -> tuple[str, str]:
        """Return (secret, secret_hash). Persist the hash, hand out the secret."""
        secret = secrets.token_hex(40)
        return secret, self.hash_refresh_token(secret)

    @staticmethod
    def hash_refresh_token(secret: str) -> str:
        return hashlib.sha256(secret.encode("utf-8")).hexdigest()

    def verify_refresh_token(self, secret: str, stored_hash: str) -> bool:
        """Constant-time comparison of the presented secret's hash with the stored one."""
        return hmac.compare_digest(self.hash_refresh_token(secret), stored_hash)

    def refresh_token_expiry(self) -> datetime:
        return self._clock() + self.refresh_ttl

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Pair
    # ------------------------------------------------------------------

    def issue_pair(self, user: User) -> tuple[TokenPair, str]:
        """Issue both tokens for user. Returns (pair, refresh_hash)."""
        secret, secret_hash = self.issue_refresh_token()
        pair = TokenPair(
            access_token=self.issue_access_token(user),
            refresh_token=secret,
            access_expires_in=self.access_ttl,
            refresh_expires_in=int(self.refresh_ttl.total_seconds()),
        )
        return pair, secret_hash


def _claims_to_actor(payload: dict[str, Any]) -> Actor | None:
    if payload.get("type") != _TOKEN_TYPE:
        return None
    if any(payload.get(claim) in (None, "") for claim in _REQUIRED_CLAIMS):
        return None
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        return None
    return Actor(
        id=user_id,
        username=payload["username"],
        email=payload["email"],
        group=payload["group"],
        avatar_url=payload.get("avatar_url"),
    )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, pair: TokenPair, secure: bool = False) -> None:
    """Write both tokens as httpOnly cookies with independent lifetimes.

    httponly=True: JS cannot read either cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches each token's own lifetime.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=pair.access_token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=pair.access_expires_in,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=pair.refresh_expires_in,
    )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
