"""
auth/service.py -- Authentication service: register, login, logout, refresh, profile, users.

The service owns no state. Every persistent fact lives in UserStore or
SessionStore, both injected at construction together with the hasher and
the token issuer, so one instance is safely shared by concurrent requests.

Session lifecycle per user:

    NoSession --register/login--> Active --refresh--> Active (rotated)
    Active --logout / expired refresh--> NoSession

Every issuance goes through _start_session(), which supersedes any prior
session. A refresh secret is therefore single-use: once rotated, the old
secret no longer matches any stored hash.

Error policy:
  All failures are ServiceError (core/errors.py). Validation and permission
  checks run before any store write. Messages on login and refresh failures
  are deliberately generic so they do not help credential guessing.

  A store failure between user creation and session write is NOT rolled
  back: the user exists without a session, the client sees internal_error
  and can simply log in.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from auth.models import ADMIN, GROUPS, Actor, RefreshSession, TokenPair, User
from auth.passwords import PasswordHasher
from auth.store import SessionStore, UserStore
from auth.tokens import TokenIssuer
from core.errors import conflict, forbidden, internal_error, not_found, unauthorized, validation_error

logger = logging.getLogger("stockroom.auth")

USERNAME_MIN_LEN = 3
USERNAME_MAX_LEN = 64
PASSWORD_MIN_LEN = 6
PASSWORD_MAX_LEN = 72  # bcrypt ignores bytes beyond 72
EMAIL_MAX_LEN = 254
AVATAR_URL_MAX_LEN = 2048

_BAD_CREDENTIALS = "Invalid username or password."
_BAD_REFRESH = "Invalid refresh token."


@dataclass(frozen=True)
class AuthResult:
    """A user plus the freshly issued credentials for their new session."""

    user: User
    tokens: TokenPair


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def _group_violation(group: str) -> str | None:
    if group not in GROUPS:
        return f"field `group` should be one of: {', '.join(GROUPS)}"
    return None


def _email_violation(email: str) -> str | None:
    if len(email) > EMAIL_MAX_LEN:
        return "field `email` should be a valid email address"
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return "field `email` should be a valid email address"
    return None


def _avatar_violation(avatar_url: str | None) -> str | None:
    if avatar_url is not None and len(avatar_url) > AVATAR_URL_MAX_LEN:
        return f"field `avatarUrl` should be at most {AVATAR_URL_MAX_LEN} characters"
    return None


def registration_violations(username: str, email: str, password: str, group: str, avatar_url: str | None) -> list[str]:
    """Return every shape problem with a registration, in field order."""
    violations: list[str | None] = []
    if len(username) < USERNAME_MIN_LEN:
        violations.append(f"field `username` should be at least {USERNAME_MIN_LEN} characters")
    elif len(username) > USERNAME_MAX_LEN:
        violations.append(f"field `username` should be at most {USERNAME_MAX_LEN} characters")
    violations.append(_email_violation(email))
    if len(password) < PASSWORD_MIN_LEN:
        violations.append(f"field `password` should be at least {PASSWORD_MIN_LEN} characters")
    elif len(password.encode("utf-8")) > PASSWORD_MAX_LEN:
        violations.append(f"field `password` should be at most {PASSWORD_MAX_LEN} bytes")
    violations.append(_group_violation(group))
    violations.append(_avatar_violation(avatar_url))
    return [v for v in violations if v is not None]


def _conflict_for(taken: list[str], username: str | None, email: str | None):
    messages = []
    if "username" in taken:
        messages.append(f"User with username '{username}' already exists")
    if "email" in taken:
        messages.append(f"User with email '{email}' already exists")
    return conflict(*messages)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AuthService:
    """Stateless orchestrator over the credential and session stores."""

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.hasher = hasher
        self.issuer = issuer

    # ------------------------------------------------------------------
    # Session issuance
    # ------------------------------------------------------------------

    def _start_session(self, user: User) -> TokenPair:
        """Issue an access/refresh pair and persist the refresh hash, superseding any prior session."""
        pair, token_hash = self.issuer.issue_pair(user)
        self.sessions.put_session(
            RefreshSession(
                user_id=user.id,
                token_hash=token_hash,
                expires_at=self.issuer.refresh_token_expiry(),
                created_at=self.issuer.now(),
            )
        )
        return pair

    # ------------------------------------------------------------------
    # Public flows
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        group: str,
        avatar_url: str | None = None,
    ) -> AuthResult:
        """Create a user and open their first session.

        Raises validation_error on bad shape, conflict if username or email
        is taken. No user row is written on either failure.
        """
        violations = registration_violations(username, email, password, group, avatar_url)
        if violations:
            raise validation_error(*violations)

        taken = self.users.taken_fields(username=username, email=email)
        if taken:
            raise _conflict_for(taken, username, email)

        new_user = User(
            username=username,
            email=email,
            group=group,
            hashed_password=self.hasher.hash(password),
            avatar_url=avatar_url,
        )
        try:
            user_id = self.users.create_user(new_user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration; re-read which field clashed.
            taken = self.users.taken_fields(username=username, email=email) or ["username"]
            raise _conflict_for(taken, username, email) from exc

        user = self.users.get_by_id(user_id)
        if user is None:
            logger.error("User %s vanished immediately after insert", user_id)
            raise internal_error()
        logger.info("Registered user id=%s group=%s", user.id, user.group)
        return AuthResult(user=user, tokens=self._start_session(user))

    def login(self, username: str, password: str) -> AuthResult:
        """Verify credentials and open a new session, superseding any prior one.

        Unknown username and wrong password produce the same error. bcrypt
        runs in both cases so timing does not tell them apart either.
        """
        user = self.users.get_by_username(username)
        if user is None:
            self.hasher.verify_dummy(password)
            raise unauthorized(_BAD_CREDENTIALS)
        if not self.hasher.verify(password, user.hashed_password):
            raise unauthorized(_BAD_CREDENTIALS)

        self.users.update_last_login(user.id)
        logger.info("Login user id=%s", user.id)
        return AuthResult(user=user, tokens=self._start_session(user))

    def logout(self, actor: Actor | None, refresh_secret: str | None = None) -> bool:
        """End the caller's session. Idempotent; nothing to end is not an error.

        A valid actor loses every session. A presented refresh secret kills
        the session it belongs to, so logout still works once the access
        token has expired.

        Returns True if a session owner was identified.
        """
        identified = False
        if actor is not None:
            self.sessions.delete_all_for_user(actor.id)
            logger.info("Logout user id=%s", actor.id)
            identified = True
        if refresh_secret and self.sessions.delete_by_hash(self.issuer.hash_refresh_token(refresh_secret)):
            logger.info("Logout by refresh token")
            identified = True
        return identified

    def refresh(self, refresh_secret: str | None, access_token: str | None) -> AuthResult:
        """Rotate the session: validate the presented secret and issue a new pair.

        The user id comes from the access token, which may be past its expiry
        but must carry a valid signature.
        """
        if not refresh_secret:
            raise unauthorized("Refresh token is required.")

        user_id = self.issuer.subject_from_expired(access_token) if access_token else None
        if user_id is None:
            logger.info("Refresh rejected: no usable access token")
            raise unauthorized("Invalid token.")

        token_hash = self.issuer.hash_refresh_token(refresh_secret)
        session = self.sessions.find_session(user_id, token_hash)
        if session is None or not self.issuer.verify_refresh_token(refresh_secret, session.token_hash):
            logger.info("Refresh rejected for user id=%s: no matching session", user_id)
            raise unauthorized(_BAD_REFRESH)

        if self.issuer.now() > session.expires_at:
            self.sessions.delete_session(user_id, token_hash)
            logger.info("Refresh rejected for user id=%s: session expired", user_id)
            raise unauthorized("Refresh token expired.")

        user = self.users.get_by_id(user_id)
        if user is None:
            raise unauthorized(_BAD_REFRESH)

        logger.info("Rotated session for user id=%s", user.id)
        return AuthResult(user=user, tokens=self._start_session(user))

    def get_profile(self, actor: Actor) -> User:
        """Return the actor's current record from the store, not the token claims."""
        user = self.users.get_by_id(actor.id)
        if user is None:
            raise not_found("User not found.")
        return user

    def update_profile(self, actor: Actor, email: str | None = None, avatar_url: str | None = None) -> User:
        """Change the actor's own email and/or avatar."""
        if email is None and avatar_url is None:
            raise validation_error("No valid fields provided for update")
        violations = [_avatar_violation(avatar_url)]
        if email is not None:
            violations.insert(0, _email_violation(email))
        violations = [v for v in violations if v is not None]
        if violations:
            raise validation_error(*violations)

        if self.users.get_by_id(actor.id) is None:
            raise not_found("User not found.")
        if email is not None and self.users.taken_fields(email=email, exclude_id=actor.id):
            raise _conflict_for(["email"], None, email)

        updates: dict = {}
        if email is not None:
            updates["email"] = email
        if avatar_url is not None:
            updates["avatar_url"] = avatar_url
        try:
            self.users.update_user(actor.id, **updates)
        except IntegrityError as exc:
            raise _conflict_for(["email"], None, email) from exc
        return self.get_profile(actor)

    def list_users(self, actor: Actor) -> list[User]:
        if not actor.is_admin:
            raise forbidden()
        return self.users.list_users()

    def update_user_group(self, actor: Actor, target_id: int, group: str) -> User:
        """Change another user's group. Admin only; an admin cannot demote themself."""
        if not actor.is_admin:
            raise forbidden()
        violation = _group_violation(group)
        if violation is not None:
            raise validation_error(violation)
        if target_id == actor.id and group != ADMIN:
            raise forbidden("Cannot change your own admin status.")
        if not self.users.update_user(target_id, group=group):
            raise not_found("User not found.")

        updated = self.users.get_by_id(target_id)
        if updated is None:
            raise not_found("User not found.")
        logger.info("User id=%s moved to group=%s by admin id=%s", target_id, group, actor.id)
        return updated
