"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as catalog/store.py).
UserStore is the credential repository, SessionStore the refresh-session
repository; _row_to_* are the mappers. Service code never touches SQL.

Invariants enforced here, not in callers:
  users: UNIQUE(username) and UNIQUE(email). taken_fields() gives the
      service a readable pre-check; the constraints catch the race where two
      registrations pass the pre-check concurrently (IntegrityError).

  refresh_sessions: UNIQUE(user_id) -- at most one session per user.
      put_session() deletes the prior row and inserts the new one inside a
      single transaction, so a concurrent login cannot leave two valid rows.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Only the SHA-256 of a refresh secret is stored.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import RefreshSession, User

logger = logging.getLogger("stockroom.auth.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'stockroom_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("group_name", String(30), nullable=False, server_default="guest"),
    Column("avatar_url", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_sessions = Table(
    "refresh_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("token_hash", String(64), nullable=False),  # SHA-256 hex
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", name="uq_refresh_sessions_user"),
)

# Fields update_user() accepts. Column names come from this whitelist only.
_USER_UPDATABLE = {"email", "group", "avatar_url", "hashed_password"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        uid = store.create_user(User(username="ann", email="ann@x.io", group="user", hashed_password=h))
        user = store.get_by_username("ann")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = _make_engine(db_url)
        _metadata.create_all(self.engine, tables=[_users])

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. The service turns that into a Conflict.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    group_name=user.group,
                    avatar_url=user.avatar_url,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def taken_fields(
        self,
        username: str | None = None,
        email: str | None = None,
        exclude_id: int | None = None,
    ) -> list[str]:
        """Return which of ("username", "email") already belong to another user."""
        taken: list[str] = []
        with self.engine.connect() as conn:
            for name, column, value in (("username", _users.c.username, username), ("email", _users.c.email, email)):
                if value is None:
                    continue
                query = _users.select().where(column == value)
                if exclude_id is not None:
                    query = query.where(_users.c.id != exclude_id)
                if conn.execute(query).fetchone() is not None:
                    taken.append(name)
        return taken

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: email, group, avatar_url, hashed_password.
        Returns True if a row was updated, False if user_id was not found.
        Raises IntegrityError if a new email collides with another user.
        """
        unknown = set(fields) - _USER_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "group" in fields:
            fields["group_name"] = fields.pop("group")
        if not fields:
            return self.get_by_id(user_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Session store
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for RefreshSession records (one per user)."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = _make_engine(db_url)
        _metadata.create_all(self.engine, tables=[_sessions])

    def put_session(self, session: RefreshSession) -> None:
        """Atomically replace the user's session with this one.

        Delete and insert share one transaction. If a concurrent writer slips
        a row in between (visible as a UNIQUE(user_id) violation), the
        transaction is retried once so the latest issuance wins.
        """
        for attempt in range(2):
            try:
                with self.engine.begin() as conn:
                    conn.execute(_sessions.delete().where(_sessions.c.user_id == session.user_id))
                    conn.execute(
                        _sessions.insert().values(
                            user_id=session.user_id,
                            token_hash=session.token_hash,
                            expires_at=session.expires_at.isoformat(),
                            created_at=(session.created_at or datetime.now(timezone.utc)).isoformat(),
                        )
                    )
                return
            except IntegrityError:
                if attempt:
                    raise
                logger.warning("Concurrent session write for user %s; retrying", session.user_id)

    def find_session(self, user_id: int, token_hash: str) -> RefreshSession | None:
        """Return the session matching BOTH user_id and token_hash, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.user_id == user_id) & (_sessions.c.token_hash == token_hash))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, user_id: int, token_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.user_id == user_id) & (_sessions.c.token_hash == token_hash))
            )
            conn.commit()
        return result.rowcount > 0

    def delete_all_for_user(self, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    def delete_by_hash(self, token_hash: str) -> bool:
        """Delete the session holding this refresh hash, whoever owns it."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
            conn.commit()
        return result.rowcount > 0

    def count_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.user_id == user_id)
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _parse_ts(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        # Naive timestamps are written by nothing in this module; treat as UTC.
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        group=row.group_name,
        avatar_url=row.avatar_url,
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_session(row) -> RefreshSession:
    return RefreshSession(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=_parse_ts(row.expires_at),
        created_at=_parse_ts(row.created_at),
    )
