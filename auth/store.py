"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; the _row_to_* functions are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is enforced by the UNIQUE index on users.email. create()
  also checks find_by_email() first, but that check only saves a bcrypt-free
  round trip for the common duplicate case: two concurrent signups can both
  pass it, and the index decides which insert wins. Both paths raise
  UserExistsError so callers see a single conflict signal.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision, so
lexicographic comparison in SQL matches chronological order.

Layer rule: no imports from api/, web/, core/, or security/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import OneTimeToken, Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),  # lowercased
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("created_at", String(40), nullable=False),
    Column("email_verified_at", String(40)),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("jti", String(64), nullable=False, unique=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("created_at", String(40), nullable=False),
    Column("expires_at", String(40), nullable=False),
    Column("revoked_at", String(40)),
    Column("ip", String(45)),
    Column("user_agent", Text),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("created_at", String(40), nullable=False),
    Column("expires_at", String(40), nullable=False),
)

_verification_tokens = Table(
    "email_verification_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("created_at", String(40), nullable=False),
    Column("expires_at", String(40), nullable=False),
)


class UserExistsError(Exception):
    """Raised by UserStore.create() when the email is already registered."""

    def __init__(self, email: str) -> None:
        super().__init__(f"User already exists: {email}")
        self.email = email


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, sessions, and one-time tokens.

    Usage:
        store = UserStore("sqlite:///auth.db")
        user = store.create("a@b.com", hash_password("secret123"))
        store.find_by_email("A@B.com")  # same user
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def create(self, email: str, hashed_password: str, role: str = "user") -> User:
        """Insert a new user and return it.

        Raises UserExistsError when the email is taken, whether the pre-check
        catches it or the UNIQUE index does.
        """
        email = normalize_email(email)
        if self.find_by_email(email) is not None:
            raise UserExistsError(email)
        user = User(email=email, hashed_password=hashed_password, role=role, created_at=_now_iso())
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=user.email,
                        hashed_password=user.hashed_password,
                        role=user.role,
                        created_at=user.created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise UserExistsError(email) from exc
        user.id = result.inserted_primary_key[0]
        return user

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    jti=session.jti,
                    user_id=session.user_id,
                    created_at=session.created_at or _now_iso(),
                    expires_at=session.expires_at,
                    ip=session.ip,
                    user_agent=session.user_agent,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_session(self, jti: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.jti == jti)).fetchone()
        return _row_to_session(row) if row is not None else None

    def revoke_session(self, jti: str) -> bool:
        """Mark a session revoked. Returns False if unknown or already revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.jti == jti) & (_sessions.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_user_sessions(self, user_id: int) -> int:
        """Revoke every live session for a user. Returns the number revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount

    def purge_expired_sessions(self) -> int:
        """Delete session rows whose expiry has passed. Returns rows deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= _now_iso()))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def create_reset_token(self, token: OneTimeToken) -> int:
        return self._create_token(_reset_tokens, token)

    def find_active_reset_token(self, token_hash: str) -> OneTimeToken | None:
        return self._find_active_token(_reset_tokens, token_hash)

    def has_active_reset_token(self, user_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                _reset_tokens.select()
                .with_only_columns(_reset_tokens.c.id)
                .where((_reset_tokens.c.user_id == user_id) & (_reset_tokens.c.expires_at > _now_iso()))
            ).fetchone()
        return row is not None

    def reset_password(self, token_id: int, user_id: int, hashed_password: str) -> bool:
        """Consume a reset token and store the new hash in one transaction.

        The token row is deleted first; if another request already consumed
        it the delete matches nothing and the password is left unchanged.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.id == token_id))
            if deleted.rowcount == 0:
                return False
            conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password))
        return True

    # ------------------------------------------------------------------
    # Email verification tokens
    # ------------------------------------------------------------------

    def create_verification_token(self, token: OneTimeToken) -> int:
        return self._create_token(_verification_tokens, token)

    def find_active_verification_token(self, token_hash: str) -> OneTimeToken | None:
        return self._find_active_token(_verification_tokens, token_hash)

    def verify_email(self, token_id: int, user_id: int) -> bool:
        """Consume a verification token and stamp email_verified_at atomically."""
        with self.engine.begin() as conn:
            deleted = conn.execute(_verification_tokens.delete().where(_verification_tokens.c.id == token_id))
            if deleted.rowcount == 0:
                return False
            conn.execute(_users.update().where(_users.c.id == user_id).values(email_verified_at=_now_iso()))
        return True

    # ------------------------------------------------------------------
    # Shared token helpers
    # ------------------------------------------------------------------

    def _create_token(self, table: Table, token: OneTimeToken) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                table.insert().values(
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    created_at=_now_iso(),
                    expires_at=token.expires_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def _find_active_token(self, table: Table, token_hash: str) -> OneTimeToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                table.select().where((table.c.token_hash == token_hash) & (table.c.expires_at > _now_iso()))
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        created_at=row.created_at,
        email_verified_at=row.email_verified_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        jti=row.jti,
        user_id=row.user_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
        ip=row.ip,
        user_agent=row.user_agent,
    )


def _row_to_token(row) -> OneTimeToken:
    return OneTimeToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
