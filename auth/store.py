"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_session are the mappers. Service and route code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  UNIQUE(email) is enforced by the database, so two concurrent registrations
  for the same address cannot both succeed -- the loser gets IntegrityError.

Transactions:
  Write methods accept an optional `conn`. Without one they open and commit
  their own transaction. Inside `with store.transaction() as conn:` callers
  pass the connection through so several writes commit or roll back together
  (register's user + session insert, change_password's update + revoke).

Timestamps:
  Stored as UTC ISO 8601 strings with fixed microsecond precision, so plain
  string comparison in SQL orders them the same way as the instants they
  represent.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import Session, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="student"),
    Column("bio", Text),
    Column("phone", String(30)),
    Column("date_of_birth", String(10)),  # YYYY-MM-DD
    Column("gender", String(20)),
    Column("country", String(100)),
    Column("profile_image", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("email_verification_token", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    Column("last_login", String(32)),
)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def _escape_like(term: str) -> str:
    """Make % and _ in user input match literally inside a LIKE pattern."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Session entities.

    Usage:
        store = UserStore("sqlite:///coursehub_auth.db")
        uid = store.create_user(User(name="Alice", email="alice@x.com", role="student", hashed_password=h))
        user = store.get_by_email("alice@x.com")
        store.close()
    """

    # Columns update_user() may write. Anything else is a programming error.
    _UPDATABLE: frozenset[str] = frozenset(
        {
            "name",
            "bio",
            "phone",
            "date_of_birth",
            "gender",
            "country",
            "profile_image",
            "role",
            "is_active",
            "hashed_password",
        }
    )

    def __init__(self, db_url: str, pool_size: int = 10) -> None:
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            # Bounded pool: at most pool_size connections, waiters queue.
            engine_kwargs.update(pool_size=pool_size, max_overflow=0, pool_pre_ping=True)
        self.engine: Engine = create_engine(db_url, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        _metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection whose writes commit together on exit."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def _begin(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as own:
            yield own

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.email == email)).fetchone()
        return row is not None

    def create_user(self, user: User, conn: Connection | None = None) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        with self._begin(conn) as c:
            result = c.execute(
                _users.insert().values(
                    name=user.name,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    bio=user.bio,
                    phone=user.phone,
                    date_of_birth=user.date_of_birth,
                    gender=user.gender,
                    country=user.country,
                    profile_image=user.profile_image,
                    is_active=1 if user.is_active else 0,
                    email_verified=1 if user.email_verified else 0,
                    email_verification_token=user.email_verification_token,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str, conn: Connection | None = None) -> User | None:
        """Look up a user by exact (already normalized) email."""
        with self._read(conn) as c:
            row = c.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int, conn: Connection | None = None) -> User | None:
        with self._read(conn) as c:
            row = c.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, offset: int = 0, limit: int = 20, search: str = "") -> tuple[list[User], int]:
        """Return one page of users (newest first) and the total match count.

        search is matched case-insensitively as a substring of name or email.
        """
        where = None
        if search:
            pattern = f"%{_escape_like(search.lower())}%"
            where = or_(
                func.lower(_users.c.name).like(pattern, escape="\\"),
                func.lower(_users.c.email).like(pattern, escape="\\"),
            )

        count_q = select(func.count()).select_from(_users)
        page_q = _users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc()).offset(offset).limit(limit)
        if where is not None:
            count_q = count_q.where(where)
            page_q = page_q.where(where)

        with self.engine.connect() as conn:
            total = conn.execute(count_q).scalar() or 0
            rows = conn.execute(page_q).fetchall()
        return [_row_to_user(r) for r in rows], total

    def update_user(self, user_id: int, conn: Connection | None = None, **fields) -> bool:
        """Update mutable columns on an existing user and stamp updated_at.

        is_active must be passed as bool; this method converts to int.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user columns: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self._begin(conn) as c:
            result = c.execute(
                _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
            )
        return result.rowcount > 0

    def all_users(self) -> list[User]:
        """Every user, newest first. Used by the admin export."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def roles_by_id(self, user_ids: list[int], conn: Connection | None = None) -> dict[int, str]:
        """Map each existing id in `user_ids` to its role. Unknown ids are absent."""
        with self._read(conn) as c:
            rows = c.execute(select(_users.c.id, _users.c.role).where(_users.c.id.in_(user_ids))).fetchall()
        return {r.id: r.role for r in rows}

    def mark_email_verified(self, email: str, token: str, conn: Connection | None = None) -> bool:
        """Set email_verified and clear the pending token.

        Only matches while `token` is still the one stored for `email`.
        """
        with self._begin(conn) as c:
            result = c.execute(
                _users.update()
                .where((_users.c.email == email) & (_users.c.email_verification_token == token))
                .values(email_verified=1, email_verification_token=None, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def delete_users(self, user_ids: list[int], conn: Connection | None = None) -> int:
        """Delete users and their sessions. Returns the number of users removed."""
        with self._begin(conn) as c:
            c.execute(_sessions.delete().where(_sessions.c.user_id.in_(user_ids)))
            result = c.execute(_users.delete().where(_users.c.id.in_(user_ids)))
        return result.rowcount

    def count_active_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where((_users.c.role == "admin") & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def update_last_login(self, user_id: int, conn: Connection | None = None) -> None:
        with self._begin(conn) as c:
            c.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def create_session(self, session: Session, conn: Connection | None = None) -> int:
        with self._begin(conn) as c:
            result = c.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token=session.token,
                    expires_at=session.expires_at,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_live_session(self, token: str, now: str | None = None) -> tuple[Session, User] | None:
        """Return the unexpired session holding `token` joined to its owner.

        The returned User carries only id, name, email, role and is_active.
        Returns None if no row holds the token or the row has expired.
        """
        now = now or _now_iso()
        query = (
            select(
                _sessions.c.id,
                _sessions.c.user_id,
                _sessions.c.token,
                _sessions.c.expires_at,
                _sessions.c.created_at,
                _users.c.name,
                _users.c.email,
                _users.c.role,
                _users.c.is_active,
            )
            .select_from(_sessions.join(_users, _sessions.c.user_id == _users.c.id))
            .where((_sessions.c.token == token) & (_sessions.c.expires_at > now))
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        session = _row_to_session(row)
        owner = User(
            id=row.user_id,
            name=row.name,
            email=row.email,
            role=row.role,
            is_active=bool(row.is_active),
        )
        return session, owner

    def count_sessions(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.user_id == user_id)
            ).scalar()
        return result or 0

    def delete_session(self, token: str) -> int:
        """Delete the session holding `token`. Returns rows removed (0 or 1)."""
        with self._begin(None) as c:
            result = c.execute(_sessions.delete().where(_sessions.c.token == token))
        return result.rowcount

    def delete_user_sessions(self, user_id: int, conn: Connection | None = None) -> int:
        """Delete every session the user owns. Returns rows removed."""
        with self._begin(conn) as c:
            result = c.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def delete_expired_sessions(
        self,
        user_id: int | None = None,
        now: str | None = None,
        conn: Connection | None = None,
    ) -> int:
        """Delete expired sessions, for one user or (user_id=None) for everyone."""
        condition = _sessions.c.expires_at <= (now or _now_iso())
        if user_id is not None:
            condition = condition & (_sessions.c.user_id == user_id)
        with self._begin(conn) as c:
            result = c.execute(_sessions.delete().where(condition))
        return result.rowcount

    def ping(self) -> bool:
        """Return True if a trivial query succeeds. Used by the health check."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _read(self, conn: Connection | None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        with self.engine.connect() as own:
            yield own


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        bio=row.bio,
        phone=row.phone,
        date_of_birth=row.date_of_birth,
        gender=row.gender,
        country=row.country,
        profile_image=row.profile_image,
        is_active=bool(row.is_active),
        email_verified=bool(row.email_verified),
        email_verification_token=row.email_verification_token,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
