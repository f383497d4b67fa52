"""
auth/store.py -- SQLAlchemy Core persistence for users and token families.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_family are the mappers.
Route, service and orchestrator code never touches SQL directly.

Async: the store owns an AsyncEngine (aiosqlite for SQLite URLs, any async
dialect otherwise). Lifecycle is explicit -- await connect() creates the
schema, await close() disposes the engine. Nothing is opened at import time.

Security:
  All queries use bound parameters. No f-strings in SQL.

  OTP codes are stored as HMAC digests (otp_hash), never in plaintext.

  UNIQUE(email), UNIQUE(phone) and UNIQUE(google_id) allow multiple NULLs on
  every supported backend, so sign-up by phone only never collides with
  another phone-only account on email.

Layer rule: no imports from api/ or cache/. Import from core/ is allowed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from core.models import TokenFamily, User

_DEFAULT_DB_URL = "sqlite+aiosqlite:///./sessionkeep.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), unique=True),
    Column("phone", String(32), unique=True),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("auth_provider", String(30), nullable=False, server_default="local"),
    Column("google_id", String(255), unique=True),
    Column("photo", Text),
    Column("location", Text),
    Column("otp_hash", String(64)),  # HMAC-SHA256 hex
    Column("otp_expires", String(32)),
    Column("otp_retries", Integer, nullable=False, server_default="0"),
    Column("otp_requested_at", String(32)),
    Column("ip_address", String(64)),
    Column("is_notification_enabled", Boolean, nullable=False, server_default="1"),
    Column("is_registration_complete", Boolean, nullable=False, server_default="0"),
    Column("is_suspended", Boolean, nullable=False, server_default="0"),
    Column("is_deleted", Boolean, nullable=False, server_default="0"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_token_family = Table(
    "token_family",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("family_id", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns a caller may change through update_user(). id and created_at are
# immutable; updated_at is stamped by the store itself.
_UPDATABLE_USER_COLUMNS = frozenset(c.name for c in _users.columns) - {"id", "created_at", "updated_at"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and TokenFamily rows.

    Usage:
        store = UserStore("sqlite+aiosqlite:///./sessionkeep.db")
        await store.connect()
        user = await store.create_user(User(email="a@example.com"))
        family = await store.create_family(user.id, "f00d")
        await store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        kwargs: dict = {}
        if db_url.startswith("sqlite") and ":memory:" in db_url:
            # One shared connection, otherwise every checkout sees an empty DB.
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        self.engine: AsyncEngine = create_async_engine(db_url, **kwargs)

    async def connect(self) -> None:
        """Create tables that do not exist yet. Idempotent."""
        async with self.engine.begin() as conn:
            await conn.run_sync(_metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # User directory
    # ------------------------------------------------------------------

    async def create_user(self, user: User) -> User:
        """Insert a new user and return it with id and timestamps assigned.

        Raises sqlalchemy.exc.IntegrityError if email, phone or google_id is
        already taken. AccountService checks first, so this only fires on a
        concurrent duplicate sign-up.
        """
        now = _now_iso()
        user.id = user.id or str(uuid.uuid4())
        if user.email:
            user.email = user.email.lower()
        user.created_at = now
        user.updated_at = now
        values = {c.name: getattr(user, c.name) for c in _users.columns}
        async with self.engine.begin() as conn:
            await conn.execute(_users.insert().values(**values))
        return user

    async def get_by_id(self, user_id: str) -> User | None:
        async with self.engine.connect() as conn:
            row = (await conn.execute(_users.select().where(_users.c.id == user_id))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (stored lower-cased). Returns None if not found."""
        async with self.engine.connect() as conn:
            row = (await conn.execute(_users.select().where(_users.c.email == email.lower()))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_by_phone(self, phone: str) -> User | None:
        async with self.engine.connect() as conn:
            row = (await conn.execute(_users.select().where(_users.c.phone == phone))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_by_google_id(self, google_id: str) -> User | None:
        async with self.engine.connect() as conn:
            row = (await conn.execute(_users.select().where(_users.c.google_id == google_id))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def update_user(self, user_id: str, **fields) -> User | None:
        """Update mutable columns on a user and return the fresh row.

        Unknown field names raise ValueError rather than being silently
        dropped. Returns None if user_id does not exist.
        """
        unknown = set(fields) - _UPDATABLE_USER_COLUMNS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        fields["updated_at"] = _now_iso()
        async with self.engine.begin() as conn:
            result = await conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            if result.rowcount == 0:
                return None
            row = (await conn.execute(_users.select().where(_users.c.id == user_id))).fetchone()
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Token families
    # ------------------------------------------------------------------

    async def create_family(self, user_id: str, family_id: str) -> TokenFamily:
        now = _now_iso()
        family = TokenFamily(user_id=user_id, family_id=family_id, id=str(uuid.uuid4()), created_at=now, updated_at=now)
        async with self.engine.begin() as conn:
            await conn.execute(_token_family.insert().values(**family.to_dict()))
        return family

    async def get_family(self, family_id: str) -> TokenFamily | None:
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(_token_family.select().where(_token_family.c.family_id == family_id))
            ).fetchone()
        return _row_to_family(row) if row is not None else None

    async def touch_family(self, family_id: str) -> bool:
        """Stamp updated_at on a family. The only mutation a live family receives."""
        async with self.engine.begin() as conn:
            result = await conn.execute(
                _token_family.update().where(_token_family.c.family_id == family_id).values(updated_at=_now_iso())
            )
        return result.rowcount > 0

    async def delete_family(self, family_id: str) -> bool:
        """Delete one family. Returns True if a row was removed."""
        async with self.engine.begin() as conn:
            result = await conn.execute(_token_family.delete().where(_token_family.c.family_id == family_id))
        return result.rowcount > 0

    async def delete_user_families(self, user_id: str) -> int:
        """Delete every family owned by user_id. Returns the number removed."""
        async with self.engine.begin() as conn:
            result = await conn.execute(_token_family.delete().where(_token_family.c.user_id == user_id))
        return result.rowcount

    async def list_user_families(self, user_id: str) -> list[TokenFamily]:
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(
                    _token_family.select()
                    .where(_token_family.c.user_id == user_id)
                    .order_by(_token_family.c.created_at.desc())
                )
            ).fetchall()
        return [_row_to_family(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        phone=row.phone,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        auth_provider=row.auth_provider,
        google_id=row.google_id,
        photo=row.photo,
        location=row.location,
        otp_hash=row.otp_hash,
        otp_expires=row.otp_expires,
        otp_retries=row.otp_retries or 0,
        otp_requested_at=row.otp_requested_at,
        ip_address=row.ip_address,
        is_notification_enabled=bool(row.is_notification_enabled),
        is_registration_complete=bool(row.is_registration_complete),
        is_suspended=bool(row.is_suspended),
        is_deleted=bool(row.is_deleted),
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_family(row) -> TokenFamily:
    return TokenFamily(
        id=row.id,
        user_id=row.user_id,
        family_id=row.family_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
