"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Service and route code never touch SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Updates are column-targeted (set_refresh_token, set_password_reset,
  link_google_identity, ...). Nothing writes a whole row back from an
  in-memory Account, so a stale read can never undo a concurrent change such
  as a completed password reset.

  complete_password_reset() is a compare-and-clear: the UPDATE only matches
  while the stored reset hash is still the one presented and unexpired. Two
  concurrent resets with the same token cannot both succeed.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision, +00:00 suffix) so SQL string comparison orders them correctly.

UNIQUE(google_id) is a plain SQL constraint: SQLite and PostgreSQL both treat
NULLs as distinct, which is exactly the sparse-unique behaviour we want.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Account

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(50), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),  # NULL for federated-only accounts
    Column("role", String(10), nullable=False, server_default="user"),
    Column("google_id", String(255), unique=True),
    Column("picture", Text),
    Column("refresh_token", Text),
    Column("refresh_token_expiry", String(32)),
    Column("password_reset_token", String(64), index=True),  # SHA-256 hex
    Column("password_reset_expire", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns create() copies from the Account instance.
_INSERT_FIELDS = (
    "name",
    "hashed_password",
    "role",
    "google_id",
    "picture",
    "refresh_token",
    "refresh_token_expiry",
    "password_reset_token",
    "password_reset_expire",
)

_DATETIME_FIELDS = {"refresh_token_expiry", "password_reset_expire", "created_at", "updated_at"}


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records.

    Usage:
        store = AccountStore("sqlite:///localmarket.db")
        account = store.create(Account(name="A", email="a@x.com", hashed_password=hash_password("pw")))
        same = store.find_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///localmarket.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_id(self, account_id: str) -> Account | None:
        return self._find_one(_users.c.id == account_id)

    def find_by_email(self, email: str) -> Account | None:
        """Exact, case-sensitive match on the stored email."""
        return self._find_one(_users.c.email == email)

    def find_by_google_id(self, google_id: str) -> Account | None:
        return self._find_one(_users.c.google_id == google_id)

    def find_by_reset_token(self, token_hash: str, now: datetime) -> Account | None:
        """Return the account holding this reset hash, provided it has not expired."""
        return self._find_one(
            (_users.c.password_reset_token == token_hash) & (_users.c.password_reset_expire > _to_iso(now))
        )

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    def _find_one(self, condition) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, account: Account) -> Account:
        """Insert a new account and return it with id and timestamps assigned.

        Raises ValueError if the account has neither a password hash nor a
        google_id. Raises sqlalchemy.exc.IntegrityError on a duplicate email or
        google_id; callers translate that into a conflict.
        """
        if not account.is_usable():
            raise ValueError("An account needs a password hash or a federated identity")
        now = _now()
        created = replace(account, id=uuid.uuid4().hex, created_at=now, updated_at=now)
        values = {field: getattr(created, field) for field in _INSERT_FIELDS}
        values.update(id=created.id, email=created.email, created_at=now, updated_at=now)
        with self.engine.connect() as conn:
            conn.execute(_users.insert().values(**_serialize(values)))
            conn.commit()
        return created

    def _update(self, condition, **values) -> bool:
        """Write only the given columns on rows matching condition. Stamps updated_at."""
        values["updated_at"] = _now()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(condition).values(**_serialize(values)))
            conn.commit()
        return result.rowcount > 0

    def set_refresh_token(self, account_id: str, token: str, expires_at: datetime) -> bool:
        """Mirror the latest refresh token and its expiry onto the account."""
        return self._update(_users.c.id == account_id, refresh_token=token, refresh_token_expiry=expires_at)

    def set_password_reset(self, account_id: str, token_hash: str | None, expires_at: datetime | None) -> bool:
        """Store (or, with None, clear) the pending reset-token hash and expiry."""
        return self._update(
            _users.c.id == account_id,
            password_reset_token=token_hash,
            password_reset_expire=expires_at,
        )

    def link_google_identity(self, account_id: str, google_id: str, picture: str | None = None) -> bool:
        """Attach a Google subject id to an account that has none yet.

        picture only fills an empty avatar. Returns False when the account
        already carries a google_id (including one linked concurrently).
        Raises IntegrityError if google_id belongs to another account.
        """
        values: dict = {"google_id": google_id}
        if picture:
            values["picture"] = func.coalesce(_users.c.picture, picture)
        return self._update((_users.c.id == account_id) & _users.c.google_id.is_(None), **values)

    def clear_refresh_token(self, account_id: str) -> None:
        """Unset the mirrored refresh token (logout)."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == account_id)
                .values(refresh_token=None, refresh_token_expiry=None, updated_at=_to_iso(_now()))
            )
            conn.commit()

    def complete_password_reset(self, account_id: str, token_hash: str, hashed_password: str, now: datetime) -> bool:
        """Set a new password and consume the reset token in one conditional UPDATE.

        Returns False when the stored hash no longer matches or has expired --
        including when a concurrent request consumed it first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == account_id)
                    & (_users.c.password_reset_token == token_hash)
                    & (_users.c.password_reset_expire > _to_iso(now))
                )
                .values(
                    hashed_password=hashed_password,
                    password_reset_token=None,
                    password_reset_expire=None,
                    updated_at=_to_iso(_now()),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_by_id(self, account_id: str) -> bool:
        """Hard-delete an account. Not used by the auth flows themselves."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == account_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _serialize(values: dict) -> dict:
    return {k: (_to_iso(v) if k in _DATETIME_FIELDS else v) for k, v in values.items()}


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        google_id=row.google_id,
        picture=row.picture,
        refresh_token=row.refresh_token,
        refresh_token_expiry=_from_iso(row.refresh_token_expiry),
        password_reset_token=row.password_reset_token,
        password_reset_expire=_from_iso(row.password_reset_expire),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )
