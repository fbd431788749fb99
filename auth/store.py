"""
auth/store.py -- SQLAlchemy Core persistence for users and organizations.

Pattern: Repository + Data Mapper.
UserStore / OrganizationStore are the repositories; _row_to_user /
_row_to_organization are the mappers. The reconciler and the bridge never touch
SQL directly -- they go through the UserRepository / OrganizationRepository
interfaces in auth/contracts.py, which these classes implement.

Column names come from Settings (user_id_column, email_column, ...) so the
bridge can sit on top of an existing users table. Table layout is built per
store instance for the same reason.

Concurrency:
  The external id and email columns are UNIQUE. Two requests reconciling the
  same brand-new identity at the same moment both reach create(); the loser
  gets DuplicateRecordError and the reconciler re-reads the winner's row.
  SQLite treats NULLs as distinct in UNIQUE constraints, so any number of
  not-yet-linked users (NULL external id) or emailless users can coexist.

Security:
  All queries use bound parameters. Column names are validated as plain
  identifiers by core/config.py before they reach the schema.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.contracts import OrganizationRepository, UserRepository
from auth.models import Organization, User
from core.config import Settings
from core.errors import DuplicateRecordError, StorageError

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create the engine shared by the user and organization stores."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _storage_errors() -> Iterator[None]:
    """Translate SQLAlchemy failures into the storage-neutral errors in core.errors."""
    try:
        yield
    except IntegrityError as e:
        raise DuplicateRecordError(str(e.orig)) from e
    except SQLAlchemyError as e:
        raise StorageError(str(e)) from e


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore(UserRepository):
    """Repository for User entities.

    Usage:
        engine = make_engine("sqlite:///bridge.db")
        store = UserStore(settings, engine)
        user = store.create(User(email="a@example.com"))
        store.find_by_email("a@example.com")
    """

    def __init__(self, settings: Settings, engine: Engine) -> None:
        self.engine = engine
        self._metadata = MetaData()
        self._id_col = settings.user_id_column
        self._external_col = settings.user_id_external_column
        self._email_col = settings.email_column
        self._name_col = settings.name_column
        self._org_col = settings.organization_id_column
        self.table = Table(
            settings.user_table,
            self._metadata,
            Column(self._id_col, Integer, primary_key=True, autoincrement=True),
            Column(self._external_col, String(255), unique=True),  # NULL until first link
            Column(self._email_col, String(255), unique=True),  # NULL for emailless identities
            Column(self._name_col, Text),
            Column(self._org_col, String(255)),  # provider org id, not a local FK
            Column("remember_token", String(100)),
            Column("created_at", String(32), nullable=False),
            Column("updated_at", String(32)),
        )
        with _storage_errors():
            self._metadata.create_all(self.engine)

    def _column(self, name: str):
        return self.table.c[name]

    def _find_one(self, column: str, value: Any) -> User | None:
        with _storage_errors(), self.engine.connect() as conn:
            row = conn.execute(self.table.select().where(self._column(column) == value)).fetchone()
        return self._row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: Any) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        return self._find_one(self._id_col, user_id)

    def find_by_external_id(self, external_user_id: str) -> User | None:
        """Look up a user by the provider's stable user id."""
        return self._find_one(self._external_col, external_user_id)

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive, as stored)."""
        return self._find_one(self._email_col, email)

    def create(self, user: User) -> User:
        """Insert a new user and return it with its assigned id.

        Raises DuplicateRecordError if the external id or email already exists.
        """
        created_at = _now_iso()
        with _storage_errors(), self.engine.connect() as conn:
            result = conn.execute(
                self.table.insert().values(
                    {
                        self._external_col: user.external_user_id,
                        self._email_col: user.email,
                        self._name_col: user.name,
                        self._org_col: user.organization_ref,
                        "remember_token": user.remember_token,
                        "created_at": created_at,
                    }
                )
            )
            conn.commit()
            new_id = result.inserted_primary_key[0]
        user.id = new_id
        user.created_at = created_at
        return user

    def update(self, user: User) -> None:
        """Write every mutable field of user back to its row."""
        updated_at = _now_iso()
        with _storage_errors(), self.engine.connect() as conn:
            conn.execute(
                self.table.update()
                .where(self._column(self._id_col) == user.id)
                .values(
                    {
                        self._external_col: user.external_user_id,
                        self._email_col: user.email,
                        self._name_col: user.name,
                        self._org_col: user.organization_ref,
                        "remember_token": user.remember_token,
                        "updated_at": updated_at,
                    }
                )
            )
            conn.commit()
        user.updated_at = updated_at

    def new_user(self) -> User:
        return User()

    def get_local_id(self, user: User) -> Any:
        return user.id

    def close(self) -> None:
        self.engine.dispose()

    def _row_to_user(self, row) -> User:
        data = row._mapping
        return User(
            id=data[self._id_col],
            external_user_id=data[self._external_col],
            email=data[self._email_col],
            name=data[self._name_col],
            organization_ref=data[self._org_col],
            remember_token=data["remember_token"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
        )


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------


class OrganizationStore(OrganizationRepository):
    """Repository for Organization entities (business mode only)."""

    def __init__(self, settings: Settings, engine: Engine) -> None:
        self.engine = engine
        self._metadata = MetaData()
        self._external_col = settings.organization_id_column
        self._name_col = settings.organization_name_column
        self.table = Table(
            settings.organization_table,
            self._metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column(self._external_col, String(255), nullable=False, unique=True),
            Column(self._name_col, Text),
            Column("created_at", String(32), nullable=False),
        )
        with _storage_errors():
            self._metadata.create_all(self.engine)

    def find_by_external_id(self, external_organization_id: str) -> Organization | None:
        with _storage_errors(), self.engine.connect() as conn:
            row = conn.execute(
                self.table.select().where(self.table.c[self._external_col] == external_organization_id)
            ).fetchone()
        return self._row_to_organization(row) if row is not None else None

    def create(self, organization: Organization) -> Organization:
        """Insert an organization. Raises DuplicateRecordError if the external id exists."""
        created_at = _now_iso()
        with _storage_errors(), self.engine.connect() as conn:
            result = conn.execute(
                self.table.insert().values(
                    {
                        self._external_col: organization.external_organization_id,
                        self._name_col: organization.name,
                        "created_at": created_at,
                    }
                )
            )
            conn.commit()
            new_id = result.inserted_primary_key[0]
        organization.id = new_id
        organization.created_at = created_at
        return organization

    def update(self, organization: Organization) -> None:
        with _storage_errors(), self.engine.connect() as conn:
            conn.execute(
                self.table.update()
                .where(self.table.c.id == organization.id)
                .values({self._name_col: organization.name})
            )
            conn.commit()

    def count(self) -> int:
        """Return the number of stored organizations."""
        with _storage_errors(), self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(self.table)).scalar() or 0

    def new_organization(self) -> Organization:
        return Organization()

    def close(self) -> None:
        self.engine.dispose()

    def _row_to_organization(self, row) -> Organization:
        data = row._mapping
        return Organization(
            id=data["id"],
            external_organization_id=data[self._external_col],
            name=data[self._name_col],
            created_at=data["created_at"],
        )
