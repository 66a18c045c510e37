"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_account / _row_to_view are the mappers.
Route, CLI and dependency code never touches SQL directly.

Lifecycle:
  UserStore(db_url) only records configuration. initialize() opens the engine,
  creates/migrates the schema and seeds the bootstrap admin; shutdown()
  disposes the engine. Every other method raises NotInitialized until
  initialize() has completed, so nothing ever runs against an absent
  connection. One store object is built at startup and handed to whoever
  needs it (app.state.user_store, the CLI) -- there is no module-level
  connection.

Security:
  All queries use bound parameters. The only interpolated SQL is the
  migration DDL, built from the module constant _ADDITIVE_COLUMNS.
  password_hash is only ever written from a PasswordHasher output and only
  ever read back through get_by_username() (the login path). Every other
  lookup returns AccountView, which has no hash field.

Uniqueness:
  UNIQUE(username) is enforced by the database across active AND inactive
  rows. A deactivated account keeps its username reserved for audit.

Schema migration notes:
  Migrations are additive and idempotent. Each is an ALTER TABLE ADD COLUMN
  attempted on every startup; the "duplicate column" / "already exists"
  error means the column is there and is swallowed. Any other error aborts
  initialize() and therefore startup. Data in pre-existing tables is never
  dropped or truncated.

Bootstrap:
  On an empty table exactly one admin/admin123 account is created. The
  emptiness check and the insert are a single INSERT ... WHERE NOT EXISTS
  statement, so two processes starting at once cannot both seed.

Layer rule: no imports from api/ or main.py.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError

from auth.errors import DuplicateUsername, NotFound, NotInitialized
from auth.models import Account, AccountView, Role
from auth.passwords import PasswordHasher

logger = logging.getLogger("authgate.store")

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "admin123"  # noqa: S105 # nosec B105 -- documented bootstrap credential

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default=Role.user.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

# (column name, column DDL) pairs applied in order to tables created by older
# releases. Append only.
_ADDITIVE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("role", "VARCHAR(10) NOT NULL DEFAULT 'user'"),
)


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


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_duplicate_column(exc: DBAPIError) -> bool:
    # SQLite: "duplicate column name: role"; PostgreSQL: 'column "role" ... already exists'
    message = str(exc.orig).lower()
    return "duplicate column" in message or "already exists" in message


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Account entities.

    Usage:
        store = UserStore("sqlite:///data/users.db")
        store.initialize(PasswordHasher())
        uid = store.create_account("alice", hasher.hash("Secret123"), Role.user)
        account = store.get_by_username("alice")
        store.shutdown()
    """

    def __init__(self, db_url: str, timeout: float = 10.0) -> None:
        self.db_url = db_url
        self.timeout = timeout
        self._engine: Engine | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    def initialize(self, hasher: PasswordHasher) -> None:
        """Open the engine, create/migrate the schema and seed the bootstrap admin.

        Blocks until done. Any failure disposes the half-built engine and
        propagates -- the store stays uninitialized and startup must abort.
        Calling it again on an initialized store is a no-op.
        """
        if self._engine is not None:
            return

        connect_args: dict = {}
        is_sqlite = self.db_url.startswith("sqlite")
        if is_sqlite:
            db_file = _sqlite_file_path(self.db_url)
            if db_file is not None:
                db_file.parent.mkdir(parents=True, exist_ok=True)
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = self.timeout
        engine = create_engine(self.db_url, connect_args=connect_args)
        if is_sqlite:
            event.listen(engine, "connect", _set_wal_mode)

        try:
            _metadata.create_all(engine)
            self._apply_additive_migrations(engine)
            with engine.begin() as conn:
                conn.execute(text("CREATE INDEX IF NOT EXISTS idx_users_username ON users (username)"))
            self._seed_default_admin(engine, hasher)
        except Exception:
            engine.dispose()
            raise

        self._engine = engine
        logger.info("User store initialized (%s)", engine.url.render_as_string(hide_password=True))

    def _apply_additive_migrations(self, engine: Engine) -> None:
        for column, ddl in _ADDITIVE_COLUMNS:
            try:
                with engine.begin() as conn:
                    conn.execute(text(f"ALTER TABLE users ADD COLUMN {column} {ddl}"))  # noqa: S608
            except DBAPIError as exc:
                if not _is_duplicate_column(exc):
                    logger.error("Migration adding users.%s failed", column)
                    raise
                logger.debug("Migration skipped: users.%s already exists", column)
            else:
                logger.info("Migrated users table: added column %s", column)

    def _seed_default_admin(self, engine: Engine, hasher: PasswordHasher) -> None:
        """Create admin/admin123 if and only if the table is empty.

        The COUNT(*) pre-check only avoids a bcrypt round on every startup;
        the NOT EXISTS guard on the insert is what makes seeding atomic.
        """
        with engine.connect() as conn:
            existing = conn.execute(select(func.count()).select_from(_users)).scalar()
        if existing:
            return

        password_hash = hasher.hash(DEFAULT_ADMIN_PASSWORD)
        now = _now_iso()
        with engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    INSERT INTO users (username, password_hash, role, created_at, updated_at, is_active)
                    SELECT :username, :password_hash, :role, :now, :now, 1
                    WHERE NOT EXISTS (SELECT 1 FROM users)
                    """
                ),
                {
                    "username": DEFAULT_ADMIN_USERNAME,
                    "password_hash": password_hash,
                    "role": Role.admin.value,
                    "now": now,
                },
            )
        if result.rowcount:
            logger.warning("=" * 72)
            logger.warning(
                "Default admin account created (username: %s, password: %s).",
                DEFAULT_ADMIN_USERNAME,
                DEFAULT_ADMIN_PASSWORD,
            )
            logger.warning("This credential is INSECURE. Change the admin password before exposing the service.")
            logger.warning("=" * 72)

    def shutdown(self) -> None:
        """Dispose the engine. Safe to call more than once."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("User store connection closed")

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise NotInitialized("UserStore.initialize() has not completed")
        return self._engine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Run a trivial query to verify the database is reachable."""
        try:
            with self._require_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
        except (NotInitialized, SQLAlchemyError):
            return False
        return True

    def has_accounts(self) -> bool:
        with self._require_engine().connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def get_by_username(self, username: str) -> Account | None:
        """Look up an active account by exact username (case-sensitive).

        The only lookup that returns password_hash; used by the login path.
        """
        with self._require_engine().connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.username == username) & (_users.c.is_active == 1))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, user_id: int) -> AccountView | None:
        """Look up an active account by primary key."""
        with self._require_engine().connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & (_users.c.is_active == 1))
            ).fetchone()
        return _row_to_view(row) if row is not None else None

    def get_account_any_state(self, user_id: int) -> AccountView | None:
        """Look up an account by id regardless of is_active. Admin-only."""
        with self._require_engine().connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_view(row) if row is not None else None

    def get_by_username_any_state(self, username: str) -> AccountView | None:
        """Look up an account by exact username regardless of is_active. Admin-only."""
        with self._require_engine().connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_view(row) if row is not None else None

    def list_all(self) -> list[AccountView]:
        """Every account, newest first, inactive ones included. Admin-only."""
        with self._require_engine().connect() as conn:
            rows = conn.execute(
                _users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())
            ).fetchall()
        return [_row_to_view(r) for r in rows]

    def count_active_admins(self) -> int:
        """Used by the admin routes to refuse removing the last active admin."""
        with self._require_engine().connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.admin.value) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_account(self, username: str, password_hash: str, role: Role | str = Role.user) -> int:
        """Insert a new account and return its id.

        Raises DuplicateUsername if any row -- active or deactivated -- already
        holds the username.
        """
        engine = self._require_engine()
        if not password_hash:
            raise ValueError("password_hash must be a PasswordHasher output")
        now = _now_iso()
        try:
            with engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=username,
                        password_hash=password_hash,
                        role=Role(role).value,
                        created_at=now,
                        updated_at=now,
                        is_active=1,
                    )
                )
        except IntegrityError as exc:
            raise DuplicateUsername(username) from exc
        return result.inserted_primary_key[0]

    def update_fields(
        self,
        user_id: int,
        *,
        username: str | None = None,
        role: Role | str | None = None,
        is_active: bool | None = None,
    ) -> AccountView:
        """Partially update an account; only supplied fields change.

        updated_at is refreshed even when no field is supplied. Works on
        inactive accounts too, which is how an admin reactivates one.

        Raises NotFound for an unknown id, DuplicateUsername if a rename
        collides.
        """
        engine = self._require_engine()
        values: dict = {"updated_at": _now_iso()}
        if username is not None:
            values["username"] = username
        if role is not None:
            values["role"] = Role(role).value
        if is_active is not None:
            values["is_active"] = 1 if is_active else 0
        try:
            with engine.begin() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        except IntegrityError as exc:
            raise DuplicateUsername(username or "") from exc
        if result.rowcount == 0:
            raise NotFound(user_id)
        view = self.get_account_any_state(user_id)
        if view is None:
            raise NotFound(user_id)
        return view

    def update_role(self, user_id: int, role: Role | str) -> AccountView:
        return self.update_fields(user_id, role=role)

    def set_password(self, user_id: int, password_hash: str) -> None:
        """Replace the stored hash. The argument must come from PasswordHasher.hash()."""
        engine = self._require_engine()
        if not password_hash:
            raise ValueError("password_hash must be a PasswordHasher output")
        with engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )
        if result.rowcount == 0:
            raise NotFound(user_id)

    def deactivate(self, user_id: int) -> AccountView:
        """Soft delete: hide the account from lookups, keep the row."""
        return self.update_fields(user_id, is_active=False)

    def delete_hard(self, user_id: int) -> None:
        """Permanently delete the row.

        Irreversible. Callers must have obtained explicit confirmation and
        checked the last-admin invariant; deactivate() never ends up here.
        """
        engine = self._require_engine()
        with engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        if result.rowcount == 0:
            raise NotFound(user_id)

    def record_login(self, user_id: int) -> str | None:
        """Stamp last_login with the current UTC time.

        Best effort: a database error is logged and returned as a warning
        string instead of raised, so an audit-timestamp failure never blocks
        a login. Returns None on success. Still raises NotInitialized.
        """
        engine = self._require_engine()
        try:
            with engine.begin() as conn:
                conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
        except SQLAlchemyError as exc:
            logger.warning("Could not record login for user_id=%s: %s", user_id, type(exc).__name__)
            return "Login succeeded but the last-login timestamp could not be recorded."
        return None


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        role=Role(row.role),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login,
        is_active=bool(row.is_active),
    )


def _row_to_view(row) -> AccountView:
    return AccountView(
        id=row.id,
        username=row.username,
        role=Role(row.role),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login,
        is_active=bool(row.is_active),
    )


def _sqlite_file_path(db_url: str) -> Path | None:
    """Return the filesystem path of a file-backed SQLite URL, else None."""
    prefix = "sqlite:///"
    if not db_url.startswith(prefix) or db_url.startswith(f"{prefix}file:") or db_url == "sqlite:///:memory:":
        return None
    return Path(db_url[len(prefix):])
