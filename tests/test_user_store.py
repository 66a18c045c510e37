"""Tests for auth/store.py -- account persistence, migration and bootstrap.

All tests run against a fresh in-memory SQLite database. The `store` fixture
already holds the bootstrap admin (id=1, admin/admin123).

Covers:
- Every method raises NotInitialized before initialize()
- Bootstrap seeds exactly once and never touches a non-empty table
- Additive migration upgrades a legacy table and keeps its rows
- Username uniqueness holds across active and deactivated rows
- Deactivated accounts vanish from active lookups but stay in list_all() and
  the any-state lookups by id and by username
- update_fields / set_password / delete_hard report unknown ids
- record_login failures come back as a warning, not an exception
"""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

import auth.store as store_module
from auth.errors import DuplicateUsername, NotFound, NotInitialized
from auth.models import AccountView, Role
from auth.passwords import PasswordHasher
from auth.store import DEFAULT_ADMIN_PASSWORD, DEFAULT_ADMIN_USERNAME, UserStore


def _hash(hasher: PasswordHasher, plain: str = "Secret123") -> str:
    return hasher.hash(plain)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_uninitialized_store_refuses_work(self) -> None:
        s = UserStore("sqlite:///:memory:")
        assert not s.initialized
        with pytest.raises(NotInitialized):
            s.get_by_username("admin")
        with pytest.raises(NotInitialized):
            s.list_all()
        with pytest.raises(NotInitialized):
            s.create_account("alice", "$2b$04$fakefakefakefakefakefu", Role.user)
        with pytest.raises(NotInitialized):
            s.record_login(1)

    def test_ping(self, store: UserStore) -> None:
        assert store.ping() is True
        assert UserStore("sqlite:///:memory:").ping() is False

    def test_shutdown_is_idempotent(self, hasher: PasswordHasher) -> None:
        s = UserStore("sqlite:///:memory:")
        s.initialize(hasher)
        s.shutdown()
        s.shutdown()
        assert not s.initialized
        with pytest.raises(NotInitialized):
            s.has_accounts()

    def test_initialize_twice_is_noop(self, store: UserStore, hasher: PasswordHasher) -> None:
        store.initialize(hasher)
        assert len(store.list_all()) == 1

    def test_file_database_creates_parent_dir(self, tmp_path, hasher: PasswordHasher) -> None:
        db_file = tmp_path / "nested" / "dir" / "users.db"
        s = UserStore(f"sqlite:///{db_file}")
        s.initialize(hasher)
        try:
            assert db_file.exists()
            assert s.has_accounts()
        finally:
            s.shutdown()


# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------


class TestBootstrap:
    def test_empty_table_gets_default_admin(self, store: UserStore, hasher: PasswordHasher) -> None:
        accounts = store.list_all()
        assert len(accounts) == 1
        admin = store.get_by_username(DEFAULT_ADMIN_USERNAME)
        assert admin is not None
        assert admin.role == Role.admin
        assert admin.is_active
        assert hasher.verify(DEFAULT_ADMIN_PASSWORD, admin.password_hash)

    def test_bootstrap_logs_warning(self, hasher: PasswordHasher, caplog) -> None:
        s = UserStore("sqlite:///:memory:")
        with caplog.at_level("WARNING", logger="authgate.store"):
            s.initialize(hasher)
        s.shutdown()
        assert "Default admin account created" in caplog.text

    def test_restart_does_not_reseed(self, tmp_path, hasher: PasswordHasher) -> None:
        url = f"sqlite:///{tmp_path / 'users.db'}"
        first = UserStore(url)
        first.initialize(hasher)
        first.shutdown()

        second = UserStore(url)
        second.initialize(hasher)
        try:
            assert [a.username for a in second.list_all()] == [DEFAULT_ADMIN_USERNAME]
        finally:
            second.shutdown()

    def test_non_empty_table_without_admin_is_left_alone(self, tmp_path, hasher: PasswordHasher) -> None:
        url = f"sqlite:///{tmp_path / 'users.db'}"
        first = UserStore(url)
        first.initialize(hasher)
        first.create_account("alice", _hash(hasher), Role.user)
        first.delete_hard(1)
        first.shutdown()

        second = UserStore(url)
        second.initialize(hasher)
        try:
            assert [a.username for a in second.list_all()] == ["alice"]
            assert second.count_active_admins() == 0
        finally:
            second.shutdown()

    def test_seed_statement_guards_on_emptiness(self, store: UserStore, hasher: PasswordHasher) -> None:
        # Calling the seeding step directly on a populated table inserts nothing.
        store._seed_default_admin(store._engine, hasher)
        assert len(store.list_all()) == 1


# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------


_LEGACY_SCHEMA = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username VARCHAR(255) NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at VARCHAR(32) NOT NULL,
    updated_at VARCHAR(32) NOT NULL,
    last_login VARCHAR(32),
    is_active INTEGER NOT NULL DEFAULT 1
)
"""


class TestMigration:
    def _legacy_db(self, tmp_path, rows: list[tuple[str, str]]) -> str:
        from sqlalchemy import create_engine

        url = f"sqlite:///{tmp_path / 'legacy.db'}"
        engine = create_engine(url)
        with engine.begin() as conn:
            conn.execute(text(_LEGACY_SCHEMA))
            for username, password_hash in rows:
                conn.execute(
                    text(
                        "INSERT INTO users (username, password_hash, created_at, updated_at) "
                        "VALUES (:u, :h, '2024-01-01T00:00:00+00:00', '2024-01-01T00:00:00+00:00')"
                    ),
                    {"u": username, "h": password_hash},
                )
        engine.dispose()
        return url

    def test_role_column_added_with_default(self, tmp_path, hasher: PasswordHasher) -> None:
        url = self._legacy_db(tmp_path, [("legacy", _hash(hasher))])
        s = UserStore(url)
        s.initialize(hasher)
        try:
            account = s.get_by_username("legacy")
            assert account is not None
            assert account.role == Role.user
            # Populated table: no bootstrap admin was added.
            assert s.get_by_username(DEFAULT_ADMIN_USERNAME) is None
        finally:
            s.shutdown()

    def test_migration_is_idempotent(self, tmp_path, hasher: PasswordHasher) -> None:
        url = self._legacy_db(tmp_path, [("legacy", _hash(hasher))])
        for _ in range(2):
            s = UserStore(url)
            s.initialize(hasher)
            assert [a.username for a in s.list_all()] == ["legacy"]
            s.shutdown()

    def test_unexpected_migration_error_aborts(self, hasher: PasswordHasher, monkeypatch) -> None:
        monkeypatch.setattr(store_module, "_ADDITIVE_COLUMNS", (("broken", "NOT A TYPE ((("),))
        s = UserStore("sqlite:///:memory:")
        with pytest.raises(DBAPIError):
            s.initialize(hasher)
        assert not s.initialized


# ---------------------------------------------------------------------------
# Queries and mutations
# ---------------------------------------------------------------------------


class TestCreateAndLookup:
    def test_create_returns_id(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher), Role.user)
        assert isinstance(uid, int)
        view = store.get_by_id(uid)
        assert isinstance(view, AccountView)
        assert view.username == "alice"
        assert not hasattr(view, "password_hash")
        assert view.created_at == view.updated_at
        assert view.last_login_at is None

    def test_duplicate_username_rejected(self, store: UserStore, hasher: PasswordHasher) -> None:
        store.create_account("alice", _hash(hasher))
        with pytest.raises(DuplicateUsername):
            store.create_account("alice", _hash(hasher))

    def test_username_lookup_is_case_sensitive(self, store: UserStore, hasher: PasswordHasher) -> None:
        store.create_account("Alice", _hash(hasher))
        assert store.get_by_username("Alice") is not None
        assert store.get_by_username("alice") is None

    def test_empty_hash_rejected(self, store: UserStore) -> None:
        with pytest.raises(ValueError):
            store.create_account("alice", "")

    def test_unknown_lookups_return_none(self, store: UserStore) -> None:
        assert store.get_by_username("ghost") is None
        assert store.get_by_id(999) is None
        assert store.get_account_any_state(999) is None

    def test_list_all_newest_first(self, store: UserStore, hasher: PasswordHasher) -> None:
        store.create_account("first", _hash(hasher))
        store.create_account("second", _hash(hasher))
        names = [a.username for a in store.list_all()]
        assert names.index("second") < names.index("first")

    def test_count_active_admins(self, store: UserStore, hasher: PasswordHasher) -> None:
        assert store.count_active_admins() == 1
        uid = store.create_account("boss", _hash(hasher), Role.admin)
        assert store.count_active_admins() == 2
        store.deactivate(uid)
        assert store.count_active_admins() == 1


class TestDeactivation:
    def test_deactivated_hidden_from_active_lookups(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher))
        store.deactivate(uid)
        assert store.get_by_username("alice") is None
        assert store.get_by_id(uid) is None
        any_state = store.get_account_any_state(uid)
        assert any_state is not None and not any_state.is_active
        assert any(a.id == uid and not a.is_active for a in store.list_all())

    def test_username_lookup_any_state(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher))
        store.deactivate(uid)
        view = store.get_by_username_any_state("alice")
        assert view is not None and view.id == uid and not view.is_active
        assert store.get_by_username_any_state("admin").is_active
        assert store.get_by_username_any_state("ALICE") is None
        assert store.get_by_username_any_state("ghost") is None

    def test_deactivated_username_stays_reserved(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher))
        store.deactivate(uid)
        with pytest.raises(DuplicateUsername):
            store.create_account("alice", _hash(hasher))

    def test_reactivate_through_update_fields(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher))
        store.deactivate(uid)
        view = store.update_fields(uid, is_active=True)
        assert view.is_active
        assert store.get_by_username("alice") is not None


class TestUpdates:
    def test_update_fields_changes_only_supplied(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher))
        before = store.get_by_id(uid)
        view = store.update_fields(uid, role=Role.admin)
        assert view.role == Role.admin
        assert view.username == "alice"
        assert view.created_at == before.created_at
        assert view.updated_at >= before.updated_at

    def test_rename_collision(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher))
        store.create_account("bob", _hash(hasher))
        with pytest.raises(DuplicateUsername):
            store.update_fields(uid, username="bob")

    def test_update_unknown_id(self, store: UserStore) -> None:
        with pytest.raises(NotFound):
            store.update_fields(999, role=Role.admin)
        with pytest.raises(NotFound):
            store.update_role(999, Role.user)

    def test_set_password(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher, "OldPass123"))
        store.set_password(uid, _hash(hasher, "NewPass123"))
        account = store.get_by_username("alice")
        assert hasher.verify("NewPass123", account.password_hash)
        assert not hasher.verify("OldPass123", account.password_hash)

    def test_set_password_unknown_id(self, store: UserStore, hasher: PasswordHasher) -> None:
        with pytest.raises(NotFound):
            store.set_password(999, _hash(hasher))

    def test_delete_hard(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher))
        store.delete_hard(uid)
        assert store.get_account_any_state(uid) is None
        with pytest.raises(NotFound):
            store.delete_hard(uid)
        # Hard delete frees the username.
        store.create_account("alice", _hash(hasher))


class TestRecordLogin:
    def test_stamps_last_login_only(self, store: UserStore, hasher: PasswordHasher) -> None:
        uid = store.create_account("alice", _hash(hasher))
        before = store.get_by_id(uid)
        assert store.record_login(uid) is None
        after = store.get_by_id(uid)
        assert after.last_login_at is not None
        assert after.updated_at == before.updated_at

    def test_failure_returns_warning(self, store: UserStore, caplog) -> None:
        with store._engine.begin() as conn:
            conn.execute(text("DROP TABLE users"))
        with caplog.at_level("WARNING", logger="authgate.store"):
            warning = store.record_login(1)
        assert warning is not None
        assert "last-login" in warning
        assert "Could not record login" in caplog.text
