"""
Tests for codemem.scopes — scope registry, handles, transactions.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

import sqlite3
import pytest

from codemem.config import StoreConfig
from codemem.errors import InvalidInputError
from codemem.migrations import SCHEMA_VERSION, MigrationRunner
from codemem.scopes import ScopeDatabaseManager, project_db_name, resolve_scopes


@pytest.fixture
def store_config(tmp_path):
    return StoreConfig(db_root=str(tmp_path / "db"), workspace=str(tmp_path / "myapp"))


@pytest.fixture
def manager(store_config):
    m = ScopeDatabaseManager(store_config)
    yield m
    m.close()


@pytest.fixture
def mem_manager(store_config):
    m = ScopeDatabaseManager(store_config, in_memory=True)
    yield m
    m.close()


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


class TestProjectName:
    def test_basename(self):
        assert project_db_name("/home/dev/src/myapp") == "myapp"

    def test_unsafe_characters_replaced(self):
        assert project_db_name("/tmp/my app!") == "my_app_"

    def test_collision_with_user_scope(self):
        assert project_db_name("/srv/user") == "user-project"
        assert project_db_name("/srv/global") == "global-project"

    def test_empty_falls_back(self):
        assert project_db_name("/") == "project"


class TestResolveScopes:
    def test_concrete(self):
        assert resolve_scopes("user") == ("user",)

    def test_all_fans_out_in_order(self):
        assert resolve_scopes("all") == ("project", "user", "global")

    def test_all_rejected_when_not_allowed(self):
        with pytest.raises(InvalidInputError):
            resolve_scopes("all", allow_all=False)

    def test_unknown(self):
        with pytest.raises(InvalidInputError):
            resolve_scopes("team")


# ---------------------------------------------------------------------------
# Opening
# ---------------------------------------------------------------------------


class TestOpen:
    def test_open_twice_returns_same_handle(self, manager):
        assert manager.open("project") is manager.open("project")

    def test_files_created_under_root(self, manager, tmp_path):
        manager.open("project")
        manager.open("user")
        manager.open("global")
        root = tmp_path / "db"
        assert (root / "myapp.db").exists()
        assert (root / "user.db").exists()
        assert (root / "global.db").exists()

    def test_root_directory_created(self, tmp_path):
        cfg = StoreConfig(db_root=str(tmp_path / "a" / "b" / "c"),
                          workspace=str(tmp_path / "ws"))
        with ScopeDatabaseManager(cfg) as m:
            m.open("global")
        assert (tmp_path / "a" / "b" / "c" / "global.db").exists()

    def test_invalid_scope(self, manager):
        with pytest.raises(InvalidInputError):
            manager.open("everything")

    def test_wal_mode(self, manager):
        mode = manager.open("user").conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode.lower() == "wal"

    def test_foreign_keys_on(self, manager):
        assert manager.open("user").conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_tables_exist(self, mem_manager):
        conn = mem_manager.open("project").conn
        names = {r[0] for r in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'")}
        for table in ("knowledge", "knowledge_tags", "rules", "files",
                      "symbols", "imports", "schema_meta"):
            assert table in names

    def test_fresh_db_stamped_at_current_version(self, mem_manager):
        handle = mem_manager.open("global")
        assert handle.migration_report.fresh is True
        assert MigrationRunner().current_version(handle) == SCHEMA_VERSION

    def test_is_open_and_close(self, mem_manager):
        assert not mem_manager.is_open("user")
        mem_manager.open("user")
        assert mem_manager.is_open("user")
        assert mem_manager.open_scopes() == ["user"]
        mem_manager.close("user")
        assert not mem_manager.is_open("user")

    def test_close_all(self, mem_manager):
        mem_manager.open("project")
        mem_manager.open("global")
        mem_manager.close()
        assert mem_manager.open_scopes() == []

    def test_db_path(self, manager, mem_manager, tmp_path):
        assert manager.db_path("user") == tmp_path / "db" / "user.db"
        assert mem_manager.db_path("user") is None

    def test_in_memory_scopes_are_isolated(self, mem_manager):
        now = 1700000000
        p = mem_manager.open("project")
        with p.transaction() as conn:
            conn.execute(
                "INSERT INTO rules (id, title, content, created_at, updated_at) "
                "VALUES ('r1', 't', 'c', ?, ?)", (now, now))
        u = mem_manager.open("user")
        assert u.conn.execute("SELECT COUNT(*) FROM rules").fetchone()[0] == 0

    def test_reopen_keeps_data(self, store_config):
        with ScopeDatabaseManager(store_config) as m:
            h = m.open("user")
            with h.transaction() as conn:
                conn.execute(
                    "INSERT INTO rules (id, title, content, created_at, updated_at) "
                    "VALUES ('r1', 't', 'c', 1, 1)")
        with ScopeDatabaseManager(store_config) as m:
            rows = m.open("user").conn.execute("SELECT id FROM rules").fetchall()
            assert [r[0] for r in rows] == ["r1"]
            assert m.open("user").migration_report.fresh is False


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransaction:
    def _count(self, handle):
        return handle.conn.execute("SELECT COUNT(*) FROM rules").fetchone()[0]

    def _insert(self, conn, rid):
        conn.execute(
            "INSERT INTO rules (id, title, content, created_at, updated_at) "
            "VALUES (?, 't', 'c', 1, 1)", (rid,))

    def test_commit(self, mem_manager):
        h = mem_manager.open("global")
        with h.transaction() as conn:
            self._insert(conn, "a")
        assert self._count(h) == 1
        assert not h.conn.in_transaction

    def test_rollback_on_error(self, mem_manager):
        h = mem_manager.open("global")
        with pytest.raises(RuntimeError):
            with h.transaction() as conn:
                self._insert(conn, "a")
                raise RuntimeError("boom")
        assert self._count(h) == 0
        assert not h.conn.in_transaction

    def test_nested_savepoint_rolls_back_inner_only(self, mem_manager):
        h = mem_manager.open("global")
        with h.transaction() as conn:
            self._insert(conn, "outer")
            with pytest.raises(sqlite3.IntegrityError):
                with h.transaction():
                    self._insert(conn, "inner")
                    self._insert(conn, "outer")  # duplicate key
        ids = [r[0] for r in h.conn.execute("SELECT id FROM rules")]
        assert ids == ["outer"]

    def test_columns_cache(self, mem_manager):
        h = mem_manager.open("project")
        cols = h.columns("knowledge")
        assert "related_symbols" in cols
        assert h.columns("knowledge") is cols
        h.invalidate()
        assert h.columns("knowledge") == cols

    def test_size_bytes_positive(self, manager):
        assert manager.open("project").size_bytes() > 0
