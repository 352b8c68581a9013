"""
Scope Database Manager — one SQLite handle per scope

Scopes:
    project  - <db_root>/<workspace-basename>.db
    user     - <db_root>/user.db
    global   - <db_root>/global.db

The manager is an explicit registry: the application root (MCP server,
CLI, or a test fixture) creates one and passes it to KnowledgeStore,
RuleStore and CodeIndex.  Handles are opened lazily, migrated, given
their schema, then cached until close().

Thread safety: connections use check_same_thread=False; writes are
serialized by the per-handle lock taken in transaction().

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import itertools
import logging
import re
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from codemem.config import StoreConfig
from codemem.errors import InvalidInputError
from codemem.schema import create_schema, table_columns
from codemem.types import ALL_SCOPES, SCOPES, VALID_SCOPES, MigrationReport

logger = logging.getLogger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_.\-]")


def project_db_name(workspace: str) -> str:
    """File stem for the project scope, derived from the workspace folder."""
    name = _UNSAFE_NAME_RE.sub("_", Path(workspace).name).strip(".")
    if not name:
        return "project"
    if name.lower() in VALID_SCOPES - {"project"}:
        # A workspace named "user" must not share user.db
        return f"{name}-project"
    return name


def resolve_scopes(scope: Optional[str], *, allow_all: bool = True) -> Tuple[str, ...]:
    """Expand a scope argument into concrete scope names.

    Raises:
        InvalidInputError: unknown scope, or "all" where it is not allowed.
    """
    if scope == ALL_SCOPES and allow_all:
        return SCOPES
    if scope in VALID_SCOPES:
        return (scope,)
    allowed = "project|user|global" + ("|all" if allow_all else "")
    raise InvalidInputError(f"Invalid scope {scope!r} (expected {allowed})")


class ScopeHandle:
    """An open, migrated scope database."""

    def __init__(self, scope: str, conn: sqlite3.Connection, path: Optional[Path]):
        self.scope = scope
        self.conn = conn
        self.path = path
        self.lock = threading.RLock()
        self.fts: Dict[str, bool] = {"knowledge": False, "symbols": False}
        # True once knowledge_tags is complete for every row
        self.tags_junction = False
        self.migration_report: Optional[MigrationReport] = None
        self._columns: Dict[str, FrozenSet[str]] = {}
        self._savepoints = itertools.count(1)

    def __repr__(self) -> str:
        return f"ScopeHandle({self.scope!r}, path={str(self.path) if self.path else ':memory:'})"

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Explicit transaction; nested use becomes a savepoint."""
        with self.lock:
            if self.conn.in_transaction:
                name = f"sp_{next(self._savepoints)}"
                self.conn.execute(f"SAVEPOINT {name}")
                try:
                    yield self.conn
                except BaseException:
                    self.conn.execute(f"ROLLBACK TO {name}")
                    self.conn.execute(f"RELEASE {name}")
                    raise
                self.conn.execute(f"RELEASE {name}")
                return

            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
                self.conn.execute("COMMIT")
            except BaseException:
                if self.conn.in_transaction:
                    self.conn.execute("ROLLBACK")
                raise

    def columns(self, table: str) -> FrozenSet[str]:
        """Actual column names of a table (cached until invalidate())."""
        cols = self._columns.get(table)
        if cols is None:
            cols = frozenset(table_columns(self.conn, table))
            self._columns[table] = cols
        return cols

    def invalidate(self) -> None:
        self._columns.clear()

    def size_bytes(self) -> int:
        """Database size from the page count (main file, excluding WAL)."""
        page_count = self.conn.execute("PRAGMA page_count").fetchone()[0]
        page_size = self.conn.execute("PRAGMA page_size").fetchone()[0]
        return int(page_count) * int(page_size)

    def close(self) -> None:
        """Checkpoint the WAL into the main file and close."""
        with self.lock:
            try:
                if self.path is not None:
                    self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            except sqlite3.Error as exc:
                logger.warning("[%s] WAL checkpoint failed on close: %s", self.scope, exc)
            self.conn.close()


class ScopeDatabaseManager:
    """
    Registry of scope handles.

    Each scope is opened at most once; later open() calls return the
    cached handle.  Use ``in_memory=True`` for isolated test instances.
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        *,
        in_memory: bool = False,
        runner=None,
    ):
        from codemem.migrations import MigrationRunner

        self.config = config or StoreConfig()
        self.in_memory = in_memory
        self.project_name = project_db_name(self.config.workspace)
        self._runner = runner or MigrationRunner()
        self._handles: Dict[str, ScopeHandle] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> ScopeDatabaseManager:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def db_path(self, scope: str) -> Optional[Path]:
        """Storage file of a scope (None for in-memory managers)."""
        resolve_scopes(scope, allow_all=False)
        if self.in_memory:
            return None
        stem = self.project_name if scope == "project" else scope
        return Path(self.config.db_root).expanduser() / f"{stem}.db"

    def is_open(self, scope: str) -> bool:
        return scope in self._handles

    def open_scopes(self) -> List[str]:
        return [s for s in SCOPES if s in self._handles]

    def open(self, scope: str) -> ScopeHandle:
        """Return the scope's handle, creating and migrating it on first use.

        Raises:
            InvalidInputError: unknown scope name.
            OSError: the root directory cannot be created.
            sqlite3.Error: the database cannot be opened or initialized.
        """
        handle = self._handles.get(scope)
        if handle is not None:
            return handle
        with self._lock:
            handle = self._handles.get(scope)
            if handle is None:
                handle = self._open_new(scope)
                self._handles[scope] = handle
        return handle

    def _open_new(self, scope: str) -> ScopeHandle:
        from codemem.migrations import TAGS_JUNCTION_VERSION

        path = self.db_path(scope)
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(path) if path is not None else ":memory:",
            check_same_thread=False,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        try:
            if path is not None and self.config.wal_mode:
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute(f"PRAGMA cache_size=-{int(self.config.cache_size_kib)}")
            conn.execute("PRAGMA temp_store=MEMORY")
            conn.execute("PRAGMA foreign_keys=ON")

            handle = ScopeHandle(scope, conn, path)
            report = self._runner.migrate(handle)
            handle.migration_report = report
            create_schema(handle)
            if report.fresh:
                self._runner.stamp_current(handle)
            handle.tags_junction = report.fresh or (
                self._runner.current_version(handle) >= TAGS_JUNCTION_VERSION
            )
            handle.invalidate()
        except BaseException:
            conn.close()
            raise

        logger.info(
            "Scope opened: %s (%s, fts=%s, schema=%s)",
            scope, path or ":memory:",
            "yes" if handle.fts["knowledge"] else "no",
            self._runner.current_version(handle),
        )
        return handle

    def close(self, scope: Optional[str] = None) -> None:
        """Close one scope, or every open scope when scope is None."""
        with self._lock:
            names = [scope] if scope is not None else list(self._handles)
            for name in names:
                handle = self._handles.pop(name, None)
                if handle is not None:
                    handle.close()
                    logger.debug("Scope closed: %s", name)
