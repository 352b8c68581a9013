"""
Scope Database Schema

Tables (identical in every scope):
    knowledge        - Knowledge entries (JSON text for list fields)
    knowledge_tags   - Tag junction table (lower-cased) for tag filtering
    rules            - Coding rules with priority
    files            - Indexed source files, soft-delete aware
    symbols          - Symbol definitions, cascade-deleted with their file
    imports          - Import statements, cascade-deleted with their file
    schema_meta      - Key/value metadata (schema_version, created_at)

FTS5 shadow tables (optional, depend on the SQLite build):
    knowledge_fts    - external-content index over knowledge
    symbols_fts      - external-content index over symbols

Statements are kept as separate strings and executed one at a time so they
can run inside an explicit transaction (executescript() would commit it).

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, List, Sequence

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base tables
# ---------------------------------------------------------------------------

KNOWLEDGE_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge (
    id              TEXT PRIMARY KEY,
    content         TEXT NOT NULL,
    tags            TEXT NOT NULL DEFAULT '[]',   -- JSON array
    metadata        TEXT NOT NULL DEFAULT '{}',   -- JSON object
    source          TEXT,
    context         TEXT,
    related_files   TEXT,                         -- JSON array of paths
    related_symbols TEXT,                         -- JSON array of {name, kind, file, line}
    active_file     TEXT,
    created_at      INTEGER NOT NULL,
    updated_at      INTEGER NOT NULL
)
"""

KNOWLEDGE_TAGS_TABLE = """
CREATE TABLE IF NOT EXISTS knowledge_tags (
    knowledge_id TEXT NOT NULL REFERENCES knowledge(id) ON DELETE CASCADE,
    tag          TEXT NOT NULL,
    PRIMARY KEY (knowledge_id, tag)
)
"""

KNOWLEDGE_TAGS_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_knowledge_tags_tag ON knowledge_tags(tag)"
)

SCHEMA_META_TABLE = """
CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

BASE_STATEMENTS: Sequence[str] = (
    KNOWLEDGE_TABLE,
    KNOWLEDGE_TAGS_TABLE,
    SCHEMA_META_TABLE,
    """
CREATE TABLE IF NOT EXISTS rules (
    id          TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    content     TEXT NOT NULL,
    category    TEXT NOT NULL DEFAULT 'general',
    priority    INTEGER NOT NULL DEFAULT 5,
    enabled     INTEGER NOT NULL DEFAULT 1,
    created_at  INTEGER NOT NULL,
    updated_at  INTEGER NOT NULL
)
""",
    """
CREATE TABLE IF NOT EXISTS files (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    relative_path  TEXT NOT NULL UNIQUE,
    absolute_path  TEXT NOT NULL DEFAULT '',
    language_id    TEXT,
    content_hash   TEXT NOT NULL,
    line_count     INTEGER NOT NULL DEFAULT 0,
    size_bytes     INTEGER NOT NULL DEFAULT 0,
    mtime          REAL NOT NULL DEFAULT 0,
    indexed_at     INTEGER NOT NULL,
    is_deleted     INTEGER NOT NULL DEFAULT 0
)
""",
    """
CREATE TABLE IF NOT EXISTS symbols (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id         INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
    name            TEXT NOT NULL,
    kind            TEXT NOT NULL,
    container_name  TEXT,
    start_line      INTEGER NOT NULL,
    start_column    INTEGER NOT NULL DEFAULT 0,
    end_line        INTEGER NOT NULL,
    end_column      INTEGER NOT NULL DEFAULT 0,
    is_exported     INTEGER NOT NULL DEFAULT 0,
    signature       TEXT,
    doc_comment     TEXT
)
""",
    """
CREATE TABLE IF NOT EXISTS imports (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id          INTEGER NOT NULL REFERENCES files(id) ON DELETE CASCADE,
    import_path      TEXT NOT NULL,
    import_type      TEXT NOT NULL DEFAULT 'import',
    is_local         INTEGER NOT NULL DEFAULT 0,
    line_number      INTEGER NOT NULL DEFAULT 0,
    resolved_file_id INTEGER REFERENCES files(id) ON DELETE SET NULL
)
""",
    "CREATE INDEX IF NOT EXISTS idx_knowledge_updated ON knowledge(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_knowledge_created ON knowledge(created_at)",
    KNOWLEDGE_TAGS_INDEX,
    "CREATE INDEX IF NOT EXISTS idx_rules_category ON rules(category)",
    "CREATE INDEX IF NOT EXISTS idx_rules_priority ON rules(priority)",
    "CREATE INDEX IF NOT EXISTS idx_files_language ON files(language_id)",
    "CREATE INDEX IF NOT EXISTS idx_files_hash ON files(content_hash)",
    "CREATE INDEX IF NOT EXISTS idx_symbols_file ON symbols(file_id)",
    "CREATE INDEX IF NOT EXISTS idx_symbols_name ON symbols(name)",
    "CREATE INDEX IF NOT EXISTS idx_symbols_kind ON symbols(kind)",
    "CREATE INDEX IF NOT EXISTS idx_imports_file ON imports(file_id)",
    "CREATE INDEX IF NOT EXISTS idx_imports_path ON imports(import_path)",
)

# Indexes on columns added by migration 1 (absent from unmigrated scopes)
KNOWLEDGE_COLUMN_INDEXES = {
    "source": "CREATE INDEX IF NOT EXISTS idx_knowledge_source ON knowledge(source)",
    "context": "CREATE INDEX IF NOT EXISTS idx_knowledge_context ON knowledge(context)",
}

# ---------------------------------------------------------------------------
# FTS5 shadow tables
# ---------------------------------------------------------------------------
# External-content mode: the FTS index mirrors the base table but stores
# no duplicate data.  Triggers keep both in sync inside the writing
# transaction.
# ---------------------------------------------------------------------------

FTS_TOKENIZER = "unicode61 remove_diacritics 2"

KNOWLEDGE_FTS_COLUMNS: tuple = (
    "content", "tags", "context",
    "related_files", "related_symbols", "active_file",
)

# Names used by older releases; dropped whenever the FTS table is rebuilt.
LEGACY_KNOWLEDGE_TRIGGERS: tuple = (
    "knowledge_fts_insert", "knowledge_fts_delete", "knowledge_fts_update",
)
KNOWLEDGE_TRIGGERS: tuple = (
    "knowledge_fts_ai", "knowledge_fts_bd", "knowledge_fts_bu", "knowledge_fts_au",
)

SYMBOLS_FTS_COLUMNS: tuple = ("name", "container_name", "signature", "doc_comment")


def _fts_statements(
    fts: str, table: str, columns: Sequence[str], rowid: str,
) -> List[str]:
    """CREATE statements for an external-content FTS5 table and its triggers."""
    cols = ", ".join(columns)
    new_vals = ", ".join(f"new.{c}" for c in columns)
    old_vals = ", ".join(f"old.{c}" for c in columns)
    return [
        f"CREATE VIRTUAL TABLE IF NOT EXISTS {fts} USING fts5("
        f"{cols}, content='{table}', content_rowid='{rowid}', "
        f"tokenize='{FTS_TOKENIZER}')",
        f"CREATE TRIGGER IF NOT EXISTS {fts}_ai AFTER INSERT ON {table} BEGIN "
        f"INSERT INTO {fts}(rowid, {cols}) VALUES (new.{rowid}, {new_vals}); END",
        f"CREATE TRIGGER IF NOT EXISTS {fts}_bd BEFORE DELETE ON {table} BEGIN "
        f"INSERT INTO {fts}({fts}, rowid, {cols}) "
        f"VALUES ('delete', old.{rowid}, {old_vals}); END",
        f"CREATE TRIGGER IF NOT EXISTS {fts}_bu BEFORE UPDATE ON {table} BEGIN "
        f"INSERT INTO {fts}({fts}, rowid, {cols}) "
        f"VALUES ('delete', old.{rowid}, {old_vals}); END",
        f"CREATE TRIGGER IF NOT EXISTS {fts}_au AFTER UPDATE ON {table} BEGIN "
        f"INSERT INTO {fts}(rowid, {cols}) VALUES (new.{rowid}, {new_vals}); END",
    ]


KNOWLEDGE_FTS_STATEMENTS = _fts_statements(
    "knowledge_fts", "knowledge", KNOWLEDGE_FTS_COLUMNS, "rowid",
)
SYMBOLS_FTS_STATEMENTS = _fts_statements(
    "symbols_fts", "symbols", SYMBOLS_FTS_COLUMNS, "id",
)


# ---------------------------------------------------------------------------
# Introspection helpers
# ---------------------------------------------------------------------------

def execute_all(conn: sqlite3.Connection, statements: Iterable[str]) -> None:
    """Run statements one by one (transaction-safe, unlike executescript)."""
    for stmt in statements:
        conn.execute(stmt)


def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (name,),
    ).fetchone()
    return row is not None


def table_columns(conn: sqlite3.Connection, name: str) -> List[str]:
    """Column names in declaration order (works for FTS5 virtual tables)."""
    return [row[1] for row in conn.execute(f"PRAGMA table_info({name})")]


def fts5_available(conn: sqlite3.Connection) -> bool:
    """Probe the SQLite build for the FTS5 module."""
    try:
        conn.execute("CREATE VIRTUAL TABLE IF NOT EXISTS temp.fts5_probe USING fts5(x)")
        conn.execute("DROP TABLE IF EXISTS temp.fts5_probe")
        return True
    except sqlite3.OperationalError:
        return False


def knowledge_fts_matches(conn: sqlite3.Connection) -> bool:
    """True if knowledge_fts exists and indexes exactly the current columns."""
    if not table_exists(conn, "knowledge_fts"):
        return False
    return tuple(table_columns(conn, "knowledge_fts")) == KNOWLEDGE_FTS_COLUMNS


def drop_knowledge_fts(conn: sqlite3.Connection) -> None:
    """Drop knowledge_fts and every sync trigger it ever had."""
    for trig in KNOWLEDGE_TRIGGERS + LEGACY_KNOWLEDGE_TRIGGERS:
        conn.execute(f"DROP TRIGGER IF EXISTS {trig}")
    conn.execute("DROP TABLE IF EXISTS knowledge_fts")


def create_knowledge_fts(conn: sqlite3.Connection) -> None:
    """Create knowledge_fts and its triggers, then re-derive it from rows."""
    execute_all(conn, KNOWLEDGE_FTS_STATEMENTS)
    conn.execute("INSERT INTO knowledge_fts(knowledge_fts) VALUES('rebuild')")


# ---------------------------------------------------------------------------
# Schema creation
# ---------------------------------------------------------------------------

def create_schema(handle) -> None:
    """Create tables, indexes and FTS5 structures that are missing.

    FTS5 is optional: when the module is missing, or when knowledge_fts
    still has a pre-migration column set, the corresponding flag on the
    handle stays False and searches use LIKE.
    """
    conn = handle.conn
    with handle.transaction():
        execute_all(conn, BASE_STATEMENTS)
        present = set(table_columns(conn, "knowledge"))
        execute_all(conn, [stmt for col, stmt in KNOWLEDGE_COLUMN_INDEXES.items()
                           if col in present])

    try:
        with handle.transaction():
            outdated = (
                table_exists(conn, "knowledge_fts") and not knowledge_fts_matches(conn)
            ) or not set(KNOWLEDGE_FTS_COLUMNS) <= set(table_columns(conn, "knowledge"))
            if outdated:
                # Left behind by a failed migration: keep the legacy triggers
                # and do not attach new ones to the old schema.
                logger.warning(
                    "[%s] knowledge schema is not migrated; "
                    "full-text search disabled for this scope", handle.scope,
                )
            else:
                execute_all(conn, KNOWLEDGE_FTS_STATEMENTS)
                handle.fts["knowledge"] = True
    except sqlite3.OperationalError as exc:
        # Typical message: "no such module: fts5"
        logger.info("[%s] FTS5 not available for knowledge, using LIKE: %s",
                    handle.scope, exc)

    try:
        with handle.transaction():
            execute_all(conn, SYMBOLS_FTS_STATEMENTS)
        handle.fts["symbols"] = True
    except sqlite3.OperationalError as exc:
        logger.info("[%s] FTS5 not available for symbols, using LIKE: %s",
                    handle.scope, exc)
