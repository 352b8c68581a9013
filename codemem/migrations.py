"""
Schema Migrations — versioned, logged, one transaction per step

Each migration carries the schema version it produces.  The version
reached so far is stored in ``schema_meta`` under ``schema_version``;
databases written before the metadata table existed count as version 0.

Rules:
    - A fresh database (no knowledge table) is not migrated: the schema is
      created at the current version and stamped.
    - Pending migrations run in order, each in its own transaction.  The
      first failure is rolled back and logged, later steps are skipped, and
      the scope keeps serving on the schema it had.
    - After the versioned steps, knowledge_fts is compared with the current
      indexed column set and rebuilt from the knowledge rows on mismatch.

Running migrate() twice in a row does nothing the second time.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from codemem.schema import (
    KNOWLEDGE_TAGS_INDEX,
    KNOWLEDGE_TAGS_TABLE,
    SCHEMA_META_TABLE,
    create_knowledge_fts,
    drop_knowledge_fts,
    fts5_available,
    knowledge_fts_matches,
    table_columns,
    table_exists,
)
from codemem.types import MigrationReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    """One schema upgrade step."""

    version: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

# Columns added to knowledge after the first release
_KNOWLEDGE_COLUMNS = (
    ("metadata", "TEXT NOT NULL DEFAULT '{}'"),
    ("source", "TEXT"),
    ("context", "TEXT"),
    ("related_files", "TEXT"),
    ("related_symbols", "TEXT"),
    ("active_file", "TEXT"),
)


def _add_knowledge_columns(conn: sqlite3.Connection) -> None:
    existing = set(table_columns(conn, "knowledge"))
    for name, decl in _KNOWLEDGE_COLUMNS:
        if name in existing:
            continue
        try:
            conn.execute(f"ALTER TABLE knowledge ADD COLUMN {name} {decl}")
            logger.info("Added column knowledge.%s", name)
        except sqlite3.OperationalError as exc:
            if "duplicate column" not in str(exc).lower():
                raise


def _rebuild_knowledge_fts(conn: sqlite3.Connection) -> None:
    if not fts5_available(conn):
        logger.info("FTS5 not available; knowledge_fts rebuild skipped")
        return
    rows = conn.execute("SELECT COUNT(*) FROM knowledge").fetchone()[0]
    drop_knowledge_fts(conn)
    create_knowledge_fts(conn)
    logger.info("Rebuilt knowledge_fts from %d row(s)", rows)


def _parse_tags(raw) -> List[str]:
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except (TypeError, ValueError):
        # Some early writers stored comma-separated text
        tags = str(raw).split(",")
    if not isinstance(tags, list):
        return []
    return [str(t).strip().lower() for t in tags if str(t).strip()]


def _backfill_knowledge_tags(conn: sqlite3.Connection) -> None:
    conn.execute(KNOWLEDGE_TAGS_TABLE)
    conn.execute(KNOWLEDGE_TAGS_INDEX)
    pairs = []
    for row in conn.execute("SELECT id, tags FROM knowledge").fetchall():
        pairs.extend((row[0], tag) for tag in _parse_tags(row[1]))
    conn.executemany(
        "INSERT OR IGNORE INTO knowledge_tags (knowledge_id, tag) VALUES (?, ?)",
        pairs,
    )
    logger.info("Backfilled %d knowledge tag link(s)", len(pairs))


MIGRATIONS: Sequence[Migration] = (
    Migration(1, "add knowledge code-link columns", _add_knowledge_columns),
    Migration(2, "rebuild knowledge_fts over code-link columns", _rebuild_knowledge_fts),
    Migration(3, "backfill knowledge_tags junction table", _backfill_knowledge_tags),
)

SCHEMA_VERSION = MIGRATIONS[-1].version

# knowledge_tags holds every row's tags from this version on
TAGS_JUNCTION_VERSION = 3


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class MigrationRunner:
    """Applies pending migrations to a scope handle."""

    def __init__(self, migrations: Optional[Sequence[Migration]] = None):
        self.migrations = sorted(
            migrations if migrations is not None else MIGRATIONS,
            key=lambda m: m.version,
        )

    @property
    def target_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    def current_version(self, handle) -> int:
        conn = handle.conn
        if not table_exists(conn, "schema_meta"):
            return 0
        row = conn.execute(
            "SELECT value FROM schema_meta WHERE key='schema_version'"
        ).fetchone()
        try:
            return int(row[0]) if row else 0
        except (TypeError, ValueError):
            return 0

    def stamp_current(self, handle) -> None:
        """Record the target version on a freshly created database."""
        with handle.transaction() as conn:
            conn.execute(SCHEMA_META_TABLE)
            _set_version(conn, self.target_version)
            conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) "
                "VALUES ('created_at', datetime('now'))"
            )

    def migrate(self, handle) -> MigrationReport:
        """Bring the scope up to the target version. Never raises."""
        conn = handle.conn
        report = MigrationReport(scope=handle.scope, to_version=self.target_version)

        if not table_exists(conn, "knowledge"):
            report.fresh = True
            report.from_version = self.target_version
            return report

        current = self.current_version(handle)
        report.from_version = current
        pending = [m for m in self.migrations if m.version > current]
        if pending:
            logger.info(
                "[%s] schema v%d -> v%d (%d migration(s))",
                handle.scope, current, self.target_version, len(pending),
            )

        for m in pending:
            logger.info("[%s] migration %d: %s", handle.scope, m.version, m.description)
            try:
                with handle.transaction():
                    conn.execute(SCHEMA_META_TABLE)
                    m.apply(conn)
                    _set_version(conn, m.version)
            except Exception as exc:
                logger.exception(
                    "[%s] migration %d failed; staying at schema v%d",
                    handle.scope, m.version, current,
                )
                report.error = f"migration {m.version} ({m.description}): {exc}"
                report.to_version = current
                handle.invalidate()
                return report
            report.applied.append(m.version)
            current = m.version

        try:
            if fts5_available(conn) and not knowledge_fts_matches(conn):
                logger.info("[%s] knowledge_fts does not match the current columns",
                            handle.scope)
                with handle.transaction():
                    _rebuild_knowledge_fts(conn)
                report.fts_rebuilt = True
        except sqlite3.Error as exc:
            logger.exception("[%s] knowledge_fts rebuild failed", handle.scope)
            report.error = f"knowledge_fts rebuild: {exc}"

        report.to_version = current
        handle.invalidate()
        return report


def _set_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
        (str(version),),
    )
