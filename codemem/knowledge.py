"""
Knowledge Store — store, search and list knowledge entries per scope

Search strategy (per scope):
    1. Empty query      → most recently updated entries.
    2. FTS5 available   → quoted terms AND-ed; OR-ed if the AND pass is empty.
                          Ordered by bm25 rank, then most recent update.
    3. FTS5 missing or  → LIKE substring over content, tags and context,
       MATCH failing      ordered by most recent update.

scope="all" runs the search independently against project, user and
global, then merges by recency and truncates.  Scopes are never joined in
SQL since each one may sit at a different schema version.

Limits are clamped server-side: retrieve ≤ 20, list ≤ 50 (RetrievalConfig).

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import json
import logging
import sqlite3
import sys
from typing import IO, Any, Dict, Iterable, List, Optional, Sequence, Tuple

from codemem.config import RetrievalConfig
from codemem.errors import InvalidInputError, NotFoundError
from codemem.query import fts_terms, like_pattern, match_expression
from codemem.scopes import ScopeDatabaseManager, ScopeHandle, resolve_scopes
from codemem.types import (
    ImportResult,
    KnowledgeEntry,
    SymbolRef,
    normalize_tags,
)

logger = logging.getLogger(__name__)


def _clamp(value: Optional[int], default: int, hi: int) -> int:
    if value is None:
        return default
    try:
        value = int(value)
    except (TypeError, ValueError):
        return default
    return max(1, min(hi, value))


def _loads(raw: Any, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return default
    return value if isinstance(value, type(default)) else default


class KnowledgeStore:
    """
    Knowledge entries across scopes.

    Entries are write-once: there is no update path.  When an enricher is
    attached, project-scope entries stored without related files/symbols
    are linked to the code index before insertion.
    """

    def __init__(
        self,
        manager: ScopeDatabaseManager,
        config: Optional[RetrievalConfig] = None,
        enricher=None,
    ):
        self.manager = manager
        self.config = config or RetrievalConfig()
        self.enricher = enricher

    # -- Write -------------------------------------------------------------

    def store(
        self,
        scope: str,
        content: str,
        *,
        tags: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        context: Optional[str] = None,
        related_files: Optional[Sequence[str]] = None,
        related_symbols: Optional[Sequence[Any]] = None,
        active_file: Optional[str] = None,
    ) -> KnowledgeEntry:
        """Persist a new entry and return it.

        Raises:
            InvalidInputError: empty content or invalid scope.
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        text = (content or "").strip()
        if not text:
            raise InvalidInputError("content must not be empty")

        entry = KnowledgeEntry(
            content=text,
            tags=normalize_tags(tags),
            metadata=dict(metadata or {}),
            source=source,
            context=context,
            related_files=list(related_files or []),
            related_symbols=[SymbolRef.from_dict(s) for s in related_symbols or []],
            active_file=active_file,
            scope=scope,
        )

        if (
            self.enricher is not None
            and scope == "project"
            and (related_files is None or related_symbols is None)
        ):
            self._enrich(
                entry,
                fill_files=related_files is None,
                fill_symbols=related_symbols is None,
            )

        handle = self.manager.open(scope)
        with handle.transaction():
            self._insert(handle, entry)
        logger.debug(
            "[%s] stored %s (%d tag(s), %d file(s), %d symbol(s))",
            scope, entry.id, len(entry.tags),
            len(entry.related_files), len(entry.related_symbols),
        )
        return entry

    def _enrich(self, entry: KnowledgeEntry, *, fill_files: bool, fill_symbols: bool) -> None:
        try:
            found = self.enricher.enrich(entry.content, active_file=entry.active_file)
        except Exception as exc:
            # Storage must not depend on the code index being usable
            logger.warning("Context enrichment failed for %s: %s", entry.id, exc)
            return
        if fill_files:
            entry.related_files = list(found.related_files)
        if fill_symbols:
            entry.related_symbols = list(found.related_symbols)

    def _insert(self, handle: ScopeHandle, entry: KnowledgeEntry) -> None:
        values = {
            "id": entry.id,
            "content": entry.content,
            "tags": json.dumps(entry.tags, ensure_ascii=False),
            "metadata": json.dumps(entry.metadata, ensure_ascii=False),
            "source": entry.source,
            "context": entry.context,
            "related_files": json.dumps(entry.related_files, ensure_ascii=False),
            "related_symbols": json.dumps(
                [s.to_dict() for s in entry.related_symbols], ensure_ascii=False,
            ),
            "active_file": entry.active_file,
            "created_at": entry.created_at,
            "updated_at": entry.updated_at,
        }
        # Only write columns this scope actually has (unmigrated schemas)
        cols = [c for c in values if c in handle.columns("knowledge")]
        handle.conn.execute(
            f"INSERT INTO knowledge ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' for _ in cols)})",
            [values[c] for c in cols],
        )
        if handle.columns("knowledge_tags"):
            handle.conn.executemany(
                "INSERT OR IGNORE INTO knowledge_tags (knowledge_id, tag) VALUES (?, ?)",
                [(entry.id, t.lower()) for t in entry.tags],
            )

    # -- Read --------------------------------------------------------------

    def get(self, scope: str, entry_id: str) -> KnowledgeEntry:
        """Fetch one entry by id.

        Raises:
            NotFoundError: no entry with that id in the scope.
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        handle = self.manager.open(scope)
        row = handle.conn.execute(
            "SELECT * FROM knowledge WHERE id=?", (entry_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Knowledge entry not found: {entry_id} (scope={scope})")
        return self._row_to_entry(row, scope)

    def count(self, scope: str) -> int:
        (scope,) = resolve_scopes(scope, allow_all=False)
        handle = self.manager.open(scope)
        return handle.conn.execute("SELECT COUNT(*) FROM knowledge").fetchone()[0]

    def retrieve(
        self,
        scope: str = "all",
        query: str = "",
        *,
        tags: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> List[KnowledgeEntry]:
        """Ranked search, or most recent entries when query is empty."""
        scopes = resolve_scopes(scope)
        limit = _clamp(limit, self.config.retrieve_default, self.config.retrieve_max)
        tag_filter = [t.lower() for t in normalize_tags(tags)]
        query = (query or "").strip()

        results: List[KnowledgeEntry] = []
        for name in scopes:
            handle = self.manager.open(name)
            if query:
                results.extend(self._search_scope(handle, query, tag_filter, limit))
            else:
                results.extend(self._recent(handle, tag_filter, limit))
        return self._merge(results, scopes, limit)

    def list_entries(
        self,
        scope: str = "all",
        *,
        tags: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
        optimize: bool = False,
    ) -> Tuple[List[KnowledgeEntry], Dict[str, Dict[str, Any]]]:
        """Most recent entries plus per-scope count and size.

        ``optimize`` runs VACUUM/ANALYZE and FTS5 optimize first
        (best-effort; reported per scope as ``optimized``).
        """
        scopes = resolve_scopes(scope)
        limit = _clamp(limit, self.config.list_default, self.config.list_max)
        tag_filter = [t.lower() for t in normalize_tags(tags)]

        entries: List[KnowledgeEntry] = []
        stats: Dict[str, Dict[str, Any]] = {}
        for name in scopes:
            handle = self.manager.open(name)
            scope_stats: Dict[str, Any] = {}
            if optimize:
                scope_stats["optimized"] = self.optimize(handle)
            entries.extend(self._recent(handle, tag_filter, limit))
            scope_stats["count"] = handle.conn.execute(
                "SELECT COUNT(*) FROM knowledge"
            ).fetchone()[0]
            scope_stats["size_kb"] = round(handle.size_bytes() / 1024, 1)
            scope_stats["fts"] = handle.fts["knowledge"]
            stats[name] = scope_stats
        return self._merge(entries, scopes, limit), stats

    def find_by_symbols(
        self,
        names: Sequence[str],
        scope: str = "all",
        *,
        limit: Optional[int] = None,
    ) -> List[KnowledgeEntry]:
        """Entries whose text or related symbols mention any of the names."""
        scopes = resolve_scopes(scope)
        limit = _clamp(limit, self.config.retrieve_default, self.config.retrieve_max)
        names = [n for n in (str(x).strip() for x in names) if n]
        if not names:
            return []
        results: List[KnowledgeEntry] = []
        for name in scopes:
            handle = self.manager.open(name)
            rows = None
            if handle.fts["knowledge"]:
                try:
                    rows = self._search_fts(
                        handle, match_expression(names, "OR"), [], limit,
                    )
                except sqlite3.DatabaseError as exc:
                    logger.warning("[%s] FTS5 search failed, falling back to LIKE: %s",
                                   handle.scope, exc)
            if rows is None:
                rows = self._search_like(
                    handle, names, [], limit,
                    columns=("content", "related_symbols"),
                )
            results.extend(rows)
        return self._merge(results, scopes, limit)

    # -- Search internals --------------------------------------------------

    def _search_scope(
        self, handle: ScopeHandle, query: str, tags: List[str], limit: int,
    ) -> List[KnowledgeEntry]:
        terms = fts_terms(query)
        if handle.fts["knowledge"] and terms:
            try:
                rows = self._search_fts(handle, match_expression(terms, "AND"), tags, limit)
                if not rows and len(terms) > 1:
                    rows = self._search_fts(
                        handle, match_expression(terms, "OR"), tags, limit,
                    )
                return rows
            except sqlite3.DatabaseError as exc:
                logger.warning("[%s] FTS5 search failed, falling back to LIKE: %s",
                               handle.scope, exc)
        return self._search_like(handle, [query], tags, limit)

    def _tag_clause(self, handle: ScopeHandle, tags: List[str]) -> Tuple[str, list]:
        """SQL tag filter via the junction table, once it is backfilled."""
        if not tags or not handle.tags_junction:
            return "", []
        ph = ", ".join("?" for _ in tags)
        return (
            f" AND k.id IN (SELECT knowledge_id FROM knowledge_tags WHERE tag IN ({ph}))",
            list(tags),
        )

    def _window(self, handle: ScopeHandle, tags: List[str], limit: int) -> int:
        # Below the junction version tags are filtered after the query
        if tags and not handle.tags_junction:
            return max(limit * 10, 200)
        return limit

    def _finish(
        self, handle: ScopeHandle, rows, tags: List[str], limit: int,
    ) -> List[KnowledgeEntry]:
        entries = [self._row_to_entry(r, handle.scope) for r in rows]
        if tags and not handle.tags_junction:
            wanted = set(tags)
            entries = [e for e in entries if wanted & {t.lower() for t in e.tags}]
        return entries[:limit]

    def _search_fts(
        self, handle: ScopeHandle, expr: str, tags: List[str], limit: int,
    ) -> List[KnowledgeEntry]:
        clause, params = self._tag_clause(handle, tags)
        rows = handle.conn.execute(
            "SELECT k.* FROM knowledge k "
            "JOIN knowledge_fts f ON k.rowid = f.rowid "
            f"WHERE knowledge_fts MATCH ?{clause} "
            "ORDER BY f.rank, k.updated_at DESC LIMIT ?",
            [expr, *params, self._window(handle, tags, limit)],
        ).fetchall()
        return self._finish(handle, rows, tags, limit)

    def _search_like(
        self,
        handle: ScopeHandle,
        needles: List[str],
        tags: List[str],
        limit: int,
        columns: Sequence[str] = ("content", "tags", "context"),
    ) -> List[KnowledgeEntry]:
        """Case-insensitive substring match: any needle in any column."""
        cols = [c for c in columns if c in handle.columns("knowledge")]
        conditions = []
        params: list = []
        for needle in needles:
            pattern = like_pattern(needle)
            for col in cols:
                conditions.append(f"k.{col} LIKE ? ESCAPE '\\'")
                params.append(pattern)
        clause, tag_params = self._tag_clause(handle, tags)
        rows = handle.conn.execute(
            f"SELECT k.* FROM knowledge k WHERE ({' OR '.join(conditions)}){clause} "
            "ORDER BY k.updated_at DESC, k.rowid DESC LIMIT ?",
            [*params, *tag_params, self._window(handle, tags, limit)],
        ).fetchall()
        return self._finish(handle, rows, tags, limit)

    def _recent(
        self, handle: ScopeHandle, tags: List[str], limit: int,
    ) -> List[KnowledgeEntry]:
        clause, params = self._tag_clause(handle, tags)
        rows = handle.conn.execute(
            f"SELECT k.* FROM knowledge k WHERE 1=1{clause} "
            "ORDER BY k.updated_at DESC, k.rowid DESC LIMIT ?",
            [*params, self._window(handle, tags, limit)],
        ).fetchall()
        return self._finish(handle, rows, tags, limit)

    @staticmethod
    def _merge(
        entries: List[KnowledgeEntry], scopes: Sequence[str], limit: int,
    ) -> List[KnowledgeEntry]:
        if len(scopes) > 1:
            # Stable: keeps per-scope rank order among equal timestamps
            entries.sort(key=lambda e: e.updated_at, reverse=True)
        return entries[:limit]

    @staticmethod
    def _row_to_entry(row: sqlite3.Row, scope: str) -> KnowledgeEntry:
        keys = set(row.keys())

        def col(name: str, default: Any = None) -> Any:
            return row[name] if name in keys else default

        tags = _loads(col("tags"), [])
        if not tags and col("tags") and not str(col("tags")).startswith("["):
            tags = normalize_tags(col("tags"))
        return KnowledgeEntry(
            id=row["id"],
            content=row["content"],
            tags=[str(t) for t in tags],
            metadata=_loads(col("metadata"), {}),
            source=col("source"),
            context=col("context"),
            related_files=[str(f) for f in _loads(col("related_files"), [])],
            related_symbols=[
                SymbolRef.from_dict(s)
                for s in _loads(col("related_symbols"), [])
                if isinstance(s, (dict, str))
            ],
            active_file=col("active_file"),
            created_at=int(col("created_at") or 0),
            updated_at=int(col("updated_at") or col("created_at") or 0),
            scope=scope,
        )

    # -- Maintenance -------------------------------------------------------

    def optimize(self, handle: ScopeHandle) -> bool:
        """VACUUM + ANALYZE (+ FTS5 optimize). Returns False on failure."""
        try:
            with handle.lock:
                if handle.fts["knowledge"]:
                    handle.conn.execute(
                        "INSERT INTO knowledge_fts(knowledge_fts) VALUES('optimize')"
                    )
                handle.conn.execute("VACUUM")
                handle.conn.execute("ANALYZE")
            logger.info("[%s] database optimized", handle.scope)
            return True
        except sqlite3.Error as exc:
            logger.warning("[%s] optimize failed: %s", handle.scope, exc)
            return False

    def export_jsonl(self, scope: str, output: IO[str] = sys.stdout) -> int:
        """Write every entry of a scope as one JSON object per line."""
        (scope,) = resolve_scopes(scope, allow_all=False)
        handle = self.manager.open(scope)
        count = 0
        for row in handle.conn.execute(
            "SELECT * FROM knowledge ORDER BY created_at, rowid"
        ):
            entry = self._row_to_entry(row, scope)
            data = entry.to_dict()
            data.pop("scope", None)
            output.write(json.dumps(data, ensure_ascii=False) + "\n")
            count += 1
        logger.info("[%s] exported %d entr%s", scope, count, "y" if count == 1 else "ies")
        return count

    def import_jsonl(self, scope: str, source: IO[str] | str) -> ImportResult:
        """Load entries written by export_jsonl(), keeping ids and timestamps.

        Entries whose id already exists in the target scope are skipped, so
        importing the same file twice is harmless.
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        handle = self.manager.open(scope)
        result = ImportResult()

        if isinstance(source, str):
            fh = open(source, "r", encoding="utf-8")
            should_close_fh = True
        else:
            fh = source
            should_close_fh = False

        try:
            with handle.transaction() as conn:
                for line in fh:
                    line = line.strip()
                    if not line:
                        continue
                    result.total_lines += 1
                    try:
                        entry = KnowledgeEntry.from_dict(json.loads(line))
                        entry.content = (entry.content or "").strip()
                        if not entry.content:
                            raise ValueError("empty content")
                        entry.tags = normalize_tags(entry.tags)
                    except (TypeError, ValueError, AttributeError) as exc:
                        logger.warning("[import] invalid line %d: %s",
                                       result.total_lines, exc)
                        result.errors += 1
                        continue
                    exists = conn.execute(
                        "SELECT 1 FROM knowledge WHERE id=?", (entry.id,),
                    ).fetchone()
                    if exists:
                        result.skipped_existing += 1
                        continue
                    self._insert(handle, entry)
                    result.imported += 1
        finally:
            if should_close_fh:
                fh.close()

        logger.info("[%s] import: %s", scope, result.to_dict())
        return result
