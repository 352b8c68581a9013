"""
Code Index — incremental catalog of source files, symbols and imports

Each file is identified by its workspace-relative path.  Re-indexing
compares a SHA-256 of the content with the stored hash and skips unchanged
files unless forced.  A changed file has its symbols and imports replaced
(never appended) inside one transaction.

index_workspace() processes files in batches: one transaction per batch
and a savepoint per file, so a failing file only loses its own rows.
Soft-deleted files are invisible to every query and purged after each
workspace run.

Symbol search uses symbols_fts (prefix terms, bm25 rank) and falls back
to a LIKE match on the symbol name.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import hashlib
import logging
import os
import posixpath
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from codemem.config import IndexConfig
from codemem.errors import InvalidInputError, NotFoundError, ParseError
from codemem.extractors import ExtractorRegistry, default_registry
from codemem.query import fts_terms, like_pattern, match_expression
from codemem.scopes import ScopeDatabaseManager, ScopeHandle, resolve_scopes
from codemem.types import (
    VALID_SYMBOL_KINDS,
    FileSpec,
    Import,
    IndexResult,
    SourceFile,
    Symbol,
    WorkspaceIndexResult,
    _now_epoch,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

_SYMBOL_COLUMNS = (
    "name", "kind", "container_name", "start_line", "start_column",
    "end_line", "end_column", "is_exported", "signature", "doc_comment",
)


def file_digest(content: str) -> str:
    """Hex SHA-256 of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _read_text(path: str) -> str:
    try:
        return Path(path).read_bytes().decode("utf-8", errors="replace")
    except OSError as exc:
        raise ParseError(f"cannot read {path}: {exc}") from exc


def _line_count(content: str) -> int:
    if not content:
        return 0
    return content.count("\n") + (0 if content.endswith("\n") else 1)


def _mtime(path: str) -> float:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return 0.0


def _clamp(value: Optional[int], default: int, hi: int) -> int:
    if value is None:
        return default
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"limit must be an integer, got {value!r}")
    return max(1, min(hi, value))


class CodeIndex:
    """Per-scope code index backed by the files/symbols/imports tables."""

    def __init__(
        self,
        manager: ScopeDatabaseManager,
        registry: Optional[ExtractorRegistry] = None,
        config: Optional[IndexConfig] = None,
    ):
        self.manager = manager
        self.registry = registry or default_registry()
        self.config = config or IndexConfig()

    # -- Indexing ----------------------------------------------------------

    def index_file(
        self,
        file_path: str,
        relative_path: str,
        content: Optional[str] = None,
        *,
        force: bool = False,
        scope: str = "project",
    ) -> IndexResult:
        """Index one file; never raises for unreadable or unparsable input.

        Raises:
            InvalidInputError: missing path or invalid scope.
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        spec = _as_spec({"file_path": file_path, "relative_path": relative_path,
                         "content": content})
        handle = self.manager.open(scope)
        return self._index_spec(handle, spec, force=force)

    def index_workspace(
        self,
        files: Iterable[Union[FileSpec, Dict[str, Any]]],
        *,
        incremental: bool = True,
        scope: str = "project",
        progress: Optional[ProgressCallback] = None,
    ) -> WorkspaceIndexResult:
        """Index many files in batches and purge soft-deleted rows.

        Per-file failures, malformed entries included, are counted in
        ``failed``; the first ``IndexConfig.max_errors`` messages are kept
        in ``errors``.

        Raises:
            InvalidInputError: ``files`` is not a list of entries, or invalid scope.
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        if isinstance(files, (str, bytes, dict, FileSpec)):
            raise InvalidInputError("files must be a list of file entries")
        try:
            specs = list(files)
        except TypeError as exc:
            raise InvalidInputError(f"files must be a list of file entries: {exc}") from exc
        handle = self.manager.open(scope)
        result = WorkspaceIndexResult(total=len(specs))
        size = self.config.batch_size

        for start in range(0, len(specs), size):
            batch = specs[start:start + size]
            counts = {"indexed": 0, "skipped": 0, "failed": 0}
            messages: List[str] = []
            try:
                with handle.transaction():
                    for pos, item in enumerate(batch, start):
                        try:
                            spec = _as_spec(item)
                        except InvalidInputError as exc:
                            counts["failed"] += 1
                            messages.append(f"entry {pos}: {exc}")
                            continue
                        try:
                            res = self._index_spec(handle, spec, force=not incremental)
                        except sqlite3.Error as exc:
                            res = IndexResult(spec.relative_path, "unparsable",
                                              message=f"database error: {exc}")
                        if res.status == "unparsable":
                            counts["failed"] += 1
                            messages.append(f"{spec.relative_path}: {res.message}")
                        else:
                            counts[res.status] += 1
            except sqlite3.Error as exc:
                logger.error("[%s] batch %d-%d rolled back: %s",
                             scope, start, start + len(batch) - 1, exc)
                counts = {"indexed": 0, "skipped": 0, "failed": len(batch)}
                messages = [f"batch {start}-{start + len(batch) - 1}: {exc}"]

            result.indexed += counts["indexed"]
            result.skipped += counts["skipped"]
            result.failed += counts["failed"]
            room = self.config.max_errors - len(result.errors)
            if room > 0:
                result.errors.extend(messages[:room])
            if progress is not None:
                progress(min(start + size, len(specs)), len(specs))

        result.removed = self.cleanup_deleted(scope=scope)
        logger.info(
            "[%s] workspace indexed: %d file(s), %d indexed, %d skipped, %d failed",
            scope, result.total, result.indexed, result.skipped, result.failed,
        )
        return result

    def _index_spec(self, handle: ScopeHandle, spec: FileSpec, *, force: bool) -> IndexResult:
        rel = spec.relative_path
        try:
            content = spec.content if spec.content is not None else _read_text(spec.file_path)
        except ParseError as exc:
            return IndexResult(rel, "unparsable", message=str(exc))

        digest = file_digest(content)
        language = self.registry.language_for_path(rel)
        if not force and self._stored_hash(handle, rel) == digest:
            return IndexResult(rel, "skipped", language=language, message="unchanged")

        try:
            symbols, imports = self._extract(rel, content)
        except ParseError as exc:
            logger.debug("[%s] %s", handle.scope, exc)
            return IndexResult(rel, "unparsable", language=language, message=str(exc))

        source = SourceFile(
            relative_path=rel,
            absolute_path=spec.file_path,
            language_id=language,
            content_hash=digest,
            line_count=_line_count(content),
            size_bytes=len(content.encode("utf-8")),
            mtime=_mtime(spec.file_path),
            indexed_at=_now_epoch(),
        )
        with handle.transaction() as conn:
            self._write(conn, source, symbols, imports)
        logger.debug("[%s] indexed %s: %d symbol(s), %d import(s)",
                     handle.scope, rel, len(symbols), len(imports))
        return IndexResult(rel, "indexed", len(symbols), len(imports), language)

    def _extract(self, rel: str, content: str) -> Tuple[List[Symbol], List[Import]]:
        extractor = self.registry.for_path(rel)
        if extractor is None:
            # Unknown language: catalog the file without symbols
            return [], []
        try:
            return extractor.extract(content)
        except Exception as exc:
            raise ParseError(f"{extractor.language_id} extractor failed on {rel}: {exc}") from exc

    @staticmethod
    def _stored_hash(handle: ScopeHandle, rel: str) -> Optional[str]:
        row = handle.conn.execute(
            "SELECT content_hash FROM files WHERE relative_path=? AND is_deleted=0",
            (rel,),
        ).fetchone()
        return row["content_hash"] if row else None

    @staticmethod
    def _write(
        conn: sqlite3.Connection,
        source: SourceFile,
        symbols: Sequence[Symbol],
        imports: Sequence[Import],
    ) -> None:
        conn.execute(
            "INSERT INTO files (relative_path, absolute_path, language_id, content_hash, "
            "line_count, size_bytes, mtime, indexed_at, is_deleted) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0) "
            "ON CONFLICT(relative_path) DO UPDATE SET "
            "absolute_path=excluded.absolute_path, language_id=excluded.language_id, "
            "content_hash=excluded.content_hash, line_count=excluded.line_count, "
            "size_bytes=excluded.size_bytes, mtime=excluded.mtime, "
            "indexed_at=excluded.indexed_at, is_deleted=0",
            (source.relative_path, source.absolute_path, source.language_id,
             source.content_hash, source.line_count, source.size_bytes,
             source.mtime, source.indexed_at),
        )
        file_id = conn.execute(
            "SELECT id FROM files WHERE relative_path=?", (source.relative_path,),
        ).fetchone()[0]

        conn.execute("DELETE FROM symbols WHERE file_id=?", (file_id,))
        conn.execute("DELETE FROM imports WHERE file_id=?", (file_id,))
        conn.executemany(
            f"INSERT INTO symbols (file_id, {', '.join(_SYMBOL_COLUMNS)}) "
            f"VALUES (?{', ?' * len(_SYMBOL_COLUMNS)})",
            [
                (file_id, s.name, s.kind, s.container_name, s.start_line,
                 s.start_column, s.end_line, s.end_column, int(s.is_exported),
                 s.signature, s.doc_comment)
                for s in symbols
            ],
        )
        conn.executemany(
            "INSERT INTO imports (file_id, import_path, import_type, is_local, line_number) "
            "VALUES (?, ?, ?, ?, ?)",
            [(file_id, i.import_path, i.import_type, int(i.is_local), i.line_number)
             for i in imports],
        )

    # -- Soft delete -------------------------------------------------------

    def mark_deleted(self, relative_path: str, *, scope: str = "project") -> None:
        """Hide a file from queries until the next cleanup.

        Raises:
            NotFoundError: the path is not indexed (or already deleted).
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        handle = self.manager.open(scope)
        with handle.transaction() as conn:
            cur = conn.execute(
                "UPDATE files SET is_deleted=1 WHERE relative_path=? AND is_deleted=0",
                (relative_path,),
            )
        if cur.rowcount == 0:
            raise NotFoundError(f"File not indexed: {relative_path}")

    def cleanup_deleted(self, *, scope: str = "project") -> int:
        """Purge soft-deleted files; symbols and imports cascade."""
        (scope,) = resolve_scopes(scope, allow_all=False)
        handle = self.manager.open(scope)
        with handle.transaction() as conn:
            cur = conn.execute("DELETE FROM files WHERE is_deleted=1")
        if cur.rowcount:
            logger.info("[%s] purged %d deleted file(s)", scope, cur.rowcount)
        return max(cur.rowcount, 0)

    # -- Queries -----------------------------------------------------------

    def search_symbols(
        self,
        query: str,
        *,
        kinds: Optional[Sequence[str]] = None,
        exported_only: bool = False,
        limit: Optional[int] = 20,
        scope: str = "project",
    ) -> List[Symbol]:
        """Symbols matching ``query``, best match first.

        Raises:
            InvalidInputError: empty query or unknown kind.
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        query = (query or "").strip()
        if not query:
            raise InvalidInputError("query must not be empty")
        kinds = list(kinds or [])
        bad = [k for k in kinds if k not in VALID_SYMBOL_KINDS]
        if bad:
            raise InvalidInputError(f"Unknown symbol kind(s): {', '.join(bad)}")
        limit = _clamp(limit, 20, self.config.symbol_search_max)

        conditions = ["f.is_deleted=0"]
        params: list = []
        if kinds:
            conditions.append(f"s.kind IN ({', '.join('?' * len(kinds))})")
            params.extend(kinds)
        if exported_only:
            conditions.append("s.is_exported=1")
        where = " AND ".join(conditions)

        handle = self.manager.open(scope)
        rows: list = []
        terms = fts_terms(query)
        if handle.fts["symbols"] and terms:
            try:
                rows = handle.conn.execute(
                    "SELECT s.*, f.relative_path AS file_path FROM symbols_fts "
                    "JOIN symbols s ON s.id = symbols_fts.rowid "
                    "JOIN files f ON f.id = s.file_id "
                    f"WHERE symbols_fts MATCH ? AND {where} "
                    "ORDER BY symbols_fts.rank, s.id LIMIT ?",
                    [match_expression(terms, "AND", prefix=True), *params, limit],
                ).fetchall()
            except sqlite3.OperationalError as exc:
                logger.warning("[%s] symbol FTS failed, falling back to LIKE: %s", scope, exc)
                rows = []
        if not rows:
            rows = handle.conn.execute(
                "SELECT s.*, f.relative_path AS file_path FROM symbols s "
                "JOIN files f ON f.id = s.file_id "
                f"WHERE s.name LIKE ? ESCAPE '\\' AND {where} "
                "ORDER BY (s.name = ?) DESC, length(s.name), s.name, s.id LIMIT ?",
                [like_pattern(query), *params, query, limit],
            ).fetchall()
        return [_row_to_symbol(r) for r in rows]

    def get_file_symbols(
        self,
        relative_path: str,
        *,
        include_imports: bool = True,
        scope: str = "project",
    ) -> Dict[str, Any]:
        """The file record with its symbols (by line) and imports.

        Raises:
            NotFoundError: unknown or soft-deleted path.
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        conn = self.manager.open(scope).conn
        row = conn.execute(
            "SELECT * FROM files WHERE relative_path=? AND is_deleted=0", (relative_path,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"File not indexed: {relative_path}")

        symbols = [
            _row_to_symbol(r, relative_path)
            for r in conn.execute(
                "SELECT * FROM symbols WHERE file_id=? ORDER BY start_line, start_column, id",
                (row["id"],),
            )
        ]
        result: Dict[str, Any] = {"file": _row_to_file(row), "symbols": symbols}
        if include_imports:
            imports = [
                _row_to_import(r, relative_path)
                for r in conn.execute(
                    "SELECT * FROM imports WHERE file_id=? ORDER BY line_number, id",
                    (row["id"],),
                )
            ]
            for imp in imports:
                if imp.is_local and imp.resolved_file_id is None:
                    imp.resolved_file_id = _resolve_local(conn, relative_path, imp.import_path)
            result["imports"] = imports
        return result

    def find_references(
        self,
        symbol_name: Optional[str] = None,
        module_path: Optional[str] = None,
        *,
        limit: Optional[int] = 50,
        scope: str = "project",
    ) -> Union[List[Symbol], List[Import]]:
        """Definitions named ``symbol_name``, or imports of ``module_path``.

        Only definitions are indexed, so a symbol "reference" is another
        declaration with the exact same name.  A module lookup returns the
        matching import rows, each carrying the importing file's path.

        Raises:
            InvalidInputError: neither or both arguments given.
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        symbol_name = (symbol_name or "").strip() or None
        module_path = (module_path or "").strip() or None
        if (symbol_name is None) == (module_path is None):
            raise InvalidInputError("exactly one of symbol_name or module_path is required")
        limit = _clamp(limit, 50, self.config.references_max)
        conn = self.manager.open(scope).conn

        if symbol_name is not None:
            rows = conn.execute(
                "SELECT s.*, f.relative_path AS file_path FROM symbols s "
                "JOIN files f ON f.id = s.file_id "
                "WHERE s.name = ? AND f.is_deleted=0 "
                "ORDER BY f.relative_path, s.start_line LIMIT ?",
                (symbol_name, limit),
            ).fetchall()
            return [_row_to_symbol(r) for r in rows]

        rows = conn.execute(
            "SELECT i.*, f.relative_path AS file_path FROM imports i "
            "JOIN files f ON f.id = i.file_id "
            "WHERE i.import_path LIKE ? ESCAPE '\\' AND f.is_deleted=0 "
            "ORDER BY f.relative_path, i.line_number LIMIT ?",
            (like_pattern(module_path), limit),
        ).fetchall()
        return [_row_to_import(r) for r in rows]

    def get_index_stats(
        self, include_language_breakdown: bool = True, *, scope: str = "project",
    ) -> Dict[str, Any]:
        (scope,) = resolve_scopes(scope, allow_all=False)
        conn = self.manager.open(scope).conn
        stats: Dict[str, Any] = {
            "scope": scope,
            "files": conn.execute(
                "SELECT COUNT(*) FROM files WHERE is_deleted=0").fetchone()[0],
            "symbols": conn.execute(
                "SELECT COUNT(*) FROM symbols s JOIN files f ON f.id = s.file_id "
                "WHERE f.is_deleted=0").fetchone()[0],
            "imports": conn.execute(
                "SELECT COUNT(*) FROM imports i JOIN files f ON f.id = i.file_id "
                "WHERE f.is_deleted=0").fetchone()[0],
        }
        if include_language_breakdown:
            stats["languages"] = [
                {"language": r["language"], "file_count": r["file_count"],
                 "total_lines": r["total_lines"]}
                for r in conn.execute(
                    "SELECT COALESCE(language_id, 'unknown') AS language, "
                    "COUNT(*) AS file_count, COALESCE(SUM(line_count), 0) AS total_lines "
                    "FROM files WHERE is_deleted=0 "
                    "GROUP BY COALESCE(language_id, 'unknown') "
                    "ORDER BY file_count DESC, language"
                )
            ]
        return stats


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_spec(item: Union[FileSpec, Dict[str, Any]]) -> FileSpec:
    if isinstance(item, FileSpec):
        spec = item
    else:
        try:
            spec = FileSpec.from_dict(item)
        except (ValueError, AttributeError, TypeError) as exc:
            raise InvalidInputError(f"invalid file entry: {exc}") from exc
    if not spec.relative_path or not spec.file_path:
        raise InvalidInputError("file_path and relative_path are required")
    return spec


def _resolve_local(conn: sqlite3.Connection, importer: str, path: str) -> Optional[int]:
    """Id of the indexed file a relative import points at, if any."""
    target = posixpath.normpath(posixpath.join(posixpath.dirname(importer), path))
    if target.startswith(".."):
        return None
    row = conn.execute(
        "SELECT id FROM files WHERE is_deleted=0 AND (relative_path=? "
        "OR relative_path LIKE ? ESCAPE '\\' OR relative_path LIKE ? ESCAPE '\\') "
        "ORDER BY length(relative_path) LIMIT 1",
        (target, _escape(target) + ".%", _escape(target) + "/index.%"),
    ).fetchone()
    return row[0] if row else None


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_symbol(row: sqlite3.Row, file_path: Optional[str] = None) -> Symbol:
    keys = row.keys()
    return Symbol(
        name=row["name"],
        kind=row["kind"],
        start_line=row["start_line"],
        start_column=row["start_column"],
        end_line=row["end_line"],
        end_column=row["end_column"],
        container_name=row["container_name"],
        is_exported=bool(row["is_exported"]),
        signature=row["signature"],
        doc_comment=row["doc_comment"],
        file_path=row["file_path"] if "file_path" in keys else file_path,
    )


def _row_to_import(row: sqlite3.Row, file_path: Optional[str] = None) -> Import:
    keys = row.keys()
    return Import(
        import_path=row["import_path"],
        import_type=row["import_type"],
        is_local=bool(row["is_local"]),
        line_number=row["line_number"],
        resolved_file_id=row["resolved_file_id"],
        file_path=row["file_path"] if "file_path" in keys else file_path,
    )


def _row_to_file(row: sqlite3.Row) -> SourceFile:
    return SourceFile(
        id=row["id"],
        relative_path=row["relative_path"],
        absolute_path=row["absolute_path"],
        language_id=row["language_id"],
        content_hash=row["content_hash"],
        line_count=row["line_count"],
        size_bytes=row["size_bytes"],
        mtime=row["mtime"],
        indexed_at=row["indexed_at"],
        is_deleted=bool(row["is_deleted"]),
    )
