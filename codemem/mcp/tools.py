"""
codemem MCP Tools — 16 tools over knowledge, rules and the code index.

Thin wrappers around KnowledgeStore, RuleStore and CodeIndex.  Each tool
follows the same order:

    ① Argument checks   — done by the stores, before any side effect
    ② Tool execution    — business logic
    ③ Audit log         — always, including on failure (finally block)

Every tool returns a dict with ``status``:
    "ok"         — success, payload alongside
    "error"      — invalid input or unexpected failure, with ``message``
    "not_found"  — unknown rule id or file path, with ``message``

Tool groups:
    KNOWLEDGE:  store_knowledge, retrieve_knowledge, list_knowledge
    RULES:      store_rule, update_rule, delete_rule, list_rules, retrieve_rules
    INDEX:      index_file, index_workspace, search_symbols, get_file_symbols,
                find_references, get_index_stats
    DATA:       export_knowledge, import_knowledge

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import io
import json
import logging
import time
from typing import Any, Dict, List, Optional

from codemem.code_index import CodeIndex
from codemem.config import CodememConfig
from codemem.errors import InvalidInputError, NotFoundError
from codemem.knowledge import KnowledgeStore
from codemem.rules import RuleStore
from codemem.scopes import ScopeDatabaseManager

logger = logging.getLogger(__name__)

EXPORT_MAX_ITEMS = 1000


def register_codemem_tools(
    mcp,
    manager: ScopeDatabaseManager,
    knowledge: KnowledgeStore,
    rules: RuleStore,
    index: CodeIndex,
    config: CodememConfig,
    *,
    audit=None,
) -> None:
    """
    Register all 16 codemem MCP tools on a FastMCP server instance.

    Args:
        mcp: FastMCP server instance.
        manager: ScopeDatabaseManager shared by the stores.
        knowledge: KnowledgeStore (with its enricher attached).
        rules: RuleStore.
        index: CodeIndex.
        config: CodememConfig (retrieval clamps, index settings).
        audit: AuditLogger for structured logging.
    """
    from codemem.mcp.audit import AuditLogger, code_link_detail, knowledge_detail

    if audit is None:
        audit = AuditLogger(project=manager.project_name)

    def _failed(tool: str, exc: Exception) -> Dict[str, Any]:
        logger.exception("%s failed", tool)
        return {"status": "error", "message": f"{tool} failed: {exc}"}

    # =====================================================================
    # KNOWLEDGE
    # =====================================================================

    @mcp.tool()
    def store_knowledge(
        content: str,
        scope: str = "project",
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        context: Optional[str] = None,
        related_files: Optional[List[str]] = None,
        related_symbols: Optional[List[Dict[str, Any]]] = None,
        active_file: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store a knowledge snippet.

        Project-scope entries stored without related_files/related_symbols
        are linked to indexed code automatically (best-effort).

        Args:
            content: The knowledge text (required, non-empty).
            scope: project | user | global (default project).
            tags: Free-form tags.
            metadata: Arbitrary JSON object.
            source: Where the knowledge came from.
            context: Short context label.
            related_files: Workspace-relative paths.
            related_symbols: [{name, kind, file, line}].
            active_file: File open in the editor when the snippet was written.

        Returns:
            id, scope, created_at, related_files, related_symbols.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            detail = knowledge_detail(content or "", tags)
            entry = knowledge.store(
                scope, content,
                tags=tags, metadata=metadata, source=source, context=context,
                related_files=related_files, related_symbols=related_symbols,
                active_file=active_file,
            )
            detail["id"] = entry.id
            detail.update(code_link_detail(entry))
            return {
                "status": "ok",
                "id": entry.id,
                "scope": entry.scope,
                "created_at": entry.created_at,
                "related_files": entry.related_files,
                "related_symbols": [s.to_dict() for s in entry.related_symbols],
            }
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("store_knowledge", e)
        finally:
            audit.log("store_knowledge", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def retrieve_knowledge(
        query: str = "",
        scope: str = "all",
        tags: Optional[List[str]] = None,
        limit: int = 5,
    ) -> Dict[str, Any]:
        """Search knowledge entries (full-text, substring fallback).

        Args:
            query: Search text. Empty = most recent entries.
            scope: project | user | global | all (default all).
            tags: Only entries carrying at least one of these tags.
            limit: Max entries (default 5, capped at 20).

        Returns:
            count and entries (most relevant first).
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"query_len": len(query or "")}
        try:
            entries = knowledge.retrieve(scope, query, tags=tags, limit=limit)
            detail["returned"] = len(entries)
            return {
                "status": "ok",
                "count": len(entries),
                "entries": [e.to_dict() for e in entries],
            }
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("retrieve_knowledge", e)
        finally:
            audit.log("retrieve_knowledge", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def list_knowledge(
        scope: str = "all",
        tags: Optional[List[str]] = None,
        limit: int = 10,
        optimize: bool = False,
    ) -> Dict[str, Any]:
        """List the most recent knowledge entries with per-scope statistics.

        Args:
            scope: project | user | global | all (default all).
            tags: Only entries carrying at least one of these tags.
            limit: Max entries (default 10, capped at 50).
            optimize: Run VACUUM/ANALYZE and FTS optimize first.

        Returns:
            count, entries, stats ({scope: {count, size_kb, fts}}).
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            entries, stats = knowledge.list_entries(
                scope, tags=tags, limit=limit, optimize=optimize,
            )
            detail = {"returned": len(entries), "optimize": optimize}
            return {
                "status": "ok",
                "count": len(entries),
                "entries": [e.to_dict() for e in entries],
                "stats": stats,
            }
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("list_knowledge", e)
        finally:
            audit.log("list_knowledge", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    # =====================================================================
    # RULES
    # =====================================================================

    @mcp.tool()
    def store_rule(
        title: str,
        content: str,
        scope: str = "global",
        category: str = "general",
        priority: int = 5,
        enabled: bool = True,
    ) -> Dict[str, Any]:
        """Store a coding rule (higher priority is returned first).

        Args:
            title: Short rule name.
            content: The rule text.
            scope: project | user | global (default global).
            category: Grouping label (default general).
            priority: Integer, higher first (default 5).
            enabled: Disabled rules are kept but not retrieved.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            rule = rules.store(
                title, content, scope=scope, category=category,
                priority=priority, enabled=enabled,
            )
            detail = {"id": rule.id, "priority": rule.priority}
            return {"status": "ok", "rule": rule.to_dict()}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("store_rule", e)
        finally:
            audit.log("store_rule", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def update_rule(
        rule_id: str,
        scope: str = "global",
        title: Optional[str] = None,
        content: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[int] = None,
        enabled: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Update selected fields of a rule; omitted fields are unchanged.

        Args:
            rule_id: Rule id (rule-…).
            scope: Scope holding the rule (default global).
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"id": rule_id}
        try:
            rule = rules.update(
                rule_id, scope=scope, title=title, content=content,
                category=category, priority=priority, enabled=enabled,
            )
            return {"status": "ok", "rule": rule.to_dict()}
        except NotFoundError as e:
            outcome = "not_found"
            return {"status": "not_found", "message": str(e)}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("update_rule", e)
        finally:
            audit.log("update_rule", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def delete_rule(rule_id: str, scope: str = "global") -> Dict[str, Any]:
        """Delete a rule permanently."""
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"id": rule_id}
        try:
            rules.delete(rule_id, scope=scope)
            return {"status": "ok", "deleted": rule_id}
        except NotFoundError as e:
            outcome = "not_found"
            return {"status": "not_found", "message": str(e)}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("delete_rule", e)
        finally:
            audit.log("delete_rule", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def list_rules(scope: str = "all", include_disabled: bool = False) -> Dict[str, Any]:
        """List rules by priority, optionally including disabled ones."""
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            found = rules.list(scope=scope, include_disabled=include_disabled)
            detail = {"returned": len(found)}
            return {"status": "ok", "count": len(found),
                    "rules": [r.to_dict() for r in found]}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("list_rules", e)
        finally:
            audit.log("list_rules", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def retrieve_rules(scope: str = "all", category: Optional[str] = None) -> Dict[str, Any]:
        """Enabled rules to apply, highest priority first.

        Args:
            scope: project | user | global | all (default all).
            category: Only rules of this category.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"category": category}
        try:
            found = rules.retrieve(scope=scope, category=category)
            detail["returned"] = len(found)
            return {"status": "ok", "count": len(found),
                    "rules": [r.to_dict() for r in found]}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("retrieve_rules", e)
        finally:
            audit.log("retrieve_rules", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    # =====================================================================
    # CODE INDEX
    # =====================================================================

    @mcp.tool()
    def index_file(
        file_path: str,
        relative_path: str,
        content: Optional[str] = None,
        force: bool = False,
        scope: str = "project",
    ) -> Dict[str, Any]:
        """Index one source file (skipped when its content is unchanged).

        Args:
            file_path: Absolute path on disk (read when content is omitted).
            relative_path: Workspace-relative path (the file's identity).
            content: File text, if the client already has it.
            force: Re-index even when the content hash is unchanged.

        Returns:
            result: {relative_path, status (indexed|skipped|unparsable),
                     symbols, imports, language, message}
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"path": relative_path}
        try:
            res = index.index_file(file_path, relative_path, content,
                                   force=force, scope=scope)
            detail["result"] = res.status
            return {"status": "ok", "result": res.to_dict()}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("index_file", e)
        finally:
            audit.log("index_file", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def index_workspace(
        files: List[Dict[str, Any]],
        incremental: bool = True,
        scope: str = "project",
    ) -> Dict[str, Any]:
        """Index many files in batches, then purge deleted files.

        Args:
            files: [{file_path, relative_path, content?}] (camelCase accepted).
            incremental: Skip files whose content hash is unchanged.

        Returns:
            total, indexed, skipped, failed, removed, errors (bounded).
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"files": len(files or [])}
        try:
            res = index.index_workspace(files or [], incremental=incremental, scope=scope)
            detail.update(indexed=res.indexed, skipped=res.skipped, failed=res.failed)
            return {"status": "ok", **res.to_dict()}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("index_workspace", e)
        finally:
            audit.log("index_workspace", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def search_symbols(
        query: str,
        kinds: Optional[List[str]] = None,
        exported_only: bool = False,
        limit: int = 20,
        scope: str = "project",
    ) -> Dict[str, Any]:
        """Find symbol definitions by name (prefix full-text match).

        Args:
            query: Symbol name or prefix.
            kinds: Restrict to kinds (function, class, method, ...).
            exported_only: Only exported/public symbols.
            limit: Max results (default 20, capped at 100).
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"query_len": len(query or "")}
        try:
            found = index.search_symbols(query, kinds=kinds, exported_only=exported_only,
                                         limit=limit, scope=scope)
            detail["returned"] = len(found)
            return {"status": "ok", "count": len(found),
                    "symbols": [s.to_dict() for s in found]}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("search_symbols", e)
        finally:
            audit.log("search_symbols", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def get_file_symbols(
        relative_path: str,
        include_imports: bool = True,
        scope: str = "project",
    ) -> Dict[str, Any]:
        """Symbols (and imports) of one indexed file, in line order."""
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"path": relative_path}
        try:
            data = index.get_file_symbols(relative_path, include_imports=include_imports,
                                          scope=scope)
            result: Dict[str, Any] = {
                "status": "ok",
                "file": data["file"].to_dict(),
                "symbols": [s.to_dict() for s in data["symbols"]],
            }
            if include_imports:
                result["imports"] = [i.to_dict() for i in data["imports"]]
            return result
        except NotFoundError as e:
            outcome = "not_found"
            return {"status": "not_found", "message": str(e)}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("get_file_symbols", e)
        finally:
            audit.log("get_file_symbols", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def find_references(
        symbol_name: Optional[str] = None,
        module_path: Optional[str] = None,
        limit: int = 50,
        scope: str = "project",
    ) -> Dict[str, Any]:
        """Declarations of a symbol name, or files importing a module.

        Exactly one of symbol_name / module_path must be given.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {"by": "symbol" if symbol_name else "module"}
        try:
            found = index.find_references(symbol_name, module_path, limit=limit, scope=scope)
            detail["returned"] = len(found)
            return {"status": "ok", "count": len(found),
                    "references": [r.to_dict() for r in found]}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("find_references", e)
        finally:
            audit.log("find_references", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def get_index_stats(
        include_language_breakdown: bool = True,
        scope: str = "project",
    ) -> Dict[str, Any]:
        """Counts of indexed files, symbols and imports (per language)."""
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        try:
            stats = index.get_index_stats(include_language_breakdown, scope=scope)
            return {"status": "ok", **stats}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("get_index_stats", e)
        finally:
            audit.log("get_index_stats", rid, scope, outcome, None,
                      (time.monotonic() - t0) * 1000)

    # =====================================================================
    # DATA
    # =====================================================================

    @mcp.tool()
    def export_knowledge(scope: str = "project") -> Dict[str, Any]:
        """Export the knowledge entries of one scope (capped at 1000).

        Returns:
            count, items (dicts as written by the JSONL export), truncated.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            buf = io.StringIO()
            knowledge.export_jsonl(scope, buf)
            items = [json.loads(line) for line in buf.getvalue().splitlines() if line.strip()]
            truncated = len(items) > EXPORT_MAX_ITEMS
            if truncated:
                items = items[:EXPORT_MAX_ITEMS]
            detail = {"exported": len(items), "truncated": truncated}
            return {"status": "ok", "count": len(items), "items": items,
                    "truncated": truncated}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("export_knowledge", e)
        finally:
            audit.log("export_knowledge", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    @mcp.tool()
    def import_knowledge(items: str, scope: str = "project") -> Dict[str, Any]:
        """Import knowledge entries from a JSON array string.

        Ids and timestamps are kept; ids already present are skipped.

        Returns:
            total_lines, imported, skipped_existing, errors.
        """
        t0 = time.monotonic()
        rid = audit.new_rid()
        outcome = "ok"
        detail: Dict[str, Any] = {}
        try:
            try:
                item_list = json.loads(items)
            except (json.JSONDecodeError, TypeError) as e:
                outcome = "error"
                return {"status": "error", "message": f"Invalid JSON: {e}"}
            if not isinstance(item_list, list):
                item_list = [item_list]

            buf = io.StringIO(
                "".join(json.dumps(it, ensure_ascii=False) + "\n" for it in item_list)
            )
            res = knowledge.import_jsonl(scope, buf)
            detail = res.to_dict()
            return {"status": "ok", **res.to_dict()}
        except InvalidInputError as e:
            outcome = "error"
            return {"status": "error", "message": str(e)}
        except Exception as e:
            outcome = "error"
            return _failed("import_knowledge", e)
        finally:
            audit.log("import_knowledge", rid, scope, outcome, detail,
                      (time.monotonic() - t0) * 1000)

    logger.debug("codemem tools registered (project=%s)", manager.project_name)
