"""
codemem CLI — knowledge, rules and code index from the shell

Commands:
    codemem store  "text" [--scope S] [--tags T]    — store a knowledge entry
    codemem search "query" | --symbol NAME [-k N]   — search knowledge
    codemem list   [--scope S] [-k N] [--optimize]  — recent entries + stats
    codemem rules  [list|add|update|delete]         — manage coding rules
    codemem index  PATH... [--full]                 — index source files
    codemem symbols QUERY | --file PATH             — search or list symbols
    codemem refs   --symbol NAME | --module PATH    — definitions / importers
    codemem stats                                   — index and scope statistics
    codemem export [-o FILE] / import FILE          — JSONL backup
    codemem serve                                   — start MCP server (foreground)

Environment variables:
    CODEMEM_DB_ROOT     Directory of the scope databases
                        (default: $XDG_DATA_HOME/codemem/db)
    CODEMEM_WORKSPACE   Workspace folder naming the project scope (default: CWD)
    CODEMEM_CONFIG      JSON config file

Precedence (invariant):
    CLI --flag  >  CODEMEM_* env var  >  compiled default

Exit codes:
    0  Success (including idempotent no-op)
    1  Operational error (bad args, unknown id or path)
    2  Internal failure (unexpected exception, I/O error)

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

from codemem.errors import CodememError, InvalidInputError

logger = logging.getLogger(__name__)

# Directories never walked by `codemem index`
_SKIP_DIRS = frozenset({
    ".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv",
    "dist", "build", "target", ".idea", ".vscode", ".tox", ".mypy_cache",
})


# ---------------------------------------------------------------------------
# Env parsing
# ---------------------------------------------------------------------------


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Parse string env var with fallback (empty counts as unset)."""
    return os.environ.get(name) or default


# ---------------------------------------------------------------------------
# Service factory
# ---------------------------------------------------------------------------


@dataclass
class _Services:
    manager: object
    knowledge: object
    rules: object
    index: object


def _open_services(args: argparse.Namespace, *, enrich: bool = True) -> _Services:
    """Build manager + stores from flags, env and config file."""
    from codemem.code_index import CodeIndex
    from codemem.config import load_config
    from codemem.enricher import ContextEnricher
    from codemem.knowledge import KnowledgeStore
    from codemem.rules import RuleStore
    from codemem.scopes import ScopeDatabaseManager

    config = load_config(getattr(args, "config", None) or _env_str("CODEMEM_CONFIG"))
    db_root = getattr(args, "db_root", None) or _env_str("CODEMEM_DB_ROOT")
    workspace = getattr(args, "workspace", None) or _env_str("CODEMEM_WORKSPACE")
    if db_root:
        config.store.db_root = db_root
    if workspace:
        config.store.workspace = workspace

    manager = ScopeDatabaseManager(config.store)
    index = CodeIndex(manager, config=config.index)
    enricher = None
    if enrich and config.enrich.enabled:
        enricher = ContextEnricher(index, config.enrich)
    return _Services(
        manager=manager,
        knowledge=KnowledgeStore(manager, config.retrieval, enricher=enricher),
        rules=RuleStore(manager),
        index=index,
    )


def _workspace(args: argparse.Namespace) -> Path:
    return Path(
        getattr(args, "workspace", None) or _env_str("CODEMEM_WORKSPACE") or os.getcwd()
    ).resolve()


# ---------------------------------------------------------------------------
# Stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _tags(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [t.strip() for t in value.split(",") if t.strip()]


# ===========================================================================
# Knowledge commands
# ===========================================================================


def cmd_store(args: argparse.Namespace) -> None:
    """Store a knowledge entry (content from argument or stdin)."""
    content = args.content
    if content == "-" or (content is None and not sys.stdin.isatty()):
        content = sys.stdin.read()
    if not content or not content.strip():
        _warn("Nothing to store (empty content).")
        sys.exit(1)

    svc = _open_services(args, enrich=not args.no_enrich)
    try:
        entry = svc.knowledge.store(
            args.scope, content,
            tags=_tags(args.tags), source=args.source, context=args.context,
            active_file=args.active_file,
        )
    finally:
        svc.manager.close()

    if getattr(args, "json", False):
        _print_json({"status": "ok", **entry.to_dict()})
    else:
        print(entry.id)
        if entry.related_symbols:
            _info("linked symbols: " + ", ".join(
                f"{s.name} ({s.file})" for s in entry.related_symbols))


def _print_entries(entries, as_json: bool) -> None:
    if as_json:
        _print_json([e.to_dict() for e in entries])
        return
    print(f"Found {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}:\n")
    for e in entries:
        first = e.content.splitlines()[0] if e.content else ""
        print(f"  [{(e.scope or '?').upper()}] {e.id}  {first[:100]}")
        if e.tags:
            print(f"    tags: {', '.join(e.tags)}")
        if e.related_files:
            print(f"    files: {', '.join(e.related_files)}")
        print()


def cmd_search(args: argparse.Namespace) -> None:
    """Search knowledge entries by text, or by the symbols they mention."""
    if not args.query and not args.symbol:
        raise InvalidInputError("give a query or at least one --symbol")
    svc = _open_services(args, enrich=False)
    try:
        if args.symbol:
            entries = svc.knowledge.find_by_symbols(args.symbol, args.scope, limit=args.k)
        else:
            entries = svc.knowledge.retrieve(args.scope, args.query, tags=_tags(args.tags),
                                             limit=args.k)
    finally:
        svc.manager.close()
    if not entries and not getattr(args, "json", False):
        _info("No results found.")
        return
    _print_entries(entries, getattr(args, "json", False))


def cmd_list(args: argparse.Namespace) -> None:
    """List recent knowledge entries with per-scope statistics."""
    svc = _open_services(args, enrich=False)
    try:
        entries, stats = svc.knowledge.list_entries(
            args.scope, tags=_tags(args.tags), limit=args.k, optimize=args.optimize,
        )
    finally:
        svc.manager.close()
    if getattr(args, "json", False):
        _print_json({"status": "ok", "entries": [e.to_dict() for e in entries],
                     "stats": stats})
        return
    for scope, st in stats.items():
        print(f"{scope:8s} {st['count']:6d} entries  {st['size_kb']:8.1f} KB  "
              f"fts={'yes' if st['fts'] else 'no'}")
    print()
    _print_entries(entries, False)


def cmd_export(args: argparse.Namespace) -> None:
    """Export one scope as JSONL (stdout or --output)."""
    svc = _open_services(args, enrich=False)
    try:
        if args.output:
            with open(args.output, "w", encoding="utf-8") as fh:
                count = svc.knowledge.export_jsonl(args.scope, fh)
        else:
            count = svc.knowledge.export_jsonl(args.scope, sys.stdout)
    finally:
        svc.manager.close()
    _info(f"[export] {count} entr{'y' if count == 1 else 'ies'} from {args.scope}")


def cmd_import(args: argparse.Namespace) -> None:
    """Import a JSONL export into one scope."""
    svc = _open_services(args, enrich=False)
    try:
        if args.file == "-":
            result = svc.knowledge.import_jsonl(args.scope, sys.stdin)
        else:
            result = svc.knowledge.import_jsonl(args.scope, args.file)
    finally:
        svc.manager.close()
    if getattr(args, "json", False):
        _print_json({"status": "ok", **result.to_dict()})
    else:
        _info(f"[import] {result.imported} imported, {result.skipped_existing} existing, "
              f"{result.errors} invalid (of {result.total_lines} lines)")
    if result.errors and not result.imported:
        sys.exit(1)


# ===========================================================================
# Rule commands
# ===========================================================================


def cmd_rules_list(args: argparse.Namespace) -> None:
    """List rules (enabled only unless --include-disabled)."""
    svc = _open_services(args, enrich=False)
    try:
        if getattr(args, "category", None):
            rules = svc.rules.retrieve(scope=args.scope, category=args.category)
        else:
            rules = svc.rules.list(scope=args.scope,
                                   include_disabled=getattr(args, "include_disabled", False))
    finally:
        svc.manager.close()
    if getattr(args, "json", False):
        _print_json([r.to_dict() for r in rules])
        return
    if not rules:
        _info("No rules.")
        return
    for r in rules:
        flag = "" if r.enabled else " [disabled]"
        print(f"  P{r.priority:<3d} {r.id}  [{r.category}] {r.title}{flag}")
        print(f"        {r.content}")


def cmd_rules_add(args: argparse.Namespace) -> None:
    svc = _open_services(args, enrich=False)
    try:
        rule = svc.rules.store(args.title, args.content, scope=args.rule_scope,
                               category=args.category, priority=args.priority)
    finally:
        svc.manager.close()
    if getattr(args, "json", False):
        _print_json({"status": "ok", **rule.to_dict()})
    else:
        print(rule.id)


def cmd_rules_update(args: argparse.Namespace) -> None:
    svc = _open_services(args, enrich=False)
    try:
        rule = svc.rules.update(
            args.id, scope=args.rule_scope, title=args.title, content=args.content,
            category=args.category, priority=args.priority, enabled=args.enabled,
        )
    finally:
        svc.manager.close()
    if getattr(args, "json", False):
        _print_json({"status": "ok", **rule.to_dict()})
    else:
        _info(f"Updated {rule.id}")


def cmd_rules_delete(args: argparse.Namespace) -> None:
    svc = _open_services(args, enrich=False)
    try:
        svc.rules.delete(args.id, scope=args.rule_scope)
    finally:
        svc.manager.close()
    _info(f"Deleted {args.id}")


# ===========================================================================
# Index commands
# ===========================================================================


def _walk(paths: List[str], extensions: frozenset) -> Iterator[Path]:
    for raw in paths:
        p = Path(raw)
        if p.is_file():
            yield p
            continue
        if not p.is_dir():
            _warn(f"[index] not found: {raw}")
            continue
        for root, dirs, files in os.walk(p):
            dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS and not d.startswith("."))
            for name in sorted(files):
                if os.path.splitext(name)[1].lower() in extensions:
                    yield Path(root) / name


def cmd_index(args: argparse.Namespace) -> None:
    """Index files and directories (known source extensions only)."""
    ws = _workspace(args)
    svc = _open_services(args, enrich=False)
    try:
        extensions = frozenset(svc.index.registry.extensions)
        specs = []
        for path in _walk(args.paths or [str(ws)], extensions):
            absolute = path.resolve()
            try:
                rel = absolute.relative_to(ws).as_posix()
            except ValueError:
                rel = absolute.as_posix()
            specs.append({"file_path": str(absolute), "relative_path": rel})

        def progress(done: int, total: int) -> None:
            _info(f"[index] {done}/{total}")

        result = svc.index.index_workspace(
            specs, incremental=not args.full, scope=args.scope, progress=progress,
        )
    finally:
        svc.manager.close()

    if getattr(args, "json", False):
        _print_json({"status": "ok", **result.to_dict()})
    else:
        print(f"{result.total} file(s): {result.indexed} indexed, {result.skipped} unchanged, "
              f"{result.failed} failed, {result.removed} removed")
        for err in result.errors:
            _warn(f"  {err}")


def cmd_symbols(args: argparse.Namespace) -> None:
    """Search symbols, or list the symbols of one file."""
    if not args.query and not args.file:
        _warn("Give a QUERY or --file PATH.")
        sys.exit(1)
    svc = _open_services(args, enrich=False)
    try:
        if args.file:
            data = svc.index.get_file_symbols(args.file, scope=args.scope)
            symbols = data["symbols"]
            imports = data["imports"]
        else:
            symbols = svc.index.search_symbols(
                args.query, kinds=args.kind, exported_only=args.exported,
                limit=args.k, scope=args.scope,
            )
            imports = []
    finally:
        svc.manager.close()

    if getattr(args, "json", False):
        _print_json({"symbols": [s.to_dict() for s in symbols],
                     "imports": [i.to_dict() for i in imports]})
        return
    for s in symbols:
        where = f"{s.file_path or args.file}:{s.start_line}"
        owner = f"{s.container_name}." if s.container_name else ""
        mark = "*" if s.is_exported else " "
        print(f" {mark} {s.kind:10s} {owner}{s.name:30s} {where}")
    for i in imports:
        print(f"   {i.import_type:10s} {i.import_path}  (line {i.line_number})")


def cmd_refs(args: argparse.Namespace) -> None:
    """Definitions of a symbol name, or files importing a module."""
    svc = _open_services(args, enrich=False)
    try:
        refs = svc.index.find_references(args.symbol, args.module, limit=args.k, scope=args.scope)
    finally:
        svc.manager.close()
    if getattr(args, "json", False):
        _print_json([r.to_dict() for r in refs])
        return
    for r in refs:
        if args.symbol:
            print(f"  {r.kind:10s} {r.name}  {r.file_path}:{r.start_line}")
        else:
            print(f"  {r.file_path}:{r.line_number}  {r.import_path}")


def cmd_stats(args: argparse.Namespace) -> None:
    """Code index statistics plus knowledge counts per scope."""
    svc = _open_services(args, enrich=False)
    try:
        stats = svc.index.get_index_stats(True, scope=args.scope)
        _, scopes = svc.knowledge.list_entries("all", limit=1)
    finally:
        svc.manager.close()

    if getattr(args, "json", False):
        _print_json({"status": "ok", "index": stats, "knowledge": scopes})
        return
    print("Code Index Statistics")
    print("=" * 40)
    print(f"  Files:   {stats['files']}")
    print(f"  Symbols: {stats['symbols']}")
    print(f"  Imports: {stats['imports']}")
    for lang in stats.get("languages", []):
        print(f"    {lang['language']:12s} {lang['file_count']:5d} file(s) "
              f"{lang['total_lines']:8d} line(s)")
    print("Knowledge")
    for scope, st in scopes.items():
        print(f"  {scope:8s} {st['count']:6d} entries  {st['size_kb']:.1f} KB")


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the codemem MCP server in foreground."""
    try:
        from codemem.mcp.server import build_parser as mcp_parser, create_server
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install mcp")
        sys.exit(1)

    server_argv: List[str] = []
    for flag, attr in (("--db-root", "db_root"), ("--workspace", "workspace"),
                       ("--config", "config"), ("--audit-log", "audit_log")):
        value = getattr(args, attr, None)
        if value:
            server_argv.extend([flag, value])
    if getattr(args, "verbose", False):
        server_argv.append("--verbose")

    server_args = mcp_parser().parse_args(server_argv)
    try:
        mcp, manager = create_server(server_args)
    except ImportError:
        _warn("MCP dependencies not installed. Run: pip install mcp")
        sys.exit(1)

    _info(f"codemem MCP server (project={manager.project_name})")
    _info("Press Ctrl+C to stop.")
    try:
        mcp.run()
    finally:
        manager.close()


# ===========================================================================
# Entry point
# ===========================================================================


def build_parser() -> argparse.ArgumentParser:
    """Parser for `codemem <command> [args]`."""
    # SUPPRESS defaults let both `codemem --json stats` and
    # `codemem stats --json` work through parents=.
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument("--db-root", default=argparse.SUPPRESS,
                         help="Scope database directory (default: CODEMEM_DB_ROOT)")
    _common.add_argument("--workspace", default=argparse.SUPPRESS,
                         help="Workspace folder (default: CODEMEM_WORKSPACE or CWD)")
    _common.add_argument("--config", default=argparse.SUPPRESS,
                         help="JSON config file (default: CODEMEM_CONFIG)")
    _common.add_argument("--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
                         help="Suppress stderr progress messages")
    _common.add_argument("--json", action="store_true", default=argparse.SUPPRESS,
                         help="Machine-readable JSON output")
    _common.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
                         help="Enable verbose logging")

    parser = argparse.ArgumentParser(
        prog="codemem",
        description="codemem — knowledge memory and code index for coding sessions",
        parents=[_common],
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- store -------------------------------------------------------------
    p = sub.add_parser("store", parents=[_common], help="Store a knowledge entry")
    p.add_argument("content", nargs="?", default=None, help="Text, or '-' for stdin")
    p.add_argument("--scope", default="project", help="project|user|global (default: project)")
    p.add_argument("--tags", default=None, help="Comma-separated tags")
    p.add_argument("--source", default=None, help="Origin of the knowledge")
    p.add_argument("--context", default=None, help="Context label")
    p.add_argument("--active-file", default=None, help="File the entry is about")
    p.add_argument("--no-enrich", action="store_true", help="Do not link to indexed code")
    p.set_defaults(func=cmd_store)

    # -- search ------------------------------------------------------------
    p = sub.add_parser("search", parents=[_common], help="Search knowledge")
    p.add_argument("query", nargs="?", default="", help="Search query")
    p.add_argument("--scope", default="all", help="project|user|global|all (default: all)")
    p.add_argument("--tags", default=None, help="Comma-separated tag filter")
    p.add_argument("-k", type=int, default=5, help="Max results (default: 5, max 20)")
    p.add_argument("--symbol", action="append", default=None, metavar="NAME",
                   help="Entries mentioning or linked to this symbol (repeatable)")
    p.set_defaults(func=cmd_search)

    # -- list --------------------------------------------------------------
    p = sub.add_parser("list", parents=[_common], help="Recent entries and scope statistics")
    p.add_argument("--scope", default="all", help="project|user|global|all (default: all)")
    p.add_argument("--tags", default=None, help="Comma-separated tag filter")
    p.add_argument("-k", type=int, default=10, help="Max entries (default: 10, max 50)")
    p.add_argument("--optimize", action="store_true", help="VACUUM/ANALYZE first")
    p.set_defaults(func=cmd_list)

    # -- rules -------------------------------------------------------------
    _rules_list = argparse.ArgumentParser(add_help=False)
    _rules_list.add_argument("--scope", default="all", help="Scope for listing (default: all)")
    _rules_list.add_argument("--category", default=None,
                             help="Only enabled rules of a category")
    _rules_list.add_argument("--include-disabled", action="store_true",
                             help="Show disabled rules")

    p_rules = sub.add_parser("rules", parents=[_common, _rules_list], help="Manage coding rules")
    p_rules.set_defaults(func=cmd_rules_list)
    rsub = p_rules.add_subparsers(dest="rules_command")

    p = rsub.add_parser("list", parents=[_common, _rules_list], help="List rules")
    p.set_defaults(func=cmd_rules_list)

    p = rsub.add_parser("add", parents=[_common], help="Add a rule")
    p.add_argument("title")
    p.add_argument("content")
    p.add_argument("--rule-scope", default="global", help="Scope (default: global)")
    p.add_argument("--category", default="general")
    p.add_argument("--priority", type=int, default=5)
    p.set_defaults(func=cmd_rules_add)

    p = rsub.add_parser("update", parents=[_common], help="Update selected rule fields")
    p.add_argument("id")
    p.add_argument("--rule-scope", default="global", help="Scope (default: global)")
    p.add_argument("--title", default=None)
    p.add_argument("--content", default=None)
    p.add_argument("--category", default=None)
    p.add_argument("--priority", type=int, default=None)
    g = p.add_mutually_exclusive_group()
    g.add_argument("--enable", dest="enabled", action="store_const", const=True, default=None)
    g.add_argument("--disable", dest="enabled", action="store_const", const=False)
    p.set_defaults(func=cmd_rules_update)

    p = rsub.add_parser("delete", parents=[_common], help="Delete a rule")
    p.add_argument("id")
    p.add_argument("--rule-scope", default="global", help="Scope (default: global)")
    p.set_defaults(func=cmd_rules_delete)

    # -- index -------------------------------------------------------------
    p = sub.add_parser("index", parents=[_common], help="Index source files")
    p.add_argument("paths", nargs="*", help="Files or directories (default: workspace)")
    p.add_argument("--full", action="store_true", help="Re-index unchanged files too")
    p.add_argument("--scope", default="project", help="Scope (default: project)")
    p.set_defaults(func=cmd_index)

    # -- symbols -----------------------------------------------------------
    p = sub.add_parser("symbols", parents=[_common], help="Search symbols or list a file")
    p.add_argument("query", nargs="?", default=None, help="Symbol name or prefix")
    p.add_argument("--file", default=None, help="List symbols of this relative path")
    p.add_argument("--kind", action="append", default=None, help="Filter by kind (repeatable)")
    p.add_argument("--exported", action="store_true", help="Exported symbols only")
    p.add_argument("-k", type=int, default=20, help="Max results (default: 20)")
    p.add_argument("--scope", default="project", help="Scope (default: project)")
    p.set_defaults(func=cmd_symbols)

    # -- refs --------------------------------------------------------------
    p = sub.add_parser("refs", parents=[_common], help="Find definitions or importers")
    g = p.add_mutually_exclusive_group(required=True)
    g.add_argument("--symbol", default=None, help="Exact symbol name")
    g.add_argument("--module", default=None, help="Import path substring")
    p.add_argument("-k", type=int, default=50, help="Max results (default: 50)")
    p.add_argument("--scope", default="project", help="Scope (default: project)")
    p.set_defaults(func=cmd_refs)

    # -- stats -------------------------------------------------------------
    p = sub.add_parser("stats", parents=[_common], help="Index and knowledge statistics")
    p.add_argument("--scope", default="project", help="Index scope (default: project)")
    p.set_defaults(func=cmd_stats)

    # -- export / import ---------------------------------------------------
    p = sub.add_parser("export", parents=[_common], help="Export knowledge as JSONL")
    p.add_argument("--scope", default="project", help="Scope (default: project)")
    p.add_argument("-o", "--output", default=None, help="Output file (default: stdout)")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", parents=[_common], help="Import knowledge from JSONL")
    p.add_argument("file", help="JSONL file, or '-' for stdin")
    p.add_argument("--scope", default="project", help="Scope (default: project)")
    p.set_defaults(func=cmd_import)

    # -- serve -------------------------------------------------------------
    p = sub.add_parser("serve", parents=[_common], help="Start MCP server")
    p.add_argument("--audit-log", default=None, help="Audit log file (default: stderr)")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point: codemem <command> [args]."""
    global _quiet

    parser = build_parser()
    args = parser.parse_args(argv)
    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except CodememError as e:
        _warn(f"Error: {e}")
        sys.exit(1)
    except BrokenPipeError:
        # e.g. codemem export | head
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
