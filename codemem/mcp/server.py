"""
codemem MCP Server — knowledge memory and code index for coding assistants

Standalone MCP server exposing codemem operations via the Model Context
Protocol.  Works with any MCP-compatible editor or agent.

Architecture: thin MCP layer delegating to KnowledgeStore, RuleStore and
CodeIndex.  No business logic in this module.

Usage:
    python -m codemem.mcp.server
    python -m codemem.mcp.server --workspace ~/src/myapp
    python -m codemem.mcp.server --db-root ~/.local/share/codemem/db --audit-log audit.jsonl

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import argparse
import logging
import os

logger = logging.getLogger(__name__)

# Instructions embedded in FastMCP, visible to any MCP client.
_MCP_INSTRUCTIONS = (
    "Knowledge memory and code index for coding sessions (16 tools).\n"
    "\n"
    "KNOWLEDGE: store_knowledge to save a finding, retrieve_knowledge to search,\n"
    "           list_knowledge for recent entries and per-scope stats.\n"
    "RULES:     retrieve_rules before writing code; store_rule/update_rule/\n"
    "           delete_rule/list_rules to maintain them.\n"
    "INDEX:     index_file/index_workspace keep the symbol index current;\n"
    "           search_symbols, get_file_symbols, find_references, get_index_stats.\n"
    "DATA:      export_knowledge/import_knowledge for JSON backup and transfer.\n"
    "\n"
    "Scopes: project (this workspace), user, global; 'all' searches the three.\n"
    "Rules:\n"
    "- Store distilled knowledge, not raw file excerpts\n"
    "- Pass active_file when the snippet is about the open file\n"
    "- NEVER store secrets or credentials\n"
)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser for the codemem MCP server."""
    p = argparse.ArgumentParser(
        prog="codemem-mcp",
        description="codemem MCP Server — knowledge memory and code index",
    )
    p.add_argument(
        "--db-root",
        default=os.environ.get("CODEMEM_DB_ROOT"),
        help="Directory holding the scope databases "
             "(default: $CODEMEM_DB_ROOT or ~/.local/share/codemem/db)",
    )
    p.add_argument(
        "--workspace",
        default=os.environ.get("CODEMEM_WORKSPACE"),
        help="Workspace folder naming the project scope (default: $CODEMEM_WORKSPACE or CWD)",
    )
    p.add_argument(
        "--config",
        default=os.environ.get("CODEMEM_CONFIG"),
        help="JSON config file (default: $CODEMEM_CONFIG, else built-in defaults)",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    a = p.add_argument_group("audit")
    a.add_argument(
        "--audit-log",
        default=None,
        help="Audit log file path (default: stderr)",
    )
    return p


def create_server(args=None):
    """
    Create and configure the FastMCP server with codemem tools.

    Args:
        args: Parsed argparse.Namespace, or None to parse from sys.argv.

    Returns:
        (mcp_server, manager) tuple.
    """
    from mcp.server.fastmcp import FastMCP

    from codemem.code_index import CodeIndex
    from codemem.config import load_config
    from codemem.enricher import ContextEnricher
    from codemem.knowledge import KnowledgeStore
    from codemem.mcp.audit import AuditLogger
    from codemem.mcp.tools import register_codemem_tools
    from codemem.rules import RuleStore
    from codemem.scopes import ScopeDatabaseManager

    if args is None:
        args = build_parser().parse_args()

    config = load_config(args.config)
    if args.db_root:
        config.store.db_root = args.db_root
    if args.workspace:
        config.store.workspace = args.workspace

    manager = ScopeDatabaseManager(config.store)
    index = CodeIndex(manager, config=config.index)
    enricher = ContextEnricher(index, config.enrich) if config.enrich.enabled else None
    knowledge = KnowledgeStore(manager, config.retrieval, enricher=enricher)
    rules = RuleStore(manager)

    audit_output = None
    if args.audit_log:
        audit_output = open(args.audit_log, "a", encoding="utf-8")
    audit = AuditLogger(output=audit_output, project=manager.project_name)

    mcp = FastMCP(
        name="codemem",
        instructions=_MCP_INSTRUCTIONS,
    )
    register_codemem_tools(mcp, manager, knowledge, rules, index, config, audit=audit)

    logger.info(
        "codemem MCP server ready: db_root=%s, project=%s, enrich=%s",
        config.store.db_root, manager.project_name,
        "on" if enricher else "off",
    )
    return mcp, manager


def main():
    """CLI entry point — parse args, create server, run."""
    parser = build_parser()
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    mcp, manager = create_server(args)
    try:
        mcp.run()
    finally:
        manager.close()


if __name__ == "__main__":
    main()
