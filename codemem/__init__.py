"""
codemem — knowledge memory and code index for coding sessions.

Three scope databases (project, user, global), each one SQLite + FTS5 + WAL
file holding knowledge entries, coding rules and a symbol index of the
workspace.  Knowledge is linked to indexed code when stored.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

__version__ = "0.1.0"

from codemem.types import (
    KnowledgeEntry,
    Rule,
    SourceFile,
    Symbol,
    SymbolRef,
    Import,
)
from codemem.errors import CodememError, InvalidInputError, NotFoundError
from codemem.config import CodememConfig, load_config
from codemem.scopes import ScopeDatabaseManager
from codemem.migrations import SCHEMA_VERSION
from codemem.knowledge import KnowledgeStore
from codemem.rules import RuleStore
from codemem.code_index import CodeIndex
from codemem.enricher import ContextEnricher

__all__ = [
    "__version__",
    "KnowledgeEntry",
    "Rule",
    "SourceFile",
    "Symbol",
    "SymbolRef",
    "Import",
    "CodememError",
    "InvalidInputError",
    "NotFoundError",
    "CodememConfig",
    "load_config",
    "ScopeDatabaseManager",
    "SCHEMA_VERSION",
    "KnowledgeStore",
    "RuleStore",
    "CodeIndex",
    "ContextEnricher",
]
