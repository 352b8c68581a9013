"""
codemem Data Model

Knowledge entries, rules, and the code-index records (files, symbols,
imports), plus the result objects returned by indexing and migration.
Timestamps are integer seconds since the epoch, as stored in SQLite.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional

# ---------------------------------------------------------------------------
# Type aliases (Literal unions for validation)
# ---------------------------------------------------------------------------

ScopeName = Literal["project", "user", "global"]
SymbolKind = Literal[
    "class", "method", "interface", "function", "variable", "constant",
    "struct", "enum", "module", "namespace", "type", "trait", "property",
]
ImportType = Literal["import", "require", "dynamic", "include", "use"]
IndexStatus = Literal["indexed", "skipped", "unparsable"]

# Fan-out order for scope="all"
SCOPES: tuple = ("project", "user", "global")
ALL_SCOPES = "all"

VALID_SCOPES: set = set(SCOPES)
VALID_SYMBOL_KINDS: set = {
    "class", "method", "interface", "function", "variable", "constant",
    "struct", "enum", "module", "namespace", "type", "trait", "property",
}
VALID_IMPORT_TYPES: set = {"import", "require", "dynamic", "include", "use"}


def _now_epoch() -> int:
    """Current time in whole seconds since the epoch."""
    return int(time.time())


def _generate_id(prefix: str = "kn") -> str:
    """Generate a unique id with prefix."""
    short = uuid.uuid4().hex[:12]
    return f"{prefix}-{short}"


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Strip, drop empties, and de-duplicate (case-insensitive, first wins)."""
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    seen: set = set()
    out: List[str] = []
    for t in tags:
        t = str(t).strip()
        if t and t.lower() not in seen:
            seen.add(t.lower())
            out.append(t)
    return out


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------

@dataclass
class SymbolRef:
    """A link from a knowledge entry to a symbol definition."""

    name: str
    kind: str = ""
    file: str = ""
    line: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Any) -> SymbolRef:
        """Accept a dict or a bare symbol name."""
        if isinstance(d, str):
            return cls(name=d)
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class KnowledgeEntry:
    """
    A stored knowledge snippet.

    Created once and never updated in place. ``related_files`` and
    ``related_symbols`` are path-string links into the code index; they may
    dangle if the code has since moved.
    """

    content: str
    id: str = field(default_factory=lambda: _generate_id("kn"))
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None
    context: Optional[str] = None
    related_files: List[str] = field(default_factory=list)
    related_symbols: List[SymbolRef] = field(default_factory=list)
    active_file: Optional[str] = None
    created_at: int = field(default_factory=_now_epoch)
    updated_at: int = field(default_factory=_now_epoch)
    scope: Optional[ScopeName] = None  # set on read, not persisted

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dictionary."""
        d = asdict(self)
        d["related_symbols"] = [s.to_dict() for s in self.related_symbols]
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> KnowledgeEntry:
        """Deserialize, ignoring unknown keys."""
        d = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        d["related_symbols"] = [
            SymbolRef.from_dict(s) for s in d.get("related_symbols") or []
        ]
        return cls(**d)


@dataclass
class Rule:
    """A coding rule; enabled rules are returned by priority."""

    title: str
    content: str
    id: str = field(default_factory=lambda: _generate_id("rule"))
    category: str = "general"
    priority: int = 5
    enabled: bool = True
    created_at: int = field(default_factory=_now_epoch)
    updated_at: int = field(default_factory=_now_epoch)
    scope: Optional[ScopeName] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Code index
# ---------------------------------------------------------------------------

@dataclass
class SourceFile:
    """One row of the files catalog."""

    relative_path: str
    absolute_path: str = ""
    language_id: Optional[str] = None
    content_hash: str = ""
    line_count: int = 0
    size_bytes: int = 0
    mtime: float = 0.0
    indexed_at: int = 0
    is_deleted: bool = False
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Symbol:
    """A symbol definition extracted from a source file."""

    name: str
    kind: SymbolKind
    start_line: int
    start_column: int = 0
    end_line: Optional[int] = None
    end_column: int = 0
    container_name: Optional[str] = None
    is_exported: bool = False
    signature: Optional[str] = None
    doc_comment: Optional[str] = None
    file_path: Optional[str] = None  # filled by queries joining files

    def __post_init__(self):
        if self.kind not in VALID_SYMBOL_KINDS:
            raise ValueError(f"Invalid symbol kind: {self.kind!r}")
        if self.end_line is None:
            self.end_line = self.start_line

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Import:
    """An import statement found in a source file."""

    import_path: str
    import_type: ImportType = "import"
    is_local: bool = False
    line_number: int = 0
    resolved_file_id: Optional[int] = None
    file_path: Optional[str] = None

    def __post_init__(self):
        if self.import_type not in VALID_IMPORT_TYPES:
            raise ValueError(f"Invalid import type: {self.import_type!r}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FileSpec:
    """A file handed to the indexer by the workspace scanner."""

    file_path: str
    relative_path: str
    content: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> FileSpec:
        """Accept snake_case or the camelCase keys editor clients send."""
        file_path = d.get("file_path") or d.get("filePath")
        relative_path = d.get("relative_path") or d.get("relativePath")
        if not file_path or not relative_path:
            raise ValueError("file_path and relative_path are required")
        return cls(
            file_path=file_path,
            relative_path=relative_path,
            content=d.get("content"),
        )


@dataclass
class IndexResult:
    """Outcome of indexing one file."""

    relative_path: str
    status: IndexStatus
    symbols: int = 0
    imports: int = 0
    language: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WorkspaceIndexResult:
    """Aggregate counts from a workspace indexing run."""

    total: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    removed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Maintenance results
# ---------------------------------------------------------------------------

@dataclass
class MigrationReport:
    """What MigrationRunner.migrate() did to one scope."""

    scope: str
    fresh: bool = False
    from_version: int = 0
    to_version: int = 0
    applied: List[int] = field(default_factory=list)
    fts_rebuilt: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImportResult:
    """Counts from a JSONL knowledge import."""

    total_lines: int = 0
    imported: int = 0
    skipped_existing: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
