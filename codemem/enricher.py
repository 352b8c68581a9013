"""
Context Enricher — link free text to the code index

extract_entities() pulls candidate names and paths out of a knowledge
snippet (file paths, import strings, calls, PascalCase names, camelCase or
snake_case identifiers, inline code and fenced blocks).  enrich() looks each
candidate up in the CodeIndex and returns related files and symbols.

Every lookup is best-effort: a failing lookup is logged and skipped.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from codemem.config import EnrichConfig
from codemem.types import SymbolRef

logger = logging.getLogger(__name__)

_FILE_PATH_RE = re.compile(
    r"(?:^|[\s'\"(`])(\.{0,2}/?(?:[\w@-]+/)*[\w-]+\.[A-Za-z][A-Za-z0-9]{0,9})(?=[\s'\")\]:,;`]|$)",
    re.M,
)
_IMPORT_RE = re.compile(r"(?:import|from|require)\s*\(?\s*['\"]([@\w\-/.]+)['\"]\)?")
_CALL_RE = re.compile(r"\b([A-Za-z_$][\w$]*)\s*\(")
_CLASS_RE = re.compile(r"\b([A-Z][A-Za-z0-9]+)\b")
_WORD_RE = re.compile(r"(?<![\w./])([A-Za-z_$][\w$]*)(?![\w/])")
_CODE_BLOCK_RE = re.compile(r"```(\w+)?\n?([\s\S]*?)```")
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")

_CAMEL_RE = re.compile(r"[a-z][A-Z]")
_SNAKE_RE = re.compile(r"[A-Za-z0-9]_[A-Za-z]")
_UPPER_RE = re.compile(r"^[A-Z][A-Z0-9_]{2,}$")

MIN_NAME_LENGTH = 3

STOPLIST = frozenset({
    # JavaScript / TypeScript
    "const", "let", "var", "function", "class", "interface", "type",
    "import", "export", "from", "require", "module", "return", "if",
    "else", "for", "while", "switch", "case", "break", "continue",
    "try", "catch", "finally", "throw", "new", "this", "super",
    "async", "await", "yield", "null", "undefined", "true", "false",
    "void", "typeof", "instanceof", "in", "of", "delete",
    # Python
    "def", "lambda", "with", "as", "pass", "raise", "except",
    "global", "nonlocal", "assert", "elif", "None", "True", "False",
    "and", "or", "not", "is", "self", "cls", "print",
    # Generic words
    "get", "set", "has", "add", "remove", "update", "create",
    "find", "search", "filter", "map", "reduce", "forEach", "length",
    "size", "count", "name", "value", "key", "data", "error", "result",
    "response", "request", "args", "params", "options", "config",
    "use", "see", "note", "todo", "The", "This", "When", "Use",
})


@dataclass
class Entities:
    """Candidates extracted from a snippet, in order of appearance."""

    file_paths: List[str] = field(default_factory=list)
    import_mentions: List[str] = field(default_factory=list)
    function_calls: List[str] = field(default_factory=list)
    class_names: List[str] = field(default_factory=list)
    identifiers: List[str] = field(default_factory=list)
    code_blocks: List[Dict[str, str]] = field(default_factory=list)
    inline_code: List[str] = field(default_factory=list)

    def symbol_candidates(self) -> List[str]:
        return _unique(self.function_calls + self.class_names + self.identifiers)

    def path_candidates(self) -> List[str]:
        return _unique(self.file_paths + self.import_mentions)


@dataclass
class Enrichment:
    related_files: List[str] = field(default_factory=list)
    related_symbols: List[SymbolRef] = field(default_factory=list)


def _unique(items) -> List[str]:
    seen: set = set()
    out: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _keep(name: str) -> bool:
    return len(name) >= MIN_NAME_LENGTH and name not in STOPLIST


def _looks_like_identifier(word: str) -> bool:
    return bool(_CAMEL_RE.search(word) or _SNAKE_RE.search(word) or _UPPER_RE.match(word))


def _looks_like_file(path: str) -> bool:
    return (
        "." in posixpath.basename(path)
        and not path.startswith(("@", "node_modules", ".git"))
        and len(path) < 200
    )


def _module_key(path: str) -> str:
    """Path without leading ./ and extension, as it appears in imports."""
    key = path
    while key.startswith("./"):
        key = key[2:]
    root, ext = posixpath.splitext(key)
    return root if ext and root else key


def extract_entities(text: str) -> Entities:
    """Extract candidate file paths, imports and symbol names from text."""
    ent = Entities()
    if not text:
        return ent

    for m in _CODE_BLOCK_RE.finditer(text):
        ent.code_blocks.append({"language": m.group(1) or "unknown", "code": m.group(2)})

    for m in _FILE_PATH_RE.finditer(text):
        path = m.group(1).strip()
        if _looks_like_file(path):
            ent.file_paths.append(path)

    for m in _IMPORT_RE.finditer(text):
        ent.import_mentions.append(m.group(1))

    for m in _CALL_RE.finditer(text):
        if _keep(m.group(1)):
            ent.function_calls.append(m.group(1))

    for m in _CLASS_RE.finditer(text):
        if _keep(m.group(1)):
            ent.class_names.append(m.group(1))

    for m in _WORD_RE.finditer(text):
        word = m.group(1)
        if _keep(word) and _looks_like_identifier(word):
            ent.identifiers.append(word)

    for m in _INLINE_CODE_RE.finditer(text):
        code = m.group(1).strip()
        ent.inline_code.append(code)
        if "/" in code or ("." in code and " " not in code):
            if _looks_like_file(code):
                ent.file_paths.append(code)
        elif code[:1].isupper():
            if _keep(code):
                ent.class_names.append(code)
        elif _keep(code) and " " not in code:
            ent.identifiers.append(code)

    ent.file_paths = _unique(ent.file_paths)
    ent.import_mentions = _unique(ent.import_mentions)
    ent.function_calls = _unique(ent.function_calls)
    ent.class_names = _unique(ent.class_names)
    ent.identifiers = _unique(ent.identifiers)
    return ent


class ContextEnricher:
    """Cross-references extracted entities against a CodeIndex."""

    def __init__(self, index, config: Optional[EnrichConfig] = None):
        self.index = index
        self.config = config or EnrichConfig()

    def extract_entities(self, text: str) -> Entities:
        return extract_entities(text)

    def enrich(
        self, text: str, active_file: Optional[str] = None, scope: str = "project",
    ) -> Enrichment:
        cfg = self.config
        ent = extract_entities(text)

        symbols = self._lookup_symbols(ent.symbol_candidates(), scope)[:cfg.symbol_limit]

        files: List[str] = []
        for path in ent.path_candidates():
            for importer in self._lookup_importers(path, scope):
                files.append(importer)
            if _looks_like_file(path):
                files.append(path)
        files.extend(s.file for s in symbols if s.file)

        ordered = _unique(([active_file] if active_file else []) + files)
        related_files = ordered[:max(cfg.file_limit, 1 if active_file else 0)]
        logger.debug("enrich: %d candidate name(s), %d path(s) -> %d file(s), %d symbol(s)",
                     len(ent.symbol_candidates()), len(ent.path_candidates()),
                     len(related_files), len(symbols))
        return Enrichment(related_files=related_files, related_symbols=symbols)

    def _lookup_symbols(self, names: List[str], scope: str) -> List[SymbolRef]:
        found: List[SymbolRef] = []
        seen: set = set()
        per_name = self.config.per_name_limit
        for name in names:
            try:
                matches = self.index.search_symbols(name, limit=per_name * 4, scope=scope)
            except Exception as exc:
                logger.debug("symbol lookup failed for %r: %s", name, exc)
                continue
            kept = 0
            for sym in matches:
                if sym.name.lower() != name.lower():
                    continue
                key: Tuple[str, Optional[str]] = (sym.name, sym.file_path)
                if key in seen:
                    continue
                seen.add(key)
                found.append(SymbolRef(name=sym.name, kind=sym.kind,
                                       file=sym.file_path or "", line=sym.start_line))
                kept += 1
                if kept >= per_name:
                    break
        return found

    def _lookup_importers(self, path: str, scope: str) -> List[str]:
        try:
            imports = self.index.find_references(
                module_path=_module_key(path), limit=self.config.file_limit or 1, scope=scope,
            )
        except Exception as exc:
            logger.debug("import lookup failed for %r: %s", path, exc)
            return []
        return [imp.file_path for imp in imports if imp.file_path]
