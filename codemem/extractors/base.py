"""Extractor interface and the line-oriented regex engine behind every language."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple

from codemem.types import Import, Symbol

# Kinds whose body turns nested functions into methods
_METHOD_OWNERS = frozenset({"class", "struct", "interface", "trait", "impl"})
# Kinds that open a scope (function bodies too, so locals are not top-level)
_CONTAINER_KINDS = _METHOD_OWNERS | {"enum", "module", "namespace", "function", "method"}

_UPPER_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_STRING_RE = re.compile(
    r'"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\])*\'|`(?:\\.|[^`\\])*`'
)
# Lines that start a statement, never a declaration
_STATEMENT_RE = re.compile(
    r"^\s*(?:return|new|throw|else|case|if|for|foreach|while|switch|catch|"
    r"do|try|await|yield|delete|goto|sizeof)\b"
)

_MAX_SIGNATURE = 200
_MAX_DOC = 300
_MAX_BODY_SCAN = 5000


class SymbolPattern(NamedTuple):
    """A line regex with a ``name`` group.

    kind None registers a container without emitting a symbol (Rust impl).
    where: "any", "top" (outside containers) or "member" (inside one).
    """

    regex: re.Pattern
    kind: Optional[str]
    where: str = "any"


class ImportPattern(NamedTuple):
    """A line regex with a ``path`` (or comma-separated ``paths``) group."""

    regex: re.Pattern
    import_type: str
    local: Optional[bool] = None


@dataclass
class _Container:
    name: str
    kind: str
    depth: int
    opened: bool


class SymbolExtractor(ABC):
    """Capability interface for language-specific symbol extraction."""

    @property
    @abstractmethod
    def language_id(self) -> str: ...

    @property
    @abstractmethod
    def file_extensions(self) -> list[str]: ...

    def supports(self, language_id: str) -> bool:
        return language_id == self.language_id

    @abstractmethod
    def extract(self, content: str) -> Tuple[List[Symbol], List[Import]]:
        """Extract symbol definitions and imports from source text."""
        ...


class RegexExtractor(SymbolExtractor):
    """
    Line-oriented regex extraction shared by all language families.

    Subclasses declare ``symbol_patterns`` and ``import_patterns`` and may
    override the hooks (is_exported, doc_comment, adjust, is_local).
    Container scopes are tracked by braces or by indentation.
    """

    symbol_patterns: Sequence[SymbolPattern] = ()
    import_patterns: Sequence[ImportPattern] = ()
    block_style: str = "braces"  # or "indent"
    comment_prefixes: Tuple[str, ...] = ("//", "/*", "*")
    line_comment: Optional[str] = "//"
    reserved: frozenset = frozenset()

    # -- Public ------------------------------------------------------------

    def extract(self, content: str) -> Tuple[List[Symbol], List[Import]]:
        lines = content.splitlines()
        return self.extract_symbols(lines), self.extract_imports(lines)

    def extract_imports(self, lines: List[str]) -> List[Import]:
        imports: List[Import] = []
        for idx, line in enumerate(lines):
            if self._is_comment(line.strip()):
                continue
            for pat in self.import_patterns:
                for m in pat.regex.finditer(line):
                    for path in self._paths(m):
                        local = pat.local if pat.local is not None else self.is_local(path, m)
                        imports.append(Import(
                            import_path=path,
                            import_type=pat.import_type,
                            is_local=local,
                            line_number=idx + 1,
                        ))
        return imports

    def extract_symbols(self, lines: List[str]) -> List[Symbol]:
        symbols: List[Symbol] = []
        starts: List[int] = []
        stack: List[_Container] = []
        depth = 0

        for idx, line in enumerate(lines):
            stripped = line.strip()
            if not stripped or self._is_comment(stripped):
                continue

            if self.block_style == "indent":
                indent = _indent(line)
                while stack and indent <= stack[-1].depth:
                    stack.pop()
                code = line
                opens = closes = 0
            else:
                if stack and not stack[-1].opened and not stripped.startswith("{"):
                    # Declaration without a body (its brace did not follow)
                    stack.pop()
                code = self._code(line)
                opens, closes = code.count("{"), code.count("}")

            owner = stack[-1] if stack else None
            found = self._match(line, stripped, owner)
            if found is not None:
                pattern, m = found
                name = m.group("name")
                kind = pattern.kind
                if kind is None:
                    self._push(stack, name, "impl", line, stripped, depth, opens, closes)
                else:
                    kind = self.refine_kind(kind, name, owner)
                    sym = Symbol(
                        name=name,
                        kind=kind,
                        start_line=idx + 1,
                        start_column=m.start("name"),
                        container_name=owner.name if owner else None,
                        is_exported=self.is_exported(line, name, owner.name if owner else None),
                        signature=_signature(stripped),
                        doc_comment=self.doc_comment(lines, idx),
                    )
                    self.adjust(sym, m)
                    symbols.append(sym)
                    starts.append(idx)
                    if kind in _CONTAINER_KINDS:
                        self._push(stack, name, kind, line, stripped, depth, opens, closes)

            if self.block_style != "indent":
                depth += opens - closes
                for c in stack:
                    if depth > c.depth:
                        c.opened = True
                while stack and stack[-1].opened and depth <= stack[-1].depth:
                    stack.pop()

        for sym, idx in zip(symbols, starts):
            sym.end_line = self._end_line(lines, idx)
        return symbols

    # -- Hooks -------------------------------------------------------------

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        return True

    def refine_kind(self, kind: str, name: str, owner: Optional[_Container]) -> str:
        if kind == "function" and owner is not None and owner.kind in _METHOD_OWNERS:
            return "method"
        if kind == "variable" and _UPPER_RE.match(name) and len(name) > 1:
            return "constant"
        return kind

    def adjust(self, symbol: Symbol, match: re.Match) -> None:
        """Last-chance fix-up of a symbol from its regex match."""

    def is_local(self, path: str, match: re.Match) -> bool:
        return path.startswith((".", "/"))

    def doc_comment(self, lines: List[str], idx: int) -> Optional[str]:
        """Comment lines directly above the declaration."""
        collected: List[str] = []
        j = idx - 1
        while j >= 0:
            s = lines[j].strip()
            if not s or not self._is_comment(s):
                break
            text = s.lstrip("/#*!").rstrip("*/").strip()
            if text:
                collected.append(text)
            j -= 1
        if not collected:
            return None
        return " ".join(reversed(collected))[:_MAX_DOC]

    # -- Internals ---------------------------------------------------------

    def _is_comment(self, stripped: str) -> bool:
        return stripped.startswith(self.comment_prefixes)

    def _code(self, line: str) -> str:
        """Line without string literals and trailing line comment."""
        code = _STRING_RE.sub('""', line)
        if self.line_comment and self.line_comment in code:
            code = code.split(self.line_comment, 1)[0]
        return code

    def _match(self, line: str, stripped: str, owner) -> Optional[tuple]:
        statement = _STATEMENT_RE.match(line) is not None
        for pattern in self.symbol_patterns:
            if pattern.where == "top" and owner is not None:
                continue
            if pattern.where == "member" and (
                owner is None or owner.kind not in _METHOD_OWNERS or statement
            ):
                continue
            m = pattern.regex.match(line)
            if m is None:
                continue
            if m.group("name") in self.reserved:
                continue
            return pattern, m
        return None

    def _push(self, stack, name, kind, line, stripped, depth, opens, closes) -> None:
        if self.block_style == "indent":
            stack.append(_Container(name, kind, _indent(line), True))
        elif opens > closes:
            stack.append(_Container(name, kind, depth, True))
        elif opens == 0 and not stripped.endswith(";") and kind not in ("function", "method"):
            # Type declaration with its brace on a following line
            stack.append(_Container(name, kind, depth, False))

    def _paths(self, m: re.Match) -> List[str]:
        groups = m.groupdict()
        if groups.get("paths"):
            out = []
            for part in groups["paths"].split(","):
                part = part.strip().split(" as ")[0].strip()
                if part:
                    out.append(part)
            return out
        path = (groups.get("path") or "").strip()
        return [path] if path else []

    def _end_line(self, lines: List[str], idx: int) -> int:
        if self.block_style == "indent":
            base = _indent(lines[idx])
            end = idx
            for j in range(idx + 1, min(len(lines), idx + _MAX_BODY_SCAN)):
                s = lines[j].strip()
                if not s:
                    continue
                if _indent(lines[j]) <= base and not s.startswith((")", "]")):
                    if s == "end":
                        end = j
                    break
                end = j
            return end + 1

        balance = 0
        opened = False
        for j in range(idx, min(len(lines), idx + _MAX_BODY_SCAN)):
            code = self._code(lines[j])
            if j == idx and "{" not in code and code.rstrip().endswith(";"):
                return idx + 1
            balance += code.count("{") - code.count("}")
            if "{" in code:
                opened = True
            if opened and balance <= 0:
                return j + 1
            if not opened and j > idx + 1:
                break
        return idx + 1


def _indent(line: str) -> int:
    return len(line.expandtabs(4)) - len(line.expandtabs(4).lstrip())


def _signature(stripped: str) -> Optional[str]:
    """First line of the declaration, without the opening brace or colon."""
    sig = stripped
    if sig.endswith(("{", ":")):
        sig = sig[:-1].rstrip()
    return sig[:_MAX_SIGNATURE] or None
