"""Python extraction (indentation-scoped)."""

from __future__ import annotations

import re
from typing import List, Optional

from .base import ImportPattern, RegexExtractor, SymbolPattern
from codemem.types import Symbol

_TRIPLE_RE = re.compile(r'[rRbBuUfF]*("""|\'\'\')')

_SYMBOLS = [
    SymbolPattern(re.compile(r"^\s*(?:async\s+)?def\s+(?P<name>[A-Za-z_]\w*)"), "function"),
    SymbolPattern(re.compile(r"^\s*class\s+(?P<name>[A-Za-z_]\w*)"), "class"),
    SymbolPattern(re.compile(
        r"^(?P<name>[A-Za-z_]\w*)\s*(?::\s*[^=]+)?=(?!=)"), "variable", "top"),
]

_IMPORTS = [
    ImportPattern(re.compile(r"^\s*import\s+(?P<paths>[\w.]+(?:\s+as\s+\w+)?(?:\s*,\s*[\w.]+(?:\s+as\s+\w+)?)*)"),
                  "import"),
    ImportPattern(re.compile(r"^\s*from\s+(?P<path>\.+[\w.]*|[\w.]+)\s+import\b"), "import"),
    ImportPattern(re.compile(
        r"\b(?:importlib\.import_module|__import__)\(\s*['\"](?P<path>[\w.]+)['\"]"), "dynamic"),
]


class PythonExtractor(RegexExtractor):
    symbol_patterns = _SYMBOLS
    import_patterns = _IMPORTS
    block_style = "indent"
    comment_prefixes = ("#",)
    line_comment = "#"

    @property
    def language_id(self) -> str:
        return "python"

    @property
    def file_extensions(self) -> list[str]:
        return [".py", ".pyi"]

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        return not name.startswith("_")

    def is_local(self, path: str, match: re.Match) -> bool:
        return path.startswith(".")

    def extract_symbols(self, lines: List[str]) -> List[Symbol]:
        symbols = super().extract_symbols(_mask_strings(lines))
        for sym in symbols:
            if sym.kind in ("function", "method", "class"):
                sym.doc_comment = _docstring(lines, sym.start_line - 1) or sym.doc_comment
        return symbols

    def extract_imports(self, lines: List[str]):
        return super().extract_imports(_mask_strings(lines))


def _mask_strings(lines: List[str]) -> List[str]:
    """Blank out the body of triple-quoted strings, keeping line numbers."""
    out: List[str] = []
    quote: Optional[str] = None
    for line in lines:
        if quote is not None:
            out.append("")
            if quote in line:
                quote = None
            continue
        out.append(line)
        # An odd count of openers leaves a string running past this line
        for m in _TRIPLE_RE.finditer(line):
            q = m.group(1)
            if line.count(q) % 2 == 1:
                quote = q
            break
    return out


def _docstring(lines: List[str], idx: int) -> Optional[str]:
    """First line of the docstring that opens the body at ``idx``."""
    j = idx
    while j < len(lines) and not lines[j].split("#", 1)[0].rstrip().endswith(":"):
        j += 1
        if j - idx > 10:
            return None
    for k in range(j + 1, min(len(lines), j + 3)):
        s = lines[k].strip()
        if not s:
            continue
        m = _TRIPLE_RE.match(s)
        if not m:
            return None
        text = s[m.end():]
        text = text.split(m.group(1), 1)[0].strip()
        if not text and k + 1 < len(lines):
            text = lines[k + 1].strip().split(m.group(1), 1)[0].strip()
        return text or None
    return None
