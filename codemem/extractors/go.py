"""Go extraction."""

from __future__ import annotations

import re
from typing import List, Optional

from .base import ImportPattern, RegexExtractor, SymbolPattern
from codemem.types import Import, Symbol

_ID = r"[A-Za-z_]\w*"

_SYMBOLS = [
    SymbolPattern(re.compile(
        rf"^func\s+(?:\(\s*(?:{_ID}\s+)?\*?(?P<recv>{_ID})(?:\[[^\]]*\])?\s*\)\s*)?(?P<name>{_ID})"),
        "function"),
    SymbolPattern(re.compile(rf"^\s*type\s+(?P<name>{_ID})(?:\[[^\]]*\])?\s+struct\b"), "struct"),
    SymbolPattern(re.compile(rf"^\s*type\s+(?P<name>{_ID})(?:\[[^\]]*\])?\s+interface\b"), "interface"),
    SymbolPattern(re.compile(rf"^\s*type\s+(?P<name>{_ID})\b"), "type"),
    SymbolPattern(re.compile(rf"^(?:var|const)\s+(?P<name>{_ID})\b"), "variable", "top"),
]

_SINGLE_IMPORT_RE = re.compile(r'^\s*import\s+(?:[\w.]+\s+)?"(?P<path>[^"]+)"')
_BLOCK_OPEN_RE = re.compile(r"^\s*import\s*\(\s*$")
_BLOCK_ITEM_RE = re.compile(r'^\s*(?:[\w.]+\s+)?"(?P<path>[^"]+)"')


class GoExtractor(RegexExtractor):
    symbol_patterns = _SYMBOLS
    import_patterns = ()

    @property
    def language_id(self) -> str:
        return "go"

    @property
    def file_extensions(self) -> list[str]:
        return [".go"]

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        return name[:1].isupper()

    def adjust(self, symbol: Symbol, match: re.Match) -> None:
        recv = match.groupdict().get("recv")
        if recv:
            symbol.kind = "method"
            symbol.container_name = recv
        if symbol.kind == "variable" and match.string.lstrip().startswith("const"):
            symbol.kind = "constant"

    def is_local(self, path: str, match: re.Match) -> bool:
        return path.startswith(".")

    def extract_imports(self, lines: List[str]) -> List[Import]:
        imports: List[Import] = []
        in_block = False
        for idx, line in enumerate(lines):
            if in_block:
                if line.strip().startswith(")"):
                    in_block = False
                    continue
                m = _BLOCK_ITEM_RE.match(line)
            elif _BLOCK_OPEN_RE.match(line):
                in_block = True
                continue
            else:
                m = _SINGLE_IMPORT_RE.match(line)
            if m:
                path = m.group("path")
                imports.append(Import(
                    import_path=path,
                    import_type="import",
                    is_local=self.is_local(path, m),
                    line_number=idx + 1,
                ))
        return imports
