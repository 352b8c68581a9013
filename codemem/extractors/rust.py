"""Rust extraction."""

from __future__ import annotations

import re
from typing import Optional

from .base import ImportPattern, RegexExtractor, SymbolPattern

_ID = r"[A-Za-z_]\w*"
_VIS = r"(?:pub(?:\s*\([^)]*\))?\s+)?"
_QUAL = r"(?:(?:const|async|unsafe|extern(?:\s+\"[^\"]*\")?)\s+)*"

_SYMBOLS = [
    SymbolPattern(re.compile(rf"^\s*{_VIS}{_QUAL}fn\s+(?P<name>{_ID})"), "function"),
    SymbolPattern(re.compile(rf"^\s*{_VIS}struct\s+(?P<name>{_ID})"), "struct"),
    SymbolPattern(re.compile(rf"^\s*{_VIS}enum\s+(?P<name>{_ID})"), "enum"),
    SymbolPattern(re.compile(rf"^\s*{_VIS}(?:unsafe\s+)?trait\s+(?P<name>{_ID})"), "trait"),
    SymbolPattern(re.compile(rf"^\s*{_VIS}type\s+(?P<name>{_ID})"), "type"),
    SymbolPattern(re.compile(rf"^\s*{_VIS}(?:const|static(?:\s+mut)?)\s+(?P<name>{_ID})\s*:"), "constant"),
    SymbolPattern(re.compile(rf"^\s*{_VIS}mod\s+(?P<name>{_ID})"), "module"),
    # impl blocks scope methods without being symbols themselves
    SymbolPattern(re.compile(
        rf"^\s*(?:unsafe\s+)?impl\s*(?:<[^>]*>\s*)?(?:[\w:]+(?:<[^>]*>)?\s+for\s+)?(?P<name>{_ID})"),
        None),
]

_IMPORTS = [
    ImportPattern(re.compile(rf"^\s*{_VIS}use\s+(?P<path>[\w:]+)"), "use"),
    ImportPattern(re.compile(rf"^\s*extern\s+crate\s+(?P<path>{_ID})"), "use", False),
]


class RustExtractor(RegexExtractor):
    symbol_patterns = _SYMBOLS
    import_patterns = _IMPORTS

    @property
    def language_id(self) -> str:
        return "rust"

    @property
    def file_extensions(self) -> list[str]:
        return [".rs"]

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        return line.lstrip().startswith("pub")

    def is_local(self, path: str, match: re.Match) -> bool:
        return path.startswith(("crate::", "self::", "super::")) or path in ("crate", "self", "super")

    def _paths(self, m: re.Match):
        # use std::collections::{HashMap, HashSet} keeps the common prefix
        return [p.rstrip(":") for p in super()._paths(m) if p.rstrip(":")]
