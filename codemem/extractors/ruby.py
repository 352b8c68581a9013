"""Ruby extraction (indentation-scoped)."""

from __future__ import annotations

import re
from typing import Optional

from .base import ImportPattern, RegexExtractor, SymbolPattern

_SYMBOLS = [
    SymbolPattern(re.compile(r"^\s*def\s+(?:self\.)?(?P<name>[A-Za-z_]\w*[?!=]?)"), "function"),
    SymbolPattern(re.compile(r"^\s*class\s+(?:[\w:]+::)?(?P<name>[A-Z]\w*)"), "class"),
    SymbolPattern(re.compile(r"^\s*module\s+(?:[\w:]+::)?(?P<name>[A-Z]\w*)"), "module"),
    SymbolPattern(re.compile(r"^\s*(?P<name>[A-Z][A-Z0-9_]*)\s*=(?!=)"), "constant"),
]

_IMPORTS = [
    ImportPattern(re.compile(r"^\s*require_relative\s*\(?\s*['\"](?P<path>[^'\"]+)['\"]"), "require", True),
    ImportPattern(re.compile(r"^\s*(?:require|load)\s*\(?\s*['\"](?P<path>[^'\"]+)['\"]"), "require"),
]


class RubyExtractor(RegexExtractor):
    symbol_patterns = _SYMBOLS
    import_patterns = _IMPORTS
    block_style = "indent"
    comment_prefixes = ("#",)
    line_comment = "#"

    @property
    def language_id(self) -> str:
        return "ruby"

    @property
    def file_extensions(self) -> list[str]:
        return [".rb", ".rake"]

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        return not name.startswith("_")
