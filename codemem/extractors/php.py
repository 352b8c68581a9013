"""PHP extraction."""

from __future__ import annotations

import re
from typing import Optional

from .base import ImportPattern, RegexExtractor, SymbolPattern

_ID = r"[A-Za-z_]\w*"
_MODS = r"(?:(?:public|private|protected|static|abstract|final|readonly)\s+)*"

_SYMBOLS = [
    SymbolPattern(re.compile(r"^\s*namespace\s+(?P<name>[\w\\]+)"), "namespace"),
    SymbolPattern(re.compile(rf"^\s*{_MODS}class\s+(?P<name>{_ID})"), "class"),
    SymbolPattern(re.compile(rf"^\s*interface\s+(?P<name>{_ID})"), "interface"),
    SymbolPattern(re.compile(rf"^\s*trait\s+(?P<name>{_ID})"), "trait"),
    SymbolPattern(re.compile(rf"^\s*enum\s+(?P<name>{_ID})"), "enum"),
    SymbolPattern(re.compile(rf"^\s*{_MODS}function\s+&?(?P<name>{_ID})"), "function"),
    SymbolPattern(re.compile(rf"^\s*{_MODS}const\s+(?:\w+\s+)?(?P<name>{_ID})\s*="), "constant"),
    SymbolPattern(re.compile(rf"^\s*define\s*\(\s*['\"](?P<name>{_ID})['\"]"), "constant"),
    SymbolPattern(re.compile(
        rf"^\s*(?:(?:public|private|protected|static|readonly|var)\s+)+(?:\??[\w\\|]+\s+)?\$(?P<name>{_ID})"),
        "property", "member"),
]

_IMPORTS = [
    ImportPattern(re.compile(
        r"^\s*use\s+(?:function\s+|const\s+)?(?P<paths>[\w\\]+(?:\s+as\s+\w+)?(?:\s*,\s*[\w\\]+(?:\s+as\s+\w+)?)*)\s*;"),
        "use", False),
    ImportPattern(re.compile(
        r"\b(?:require|include)(?:_once)?\s*\(?\s*['\"](?P<path>[^'\"]+)['\"]"), "require"),
]


class PhpExtractor(RegexExtractor):
    symbol_patterns = _SYMBOLS
    import_patterns = _IMPORTS
    comment_prefixes = ("//", "/*", "*", "#")

    @property
    def language_id(self) -> str:
        return "php"

    @property
    def file_extensions(self) -> list[str]:
        return [".php"]

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        head = line.split(name, 1)[0]
        return re.search(r"\b(?:private|protected)\b", head) is None
