"""JavaScript and TypeScript extraction."""

from __future__ import annotations

import re
from typing import List, Optional

from .base import ImportPattern, RegexExtractor, SymbolPattern
from codemem.types import Symbol

_ID = r"[A-Za-z_$][\w$]*"
_EXPORT = r"(?:export\s+)?(?:default\s+)?(?:declare\s+)?"

_JS_SYMBOLS = [
    SymbolPattern(re.compile(
        rf"^\s*{_EXPORT}(?:async\s+)?function\s*\*?\s*(?P<name>{_ID})"), "function"),
    SymbolPattern(re.compile(
        rf"^\s*{_EXPORT}(?:abstract\s+)?class\s+(?P<name>{_ID})"), "class"),
    SymbolPattern(re.compile(
        rf"^\s*{_EXPORT}(?:const|let|var)\s+(?P<name>{_ID})\s*(?::[^=]+)?=\s*"
        rf"(?:async\s+)?(?:function\b|\([^)]*\)\s*(?::[^=]+)?=>|{_ID}\s*=>)"),
        "function", "top"),
    SymbolPattern(re.compile(
        rf"^\s*{_EXPORT}(?:const|let|var)\s+(?P<name>{_ID})\s*[:=]"), "variable", "top"),
    SymbolPattern(re.compile(
        r"^\s*(?:(?:public|private|protected|static|async|readonly|override|abstract|get|set)\s+)*"
        rf"(?P<name>{_ID})\s*(?:<[^>]*>)?\s*\([^)]*\)\s*(?::\s*[^{{]+)?\{{"),
        "function", "member"),
]

_TS_SYMBOLS = [
    SymbolPattern(re.compile(
        rf"^\s*{_EXPORT}interface\s+(?P<name>{_ID})"), "interface"),
    SymbolPattern(re.compile(
        rf"^\s*{_EXPORT}type\s+(?P<name>{_ID})\s*(?:<[^>]*>)?\s*="), "type"),
    SymbolPattern(re.compile(
        rf"^\s*{_EXPORT}(?:const\s+)?enum\s+(?P<name>{_ID})"), "enum"),
    SymbolPattern(re.compile(
        rf"^\s*{_EXPORT}(?:namespace|module)\s+(?P<name>{_ID}(?:\.{_ID})*)"), "namespace"),
]

_IMPORTS = [
    ImportPattern(re.compile(
        r"^\s*import\s+(?:type\s+)?(?:[\w$*{}\s,]+\s+from\s+)?['\"](?P<path>[^'\"]+)['\"]"),
        "import"),
    ImportPattern(re.compile(
        r"^\s*export\s+(?:type\s+)?(?:\*(?:\s+as\s+\w+)?|\{[^}]*\})\s+from\s+['\"](?P<path>[^'\"]+)['\"]"),
        "import"),
    # closing line of a multi-line import { ... } from '...'
    ImportPattern(re.compile(
        r"^\s*\}\s*from\s+['\"](?P<path>[^'\"]+)['\"]"), "import"),
    ImportPattern(re.compile(
        r"\brequire\s*\(\s*['\"](?P<path>[^'\"]+)['\"]\s*\)"), "require"),
    ImportPattern(re.compile(
        r"\bimport\s*\(\s*['\"](?P<path>[^'\"]+)['\"]\s*\)"), "dynamic"),
]

_EXPORT_LIST_RE = re.compile(r"^\s*export\s*\{(?P<names>[^}]*)\}\s*;?\s*$")
_MODULE_EXPORTS_RE = re.compile(rf"^\s*(?:module\.)?exports\.(?P<name>{_ID})\s*=")

_RESERVED = frozenset({
    "if", "for", "while", "switch", "catch", "function", "return", "constructor",
    "super", "typeof", "with",
})


class JavaScriptExtractor(RegexExtractor):
    symbol_patterns = _JS_SYMBOLS
    import_patterns = _IMPORTS
    reserved = _RESERVED

    @property
    def language_id(self) -> str:
        return "javascript"

    @property
    def file_extensions(self) -> list[str]:
        return [".js", ".jsx", ".mjs", ".cjs"]

    def supports(self, language_id: str) -> bool:
        return language_id in ("javascript", "javascriptreact")

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        return line.lstrip().startswith("export")

    def extract_symbols(self, lines: List[str]) -> List[Symbol]:
        symbols = super().extract_symbols(lines)
        # export { a, b as c } and exports.x = ... mark earlier declarations
        exported = set()
        for line in lines:
            m = _EXPORT_LIST_RE.match(line)
            if m:
                for part in m.group("names").split(","):
                    name = part.strip().split(" as ")[0].strip()
                    if name:
                        exported.add(name)
            m = _MODULE_EXPORTS_RE.match(line)
            if m:
                exported.add(m.group("name"))
        for sym in symbols:
            if sym.container_name is None and sym.name in exported:
                sym.is_exported = True
        return symbols


class TypeScriptExtractor(JavaScriptExtractor):
    symbol_patterns = _TS_SYMBOLS + _JS_SYMBOLS

    @property
    def language_id(self) -> str:
        return "typescript"

    @property
    def file_extensions(self) -> list[str]:
        return [".ts", ".tsx", ".mts", ".cts"]

    def supports(self, language_id: str) -> bool:
        return language_id in ("typescript", "typescriptreact")
