"""C and C++ extraction."""

from __future__ import annotations

import re
from typing import Optional

from .base import ImportPattern, RegexExtractor, SymbolPattern
from codemem.types import Symbol

_ID = r"[A-Za-z_]\w*"
_QUALS = (
    r"(?:(?:static|inline|extern|const|constexpr|unsigned|signed|struct|enum|"
    r"volatile|long|short|virtual|explicit|friend)\s+)*"
)
_RET = rf"{_ID}(?:::{_ID})*(?:\s*<[^;()]*>)?[\s\*&]+"

_C_SYMBOLS = [
    SymbolPattern(re.compile(rf"^\s*#\s*define\s+(?P<name>{_ID})"), "constant"),
    SymbolPattern(re.compile(
        rf"^\s*(?:typedef\s+)?(?:struct|union)\s+(?P<name>{_ID})\s*(?:\{{|$)"), "struct"),
    SymbolPattern(re.compile(
        rf"^\s*(?:typedef\s+)?enum\s+(?:class\s+|struct\s+)?(?P<name>{_ID})\s*(?::\s*[\w:]+\s*)?(?:\{{|$)"),
        "enum"),
    SymbolPattern(re.compile(
        rf"^\s*typedef\s+(?!struct\b|enum\b|union\b)[^;]*?\b(?P<name>{_ID})\s*(?:\[[^\]]*\])?;"), "type"),
    SymbolPattern(re.compile(
        rf"^{_QUALS}{_RET}(?:(?P<owner>{_ID})::)?(?P<name>~?{_ID})\s*\([^;]*$"), "function"),
]

_CPP_SYMBOLS = [
    SymbolPattern(re.compile(r"^\s*(?:inline\s+)?namespace\s+(?P<name>[\w:]+)\s*(?:\{|$)"), "namespace"),
    SymbolPattern(re.compile(
        rf"^\s*(?:template\s*<[^>]*>\s*)?class\s+(?:{_ID}\s+)?(?P<name>{_ID})\s*(?:final\s*)?(?::[^;]*)?(?:\{{|$)"),
        "class"),
    SymbolPattern(re.compile(
        rf"^\s*(?:template\s*<[^>]*>\s*)?struct\s+(?P<name>{_ID})\s*(?:final\s*)?(?::[^;]*)?(?:\{{|$)"),
        "struct"),
    # out-of-line constructors and destructors
    SymbolPattern(re.compile(rf"^(?P<owner>{_ID})::(?P<name>~?{_ID})\s*\([^;]*$"), "function"),
    SymbolPattern(re.compile(
        rf"^\s+{_QUALS}(?:{_RET})?(?P<name>~?{_ID})\s*\([^)]*\)?\s*(?:const\s*)?(?:override\s*)?(?:[{{;=]|$)"),
        "function", "member"),
]

_IMPORTS = [
    ImportPattern(re.compile(r'^\s*#\s*include\s*(?P<q>[<"])(?P<path>[^>"]+)[>"]'), "include"),
]

_RESERVED = frozenset({
    "if", "while", "for", "switch", "return", "sizeof", "do", "else", "case",
    "int", "char", "void", "long", "short", "float", "double", "bool", "auto",
    "unsigned", "signed", "const", "static", "operator", "decltype", "alignof",
    "static_assert", "defined",
})


class CExtractor(RegexExtractor):
    symbol_patterns = _C_SYMBOLS
    import_patterns = _IMPORTS
    reserved = _RESERVED

    @property
    def language_id(self) -> str:
        return "c"

    @property
    def file_extensions(self) -> list[str]:
        return [".c", ".h"]

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        return not line.lstrip().startswith("static")

    def is_local(self, path: str, match: re.Match) -> bool:
        return match.group("q") == '"'

    def _is_comment(self, stripped: str) -> bool:
        # Preprocessor lines are code, block comment continuations are not
        return stripped.startswith(("//", "/*", "* ", "*/")) or stripped == "*"

    def adjust(self, symbol: Symbol, match: re.Match) -> None:
        owner = match.groupdict().get("owner")
        if owner:
            symbol.kind = "method"
            symbol.container_name = owner


class CppExtractor(CExtractor):
    symbol_patterns = _CPP_SYMBOLS + _C_SYMBOLS

    @property
    def language_id(self) -> str:
        return "cpp"

    @property
    def file_extensions(self) -> list[str]:
        return [".cpp", ".cc", ".cxx", ".hpp", ".hh", ".hxx"]
