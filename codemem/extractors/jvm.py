"""Java, Kotlin and C# extraction."""

from __future__ import annotations

import re
from typing import Optional

from .base import ImportPattern, RegexExtractor, SymbolPattern

_ID = r"[A-Za-z_$][\w$]*"
_TYPE = r"(?:[\w.$]+(?:<[^()]*?>)?(?:\[\])*\??\s+)"
_RESERVED = frozenset({
    "if", "for", "while", "switch", "catch", "synchronized", "return", "new",
    "throw", "else", "try", "do", "using", "lock", "foreach", "when", "super", "this",
})

# -- Java -------------------------------------------------------------------

_JAVA_MODS = (
    r"(?:(?:public|private|protected|static|final|abstract|sealed|non-sealed|"
    r"strictfp|synchronized|native|default|transient|volatile)\s+)*"
)

_JAVA_SYMBOLS = [
    SymbolPattern(re.compile(rf"^\s*{_JAVA_MODS}class\s+(?P<name>{_ID})"), "class"),
    SymbolPattern(re.compile(rf"^\s*{_JAVA_MODS}record\s+(?P<name>{_ID})"), "class"),
    SymbolPattern(re.compile(rf"^\s*{_JAVA_MODS}@?interface\s+(?P<name>{_ID})"), "interface"),
    SymbolPattern(re.compile(rf"^\s*{_JAVA_MODS}enum\s+(?P<name>{_ID})"), "enum"),
    SymbolPattern(re.compile(
        rf"^\s*{_JAVA_MODS}static\s+{_JAVA_MODS}final\s+{_TYPE}(?P<name>{_ID})\s*[=;]"),
        "constant", "member"),
    SymbolPattern(re.compile(
        rf"^\s*{_JAVA_MODS}(?:<[^>]+>\s+)?{_TYPE}?(?P<name>{_ID})\s*\([^;]*$"),
        "function", "member"),
]

_JAVA_IMPORTS = [
    ImportPattern(re.compile(r"^\s*import\s+(?:static\s+)?(?P<path>[\w.]+(?:\.\*)?)\s*;"), "import", False),
]


class JavaExtractor(RegexExtractor):
    symbol_patterns = _JAVA_SYMBOLS
    import_patterns = _JAVA_IMPORTS
    reserved = _RESERVED

    @property
    def language_id(self) -> str:
        return "java"

    @property
    def file_extensions(self) -> list[str]:
        return [".java"]

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        return re.search(r"\bpublic\b", line.split(name, 1)[0]) is not None


# -- Kotlin -----------------------------------------------------------------

_KT_MODS = (
    r"(?:(?:public|private|protected|internal|override|open|abstract|final|"
    r"suspend|inline|operator|infix|tailrec|external|data|sealed|inner|value|"
    r"annotation|lateinit|expect|actual)\s+)*"
)

_KT_SYMBOLS = [
    SymbolPattern(re.compile(rf"^\s*{_KT_MODS}enum\s+class\s+(?P<name>{_ID})"), "enum"),
    SymbolPattern(re.compile(rf"^\s*{_KT_MODS}(?:fun\s+)?interface\s+(?P<name>{_ID})"), "interface"),
    SymbolPattern(re.compile(rf"^\s*{_KT_MODS}(?:class|object)\s+(?P<name>{_ID})"), "class"),
    SymbolPattern(re.compile(
        rf"^\s*{_KT_MODS}fun\s+(?:<[^>]+>\s*)?(?:[\w.<>]+\.)?(?P<name>{_ID})\s*\("), "function"),
    SymbolPattern(re.compile(rf"^\s*{_KT_MODS}const\s+val\s+(?P<name>{_ID})"), "constant"),
    SymbolPattern(re.compile(rf"^\s*{_KT_MODS}typealias\s+(?P<name>{_ID})"), "type"),
    SymbolPattern(re.compile(rf"^{_KT_MODS}(?:val|var)\s+(?P<name>{_ID})"), "variable", "top"),
    SymbolPattern(re.compile(rf"^\s*{_KT_MODS}(?:val|var)\s+(?P<name>{_ID})"), "property", "member"),
]

_KT_IMPORTS = [
    ImportPattern(re.compile(r"^\s*import\s+(?P<path>[\w.]+(?:\.\*)?)"), "import", False),
]


class KotlinExtractor(RegexExtractor):
    symbol_patterns = _KT_SYMBOLS
    import_patterns = _KT_IMPORTS
    reserved = _RESERVED

    @property
    def language_id(self) -> str:
        return "kotlin"

    @property
    def file_extensions(self) -> list[str]:
        return [".kt", ".kts"]

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        head = line.split(name, 1)[0]
        return re.search(r"\b(?:private|internal|protected)\b", head) is None


# -- C# ---------------------------------------------------------------------

_CS_MODS = (
    r"(?:(?:public|private|protected|internal|static|sealed|abstract|partial|"
    r"readonly|virtual|override|async|extern|unsafe|new|ref|required)\s+)*"
)

_CS_SYMBOLS = [
    SymbolPattern(re.compile(r"^\s*namespace\s+(?P<name>[\w.]+)"), "namespace"),
    SymbolPattern(re.compile(rf"^\s*{_CS_MODS}(?:class|record)\s+(?P<name>{_ID})"), "class"),
    SymbolPattern(re.compile(rf"^\s*{_CS_MODS}(?:record\s+)?struct\s+(?P<name>{_ID})"), "struct"),
    SymbolPattern(re.compile(rf"^\s*{_CS_MODS}interface\s+(?P<name>{_ID})"), "interface"),
    SymbolPattern(re.compile(rf"^\s*{_CS_MODS}enum\s+(?P<name>{_ID})"), "enum"),
    SymbolPattern(re.compile(
        rf"^\s*{_CS_MODS}const\s+{_TYPE}(?P<name>{_ID})\s*="), "constant", "member"),
    SymbolPattern(re.compile(
        rf"^\s*{_CS_MODS}{_TYPE}(?P<name>{_ID})\s*\{{\s*(?:get|set|init)\b"), "property", "member"),
    SymbolPattern(re.compile(
        rf"^\s*{_CS_MODS}(?:{_TYPE})?(?P<name>{_ID})\s*(?:<[^>]*>)?\s*\([^;]*$"),
        "function", "member"),
]

_CS_IMPORTS = [
    ImportPattern(re.compile(
        r"^\s*(?:global\s+)?using\s+(?:static\s+)?(?:\w+\s*=\s*)?(?P<path>[\w.]+)\s*;"), "use", False),
]


class CSharpExtractor(RegexExtractor):
    symbol_patterns = _CS_SYMBOLS
    import_patterns = _CS_IMPORTS
    reserved = _RESERVED

    @property
    def language_id(self) -> str:
        return "csharp"

    @property
    def file_extensions(self) -> list[str]:
        return [".cs"]

    def is_exported(self, line: str, name: str, container: Optional[str]) -> bool:
        return re.search(r"\bpublic\b", line.split(name, 1)[0]) is not None
