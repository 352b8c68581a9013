"""Extension → language lookup and extractor registry."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, Iterable, List, Optional

from .base import SymbolExtractor


class ExtractorRegistry:
    """Maps file extensions to SymbolExtractor instances."""

    def __init__(self, extractors: Iterable[SymbolExtractor] = ()):
        self._by_ext: Dict[str, SymbolExtractor] = {}
        for extractor in extractors:
            self.register(extractor)

    def register(self, extractor: SymbolExtractor) -> None:
        """Add an extractor; later registrations win for shared extensions."""
        for ext in extractor.file_extensions:
            self._by_ext[ext.lower()] = extractor

    def for_path(self, path: str) -> Optional[SymbolExtractor]:
        _, ext = os.path.splitext(path)
        return self._by_ext.get(ext.lower())

    def language_for_path(self, path: str) -> Optional[str]:
        extractor = self.for_path(path)
        return extractor.language_id if extractor else None

    @property
    def extensions(self) -> List[str]:
        return sorted(self._by_ext)


def _builtin_extractors() -> List[SymbolExtractor]:
    from .c_family import CExtractor, CppExtractor
    from .go import GoExtractor
    from .javascript import JavaScriptExtractor, TypeScriptExtractor
    from .jvm import CSharpExtractor, JavaExtractor, KotlinExtractor
    from .php import PhpExtractor
    from .python import PythonExtractor
    from .ruby import RubyExtractor
    from .rust import RustExtractor

    return [
        JavaScriptExtractor(), TypeScriptExtractor(), PythonExtractor(),
        RustExtractor(), GoExtractor(), JavaExtractor(), KotlinExtractor(),
        CSharpExtractor(), CExtractor(), CppExtractor(), RubyExtractor(),
        PhpExtractor(),
    ]


@lru_cache(maxsize=1)
def default_registry() -> ExtractorRegistry:
    """Registry with every built-in language family."""
    return ExtractorRegistry(_builtin_extractors())
