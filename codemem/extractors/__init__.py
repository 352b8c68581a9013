"""Language-specific symbol and import extraction."""

from .base import ImportPattern, RegexExtractor, SymbolExtractor, SymbolPattern
from .registry import ExtractorRegistry, default_registry

__all__ = [
    "ExtractorRegistry",
    "ImportPattern",
    "RegexExtractor",
    "SymbolExtractor",
    "SymbolPattern",
    "default_registry",
]
