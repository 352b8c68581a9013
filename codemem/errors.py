"""
codemem exceptions.

Validation errors are raised before any side effect. Not-found errors
carry no side effect either. Parse errors never leave CodeIndex: they are
turned into an "unparsable" result so a batch keeps going.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""


class CodememError(Exception):
    """Base class for codemem errors."""


class InvalidInputError(CodememError, ValueError):
    """Empty content, unknown scope, missing or conflicting arguments."""


class NotFoundError(CodememError, LookupError):
    """Rule id or indexed file path does not exist in the scope."""


class ParseError(CodememError):
    """A source file could not be read or its extractor failed."""
