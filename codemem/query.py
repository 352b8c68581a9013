"""
Query helpers for FTS5 and LIKE searches.

  1. normalize_query() — strip stop words, keep code identifiers.
  2. match_expression() — quote terms into a safe FTS5 MATCH string.
  3. like_pattern() — escape a substring for LIKE ... ESCAPE '\\'.

User text never reaches MATCH unquoted, so punctuation in paths such as
``api/users.ts`` cannot produce FTS5 syntax errors.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import re
from typing import List, Literal

# ── Stop words ──────────────────────────────────────────────────────────

EN_STOP_WORDS = frozenset({
    "the", "a", "an", "in", "on", "at", "to", "for", "of", "with",
    "by", "from", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "can", "shall",
    "it", "its", "this", "that", "these", "those",
    "i", "me", "my", "we", "our", "you", "your", "he", "him", "his",
    "she", "her", "they", "them", "their",
    "not", "no", "nor", "so", "but", "or", "and", "if", "then",
    "about", "up", "out", "into", "over", "after", "before",
})

# Question words, stripped from FTS queries
QUESTION_WORDS = frozenset({
    "how", "what", "where", "when", "why", "which", "who", "whom",
})

_ALL_STOP_WORDS = EN_STOP_WORDS | QUESTION_WORDS

# ── Identifier detection ────────────────────────────────────────────────

_CAMEL_RE = re.compile(r"[a-z][A-Z]")           # camelCase or PascalCase
_SNAKE_RE = re.compile(r"[a-zA-Z]_[a-zA-Z]")    # snake_case
_UPPER_RE = re.compile(r"^[A-Z][A-Z0-9_]{2,}$") # UPPER_CASE constant
_WORD_RE = re.compile(r"\w")


def is_identifier(word: str) -> bool:
    """Return True if word looks like a code identifier."""
    if _CAMEL_RE.search(word):
        return True
    if _SNAKE_RE.search(word):
        return True
    if _UPPER_RE.match(word):
        return True
    # Dotted path (e.g., os.path.join)
    if "." in word and not word.endswith("."):
        return True
    return False


# ── Query normalization ─────────────────────────────────────────────────

def normalize_query(text: str) -> str:
    """Strip stop words from an FTS query for better recall.

    Preserves identifiers (camelCase, snake_case, UPPER_CASE, dotted paths).
    Never returns an empty string — falls back to the original text.

    Examples:
        >>> normalize_query("how does fetchUser work")
        'fetchUser work'
        >>> normalize_query("the")
        'the'
    """
    words = text.strip().split()
    if not words:
        return text

    kept: list[str] = []
    for w in words:
        if is_identifier(w):
            kept.append(w)
            continue
        if w.lower() in _ALL_STOP_WORDS:
            continue
        kept.append(w)

    return " ".join(kept) if kept else text


def fts_terms(text: str) -> List[str]:
    """Normalized query terms that contain at least one word character."""
    return [t for t in normalize_query(text).split() if _WORD_RE.search(t)]


# ── MATCH / LIKE builders ───────────────────────────────────────────────

def match_expression(
    terms: List[str],
    operator: Literal["AND", "OR"] = "AND",
    prefix: bool = False,
) -> str:
    """Join quoted terms into an FTS5 MATCH expression.

    Each term becomes a phrase (``"api/users.ts"`` matches the token
    sequence api, users, ts).  With ``prefix`` every phrase gets ``*``.
    """
    star = "*" if prefix else ""
    quoted = ['"' + t.replace('"', '""') + '"' + star for t in terms]
    return f" {operator} ".join(quoted)


def like_pattern(text: str) -> str:
    """Substring pattern for ``LIKE ? ESCAPE '\\'``."""
    escaped = (
        text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )
    return f"%{escaped}%"
