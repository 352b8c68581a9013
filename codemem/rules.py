"""
Rule Store — prioritized coding rules per scope

Rules default to the global scope.  retrieve() returns enabled rules
only, highest priority first, oldest first among equal priorities;
disabled rules stay stored and show up in list(include_disabled=True).

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, List, Optional

from codemem.errors import InvalidInputError, NotFoundError
from codemem.scopes import ScopeDatabaseManager, resolve_scopes
from codemem.types import Rule, _now_epoch

logger = logging.getLogger(__name__)

_UPDATABLE = ("title", "content", "category", "priority", "enabled")


def _sort_key(rule: Rule):
    return (-rule.priority, rule.created_at)


class RuleStore:
    """CRUD over the rules table of each scope."""

    def __init__(self, manager: ScopeDatabaseManager):
        self.manager = manager

    def store(
        self,
        title: str,
        content: str,
        *,
        scope: str = "global",
        category: Optional[str] = None,
        priority: Optional[int] = None,
        enabled: bool = True,
    ) -> Rule:
        (scope,) = resolve_scopes(scope, allow_all=False)
        title = (title or "").strip()
        content = (content or "").strip()
        if not title or not content:
            raise InvalidInputError("rule title and content must not be empty")
        rule = Rule(
            title=title,
            content=content,
            category=(category or "general").strip() or "general",
            priority=_as_priority(priority if priority is not None else 5),
            enabled=bool(enabled),
            scope=scope,
        )
        handle = self.manager.open(scope)
        with handle.transaction() as conn:
            conn.execute(
                "INSERT INTO rules (id, title, content, category, priority, enabled, "
                "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (rule.id, rule.title, rule.content, rule.category, rule.priority,
                 int(rule.enabled), rule.created_at, rule.updated_at),
            )
        logger.debug("[%s] stored rule %s (priority=%d)", scope, rule.id, rule.priority)
        return rule

    def get(self, rule_id: str, *, scope: str = "global") -> Rule:
        (scope,) = resolve_scopes(scope, allow_all=False)
        row = self.manager.open(scope).conn.execute(
            "SELECT * FROM rules WHERE id=?", (rule_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Rule not found: {rule_id} (scope={scope})")
        return _row_to_rule(row, scope)

    def update(self, rule_id: str, *, scope: str = "global", **fields: Any) -> Rule:
        """Replace only the supplied fields; None values are ignored.

        Raises:
            InvalidInputError: unknown field, or blank title/content.
            NotFoundError: no rule with that id in the scope.
        """
        (scope,) = resolve_scopes(scope, allow_all=False)
        unknown = set(fields) - set(_UPDATABLE)
        if unknown:
            raise InvalidInputError(f"Unknown rule field(s): {', '.join(sorted(unknown))}")
        patch = {k: v for k, v in fields.items() if v is not None}
        for key in ("title", "content"):
            if key in patch:
                patch[key] = str(patch[key]).strip()
                if not patch[key]:
                    raise InvalidInputError(f"rule {key} must not be empty")
        if "priority" in patch:
            patch["priority"] = _as_priority(patch["priority"])
        if "enabled" in patch:
            patch["enabled"] = int(bool(patch["enabled"]))

        handle = self.manager.open(scope)
        with handle.transaction() as conn:
            if conn.execute("SELECT 1 FROM rules WHERE id=?", (rule_id,)).fetchone() is None:
                raise NotFoundError(f"Rule not found: {rule_id} (scope={scope})")
            patch["updated_at"] = _now_epoch()
            sets = ", ".join(f"{k}=?" for k in patch)
            conn.execute(
                f"UPDATE rules SET {sets} WHERE id=?", [*patch.values(), rule_id],
            )
        return self.get(rule_id, scope=scope)

    def delete(self, rule_id: str, *, scope: str = "global") -> None:
        (scope,) = resolve_scopes(scope, allow_all=False)
        handle = self.manager.open(scope)
        with handle.transaction() as conn:
            cur = conn.execute("DELETE FROM rules WHERE id=?", (rule_id,))
        if cur.rowcount == 0:
            raise NotFoundError(f"Rule not found: {rule_id} (scope={scope})")
        logger.debug("[%s] deleted rule %s", scope, rule_id)

    def retrieve(self, *, scope: str = "all", category: Optional[str] = None) -> List[Rule]:
        """Enabled rules by priority (desc), then age (oldest first)."""
        return self._select(scope, category=category, include_disabled=False)

    def list(self, *, scope: str = "all", include_disabled: bool = False) -> List[Rule]:
        return self._select(scope, category=None, include_disabled=include_disabled)

    def _select(
        self, scope: str, *, category: Optional[str], include_disabled: bool,
    ) -> List[Rule]:
        conditions: list = []
        params: list = []
        if not include_disabled:
            conditions.append("enabled=1")
        if category:
            conditions.append("category=?")
            params.append(category)
        where = " AND ".join(conditions) if conditions else "1=1"

        rules: List[Rule] = []
        for name in resolve_scopes(scope):
            rows = self.manager.open(name).conn.execute(
                f"SELECT * FROM rules WHERE {where} "
                "ORDER BY priority DESC, created_at ASC, rowid ASC",
                params,
            ).fetchall()
            rules.extend(_row_to_rule(r, name) for r in rows)
        rules.sort(key=_sort_key)
        return rules


def _as_priority(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"priority must be an integer, got {value!r}")


def _row_to_rule(row: sqlite3.Row, scope: str) -> Rule:
    return Rule(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        category=row["category"] or "general",
        priority=int(row["priority"] or 0),
        enabled=bool(row["enabled"]),
        created_at=int(row["created_at"] or 0),
        updated_at=int(row["updated_at"] or 0),
        scope=scope,
    )
