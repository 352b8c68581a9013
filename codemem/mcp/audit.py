"""
MCP Audit Logger — one JSONL record per codemem tool call.

Record fields (schema v1):
    v        schema version
    ts       UTC timestamp, millisecond precision
    rid      request id
    tool     tool name
    project  project database name (workspace basename)
    scope    scope argument as passed by the client
    scopes   scopes the call touched ("all" expanded); absent if invalid
    outcome  ok | error | not_found
    d        tool detail (counts, ids, content fingerprint)
    ms       latency

Knowledge text is never written in full: records carry a short preview,
the SHA-256 of the text and the number of code links attached to it.

Writing a record never raises.  Failed writes are counted in ``dropped``
and reported once through the module logger.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, TextIO

from codemem.types import ALL_SCOPES, SCOPES, VALID_SCOPES

logger = logging.getLogger(__name__)

AUDIT_SCHEMA_VERSION = 1
PREVIEW_MAX_CHARS = 120


def touched_scopes(scope: Optional[str]) -> Optional[List[str]]:
    """Scopes a call with this scope argument reads or writes."""
    if scope == ALL_SCOPES:
        return list(SCOPES)
    if scope in VALID_SCOPES:
        return [scope]
    return None


def knowledge_detail(content: str, tags: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """Fingerprint of a knowledge text: size, hash, flattened preview, tag count."""
    data = content.encode("utf-8")
    preview = " ".join(content[:PREVIEW_MAX_CHARS].split())
    if len(content) > PREVIEW_MAX_CHARS:
        preview += "…"
    detail: Dict[str, Any] = {
        "bytes": len(data),
        "hash": hashlib.sha256(data).hexdigest(),
        "preview": preview,
    }
    if tags:
        detail["tags"] = len(list(tags))
    return detail


def code_link_detail(entry) -> Dict[str, Any]:
    """How many files and symbols an entry was linked to."""
    return {
        "files": len(entry.related_files),
        "symbols": len(entry.related_symbols),
    }


class AuditLogger:
    """Structured JSONL audit trail of MCP tool calls for one project."""

    def __init__(self, output: Optional[TextIO] = None, *, project: Optional[str] = None):
        """
        Args:
            output: File handle for audit output. None → stderr.
            project: Project database name stamped on every record.
        """
        self._output = output if output is not None else sys.stderr
        self.project = project
        self.dropped = 0

    def new_rid(self) -> str:
        return uuid.uuid4().hex

    def log(
        self,
        tool: str,
        rid: str,
        scope: Optional[str],
        outcome: str,
        detail: Optional[Dict[str, Any]] = None,
        latency_ms: float = 0.0,
    ) -> None:
        """Append one record; never raises."""
        record: Dict[str, Any] = {
            "v": AUDIT_SCHEMA_VERSION,
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds")
                  .replace("+00:00", "Z"),
            "rid": rid,
            "tool": tool,
            "project": self.project,
            "scope": scope,
        }
        scopes = touched_scopes(scope)
        if scopes is not None:
            record["scopes"] = scopes
        record["outcome"] = outcome
        if detail:
            record["d"] = detail
        record["ms"] = round(latency_ms, 1)

        try:
            line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
            self._output.write(line + "\n")
            self._output.flush()
        except (TypeError, ValueError, OSError) as exc:
            self.dropped += 1
            if self.dropped == 1:
                logger.warning("audit record for %s dropped: %s", tool, exc)
