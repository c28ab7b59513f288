"""Bounded audit trail of agent tool calls and safety decisions.

One AuditLog is created per run and handed to every component that records
into it. The log keeps the most recent entries only; older ones are evicted
so a long-running review cannot grow it without limit.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

SUCCESS = "success"
BLOCKED = "blocked"
ERROR = "error"

MAX_ENTRIES = 1000


@dataclass
class AuditEntry:
    tool_name: str
    parameters: dict
    result: str  # "success" | "blocked" | "error"
    session_id: str | None = None
    reason: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class AuditLog:
    def __init__(self, max_entries: int = MAX_ENTRIES):
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)

    def record(
        self,
        tool_name: str,
        parameters: dict,
        result: str,
        session_id: str | None = None,
        reason: str | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            tool_name=tool_name,
            parameters=_redact(parameters),
            result=result,
            session_id=session_id,
            reason=reason,
        )
        self._entries.append(entry)
        if result == BLOCKED:
            logger.warning("Blocked %s: %s", tool_name, reason)
        else:
            logger.debug("Audit %s → %s%s", tool_name, result, f" ({reason})" if reason else "")
        return entry

    def entries(self, result: str | None = None) -> list[AuditEntry]:
        return [e for e in self._entries if result is None or e.result == result]

    def __len__(self) -> int:
        return len(self._entries)


def _redact(parameters: dict) -> dict:
    """Shorten long text values; audit entries record intent, not full comment bodies."""
    redacted = {}
    for key, value in parameters.items():
        if isinstance(value, str) and len(value) > 200:
            value = value[:200] + "...[truncated]"
        redacted[key] = value
    return redacted
