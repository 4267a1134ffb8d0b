"""Operational utilities: structured event log and parent audit trail."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional


@dataclass(slots=True)
class AuditEvent:
    """A parent (or system) action against a child, quest or reward."""

    actor: str
    action: str
    target: str
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)


class StructuredLogger:
    """Write JSON lines log entries for engine events.

    Entries are always kept in memory (see :meth:`tail`) and are appended to
    ``path`` as well when one is configured.
    """

    def __init__(
        self,
        *,
        path: Path | None = None,
        clock: Callable[[], datetime] = datetime.now,
        retain: int = 1000,
    ) -> None:
        self.path = path
        self._clock = clock
        self._retain = retain
        self._entries: list[dict] = []

    def log(self, event_type: str, *, level: str = "info", **fields: object) -> dict:
        entry = {
            "timestamp": self._clock().isoformat(),
            "level": level,
            "event": event_type,
            **{key: value for key, value in fields.items() if value is not None},
        }
        self._entries.append(entry)
        if len(self._entries) > self._retain:
            del self._entries[: len(self._entries) - self._retain]
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def warning(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="warning", **fields)

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries[-limit:])

    def events(self, event_type: str | None = None, *, child: str | None = None) -> tuple[dict, ...]:
        return tuple(
            entry
            for entry in self._entries
            if (event_type is None or entry["event"] == event_type)
            and (child is None or entry.get("child") == child)
        )


class AuditLog:
    """Collect audit events for parent actions (verifications, penalties, catalog edits)."""

    def __init__(self, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self._entries: list[AuditEvent] = []

    def record(
        self,
        actor: str,
        action: str,
        target: str,
        *,
        details: Optional[dict] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            actor=actor,
            action=action,
            target=target,
            timestamp=timestamp or self._clock(),
            details=dict(details or {}),
        )
        self._entries.append(event)
        return event

    def entries(
        self,
        *,
        actor: str | None = None,
        action: str | None = None,
        target: str | None = None,
    ) -> tuple[AuditEvent, ...]:
        records = self._entries
        if actor is not None:
            records = [entry for entry in records if entry.actor == actor]
        if action is not None:
            records = [entry for entry in records if entry.action == action]
        if target is not None:
            records = [entry for entry in records if entry.target == target]
        return tuple(records)

    def latest(self) -> AuditEvent | None:
        return self._entries[-1] if self._entries else None


__all__ = ["AuditEvent", "AuditLog", "StructuredLogger"]
