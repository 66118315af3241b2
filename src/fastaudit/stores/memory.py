"""In-process audit store."""

from datetime import datetime
from typing import Sequence

from fastaudit.audit.model import AuditEvent, AuditFilter, ensure_utc
from fastaudit.stores.base import AuditStore, apply_filter, export_filter, matches_filter
from fastaudit.stores.export import ExportFormat, serialize_events


class InMemoryAuditStore(AuditStore):
    """
    Audit store that keeps events in a list.

    Events with an id that is already stored are ignored. Useful for tests
    and for hosts that want an in-process read model next to a durable
    store.
    """

    def __init__(self, name: str = "memory"):
        self.name = name
        self._events: list[AuditEvent] = []
        self._ids: set[str] = set()

    @property
    def events(self) -> list[AuditEvent]:
        """Stored events in insertion order."""
        return list(self._events)

    async def store(self, events: Sequence[AuditEvent]) -> None:
        for event in events:
            if event.id in self._ids:
                continue
            self._ids.add(event.id)
            self._events.append(event)

    async def query(self, filter: AuditFilter) -> list[AuditEvent]:
        return apply_filter(self._events, filter)

    async def count(self, filter: AuditFilter) -> int:
        return sum(1 for e in self._events if matches_filter(e, filter))

    async def export(self, filter: AuditFilter, format: ExportFormat | str) -> str:
        fmt = ExportFormat.parse(format)
        return serialize_events(apply_filter(self._events, export_filter(filter)), fmt)

    async def purge(self, before: datetime) -> int:
        cutoff = ensure_utc(before)
        kept = [e for e in self._events if e.timestamp >= cutoff]
        removed = len(self._events) - len(kept)
        self._events = kept
        self._ids = {e.id for e in kept}
        return removed

    async def health_check(self) -> bool:
        return True
