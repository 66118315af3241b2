"""
Audit store contract.

Provides:
- AuditStore: Abstract base class every store adapter implements
- matches_filter / sort_events / paginate: in-memory filter semantics
  shared by stores that cannot push filtering down to a query engine
"""

import json
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Sequence

from fastaudit.audit.model import AuditEvent, AuditFilter
from fastaudit.stores.export import ExportFormat

DEFAULT_QUERY_LIMIT = 100
EXPORT_LIMIT = 10_000


class AuditStore(ABC):
    """
    Abstract base class for audit storage.

    Each store is registered with the manager under its unique ``name``.
    Any operation may raise; the manager isolates failures per store.
    """

    name: str

    async def initialize(self) -> None:
        """Prepare the store for use. Optional."""

    async def destroy(self) -> None:
        """Release resources held by the store. Optional."""

    @abstractmethod
    async def store(self, events: Sequence[AuditEvent]) -> None:
        """Persist a batch of events."""

    @abstractmethod
    async def query(self, filter: AuditFilter) -> list[AuditEvent]:
        """Return events matching the filter, ordered and paginated."""

    @abstractmethod
    async def count(self, filter: AuditFilter) -> int:
        """Count events matching the filter, ignoring pagination."""

    @abstractmethod
    async def export(self, filter: AuditFilter, format: ExportFormat | str) -> str:
        """Serialize matching events (capped at ``EXPORT_LIMIT``)."""

    @abstractmethod
    async def purge(self, before: datetime) -> int:
        """Delete events older than ``before``. Returns the number removed."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True when the store can accept writes."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


# =============================================================================
# IN-MEMORY FILTER SEMANTICS
# =============================================================================


def _search_haystack(event: AuditEvent) -> str:
    parts = [event.event_type, event.resource, event.error_message or ""]
    if event.metadata:
        parts.append(json.dumps(event.metadata, default=str, ensure_ascii=False))
    return "\n".join(parts).lower()


def matches_filter(event: AuditEvent, filter: AuditFilter) -> bool:
    """Check an event against every populated dimension of ``filter``."""
    if filter.start_date and event.timestamp < filter.start_date:
        return False
    if filter.end_date and event.timestamp > filter.end_date:
        return False
    if filter.user_ids and event.user_id not in filter.user_ids:
        return False
    if filter.event_types and event.event_type not in filter.event_types:
        return False
    if filter.categories and event.category not in filter.categories:
        return False
    if filter.severities and event.severity not in filter.severities:
        return False
    if filter.services and event.service not in filter.services:
        return False
    if filter.resources and event.resource not in filter.resources:
        return False
    if filter.success is not None and event.success != filter.success:
        return False
    if filter.search and filter.search.lower() not in _search_haystack(event):
        return False
    return True


def _sort_key(event: AuditEvent, field_name: str) -> tuple[int, Any]:
    value = getattr(event, field_name, None)
    if value is None:
        return (1, "")
    if field_name == "severity":
        return (0, value.rank)
    if isinstance(value, Enum):
        return (0, value.value)
    return (0, value)


def sort_events(events: Iterable[AuditEvent], filter: AuditFilter) -> list[AuditEvent]:
    """Order events by ``filter.order_by``; unknown fields fall back to timestamp."""
    field_name = filter.order_by
    if field_name not in AuditEvent.field_names() or field_name == "metadata":
        field_name = "timestamp"
    return sorted(
        events,
        key=lambda e: _sort_key(e, field_name),
        reverse=filter.descending,
    )


def paginate(events: Sequence[AuditEvent], filter: AuditFilter) -> list[AuditEvent]:
    limit = filter.limit if filter.limit is not None else DEFAULT_QUERY_LIMIT
    return list(events[filter.offset : filter.offset + limit])


def apply_filter(events: Iterable[AuditEvent], filter: AuditFilter) -> list[AuditEvent]:
    """Filter, order and paginate in one pass."""
    return paginate(sort_events((e for e in events if matches_filter(e, filter)), filter), filter)


def export_filter(filter: AuditFilter) -> AuditFilter:
    """Copy of ``filter`` with the limit raised to ``EXPORT_LIMIT``."""
    return replace(filter, limit=EXPORT_LIMIT)
