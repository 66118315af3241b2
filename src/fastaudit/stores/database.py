"""
Relational audit store built on SQLAlchemy Core.

Events live in a single ``audit_logs`` table with one column per wire
field. ``metadata`` is stored as JSON text and timestamps as naive UTC.

The schema is normally created by the Alembic revision shipped in
``fastaudit.migrations``; pass ``create_tables=True`` to create it
directly instead (handy for SQLite and tests).

The engine is synchronous; calls run in a worker thread via
``asyncio.to_thread``.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from fastaudit.audit.errors import AuditStoreError
from fastaudit.audit.model import AuditEvent, AuditFilter, AuditSeverity, ensure_utc
from fastaudit.stores.base import DEFAULT_QUERY_LIMIT, AuditStore, export_filter
from fastaudit.stores.export import ExportFormat, serialize_events

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "audit_logs"

# Rows checked for existing ids per round trip
_INSERT_CHUNK = 500


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass(slots=True)
class DatabaseStoreConfig:
    """Database store configuration."""

    url: str
    table_name: str = DEFAULT_TABLE_NAME
    create_tables: bool = False
    echo: bool = False
    name: str = "database"


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return sa.create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return sa.create_engine(url, echo=echo)


# =============================================================================
# SCHEMA
# =============================================================================


def audit_logs_table(metadata: sa.MetaData, name: str = DEFAULT_TABLE_NAME) -> sa.Table:
    """Table definition matching the ``create_audit_logs`` migration."""
    return sa.Table(
        name,
        metadata,
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False, index=True),
        sa.Column("event_type", sa.String(255), nullable=False, index=True),
        sa.Column("category", sa.String(32), nullable=False, index=True),
        sa.Column("severity", sa.String(16), nullable=False, index=True),
        sa.Column("operation", sa.String(255), nullable=False),
        sa.Column("resource", sa.String(255), nullable=False),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("user_id", sa.String(255), nullable=True, index=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, default=True),
        sa.Column("error_code", sa.String(255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.Text(), nullable=True),  # JSON
        sa.Column("service", sa.String(255), nullable=False, index=True),
        sa.Column("request_id", sa.String(255), nullable=True),
        sa.Column("trace_id", sa.String(255), nullable=True),
        sa.Column("retention_policy", sa.String(255), nullable=True),
        sa.Column("classification", sa.String(255), nullable=True),
    )


def _to_db_time(value: datetime) -> datetime:
    return ensure_utc(value).replace(tzinfo=None)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# =============================================================================
# DATABASE STORE
# =============================================================================


class DatabaseAuditStore(AuditStore):
    """
    Audit store backed by a relational database.

    Example:
        store = DatabaseAuditStore(DatabaseStoreConfig(
            url="postgresql+psycopg://audit@db/app",
        ))
        await store.initialize()  # verifies audit_logs exists
    """

    def __init__(
        self,
        config: DatabaseStoreConfig | Engine,
        *,
        table_name: str = DEFAULT_TABLE_NAME,
        create_tables: bool = False,
        name: str = "database",
    ):
        if isinstance(config, Engine):
            self.engine = config
            self._owns_engine = False
            self.table_name = table_name
            self.create_tables = create_tables
            self.name = name
        else:
            self.engine = build_engine(config.url, echo=config.echo)
            self._owns_engine = True
            self.table_name = config.table_name
            self.create_tables = config.create_tables
            self.name = config.name

        self._metadata = sa.MetaData()
        self.table = audit_logs_table(self._metadata, self.table_name)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        await asyncio.to_thread(self._prepare)
        logger.debug(f"Database audit store ready: table {self.table_name}")

    def _prepare(self) -> None:
        if self.create_tables:
            self._metadata.create_all(self.engine, tables=[self.table])
            return
        if not sa.inspect(self.engine).has_table(self.table_name):
            raise AuditStoreError(
                f"Audit table '{self.table_name}' not found. Please run database migrations.",
                store_name=self.name,
            )

    async def destroy(self) -> None:
        if self._owns_engine:
            await asyncio.to_thread(self.engine.dispose)

    async def health_check(self) -> bool:
        return await asyncio.to_thread(self._ping)

    def _ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(sa.text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database audit store health check failed: {e}")
            return False

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    def _to_row(self, event: AuditEvent) -> dict[str, Any]:
        return {
            "id": event.id,
            "timestamp": _to_db_time(event.timestamp),
            "event_type": event.event_type,
            "category": event.category.value,
            "severity": event.severity.value,
            "operation": event.operation,
            "resource": event.resource,
            "resource_id": event.resource_id,
            "user_id": event.user_id,
            "user_agent": event.user_agent,
            "ip_address": event.ip_address,
            "session_id": event.session_id,
            "success": event.success,
            "error_code": event.error_code,
            "error_message": event.error_message,
            "metadata": (
                json.dumps(event.metadata, ensure_ascii=False, default=str)
                if event.metadata is not None
                else None
            ),
            "service": event.service,
            "request_id": event.request_id,
            "trace_id": event.trace_id,
            "retention_policy": event.retention_policy,
            "classification": event.classification,
        }

    @staticmethod
    def _from_row(row: Any) -> AuditEvent:
        data = dict(row._mapping)
        data["timestamp"] = data["timestamp"].replace(tzinfo=timezone.utc)
        if data.get("metadata"):
            data["metadata"] = json.loads(data["metadata"])
        return AuditEvent.create(**data)

    # =========================================================================
    # WRITING
    # =========================================================================

    async def store(self, events: Sequence[AuditEvent]) -> None:
        if not events:
            return
        await asyncio.to_thread(self._insert, list(events))

    def _insert(self, events: list[AuditEvent]) -> None:
        rows: dict[str, dict[str, Any]] = {}
        for event in events:
            rows.setdefault(event.id, self._to_row(event))

        ids = list(rows)
        with self.engine.begin() as conn:
            for start in range(0, len(ids), _INSERT_CHUNK):
                chunk = ids[start : start + _INSERT_CHUNK]
                existing = set(
                    conn.execute(
                        sa.select(self.table.c.id).where(self.table.c.id.in_(chunk))
                    ).scalars()
                )
                fresh = [rows[i] for i in chunk if i not in existing]
                if fresh:
                    conn.execute(sa.insert(self.table), fresh)

    # =========================================================================
    # READING
    # =========================================================================

    def _where(self, filter: AuditFilter) -> list[Any]:
        c = self.table.c
        clauses: list[Any] = []
        if filter.start_date:
            clauses.append(c.timestamp >= _to_db_time(filter.start_date))
        if filter.end_date:
            clauses.append(c.timestamp <= _to_db_time(filter.end_date))
        if filter.user_ids:
            clauses.append(c.user_id.in_(filter.user_ids))
        if filter.event_types:
            clauses.append(c.event_type.in_(filter.event_types))
        if filter.categories:
            clauses.append(c.category.in_([x.value for x in filter.categories]))
        if filter.severities:
            clauses.append(c.severity.in_([x.value for x in filter.severities]))
        if filter.services:
            clauses.append(c.service.in_(filter.services))
        if filter.resources:
            clauses.append(c.resource.in_(filter.resources))
        if filter.success is not None:
            clauses.append(c.success == filter.success)
        if filter.search:
            pattern = f"%{_escape_like(filter.search)}%"
            clauses.append(
                sa.or_(
                    c.event_type.ilike(pattern, escape="\\"),
                    c.resource.ilike(pattern, escape="\\"),
                    c.error_message.ilike(pattern, escape="\\"),
                    c["metadata"].ilike(pattern, escape="\\"),
                )
            )
        return clauses

    def _order_by(self, filter: AuditFilter) -> list[Any]:
        c = self.table.c
        if filter.order_by == "severity":
            column: Any = sa.case(
                {s.value: s.rank for s in AuditSeverity},
                value=c.severity,
            )
        elif filter.order_by in c and filter.order_by != "metadata":
            column = c[filter.order_by]
        else:
            column = c.timestamp
        if filter.descending:
            return [column.desc(), c.id.desc()]
        return [column.asc(), c.id.asc()]

    def _select(self, filter: AuditFilter) -> list[AuditEvent]:
        limit = filter.limit if filter.limit is not None else DEFAULT_QUERY_LIMIT
        stmt = (
            sa.select(self.table)
            .where(*self._where(filter))
            .order_by(*self._order_by(filter))
            .offset(filter.offset)
            .limit(limit)
        )
        with self.engine.connect() as conn:
            return [self._from_row(row) for row in conn.execute(stmt)]

    def _count(self, filter: AuditFilter) -> int:
        stmt = sa.select(sa.func.count()).select_from(self.table).where(*self._where(filter))
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    async def query(self, filter: AuditFilter) -> list[AuditEvent]:
        return await asyncio.to_thread(self._select, filter)

    async def count(self, filter: AuditFilter) -> int:
        return await asyncio.to_thread(self._count, filter)

    async def export(self, filter: AuditFilter, format: ExportFormat | str) -> str:
        fmt = ExportFormat.parse(format)
        events = await asyncio.to_thread(self._select, export_filter(filter))
        return serialize_events(events, fmt)

    # =========================================================================
    # RETENTION
    # =========================================================================

    async def purge(self, before: datetime) -> int:
        return await asyncio.to_thread(self._purge, before)

    def _purge(self, before: datetime) -> int:
        stmt = sa.delete(self.table).where(self.table.c.timestamp < _to_db_time(before))
        with self.engine.begin() as conn:
            removed = conn.execute(stmt).rowcount or 0
        if removed:
            logger.info(f"Purged {removed} audit event(s) older than {before.isoformat()}")
        return removed
