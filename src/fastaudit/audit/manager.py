"""
Audit Manager - orchestrates the audit pipeline.

Provides:
- Event enrichment, policy filtering and metadata masking
- Real-time alert evaluation
- Batched persistence to every registered store
- Periodic background flushing
- Read delegation (query, count, export) to the primary store
- Retention purges across stores

There is no process-wide instance: hosts construct a manager (directly
or through ``fastaudit.audit.factory``) and pass it where it is needed.
"""

import asyncio
import logging
from dataclasses import fields as dataclass_fields
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from fastaudit.audit.alerts import AlertEngine
from fastaudit.audit.errors import ManagerDestroyedError, NoStoresAvailableError
from fastaudit.audit.masking import DataMasker
from fastaudit.audit.model import (
    AlertLevel,
    AuditAlert,
    AuditAlertRule,
    AuditEvent,
    AuditFilter,
    AuditPolicy,
    ensure_utc,
    normalize_event_keys,
)
from fastaudit.ports.telemetry import Logger, MetricsRegistry
from fastaudit.stores.base import AuditStore
from fastaudit.stores.export import ExportFormat

logger = logging.getLogger(__name__)

EventInput = AuditEvent | Mapping[str, Any] | None
FilterInput = AuditFilter | Mapping[str, Any] | None


def _event_values(event: AuditEvent) -> dict[str, Any]:
    return {f.name: getattr(event, f.name) for f in dataclass_fields(event)}


def _coerce_filter(filter: FilterInput) -> AuditFilter:
    if filter is None:
        return AuditFilter()
    if isinstance(filter, AuditFilter):
        return filter
    return AuditFilter.from_dict(filter)


class AuditManager:
    """
    Audit pipeline orchestrator.

    Events go through enrichment, the policy filter, optional masking of
    ``metadata`` and alert evaluation, then either join the in-memory
    queue (``async_processing``) or are written straight to every store.
    The queue is flushed when it reaches ``batch_size``, every
    ``flush_interval`` seconds, on ``flush()`` and on ``destroy()``.

    Store failures during writes are logged, counted and isolated; one
    failing store never blocks the others.

    Example:
        manager = AuditManager(StandardLogger(), InMemoryMetrics())
        manager.add_store(FileAuditStore(FileStoreConfig(Path("audit.log"))))

        async with manager:
            await manager.log(
                event_type="USER_LOGIN",
                category="SECURITY",
                operation="login",
                resource="session",
                user_id="user-1",
            )
    """

    def __init__(
        self,
        logger: Logger,
        metrics: MetricsRegistry,
        policy: AuditPolicy | None = None,
        *,
        masker: DataMasker | None = None,
        stores: Iterable[AuditStore] = (),
        alert_rules: Iterable[AuditAlertRule] = (),
    ):
        self._logger = logger
        self._policy = policy.copy() if policy is not None else AuditPolicy()
        self._masker = masker or DataMasker()
        self._stores: dict[str, AuditStore] = {}
        self._alert_engine = AlertEngine()
        self._queue: list[AuditEvent] = []
        self._flush_task: asyncio.Task | None = None
        self._pending_flushes: set[asyncio.Future] = set()
        self._destroyed = False

        self._events_queued = metrics.counter(
            "audit_events_queued", "Audit events accepted into the queue"
        )
        self._events_processed = metrics.counter(
            "audit_events_processed", "Audit events dispatched to stores"
        )
        self._events_failed = metrics.counter(
            "audit_events_failed", "Audit events a store failed to handle"
        )
        self._alerts_triggered = metrics.counter(
            "audit_alerts_triggered", "Audit alerts fired by alert rules"
        )

        for store in stores:
            self.add_store(store)
        for rule in alert_rules:
            self.add_alert_rule(rule)

        self._start_flush_timer()
        self._logger.info("Audit manager initialized", policy=self._policy.to_dict())

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def pending_count(self) -> int:
        """Events waiting in the queue for the next flush."""
        return len(self._queue)

    @property
    def masker(self) -> DataMasker:
        return self._masker

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """
        Initialize every registered store, in registration order.

        Raises:
            Exception: The first store initialization error, after logging it.
        """
        self._ensure_active()
        for store in list(self._stores.values()):
            try:
                await store.initialize()
            except Exception as e:
                self._logger.exception(f"Failed to initialize audit store {store.name}", e)
                raise
            self._logger.info(f"Audit store {store.name} initialized")
        self._start_flush_timer()

    async def destroy(self) -> None:
        """
        Stop the flush timer, flush what is queued and release every store.

        Store teardown failures are logged, not raised. Calling destroy a
        second time does nothing.
        """
        if self._destroyed:
            return
        self._destroyed = True

        await self._stop_flush_timer()

        try:
            await self.flush()
        except Exception as e:
            self._logger.exception("Final audit flush failed", e)

        for store in list(self._stores.values()):
            try:
                await store.destroy()
            except Exception as e:
                self._logger.exception(f"Failed to destroy audit store {store.name}", e)

        self._stores.clear()
        self._logger.info("Audit manager destroyed")

    async def __aenter__(self) -> "AuditManager":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.destroy()

    def _ensure_active(self) -> None:
        if self._destroyed:
            raise ManagerDestroyedError()

    # =========================================================================
    # FLUSH TIMER
    # =========================================================================

    def _start_flush_timer(self) -> None:
        """Start the periodic flush task if a loop is running and none is active."""
        if self._destroyed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Started lazily by the first log() or initialize()
            return
        task = self._flush_task
        if task is not None and not task.done() and task.get_loop() is loop:
            return
        self._flush_task = loop.create_task(self._flush_loop(self._policy.flush_interval))

    def _cancel_flush_timer(self) -> asyncio.Task | None:
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def _stop_flush_timer(self) -> None:
        task = self._cancel_flush_timer()
        if task is not None and task.get_loop() is asyncio.get_running_loop():
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.wait_for_flushes()

    async def _flush_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            # asyncio.wait never cancels the flush, so stopping the timer
            # cannot abandon a drained batch
            await asyncio.wait([self._schedule_flush()])

    def _schedule_flush(self) -> asyncio.Future:
        """Drain the queue in a background task tracked until it finishes."""
        flush = asyncio.ensure_future(self._drain())
        self._pending_flushes.add(flush)
        flush.add_done_callback(self._pending_flushes.discard)
        flush.add_done_callback(self._report_flush_failure)
        return flush

    def _report_flush_failure(self, flush: asyncio.Future) -> None:
        if flush.cancelled():
            return
        error = flush.exception()
        if error is not None:
            self._logger.exception("Scheduled audit flush failed", error)

    async def wait_for_flushes(self) -> None:
        """Wait for background flushes that are already writing."""
        if self._pending_flushes:
            await asyncio.wait(list(self._pending_flushes))

    # =========================================================================
    # LOGGING
    # =========================================================================

    def should_log(self, event: AuditEvent) -> bool:
        """Apply the policy's enabled flag, category set and severity floor."""
        policy = self._policy
        if not policy.enabled:
            return False
        if event.category not in policy.categories:
            return False
        return event.severity.rank >= policy.min_severity.rank

    def _build_event(self, event: EventInput, fields: dict[str, Any]) -> AuditEvent:
        if isinstance(event, AuditEvent):
            if not fields:
                return event
            return AuditEvent.create(**{**_event_values(event), **normalize_event_keys(fields)})
        if event is None:
            return AuditEvent.create(**normalize_event_keys(fields))
        if isinstance(event, Mapping):
            return AuditEvent.create(
                **{**normalize_event_keys(event), **normalize_event_keys(fields)}
            )
        raise TypeError(f"Cannot log {type(event).__name__} as an audit event")

    def _accept(self, event: EventInput, fields: dict[str, Any]) -> AuditEvent | None:
        self._ensure_active()
        candidate = self._build_event(event, fields)
        if not self.should_log(candidate):
            return None

        if self._policy.data_masking and candidate.metadata:
            candidate = candidate.with_changes(
                metadata=self._masker.mask_object(candidate.metadata)
            )

        if self._policy.real_time_alerting:
            self._evaluate_alerts(candidate)

        return candidate

    def _enqueue(self, event: AuditEvent) -> None:
        self._queue.append(event)
        self._events_queued.inc()

    async def log(self, event: EventInput = None, /, **fields: Any) -> AuditEvent | None:
        """
        Submit an audit event.

        Accepts an ``AuditEvent``, a mapping with wire (camelCase) or
        attribute (snake_case) keys, keyword fields, or a combination
        where keywords override.

        Returns:
            The accepted event, or None if the policy filtered it out.

        Raises:
            ManagerDestroyedError: If the manager has been destroyed.
            TypeError: If an unknown event field is given.
        """
        accepted = self._accept(event, fields)
        if accepted is None:
            return None

        if self._policy.async_processing:
            self._enqueue(accepted)
            self._start_flush_timer()
            if len(self._queue) >= self._policy.batch_size:
                # Written in the background; a hung store must not hold the caller
                self._schedule_flush()
        else:
            await self._persist([accepted])

        return accepted

    def log_sync(self, event: EventInput = None, /, **fields: Any) -> AuditEvent | None:
        """
        Submit an audit event without suspending.

        The event is queued regardless of ``async_processing`` and written
        by the next flush.
        """
        accepted = self._accept(event, fields)
        if accepted is None:
            return None
        self._enqueue(accepted)
        self._start_flush_timer()
        return accepted

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def flush(self) -> int:
        """
        Write every queued event to every store.

        The queue is drained before the first await, so events logged
        while the flush runs wait for the next one. Background flushes
        started by the batch-size threshold are awaited too. Store
        failures are logged and counted, never raised.

        Returns:
            Number of events drained from the queue by this call.
        """
        drained = await self._drain()
        await self.wait_for_flushes()
        return drained

    async def _drain(self) -> int:
        if not self._queue:
            return 0
        batch, self._queue = self._queue, []
        await self._persist(batch)
        return len(batch)

    async def _persist(self, batch: list[AuditEvent]) -> None:
        stores = list(self._stores.values())
        results = await asyncio.gather(
            *(store.store(batch) for store in stores),
            return_exceptions=True,
        )

        failed: list[str] = []
        for store, result in zip(stores, results):
            if not isinstance(result, BaseException):
                continue
            if not isinstance(result, Exception):
                raise result
            failed.append(store.name)
            self._events_failed.inc(len(batch))
            self._logger.exception(
                f"Audit store {store.name} failed",
                result,
                store=store.name,
                events=len(batch),
            )

        if failed:
            self._logger.warning(
                f"{len(failed)} audit stores failed during flush",
                stores=failed,
            )
        self._events_processed.inc(len(batch))

    async def purge(self, before: datetime | None = None) -> dict[str, int]:
        """
        Delete events older than ``before`` from every store.

        Defaults to now minus ``policy.retention_days``. Failing stores are
        logged and left out of the result.

        Returns:
            Removed event counts keyed by store name.
        """
        self._ensure_active()
        if before is None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=self._policy.retention_days)
        else:
            cutoff = ensure_utc(before)

        stores = list(self._stores.values())
        results = await asyncio.gather(
            *(store.purge(cutoff) for store in stores),
            return_exceptions=True,
        )

        purged: dict[str, int] = {}
        for store, result in zip(stores, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self._logger.exception(f"Audit store {store.name} failed to purge", result)
                continue
            purged[store.name] = result

        self._logger.info(
            "Audit retention purge completed",
            before=cutoff.isoformat(),
            purged=purged,
        )
        return purged

    # =========================================================================
    # READS
    # =========================================================================

    def _primary_store(self, operation: str) -> AuditStore:
        self._ensure_active()
        store = next(iter(self._stores.values()), None)
        if store is None:
            raise NoStoresAvailableError(operation)
        return store

    async def query(self, filter: FilterInput = None) -> list[AuditEvent]:
        """Query the first registered store."""
        store = self._primary_store("query")
        try:
            return await store.query(_coerce_filter(filter))
        except Exception as e:
            self._events_failed.inc()
            self._logger.exception("Audit query failed", e, store=store.name)
            raise

    async def count(self, filter: FilterInput = None) -> int:
        """Count matching events in the first registered store."""
        store = self._primary_store("count")
        try:
            return await store.count(_coerce_filter(filter))
        except Exception as e:
            self._events_failed.inc()
            self._logger.exception("Audit count failed", e, store=store.name)
            raise

    async def export(
        self,
        filter: FilterInput = None,
        format: ExportFormat | str = ExportFormat.JSON,
    ) -> str:
        """Export matching events from the first registered store."""
        store = self._primary_store("export")
        fmt = ExportFormat.parse(format)
        try:
            return await store.export(_coerce_filter(filter), fmt)
        except Exception as e:
            self._events_failed.inc()
            self._logger.exception("Audit export failed", e, store=store.name, format=fmt.value)
            raise

    # =========================================================================
    # POLICY
    # =========================================================================

    def get_policy(self) -> AuditPolicy:
        """Defensive copy of the current policy."""
        return self._policy.copy()

    def update_policy(
        self,
        changes: Mapping[str, Any] | None = None,
        /,
        **fields: Any,
    ) -> AuditPolicy:
        """
        Shallow-merge changes into the policy.

        A changed ``flush_interval`` restarts the flush timer.

        Returns:
            Copy of the new policy.
        """
        old_policy = self._policy
        new_policy = old_policy.merged(**{**(changes or {}), **fields})
        self._policy = new_policy

        if new_policy.flush_interval != old_policy.flush_interval:
            self._cancel_flush_timer()
            self._start_flush_timer()

        self._logger.info(
            "Audit policy updated",
            old_policy=old_policy.to_dict(),
            new_policy=new_policy.to_dict(),
        )
        return new_policy.copy()

    # =========================================================================
    # STORES
    # =========================================================================

    def add_store(self, store: AuditStore) -> None:
        """Register a store. A store with the same name is replaced in place."""
        replaced = store.name in self._stores
        self._stores[store.name] = store
        if replaced:
            self._logger.info(f"Audit store {store.name} replaced")
        else:
            self._logger.info(f"Audit store {store.name} added")

    def remove_store(self, name: str) -> bool:
        if self._stores.pop(name, None) is None:
            return False
        self._logger.info(f"Audit store {name} removed")
        return True

    def get_stores(self) -> list[AuditStore]:
        """Registered stores in registration order."""
        return list(self._stores.values())

    async def health_check(self) -> dict[str, bool]:
        """Probe every store. A probe that raises reports False."""
        stores = list(self._stores.values())
        results = await asyncio.gather(
            *(store.health_check() for store in stores),
            return_exceptions=True,
        )

        health: dict[str, bool] = {}
        for store, result in zip(stores, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self._logger.exception(f"Health check failed for audit store {store.name}", result)
                health[store.name] = False
            else:
                health[store.name] = bool(result)
        return health

    # =========================================================================
    # ALERTS
    # =========================================================================

    def _evaluate_alerts(self, event: AuditEvent) -> None:
        for alert in self._alert_engine.evaluate(event):
            # The event is already accepted; reporting must not lose it
            try:
                self._alerts_triggered.inc()
                self._logger.warning(
                    f"Audit alert triggered: {alert.rule_name}",
                    alert_id=alert.id,
                    alert_level=alert.level.value,
                    alert_message=alert.message,
                    event_id=event.id,
                )
            except Exception as e:
                logger.error(f"Failed to report audit alert {alert.id}: {e}")

    def add_alert_rule(self, rule: AuditAlertRule) -> None:
        self._alert_engine.add_rule(rule)
        self._logger.info(f"Audit alert rule {rule.name} added")

    def remove_alert_rule(self, name: str) -> bool:
        removed = self._alert_engine.remove_rule(name)
        if removed:
            self._logger.info(f"Audit alert rule {name} removed")
        return removed

    def get_alert_rules(self) -> list[AuditAlertRule]:
        return self._alert_engine.rules

    async def get_alerts(
        self,
        *,
        id: str | None = None,
        rule_name: str | None = None,
        level: AlertLevel | str | None = None,
        acknowledged: bool | None = None,
    ) -> list[AuditAlert]:
        """Fired alerts matching the given criteria, most recent first."""
        return self._alert_engine.get_alerts(
            id=id,
            rule_name=rule_name,
            level=level,
            acknowledged=acknowledged,
        )

    async def acknowledge_alert(self, alert_id: str) -> bool:
        acknowledged = self._alert_engine.acknowledge(alert_id)
        if acknowledged:
            self._logger.info(f"Audit alert {alert_id} acknowledged")
        return acknowledged
