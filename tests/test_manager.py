"""Tests for AuditManager."""

import asyncio
import re
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from fastaudit.audit.errors import (
    ManagerDestroyedError,
    NoStoresAvailableError,
    UnsupportedExportFormatError,
)
from fastaudit.audit.manager import AuditManager
from fastaudit.audit.model import (
    AlertLevel,
    AuditAlertRule,
    AuditCategory,
    AuditFilter,
    AuditPolicy,
    AuditSeverity,
)
from fastaudit.stores.base import AuditStore
from fastaudit.stores.memory import InMemoryAuditStore


class FailingStore(InMemoryAuditStore):
    """Store whose writes always fail."""

    def __init__(self, name="failing", error=None):
        super().__init__(name)
        self.error = error or OSError("disk full")
        self.attempts = 0

    async def store(self, events):
        self.attempts += 1
        raise self.error


class BrokenReadStore(InMemoryAuditStore):
    """Store whose reads and probes raise."""

    async def query(self, filter):
        raise RuntimeError("read replica down")

    async def purge(self, before):
        raise RuntimeError("purge refused")

    async def health_check(self):
        raise RuntimeError("probe crashed")


class TrackingStore(InMemoryAuditStore):
    """Store that records lifecycle calls into a shared journal."""

    def __init__(self, name, journal, fail_on=None):
        super().__init__(name)
        self.journal = journal
        self.fail_on = fail_on or set()

    async def initialize(self):
        self.journal.append(f"init:{self.name}")
        if "initialize" in self.fail_on:
            raise RuntimeError(f"{self.name} cannot start")

    async def destroy(self):
        self.journal.append(f"destroy:{self.name}")
        if "destroy" in self.fail_on:
            raise RuntimeError(f"{self.name} cannot stop")


class GatedStore(InMemoryAuditStore):
    """Store whose writes wait until the test opens the gate."""

    def __init__(self, name):
        super().__init__(name)
        self.gate = asyncio.Event()
        self.batches = []

    async def store(self, events):
        await self.gate.wait()
        self.batches.append(list(events))
        await super().store(events)


class RaisingWarningLogger:
    """Logger whose warnings fail; everything else is dropped."""

    def debug(self, message, **context):
        pass

    def info(self, message, **context):
        pass

    def warning(self, message, **context):
        raise RuntimeError("log sink unavailable")

    def error(self, message, **context):
        pass

    def exception(self, message, exc, **context):
        pass


# =============================================================================
# LOGGING PIPELINE
# =============================================================================


class TestPolicyFiltering:
    """Events outside the policy never reach a store."""

    @pytest.mark.asyncio
    async def test_category_and_severity_filter(self, manager, memory_store):
        """Test category and severity filtering."""
        manager.update_policy(categories=["SECURITY"], min_severity="HIGH")

        assert await manager.log(category="SYSTEM", severity="CRITICAL") is None
        await manager.flush()
        assert memory_store.events == []

        assert await manager.log(category="SECURITY", severity="LOW") is None
        await manager.flush()
        assert memory_store.events == []

        accepted = await manager.log(category="SECURITY", severity="CRITICAL")
        await manager.flush()
        assert memory_store.events == [accepted]

    @pytest.mark.asyncio
    async def test_disabled_policy_accepts_nothing(self, manager, memory_store):
        """Test a disabled policy accepts nothing."""
        manager.update_policy(enabled=False)
        assert await manager.log(category="SECURITY", severity="CRITICAL") is None
        assert manager.pending_count == 0

    @pytest.mark.asyncio
    async def test_should_log(self, manager, make_event):
        """Test should_log against the policy."""
        manager.update_policy(min_severity=AuditSeverity.MEDIUM)
        assert manager.should_log(make_event(severity="MEDIUM")) is True
        assert manager.should_log(make_event(severity="LOW")) is False

    @pytest.mark.asyncio
    async def test_filtered_events_do_not_alert(self, manager):
        """Test filtered events never raise alerts."""
        manager.update_policy(min_severity="HIGH")
        manager.add_alert_rule(AuditAlertRule(name="all"))
        await manager.log(severity="LOW")
        assert await manager.get_alerts() == []


class TestEventInput:
    """log() accepts events, mappings and keyword fields."""

    @pytest.mark.asyncio
    async def test_defaults_applied(self, manager):
        """Test defaults applied to bare events."""
        event = await manager.log()
        assert re.match(r"^audit_\d+_[a-z0-9]+$", event.id)
        assert event.event_type == "UNKNOWN"
        assert event.category == AuditCategory.SYSTEM
        assert event.severity == AuditSeverity.LOW
        assert event.resource == "unknown"
        assert event.service == "unknown"
        assert event.success is True

    @pytest.mark.asyncio
    async def test_event_instance_kept(self, manager, make_event):
        """Test an event instance is kept as given."""
        event = make_event()
        assert await manager.log(event) is event

    @pytest.mark.asyncio
    async def test_mapping_with_wire_keys(self, manager):
        """Test a mapping with wire keys."""
        event = await manager.log({"eventType": "FILE_READ", "userId": "alice", "resourceId": "f-1"})
        assert event.event_type == "FILE_READ"
        assert event.user_id == "alice"
        assert event.resource_id == "f-1"

    @pytest.mark.asyncio
    async def test_keywords_override(self, manager, make_event):
        """Test keyword fields override the event."""
        base = make_event(severity="LOW")
        event = await manager.log(base, severity="HIGH")
        assert event.severity == AuditSeverity.HIGH
        assert event.id == base.id

        event = await manager.log({"event_type": "A"}, event_type="B")
        assert event.event_type == "B"

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, manager):
        """Test an unknown field is rejected."""
        with pytest.raises(TypeError):
            await manager.log(not_a_field=True)

    @pytest.mark.asyncio
    async def test_unsupported_input_rejected(self, manager):
        """Test unsupported input types are rejected."""
        with pytest.raises(TypeError):
            await manager.log(42)


class TestMasking:
    """Metadata masking before queueing."""

    @pytest.mark.asyncio
    async def test_metadata_masked(self, manager, memory_store):
        """Test sensitive metadata is masked before storage."""
        metadata = {"password": "secret123", "email": "user@example.com", "plan": "pro"}
        await manager.log(category="SECURITY", metadata=metadata)
        await manager.flush()

        (stored,) = memory_store.events
        assert re.match(r"^se.*23$", stored.metadata["password"])
        assert stored.metadata["password"] != "secret123"
        assert stored.metadata["email"].endswith("@example.com")
        assert stored.metadata["email"] != "user@example.com"
        assert stored.metadata["plan"] == "pro"
        # Caller's dict untouched
        assert metadata["password"] == "secret123"

    @pytest.mark.asyncio
    async def test_masking_disabled(self, manager, memory_store):
        """Test metadata is kept when masking is disabled."""
        manager.update_policy(data_masking=False)
        await manager.log(metadata={"password": "secret123"})
        await manager.flush()
        assert memory_store.events[0].metadata == {"password": "secret123"}

    @pytest.mark.asyncio
    async def test_custom_pattern(self, manager, memory_store):
        """Test a custom masking pattern."""
        manager.masker.add_sensitive_pattern("tenant")
        await manager.log(metadata={"tenantKey": "acme-corp"})
        await manager.flush()
        assert memory_store.events[0].metadata["tenantKey"] == "ac***rp"


class TestBatching:
    """Queueing and flushing."""

    @pytest.mark.asyncio
    async def test_events_wait_for_flush(self, manager, memory_store, metrics):
        """Test events wait in the queue until flushed."""
        await manager.log()
        await manager.log()

        assert manager.pending_count == 2
        assert memory_store.events == []
        assert metrics.value("audit_events_queued") == 2

        assert await manager.flush() == 2
        assert manager.pending_count == 0
        assert len(memory_store.events) == 2
        assert metrics.value("audit_events_processed") == 2

    @pytest.mark.asyncio
    async def test_flush_empty_queue(self, manager, metrics):
        """Test flushing an empty queue."""
        assert await manager.flush() == 0
        assert metrics.value("audit_events_processed") == 0

    @pytest.mark.asyncio
    async def test_batch_size_triggers_flush(self, manager, memory_store):
        """Test reaching batch_size drains the queue in the background."""
        manager.update_policy(batch_size=3)

        await manager.log()
        await manager.log()
        assert memory_store.events == []

        await manager.log()
        assert manager.pending_count == 0

        await manager.wait_for_flushes()
        assert len(memory_store.events) == 3

    @pytest.mark.asyncio
    async def test_hung_store_does_not_block_log(self, manager, memory_store):
        """Test a store that never answers cannot hold up log()."""
        hung = GatedStore("hung")
        manager.add_store(hung)
        manager.update_policy(batch_size=1)

        event = await asyncio.wait_for(manager.log(), 1.0)
        await asyncio.sleep(0.05)

        assert memory_store.events == [event]
        assert hung.batches == []

        hung.gate.set()
        await manager.wait_for_flushes()
        assert hung.batches == [[event]]

    @pytest.mark.asyncio
    async def test_event_logged_during_flush_goes_to_next_batch(self, manager):
        """Test events logged while a flush is writing wait for the next flush."""
        gated = GatedStore("gated")
        manager.add_store(gated)

        first = await manager.log()
        flushing = asyncio.create_task(manager.flush())
        await asyncio.sleep(0)

        second = await manager.log()
        assert manager.pending_count == 1

        gated.gate.set()
        assert await flushing == 1
        assert await manager.flush() == 1
        assert gated.batches == [[first], [second]]

    @pytest.mark.asyncio
    async def test_sync_processing_writes_immediately(self, manager, memory_store, metrics):
        """Test sync processing writes immediately."""
        manager.update_policy(async_processing=False)
        event = await manager.log()

        assert memory_store.events == [event]
        assert manager.pending_count == 0
        assert metrics.value("audit_events_queued") == 0
        assert metrics.value("audit_events_processed") == 1

    @pytest.mark.asyncio
    async def test_log_sync_only_enqueues(self, manager, memory_store):
        """Test log_sync only enqueues."""
        manager.update_policy(batch_size=1, async_processing=False)
        event = manager.log_sync(event_type="SYNC")

        assert event.event_type == "SYNC"
        assert manager.pending_count == 1
        assert memory_store.events == []

        await manager.flush()
        assert memory_store.events == [event]

    @pytest.mark.asyncio
    async def test_log_sync_filtered(self, manager):
        """Test log_sync applies the policy filter."""
        manager.update_policy(enabled=False)
        assert manager.log_sync() is None
        assert manager.pending_count == 0

    @pytest.mark.asyncio
    async def test_store_receives_whole_batch(self, manager):
        """Test a store receives the whole batch in one call."""
        store = AsyncMock(spec=AuditStore)
        store.name = "mock"
        manager.add_store(store)

        first = await manager.log()
        second = await manager.log()
        await manager.flush()

        store.store.assert_awaited_once_with([first, second])

    @pytest.mark.asyncio
    async def test_every_store_receives_batch(self, manager, memory_store):
        """Test every store receives the batch."""
        mirror = InMemoryAuditStore("mirror")
        manager.add_store(mirror)
        await manager.log()
        await manager.flush()
        assert memory_store.events == mirror.events
        assert len(mirror.events) == 1


class TestScheduledFlush:
    """Background flushing on flush_interval."""

    @pytest.mark.asyncio
    async def test_interval_flush(self, logger, metrics, memory_store):
        """Test the interval flush."""
        manager = AuditManager(
            logger, metrics, AuditPolicy(flush_interval=0.05), stores=[memory_store]
        )
        await manager.log()
        await asyncio.sleep(0.3)

        assert len(memory_store.events) == 1
        await manager.destroy()

    @pytest.mark.asyncio
    async def test_interval_change_restarts_timer(self, manager, memory_store):
        """Test changing flush_interval restarts the timer."""
        await manager.log()
        await asyncio.sleep(0.1)
        assert memory_store.events == []

        manager.update_policy(flush_interval=0.05)
        await asyncio.sleep(0.3)
        assert len(memory_store.events) == 1


class TestStoreFailures:
    """A failing store never blocks the others."""

    @pytest.mark.asyncio
    async def test_failing_store_isolated(self, manager, memory_store, logger, metrics):
        """Test a failing store does not affect the others."""
        failing = FailingStore()
        manager.add_store(failing)

        event = await manager.log()
        assert await manager.flush() == 1

        assert memory_store.events == [event]
        assert failing.attempts == 1
        assert metrics.value("audit_events_failed") == 1
        assert metrics.value("audit_events_processed") == 1

        errors = [e for e in logger.entries if e["message"] == "Audit store failing failed"]
        assert len(errors) == 1
        assert isinstance(errors[0]["exc"], OSError)
        assert errors[0]["context"] == {"store": "failing", "events": 1}

        (warning,) = [e for e in logger.entries if e["level"] == "warning"]
        assert warning["message"] == "1 audit stores failed during flush"
        assert warning["context"]["stores"] == ["failing"]

    @pytest.mark.asyncio
    async def test_failed_count_is_batch_size_per_store(self, manager, metrics):
        """Test failures count every event per failing store."""
        manager.add_store(FailingStore("a"))
        manager.add_store(FailingStore("b"))
        for _ in range(3):
            await manager.log()
        await manager.flush()
        assert metrics.value("audit_events_failed") == 6

    @pytest.mark.asyncio
    async def test_sync_processing_failure_not_raised(self, manager, memory_store):
        """Test store failures are not raised in sync processing."""
        manager.add_store(FailingStore())
        manager.update_policy(async_processing=False)
        event = await manager.log()
        assert memory_store.events == [event]


# =============================================================================
# ALERTS
# =============================================================================


class TestAlerting:
    """Real-time alerts raised while logging."""

    @pytest.fixture
    def high_security_rule(self):
        return AuditAlertRule(
            name="high-security",
            filter=AuditFilter(categories=["SECURITY"], severities=["HIGH"]),
            level=AlertLevel.CRITICAL,
            message_template="{{eventType}} by {{userId}}",
        )

    @pytest.mark.asyncio
    async def test_matching_event_raises_alert(self, manager, high_security_rule, logger, metrics):
        """Test a matching event raises, logs and counts an alert."""
        manager.add_alert_rule(high_security_rule)
        event = await manager.log(
            event_type="PRIVILEGE_ESCALATION", category="SECURITY", severity="HIGH", user_id="mallory"
        )

        alerts = await manager.get_alerts()
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.acknowledged is False
        assert alert.event.id == event.id
        assert alert.message == "PRIVILEGE_ESCALATION by mallory"
        assert metrics.value("audit_alerts_triggered") == 1

        (warning,) = [e for e in logger.entries if e["level"] == "warning"]
        assert warning["message"] == "Audit alert triggered: high-security"
        assert warning["context"]["alert_id"] == alert.id
        assert warning["context"]["alert_level"] == "CRITICAL"
        assert warning["context"]["event_id"] == event.id

        assert await manager.acknowledge_alert(alert.id) is True
        (alert,) = await manager.get_alerts()
        assert alert.acknowledged is True
        assert await manager.get_alerts(acknowledged=False) == []

    @pytest.mark.asyncio
    async def test_non_matching_event(self, manager, high_security_rule):
        """Test non-matching events raise nothing."""
        manager.add_alert_rule(high_security_rule)
        await manager.log(category="SECURITY", severity="MEDIUM")
        assert await manager.get_alerts() == []

    @pytest.mark.asyncio
    async def test_alerting_disabled(self, manager, high_security_rule):
        """Test alerting can be disabled."""
        manager.add_alert_rule(high_security_rule)
        manager.update_policy(real_time_alerting=False)
        await manager.log(category="SECURITY", severity="HIGH")
        assert await manager.get_alerts() == []

    @pytest.mark.asyncio
    async def test_alert_sees_masked_event(self, manager):
        """Test alerts see the masked event."""
        manager.add_alert_rule(AuditAlertRule(name="all"))
        await manager.log(metadata={"password": "secret123"})
        (alert,) = await manager.get_alerts()
        assert alert.event.metadata == {"password": "se***23"}

    @pytest.mark.asyncio
    async def test_rule_registry(self, manager, high_security_rule):
        """Test the alert rule registry."""
        manager.add_alert_rule(high_security_rule)
        assert [r.name for r in manager.get_alert_rules()] == ["high-security"]
        assert manager.remove_alert_rule("high-security") is True
        assert manager.remove_alert_rule("high-security") is False
        assert manager.get_alert_rules() == []

    @pytest.mark.asyncio
    async def test_acknowledge_unknown_alert(self, manager):
        """Test acknowledging an unknown alert."""
        assert await manager.acknowledge_alert("alert_0_nope") is False

    @pytest.mark.asyncio
    async def test_rules_from_constructor(self, logger, metrics):
        """Test alert rules passed to the constructor."""
        manager = AuditManager(logger, metrics, alert_rules=[AuditAlertRule(name="all")])
        manager.log_sync()
        assert len(await manager.get_alerts(rule_name="all")) == 1
        await manager.destroy()

    @pytest.mark.asyncio
    async def test_alert_logging_failure_keeps_event(self, metrics, memory_store, caplog):
        """Test a failing logger cannot drop an event that raised an alert."""
        manager = AuditManager(
            RaisingWarningLogger(),
            metrics,
            AuditPolicy(flush_interval=60),
            stores=[memory_store],
            alert_rules=[AuditAlertRule(name="all")],
        )

        with caplog.at_level("ERROR", logger="fastaudit.audit.manager"):
            queued = await manager.log()
            direct = manager.log_sync()

        assert queued is not None and direct is not None
        assert manager.pending_count == 2
        assert len(await manager.get_alerts()) == 2
        assert "Failed to report audit alert" in caplog.text

        await manager.flush()
        assert memory_store.events == [queued, direct]
        await manager.destroy()


# =============================================================================
# READS
# =============================================================================


class TestReads:
    """query, count and export delegate to the first store."""

    @pytest.mark.asyncio
    async def test_reads_use_first_store_only(self, manager, memory_store, make_event):
        """Test reads use the first store only."""
        second = InMemoryAuditStore("second")
        manager.add_store(second)
        await second.store([make_event(user_id="only-in-second")])

        await manager.log(make_event(user_id="alice"))
        await manager.flush()

        assert [e.user_id for e in await manager.query()] == ["alice"]
        assert await manager.count() == 1
        assert await manager.count({"userIds": ["only-in-second"]}) == 0

    @pytest.mark.asyncio
    async def test_query_with_mapping_filter(self, manager, make_event):
        """Test querying with a mapping filter."""
        await manager.log(make_event(user_id="alice"))
        await manager.log(make_event(user_id="bob"))
        await manager.flush()

        result = await manager.query({"userIds": ["bob"], "orderDirection": "asc"})
        assert [e.user_id for e in result] == ["bob"]

    @pytest.mark.asyncio
    async def test_export(self, manager, make_event):
        """Test export through the manager."""
        await manager.log(make_event(id="audit_1_csv"))
        await manager.flush()

        output = await manager.export(AuditFilter(), "csv")
        assert output.splitlines()[1].startswith("audit_1_csv,")

    @pytest.mark.asyncio
    async def test_export_unknown_format(self, manager):
        """Test an unknown export format."""
        with pytest.raises(UnsupportedExportFormatError):
            await manager.export(AuditFilter(), "pdf")

    @pytest.mark.asyncio
    async def test_no_stores(self, logger, metrics):
        """Test reads without any store."""
        manager = AuditManager(logger, metrics)
        with pytest.raises(NoStoresAvailableError, match="query"):
            await manager.query()
        with pytest.raises(NoStoresAvailableError, match="count"):
            await manager.count()
        with pytest.raises(NoStoresAvailableError, match="export"):
            await manager.export()
        await manager.destroy()

    @pytest.mark.asyncio
    async def test_query_failure_reraised(self, logger, metrics):
        """Test read failures are logged and reraised."""
        manager = AuditManager(logger, metrics, stores=[BrokenReadStore("broken")])
        with pytest.raises(RuntimeError, match="read replica down"):
            await manager.query()
        assert metrics.value("audit_events_failed") == 1
        assert "Audit query failed" in logger.messages("error")
        await manager.destroy()


# =============================================================================
# POLICY, STORES, HEALTH, RETENTION
# =============================================================================


class TestPolicy:
    """Policy reads and updates."""

    @pytest.mark.asyncio
    async def test_get_policy_is_a_copy(self, manager):
        """Test get_policy returns a copy."""
        policy = manager.get_policy()
        policy.categories.clear()
        assert manager.get_policy().categories == set(AuditCategory)

    @pytest.mark.asyncio
    async def test_update_policy_merges(self, manager, logger):
        """Test policy updates are merged."""
        updated = manager.update_policy({"batch_size": 10}, retention_days=30)

        assert updated.batch_size == 10
        assert updated.retention_days == 30
        assert updated.flush_interval == 60

        (entry,) = [e for e in logger.entries if e["message"] == "Audit policy updated"]
        assert entry["context"]["old_policy"]["batch_size"] == 100
        assert entry["context"]["new_policy"]["batch_size"] == 10

    @pytest.mark.asyncio
    async def test_update_policy_rejects_unknown(self, manager):
        """Test unknown policy fields are rejected."""
        with pytest.raises(TypeError):
            manager.update_policy(bogus=1)

    @pytest.mark.asyncio
    async def test_constructor_policy_copied(self, logger, metrics):
        """Test the constructor copies the policy."""
        policy = AuditPolicy(batch_size=7)
        manager = AuditManager(logger, metrics, policy)
        policy.batch_size = 99
        assert manager.get_policy().batch_size == 7
        await manager.destroy()


class TestStoreRegistry:
    """Adding, replacing and removing stores."""

    @pytest.mark.asyncio
    async def test_replace_same_name(self, manager, memory_store, logger):
        """Test adding a store with the same name replaces it."""
        replacement = InMemoryAuditStore("memory")
        manager.add_store(replacement)

        assert manager.get_stores() == [replacement]
        assert "Audit store memory replaced" in logger.messages("info")

    @pytest.mark.asyncio
    async def test_remove_store(self, manager):
        """Test removing a store."""
        assert manager.remove_store("memory") is True
        assert manager.remove_store("memory") is False
        assert manager.get_stores() == []

    @pytest.mark.asyncio
    async def test_registration_order(self, manager, memory_store):
        """Test stores keep registration order."""
        extra = InMemoryAuditStore("extra")
        manager.add_store(extra)
        assert manager.get_stores() == [memory_store, extra]


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_reports_each_store(self, manager, logger):
        """Test health is reported per store."""
        manager.add_store(BrokenReadStore("broken"))

        health = await manager.health_check()

        assert health == {"memory": True, "broken": False}
        assert "Health check failed for audit store broken" in logger.messages("error")


class TestPurge:
    """Retention purges across stores."""

    @pytest.mark.asyncio
    async def test_default_cutoff_uses_retention(self, manager, memory_store, make_event):
        """Test the default purge cutoff uses retention_days."""
        await memory_store.store([
            make_event(id="audit_1_old", timestamp=datetime(2000, 1, 1, tzinfo=timezone.utc)),
            make_event(id="audit_2_new"),
        ])

        assert await manager.purge() == {"memory": 1}
        assert [e.id for e in memory_store.events] == ["audit_2_new"]

    @pytest.mark.asyncio
    async def test_explicit_cutoff(self, manager, memory_store, make_event):
        """Test an explicit purge cutoff."""
        await memory_store.store([make_event()])
        assert await manager.purge(datetime(2100, 1, 1)) == {"memory": 1}

    @pytest.mark.asyncio
    async def test_failing_store_left_out(self, manager, logger):
        """Test failing stores are left out of the purge result."""
        manager.add_store(BrokenReadStore("broken"))
        assert await manager.purge() == {"memory": 0}
        assert "Audit store broken failed to purge" in logger.messages("error")
        assert "Audit retention purge completed" in logger.messages("info")


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestLifecycle:
    """initialize, destroy and the async context manager."""

    @pytest.mark.asyncio
    async def test_initialize_in_order(self, logger, metrics):
        """Test stores initialize in registration order."""
        journal: list[str] = []
        manager = AuditManager(
            logger,
            metrics,
            stores=[TrackingStore("a", journal), TrackingStore("b", journal)],
        )
        await manager.initialize()

        assert journal == ["init:a", "init:b"]
        assert "Audit store a initialized" in logger.messages("info")
        await manager.destroy()

    @pytest.mark.asyncio
    async def test_initialize_fails_fast(self, logger, metrics):
        """Test initialize stops at the first failing store."""
        journal: list[str] = []
        manager = AuditManager(
            logger,
            metrics,
            stores=[
                TrackingStore("a", journal, fail_on={"initialize"}),
                TrackingStore("b", journal),
            ],
        )
        with pytest.raises(RuntimeError, match="a cannot start"):
            await manager.initialize()

        assert journal == ["init:a"]
        assert "Failed to initialize audit store a" in logger.messages("error")
        await manager.destroy()

    @pytest.mark.asyncio
    async def test_destroy_flushes_and_releases(self, logger, metrics):
        """Test destroy flushes and releases every store."""
        journal: list[str] = []
        store = TrackingStore("a", journal)
        manager = AuditManager(logger, metrics, stores=[store])
        await manager.log()

        await manager.destroy()

        assert len(store.events) == 1
        assert journal == ["destroy:a"]
        assert manager.is_destroyed
        assert manager.get_stores() == []

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, logger, metrics):
        """Test destroy can be called twice."""
        manager = AuditManager(logger, metrics)
        await manager.destroy()
        await manager.destroy()
        assert logger.messages().count("Audit manager destroyed") == 1

    @pytest.mark.asyncio
    async def test_destroy_failure_logged(self, logger, metrics):
        """Test store teardown failures are logged."""
        journal: list[str] = []
        manager = AuditManager(
            logger,
            metrics,
            stores=[TrackingStore("a", journal, fail_on={"destroy"}), TrackingStore("b", journal)],
        )
        await manager.destroy()

        assert journal == ["destroy:a", "destroy:b"]
        assert "Failed to destroy audit store a" in logger.messages("error")

    @pytest.mark.asyncio
    async def test_operations_after_destroy(self, logger, metrics, memory_store):
        """Test operations after destroy are rejected."""
        manager = AuditManager(logger, metrics, stores=[memory_store])
        await manager.destroy()

        with pytest.raises(ManagerDestroyedError):
            await manager.log()
        with pytest.raises(ManagerDestroyedError):
            manager.log_sync()
        with pytest.raises(ManagerDestroyedError):
            await manager.query()
        with pytest.raises(ManagerDestroyedError):
            await manager.purge()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, logger, metrics, memory_store):
        """Test the async context manager."""
        async with AuditManager(logger, metrics, stores=[memory_store]) as manager:
            await manager.log()
            assert memory_store.events == []

        assert manager.is_destroyed
        assert len(memory_store.events) == 1

    def test_construct_without_running_loop(self, logger, metrics, memory_store):
        """Test constructing without a running loop."""
        manager = AuditManager(logger, metrics, stores=[memory_store])
        event = manager.log_sync(event_type="EARLY")
        assert manager.pending_count == 1

        async def finish():
            await manager.destroy()

        asyncio.run(finish())
        assert memory_store.events == [event]
