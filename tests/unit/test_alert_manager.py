"""Unit tests for the fraud alert pipeline."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from order_risk.domains.fraud.alerts import AlertManager
from order_risk.domains.fraud.errors import (
    AlertNotFoundError,
    AlertPersistenceError,
    InvalidAlertTransitionError,
)
from order_risk.domains.fraud.models import AlertStatus, AlertType, FraudFactor, Severity
from order_risk.domains.fraud.stores import InMemoryAlertStore, InMemoryAuditSink

FACTORS = [FraudFactor(kind="high_frequency", description="7 orders in 24 hours", weight=30)]


async def _create(manager: AlertManager, severity: Severity = Severity.HIGH, **kwargs):
    defaults = {
        "customer_id": "cust-1",
        "order_id": "ord-1",
        "alert_type": AlertType.VELOCITY_CHECK,
        "severity": severity,
        "score": 85.0,
        "factors": FACTORS,
        "description": "Suspicious order velocity detected",
    }
    defaults.update(kwargs)
    return await manager.create_alert(**defaults)


class TestCreateAlert:
    @pytest.mark.asyncio
    async def test_persists_pending_alert(self):
        store = InMemoryAlertStore()
        alert = await _create(AlertManager(store))
        assert alert.status == AlertStatus.PENDING
        assert alert.factors == FACTORS
        assert await store.get(alert.id) == alert

    @pytest.mark.asyncio
    async def test_ids_are_unique(self):
        manager = AlertManager(InMemoryAlertStore())
        first = await _create(manager)
        second = await _create(manager)
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_high_severity_notifies(self):
        notifier = AsyncMock()
        audit = InMemoryAuditSink()
        manager = AlertManager(InMemoryAlertStore(), notifier=notifier, audit=audit)
        alert = await _create(manager, Severity.HIGH)
        await manager.drain()
        notifier.notify.assert_awaited_once_with(alert)
        assert audit.names() == ["fraud_team_notified"]

    @pytest.mark.asyncio
    async def test_critical_severity_notifies(self):
        notifier = AsyncMock()
        manager = AlertManager(InMemoryAlertStore(), notifier=notifier)
        await _create(manager, Severity.CRITICAL)
        await manager.drain()
        notifier.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_medium_severity_does_not_notify(self):
        notifier = AsyncMock()
        await _create(AlertManager(InMemoryAlertStore(), notifier=notifier), Severity.MEDIUM)
        notifier.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_notification_failure_is_not_fatal(self):
        notifier = AsyncMock()
        notifier.notify.side_effect = ConnectionError("kafka down")
        audit = InMemoryAuditSink()
        store = InMemoryAlertStore()
        manager = AlertManager(store, notifier=notifier, audit=audit)

        alert = await _create(manager, Severity.CRITICAL)

        await manager.drain()
        assert await store.get(alert.id) is not None
        name, payload, success = audit.events[-1]
        assert name == "fraud_notification_failed"
        assert payload["alert_id"] == alert.id
        assert success is False

    @pytest.mark.asyncio
    async def test_store_failure_raises_with_alert(self):
        store = AsyncMock()
        store.save.side_effect = ConnectionError("db down")
        notifier = AsyncMock()
        manager = AlertManager(store, notifier=notifier)

        with pytest.raises(AlertPersistenceError) as exc_info:
            await _create(manager)

        assert exc_info.value.alert.customer_id == "cust-1"
        notifier.notify.assert_not_called()

    @pytest.mark.asyncio
    async def test_audit_failure_swallowed(self):
        audit = AsyncMock()
        audit.log.side_effect = RuntimeError("audit down")
        manager = AlertManager(InMemoryAlertStore(), notifier=AsyncMock(), audit=audit)
        alert = await _create(manager)
        await manager.drain()
        assert alert.id

    @pytest.mark.asyncio
    async def test_slow_notifier_does_not_hold_up_creation(self):
        release = asyncio.Event()

        async def hang(alert):
            await release.wait()

        notifier = AsyncMock()
        notifier.notify.side_effect = hang
        audit = InMemoryAuditSink()
        manager = AlertManager(InMemoryAlertStore(), notifier=notifier, audit=audit)

        alert = await asyncio.wait_for(_create(manager, Severity.CRITICAL), timeout=1)

        assert alert.status == AlertStatus.PENDING
        assert manager.pending_notifications == 1
        assert audit.names() == []

        release.set()
        await manager.drain()
        assert manager.pending_notifications == 0
        assert audit.names() == ["fraud_team_notified"]

    @pytest.mark.asyncio
    async def test_drain_cancels_notifications_past_timeout(self):
        async def hang(alert):
            await asyncio.sleep(30)

        notifier = AsyncMock()
        notifier.notify.side_effect = hang
        manager = AlertManager(InMemoryAlertStore(), notifier=notifier)
        await _create(manager, Severity.HIGH)

        await asyncio.wait_for(manager.drain(timeout=0.05), timeout=2)

        assert manager.pending_notifications == 0


class TestAlertReview:
    @pytest.mark.asyncio
    async def test_list_filters_by_status_and_severity(self):
        manager = AlertManager(InMemoryAlertStore())
        high = await _create(manager, Severity.HIGH)
        await _create(manager, Severity.MEDIUM)
        await manager.update_status(high.id, AlertStatus.INVESTIGATING, reviewed_by="analyst-1")

        investigating = await manager.list_alerts(status=AlertStatus.INVESTIGATING)
        assert [a.id for a in investigating] == [high.id]
        medium = await manager.list_alerts(severity=Severity.MEDIUM)
        assert len(medium) == 1
        assert len(await manager.list_alerts(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_update_records_reviewer(self):
        audit = InMemoryAuditSink()
        manager = AlertManager(InMemoryAlertStore(), audit=audit)
        alert = await _create(manager, Severity.MEDIUM)

        updated = await manager.update_status(
            alert.id, AlertStatus.RESOLVED, reviewed_by="analyst-1", resolution="confirmed fraud"
        )

        assert updated.status == AlertStatus.RESOLVED
        assert updated.reviewed_by == "analyst-1"
        assert updated.reviewed_at is not None
        assert updated.resolution == "confirmed fraud"
        assert "fraud_alert_updated" in audit.names()

    @pytest.mark.asyncio
    async def test_unknown_alert(self):
        manager = AlertManager(InMemoryAlertStore())
        with pytest.raises(AlertNotFoundError):
            await manager.update_status("missing", AlertStatus.RESOLVED, reviewed_by="analyst-1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", [AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE])
    async def test_terminal_states_are_final(self, terminal):
        manager = AlertManager(InMemoryAlertStore())
        alert = await _create(manager, Severity.MEDIUM)
        await manager.update_status(alert.id, terminal, reviewed_by="analyst-1")

        with pytest.raises(InvalidAlertTransitionError):
            await manager.update_status(alert.id, AlertStatus.PENDING, reviewed_by="analyst-2")
