"""Fraud alert pipeline: creation, fraud-team notification, and review workflow."""

import asyncio
import uuid
from datetime import UTC, datetime
from typing import Any

import structlog

from .errors import AlertNotFoundError, AlertPersistenceError, InvalidAlertTransitionError
from .models import (
    TERMINAL_ALERT_STATUSES,
    AlertStatus,
    AlertType,
    FraudAlert,
    FraudFactor,
    Severity,
)
from .stores import AlertSink, AlertStore, AuditSink

logger = structlog.get_logger()

NOTIFY_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})


class AlertManager:
    """Persists fraud alerts and notifies the fraud team for high/critical ones."""

    def __init__(
        self,
        store: AlertStore,
        notifier: AlertSink | None = None,
        audit: AuditSink | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._audit = audit
        # Strong references to in-flight notifications
        self._pending: set[asyncio.Task] = set()

    async def create_alert(
        self,
        customer_id: str,
        order_id: str | None,
        alert_type: AlertType,
        severity: Severity,
        score: float,
        factors: list[FraudFactor],
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> FraudAlert:
        """Build and persist an alert.

        Raises AlertPersistenceError (carrying the built alert) when the store
        fails. High and critical alerts are handed to the notifier in a
        background task, so a slow sink never holds up the decision;
        notification failures are logged and audited there.
        """
        now = datetime.now(UTC)
        alert = FraudAlert(
            id=str(uuid.uuid4()),
            customer_id=customer_id,
            order_id=order_id,
            type=alert_type,
            severity=severity,
            score=score,
            factors=list(factors),
            status=AlertStatus.PENDING,
            description=description,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )

        try:
            await self._store.save(alert)
        except Exception as exc:
            logger.exception(
                "fraud_alert_persist_failed",
                alert_id=alert.id,
                customer_id=customer_id,
                order_id=order_id,
                alert_type=alert_type.value,
            )
            raise AlertPersistenceError(alert) from exc

        logger.warning(
            "fraud_alert_created",
            alert_id=alert.id,
            customer_id=customer_id,
            order_id=order_id,
            alert_type=alert_type.value,
            severity=severity.value,
            score=score,
        )

        if severity in NOTIFY_SEVERITIES:
            self._schedule_notification(alert)

        return alert

    async def list_alerts(
        self,
        status: AlertStatus | None = None,
        severity: Severity | None = None,
        limit: int = 100,
    ) -> list[FraudAlert]:
        """Alerts for the review dashboard, newest first."""
        return await self._store.list(status=status, severity=severity, limit=limit)

    async def update_status(
        self,
        alert_id: str,
        status: AlertStatus,
        reviewed_by: str,
        resolution: str | None = None,
    ) -> FraudAlert:
        """Move an alert through the human-review workflow.

        Resolved and false-positive alerts are final.
        """
        alert = await self._store.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        if alert.status in TERMINAL_ALERT_STATUSES:
            raise InvalidAlertTransitionError(alert_id, alert.status, status)

        now = datetime.now(UTC)
        updated = alert.model_copy(
            update={
                "status": status,
                "reviewed_by": reviewed_by,
                "reviewed_at": now,
                "resolution": resolution,
                "updated_at": now,
            }
        )
        await self._store.update(updated)

        logger.info(
            "fraud_alert_updated",
            alert_id=alert_id,
            previous_status=alert.status.value,
            status=status.value,
            reviewed_by=reviewed_by,
        )
        await self._log_audit(
            "fraud_alert_updated",
            {
                "alert_id": alert_id,
                "status": status.value,
                "reviewed_by": reviewed_by,
                "resolution": resolution,
            },
        )
        return updated

    @property
    def pending_notifications(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight notifications. Called on shutdown and by tests.

        Notifications still running after ``timeout`` seconds are cancelled.
        """
        if not self._pending:
            return
        tasks = list(self._pending)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    def _schedule_notification(self, alert: FraudAlert) -> None:
        if self._notifier is None:
            logger.debug("alert_notifier_not_configured", alert_id=alert.id)
            return
        # Delivery runs off the decision path; failures are handled inside the task
        task = asyncio.create_task(self._notify_fraud_team(alert))
        self._pending.add(task)
        task.add_done_callback(lambda t: self._notification_done(t, alert))

    def _notification_done(self, task: asyncio.Task, alert: FraudAlert) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("fraud_notification_cancelled", alert_id=alert.id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "fraud_notification_failed", alert_id=alert.id, error=str(exc), exc_info=exc
            )

    async def _notify_fraud_team(self, alert: FraudAlert) -> None:
        try:
            await self._notifier.notify(alert)
        except Exception as exc:
            logger.exception(
                "fraud_notification_failed", alert_id=alert.id, severity=alert.severity.value
            )
            await self._log_audit(
                "fraud_notification_failed",
                {"alert_id": alert.id, "error": str(exc)},
                success=False,
            )
            return

        await self._log_audit(
            "fraud_team_notified",
            {"alert_id": alert.id, "severity": alert.severity.value, "type": alert.type.value},
        )

    async def _log_audit(self, event_name: str, payload: dict[str, Any], success: bool = True) -> None:
        if self._audit is None:
            return
        try:
            await self._audit.log(event_name, payload, success)
        except Exception:
            logger.exception("audit_log_failed", audit_event=event_name)
