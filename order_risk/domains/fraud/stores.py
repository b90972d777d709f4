"""Collaborator capabilities consumed by the engine, plus in-memory implementations.

The abstract classes are the seams the host application implements. The
in-memory versions back the default service configuration and the tests.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import structlog

from .models import (
    AlertStatus,
    BlacklistEntry,
    BlacklistType,
    CardClassification,
    DeviceFingerprint,
    FraudAlert,
    HistoricalOrder,
    ProfileUpdate,
    RiskProfile,
    Severity,
)

logger = structlog.get_logger()


def normalize_identifier(entry_type: BlacklistType, value: str) -> str:
    value = value.strip()
    if entry_type == BlacklistType.EMAIL:
        return value.lower()
    return value


def merge_profile(
    customer_id: str, existing: RiskProfile | None, update: ProfileUpdate
) -> RiskProfile:
    """Fold one analysis into a profile. Counters accumulate, the score is replaced."""
    order_count = (existing.order_count if existing else 0) + 1
    total_spent = (existing.total_spent if existing else 0.0) + update.order_amount
    suspicious = (existing.suspicious_activity_count if existing else 0) + int(update.suspicious)
    return RiskProfile(
        customer_id=customer_id,
        risk_score=update.risk_score,
        risk_level=update.risk_level,
        subscores=update.subscores,
        last_updated=update.analyzed_at,
        order_count=order_count,
        total_spent=total_spent,
        average_order_value=total_spent / order_count,
        suspicious_activity_count=suspicious,
    )


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


class OrderHistoryLookup(ABC):
    @abstractmethod
    async def recent_orders(
        self, customer_id: str, window_start: datetime
    ) -> list[HistoricalOrder]:
        """Orders placed by the customer at or after window_start."""
        ...


class RiskProfileStore(ABC):
    @abstractmethod
    async def get(self, customer_id: str) -> RiskProfile | None: ...

    @abstractmethod
    async def put(self, profile: RiskProfile) -> None: ...

    @abstractmethod
    async def apply_analysis(self, customer_id: str, update: ProfileUpdate) -> RiskProfile:
        """Atomically merge an analysis into the customer's profile.

        Implementations must never lose counter increments when two analyses
        for the same customer run concurrently.
        """
        ...


class DeviceTrustRegistry(ABC):
    @abstractmethod
    async def get(self, fingerprint_id: str) -> DeviceFingerprint | None: ...

    @abstractmethod
    async def put(self, device: DeviceFingerprint) -> None: ...

    @abstractmethod
    async def touch(
        self, fingerprint_id: str, last_seen: datetime, trust_score: float | None = None
    ) -> None: ...


class BlacklistRegistry(ABC):
    @abstractmethod
    async def find(self, entry_type: BlacklistType, value: str) -> BlacklistEntry | None:
        """Return an active entry for (type, value), expired or not."""
        ...

    @abstractmethod
    async def add(self, entry: BlacklistEntry) -> None: ...

    @abstractmethod
    async def deactivate(self, entry_id: str) -> None: ...


class AlertStore(ABC):
    @abstractmethod
    async def save(self, alert: FraudAlert) -> None: ...

    @abstractmethod
    async def get(self, alert_id: str) -> FraudAlert | None: ...

    @abstractmethod
    async def list(
        self,
        status: AlertStatus | None = None,
        severity: Severity | None = None,
        limit: int = 100,
    ) -> list[FraudAlert]: ...

    @abstractmethod
    async def update(self, alert: FraudAlert) -> None: ...


class AlertSink(ABC):
    @abstractmethod
    async def notify(self, alert: FraudAlert) -> None: ...


class AuditSink(ABC):
    @abstractmethod
    async def log(self, event_name: str, payload: dict[str, Any], success: bool = True) -> None: ...


class BinLookup(ABC):
    @abstractmethod
    async def classify(self, card_bin: str) -> CardClassification | None: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemoryOrderHistory(OrderHistoryLookup):
    def __init__(self, orders: list[HistoricalOrder] | None = None) -> None:
        self._orders: list[HistoricalOrder] = list(orders or [])

    def add(self, order: HistoricalOrder) -> None:
        self._orders.append(order)

    def prune(self, before: datetime) -> int:
        """Drop orders created before ``before``; returns how many were dropped."""
        kept = [o for o in self._orders if o.created_at >= before]
        dropped = len(self._orders) - len(kept)
        self._orders = kept
        return dropped

    async def recent_orders(
        self, customer_id: str, window_start: datetime
    ) -> list[HistoricalOrder]:
        return [
            o for o in self._orders if o.customer_id == customer_id and o.created_at >= window_start
        ]


class InMemoryRiskProfileStore(RiskProfileStore):
    """Profiles keyed by customer.

    Read-modify-write is serialized per customer through a fixed pool of lock
    stripes, so memory does not grow with the number of customers seen.
    """

    LOCK_STRIPES = 64

    def __init__(self, lock_stripes: int = LOCK_STRIPES) -> None:
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be at least 1")
        self._profiles: dict[str, RiskProfile] = {}
        self._locks: tuple[asyncio.Lock, ...] = tuple(asyncio.Lock() for _ in range(lock_stripes))

    def _lock_for(self, customer_id: str) -> asyncio.Lock:
        return self._locks[hash(customer_id) % len(self._locks)]

    async def get(self, customer_id: str) -> RiskProfile | None:
        profile = self._profiles.get(customer_id)
        return profile.model_copy(deep=True) if profile else None

    async def put(self, profile: RiskProfile) -> None:
        async with self._lock_for(profile.customer_id):
            self._profiles[profile.customer_id] = profile.model_copy(deep=True)

    async def apply_analysis(self, customer_id: str, update: ProfileUpdate) -> RiskProfile:
        async with self._lock_for(customer_id):
            merged = merge_profile(customer_id, self._profiles.get(customer_id), update)
            self._profiles[customer_id] = merged
            return merged.model_copy(deep=True)


class InMemoryDeviceTrustRegistry(DeviceTrustRegistry):
    def __init__(self) -> None:
        self._devices: dict[str, DeviceFingerprint] = {}

    async def get(self, fingerprint_id: str) -> DeviceFingerprint | None:
        device = self._devices.get(fingerprint_id)
        return device.model_copy() if device else None

    async def put(self, device: DeviceFingerprint) -> None:
        self._devices[device.id] = device.model_copy()

    async def touch(
        self, fingerprint_id: str, last_seen: datetime, trust_score: float | None = None
    ) -> None:
        device = self._devices.get(fingerprint_id)
        if device is None:
            return
        updates: dict[str, Any] = {"last_seen": last_seen}
        if trust_score is not None:
            updates["trust_score"] = trust_score
        self._devices[fingerprint_id] = device.model_copy(update=updates)


class InMemoryBlacklistRegistry(BlacklistRegistry):
    def __init__(self) -> None:
        self._entries: dict[str, BlacklistEntry] = {}

    async def find(self, entry_type: BlacklistType, value: str) -> BlacklistEntry | None:
        needle = normalize_identifier(entry_type, value)
        for entry in self._entries.values():
            if (
                entry.is_active
                and entry.type == entry_type
                and normalize_identifier(entry.type, entry.value) == needle
            ):
                return entry.model_copy()
        return None

    async def add(self, entry: BlacklistEntry) -> None:
        self._entries[entry.id] = entry.model_copy()

    async def deactivate(self, entry_id: str) -> None:
        entry = self._entries.get(entry_id)
        if entry is not None:
            self._entries[entry_id] = entry.model_copy(update={"is_active": False})

    def entry(self, entry_id: str) -> BlacklistEntry | None:
        return self._entries.get(entry_id)


class InMemoryAlertStore(AlertStore):
    def __init__(self) -> None:
        self._alerts: dict[str, FraudAlert] = {}

    async def save(self, alert: FraudAlert) -> None:
        self._alerts[alert.id] = alert.model_copy(deep=True)

    async def get(self, alert_id: str) -> FraudAlert | None:
        alert = self._alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert else None

    async def list(
        self,
        status: AlertStatus | None = None,
        severity: Severity | None = None,
        limit: int = 100,
    ) -> list[FraudAlert]:
        alerts = [
            a
            for a in self._alerts.values()
            if (status is None or a.status == status)
            and (severity is None or a.severity == severity)
        ]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return [a.model_copy(deep=True) for a in alerts[:limit]]

    async def update(self, alert: FraudAlert) -> None:
        self._alerts[alert.id] = alert.model_copy(deep=True)


class InMemoryAuditSink(AuditSink):
    """Keeps audit events in a list, newest last."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any], bool]] = []

    async def log(self, event_name: str, payload: dict[str, Any], success: bool = True) -> None:
        self.events.append((event_name, payload, success))

    def names(self) -> list[str]:
        return [name for name, _, _ in self.events]


class StructlogAuditSink(AuditSink):
    async def log(self, event_name: str, payload: dict[str, Any], success: bool = True) -> None:
        logger.info("audit_event", audit_event=event_name, success=success, payload=payload)


class LoggingAlertSink(AlertSink):
    async def notify(self, alert: FraudAlert) -> None:
        logger.warning(
            "fraud_team_notification",
            alert_id=alert.id,
            customer_id=alert.customer_id,
            order_id=alert.order_id,
            alert_type=alert.type.value,
            severity=alert.severity.value,
            score=alert.score,
        )
