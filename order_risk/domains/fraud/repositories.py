"""SQLAlchemy-backed implementations of the engine's persistence capabilities.

Each repository owns short-lived sessions from an async_sessionmaker so it can
be shared across concurrent analyses.
"""

from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy import update as sql_update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_risk.db.models import (
    BlacklistEntryDB,
    DeviceFingerprintDB,
    FraudAlertDB,
    OrderRecordDB,
    RiskProfileDB,
)

from .models import (
    AlertStatus,
    BlacklistEntry,
    BlacklistType,
    DeviceFingerprint,
    FraudAlert,
    HistoricalOrder,
    ProfileUpdate,
    RiskProfile,
    Severity,
)
from .stores import (
    AlertStore,
    BlacklistRegistry,
    DeviceTrustRegistry,
    OrderHistoryLookup,
    RiskProfileStore,
    normalize_identifier,
)

logger = structlog.get_logger()

SessionFactory = async_sessionmaker[AsyncSession]


def _profile_from_row(row) -> RiskProfile:
    return RiskProfile(
        customer_id=row["customer_id"],
        risk_score=row["risk_score"],
        risk_level=row["risk_level"],
        subscores=row["subscores"] or {},
        last_updated=row["last_updated"],
        order_count=row["order_count"],
        total_spent=row["total_spent"],
        average_order_value=row["average_order_value"],
        suspicious_activity_count=row["suspicious_activity_count"],
    )


def _alert_from_db(row: FraudAlertDB) -> FraudAlert:
    return FraudAlert(
        id=row.id,
        customer_id=row.customer_id,
        order_id=row.order_id,
        type=row.type,
        severity=row.severity,
        score=row.score,
        factors=row.factors or [],
        status=row.status,
        description=row.description,
        metadata=row.alert_metadata or {},
        created_at=row.created_at,
        updated_at=row.updated_at,
        reviewed_by=row.reviewed_by,
        reviewed_at=row.reviewed_at,
        resolution=row.resolution,
    )


class SqlOrderHistory(OrderHistoryLookup):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def recent_orders(
        self, customer_id: str, window_start: datetime
    ) -> list[HistoricalOrder]:
        stmt = select(OrderRecordDB).where(
            OrderRecordDB.customer_id == customer_id,
            OrderRecordDB.created_at >= window_start,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [
            HistoricalOrder(
                order_id=r.order_id,
                customer_id=r.customer_id,
                amount=r.amount,
                created_at=r.created_at,
            )
            for r in rows
        ]


class SqlRiskProfileStore(RiskProfileStore):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, customer_id: str) -> RiskProfile | None:
        table = RiskProfileDB.__table__
        stmt = select(table).where(table.c.customer_id == customer_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.mappings().one_or_none()
        return _profile_from_row(row) if row is not None else None

    async def put(self, profile: RiskProfile) -> None:
        values = profile.model_dump(mode="json")
        values["last_updated"] = profile.last_updated
        stmt = pg_insert(RiskProfileDB).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[RiskProfileDB.__table__.c.customer_id],
            set_={k: stmt.excluded[k] for k in values if k != "customer_id"},
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    async def apply_analysis(self, customer_id: str, update: ProfileUpdate) -> RiskProfile:
        """Single-statement upsert; counters are incremented by the database."""
        table = RiskProfileDB.__table__
        suspicious = int(update.suspicious)
        stmt = pg_insert(RiskProfileDB).values(
            customer_id=customer_id,
            risk_score=update.risk_score,
            risk_level=update.risk_level.value,
            subscores=update.subscores.model_dump(),
            last_updated=update.analyzed_at,
            order_count=1,
            total_spent=update.order_amount,
            average_order_value=update.order_amount,
            suspicious_activity_count=suspicious,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.customer_id],
            set_={
                "risk_score": excluded.risk_score,
                "risk_level": excluded.risk_level,
                "subscores": excluded.subscores,
                "last_updated": excluded.last_updated,
                "order_count": table.c.order_count + 1,
                "total_spent": table.c.total_spent + excluded.total_spent,
                "average_order_value": (table.c.total_spent + excluded.total_spent)
                / (table.c.order_count + 1),
                "suspicious_activity_count": table.c.suspicious_activity_count
                + excluded.suspicious_activity_count,
            },
        ).returning(*table.c)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.mappings().one()
            await session.commit()

        profile = _profile_from_row(row)
        logger.debug(
            "risk_profile_merged",
            customer_id=customer_id,
            order_count=profile.order_count,
            suspicious_activity_count=profile.suspicious_activity_count,
        )
        return profile


class SqlDeviceTrustRegistry(DeviceTrustRegistry):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, fingerprint_id: str) -> DeviceFingerprint | None:
        async with self._session_factory() as session:
            row = await session.get(DeviceFingerprintDB, fingerprint_id)
        if row is None:
            return None
        return DeviceFingerprint.model_validate(row, from_attributes=True)

    async def put(self, device: DeviceFingerprint) -> None:
        async with self._session_factory() as session:
            await session.merge(DeviceFingerprintDB(**device.model_dump()))
            await session.commit()

    async def touch(
        self, fingerprint_id: str, last_seen: datetime, trust_score: float | None = None
    ) -> None:
        values: dict = {"last_seen": last_seen}
        if trust_score is not None:
            values["trust_score"] = trust_score
        stmt = (
            sql_update(DeviceFingerprintDB)
            .where(DeviceFingerprintDB.id == fingerprint_id)
            .values(**values)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()


class SqlBlacklistRegistry(BlacklistRegistry):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def find(self, entry_type: BlacklistType, value: str) -> BlacklistEntry | None:
        stmt = (
            select(BlacklistEntryDB)
            .where(
                BlacklistEntryDB.type == entry_type.value,
                BlacklistEntryDB.value == normalize_identifier(entry_type, value),
                BlacklistEntryDB.is_active.is_(True),
            )
            .order_by(BlacklistEntryDB.added_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return BlacklistEntry.model_validate(row, from_attributes=True)

    async def add(self, entry: BlacklistEntry) -> None:
        async with self._session_factory() as session:
            session.add(
                BlacklistEntryDB(
                    **entry.model_dump(exclude={"type", "severity"}),
                    type=entry.type.value,
                    severity=entry.severity.value,
                )
            )
            await session.commit()

    async def deactivate(self, entry_id: str) -> None:
        stmt = (
            sql_update(BlacklistEntryDB)
            .where(BlacklistEntryDB.id == entry_id)
            .values(is_active=False)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()


class SqlAlertStore(AlertStore):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _to_db(alert: FraudAlert) -> FraudAlertDB:
        return FraudAlertDB(
            id=alert.id,
            customer_id=alert.customer_id,
            order_id=alert.order_id,
            type=alert.type.value,
            severity=alert.severity.value,
            score=alert.score,
            factors=[f.model_dump(mode="json") for f in alert.factors],
            status=alert.status.value,
            description=alert.description,
            alert_metadata=alert.metadata,
            created_at=alert.created_at,
            updated_at=alert.updated_at,
            reviewed_by=alert.reviewed_by,
            reviewed_at=alert.reviewed_at,
            resolution=alert.resolution,
        )

    async def save(self, alert: FraudAlert) -> None:
        async with self._session_factory() as session:
            session.add(self._to_db(alert))
            await session.commit()

    async def get(self, alert_id: str) -> FraudAlert | None:
        async with self._session_factory() as session:
            row = await session.get(FraudAlertDB, alert_id)
        return _alert_from_db(row) if row is not None else None

    async def list(
        self,
        status: AlertStatus | None = None,
        severity: Severity | None = None,
        limit: int = 100,
    ) -> list[FraudAlert]:
        stmt = select(FraudAlertDB)
        if status:
            stmt = stmt.where(FraudAlertDB.status == status.value)
        if severity:
            stmt = stmt.where(FraudAlertDB.severity == severity.value)
        stmt = stmt.order_by(FraudAlertDB.created_at.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [_alert_from_db(r) for r in rows]

    async def update(self, alert: FraudAlert) -> None:
        stmt = (
            sql_update(FraudAlertDB)
            .where(FraudAlertDB.id == alert.id)
            .values(
                status=alert.status.value,
                reviewed_by=alert.reviewed_by,
                reviewed_at=alert.reviewed_at,
                resolution=alert.resolution,
                updated_at=alert.updated_at,
            )
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()
