"""Engine wiring shared by the FastAPI routes."""

from dataclasses import dataclass
from datetime import timedelta

from fastapi import Request

from order_risk.domains.fraud.aggregator import RiskAggregator
from order_risk.domains.fraud.alerts import AlertManager
from order_risk.domains.fraud.blacklist import BlacklistAdmin
from order_risk.domains.fraud.config import FraudConfig, default_config
from order_risk.domains.fraud.models import AnalysisResult, HistoricalOrder, OrderContext
from order_risk.domains.fraud.stores import (
    AlertSink,
    AlertStore,
    AuditSink,
    BinLookup,
    BlacklistRegistry,
    DeviceTrustRegistry,
    InMemoryAlertStore,
    InMemoryBlacklistRegistry,
    InMemoryDeviceTrustRegistry,
    InMemoryOrderHistory,
    InMemoryRiskProfileStore,
    OrderHistoryLookup,
    RiskProfileStore,
    StructlogAuditSink,
)


@dataclass
class FraudEngine:
    aggregator: RiskAggregator
    alerts: AlertManager
    blacklist: BlacklistAdmin
    # Set when the engine owns order history rather than reading the host's
    order_log: InMemoryOrderHistory | None = None

    @property
    def config(self) -> FraudConfig:
        return self.aggregator.config

    async def analyze(self, order: OrderContext) -> AnalysisResult:
        """Score an order and, with an engine-owned order log, record it for velocity checks."""
        result = await self.aggregator.analyze_order(order)
        if self.order_log is not None:
            placed_at = order.placed_at or result.analyzed_at
            self.order_log.add(
                HistoricalOrder(
                    order_id=order.order_id,
                    customer_id=order.customer_id,
                    amount=order.amount,
                    created_at=placed_at,
                )
            )
            # Never prune past wall-clock time on account of a future-dated order
            newest = min(placed_at, result.analyzed_at)
            self.order_log.prune(newest - timedelta(hours=self.config.velocity.window_hours))
        return result


def build_engine(
    *,
    order_history: OrderHistoryLookup,
    profiles: RiskProfileStore,
    devices: DeviceTrustRegistry,
    blacklist: BlacklistRegistry,
    alert_store: AlertStore,
    notifier: AlertSink | None = None,
    audit: AuditSink | None = None,
    bin_lookup: BinLookup | None = None,
    config: FraudConfig | None = None,
) -> FraudEngine:
    audit = audit or StructlogAuditSink()
    alert_manager = AlertManager(alert_store, notifier=notifier, audit=audit)
    aggregator = RiskAggregator(
        order_history=order_history,
        profiles=profiles,
        devices=devices,
        blacklist=blacklist,
        alert_manager=alert_manager,
        audit=audit,
        bin_lookup=bin_lookup,
        config=config or default_config,
    )
    return FraudEngine(
        aggregator=aggregator,
        alerts=alert_manager,
        blacklist=BlacklistAdmin(blacklist, audit=audit),
    )


def build_memory_engine(
    config: FraudConfig | None = None,
    notifier: AlertSink | None = None,
    audit: AuditSink | None = None,
) -> FraudEngine:
    """Engine with all state held in-process. Used for local runs and tests.

    Analyzed orders are recorded in the engine's own order log, which is what
    the velocity detector reads.
    """
    order_log = InMemoryOrderHistory()
    engine = build_engine(
        order_history=order_log,
        profiles=InMemoryRiskProfileStore(),
        devices=InMemoryDeviceTrustRegistry(),
        blacklist=InMemoryBlacklistRegistry(),
        alert_store=InMemoryAlertStore(),
        notifier=notifier,
        audit=audit,
        config=config,
    )
    engine.order_log = order_log
    return engine


def build_sql_engine(
    session_factory,
    config: FraudConfig | None = None,
    notifier: AlertSink | None = None,
) -> FraudEngine:
    from order_risk.domains.fraud.repositories import (
        SqlAlertStore,
        SqlBlacklistRegistry,
        SqlDeviceTrustRegistry,
        SqlOrderHistory,
        SqlRiskProfileStore,
    )

    return build_engine(
        order_history=SqlOrderHistory(session_factory),
        profiles=SqlRiskProfileStore(session_factory),
        devices=SqlDeviceTrustRegistry(session_factory),
        blacklist=SqlBlacklistRegistry(session_factory),
        alert_store=SqlAlertStore(session_factory),
        notifier=notifier,
        config=config,
    )


def get_engine(request: Request) -> FraudEngine:
    return request.app.state.fraud_engine
