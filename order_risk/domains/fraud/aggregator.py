"""Order risk aggregation: detectors -> score -> level -> alerts -> profile -> decision."""

import asyncio
from datetime import UTC, datetime
from typing import Any

import structlog

from .alerts import AlertManager
from .config import FraudConfig, RiskLevelThresholds, default_config
from .detectors import (
    AddressMismatchDetector,
    BehaviorAnalyzer,
    BlacklistMatcher,
    Detector,
    DeviceFingerprintAnalyzer,
    PaymentAnomalyDetector,
    VelocityDetector,
)
from .errors import AlertPersistenceError
from .models import (
    AnalysisResult,
    DetectorCategory,
    DetectorResult,
    FraudAlert,
    OrderContext,
    ProfileUpdate,
    RiskLevel,
    RiskProfile,
    RiskSubscores,
    Severity,
)
from .stores import (
    AuditSink,
    BinLookup,
    BlacklistRegistry,
    DeviceTrustRegistry,
    OrderHistoryLookup,
    RiskProfileStore,
)

logger = structlog.get_logger()

PARTIAL_ANALYSIS_RECOMMENDATION = "Manual review required: partial analysis"

_SUBSCORE_FIELDS = {
    DetectorCategory.VELOCITY: "velocity",
    DetectorCategory.ADDRESS: "location",
    DetectorCategory.DEVICE: "device",
    DetectorCategory.BEHAVIOR: "behavior",
    DetectorCategory.PAYMENT: "payment",
}

_CATEGORY_RECOMMENDATIONS = [
    (DetectorCategory.VELOCITY, "Implement velocity limits"),
    (DetectorCategory.DEVICE, "Verify device ownership"),
    (DetectorCategory.ADDRESS, "Verify shipping address"),
]


def classify_risk_level(score: float, thresholds: RiskLevelThresholds) -> RiskLevel:
    if score >= thresholds.critical:
        return RiskLevel.CRITICAL
    if score >= thresholds.high:
        return RiskLevel.HIGH
    if score >= thresholds.medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def normalize_score(results: list[DetectorResult]) -> float:
    """Sum of detector sub-scores divided by the number of emitted factors, capped at 100.

    The divisor counts individual factors across all detectors, not detectors.
    """
    factor_count = sum(len(r.factors) for r in results)
    if factor_count == 0:
        return 0.0
    total = sum(r.score for r in results)
    return max(0.0, min(100.0, total / factor_count))


def build_recommendations(
    risk_level: RiskLevel,
    should_block: bool,
    results: list[DetectorResult],
) -> list[str]:
    recommendations: list[str] = []

    if should_block:
        recommendations.append("Block transaction immediately")
        recommendations.append("Manual review required")
    elif risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        recommendations.append("Hold for manual review")
        recommendations.append("Request additional verification")
    elif risk_level == RiskLevel.MEDIUM:
        recommendations.append("Monitor closely")
        recommendations.append("Consider additional authentication")

    fired = {r.category for r in results if r.factors}
    for category, recommendation in _CATEGORY_RECOMMENDATIONS:
        if category in fired:
            recommendations.append(recommendation)

    return recommendations


class RiskAggregator:
    """Runs every detector for an order and turns their factors into a decision.

    Pipeline:
    1. BlacklistMatcher first; an email hit may short-circuit the rest
    2. Remaining detectors concurrently, failures isolated per detector
    3. Score = sum of sub-scores / number of factors, capped at 100
    4. Deferred registry writes, alerts, and the profile merge are applied
       only after every detector has finished
    5. Block on score >= block threshold, any critical alert, or a blacklist hit

    The engine always returns a decision. A deadline overrun or an unexpected
    failure yields a conservative medium-risk, non-blocking result flagged
    for manual review.
    """

    def __init__(
        self,
        *,
        order_history: OrderHistoryLookup,
        profiles: RiskProfileStore,
        devices: DeviceTrustRegistry,
        blacklist: BlacklistRegistry,
        alert_manager: AlertManager,
        audit: AuditSink | None = None,
        bin_lookup: BinLookup | None = None,
        config: FraudConfig | None = None,
    ) -> None:
        self._config = config or default_config
        self._profiles = profiles
        self._alert_manager = alert_manager
        self._audit = audit

        self._blacklist_matcher = BlacklistMatcher(blacklist, self._config)
        self._detectors: list[Detector] = [
            VelocityDetector(order_history, self._config),
            PaymentAnomalyDetector(self._config, bin_lookup=bin_lookup),
            AddressMismatchDetector(self._config),
            DeviceFingerprintAnalyzer(devices, self._config),
            BehaviorAnalyzer(profiles, self._config),
        ]
        self._by_name: dict[str, Detector] = {
            d.name: d for d in [self._blacklist_matcher, *self._detectors]
        }
        logger.info("risk_aggregator_initialized", detectors=list(self._by_name))

    @property
    def detectors(self) -> list[Detector]:
        return list(self._by_name.values())

    @property
    def config(self) -> FraudConfig:
        return self._config

    async def get_risk_profile(self, customer_id: str) -> RiskProfile | None:
        return await self._profiles.get(customer_id)

    async def analyze_order(
        self, order: OrderContext, timeout: float | None = None
    ) -> AnalysisResult:
        """Score an order and decide whether to block it.

        ``timeout`` overrides ``config.engine.timeout_seconds`` for this call.
        """
        deadline = timeout if timeout is not None else self._config.engine.timeout_seconds

        try:
            async with asyncio.timeout(deadline):
                results = await self._run_detectors(order)
        except TimeoutError:
            logger.warning(
                "fraud_analysis_timeout",
                customer_id=order.customer_id,
                order_id=order.order_id,
                timeout_seconds=deadline,
            )
            await self._log_audit(
                "fraud_analysis_timeout",
                {
                    "customer_id": order.customer_id,
                    "order_id": order.order_id,
                    "timeout_seconds": deadline,
                },
                success=False,
            )
            return self._conservative_result(order)

        try:
            return await self._decide(order, results)
        except Exception:
            logger.exception(
                "fraud_analysis_failed", customer_id=order.customer_id, order_id=order.order_id
            )
            await self._log_audit(
                "fraud_analysis_failed",
                {"customer_id": order.customer_id, "order_id": order.order_id},
                success=False,
            )
            return self._conservative_result(order, failed=[r.detector for r in results])

    async def _run_detectors(self, order: OrderContext) -> list[DetectorResult]:
        blacklist_result = await self._run_detector(self._blacklist_matcher, order)
        if self._config.engine.short_circuit_on_blacklist and self._blacklist_matcher.is_email_hit(
            blacklist_result
        ):
            logger.info(
                "blacklist_short_circuit",
                customer_id=order.customer_id,
                order_id=order.order_id,
            )
            return [blacklist_result]

        others = await asyncio.gather(*(self._run_detector(d, order) for d in self._detectors))
        return [blacklist_result, *others]

    async def _run_detector(self, detector: Detector, order: OrderContext) -> DetectorResult:
        try:
            return await detector.evaluate(order)
        except Exception:
            logger.exception("detector_failed", detector=detector.name, order_id=order.order_id)
            return DetectorResult(detector=detector.name, category=detector.category, failed=True)

    async def _decide(self, order: OrderContext, results: list[DetectorResult]) -> AnalysisResult:
        cfg = self._config
        analyzed_at = datetime.now(UTC)

        factors = [f for r in results for f in r.factors]
        risk_score = normalize_score(results)
        risk_level = classify_risk_level(risk_score, cfg.levels)
        failed = [r.detector for r in results if r.failed]

        await self._apply_deferred_writes(order, results)
        alerts = await self._raise_alerts(order, results, risk_score)

        blacklist_hit = any(
            r.category == DetectorCategory.BLACKLIST and r.is_risky for r in results
        )
        should_block = (
            risk_score >= cfg.levels.block
            or any(a.severity == Severity.CRITICAL for a in alerts)
            or blacklist_hit
        )
        recommendations = build_recommendations(risk_level, should_block, results)

        subscores = RiskSubscores(
            **{
                _SUBSCORE_FIELDS[r.category]: r.score
                for r in results
                if r.category in _SUBSCORE_FIELDS
            }
        )
        await self._update_profile(
            order,
            ProfileUpdate(
                risk_score=risk_score,
                risk_level=risk_level,
                subscores=subscores,
                order_amount=order.amount,
                suspicious=bool(alerts) or risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL),
                analyzed_at=order.placed_at or analyzed_at,
            ),
        )

        await self._log_audit(
            "fraud_analysis_completed",
            {
                "customer_id": order.customer_id,
                "order_id": order.order_id,
                "risk_score": risk_score,
                "risk_level": risk_level.value,
                "alert_count": len(alerts),
                "should_block": should_block,
            },
        )
        logger.info(
            "order_analyzed",
            customer_id=order.customer_id,
            order_id=order.order_id,
            risk_score=risk_score,
            risk_level=risk_level.value,
            factor_count=len(factors),
            alert_count=len(alerts),
            should_block=should_block,
            failed_detectors=failed,
        )

        return AnalysisResult(
            customer_id=order.customer_id,
            order_id=order.order_id,
            risk_score=risk_score,
            risk_level=risk_level,
            alerts=alerts,
            should_block=should_block,
            recommendations=recommendations,
            factors=factors,
            failed_detectors=failed,
            analyzed_at=analyzed_at,
        )

    async def _apply_deferred_writes(
        self, order: OrderContext, results: list[DetectorResult]
    ) -> None:
        for result in results:
            if not result.deferred_writes:
                continue
            try:
                await result.apply_writes()
            except Exception:
                logger.exception(
                    "device_registry_write_failed",
                    detector=result.detector,
                    order_id=order.order_id,
                )
                await self._log_audit(
                    "device_registry_write_failed",
                    {"detector": result.detector, "order_id": order.order_id},
                    success=False,
                )

    async def _raise_alerts(
        self, order: OrderContext, results: list[DetectorResult], risk_score: float
    ) -> list[FraudAlert]:
        alerts: list[FraudAlert] = []
        for result in results:
            detector = self._by_name[result.detector]
            if not detector.should_alert(result):
                continue
            try:
                alert = await self._alert_manager.create_alert(
                    customer_id=order.customer_id,
                    order_id=order.order_id,
                    alert_type=detector.alert_type,
                    severity=detector.alert_severity,
                    score=result.score,
                    factors=result.factors,
                    description=detector.alert_description,
                    metadata={"detector": detector.name, "order_risk_score": risk_score},
                )
            except AlertPersistenceError as exc:
                # The decision still accounts for the alert even if it was not stored
                alert = exc.alert
                await self._log_audit(
                    "fraud_alert_persist_failed",
                    {"alert_id": alert.id, "order_id": order.order_id},
                    success=False,
                )
            alerts.append(alert)
        return alerts

    async def _update_profile(self, order: OrderContext, update: ProfileUpdate) -> None:
        try:
            await self._profiles.apply_analysis(order.customer_id, update)
        except Exception:
            logger.exception(
                "risk_profile_update_failed",
                customer_id=order.customer_id,
                order_id=order.order_id,
            )
            await self._log_audit(
                "risk_profile_update_failed",
                {"customer_id": order.customer_id, "order_id": order.order_id},
                success=False,
            )

    def _conservative_result(
        self, order: OrderContext, failed: list[str] | None = None
    ) -> AnalysisResult:
        score = self._config.levels.medium
        return AnalysisResult(
            customer_id=order.customer_id,
            order_id=order.order_id,
            risk_score=score,
            risk_level=classify_risk_level(score, self._config.levels),
            should_block=False,
            recommendations=[PARTIAL_ANALYSIS_RECOMMENDATION],
            partial=True,
            failed_detectors=failed or [],
            analyzed_at=datetime.now(UTC),
        )

    async def _log_audit(self, event_name: str, payload: dict[str, Any], success: bool = True) -> None:
        if self._audit is None:
            return
        try:
            await self._audit.log(event_name, payload, success)
        except Exception:
            logger.exception("audit_log_failed", audit_event=event_name)
