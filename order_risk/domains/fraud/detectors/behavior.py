"""Historical suspicious-activity signal from the customer's risk profile."""

import structlog

from ..config import FraudConfig
from ..models import DetectorCategory, DetectorResult, FraudFactor, OrderContext
from ..stores import RiskProfileStore
from .base import Detector

logger = structlog.get_logger()


class BehaviorAnalyzer(Detector):
    """Folds into the score only; never raises an alert of its own."""

    name = "behavior"
    category = DetectorCategory.BEHAVIOR

    def __init__(self, profiles: RiskProfileStore, config: FraudConfig | None = None) -> None:
        super().__init__(config)
        self._profiles = profiles

    def risky_above(self) -> float:
        return self._config.behavior.risky_above

    async def evaluate(self, order: OrderContext) -> DetectorResult:
        cfg = self._config.behavior

        try:
            profile = await self._profiles.get(order.customer_id)
        except Exception:
            logger.warning(
                "risk_profile_lookup_failed", customer_id=order.customer_id, exc_info=True
            )
            return self._fail_open()

        factors: list[FraudFactor] = []
        if profile is not None and profile.suspicious_activity_count > cfg.suspicious_activity_max:
            factors.append(
                FraudFactor(
                    kind="suspicious_history",
                    description="Customer has history of suspicious activity",
                    weight=cfg.suspicious_history_weight,
                    value=profile.suspicious_activity_count,
                )
            )

        return self._result(factors)
