"""Order velocity detection."""

from datetime import timedelta
from decimal import Decimal

import structlog

from ..config import FraudConfig
from ..models import (
    AlertType,
    DetectorCategory,
    DetectorResult,
    FraudFactor,
    OrderContext,
    Severity,
)
from ..stores import OrderHistoryLookup
from .base import Detector

logger = structlog.get_logger()


class VelocityDetector(Detector):
    """Order count and spend of the customer in the trailing window."""

    name = "velocity"
    category = DetectorCategory.VELOCITY
    alert_type = AlertType.VELOCITY_CHECK
    alert_severity = Severity.HIGH
    alert_description = "Suspicious order velocity detected"

    def __init__(self, order_history: OrderHistoryLookup, config: FraudConfig | None = None) -> None:
        super().__init__(config)
        self._order_history = order_history

    def risky_above(self) -> float:
        return self._config.velocity.risky_above

    def alert_above(self) -> float | None:
        return self._config.velocity.alert_above

    async def evaluate(self, order: OrderContext) -> DetectorResult:
        cfg = self._config.velocity
        window_start = self._now(order) - timedelta(hours=cfg.window_hours)

        try:
            recent = await self._order_history.recent_orders(order.customer_id, window_start)
        except Exception:
            logger.warning(
                "order_history_lookup_failed",
                customer_id=order.customer_id,
                order_id=order.order_id,
                exc_info=True,
            )
            return self._fail_open()

        factors: list[FraudFactor] = []

        count = len(recent)
        if count > cfg.order_count_max:
            factors.append(
                FraudFactor(
                    kind="high_frequency",
                    description=f"{count} orders in {cfg.window_hours} hours",
                    weight=cfg.high_frequency_weight,
                    value=count,
                )
            )

        total = sum(o.amount for o in recent)
        if total > cfg.window_amount_max:
            factors.append(
                FraudFactor(
                    kind="high_amount_velocity",
                    description=f"${total:,.2f} spent in {cfg.window_hours} hours",
                    weight=cfg.high_amount_weight,
                    value=total,
                )
            )

        if _is_round_amount(order.amount, cfg.round_amount_unit) and (
            order.amount > cfg.round_amount_min
        ):
            factors.append(
                FraudFactor(
                    kind="round_amount",
                    description="Round number amount pattern",
                    weight=cfg.round_amount_weight,
                    value=order.amount,
                )
            )

        return self._result(factors)


def _is_round_amount(amount: float, unit: int) -> bool:
    # str() gives the shortest repr, so 1000.0 stays exact and 500.004 is not rounded away
    return Decimal(str(amount)) % unit == 0
