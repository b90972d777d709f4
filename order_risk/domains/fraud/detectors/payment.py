"""Payment instrument anomaly detection."""

import structlog

from ..config import FraudConfig
from ..models import (
    AlertType,
    CardType,
    DetectorCategory,
    DetectorResult,
    FraudFactor,
    OrderContext,
    Severity,
)
from ..stores import BinLookup
from .base import Detector

logger = structlog.get_logger()


class PaymentAnomalyDetector(Detector):
    """Additive weight per payment anomaly, one named factor each."""

    name = "payment"
    category = DetectorCategory.PAYMENT
    alert_type = AlertType.PAYMENT_ANOMALY
    alert_severity = Severity.MEDIUM
    alert_description = "Payment anomaly detected"

    def __init__(self, config: FraudConfig | None = None, bin_lookup: BinLookup | None = None) -> None:
        super().__init__(config)
        self._bin_lookup = bin_lookup

    def risky_above(self) -> float:
        return self._config.payment.risky_above

    def alert_above(self) -> float | None:
        return self._config.payment.alert_above

    async def evaluate(self, order: OrderContext) -> DetectorResult:
        cfg = self._config.payment
        factors: list[FraudFactor] = []

        method = order.payment_method.strip().lower()
        if method in cfg.credit_card_methods:
            factors.append(
                FraudFactor(
                    kind="credit_card_payment",
                    description="Credit card class payment instrument",
                    weight=cfg.credit_card_weight,
                    value=method,
                )
            )

        card_bin = (order.card_bin or "").strip()
        if not card_bin:
            return self._result(factors)

        if any(card_bin.startswith(prefix) for prefix in cfg.high_risk_bins):
            factors.append(
                FraudFactor(
                    kind="high_risk_bin",
                    description="Card BIN is on the high-risk list",
                    weight=cfg.high_risk_bin_weight,
                    value=card_bin,
                )
            )

        if self._bin_lookup is not None:
            try:
                classification = await self._bin_lookup.classify(card_bin)
            except Exception:
                logger.warning("bin_lookup_failed", order_id=order.order_id, exc_info=True)
                classification = None
            if classification is not None and classification.card_type == CardType.PREPAID:
                factors.append(
                    FraudFactor(
                        kind="prepaid_card",
                        description="Prepaid card detected",
                        weight=cfg.prepaid_card_weight,
                        value=card_bin,
                    )
                )

        return self._result(factors)
