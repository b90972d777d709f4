"""Shipping vs. billing address consistency."""

from ..models import (
    AlertType,
    DetectorCategory,
    DetectorResult,
    FraudFactor,
    OrderContext,
    Severity,
)
from .base import Detector


def _norm(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip().upper() or None


class AddressMismatchDetector(Detector):
    """Geographic inconsistency between shipping and billing addresses.

    Weights are cumulative: a cross-border order to a high-risk country
    collects the country mismatch and the high-risk location factors.
    """

    name = "address"
    category = DetectorCategory.ADDRESS
    alert_type = AlertType.SHIPPING_MISMATCH
    alert_severity = Severity.MEDIUM
    alert_description = "Shipping and billing address mismatch"

    def risky_above(self) -> float:
        return self._config.address.risky_above

    def alert_above(self) -> float | None:
        return self._config.address.alert_above

    async def evaluate(self, order: OrderContext) -> DetectorResult:
        shipping, billing = order.shipping_address, order.billing_address
        if shipping is None or billing is None:
            return self._result([])

        cfg = self._config.address
        factors: list[FraudFactor] = []

        ship_country, bill_country = _norm(shipping.country), _norm(billing.country)
        if ship_country != bill_country:
            factors.append(
                FraudFactor(
                    kind="country_mismatch",
                    description="Shipping and billing countries differ",
                    weight=cfg.country_mismatch_weight,
                    value={"shipping": shipping.country, "billing": billing.country},
                )
            )

        if _norm(shipping.state) != _norm(billing.state):
            factors.append(
                FraudFactor(
                    kind="state_mismatch",
                    description="Shipping and billing states differ",
                    weight=cfg.state_mismatch_weight,
                    value={"shipping": shipping.state, "billing": billing.state},
                )
            )

        high_risk = {c.strip().upper() for c in cfg.high_risk_countries}
        if ship_country is not None and ship_country in high_risk:
            factors.append(
                FraudFactor(
                    kind="high_risk_location",
                    description="Shipping to high-risk location",
                    weight=cfg.high_risk_location_weight,
                    value=shipping.country,
                )
            )

        return self._result(factors)
