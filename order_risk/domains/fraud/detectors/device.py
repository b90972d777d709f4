"""Device fingerprint novelty, sharing, and trust."""

import structlog

from ..config import DeviceThresholds, FraudConfig
from ..models import (
    AlertType,
    DetectorCategory,
    DetectorResult,
    DeviceFingerprint,
    FraudFactor,
    OrderContext,
    Severity,
)
from ..stores import DeviceTrustRegistry
from .base import Detector

logger = structlog.get_logger()


class DeviceFingerprintAnalyzer(Detector):
    """Scores the order's device against the device trust registry.

    Scoring is not read-only: an unseen device is recorded with a neutral
    trust score, and a known device gets its last_seen bumped and its trust
    nudged up for the owner or down when another customer uses it. Those writes
    are returned as deferred writes on the result so the aggregator can apply
    them after every detector has finished; call ``result.apply_writes()``
    when using the analyzer on its own.
    """

    name = "device"
    category = DetectorCategory.DEVICE
    alert_type = AlertType.DEVICE_FINGERPRINT
    alert_severity = Severity.HIGH
    alert_description = "Suspicious device fingerprint detected"

    def __init__(self, registry: DeviceTrustRegistry, config: FraudConfig | None = None) -> None:
        super().__init__(config)
        self._registry = registry

    def risky_above(self) -> float:
        return self._config.device.risky_above

    def alert_above(self) -> float | None:
        return self._config.device.alert_above

    async def evaluate(self, order: OrderContext) -> DetectorResult:
        descriptor = order.device_fingerprint
        if descriptor is None:
            return self._result([])

        cfg = self._config.device
        now = self._now(order)

        try:
            existing = await self._registry.get(descriptor.id)
        except Exception:
            logger.warning(
                "device_registry_lookup_failed",
                fingerprint_id=descriptor.id,
                order_id=order.order_id,
                exc_info=True,
            )
            return self._fail_open()

        if existing is None:
            device = DeviceFingerprint(
                id=descriptor.id,
                owner_customer_id=order.customer_id,
                raw_fingerprint=descriptor.hash,
                user_agent=descriptor.user_agent or order.user_agent,
                ip_address=descriptor.ip_address or order.ip_address,
                platform=descriptor.platform,
                language=descriptor.language,
                timezone=descriptor.timezone,
                screen_resolution=descriptor.screen_resolution,
                first_seen=now,
                last_seen=now,
                trust_score=cfg.neutral_trust_score,
            )

            async def record_new_device() -> None:
                await self._registry.put(device)

            factor = FraudFactor(
                kind="new_device",
                description="First time using this device",
                weight=cfg.new_device_weight,
                value=True,
            )
            return self._result([factor], deferred_writes=[record_new_device])

        factors: list[FraudFactor] = []
        shared = existing.owner_customer_id != order.customer_id

        if shared:
            factors.append(
                FraudFactor(
                    kind="device_sharing",
                    description="Device used by multiple customers",
                    weight=cfg.device_sharing_weight,
                    value={
                        "current_customer": order.customer_id,
                        "device_owner": existing.owner_customer_id,
                    },
                )
            )

        if existing.trust_score < cfg.low_trust_below:
            factors.append(
                FraudFactor(
                    kind="low_trust_device",
                    description="Device has low trust score",
                    weight=cfg.low_trust_weight,
                    value=existing.trust_score,
                )
            )

        # The score above uses the trust held before this order
        trust_score = _adjusted_trust(existing.trust_score, shared, cfg)

        async def touch_device() -> None:
            await self._registry.touch(descriptor.id, last_seen=now, trust_score=trust_score)

        return self._result(factors, deferred_writes=[touch_device])


def _adjusted_trust(current: float, shared: bool, cfg: DeviceThresholds) -> float:
    if shared:
        return max(0.0, current - cfg.sharing_trust_penalty)
    return min(cfg.max_trust_score, current + cfg.reuse_trust_step)
