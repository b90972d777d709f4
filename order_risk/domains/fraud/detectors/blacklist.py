"""Hard matches against the blacklist registry."""

from datetime import datetime

import structlog

from ..config import FraudConfig
from ..models import (
    AlertType,
    BlacklistEntry,
    BlacklistType,
    DetectorCategory,
    DetectorResult,
    FraudFactor,
    OrderContext,
    Severity,
)
from ..stores import BlacklistRegistry
from .base import Detector

logger = structlog.get_logger()


class BlacklistMatcher(Detector):
    """Email and IP lookups with override semantics.

    An email hit scores 100 and an IP hit 80 (max of the two, not the sum).
    Any hit raises a critical alert, which forces the order to be blocked.
    Expired entries found along the way are deactivated.
    """

    name = "blacklist"
    category = DetectorCategory.BLACKLIST
    alert_type = AlertType.BLACKLIST_MATCH
    alert_severity = Severity.CRITICAL
    alert_description = "Blacklist match detected"

    def __init__(self, registry: BlacklistRegistry, config: FraudConfig | None = None) -> None:
        super().__init__(config)
        self._registry = registry

    def alert_above(self) -> float | None:
        return 0.0

    def is_email_hit(self, result: DetectorResult) -> bool:
        return any(f.kind == "blacklisted_email" for f in result.factors)

    async def evaluate(self, order: OrderContext) -> DetectorResult:
        cfg = self._config.blacklist
        now = self._now(order)
        factors: list[FraudFactor] = []
        score = 0.0
        lookup_failed = False

        try:
            email_entry = await self._lookup(BlacklistType.EMAIL, order.blacklist_email, now)
        except Exception:
            self._log_failure(order, BlacklistType.EMAIL)
            email_entry, lookup_failed = None, True
        if email_entry is not None:
            factors.append(
                FraudFactor(
                    kind="blacklisted_email",
                    description="Email address is blacklisted",
                    weight=cfg.email_score,
                    value=email_entry.reason,
                )
            )
            score = cfg.email_score

        if order.ip_address:
            try:
                ip_entry = await self._lookup(BlacklistType.IP, order.ip_address, now)
            except Exception:
                self._log_failure(order, BlacklistType.IP)
                ip_entry, lookup_failed = None, True
            if ip_entry is not None:
                factors.append(
                    FraudFactor(
                        kind="blacklisted_ip",
                        description="IP address is blacklisted",
                        weight=cfg.ip_score,
                        value=ip_entry.reason,
                    )
                )
                score = max(score, cfg.ip_score)

        # A hit found by the lookup that did succeed still counts
        if lookup_failed and not factors:
            return self._fail_open()
        return self._result(factors, score=score)

    @staticmethod
    def _log_failure(order: OrderContext, entry_type: BlacklistType) -> None:
        logger.warning(
            "blacklist_lookup_failed",
            entry_type=entry_type.value,
            customer_id=order.customer_id,
            order_id=order.order_id,
            exc_info=True,
        )

    async def _lookup(
        self, entry_type: BlacklistType, value: str, now: datetime
    ) -> BlacklistEntry | None:
        # Several entries may exist for one identifier; keep retiring expired
        # ones until a live entry or nothing is left
        retired: set[str] = set()
        while True:
            entry = await self._registry.find(entry_type, value)
            if entry is None or not entry.is_active or entry.id in retired:
                return None
            if not entry.is_expired(now):
                return entry
            await self._registry.deactivate(entry.id)
            retired.add(entry.id)
            logger.info(
                "blacklist_entry_expired",
                entry_id=entry.id,
                entry_type=entry_type.value,
                expired_at=entry.expires_at.isoformat() if entry.expires_at else None,
            )
