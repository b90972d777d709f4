"""Abstract base class for order fraud detectors."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from ..config import FraudConfig, default_config
from ..models import (
    AlertType,
    DetectorCategory,
    DetectorResult,
    FraudFactor,
    OrderContext,
    Severity,
)


class Detector(ABC):
    """Base class for all detectors.

    A detector inspects one dimension of an order and emits zero or more
    weighted factors. Detectors are async because most of them consult a
    store. The aggregator isolates failures, but detectors that talk to a
    collaborator also fail open on their own so they can be used standalone.
    """

    name: str
    category: DetectorCategory
    # Detectors without an alert type never raise alerts
    alert_type: AlertType | None = None
    alert_severity: Severity = Severity.MEDIUM
    alert_description: str = ""

    def __init__(self, config: FraudConfig | None = None) -> None:
        self._config = config or default_config

    @abstractmethod
    async def evaluate(self, order: OrderContext) -> DetectorResult:
        """Evaluate this detector and return its result."""
        ...

    def risky_above(self) -> float:
        return 0.0

    def alert_above(self) -> float | None:
        return None

    def should_alert(self, result: DetectorResult) -> bool:
        threshold = self.alert_above()
        if self.alert_type is None or threshold is None or result.failed:
            return False
        return result.score > threshold

    def _result(
        self,
        factors: list[FraudFactor],
        score: float | None = None,
        deferred_writes: list[Callable[[], Awaitable[None]]] | None = None,
    ) -> DetectorResult:
        """Convenience: score defaults to the sum of factor weights."""
        if score is None:
            score = sum(f.weight for f in factors)
        return DetectorResult(
            detector=self.name,
            category=self.category,
            is_risky=score > self.risky_above(),
            score=score,
            factors=factors,
            deferred_writes=deferred_writes or [],
        )

    def _fail_open(self) -> DetectorResult:
        """Convenience: a failed detector contributes nothing."""
        return DetectorResult(
            detector=self.name,
            category=self.category,
            failed=True,
        )

    @staticmethod
    def _now(order: OrderContext) -> datetime:
        return order.placed_at or datetime.now(UTC)
