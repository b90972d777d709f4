"""Pydantic models for the order fraud-risk domain."""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _assume_utc(value: datetime) -> datetime:
    # Naive timestamps from callers are taken to be UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_assume_utc)]


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(StrEnum):
    VELOCITY_CHECK = "velocity_check"
    PAYMENT_ANOMALY = "payment_anomaly"
    SHIPPING_MISMATCH = "shipping_mismatch"
    DEVICE_FINGERPRINT = "device_fingerprint"
    BLACKLIST_MATCH = "blacklist_match"
    # Reserved: no detector emits these yet
    BEHAVIORAL_ANALYSIS = "behavioral_analysis"
    HIGH_RISK_LOCATION = "high_risk_location"
    SUSPICIOUS_PATTERN = "suspicious_pattern"
    CARD_TESTING = "card_testing"
    ACCOUNT_TAKEOVER = "account_takeover"


class AlertStatus(StrEnum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


TERMINAL_ALERT_STATUSES = frozenset({AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE})


class BlacklistType(StrEnum):
    EMAIL = "email"
    IP = "ip"
    DEVICE = "device"
    CARD = "card"
    PHONE = "phone"


class DetectorCategory(StrEnum):
    VELOCITY = "velocity"
    PAYMENT = "payment"
    ADDRESS = "address"
    DEVICE = "device"
    BLACKLIST = "blacklist"
    BEHAVIOR = "behavior"


class CardType(StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"
    PREPAID = "prepaid"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Order input
# ---------------------------------------------------------------------------


class Address(BaseModel):
    line1: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class DeviceDescriptor(BaseModel):
    id: str
    hash: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    platform: str | None = None
    language: str | None = None
    timezone: str | None = None
    screen_resolution: str | None = None


class OrderContext(BaseModel):
    customer_id: str
    order_id: str
    amount: float = Field(ge=0)
    payment_method: str
    shipping_address: Address | None = None
    billing_address: Address | None = None
    device_fingerprint: DeviceDescriptor | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    email: str | None = None
    card_bin: str | None = None
    placed_at: UtcDatetime | None = None

    @property
    def blacklist_email(self) -> str:
        """Identifier checked against email blacklist entries."""
        return self.email or self.customer_id


class HistoricalOrder(BaseModel):
    order_id: str
    customer_id: str
    amount: float
    created_at: UtcDatetime


class CardClassification(BaseModel):
    card_type: CardType = CardType.UNKNOWN
    issuer_country: str | None = None


# ---------------------------------------------------------------------------
# Detector output
# ---------------------------------------------------------------------------


class FraudFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    description: str
    weight: float = Field(ge=0, le=100)
    value: Any = None


class DetectorResult(BaseModel):
    detector: str
    category: DetectorCategory
    is_risky: bool = False
    score: float = 0.0
    factors: list[FraudFactor] = []
    failed: bool = False
    # Registry writes the aggregator applies once every detector has finished
    deferred_writes: list[Callable[[], Awaitable[None]]] = Field(
        default_factory=list, exclude=True, repr=False
    )

    async def apply_writes(self) -> None:
        for write in self.deferred_writes:
            await write()
        self.deferred_writes = []


# ---------------------------------------------------------------------------
# Persistent records
# ---------------------------------------------------------------------------


class RiskSubscores(BaseModel):
    velocity: float = 0.0
    location: float = 0.0
    device: float = 0.0
    behavior: float = 0.0
    payment: float = 0.0


class RiskProfile(BaseModel):
    customer_id: str
    risk_score: float = Field(default=0.0, ge=0, le=100)
    risk_level: RiskLevel = RiskLevel.LOW
    subscores: RiskSubscores = Field(default_factory=RiskSubscores)
    last_updated: UtcDatetime
    order_count: int = 0
    total_spent: float = 0.0
    average_order_value: float = 0.0
    suspicious_activity_count: int = 0


class ProfileUpdate(BaseModel):
    """Result of one analysis, merged into the stored profile."""

    risk_score: float = Field(ge=0, le=100)
    risk_level: RiskLevel
    subscores: RiskSubscores
    order_amount: float = 0.0
    suspicious: bool = False
    analyzed_at: UtcDatetime


class DeviceFingerprint(BaseModel):
    id: str
    owner_customer_id: str
    raw_fingerprint: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    platform: str | None = None
    language: str | None = None
    timezone: str | None = None
    screen_resolution: str | None = None
    first_seen: UtcDatetime
    last_seen: UtcDatetime
    trust_score: float = Field(default=50.0, ge=0, le=100)
    is_blacklisted: bool = False


class BlacklistEntry(BaseModel):
    id: str
    type: BlacklistType
    value: str
    reason: str
    severity: Severity
    added_by: str
    added_at: UtcDatetime
    expires_at: UtcDatetime | None = None
    is_active: bool = True

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


class FraudAlert(BaseModel):
    id: str
    customer_id: str
    order_id: str | None = None
    type: AlertType
    severity: Severity
    score: float
    factors: list[FraudFactor] = []
    status: AlertStatus = AlertStatus.PENDING
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime
    updated_at: UtcDatetime
    reviewed_by: str | None = None
    reviewed_at: UtcDatetime | None = None
    resolution: str | None = None


# ---------------------------------------------------------------------------
# Engine output
# ---------------------------------------------------------------------------


class AnalysisResult(BaseModel):
    customer_id: str
    order_id: str
    risk_score: float = Field(ge=0, le=100)
    risk_level: RiskLevel
    alerts: list[FraudAlert] = []
    should_block: bool = False
    recommendations: list[str] = []
    factors: list[FraudFactor] = []
    partial: bool = False
    failed_detectors: list[str] = []
    analyzed_at: UtcDatetime
