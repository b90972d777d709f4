"""Fraud scoring configuration with sensible defaults."""

import os
from dataclasses import dataclass, field


def _csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip().upper() for item in value.split(",") if item.strip())


@dataclass
class VelocityThresholds:
    window_hours: int = 24
    order_count_max: int = 5
    window_amount_max: float = 5_000.0
    round_amount_unit: int = 100
    round_amount_min: float = 500.0
    high_frequency_weight: float = 30.0
    high_amount_weight: float = 40.0
    round_amount_weight: float = 15.0
    risky_above: float = 20.0
    alert_above: float = 70.0


@dataclass
class PaymentThresholds:
    credit_card_methods: tuple[str, ...] = ("credit_card",)
    credit_card_weight: float = 10.0
    prepaid_card_weight: float = 30.0
    # BIN prefixes flagged by the fraud team, matched with startswith()
    high_risk_bins: tuple[str, ...] = ()
    high_risk_bin_weight: float = 40.0
    risky_above: float = 30.0
    alert_above: float = 60.0


@dataclass
class AddressThresholds:
    high_risk_countries: tuple[str, ...] = ()
    country_mismatch_weight: float = 40.0
    state_mismatch_weight: float = 20.0
    high_risk_location_weight: float = 50.0
    risky_above: float = 30.0
    alert_above: float = 50.0


@dataclass
class DeviceThresholds:
    neutral_trust_score: float = 50.0
    low_trust_below: float = 50.0
    new_device_weight: float = 20.0
    device_sharing_weight: float = 60.0
    low_trust_weight: float = 40.0
    risky_above: float = 40.0
    alert_above: float = 80.0
    # Trust moves on every reuse: up for the owner, down when another customer uses it
    reuse_trust_step: float = 5.0
    sharing_trust_penalty: float = 10.0
    max_trust_score: float = 100.0


@dataclass
class BlacklistThresholds:
    email_score: float = 100.0
    ip_score: float = 80.0


@dataclass
class BehaviorThresholds:
    suspicious_activity_max: int = 3
    suspicious_history_weight: float = 50.0
    risky_above: float = 30.0


@dataclass
class RiskLevelThresholds:
    medium: float = 30.0
    high: float = 60.0
    critical: float = 80.0
    block: float = 95.0


@dataclass
class EngineSettings:
    # None disables the deadline
    timeout_seconds: float | None = 2.0
    short_circuit_on_blacklist: bool = True


@dataclass
class FraudConfig:
    velocity: VelocityThresholds = field(default_factory=VelocityThresholds)
    payment: PaymentThresholds = field(default_factory=PaymentThresholds)
    address: AddressThresholds = field(default_factory=AddressThresholds)
    device: DeviceThresholds = field(default_factory=DeviceThresholds)
    blacklist: BlacklistThresholds = field(default_factory=BlacklistThresholds)
    behavior: BehaviorThresholds = field(default_factory=BehaviorThresholds)
    levels: RiskLevelThresholds = field(default_factory=RiskLevelThresholds)
    engine: EngineSettings = field(default_factory=EngineSettings)

    @classmethod
    def from_env(cls) -> "FraudConfig":
        """Load config with env var overrides. Env vars use FRAUD_ prefix."""
        config = cls()

        # Velocity overrides
        if v := os.getenv("FRAUD_VELOCITY_ORDER_COUNT_MAX"):
            config.velocity.order_count_max = int(v)
        if v := os.getenv("FRAUD_VELOCITY_WINDOW_AMOUNT_MAX"):
            config.velocity.window_amount_max = float(v)
        if v := os.getenv("FRAUD_VELOCITY_WINDOW_HOURS"):
            config.velocity.window_hours = int(v)

        # Payment overrides
        if v := os.getenv("FRAUD_CREDIT_CARD_METHODS"):
            config.payment.credit_card_methods = tuple(
                m.strip().lower() for m in v.split(",") if m.strip()
            )
        if v := os.getenv("FRAUD_HIGH_RISK_BINS"):
            config.payment.high_risk_bins = _csv(v)

        # Address overrides
        if v := os.getenv("FRAUD_HIGH_RISK_COUNTRIES"):
            config.address.high_risk_countries = _csv(v)

        # Risk level overrides
        if v := os.getenv("FRAUD_MEDIUM_THRESHOLD"):
            config.levels.medium = float(v)
        if v := os.getenv("FRAUD_HIGH_THRESHOLD"):
            config.levels.high = float(v)
        if v := os.getenv("FRAUD_CRITICAL_THRESHOLD"):
            config.levels.critical = float(v)
        if v := os.getenv("FRAUD_BLOCK_THRESHOLD"):
            config.levels.block = float(v)

        # Engine overrides
        if v := os.getenv("FRAUD_TIMEOUT_SECONDS"):
            config.engine.timeout_seconds = float(v) if float(v) > 0 else None
        if v := os.getenv("FRAUD_SHORT_CIRCUIT_ON_BLACKLIST"):
            config.engine.short_circuit_on_blacklist = v.lower() in ("1", "true", "yes")

        return config


# Module-level default instance
default_config = FraudConfig()
