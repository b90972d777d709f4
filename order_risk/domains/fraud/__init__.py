"""Order fraud-risk domain."""

from .aggregator import RiskAggregator
from .alerts import AlertManager
from .blacklist import BlacklistAdmin
from .config import FraudConfig, default_config
from .errors import (
    AlertNotFoundError,
    AlertPersistenceError,
    FraudEngineError,
    InvalidAlertTransitionError,
)
from .models import (
    AlertStatus,
    AlertType,
    AnalysisResult,
    FraudAlert,
    FraudFactor,
    OrderContext,
    RiskLevel,
    RiskProfile,
    Severity,
)

__all__ = [
    "AlertManager",
    "AlertNotFoundError",
    "AlertPersistenceError",
    "AlertStatus",
    "AlertType",
    "AnalysisResult",
    "BlacklistAdmin",
    "FraudAlert",
    "FraudConfig",
    "FraudEngineError",
    "FraudFactor",
    "InvalidAlertTransitionError",
    "OrderContext",
    "RiskAggregator",
    "RiskLevel",
    "RiskProfile",
    "Severity",
    "default_config",
]
