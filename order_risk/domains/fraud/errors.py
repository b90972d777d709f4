"""Exceptions raised by the fraud engine."""

from .models import AlertStatus, FraudAlert


class FraudEngineError(Exception):
    """Base class for fraud engine errors."""


class AlertPersistenceError(FraudEngineError):
    """The alert store rejected a write. Carries the alert that was built."""

    def __init__(self, alert: FraudAlert, message: str = "alert could not be persisted") -> None:
        super().__init__(message)
        self.alert = alert


class AlertNotFoundError(FraudEngineError, LookupError):
    def __init__(self, alert_id: str) -> None:
        super().__init__(f"Fraud alert not found: {alert_id}")
        self.alert_id = alert_id


class InvalidAlertTransitionError(FraudEngineError, ValueError):
    def __init__(self, alert_id: str, current: AlertStatus, requested: AlertStatus) -> None:
        super().__init__(
            f"Alert {alert_id} is {current.value} and cannot move to {requested.value}"
        )
        self.alert_id = alert_id
        self.current = current
        self.requested = requested
