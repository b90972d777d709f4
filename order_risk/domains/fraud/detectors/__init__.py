"""Order fraud detectors.

Each detector inspects one dimension of an order and emits weighted factors.
"""

from .address import AddressMismatchDetector
from .base import Detector
from .behavior import BehaviorAnalyzer
from .blacklist import BlacklistMatcher
from .device import DeviceFingerprintAnalyzer
from .payment import PaymentAnomalyDetector
from .velocity import VelocityDetector

__all__ = [
    "AddressMismatchDetector",
    "BehaviorAnalyzer",
    "BlacklistMatcher",
    "Detector",
    "DeviceFingerprintAnalyzer",
    "PaymentAnomalyDetector",
    "VelocityDetector",
]
