"""Tests for device fingerprint analysis and its registry side effects."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from order_risk.domains.fraud.config import FraudConfig
from order_risk.domains.fraud.detectors import DeviceFingerprintAnalyzer
from order_risk.domains.fraud.models import DeviceDescriptor, DeviceFingerprint, OrderContext
from order_risk.domains.fraud.stores import InMemoryDeviceTrustRegistry

CONFIG = FraudConfig()
NOW = datetime(2026, 1, 15, 14, 0, 0, tzinfo=UTC)


def _make_order(customer_id: str = "cust-1", device_id: str | None = "dev-1") -> OrderContext:
    return OrderContext(
        customer_id=customer_id,
        order_id="ord-1",
        amount=80.0,
        payment_method="paypal",
        device_fingerprint=DeviceDescriptor(id=device_id, hash="abc123") if device_id else None,
        ip_address="203.0.113.7",
        user_agent="Mozilla/5.0",
        placed_at=NOW,
    )


def _known_device(owner: str = "cust-1", trust: float = 50.0) -> DeviceFingerprint:
    seen = NOW - timedelta(days=3)
    return DeviceFingerprint(
        id="dev-1", owner_customer_id=owner, first_seen=seen, last_seen=seen, trust_score=trust
    )


class TestDeviceFingerprintAnalyzer:
    @pytest.mark.asyncio
    async def test_unseen_device_single_factor_and_registered(self):
        registry = InMemoryDeviceTrustRegistry()
        analyzer = DeviceFingerprintAnalyzer(registry, CONFIG)

        result = await analyzer.evaluate(_make_order())
        assert [(f.kind, f.weight) for f in result.factors] == [("new_device", 20)]
        assert not result.is_risky

        # Registration is deferred until the writes are applied
        assert await registry.get("dev-1") is None
        await result.apply_writes()

        device = await registry.get("dev-1")
        assert device is not None
        assert device.trust_score == 50
        assert device.owner_customer_id == "cust-1"
        assert device.raw_fingerprint == "abc123"
        assert device.ip_address == "203.0.113.7"
        assert device.first_seen == NOW

    @pytest.mark.asyncio
    async def test_known_device_same_owner_no_factors(self):
        registry = InMemoryDeviceTrustRegistry()
        await registry.put(_known_device())
        result = await DeviceFingerprintAnalyzer(registry, CONFIG).evaluate(_make_order())
        assert result.factors == []

    @pytest.mark.asyncio
    async def test_owner_reuse_touches_last_seen_and_raises_trust(self):
        registry = InMemoryDeviceTrustRegistry()
        await registry.put(_known_device(trust=70.0))
        result = await DeviceFingerprintAnalyzer(registry, CONFIG).evaluate(_make_order())
        await result.apply_writes()

        device = await registry.get("dev-1")
        assert device.last_seen == NOW
        assert device.trust_score == 75.0

    @pytest.mark.asyncio
    async def test_owner_reuse_trust_capped(self):
        registry = InMemoryDeviceTrustRegistry()
        await registry.put(_known_device(trust=98.0))
        result = await DeviceFingerprintAnalyzer(registry, CONFIG).evaluate(_make_order())
        await result.apply_writes()
        assert (await registry.get("dev-1")).trust_score == 100.0

    @pytest.mark.asyncio
    async def test_shared_use_lowers_trust_for_next_order(self):
        registry = InMemoryDeviceTrustRegistry()
        await registry.put(_known_device(owner="cust-other", trust=50.0))
        analyzer = DeviceFingerprintAnalyzer(registry, CONFIG)

        first = await analyzer.evaluate(_make_order())
        # Scored against the trust held before this order
        assert [f.kind for f in first.factors] == ["device_sharing"]
        await first.apply_writes()
        device = await registry.get("dev-1")
        assert device.trust_score == 40.0
        assert device.owner_customer_id == "cust-other"

        second = await analyzer.evaluate(_make_order())
        assert {f.kind for f in second.factors} == {"device_sharing", "low_trust_device"}

    @pytest.mark.asyncio
    async def test_shared_use_trust_floored_at_zero(self):
        registry = InMemoryDeviceTrustRegistry()
        await registry.put(_known_device(owner="cust-other", trust=4.0))
        result = await DeviceFingerprintAnalyzer(registry, CONFIG).evaluate(_make_order())
        await result.apply_writes()
        assert (await registry.get("dev-1")).trust_score == 0.0

    @pytest.mark.asyncio
    async def test_device_sharing(self):
        registry = InMemoryDeviceTrustRegistry()
        await registry.put(_known_device(owner="cust-other"))
        analyzer = DeviceFingerprintAnalyzer(registry, CONFIG)
        result = await analyzer.evaluate(_make_order())
        assert [f.kind for f in result.factors] == ["device_sharing"]
        assert result.score == 60
        assert result.is_risky
        assert not analyzer.should_alert(result)

    @pytest.mark.asyncio
    async def test_shared_low_trust_device_alerts(self):
        registry = InMemoryDeviceTrustRegistry()
        await registry.put(_known_device(owner="cust-other", trust=10.0))
        analyzer = DeviceFingerprintAnalyzer(registry, CONFIG)
        result = await analyzer.evaluate(_make_order())
        assert {f.kind for f in result.factors} == {"device_sharing", "low_trust_device"}
        assert result.score == 100
        assert analyzer.should_alert(result)

    @pytest.mark.asyncio
    async def test_no_descriptor(self):
        registry = InMemoryDeviceTrustRegistry()
        result = await DeviceFingerprintAnalyzer(registry, CONFIG).evaluate(
            _make_order(device_id=None)
        )
        assert result.factors == []
        assert result.deferred_writes == []

    @pytest.mark.asyncio
    async def test_registry_failure_fails_open(self):
        registry = AsyncMock()
        registry.get.side_effect = ConnectionError("registry down")
        result = await DeviceFingerprintAnalyzer(registry, CONFIG).evaluate(_make_order())
        assert result.failed
        assert result.factors == []
        registry.put.assert_not_called()
