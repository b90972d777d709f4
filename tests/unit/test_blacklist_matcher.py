"""Tests for blacklist matching."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from order_risk.domains.fraud.config import FraudConfig
from order_risk.domains.fraud.detectors import BlacklistMatcher
from order_risk.domains.fraud.models import (
    BlacklistEntry,
    BlacklistType,
    OrderContext,
    Severity,
)
from order_risk.domains.fraud.stores import InMemoryBlacklistRegistry

CONFIG = FraudConfig()
NOW = datetime(2026, 1, 15, 14, 0, 0, tzinfo=UTC)


def _make_order(**kwargs) -> OrderContext:
    defaults = {
        "customer_id": "cust-1",
        "order_id": "ord-1",
        "amount": 80.0,
        "payment_method": "paypal",
        "email": "buyer@example.com",
        "ip_address": "198.51.100.4",
        "placed_at": NOW,
    }
    defaults.update(kwargs)
    return OrderContext(**defaults)


def _entry(entry_type: BlacklistType, value: str, expires_at=None, entry_id="bl-1") -> BlacklistEntry:
    return BlacklistEntry(
        id=entry_id,
        type=entry_type,
        value=value,
        reason="chargeback ring",
        severity=Severity.CRITICAL,
        added_by="analyst-1",
        added_at=NOW - timedelta(days=30),
        expires_at=expires_at,
    )


class TestBlacklistMatcher:
    @pytest.mark.asyncio
    async def test_no_hits(self):
        matcher = BlacklistMatcher(InMemoryBlacklistRegistry(), CONFIG)
        result = await matcher.evaluate(_make_order())
        assert result.factors == []
        assert not result.is_risky
        assert not matcher.should_alert(result)

    @pytest.mark.asyncio
    async def test_email_hit_scores_100(self):
        registry = InMemoryBlacklistRegistry()
        await registry.add(_entry(BlacklistType.EMAIL, "buyer@example.com"))
        matcher = BlacklistMatcher(registry, CONFIG)
        result = await matcher.evaluate(_make_order())
        assert result.score == 100
        assert result.is_risky
        assert matcher.is_email_hit(result)
        assert matcher.should_alert(result)

    @pytest.mark.asyncio
    async def test_email_match_is_case_insensitive(self):
        registry = InMemoryBlacklistRegistry()
        await registry.add(_entry(BlacklistType.EMAIL, "Buyer@Example.com"))
        result = await BlacklistMatcher(registry, CONFIG).evaluate(
            _make_order(email="BUYER@example.COM")
        )
        assert result.score == 100

    @pytest.mark.asyncio
    async def test_customer_id_used_when_email_missing(self):
        registry = InMemoryBlacklistRegistry()
        await registry.add(_entry(BlacklistType.EMAIL, "cust-1"))
        result = await BlacklistMatcher(registry, CONFIG).evaluate(_make_order(email=None))
        assert result.score == 100

    @pytest.mark.asyncio
    async def test_ip_hit_scores_80(self):
        registry = InMemoryBlacklistRegistry()
        await registry.add(_entry(BlacklistType.IP, "198.51.100.4"))
        matcher = BlacklistMatcher(registry, CONFIG)
        result = await matcher.evaluate(_make_order())
        assert [f.kind for f in result.factors] == ["blacklisted_ip"]
        assert result.score == 80
        assert not matcher.is_email_hit(result)
        assert matcher.should_alert(result)

    @pytest.mark.asyncio
    async def test_email_and_ip_take_max_not_sum(self):
        registry = InMemoryBlacklistRegistry()
        await registry.add(_entry(BlacklistType.EMAIL, "buyer@example.com", entry_id="bl-1"))
        await registry.add(_entry(BlacklistType.IP, "198.51.100.4", entry_id="bl-2"))
        result = await BlacklistMatcher(registry, CONFIG).evaluate(_make_order())
        assert len(result.factors) == 2
        assert result.score == 100

    @pytest.mark.asyncio
    async def test_expired_entry_ignored_and_deactivated(self):
        registry = InMemoryBlacklistRegistry()
        await registry.add(
            _entry(BlacklistType.EMAIL, "buyer@example.com", expires_at=NOW - timedelta(hours=1))
        )
        matcher = BlacklistMatcher(registry, CONFIG)
        result = await matcher.evaluate(_make_order())
        assert result.factors == []
        assert not matcher.should_alert(result)
        assert registry.entry("bl-1").is_active is False

    @pytest.mark.asyncio
    async def test_unexpired_entry_matches(self):
        registry = InMemoryBlacklistRegistry()
        await registry.add(
            _entry(BlacklistType.EMAIL, "buyer@example.com", expires_at=NOW + timedelta(days=1))
        )
        result = await BlacklistMatcher(registry, CONFIG).evaluate(_make_order())
        assert result.score == 100
        assert registry.entry("bl-1").is_active is True

    @pytest.mark.asyncio
    async def test_permanent_entry_found_after_expired_one_retired(self):
        registry = InMemoryBlacklistRegistry()
        await registry.add(
            _entry(
                BlacklistType.EMAIL,
                "buyer@example.com",
                expires_at=NOW - timedelta(days=1),
                entry_id="bl-temp",
            )
        )
        await registry.add(
            _entry(BlacklistType.EMAIL, "buyer@example.com", entry_id="bl-permanent")
        )
        matcher = BlacklistMatcher(registry, CONFIG)

        result = await matcher.evaluate(_make_order(ip_address=None))

        assert result.score == 100
        assert matcher.is_email_hit(result)
        assert matcher.should_alert(result)
        assert registry.entry("bl-temp").is_active is False
        assert registry.entry("bl-permanent").is_active is True

    @pytest.mark.asyncio
    async def test_all_entries_expired_retires_each_once(self):
        registry = InMemoryBlacklistRegistry()
        for i in range(3):
            await registry.add(
                _entry(
                    BlacklistType.EMAIL,
                    "buyer@example.com",
                    expires_at=NOW - timedelta(days=i + 1),
                    entry_id=f"bl-{i}",
                )
            )
        result = await BlacklistMatcher(registry, CONFIG).evaluate(_make_order(ip_address=None))
        assert result.factors == []
        assert all(not registry.entry(f"bl-{i}").is_active for i in range(3))

    @pytest.mark.asyncio
    async def test_registry_that_keeps_returning_expired_entry_terminates(self):
        stale = _entry(BlacklistType.EMAIL, "buyer@example.com", expires_at=NOW - timedelta(days=1))
        registry = AsyncMock()
        registry.find.return_value = stale
        result = await BlacklistMatcher(registry, CONFIG).evaluate(_make_order(ip_address=None))
        assert result.factors == []
        registry.deactivate.assert_awaited_once_with("bl-1")

    @pytest.mark.asyncio
    async def test_lookup_failure_fails_open(self):
        registry = AsyncMock()
        registry.find.side_effect = ConnectionError("registry down")
        result = await BlacklistMatcher(registry, CONFIG).evaluate(_make_order())
        assert result.failed
        assert result.factors == []

    @pytest.mark.asyncio
    async def test_email_hit_kept_when_ip_lookup_fails(self):
        entry = _entry(BlacklistType.EMAIL, "buyer@example.com")

        async def find(entry_type, value):
            if entry_type == BlacklistType.IP:
                raise ConnectionError("ip index down")
            return entry

        registry = AsyncMock()
        registry.find.side_effect = find
        matcher = BlacklistMatcher(registry, CONFIG)
        result = await matcher.evaluate(_make_order())
        assert not result.failed
        assert matcher.is_email_hit(result)
