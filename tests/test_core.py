"""
tests/test_core.py

Registry, quota, allow-list, lifecycle and settlement building blocks.
"""

import pytest

from tiermint.config import LaunchConfig, from_wei, to_wei
from tiermint.core import (
    AllocationRecord,
    AllowList,
    Event,
    EventLog,
    LifecycleGate,
    MintState,
    QuotaLedger,
    SaleSettings,
    TierRegistry,
    TIER_ORDER,
    format_supply,
    settle,
)
from tiermint.errors import (
    AlreadyPaused,
    AlreadyPublic,
    AlreadyUnpaused,
    CapacityExceeded,
    InsufficientPayment,
    InvalidInput,
    NotAuthorized,
    NotEligible,
)

CAPS = {"common": 600, "rare": 300, "legendary": 100}


@pytest.fixture
def registry():
    return TierRegistry(CAPS)


class TestTierRegistry:
    def test_starts_empty_with_full_remaining(self, registry):
        assert registry.total_capacity() == 1000
        assert registry.total_allocated() == 0
        assert registry.remaining_by_tier() == [600, 300, 100]
        assert registry.has_availability()

    def test_reserve_increments_allocated(self, registry):
        registry.reserve("rare")
        registry.reserve("rare")
        assert registry.get("rare").allocated == 2
        assert registry.remaining("rare") == 298
        assert registry.total_allocated() == 2

    def test_reserve_full_tier_raises(self):
        reg = TierRegistry({"common": 1, "rare": 1, "legendary": 1})
        reg.reserve("legendary")
        with pytest.raises(CapacityExceeded):
            reg.reserve("legendary")
        assert reg.get("legendary").allocated == 1

    def test_has_availability_false_when_all_full(self):
        reg = TierRegistry({"common": 1, "rare": 1, "legendary": 1})
        for tier in TIER_ORDER:
            reg.reserve(tier)
        assert not reg.has_availability()

    def test_unknown_tier_is_invalid(self, registry):
        with pytest.raises(InvalidInput):
            registry.reserve("mythic")

    def test_descriptors_default_to_tier_name(self, registry):
        rows = registry.rows()
        assert [r["tier"] for r in rows] == list(TIER_ORDER)
        assert [r["tier_id"] for r in rows] == [0, 1, 2]
        assert rows[2]["descriptor"] == "legendary"

    def test_format_supply_orders_by_tier(self):
        assert format_supply({"legendary": 1, "common": 3}) == "common:3, legendary:1"
        assert format_supply({}) == "(empty)"


class TestQuotaLedger:
    def test_check_respects_cap(self):
        q = QuotaLedger()
        assert q.check("a", 5, 5) == (True, "ok")
        q.consume("a", 4)
        assert q.check("a", 1, 5) == (True, "ok")
        assert q.check("a", 2, 5) == (False, "quota_exceeded")
        assert q.headroom("a", 5) == 1

    def test_usage_is_per_address(self):
        q = QuotaLedger()
        q.consume("a", 3)
        assert q.used("a") == 3
        assert q.used("b") == 0


class TestAllowList:
    def test_grant_of_n_allows_exactly_n(self):
        al = AllowList()
        al.grant("a", 3)
        assert al.consume("a") == 2
        assert al.consume("a") == 1
        assert al.consume("a") == 0
        with pytest.raises(NotEligible) as exc:
            al.consume("a")
        assert isinstance(exc.value, NotAuthorized)

    def test_last_unit_clears_flag(self):
        al = AllowList()
        al.grant("a", 1)
        assert al.status("a").eligible
        al.consume("a")
        status = al.status("a")
        assert not status.eligible
        assert status.remaining == 0

    def test_top_up_restores_eligibility(self):
        al = AllowList()
        al.grant("a", 1)
        al.consume("a")
        grant = al.grant("a", 2)
        assert grant.eligible and grant.remaining == 2

    def test_unknown_address_not_eligible(self):
        al = AllowList()
        assert al.check("nobody") == (False, "not_eligible")
        assert not al.status("nobody").eligible

    def test_revoke(self):
        al = AllowList()
        al.grant("a", 4)
        al.revoke("a")
        assert al.check("a") == (False, "not_eligible")
        with pytest.raises(InvalidInput):
            al.revoke("a")

    def test_status_is_a_copy(self):
        al = AllowList()
        al.grant("a", 2)
        status = al.status("a")
        status.remaining = 99
        assert al.status("a").remaining == 2


class TestLifecycleGate:
    def test_initial_state_live_private(self):
        gate = LifecycleGate()
        assert gate.check_live() == (True, "ok")
        assert gate.check_public() == (False, "not_public")
        assert gate.label() == "live/private"

    def test_pause_unpause_reject_repeats(self):
        gate = LifecycleGate()
        with pytest.raises(AlreadyUnpaused):
            gate.unpause()
        gate.pause()
        with pytest.raises(AlreadyPaused):
            gate.pause()
        assert gate.check_live() == (False, "paused")
        gate.unpause()
        assert gate.check_live() == (True, "ok")

    def test_go_public_is_one_way(self):
        gate = LifecycleGate()
        gate.go_public()
        assert gate.check_public() == (True, "ok")
        with pytest.raises(AlreadyPublic):
            gate.go_public()
        assert gate.public_live

    def test_pause_blocks_public(self):
        gate = LifecycleGate(public_live=True)
        gate.pause()
        assert gate.check_public() == (False, "paused")
        assert gate.label() == "paused/public"


class TestSettlement:
    PRICE = to_wei("0.05")

    def test_exact_payment_has_no_overpayment(self):
        quote = settle(to_wei("0.15"), self.PRICE, 3)
        assert quote.cost == to_wei("0.15")
        assert quote.overpayment == 0

    def test_overpayment_is_returned_exactly(self):
        extra = 123_456_789
        quote = settle(self.PRICE * 2 + extra, self.PRICE, 2)
        assert quote.overpayment == extra

    def test_underpayment_fails(self):
        with pytest.raises(InsufficientPayment):
            settle(self.PRICE * 2 - 1, self.PRICE, 2)


class TestEventLog:
    def test_tail_and_filter(self):
        log = EventLog()
        for i in range(5):
            log.add(Event(i, "ALLOCATED" if i % 2 else "PRICE_CHANGED", token_id=i))
        assert [e.block for e in log.tail(2)] == [3, 4]
        assert log.tail(0) == []
        assert len(log.of_type("ALLOCATED")) == 2
        assert len(log) == 5

    def test_maxlen_drops_oldest(self):
        log = EventLog(maxlen=2)
        log.extend([Event(1, "A"), Event(2, "B"), Event(3, "C")])
        assert [e.block for e in log.tail()] == [2, 3]


class TestMintStateSnapshot:
    def test_snapshot_is_independent(self):
        state = MintState(
            owner="0x" + "a" * 40,
            settings=SaleSettings(1, 5, 5, "ipfs://x/"),
            registry=TierRegistry(CAPS),
        )
        state.records[1] = AllocationRecord(1, "a", "rare", 0)
        clone = state.snapshot()
        state.registry.reserve("common")
        state.quotas.consume("a", 1)
        state.records[2] = AllocationRecord(2, "a", "common", 0)
        state.settings.mint_price_wei = 7

        assert clone.registry.total_allocated() == 0
        assert clone.quotas.used("a") == 0
        assert list(clone.records) == [1]
        assert clone.settings.mint_price_wei == 1
        assert list(state.records) == [1, 2]


class TestLaunchConfig:
    def test_defaults_match_launch_plan(self):
        cfg = LaunchConfig()
        assert cfg.tier_capacities == CAPS
        assert from_wei(cfg.mint_price_wei) == pytest.approx(0.05)

    def test_capacity_sum_must_equal_supply(self):
        with pytest.raises(ValueError):
            LaunchConfig(max_supply=999)

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            LaunchConfig(max_supply=900, tier_capacities={"common": 600, "rare": 300, "legendary": 0})

    def test_rejects_extra_tiers(self):
        with pytest.raises(ValueError, match="unknown tiers"):
            LaunchConfig(max_supply=15, tier_capacities={"common": 6, "rare": 3, "legendary": 1, "epic": 5})
        with pytest.raises(ValueError, match="unknown tiers"):
            LaunchConfig(tier_descriptors={"common": "c", "rare": "r", "legendary": "l", "epic": "e"})

    def test_rejects_unknown_entropy_mode(self):
        with pytest.raises(ValueError):
            LaunchConfig(entropy_mode="oracle")

    def test_to_wei_is_exact(self):
        assert to_wei("0.05") * 3 == to_wei("0.15")
        assert to_wei(1) == 10 ** 18
