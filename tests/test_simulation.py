"""
tests/test_simulation.py

Launch simulation driven through MintEngine.step.
"""

import pytest

from tiermint.config import LaunchConfig
from tiermint.engine import MintEngine
from tiermint.factory import CollectorFactory


def small_launch(**overrides):
    params = dict(
        max_supply=100,
        tier_capacities={"common": 60, "rare": 30, "legendary": 10},
        initial_collectors=50,
        attempts_per_block=10,
        public_launch_block=3,
    )
    params.update(overrides)
    return LaunchConfig(**params)


class TestLaunchSimulation:
    def test_run_keeps_invariants(self):
        eng = MintEngine(small_launch(), seed=7)
        eng.step(30)

        st = eng.state
        assert eng.block == 30
        assert 0 < eng.total_minted() <= 100
        for tier in st.registry.tiers.values():
            assert 0 <= tier.allocated <= tier.capacity
        assert sorted(st.records) == list(range(1, st.next_token_id))
        assert sum(len(h) for h in st.ledger.holdings.values()) == eng.total_minted()
        for address in eng.collectors:
            assert eng.minted_by(address) <= st.settings.max_per_address
        assert len(eng.log.of_type("PUBLIC_LAUNCH")) == 1

    def test_metrics_rows_per_block(self):
        eng = MintEngine(small_launch(), seed=3)
        eng.step(12)
        supply = eng.metrics.supply_df()
        assert list(supply["block"]) == list(range(1, 13))
        assert supply["minted_total"].is_monotonic_increasing
        assert not supply.loc[supply["block"] < 3, "public_live"].any()
        assert supply.loc[supply["block"] >= 3, "public_live"].all()
        fill = eng.metrics.tier_fill_df()
        assert set(fill.columns) == {"common", "rare", "legendary"}
        assert int(fill.iloc[-1].sum()) == eng.total_minted()

    def test_metrics_stride(self):
        eng = MintEngine(small_launch(metrics_stride=5), seed=3)
        eng.step(12)
        assert list(eng.metrics.supply_df()["block"]) == [5, 10]

    def test_pause_window_blocks_minting(self):
        eng = MintEngine(
            small_launch(public_launch_block=1, pause_block=5, unpause_block=8, attempts_per_block=4),
            seed=2,
        )
        eng.step(10)
        supply = eng.metrics.supply_df().set_index("block")
        assert supply.loc[[5, 6, 7], "minted_block"].sum() == 0
        assert supply.loc[[5, 6, 7], "paused"].all()
        assert not supply.loc[8, "paused"]
        assert eng.failures.get("paused", 0) > 0

    def test_rejecting_wallets_never_keep_overpaid_mints(self):
        eng = MintEngine(
            small_launch(p_overpay=1.0, p_refund_rejecting=1.0, p_reentrant=0.0, p_allow_listed=0.0),
            seed=4,
        )
        eng.step(15)
        assert eng.total_minted() == 0
        assert eng.failures.get("refund_failed", 0) > 0
        assert eng.proceeds() == 0

    def test_reentrant_wallets_are_blocked(self):
        eng = MintEngine(
            small_launch(p_overpay=1.0, p_reentrant=1.0, p_allow_listed=0.0, public_launch_block=1),
            seed=5,
        )
        eng.step(10)
        assert eng.reentry_blocked > 0
        assert eng.total_minted() == 0

    def test_owner_sweeps_proceeds(self):
        eng = MintEngine(small_launch(public_launch_block=1, withdraw_stride_blocks=5), seed=6)
        eng.step(10)
        withdrawn = sum(e.amount for e in eng.log.of_type("PROCEEDS_WITHDRAWN"))
        assert withdrawn == eng.wallet_balance(eng.owner)
        assert withdrawn + eng.proceeds() == sum(
            e.amount for e in eng.log.of_type("BATCH_MINTED") if e.meta["path"] == "public"
        )

    def test_same_seed_same_outcome(self):
        a = MintEngine(small_launch(), seed=11)
        a.step(20)
        b = MintEngine(small_launch(), seed=11)
        b.step(20)
        assert [r.tier for r in a.state.records.values()] == [r.tier for r in b.state.records.values()]
        assert a.failures == b.failures


class TestCollectorFactory:
    def test_addresses_are_unique(self):
        factory = CollectorFactory(LaunchConfig())
        addresses = {factory.create_collector().address for _ in range(20)}
        assert len(addresses) == 20

    def test_units_within_call_limit(self):
        factory = CollectorFactory(LaunchConfig(collector_appetite_mean=50.0))
        for _ in range(50):
            c = factory.create_collector()
            assert 1 <= factory.sample_units(c, 10) <= 10

    @pytest.mark.parametrize("p_overpay", [0.0, 1.0])
    def test_payment_never_below_cost(self, p_overpay):
        factory = CollectorFactory(LaunchConfig(p_overpay=p_overpay))
        for units in range(1, 6):
            assert factory.sample_payment(units, 100) >= units * 100

    def test_behaviour_mix(self):
        factory = CollectorFactory(LaunchConfig(p_refund_rejecting=0.0, p_reentrant=0.0))
        assert {factory.create_collector().behaviour for _ in range(20)} == {"accepts"}
