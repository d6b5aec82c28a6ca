# tests/conftest.py
import pytest

from tiermint.config import LaunchConfig, to_wei
from tiermint.engine import MintEngine

OWNER = LaunchConfig().owner
ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40


@pytest.fixture
def owner():
    return OWNER


@pytest.fixture
def alice():
    return ALICE


@pytest.fixture
def bob():
    return BOB


@pytest.fixture
def cfg():
    """Default launch: 1000 items split 600/300/100 at 0.05 ether."""
    return LaunchConfig()


@pytest.fixture
def small_cfg():
    """Ten items split 6/3/1 so a single privileged call can sell out."""
    return LaunchConfig(
        max_supply=10,
        tier_capacities={"common": 6, "rare": 3, "legendary": 1},
    )


@pytest.fixture
def engine(cfg):
    """Private, unpaused sale with funded wallets for alice and bob."""
    eng = MintEngine(cfg)
    eng.fund_wallet(ALICE, to_wei(10))
    eng.fund_wallet(BOB, to_wei(10))
    return eng


@pytest.fixture
def live_engine(engine):
    """Same as ``engine`` with the public sale open."""
    engine.go_public(OWNER)
    return engine
