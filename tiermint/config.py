from dataclasses import dataclass, field
from decimal import Decimal

WEI_PER_ETHER = 10 ** 18
ZERO_ADDRESS = "0x" + "0" * 40

@dataclass
class LaunchConfig:
    # Supply
    max_supply: int = 1000
    tier_capacities: dict[str, int] = field(
        default_factory=lambda: {"common": 600, "rare": 300, "legendary": 100}
    )
    tier_descriptors: dict[str, str] = field(
        default_factory=lambda: {"common": "common", "rare": "rare", "legendary": "legendary"}
    )
    base_metadata_uri: str = "ipfs://tiermint/"

    # Sale rules
    mint_price_wei: int = 50_000_000_000_000_000  # 0.05 ether
    max_per_call: int = 10
    max_per_address: int = 20
    owner: str = "0x" + "a" * 40
    privileged_respects_pause: bool = False  # privileged path ignores pause unless set

    # Entropy
    entropy_mode: str = "block"  # "block" or "seeded"
    entropy_seed: int = 1

    # Launch simulation
    initial_collectors: int = 200
    collector_wallet_mean_ether: float = 1.0
    collector_appetite_mean: float = 2.0    # units wanted per attempt
    p_allow_listed: float = 0.15
    allow_list_units: int = 1
    p_overpay: float = 0.10
    overpay_frac_max: float = 0.5
    p_refund_rejecting: float = 0.02        # wallet rejects incoming value
    p_reentrant: float = 0.01               # wallet tries to mint again on refund
    attempts_per_block: int = 8
    block_time_seconds: int = 12
    genesis_timestamp: int = 1_700_000_000
    public_launch_block: int | None = 20
    pause_block: int | None = None
    unpause_block: int | None = None
    withdraw_stride_blocks: int = 0         # owner sweeps proceeds every N blocks, 0 disables

    # Metrics / logs
    metrics_stride: int = 1
    event_log_maxlen: int | None = None

    # Debug
    debug_ledger: bool = False

    def __post_init__(self) -> None:
        tiers = ("common", "rare", "legendary")
        missing = [t for t in tiers if t not in self.tier_capacities]
        if missing:
            raise ValueError(f"missing tier capacities: {missing}")
        unknown = sorted((set(self.tier_capacities) | set(self.tier_descriptors)) - set(tiers))
        if unknown:
            raise ValueError(f"unknown tiers: {unknown}")
        for tier, cap in self.tier_capacities.items():
            if int(cap) <= 0:
                raise ValueError(f"tier {tier} capacity must be positive")
        total = sum(int(c) for c in self.tier_capacities.values())
        if total != self.max_supply:
            raise ValueError(f"tier capacities sum to {total}, expected max_supply={self.max_supply}")
        for tier in self.tier_capacities:
            self.tier_descriptors.setdefault(tier, tier)
        if self.entropy_mode not in ("block", "seeded"):
            raise ValueError(f"unknown entropy_mode: {self.entropy_mode}")
        if self.max_per_call < 1 or self.max_per_address < 1:
            raise ValueError("max_per_call and max_per_address must be >= 1")
        if self.mint_price_wei <= 0:
            raise ValueError("mint_price_wei must be positive")
        if not self.owner or self.owner == ZERO_ADDRESS:
            raise ValueError("owner must be a non-zero address")


def to_wei(ether: float | str) -> int:
    return int(Decimal(str(ether)) * WEI_PER_ETHER)


def from_wei(wei: int) -> float:
    return wei / WEI_PER_ETHER
