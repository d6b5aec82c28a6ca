from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Tuple, Optional, Literal, List
from collections import deque
import copy

from .errors import (
    AlreadyPaused,
    AlreadyPublic,
    AlreadyUnpaused,
    CapacityExceeded,
    InsufficientPayment,
    InvalidInput,
    NotEligible,
)
from .ledger import Balances, OwnershipLedger

TierName = Literal["common", "rare", "legendary"]
TIER_ORDER: Tuple[TierName, ...] = ("common", "rare", "legendary")

def format_supply(counts: Dict[str, int]) -> str:
    if not counts:
        return "(empty)"
    ordered = [t for t in TIER_ORDER if t in counts] + sorted(t for t in counts if t not in TIER_ORDER)
    return ", ".join(f"{tier}:{counts[tier]}" for tier in ordered)

# -----------------------------
# Events
# -----------------------------
@dataclass
class Event:
    block: int
    event_type: str
    actor_id: Optional[str] = None
    token_id: Optional[int] = None
    tier: Optional[str] = None
    amount: Optional[int] = None
    meta: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "block": self.block,
            "event_type": self.event_type,
            "actor_id": self.actor_id,
            "token_id": self.token_id,
            "tier": self.tier,
            "amount": self.amount,
            "meta": dict(self.meta),
        }

class EventLog:
    def __init__(self, maxlen: Optional[int] = None) -> None:
        self.events = deque(maxlen=maxlen)

    def add(self, e: Event) -> None:
        self.events.append(e)

    def extend(self, events: List[Event]) -> None:
        self.events.extend(events)

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]

    def tail(self, n: int = 200) -> List[Event]:
        if n <= 0:
            return []
        if n >= len(self.events):
            return list(self.events)
        return list(self.events)[-n:]

    def __len__(self) -> int:
        return len(self.events)


# -----------------------------
# Tier registry
# -----------------------------
@dataclass
class Tier:
    name: str
    capacity: int
    allocated: int = 0
    descriptor: str = ""

    def remaining(self) -> int:
        return self.capacity - self.allocated

class TierRegistry:
    def __init__(self, capacities: Dict[str, int], descriptors: Optional[Dict[str, str]] = None) -> None:
        descriptors = descriptors or {}
        self.tiers: Dict[str, Tier] = {}
        for name in TIER_ORDER:
            self.tiers[name] = Tier(
                name=name,
                capacity=int(capacities[name]),
                descriptor=descriptors.get(name, name),
            )

    def get(self, name: str) -> Tier:
        tier = self.tiers.get(name)
        if tier is None:
            raise InvalidInput(f"unknown tier: {name}")
        return tier

    def remaining(self, name: str) -> int:
        return self.get(name).remaining()

    def remaining_by_tier(self) -> List[int]:
        return [self.tiers[name].remaining() for name in TIER_ORDER]

    def has_availability(self) -> bool:
        return any(t.remaining() > 0 for t in self.tiers.values())

    def reserve(self, name: str) -> None:
        tier = self.get(name)
        if tier.remaining() <= 0:
            raise CapacityExceeded(f"tier {name} is full ({tier.allocated}/{tier.capacity})")
        tier.allocated += 1

    def total_capacity(self) -> int:
        return sum(t.capacity for t in self.tiers.values())

    def total_allocated(self) -> int:
        return sum(t.allocated for t in self.tiers.values())

    def allocated_counts(self) -> Dict[str, int]:
        return {name: self.tiers[name].allocated for name in TIER_ORDER}

    def rows(self) -> List[dict]:
        return [
            {
                "tier": t.name,
                "tier_id": idx,
                "capacity": t.capacity,
                "allocated": t.allocated,
                "remaining": t.remaining(),
                "descriptor": t.descriptor,
            }
            for idx, t in enumerate(self.tiers[name] for name in TIER_ORDER)
        ]


@dataclass(frozen=True)
class AllocationRecord:
    token_id: int
    owner: str
    tier: str
    block: int


# -----------------------------
# Quotas / allow list
# -----------------------------
class QuotaLedger:
    def __init__(self) -> None:
        self.usage: Dict[str, int] = {}  # address -> units minted via public/allow-list

    def used(self, address: str) -> int:
        return int(self.usage.get(address, 0))

    def headroom(self, address: str, cap: int) -> int:
        return max(0, cap - self.used(address))

    def check(self, address: str, units: int, cap: int) -> Tuple[bool, str]:
        if self.used(address) + units > cap:
            return False, "quota_exceeded"
        return True, "ok"

    def consume(self, address: str, units: int) -> None:
        self.usage[address] = self.used(address) + int(units)

@dataclass
class AllowListGrant:
    eligible: bool = False
    remaining: int = 0

class AllowList:
    def __init__(self) -> None:
        self.grants: Dict[str, AllowListGrant] = {}

    def status(self, address: str) -> AllowListGrant:
        g = self.grants.get(address)
        return AllowListGrant(g.eligible, g.remaining) if g else AllowListGrant()

    def check(self, address: str, units: int = 1) -> Tuple[bool, str]:
        g = self.grants.get(address)
        if g is None or not g.eligible:
            return False, "not_eligible"
        if g.remaining < units:
            return False, "allow_list_exhausted"
        return True, "ok"

    def grant(self, address: str, extra_units: int) -> AllowListGrant:
        g = self.grants.setdefault(address, AllowListGrant())
        g.remaining += int(extra_units)
        g.eligible = g.remaining > 0
        return AllowListGrant(g.eligible, g.remaining)

    def revoke(self, address: str) -> None:
        g = self.grants.get(address)
        if g is None or not g.eligible:
            raise InvalidInput(f"{address} is not on the allow list")
        g.eligible = False
        g.remaining = 0

    def consume(self, address: str, units: int = 1) -> int:
        ok, reason = self.check(address, units)
        if not ok:
            raise NotEligible(f"{address} has no free allow-list units", reason=reason)
        g = self.grants[address]
        g.remaining -= units
        if g.remaining == 0:
            g.eligible = False
        return g.remaining


# -----------------------------
# Lifecycle gate
# -----------------------------
@dataclass
class LifecycleGate:
    paused: bool = False
    public_live: bool = False

    def pause(self) -> None:
        if self.paused:
            raise AlreadyPaused("minting is already paused")
        self.paused = True

    def unpause(self) -> None:
        if not self.paused:
            raise AlreadyUnpaused("minting is not paused")
        self.paused = False

    def go_public(self) -> None:
        if self.public_live:
            raise AlreadyPublic("public sale already live")
        self.public_live = True

    def check_live(self) -> Tuple[bool, str]:
        if self.paused:
            return False, "paused"
        return True, "ok"

    def check_public(self) -> Tuple[bool, str]:
        ok, reason = self.check_live()
        if not ok:
            return ok, reason
        if not self.public_live:
            return False, "not_public"
        return True, "ok"

    def label(self) -> str:
        return f"{'paused' if self.paused else 'live'}/{'public' if self.public_live else 'private'}"


# -----------------------------
# Settlement
# -----------------------------
@dataclass(frozen=True)
class SettlementQuote:
    paid: int
    unit_price: int
    units: int
    cost: int
    overpayment: int

    def to_dict(self) -> dict:
        return {
            "paid": self.paid,
            "unit_price": self.unit_price,
            "units": self.units,
            "cost": self.cost,
            "overpayment": self.overpayment,
        }

def settle(paid: int, unit_price: int, units: int) -> SettlementQuote:
    cost = int(unit_price) * int(units)
    if paid < cost:
        raise InsufficientPayment(f"paid {paid} wei, need {cost} wei")
    return SettlementQuote(paid=paid, unit_price=unit_price, units=units, cost=cost, overpayment=paid - cost)


# -----------------------------
# Sale settings + state arena
# -----------------------------
@dataclass
class SaleSettings:
    mint_price_wei: int
    max_per_address: int
    max_per_call: int
    base_metadata_uri: str

@dataclass
class MintState:
    """Every mutable record a transaction may touch; snapshotted and restored as a unit."""

    owner: str
    settings: SaleSettings
    registry: TierRegistry
    quotas: QuotaLedger = field(default_factory=QuotaLedger)
    allow_list: AllowList = field(default_factory=AllowList)
    gate: LifecycleGate = field(default_factory=LifecycleGate)
    ledger: OwnershipLedger = field(default_factory=OwnershipLedger)
    balances: Balances = field(default_factory=Balances)
    records: Dict[int, AllocationRecord] = field(default_factory=dict)
    next_token_id: int = 1

    def snapshot(self) -> MintState:
        # allocation records are frozen; a shallow copy of the map is enough
        records = self.records
        self.records = {}
        try:
            clone = copy.deepcopy(self)
        finally:
            self.records = records
        clone.records = dict(records)
        return clone
