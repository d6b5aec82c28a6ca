from __future__ import annotations
from dataclasses import dataclass
from typing import Protocol
import hashlib
import random

import numpy as np

from .core import TIER_ORDER, TierRegistry
from .errors import NoAvailability


@dataclass(frozen=True)
class DrawContext:
    block: int
    timestamp: int
    requester: str
    nonce: int  # id about to be assigned; strictly increasing across draws


class EntropySource(Protocol):
    def draw(self, ctx: DrawContext, bound: int) -> int:
        """Return an integer in [0, bound)."""
        ...


class BlockEntropy:
    """Hash of block data, requester and nonce.

    Known weak entropy: anyone who can predict the block number, timestamp
    and salt can predict the tier. It only guarantees that draws differ
    between units of the same request. Substitute a stronger source when
    requesters are adversarial.
    """

    def __init__(self, seed: int = 1) -> None:
        self._salt = random.Random(seed).getrandbits(256)

    def draw(self, ctx: DrawContext, bound: int) -> int:
        payload = f"{ctx.block}:{ctx.timestamp}:{self._salt}:{ctx.requester}:{ctx.nonce}".encode()
        return int.from_bytes(hashlib.sha256(payload).digest(), "big") % bound


class SeededEntropy:
    def __init__(self, seed: int = 1) -> None:
        self.rng = random.Random(seed)

    def draw(self, ctx: DrawContext, bound: int) -> int:
        return self.rng.randrange(bound)


class WeightedAllocator:
    """Picks a tier with probability proportional to its remaining capacity."""

    def __init__(self, entropy: EntropySource) -> None:
        self.entropy = entropy

    def weights(self, registry: TierRegistry) -> np.ndarray:
        remaining = np.asarray(registry.remaining_by_tier(), dtype=np.int64)
        total = int(remaining.sum())
        if total == 0:
            return np.zeros(len(TIER_ORDER), dtype=float)
        return remaining / total

    def select(self, registry: TierRegistry, ctx: DrawContext) -> str:
        remaining = np.asarray(registry.remaining_by_tier(), dtype=np.int64)
        total = int(remaining.sum())
        if total == 0:
            raise NoAvailability("all tiers are exhausted")
        r = int(self.entropy.draw(ctx, total))
        if r < 0 or r >= total:
            raise ValueError(f"entropy draw {r} outside [0, {total})")
        # first tier whose cumulative remaining exceeds r; empty tiers never match
        cumulative = np.cumsum(remaining)
        idx = int(np.searchsorted(cumulative, r, side="right"))
        return TIER_ORDER[idx]
