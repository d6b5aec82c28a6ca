from __future__ import annotations
from dataclasses import dataclass
from typing import Literal, Optional
import numpy as np
import random

from .config import LaunchConfig, WEI_PER_ETHER

RefundBehaviour = Literal["accepts", "rejects", "reentrant"]

@dataclass
class Collector:
    address: str
    wallet_wei: int
    appetite: float
    allow_listed: bool
    behaviour: RefundBehaviour

class CollectorFactory:
    def __init__(self, cfg: LaunchConfig, rng: Optional[random.Random] = None) -> None:
        self.cfg = cfg
        self.rng = rng or random.Random()
        self.collector_counter = 0

    def _new_address(self) -> str:
        self.collector_counter += 1
        return "0x" + f"{self.collector_counter:040x}"

    def sample_behaviour(self) -> RefundBehaviour:
        p_rejects = max(0.0, float(self.cfg.p_refund_rejecting))
        p_reentrant = max(0.0, float(self.cfg.p_reentrant))
        r = self.rng.random()
        if r < p_reentrant:
            return "reentrant"
        r -= p_reentrant
        if r < p_rejects:
            return "rejects"
        return "accepts"

    def create_collector(self) -> Collector:
        cfg = self.cfg
        wallet_ether = max(0.0, np.random.exponential(cfg.collector_wallet_mean_ether))
        return Collector(
            address=self._new_address(),
            wallet_wei=int(wallet_ether * WEI_PER_ETHER),
            appetite=max(1.0, np.random.exponential(cfg.collector_appetite_mean)),
            allow_listed=self.rng.random() < cfg.p_allow_listed,
            behaviour=self.sample_behaviour(),
        )

    def sample_units(self, collector: Collector, max_per_call: int) -> int:
        units = 1 + int(np.random.poisson(max(0.0, collector.appetite - 1.0)))
        return max(1, min(units, max_per_call))

    def sample_payment(self, units: int, unit_price: int) -> int:
        """Exact payment most of the time, an occasional overpayment."""
        cost = units * unit_price
        if self.rng.random() < self.cfg.p_overpay:
            return cost + int(cost * self.rng.uniform(0.0, self.cfg.overpay_frac_max))
        return cost
