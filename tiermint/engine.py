from __future__ import annotations
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple
import logging
import numpy as np
import random

from .allocator import BlockEntropy, DrawContext, EntropySource, SeededEntropy, WeightedAllocator
from .config import LaunchConfig
from .core import (
    AllocationRecord,
    AllowListGrant,
    Event,
    EventLog,
    MintState,
    SaleSettings,
    TierRegistry,
    format_supply,
    settle,
)
from .errors import (
    CapacityExceeded,
    InsufficientPayment,
    InvalidInput,
    MintError,
    NoAvailability,
    NotEligible,
    NotPublic,
    Paused,
    QuotaExceeded,
    ReentrantCall,
    RefundFailed,
    WithdrawalFailed,
)
from .factory import Collector, CollectorFactory
from .ledger import PaymentRail, require_address, require_owner
from .metrics import MetricsStore

logger = logging.getLogger(__name__)

CUSTODY_ADDRESS = "0x" + "c" * 40

# reason code from a can_mint_* pre-check -> error raised by the entry point
REASON_ERRORS = {
    "paused": Paused,
    "not_public": NotPublic,
    "invalid_units": InvalidInput,
    "invalid_value": InvalidInput,
    "invalid_recipient": InvalidInput,
    "insufficient_payment": InsufficientPayment,
    "sold_out": NoAvailability,
    "supply_exceeded": CapacityExceeded,
    "quota_exceeded": QuotaExceeded,
    "not_eligible": NotEligible,
    "allow_list_exhausted": NotEligible,
}

class MintEngine:
    def __init__(self, cfg: LaunchConfig, seed: int = 1, entropy: Optional[EntropySource] = None) -> None:
        self.cfg = cfg
        self.rng = random.Random(seed)
        np.random.seed(seed)

        self.block: int = 0
        self.timestamp: int = cfg.genesis_timestamp
        self.log = EventLog(maxlen=cfg.event_log_maxlen)
        self.metrics = MetricsStore()
        self.rail = PaymentRail()

        if entropy is None:
            if cfg.entropy_mode == "seeded":
                entropy = SeededEntropy(cfg.entropy_seed)
            else:
                entropy = BlockEntropy(cfg.entropy_seed)
        self.allocator = WeightedAllocator(entropy)

        self.state = MintState(
            owner=cfg.owner,
            settings=SaleSettings(
                mint_price_wei=cfg.mint_price_wei,
                max_per_address=cfg.max_per_address,
                max_per_call=cfg.max_per_call,
                base_metadata_uri=cfg.base_metadata_uri,
            ),
            registry=TierRegistry(cfg.tier_capacities, cfg.tier_descriptors),
        )
        self._in_call: bool = False
        self._pending: List[Event] = []

        # launch simulation
        self.factory = CollectorFactory(cfg, self.rng)
        self.collectors: Dict[str, Collector] = {}
        self.failures: Dict[str, int] = {}
        self.refunds_total_wei: int = 0
        self.reentry_blocked: int = 0
        self._attempts_block: int = 0
        self._failures_block: int = 0
        self._minted_block: int = 0

    # ---- transactions ----
    @contextmanager
    def _transaction(self, action: str) -> Iterator[MintState]:
        if self._in_call:
            raise ReentrantCall(f"{action} called while another call is in flight")
        self._in_call = True
        snapshot = self.state.snapshot()
        self._pending = []
        try:
            yield self.state
        except Exception as exc:
            self.state = snapshot
            self._pending = []
            reason = exc.reason if isinstance(exc, MintError) else type(exc).__name__
            logger.debug("rolled back %s at block %d: %s", action, self.block, reason)
            raise
        else:
            self.log.extend(self._pending)
            self._pending = []
        finally:
            self._in_call = False

    def _emit(self, event_type: str, **kwargs) -> None:
        self._pending.append(Event(self.block, event_type, **kwargs))

    def _debug_supply_change(self, action: str, actor: str, before: Dict[str, int], after: Dict[str, int]) -> None:
        if not self.cfg.debug_ledger or not logger.isEnabledFor(logging.DEBUG):
            return
        logger.debug(
            "[MINT] block=%d action=%s actor=%s before={ %s } after={ %s }",
            self.block,
            action,
            actor,
            format_supply(before),
            format_supply(after),
        )

    # ---- pre-checks ----
    def _check_units(self, st: MintState, units: int) -> Tuple[bool, str]:
        if isinstance(units, bool) or not isinstance(units, int):
            return False, "invalid_units"
        if units < 1 or units > st.settings.max_per_call:
            return False, "invalid_units"
        return True, "ok"

    def _check_supply(self, st: MintState, units: int) -> Tuple[bool, str]:
        minted = st.registry.total_allocated()
        if not st.registry.has_availability() or minted >= st.registry.total_capacity():
            return False, "sold_out"
        if minted + units > st.registry.total_capacity():
            return False, "supply_exceeded"
        return True, "ok"

    def can_mint_public(self, caller: str, units: int, value: Optional[int] = None) -> Tuple[bool, str]:
        st = self.state
        ok, reason = st.gate.check_public()
        if not ok:
            return ok, reason
        ok, reason = self._check_units(st, units)
        if not ok:
            return ok, reason
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            return False, "invalid_value"
        if value is not None and value < st.settings.mint_price_wei * units:
            return False, "insufficient_payment"
        ok, reason = self._check_supply(st, units)
        if not ok:
            return ok, reason
        return st.quotas.check(caller, units, st.settings.max_per_address)

    def can_mint_allow_list(self, caller: str) -> Tuple[bool, str]:
        st = self.state
        ok, reason = st.gate.check_live()
        if not ok:
            return ok, reason
        ok, reason = st.allow_list.check(caller, 1)
        if not ok:
            return ok, reason
        ok, reason = self._check_supply(st, 1)
        if not ok:
            return ok, reason
        return st.quotas.check(caller, 1, st.settings.max_per_address)

    def can_mint_privileged(self, to: str, units: int) -> Tuple[bool, str]:
        st = self.state
        if self.cfg.privileged_respects_pause:
            ok, reason = st.gate.check_live()
            if not ok:
                return ok, reason
        try:
            require_address(to, "recipient")
        except InvalidInput:
            return False, "invalid_recipient"
        ok, reason = self._check_units(st, units)
        if not ok:
            return ok, reason
        return self._check_supply(st, units)

    def _require(self, check: Tuple[bool, str], action: str) -> None:
        ok, reason = check
        if not ok:
            raise REASON_ERRORS[reason](f"{action} rejected: {reason}", reason=reason)

    # ---- allocation ----
    def _allocate(self, st: MintState, to: str, units: int, path: str) -> List[int]:
        before = st.registry.allocated_counts()
        ids: List[int] = []
        for _ in range(units):
            token_id = st.next_token_id
            ctx = DrawContext(block=self.block, timestamp=self.timestamp, requester=to, nonce=token_id)
            tier = self.allocator.select(st.registry, ctx)
            st.registry.reserve(tier)
            st.ledger.mint(to, token_id)
            st.records[token_id] = AllocationRecord(token_id=token_id, owner=to, tier=tier, block=self.block)
            st.next_token_id += 1
            self._emit("ALLOCATED", actor_id=to, token_id=token_id, tier=tier, meta={"path": path})
            ids.append(token_id)
        self._debug_supply_change(path, to, before, st.registry.allocated_counts())
        return ids

    # ---- entry points ----
    def mint_public(self, caller: str, units: int, value: int) -> List[int]:
        with self._transaction("mint_public") as st:
            require_address(caller, "caller")
            if value is None:
                raise InvalidInput("mint_public requires an attached value", reason="invalid_value")
            self._require(self.can_mint_public(caller, units, value), "mint_public")
            quote = settle(value, st.settings.mint_price_wei, units)
            if not self.rail.send(st.balances, caller, CUSTODY_ADDRESS, value):
                raise InsufficientPayment(f"wallet {caller} cannot cover {value} wei")
            ids = self._allocate(st, caller, units, "public")
            st.quotas.consume(caller, units)
            if quote.overpayment > 0:
                if not self.rail.send(st.balances, CUSTODY_ADDRESS, caller, quote.overpayment):
                    logger.warning("block=%d refund of %d wei to %s rejected", self.block, quote.overpayment, caller)
                    raise RefundFailed(f"refund of {quote.overpayment} wei to {caller} was rejected")
                self._emit("REFUND_SENT", actor_id=caller, amount=quote.overpayment)
            self._emit("BATCH_MINTED", actor_id=caller, amount=quote.cost,
                       meta={"token_ids": list(ids), "path": "public", "settlement": quote.to_dict()})
        if quote.overpayment > 0:
            self.refunds_total_wei += quote.overpayment
        return ids

    def mint_allow_list(self, caller: str) -> List[int]:
        with self._transaction("mint_allow_list") as st:
            require_address(caller, "caller")
            self._require(self.can_mint_allow_list(caller), "mint_allow_list")
            ids = self._allocate(st, caller, 1, "allow_list")
            remaining = st.allow_list.consume(caller, 1)
            st.quotas.consume(caller, 1)
            self._emit("BATCH_MINTED", actor_id=caller, amount=0,
                       meta={"token_ids": list(ids), "path": "allow_list", "free_remaining": remaining})
        return ids

    def mint_privileged(self, caller: str, to: str, units: int) -> List[int]:
        with self._transaction("mint_privileged") as st:
            require_owner(st.owner, caller)
            self._require(self.can_mint_privileged(to, units), "mint_privileged")
            ids = self._allocate(st, to, units, "privileged")
            self._emit("BATCH_MINTED", actor_id=to, amount=0,
                       meta={"token_ids": list(ids), "path": "privileged"})
        return ids

    # ---- admin ----
    def set_mint_price(self, caller: str, price_wei: int) -> None:
        with self._transaction("set_mint_price") as st:
            require_owner(st.owner, caller)
            if isinstance(price_wei, bool) or not isinstance(price_wei, int) or price_wei <= 0:
                raise InvalidInput("price must be a positive integer amount of wei")
            old = st.settings.mint_price_wei
            st.settings.mint_price_wei = price_wei
            self._emit("PRICE_CHANGED", actor_id=caller, amount=price_wei, meta={"old": old})

    def set_max_per_address(self, caller: str, cap: int) -> None:
        with self._transaction("set_max_per_address") as st:
            require_owner(st.owner, caller)
            if isinstance(cap, bool) or not isinstance(cap, int) or cap < 1:
                raise InvalidInput("per-address cap must be >= 1")
            old = st.settings.max_per_address
            st.settings.max_per_address = cap
            self._emit("QUOTA_CAP_CHANGED", actor_id=caller, amount=cap, meta={"old": old})

    def set_base_metadata_uri(self, caller: str, uri: str) -> None:
        with self._transaction("set_base_metadata_uri") as st:
            require_owner(st.owner, caller)
            if not uri:
                raise InvalidInput("metadata uri must not be empty")
            st.settings.base_metadata_uri = uri
            self._emit("METADATA_URI_CHANGED", actor_id=caller, meta={"scope": "base", "uri": uri})

    def update_tier_metadata_uri(self, caller: str, tier: str, uri: str) -> None:
        with self._transaction("update_tier_metadata_uri") as st:
            require_owner(st.owner, caller)
            if not uri:
                raise InvalidInput("metadata uri must not be empty")
            st.registry.get(tier).descriptor = uri
            self._emit("METADATA_URI_CHANGED", actor_id=caller, tier=tier, meta={"scope": "tier", "uri": uri})

    def pause(self, caller: str) -> None:
        with self._transaction("pause") as st:
            require_owner(st.owner, caller)
            st.gate.pause()
            self._emit("PAUSE_TOGGLED", actor_id=caller, meta={"paused": True})

    def unpause(self, caller: str) -> None:
        with self._transaction("unpause") as st:
            require_owner(st.owner, caller)
            st.gate.unpause()
            self._emit("PAUSE_TOGGLED", actor_id=caller, meta={"paused": False})

    def go_public(self, caller: str) -> None:
        with self._transaction("go_public") as st:
            require_owner(st.owner, caller)
            st.gate.go_public()
            self._emit("PUBLIC_LAUNCH", actor_id=caller)

    def grant_or_top_up_allow_list(self, caller: str, user: str, extra_units: int) -> AllowListGrant:
        with self._transaction("grant_or_top_up_allow_list") as st:
            require_owner(st.owner, caller)
            require_address(user, "user")
            if isinstance(extra_units, bool) or not isinstance(extra_units, int) or extra_units < 1:
                raise InvalidInput("extra_units must be >= 1")
            grant = st.allow_list.grant(user, extra_units)
            self._emit("ALLOW_LIST_UPDATED", actor_id=user, amount=extra_units,
                       meta={"eligible": grant.eligible, "remaining": grant.remaining})
        return grant

    def revoke_allow_list(self, caller: str, user: str) -> None:
        with self._transaction("revoke_allow_list") as st:
            require_owner(st.owner, caller)
            require_address(user, "user")
            st.allow_list.revoke(user)
            self._emit("ALLOW_LIST_UPDATED", actor_id=user, amount=0, meta={"eligible": False, "remaining": 0})

    def withdraw_proceeds(self, caller: str) -> int:
        with self._transaction("withdraw_proceeds") as st:
            require_owner(st.owner, caller)
            amount = st.balances.get(CUSTODY_ADDRESS)
            if amount <= 0:
                raise WithdrawalFailed("no proceeds to withdraw")
            if not self.rail.send(st.balances, CUSTODY_ADDRESS, st.owner, amount):
                raise WithdrawalFailed(f"owner {st.owner} rejected {amount} wei")
            self._emit("PROCEEDS_WITHDRAWN", actor_id=st.owner, amount=amount)
        return amount

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._transaction("transfer_ownership") as st:
            require_owner(st.owner, caller)
            require_address(new_owner, "new owner")
            old = st.owner
            st.owner = new_owner
            self._emit("OWNERSHIP_TRANSFERRED", actor_id=new_owner, meta={"previous": old})

    # ---- holder actions ----
    def transfer(self, caller: str, to: str, token_id: int) -> None:
        """Move a token to another holder. The allocation record keeps the original recipient."""
        with self._transaction("transfer") as st:
            st.ledger.transfer(caller, to, token_id)
            self._emit("TRANSFER", actor_id=caller, token_id=token_id, tier=self.tier_of(token_id),
                       meta={"to": to})

    def burn(self, caller: str, token_id: int) -> None:
        """Destroy a token. Its tier stays allocated; the id is never reissued."""
        with self._transaction("burn") as st:
            st.ledger.burn(caller, token_id)
            self._emit("BURNED", actor_id=caller, token_id=token_id, tier=self.tier_of(token_id))

    # ---- wallets ----
    def fund_wallet(self, address: str, amount_wei: int) -> None:
        """Credit native value to a wallet from outside the sale."""
        require_address(address)
        if amount_wei < 0:
            raise InvalidInput("amount must be >= 0")
        self.state.balances.credit(address, amount_wei)

    def wallet_balance(self, address: str) -> int:
        return self.state.balances.get(address)

    def proceeds(self) -> int:
        return self.state.balances.get(CUSTODY_ADDRESS)

    # ---- queries ----
    @property
    def owner(self) -> str:
        return self.state.owner

    @property
    def mint_price(self) -> int:
        return self.state.settings.mint_price_wei

    def tier_status(self) -> List[dict]:
        return self.state.registry.rows()

    def tier_capacity(self, tier: str) -> int:
        return self.state.registry.get(tier).capacity

    def tier_allocated(self, tier: str) -> int:
        return self.state.registry.get(tier).allocated

    def total_minted(self) -> int:
        return self.state.registry.total_allocated()

    def minted_by(self, address: str) -> int:
        return self.state.quotas.used(address)

    def quota_headroom(self, address: str) -> int:
        return self.state.quotas.headroom(address, self.state.settings.max_per_address)

    def circulating_supply(self) -> int:
        # minted minus burned
        return self.state.ledger.total_supply()

    def balance_of(self, address: str) -> int:
        return self.state.ledger.balance_of(address)

    def token_of_owner_by_index(self, address: str, index: int) -> int:
        return self.state.ledger.token_of_owner_by_index(address, index)

    def allow_list_status(self, address: str) -> AllowListGrant:
        return self.state.allow_list.status(address)

    def record(self, token_id: int) -> AllocationRecord:
        rec = self.state.records.get(token_id)
        if rec is None:
            raise InvalidInput(f"token {token_id} was never allocated")
        return rec

    def tier_of(self, token_id: int) -> str:
        return self.record(token_id).tier

    def owner_of(self, token_id: int) -> str:
        return self.state.ledger.owner_of(token_id)

    def tokens_of_owner(self, address: str) -> List[int]:
        return self.state.ledger.tokens_of_owner(address)

    def token_uri(self, token_id: int) -> str:
        st = self.state
        if not st.ledger.exists(token_id):
            raise InvalidInput(f"token {token_id} does not exist")
        tier = st.registry.get(self.tier_of(token_id))
        return f"{st.settings.base_metadata_uri}{tier.descriptor}/{token_id}.json"

    # ---- launch simulation ----
    def _bootstrap(self) -> None:
        for _ in range(self.cfg.initial_collectors):
            self.add_collector()

    def add_collector(self) -> Collector:
        c = self.factory.create_collector()
        self.collectors[c.address] = c
        self.fund_wallet(c.address, c.wallet_wei)
        if c.behaviour == "rejects":
            self.rail.register_hook(c.address, lambda sender, amount: False)
        elif c.behaviour == "reentrant":
            self.rail.register_hook(c.address, self._reentrant_hook(c.address))
        if c.allow_listed:
            self.grant_or_top_up_allow_list(self.owner, c.address, self.cfg.allow_list_units)
        return c

    def _reentrant_hook(self, address: str):
        def hook(sender: str, amount: int) -> bool:
            try:
                self.mint_public(address, 1, self.mint_price)
            except ReentrantCall:
                self.reentry_blocked += 1
                raise
            return True
        return hook

    def _record_failure(self, reason: str) -> None:
        self.failures[reason] = self.failures.get(reason, 0) + 1
        self._failures_block += 1

    def _apply_schedule(self) -> None:
        cfg = self.cfg
        gate = self.state.gate
        if cfg.public_launch_block is not None and self.block >= cfg.public_launch_block and not gate.public_live:
            self.go_public(self.owner)
        if cfg.pause_block is not None and self.block == cfg.pause_block and not gate.paused:
            self.pause(self.owner)
        if cfg.unpause_block is not None and self.block == cfg.unpause_block and gate.paused:
            self.unpause(self.owner)
        stride = int(cfg.withdraw_stride_blocks or 0)
        if stride > 0 and self.block % stride == 0 and self.proceeds() > 0:
            self.withdraw_proceeds(self.owner)

    def _collector_attempt(self, c: Collector) -> None:
        self._attempts_block += 1
        try:
            if self.state.allow_list.check(c.address)[0]:
                ids = self.mint_allow_list(c.address)
            else:
                units = self.factory.sample_units(c, self.state.settings.max_per_call)
                value = self.factory.sample_payment(units, self.mint_price)
                ids = self.mint_public(c.address, units, value)
        except MintError as exc:
            logger.debug("block=%d collector=%s rejected: %s", self.block, c.address, exc.reason)
            self._record_failure(exc.reason)
            return
        self._minted_block += len(ids)

    def step(self, n_blocks: int = 1) -> None:
        if not self.collectors:
            self._bootstrap()
        for _ in range(n_blocks):
            self.block += 1
            self.timestamp += self.cfg.block_time_seconds
            self._attempts_block = 0
            self._failures_block = 0
            self._minted_block = 0

            self._apply_schedule()
            if self.total_minted() < self.state.registry.total_capacity():
                k = min(self.cfg.attempts_per_block, len(self.collectors))
                for address in self.rng.sample(sorted(self.collectors), k=k):
                    self._collector_attempt(self.collectors[address])
                    if self.total_minted() >= self.state.registry.total_capacity():
                        break

            self.snapshot_metrics()

    def sold_out(self) -> bool:
        return not self.state.registry.has_availability()

    def snapshot_metrics(self) -> None:
        stride = int(self.cfg.metrics_stride or 0)
        if stride <= 0 or self.block % stride != 0:
            return
        st = self.state
        row = {
            "block": self.block,
            "minted_total": st.registry.total_allocated(),
            "circulating": st.ledger.total_supply(),
            "remaining_total": st.registry.total_capacity() - st.registry.total_allocated(),
            "holders": len(st.ledger.holdings),
            "proceeds_wei": self.proceeds(),
            "refunds_total_wei": self.refunds_total_wei,
            "attempts_block": self._attempts_block,
            "failures_block": self._failures_block,
            "minted_block": self._minted_block,
            "paused": st.gate.paused,
            "public_live": st.gate.public_live,
        }
        for tier, allocated in st.registry.allocated_counts().items():
            row[f"allocated_{tier}"] = allocated
        self.metrics.add_supply(row)
        self.metrics.add_tier_rows([{"block": self.block, **r} for r in st.registry.rows()])
