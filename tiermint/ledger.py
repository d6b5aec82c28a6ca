from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List
import bisect
import logging

from .config import ZERO_ADDRESS
from .errors import InvalidInput, MintError, NotAuthorized

logger = logging.getLogger(__name__)

# wallet receive hook: (sender, amount) -> accept?
ReceiveHook = Callable[[str, int], bool]


def is_valid_address(address: str | None) -> bool:
    return bool(address) and address != ZERO_ADDRESS


def require_address(address: str | None, what: str = "address") -> str:
    if not is_valid_address(address):
        raise InvalidInput(f"{what} must be a non-zero address")
    return address


def require_owner(owner: str, caller: str) -> None:
    if caller != owner:
        raise NotAuthorized(f"{caller} is not the owner")


# -----------------------------
# Ownership ledger
# -----------------------------
@dataclass
class OwnershipLedger:
    """Enumerable ownership of token ids."""

    owners: Dict[int, str] = field(default_factory=dict)
    holdings: Dict[str, List[int]] = field(default_factory=dict)

    def exists(self, token_id: int) -> bool:
        return token_id in self.owners

    def owner_of(self, token_id: int) -> str:
        owner = self.owners.get(token_id)
        if owner is None:
            raise InvalidInput(f"token {token_id} does not exist")
        return owner

    def balance_of(self, owner: str) -> int:
        return len(self.holdings.get(owner, ()))

    def tokens_of_owner(self, owner: str) -> List[int]:
        return list(self.holdings.get(owner, ()))

    def token_of_owner_by_index(self, owner: str, index: int) -> int:
        held = self.holdings.get(owner, [])
        if index < 0 or index >= len(held):
            raise InvalidInput(f"owner index {index} out of bounds")
        return held[index]

    def total_supply(self) -> int:
        return len(self.owners)

    def mint(self, to: str, token_id: int) -> None:
        require_address(to, "recipient")
        if token_id in self.owners:
            raise InvalidInput(f"token {token_id} already minted")
        self.owners[token_id] = to
        bisect.insort(self.holdings.setdefault(to, []), token_id)

    def transfer(self, sender: str, to: str, token_id: int) -> None:
        require_address(to, "recipient")
        if self.owner_of(token_id) != sender:
            raise NotAuthorized(f"{sender} does not own token {token_id}")
        self._remove_holding(sender, token_id)
        self.owners[token_id] = to
        bisect.insort(self.holdings.setdefault(to, []), token_id)

    def burn(self, sender: str, token_id: int) -> None:
        if self.owner_of(token_id) != sender:
            raise NotAuthorized(f"{sender} does not own token {token_id}")
        self._remove_holding(sender, token_id)
        del self.owners[token_id]

    def _remove_holding(self, owner: str, token_id: int) -> None:
        held = self.holdings[owner]
        held.remove(token_id)
        if not held:
            self.holdings.pop(owner, None)


# -----------------------------
# Native value custody
# -----------------------------
@dataclass
class Balances:
    balances: Dict[str, int] = field(default_factory=dict)

    def get(self, address: str) -> int:
        return int(self.balances.get(address, 0))

    def credit(self, address: str, amount: int) -> None:
        self.balances[address] = self.get(address) + int(amount)

    def debit(self, address: str, amount: int) -> bool:
        amt = int(amount)
        if self.get(address) < amt:
            return False
        self.balances[address] = self.get(address) - amt
        if self.balances[address] == 0:
            self.balances.pop(address, None)
        return True


class PaymentRail:
    """Moves native value between wallets and runs the recipient's receive hook.

    A hook returning False, or raising a MintError (a reverted nested call),
    rejects the transfer and the value stays with the sender.
    """

    def __init__(self) -> None:
        self.hooks: Dict[str, ReceiveHook] = {}

    def register_hook(self, address: str, hook: ReceiveHook) -> None:
        self.hooks[address] = hook

    def send(self, balances: Balances, sender: str, to: str, amount: int) -> bool:
        if amount <= 0:
            return True
        if not balances.debit(sender, amount):
            return False
        balances.credit(to, amount)
        hook = self.hooks.get(to)
        if hook is None:
            return True
        try:
            accepted = bool(hook(sender, amount))
        except MintError as exc:
            logger.debug("receive hook of %s reverted: %s", to, exc.reason)
            accepted = False
        if not accepted:
            balances.debit(to, amount)
            balances.credit(sender, amount)
        return accepted
