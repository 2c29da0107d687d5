"""
stakeledger/memory.py

In-memory collaborators for running the engine without a chain.

- SharesToken: share-based rebasing deposit token (stETH-style)
- CappedRewardMinter: reward token with an optional supply cap
- RecordingBridge: overplus bridge that records what it was sent

Used by the test suite and for local simulation.
"""

import hashlib
import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from .interfaces import DepositToken, OverplusBridge, RewardMinter

logger = logging.getLogger("stakeledger.memory")


class TokenError(Exception):
    """Raised when a token transfer can't be performed."""
    pass


class SharesToken(DepositToken):
    """
    Rebasing token whose balances are shares of a pooled total.

    Balances are `shares * total_pooled // total_shares`, so changing the
    pooled total rebases every holder at once. Transfers move shares and may
    lose a unit to rounding, like the real thing.
    """

    def __init__(self, name: str = "stETH"):
        self.name = name
        self._shares: Dict[str, int] = {}
        self._allowances: Dict[tuple, int] = {}
        self._total_shares = 0
        self._total_pooled = 0

    def _shares_for(self, amount: int) -> int:
        if self._total_shares == 0 or self._total_pooled == 0:
            return amount
        return amount * self._total_shares // self._total_pooled

    def _amount_for(self, shares: int) -> int:
        if self._total_shares == 0:
            return 0
        return shares * self._total_pooled // self._total_shares

    def balance_of(self, account: str) -> int:
        return self._amount_for(self._shares.get(account, 0))

    def shares_of(self, account: str) -> int:
        return self._shares.get(account, 0)

    def total_supply(self) -> Optional[int]:
        return self._total_pooled

    def mint(self, account: str, amount: int) -> None:
        shares = self._shares_for(amount)
        self._shares[account] = self._shares.get(account, 0) + shares
        self._total_shares += shares
        self._total_pooled += amount

    def set_total_pooled(self, total_pooled: int) -> None:
        """Rebase every holder by setting the pooled underlying total."""
        logger.debug(f"{self.name} rebase {self._total_pooled} -> {total_pooled}")
        self._total_pooled = total_pooled

    def rebase(self, numerator: int, denominator: int) -> None:
        """Scale all balances by numerator / denominator."""
        self.set_total_pooled(self._total_pooled * numerator // denominator)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        self._allowances[(owner, spender)] = amount

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        if amount > self.balance_of(sender):
            raise TokenError(f"{self.name}: transfer amount exceeds balance")
        shares = self._shares_for(amount)
        self._shares[sender] = self._shares.get(sender, 0) - shares
        self._shares[recipient] = self._shares.get(recipient, 0) + shares

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None:
        allowed = self.allowance(owner, spender)
        if amount > allowed:
            raise TokenError(f"{self.name}: insufficient allowance")
        self.transfer(owner, recipient, amount)
        self._allowances[(owner, spender)] = allowed - amount


class CappedRewardMinter(RewardMinter):
    """Reward token minter that stops at `cap` (None = unlimited)."""

    def __init__(self, cap: Optional[int] = None):
        self.cap = cap
        self.total_minted = 0
        self.balances: Dict[str, int] = {}

    def mint(self, receiver: str, amount: int) -> int:
        if self.cap is not None:
            amount = max(min(amount, self.cap - self.total_minted), 0)
        if amount > 0:
            self.balances[receiver] = self.balances.get(receiver, 0) + amount
            self.total_minted += amount
        return amount

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)


@dataclass
class BridgeMessage:
    """One overplus transfer handed to the bridge."""
    message_id: str
    amount: int
    gas_limit: int
    max_fee: int
    max_submission_cost: int

    def to_dict(self) -> dict:
        return asdict(self)


class RecordingBridge(OverplusBridge):
    """Bridge that keeps every message it was asked to send."""

    def __init__(self, address: str = "stakeledger:bridge"):
        self.address = address
        self.messages: List[BridgeMessage] = []

    def bridge(self, amount: int, gas_limit: int, max_fee: int, max_submission_cost: int) -> str:
        nonce = len(self.messages)
        message_id = hashlib.sha256(f"{self.address}:{nonce}:{amount}".encode()).hexdigest()
        self.messages.append(BridgeMessage(
            message_id=message_id,
            amount=amount,
            gas_limit=gas_limit,
            max_fee=max_fee,
            max_submission_cost=max_submission_cost,
        ))
        return message_id
