"""
stakeledger/interfaces.py

External collaborators of the distribution engine.

The engine never implements token mechanics itself. It consumes:
- DepositToken: the (possibly rebasing) asset users stake
- RewardMinter: mint authority of the reward token, may deliver less than asked
- OverplusBridge: destination for yield above nominal deposits
"""

from abc import ABC, abstractmethod
from typing import Optional


class DepositToken(ABC):
    """Token deposited into public pools."""

    @abstractmethod
    def balance_of(self, account: str) -> int:
        """Current balance of `account`."""
        pass

    @abstractmethod
    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move `amount` from `sender` to `recipient`."""
        pass

    @abstractmethod
    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> None:
        """Move `amount` from `owner` to `recipient` on behalf of `spender`."""
        pass

    def total_supply(self) -> Optional[int]:
        """Total supply, if the token exposes it."""
        return None


class RewardMinter(ABC):
    """Mint authority of the reward token."""

    @abstractmethod
    def mint(self, receiver: str, amount: int) -> int:
        """
        Mint up to `amount` reward tokens to `receiver`.

        Returns:
            Amount actually minted, authoritative for the caller
        """
        pass


class OverplusBridge(ABC):
    """Receiver of protocol-owned yield."""

    address: str = ""

    @abstractmethod
    def bridge(self, amount: int, gas_limit: int, max_fee: int, max_submission_cost: int) -> str:
        """
        Send `amount` (already transferred to `address`) onwards.

        Returns:
            Message id of the bridge transfer
        """
        pass
