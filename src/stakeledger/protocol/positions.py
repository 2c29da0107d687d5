"""
stakeledger/protocol/positions.py

Per-user and per-referrer positions inside a pool.

A position snapshots the pool rate at its last reconciliation. Settling it
converts the rate difference since then into pending rewards, using the
virtual amount the position held during that time. Always reconcile first,
then change the virtual amount.

Positions are created lazily on first stake and never deleted, only zeroed.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple

from ..config import PRECISION, ZERO_ADDRESS
from .journal import Journal

logger = logging.getLogger("stakeledger.protocol.positions")


PositionKey = Tuple[int, str]


@dataclass
class UserPosition:
    """A staker's position in one pool."""
    last_stake: int = 0
    deposited: int = 0
    rate: int = 0
    pending_rewards: int = 0
    last_claim: int = 0
    virtual_deposited: int = 0
    claim_lock_start: int = 0
    claim_lock_end: int = 0
    referrer: str = ZERO_ADDRESS

    @property
    def has_referrer(self) -> bool:
        return self.referrer != ZERO_ADDRESS

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "UserPosition":
        deposited = int(data.get("deposited", 0))
        return cls(
            last_stake=int(data.get("last_stake", 0)),
            deposited=deposited,
            rate=int(data.get("rate", 0)),
            pending_rewards=int(data.get("pending_rewards", 0)),
            last_claim=int(data.get("last_claim", 0)),
            virtual_deposited=int(data.get("virtual_deposited", deposited)),
            claim_lock_start=int(data.get("claim_lock_start", 0)),
            claim_lock_end=int(data.get("claim_lock_end", 0)),
            referrer=data.get("referrer", ZERO_ADDRESS) or ZERO_ADDRESS,
        )


@dataclass
class ReferrerPosition:
    """Aggregate stake a referrer brought into one pool."""
    amount_staked: int = 0
    virtual_amount_staked: int = 0
    rate: int = 0
    pending_rewards: int = 0
    last_claim: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ReferrerPosition":
        return cls(
            amount_staked=int(data.get("amount_staked", 0)),
            virtual_amount_staked=int(data.get("virtual_amount_staked", 0)),
            rate=int(data.get("rate", 0)),
            pending_rewards=int(data.get("pending_rewards", 0)),
            last_claim=int(data.get("last_claim", 0)),
        )


def accrued(pool_rate: int, position_rate: int, virtual_amount: int) -> int:
    """Reward earned by `virtual_amount` while the rate moved to `pool_rate`."""
    return (pool_rate - position_rate) * virtual_amount // PRECISION


def reconcile_user(position: UserPosition, pool_rate: int) -> int:
    """Move the user's accrued reward into pending and snapshot the rate."""
    delta = accrued(pool_rate, position.rate, position.virtual_deposited)
    position.pending_rewards += delta
    position.rate = pool_rate
    return position.pending_rewards


def reconcile_referrer(position: ReferrerPosition, pool_rate: int) -> int:
    """Move the referrer's accrued reward into pending and snapshot the rate."""
    delta = accrued(pool_rate, position.rate, position.virtual_amount_staked)
    position.pending_rewards += delta
    position.rate = pool_rate
    return position.pending_rewards


def _encode_key(key: PositionKey) -> str:
    pool_id, address = key
    return f"{pool_id}:{address}"


def _decode_key(value: str) -> PositionKey:
    pool_id, address = value.split(":", 1)
    return int(pool_id), address


class PositionLedger:
    """
    Store of user and referrer positions plus delegated-claim settings.

    Usage:
        ledger = PositionLedger()
        position = ledger.user(pool_id, "0xuser")        # created if missing
        existing = ledger.get_user(pool_id, "0xother")   # None if never staked
    """

    def __init__(self, journal: Optional[Journal] = None):
        self.journal = journal or Journal()
        self._users: Dict[PositionKey, UserPosition] = {}
        self._referrers: Dict[PositionKey, ReferrerPosition] = {}
        # (pool_id, staker) -> {sender: allowed}
        self._claim_senders: Dict[PositionKey, Dict[str, bool]] = {}
        # (pool_id, staker) -> receiver
        self._claim_receivers: Dict[PositionKey, str] = {}

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def user(self, pool_id: int, address: str) -> UserPosition:
        key = (pool_id, address)
        self.journal.remember("users", self._users, key)
        position = self._users.get(key)
        if position is None:
            position = UserPosition()
            self._users[key] = position
        return position

    def get_user(self, pool_id: int, address: str) -> Optional[UserPosition]:
        key = (pool_id, address)
        self.journal.remember("users", self._users, key)
        return self._users.get(key)

    def referrer(self, pool_id: int, address: str) -> ReferrerPosition:
        key = (pool_id, address)
        self.journal.remember("referrers", self._referrers, key)
        position = self._referrers.get(key)
        if position is None:
            position = ReferrerPosition()
            self._referrers[key] = position
        return position

    def get_referrer(self, pool_id: int, address: str) -> Optional[ReferrerPosition]:
        key = (pool_id, address)
        self.journal.remember("referrers", self._referrers, key)
        return self._referrers.get(key)

    def users_in_pool(self, pool_id: int) -> List[Tuple[str, UserPosition]]:
        return [(addr, pos) for (pid, addr), pos in self._users.items() if pid == pool_id]

    def referrers_in_pool(self, pool_id: int) -> List[Tuple[str, ReferrerPosition]]:
        return [(addr, pos) for (pid, addr), pos in self._referrers.items() if pid == pool_id]

    # ------------------------------------------------------------------
    # Delegated claims
    # ------------------------------------------------------------------

    def set_claim_sender(self, pool_id: int, staker: str, sender: str, allowed: bool) -> None:
        key = (pool_id, staker)
        self.journal.remember("claim_senders", self._claim_senders, key)
        self._claim_senders.setdefault(key, {})[sender] = allowed

    def is_claim_sender(self, pool_id: int, staker: str, sender: str) -> bool:
        return self._claim_senders.get((pool_id, staker), {}).get(sender, False)

    def set_claim_receiver(self, pool_id: int, staker: str, receiver: str) -> None:
        key = (pool_id, staker)
        self.journal.remember("claim_receivers", self._claim_receivers, key)
        if receiver == ZERO_ADDRESS:
            self._claim_receivers.pop(key, None)
        else:
            self._claim_receivers[key] = receiver

    def get_claim_receiver(self, pool_id: int, staker: str) -> str:
        return self._claim_receivers.get((pool_id, staker), ZERO_ADDRESS)

    # ------------------------------------------------------------------
    # State capture
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "users": {_encode_key(k): v.to_dict() for k, v in self._users.items()},
            "referrers": {_encode_key(k): v.to_dict() for k, v in self._referrers.items()},
            "claim_senders": {_encode_key(k): dict(v) for k, v in self._claim_senders.items()},
            "claim_receivers": {_encode_key(k): v for k, v in self._claim_receivers.items()},
        }

    def load_dict(self, data: dict) -> None:
        self._users = {
            _decode_key(k): UserPosition.from_dict(v)
            for k, v in data.get("users", {}).items()
        }
        self._referrers = {
            _decode_key(k): ReferrerPosition.from_dict(v)
            for k, v in data.get("referrers", {}).items()
        }
        self._claim_senders = {
            _decode_key(k): {sender: bool(allowed) for sender, allowed in v.items()}
            for k, v in data.get("claim_senders", {}).items()
        }
        self._claim_receivers = {
            _decode_key(k): v for k, v in data.get("claim_receivers", {}).items()
        }
