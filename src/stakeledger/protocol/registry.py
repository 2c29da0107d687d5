"""
stakeledger/protocol/registry.py

Pool Registry - owner-managed pool definitions, limits and referrer tiers.

The registry is the single place pool parameters live. It validates every
definition it accepts, but it never touches balances: rate bookkeeping for
an edited pool is the caller's job (see DistributionAdmin).
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence

from ..errors import AccessDenied, PoolNotFound, ValidationError
from .multipliers import validate_referrer_tiers

logger = logging.getLogger("stakeledger.protocol.registry")


OWNER_ERROR = "Ownable: caller is not the owner"
POOL_NOT_FOUND_ERROR = "DS: pool doesn't exist"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class Pool:
    """Emission and lock parameters of a staking pool."""
    payout_start: int                       # Timestamp emission begins
    decrease_interval: int                  # Seconds per decay step
    withdraw_lock_period: int               # Withdraw lock after payout start
    claim_lock_period: int                  # Claim lock after payout start
    withdraw_lock_period_after_stake: int   # Withdraw lock after a user's last stake
    initial_reward: int                     # Reward of the first interval
    reward_decrease: int                    # Per-interval decrement, 0 = flat
    minimal_stake: int
    is_public: bool = True

    def validate(self) -> None:
        """Raise ValidationError if the parameters can't describe a pool."""
        if self.payout_start == 0:
            raise ValidationError("DS: invalid payout start value")
        if self.reward_decrease > 0 and self.decrease_interval == 0:
            raise ValidationError("DS: invalid decrease interval")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Pool":
        return cls(
            payout_start=int(data["payout_start"]),
            decrease_interval=int(data["decrease_interval"]),
            withdraw_lock_period=int(data["withdraw_lock_period"]),
            claim_lock_period=int(data["claim_lock_period"]),
            withdraw_lock_period_after_stake=int(data["withdraw_lock_period_after_stake"]),
            initial_reward=int(data["initial_reward"]),
            reward_decrease=int(data["reward_decrease"]),
            minimal_stake=int(data["minimal_stake"]),
            is_public=bool(data.get("is_public", True)),
        )


@dataclass
class PoolLimits:
    """Claim cooldowns layered on top of a pool's base claim lock."""
    claim_lock_period_after_stake: int = 0
    claim_lock_period_after_claim: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PoolLimits":
        return cls(
            claim_lock_period_after_stake=int(data.get("claim_lock_period_after_stake", 0)),
            claim_lock_period_after_claim=int(data.get("claim_lock_period_after_claim", 0)),
        )


@dataclass(frozen=True)
class ReferrerTier:
    """Referral bonus applied once a referrer's stake reaches `amount`."""
    amount: int
    multiplier: int  # PRECISION units

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ReferrerTier":
        return cls(amount=int(data["amount"]), multiplier=int(data["multiplier"]))


# ============================================================================
# POOL REGISTRY
# ============================================================================

class PoolRegistry:
    """
    Owns pool definitions, pool limits and referrer tiers.

    Pools are identified by their creation index. A pool can be edited but
    never switched between public and private.

    Usage:
        registry = PoolRegistry(owner="0xowner")
        pool_id = registry.add_pool("0xowner", pool)
        registry.set_limits("0xowner", pool_id, PoolLimits(claim_lock_period_after_claim=86400))
    """

    def __init__(self, owner: str):
        self.owner = owner
        self._pools: List[Pool] = []
        self._limits: Dict[int, PoolLimits] = {}
        self._tiers: Dict[int, List[ReferrerTier]] = {}

    # ------------------------------------------------------------------
    # Access checks
    # ------------------------------------------------------------------

    def check_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise AccessDenied(OWNER_ERROR)

    def pool_exists(self, pool_id: int) -> bool:
        return 0 <= pool_id < len(self._pools)

    def require_pool(self, pool_id: int) -> Pool:
        """Return the pool or raise PoolNotFound."""
        if not self.pool_exists(pool_id):
            raise PoolNotFound(POOL_NOT_FOUND_ERROR)
        return self._pools[pool_id]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_pool(self, pool_id: int) -> Optional[Pool]:
        if not self.pool_exists(pool_id):
            return None
        return self._pools[pool_id]

    def get_limits(self, pool_id: int) -> PoolLimits:
        return self._limits.get(pool_id, PoolLimits())

    def get_referrer_tiers(self, pool_id: int) -> List[ReferrerTier]:
        return list(self._tiers.get(pool_id, []))

    @property
    def pool_count(self) -> int:
        return len(self._pools)

    def pool_ids(self) -> List[int]:
        return list(range(len(self._pools)))

    # ------------------------------------------------------------------
    # Mutations (owner only)
    # ------------------------------------------------------------------

    def add_pool(self, caller: str, pool: Pool) -> int:
        self.check_owner(caller)
        pool.validate()
        self._pools.append(pool)
        pool_id = len(self._pools) - 1
        logger.info(f"Pool {pool_id} created (public={pool.is_public})")
        return pool_id

    def replace_pool(self, caller: str, pool_id: int, pool: Pool) -> None:
        self.check_owner(caller)
        current = self.require_pool(pool_id)
        pool.validate()
        if pool.is_public != current.is_public:
            raise ValidationError("DS: invalid pool type")
        self._pools[pool_id] = pool
        logger.info(f"Pool {pool_id} edited")

    def set_limits(self, caller: str, pool_id: int, limits: PoolLimits) -> None:
        self.check_owner(caller)
        self.require_pool(pool_id)
        self._limits[pool_id] = limits
        logger.info(f"Pool {pool_id} limits edited: {limits}")

    def set_referrer_tiers(self, caller: str, pool_id: int, tiers: Sequence[ReferrerTier]) -> None:
        self.check_owner(caller)
        self.require_pool(pool_id)
        errors = validate_referrer_tiers(tiers)
        if errors:
            raise ValidationError(errors[0])
        self._tiers[pool_id] = list(tiers)
        logger.info(f"Pool {pool_id} referrer tiers edited ({len(tiers)} tiers)")

    # ------------------------------------------------------------------
    # State capture
    # ------------------------------------------------------------------

    def checkpoint(self) -> tuple:
        """Shallow copy of the tables; entries are replaced on edit, never mutated."""
        return self.owner, list(self._pools), dict(self._limits), dict(self._tiers)

    def rollback(self, checkpoint: tuple) -> None:
        self.owner, pools, limits, tiers = checkpoint
        self._pools = list(pools)
        self._limits = dict(limits)
        self._tiers = dict(tiers)

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "pools": [pool.to_dict() for pool in self._pools],
            "limits": {str(pid): limits.to_dict() for pid, limits in self._limits.items()},
            "referrer_tiers": {
                str(pid): [tier.to_dict() for tier in tiers]
                for pid, tiers in self._tiers.items()
            },
        }

    def load_dict(self, data: dict) -> None:
        """Replace the registry contents with a captured state."""
        self.owner = data["owner"]
        self._pools = [Pool.from_dict(p) for p in data.get("pools", [])]
        self._limits = {
            int(pid): PoolLimits.from_dict(limits)
            for pid, limits in data.get("limits", {}).items()
        }
        self._tiers = {
            int(pid): [ReferrerTier.from_dict(t) for t in tiers]
            for pid, tiers in data.get("referrer_tiers", {}).items()
        }
