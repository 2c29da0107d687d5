"""
stakeledger/protocol/accumulator.py

Lazy per-pool reward rate accumulator.

Each pool keeps a cumulative "reward per virtual unit" rate. The rate is
only advanced when the pool is touched: the reward emitted since the last
advance is divided across the pool's total virtual deposit at that moment.
Positions snapshot the rate and settle the difference later, so stakers
entering and leaving at different times each get exactly their share.

While a pool has no virtual deposits the emission of that window is not
assigned to anyone; only `last_update` moves.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Optional

from ..config import PRECISION
from .curve import calculate_period_reward
from .journal import Journal
from .registry import Pool, PoolRegistry

logger = logging.getLogger("stakeledger.protocol.accumulator")


@dataclass
class PoolState:
    """Mutable accounting state of a pool."""
    last_update: int = 0
    rate: int = 0
    total_virtual_deposited: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PoolState":
        return cls(
            last_update=int(data.get("last_update", 0)),
            rate=int(data.get("rate", 0)),
            total_virtual_deposited=int(data.get("total_virtual_deposited", 0)),
        )


def get_period_reward(pool: Pool, start_time: int, end_time: int) -> int:
    """Reward a pool emits in [start_time, end_time)."""
    return calculate_period_reward(
        pool.initial_reward,
        pool.reward_decrease,
        pool.payout_start,
        pool.decrease_interval,
        start_time,
        end_time,
    )


class RateAccumulator:
    """
    Per-pool rate ledger.

    `update()` must run once at the start of every state-changing operation
    on a pool, before any position in it is reconciled. Repeated updates at
    the same timestamp are no-ops, so several operations landing at one
    instant all see the same rate.

    With a non-zero `min_rewards_distribute_period` the rate is held still
    until at least that many seconds passed since the last advance. The
    held-back emission is distributed by the next advance.
    """

    def __init__(
        self,
        registry: PoolRegistry,
        min_rewards_distribute_period: int = 0,
        journal: Optional[Journal] = None,
    ):
        self.registry = registry
        self.journal = journal or Journal()
        self.min_rewards_distribute_period = min_rewards_distribute_period
        self._states: Dict[int, PoolState] = {}

    def state(self, pool_id: int) -> PoolState:
        """Return the pool's state, creating an empty one on first touch."""
        self.journal.remember("pools", self._states, pool_id)
        state = self._states.get(pool_id)
        if state is None:
            state = PoolState()
            self._states[pool_id] = state
        return state

    def peek(self, pool_id: int) -> PoolState:
        """Return the pool's state without creating it."""
        return self._states.get(pool_id, PoolState())

    def _is_throttled(self, state: PoolState, now: int) -> bool:
        return (
            self.min_rewards_distribute_period > 0
            and now - state.last_update < self.min_rewards_distribute_period
        )

    def current_rate(self, pool_id: int, now: int) -> int:
        """Rate the pool would have if it were updated at `now`."""
        pool = self.registry.require_pool(pool_id)
        state = self.peek(pool_id)

        if state.total_virtual_deposited == 0 or now <= state.last_update:
            return state.rate
        if self._is_throttled(state, now):
            return state.rate

        reward = get_period_reward(pool, state.last_update, now)
        return state.rate + reward * PRECISION // state.total_virtual_deposited

    def update(self, pool_id: int, now: int) -> int:
        """
        Advance the pool's rate to `now`.

        Returns:
            The pool rate after the update
        """
        state = self.state(pool_id)

        if now <= state.last_update:
            return state.rate

        # Nobody to distribute to, the window's emission is dropped
        if state.total_virtual_deposited == 0:
            state.last_update = now
            return state.rate

        if self._is_throttled(state, now):
            return state.rate

        new_rate = self.current_rate(pool_id, now)
        logger.debug(
            f"Pool {pool_id} rate {state.rate} -> {new_rate} "
            f"over [{state.last_update}, {now})"
        )
        state.rate = new_rate
        state.last_update = now
        return state.rate

    def adjust_total_virtual(self, pool_id: int, old_virtual: int, new_virtual: int) -> None:
        """Replace one participant's weight in the pool total."""
        state = self.state(pool_id)
        state.total_virtual_deposited = state.total_virtual_deposited + new_virtual - old_virtual

    def to_dict(self) -> dict:
        return {
            "min_rewards_distribute_period": self.min_rewards_distribute_period,
            "pools": {str(pid): state.to_dict() for pid, state in self._states.items()},
        }

    def load_dict(self, data: dict) -> None:
        self.min_rewards_distribute_period = int(data.get("min_rewards_distribute_period", 0))
        self._states = {
            int(pid): PoolState.from_dict(state)
            for pid, state in data.get("pools", {}).items()
        }
