"""
stakeledger/protocol/distribution.py

Staking state machine: stake, withdraw, claim, lock claim and referrer claims.

Every public operation follows the same order:
1. Existence and visibility checks on the pool
2. RateAccumulator.update() for the pool
3. Reconcile the affected user / referrer positions with their OLD weight
4. Apply the requested change and recompute virtual weights
5. External calls (token transfers, reward minting)
6. Events, published only once the operation commits

Operations are atomic. Records an operation touches are journaled and put
back if anything raises, including a failing token or mint call.
"""

import time
import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterator, List, Optional, Sequence

from ..config import EngineConfig, PRECISION, ZERO_ADDRESS
from ..errors import AccessDenied, BusinessRuleError, UpgradeError, ValidationError
from ..interfaces import DepositToken, RewardMinter
from .accumulator import PoolState, RateAccumulator, get_period_reward
from .events import (
    EventLog,
    USER_STAKED,
    USER_WITHDRAWN,
    USER_CLAIMED,
    USER_CLAIM_LOCKED,
    USER_REFERRED,
    REFERRER_CLAIMED,
    CLAIM_SENDER_SET,
    CLAIM_RECEIVER_SET,
)
from .journal import Journal
from .multipliers import get_referrer_multiplier, get_user_multiplier
from .positions import (
    PositionLedger,
    ReferrerPosition,
    UserPosition,
    accrued,
    reconcile_referrer,
    reconcile_user,
)
from .registry import Pool, PoolLimits, PoolRegistry, ReferrerTier
from .versioning import CURRENT_SCHEMA_VERSION, MIN_SCHEMA_VERSION, SchemaVersion, migrate_snapshot

logger = logging.getLogger("stakeledger.protocol.distribution")


def _system_clock() -> int:
    return int(time.time())


class Distribution:
    """
    Multi-pool staking reward engine.

    Callers identify themselves explicitly: the first argument of every
    user operation is the address performing it.

    Usage:
        registry = PoolRegistry(owner="0xowner")
        engine = Distribution(registry, deposit_token, reward_minter)
        admin = DistributionAdmin(engine)

        pool_id = admin.create_pool("0xowner", pool)
        engine.stake("0xuser", pool_id, 10 ** 18)
        ...
        engine.claim("0xuser", pool_id, receiver="0xuser")
    """

    def __init__(
        self,
        registry: PoolRegistry,
        deposit_token: DepositToken,
        reward_minter: RewardMinter,
        clock: Optional[Callable[[], int]] = None,
        config: Optional[EngineConfig] = None,
        events: Optional[EventLog] = None,
    ):
        self.registry = registry
        self.deposit_token = deposit_token
        self.reward_minter = reward_minter
        self.config = config or EngineConfig()
        self.clock = clock or _system_clock
        self.events = events or EventLog()

        self.journal = Journal()
        self.accumulator = RateAccumulator(
            registry, self.config.min_rewards_distribute_period, journal=self.journal
        )
        self.ledger = PositionLedger(self.journal)

        self.engine_account = self.config.engine_account
        self.total_deposited_in_public_pools = 0
        self.is_not_upgradeable = False
        self.schema_version = CURRENT_SCHEMA_VERSION

    def now(self) -> int:
        return int(self.clock())

    # ========================================================================
    # TRANSACTIONS AND STATE CAPTURE
    # ========================================================================

    def _capture(self) -> dict:
        return {
            "registry": self.registry.to_dict(),
            "accumulator": self.accumulator.to_dict(),
            "ledger": self.ledger.to_dict(),
            "engine": {
                "total_deposited_in_public_pools": self.total_deposited_in_public_pools,
                "is_not_upgradeable": self.is_not_upgradeable,
            },
        }

    def _load(self, state: dict) -> None:
        self.registry.load_dict(state["registry"])
        self.accumulator.load_dict(state["accumulator"])
        self.ledger.load_dict(state["ledger"])
        engine = state.get("engine", {})
        self.total_deposited_in_public_pools = int(engine.get("total_deposited_in_public_pools", 0))
        self.is_not_upgradeable = bool(engine.get("is_not_upgradeable", False))

    def _checkpoint(self) -> tuple:
        return (
            self.registry.checkpoint(),
            self.accumulator.min_rewards_distribute_period,
            self.total_deposited_in_public_pools,
            self.is_not_upgradeable,
            self.schema_version,
        )

    def _rollback(self, checkpoint: tuple) -> None:
        self.journal.rollback()
        (
            registry,
            self.accumulator.min_rewards_distribute_period,
            self.total_deposited_in_public_pools,
            self.is_not_upgradeable,
            self.schema_version,
        ) = checkpoint
        self.registry.rollback(registry)

    @contextmanager
    def transaction(self, operation: str, full: bool = False) -> Iterator[None]:
        """
        Run a block atomically.

        Positions and pool states are journaled as they are touched. Blocks
        that replace whole tables (schema upgrades) pass `full=True` to take
        a complete copy up front instead.

        Nested use joins the outer transaction.
        """
        if self.events.in_transaction:
            yield
            return

        checkpoint = self._checkpoint()
        saved = self._capture() if full else None
        if not full:
            self.journal.begin()
        self.events.begin()
        try:
            yield
        except BaseException as e:
            if full:
                self._load(saved)
                self.schema_version = checkpoint[-1]
            else:
                self._rollback(checkpoint)
            self.events.discard()
            logger.debug(f"{operation} reverted: {e!r}")
            raise
        else:
            self.journal.commit()
            self.events.commit()

    def require_feature(self, feature: str) -> None:
        """Raise UpgradeError unless the running schema version has `feature`."""
        if not SchemaVersion.from_string(self.schema_version).supports_feature(feature):
            raise UpgradeError(f"DS: {feature} requires a schema upgrade from {self.schema_version}")

    def snapshot(self) -> dict:
        """Plain-dict copy of the whole ledger, tagged with its schema version."""
        state = self._capture()
        state["schema_version"] = self.schema_version
        return state

    def restore(self, snapshot: dict) -> None:
        """Load a snapshot, migrating it forward from older schema versions."""
        version = snapshot.get("schema_version", MIN_SCHEMA_VERSION)
        if version != self.schema_version:
            logger.info(f"Migrating snapshot from schema {version} to {self.schema_version}")
            snapshot = migrate_snapshot(snapshot, self.schema_version)
        self._load(snapshot)

    # ========================================================================
    # USER OPERATIONS
    # ========================================================================

    def stake(
        self,
        user: str,
        pool_id: int,
        amount: int,
        claim_lock_end: int = 0,
        referrer: str = ZERO_ADDRESS,
    ) -> int:
        """
        Stake into a public pool.

        Args:
            user: Staker address
            pool_id: Pool to stake in
            amount: Deposit amount; 0 only to change lock or referrer of a live position
            claim_lock_end: Personal claim lock end, 0 keeps the current one
            referrer: Referrer address, empty keeps the current one

        Returns:
            Amount actually received from the deposit token
        """
        with self.transaction("stake"):
            pool = self.registry.require_pool(pool_id)
            if not pool.is_public:
                raise AccessDenied("DS: pool isn't public")
            if referrer != ZERO_ADDRESS:
                self.require_feature("referrer_tiers")
            if claim_lock_end != 0:
                self.require_feature("claim_lock_multiplier")

            position = self.ledger.get_user(pool_id, user)
            if amount == 0 and (position is None or position.deposited == 0):
                raise BusinessRuleError("DS: nothing to stake")

            now = self.now()
            pool_rate = self.accumulator.update(pool_id, now)
            return self._stake(user, pool_id, amount, pool_rate, claim_lock_end, referrer, now)

    def withdraw(self, user: str, pool_id: int, amount: int) -> int:
        """
        Withdraw from a public pool.

        Oversized amounts mean "everything". After a negative rebase the
        transfer is capped at what the engine actually holds, first come
        first served.

        Returns:
            Amount transferred to the user
        """
        with self.transaction("withdraw"):
            pool = self.registry.require_pool(pool_id)
            if not pool.is_public:
                raise AccessDenied("DS: pool isn't public")

            now = self.now()
            pool_rate = self.accumulator.update(pool_id, now)
            return self._withdraw(user, pool_id, amount, pool_rate, now)

    def claim(self, user: str, pool_id: int, receiver: str) -> int:
        """
        Claim a user's pending rewards to `receiver`.

        Returns:
            Amount the reward minter actually delivered
        """
        return self._claim(user, pool_id, receiver)

    def claim_for(self, caller: str, pool_id: int, staker: str, receiver: str) -> int:
        """Claim on behalf of `staker`, as an approved sender or to a preset receiver."""
        receiver = self._resolve_receiver(caller, pool_id, staker, receiver)
        return self._claim(staker, pool_id, receiver)

    def lock_claim(self, user: str, pool_id: int, claim_lock_end: int) -> None:
        """Extend the personal claim lock of a staked user."""
        with self.transaction("lock_claim"):
            now = self.now()
            self.registry.require_pool(pool_id)
            self.require_feature("lock_claim")

            if claim_lock_end < now:
                raise ValidationError("DS: invalid lock end value (1)")

            position = self.ledger.get_user(pool_id, user)
            if position is None or position.deposited == 0:
                raise BusinessRuleError("DS: user isn't staked")
            if claim_lock_end < position.claim_lock_end:
                raise ValidationError("DS: invalid lock end value (2)")

            pool_rate = self.accumulator.update(pool_id, now)
            reconcile_user(position, pool_rate)

            claim_lock_start = position.claim_lock_start if position.claim_lock_start > 0 else now
            multiplier = get_user_multiplier(claim_lock_start, claim_lock_end, position.has_referrer)
            self._set_user_virtual(pool_id, position, position.deposited * multiplier // PRECISION)

            position.claim_lock_start = claim_lock_start
            position.claim_lock_end = claim_lock_end

            self.events.emit(
                USER_CLAIM_LOCKED, now,
                pool_id=pool_id, user=user, start=claim_lock_start, end=claim_lock_end,
            )
            logger.info(f"User {user} locked claims in pool {pool_id} until {claim_lock_end}")

    def claim_referrer_tier(self, referrer: str, pool_id: int, receiver: str) -> int:
        """Claim a referrer's pending rewards to `receiver`."""
        return self._claim_referrer_tier(referrer, pool_id, receiver)

    def claim_referrer_tier_for(self, caller: str, pool_id: int, referrer: str, receiver: str) -> int:
        receiver = self._resolve_receiver(caller, pool_id, referrer, receiver)
        return self._claim_referrer_tier(referrer, pool_id, receiver)

    def set_claim_sender(
        self,
        staker: str,
        pool_id: int,
        senders: Sequence[str],
        is_allowed: Sequence[bool],
    ) -> None:
        """Allow or revoke addresses that may claim on the staker's behalf."""
        with self.transaction("set_claim_sender"):
            self.registry.require_pool(pool_id)
            self.require_feature("delegated_claims")
            if len(senders) != len(is_allowed):
                raise ValidationError("DS: invalid array length")

            now = self.now()
            for sender, allowed in zip(senders, is_allowed):
                self.ledger.set_claim_sender(pool_id, staker, sender, bool(allowed))
                self.events.emit(
                    CLAIM_SENDER_SET, now,
                    pool_id=pool_id, staker=staker, sender=sender, is_allowed=bool(allowed),
                )

    def set_claim_receiver(self, staker: str, pool_id: int, receiver: str) -> None:
        """Fix the receiver of delegated claims; empty clears it."""
        with self.transaction("set_claim_receiver"):
            self.registry.require_pool(pool_id)
            self.require_feature("delegated_claims")
            self.ledger.set_claim_receiver(pool_id, staker, receiver)
            self.events.emit(
                CLAIM_RECEIVER_SET, self.now(),
                pool_id=pool_id, staker=staker, receiver=receiver,
            )

    # ========================================================================
    # VIEWS
    # ========================================================================

    def get_period_reward(self, pool_id: int, start_time: int, end_time: int) -> int:
        pool = self.registry.get_pool(pool_id)
        if pool is None:
            return 0
        return get_period_reward(pool, start_time, end_time)

    def get_current_user_reward(self, pool_id: int, user: str) -> int:
        if not self.registry.pool_exists(pool_id):
            return 0
        position = self.ledger.get_user(pool_id, user)
        if position is None:
            return 0
        rate = self.accumulator.current_rate(pool_id, self.now())
        return position.pending_rewards + accrued(rate, position.rate, position.virtual_deposited)

    def get_current_referrer_reward(self, pool_id: int, referrer: str) -> int:
        if not self.registry.pool_exists(pool_id):
            return 0
        position = self.ledger.get_referrer(pool_id, referrer)
        if position is None:
            return 0
        rate = self.accumulator.current_rate(pool_id, self.now())
        return position.pending_rewards + accrued(rate, position.rate, position.virtual_amount_staked)

    def get_current_user_multiplier(self, pool_id: int, user: str) -> int:
        if not self.registry.pool_exists(pool_id):
            return PRECISION
        position = self.ledger.get_user(pool_id, user)
        if position is None:
            return PRECISION
        return get_user_multiplier(
            position.claim_lock_start, position.claim_lock_end, position.has_referrer
        )

    def get_referrer_multiplier(self, pool_id: int, referrer: str) -> int:
        position = self.ledger.get_referrer(pool_id, referrer)
        if position is None or not self.registry.pool_exists(pool_id):
            return 0
        return get_referrer_multiplier(self.registry.get_referrer_tiers(pool_id), position.amount_staked)

    def overplus(self) -> int:
        """Deposit token balance above nominal public deposits, floored at zero."""
        balance = self.deposit_token.balance_of(self.engine_account)
        return max(balance - self.total_deposited_in_public_pools, 0)

    def users_data(self, user: str, pool_id: int) -> UserPosition:
        position = self.ledger.get_user(pool_id, user)
        return replace(position) if position else UserPosition()

    def referrers_data(self, referrer: str, pool_id: int) -> ReferrerPosition:
        position = self.ledger.get_referrer(pool_id, referrer)
        return replace(position) if position else ReferrerPosition()

    def pools(self, pool_id: int) -> Pool:
        return replace(self.registry.require_pool(pool_id))

    def pools_data(self, pool_id: int) -> PoolState:
        return replace(self.accumulator.peek(pool_id))

    def pools_limits(self, pool_id: int) -> PoolLimits:
        return replace(self.registry.get_limits(pool_id))

    def referrer_tiers(self, pool_id: int) -> List[ReferrerTier]:
        return self.registry.get_referrer_tiers(pool_id)

    # ========================================================================
    # INTERNAL STATE MACHINE
    # ========================================================================

    def _stake(
        self,
        user: str,
        pool_id: int,
        amount: int,
        pool_rate: int,
        claim_lock_end: int,
        referrer: str,
        now: int,
    ) -> int:
        pool = self.registry.require_pool(pool_id)
        position = self.ledger.user(pool_id, user)

        if claim_lock_end == 0:
            claim_lock_end = max(position.claim_lock_end, now)
        if claim_lock_end < position.claim_lock_end:
            raise ValidationError("DS: invalid claim lock end")

        if referrer == ZERO_ADDRESS:
            referrer = position.referrer

        if pool.is_public:
            if position.deposited + amount < pool.minimal_stake:
                raise BusinessRuleError("DS: amount too low")
            amount = self._receive_deposit(user, amount)
            self.total_deposited_in_public_pools += amount

        reconcile_user(position, pool_rate)

        old_deposited = position.deposited
        new_deposited = old_deposited + amount

        multiplier = get_user_multiplier(now, claim_lock_end, referrer != ZERO_ADDRESS)
        self._apply_referrer_tier(
            user, pool_id, pool_rate, old_deposited, new_deposited, position.referrer, referrer, now
        )
        self._set_user_virtual(pool_id, position, new_deposited * multiplier // PRECISION)

        position.last_stake = now
        position.deposited = new_deposited
        position.claim_lock_start = now
        position.claim_lock_end = claim_lock_end
        position.referrer = referrer

        self.events.emit(USER_STAKED, now, pool_id=pool_id, user=user, amount=amount)
        self.events.emit(
            USER_CLAIM_LOCKED, now,
            pool_id=pool_id, user=user, start=now, end=claim_lock_end,
        )
        logger.info(f"User {user} staked {amount} in pool {pool_id} (deposited={new_deposited})")
        return amount

    def _withdraw(self, user: str, pool_id: int, amount: int, pool_rate: int, now: int) -> int:
        pool = self.registry.require_pool(pool_id)
        position = self.ledger.get_user(pool_id, user)
        if position is None or position.deposited == 0:
            raise BusinessRuleError("DS: user isn't staked")

        amount = min(amount, position.deposited)
        # Nominal principal leaving the ledger; differs from `amount` only
        # when a negative rebase left the engine short
        written_off = amount
        capped = False

        if pool.is_public:
            unlocked = now < pool.payout_start or (
                now > pool.payout_start + pool.withdraw_lock_period
                and now > position.last_stake + pool.withdraw_lock_period_after_stake
            )
            if not unlocked:
                raise BusinessRuleError("DS: pool withdraw is locked")

            available = self.deposit_token.balance_of(self.engine_account)
            if amount > available:
                logger.warning(
                    f"Withdraw of {amount} from pool {pool_id} capped to engine balance {available}, "
                    f"shortfall of {amount - available} written off"
                )
                amount = available
                capped = True

            if amount == 0:
                raise BusinessRuleError("DS: nothing to withdraw")

        new_deposited = position.deposited - written_off
        if pool.is_public and not capped and new_deposited != 0 and new_deposited < pool.minimal_stake:
            raise BusinessRuleError("DS: invalid withdraw amount")

        reconcile_user(position, pool_rate)

        multiplier = get_user_multiplier(
            position.claim_lock_start, position.claim_lock_end, position.has_referrer
        )
        self._apply_referrer_tier(
            user, pool_id, pool_rate, position.deposited, new_deposited,
            position.referrer, position.referrer, now,
        )
        self._set_user_virtual(pool_id, position, new_deposited * multiplier // PRECISION)
        position.deposited = new_deposited

        if pool.is_public:
            self.total_deposited_in_public_pools -= written_off
            self.deposit_token.transfer(self.engine_account, user, amount)

        self.events.emit(USER_WITHDRAWN, now, pool_id=pool_id, user=user, amount=amount)
        logger.info(f"User {user} withdrew {amount} from pool {pool_id} (deposited={new_deposited})")
        return amount

    def _claim(self, user: str, pool_id: int, receiver: str) -> int:
        with self.transaction("claim"):
            now = self.now()
            pool = self.registry.require_pool(pool_id)
            position = self.ledger.get_user(pool_id, user)
            if position is None:
                raise BusinessRuleError("DS: user isn't staked")

            limits = self.registry.get_limits(pool_id)
            if now <= pool.payout_start + pool.claim_lock_period:
                raise BusinessRuleError("DS: pool claim is locked (1)")
            if now <= position.last_stake + limits.claim_lock_period_after_stake:
                raise BusinessRuleError("DS: pool claim is locked (S)")
            if now <= position.last_claim + limits.claim_lock_period_after_claim:
                raise BusinessRuleError("DS: pool claim is locked (C)")
            if now <= position.claim_lock_end:
                raise BusinessRuleError("DS: user claim is locked")

            pool_rate = self.accumulator.update(pool_id, now)
            pending = reconcile_user(position, pool_rate)
            if pending == 0:
                raise BusinessRuleError("DS: nothing to claim")

            # Claiming ends the personal lock, the weight drops back to base
            multiplier = get_user_multiplier(0, 0, position.has_referrer)
            self._set_user_virtual(pool_id, position, position.deposited * multiplier // PRECISION)

            position.pending_rewards = 0
            position.last_claim = now
            position.claim_lock_start = 0
            position.claim_lock_end = 0

            minted = self.reward_minter.mint(receiver, pending)
            if minted < pending:
                logger.warning(f"Reward minter delivered {minted} of {pending} for {user} in pool {pool_id}")

            self.events.emit(
                USER_CLAIMED, now, pool_id=pool_id, user=user, receiver=receiver, amount=minted,
            )
            logger.info(f"User {user} claimed {minted} from pool {pool_id} to {receiver}")
            return minted

    def _claim_referrer_tier(self, referrer: str, pool_id: int, receiver: str) -> int:
        with self.transaction("claim_referrer_tier"):
            now = self.now()
            pool = self.registry.require_pool(pool_id)
            self.require_feature("referrer_tiers")
            limits = self.registry.get_limits(pool_id)

            if now <= pool.payout_start + pool.claim_lock_period:
                raise BusinessRuleError("DS: pool claim is locked")

            position = self.ledger.get_referrer(pool_id, referrer)
            if position is None:
                raise BusinessRuleError("DS: nothing to claim")
            if now <= position.last_claim + limits.claim_lock_period_after_claim:
                raise BusinessRuleError("DS: pool claim is locked (C)")

            pool_rate = self.accumulator.update(pool_id, now)
            pending = reconcile_referrer(position, pool_rate)
            if pending == 0:
                raise BusinessRuleError("DS: nothing to claim")

            position.pending_rewards = 0
            position.last_claim = now

            minted = self.reward_minter.mint(receiver, pending)
            if minted < pending:
                logger.warning(f"Reward minter delivered {minted} of {pending} for referrer {referrer}")

            self.events.emit(
                REFERRER_CLAIMED, now, pool_id=pool_id, referrer=referrer, receiver=receiver, amount=minted,
            )
            logger.info(f"Referrer {referrer} claimed {minted} from pool {pool_id} to {receiver}")
            return minted

    def _apply_referrer_tier(
        self,
        user: str,
        pool_id: int,
        pool_rate: int,
        old_deposited: int,
        new_deposited: int,
        old_referrer: str,
        new_referrer: str,
        now: int,
    ) -> None:
        """Move the user's principal between referrer positions."""
        if old_referrer == new_referrer:
            if new_referrer != ZERO_ADDRESS:
                self._change_referrer_stake(pool_id, new_referrer, pool_rate, new_deposited - old_deposited)
        else:
            if old_referrer != ZERO_ADDRESS:
                self._change_referrer_stake(pool_id, old_referrer, pool_rate, -old_deposited)
            if new_referrer != ZERO_ADDRESS:
                self._change_referrer_stake(pool_id, new_referrer, pool_rate, new_deposited)

        if new_referrer != ZERO_ADDRESS:
            self.events.emit(
                USER_REFERRED, now,
                pool_id=pool_id, user=user, referrer=new_referrer, amount=new_deposited,
            )

    def _change_referrer_stake(self, pool_id: int, referrer: str, pool_rate: int, delta: int) -> None:
        position = self.ledger.referrer(pool_id, referrer)
        reconcile_referrer(position, pool_rate)

        position.amount_staked += delta
        tier_multiplier = get_referrer_multiplier(
            self.registry.get_referrer_tiers(pool_id), position.amount_staked
        )
        new_virtual = position.amount_staked * tier_multiplier // PRECISION

        self.accumulator.adjust_total_virtual(pool_id, position.virtual_amount_staked, new_virtual)
        position.virtual_amount_staked = new_virtual

    def _set_user_virtual(self, pool_id: int, position: UserPosition, new_virtual: int) -> None:
        self.accumulator.adjust_total_virtual(pool_id, position.virtual_deposited, new_virtual)
        position.virtual_deposited = new_virtual

    def _receive_deposit(self, user: str, amount: int) -> int:
        """Pull `amount` from the user, returning what actually arrived."""
        if amount == 0:
            return 0
        balance_before = self.deposit_token.balance_of(self.engine_account)
        self.deposit_token.transfer_from(self.engine_account, user, self.engine_account, amount)
        received = self.deposit_token.balance_of(self.engine_account) - balance_before
        if received != amount:
            logger.warning(f"Deposit of {amount} from {user} arrived as {received}")
        return received

    def _resolve_receiver(self, caller: str, pool_id: int, staker: str, receiver: str) -> str:
        self.require_feature("delegated_claims")
        preset = self.ledger.get_claim_receiver(pool_id, staker)
        if preset != ZERO_ADDRESS:
            return preset
        if not self.ledger.is_claim_sender(pool_id, staker, caller):
            raise AccessDenied("DS: invalid caller")
        return receiver
