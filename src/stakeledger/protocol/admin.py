"""
stakeledger/protocol/admin.py

Owner-gated administration of a Distribution engine.

Kept apart from the user-facing Distribution API: holding a
DistributionAdmin is what grants the admin capability, and every call is
still checked against the registry owner.

Covers:
- Pool creation and edits (rate settled under the old curve first)
- Pool limits and referrer tiers
- Min rewards distribute period
- Schema upgrades and the one-way removal of upgradeability
- Bridging the deposit token overplus
"""

import logging
from typing import Optional, Sequence

from ..errors import BusinessRuleError, UpgradeError, ValidationError
from ..interfaces import OverplusBridge
from .distribution import Distribution
from .events import (
    POOL_CREATED,
    POOL_EDITED,
    POOL_LIMITS_EDITED,
    REFERRER_TIERS_EDITED,
    MIN_REWARDS_DISTRIBUTE_PERIOD_SET,
    UPGRADEABILITY_REMOVED,
    SCHEMA_UPGRADED,
    OVERPLUS_BRIDGED,
)
from .registry import Pool, PoolLimits, ReferrerTier
from .versioning import (
    CURRENT_SCHEMA_VERSION,
    SchemaVersion,
    is_known_version,
    migrate_snapshot,
)

logger = logging.getLogger("stakeledger.protocol.admin")


class DistributionAdmin:
    """
    Admin capability over a Distribution engine.

    Usage:
        admin = DistributionAdmin(engine, bridge=bridge)
        pool_id = admin.create_pool(owner, pool)
        admin.edit_referrer_tiers(owner, pool_id, tiers)
        message_id = admin.bridge_overplus(owner, gas_limit=1, max_fee=1, max_submission_cost=1)
    """

    def __init__(self, distribution: Distribution, bridge: Optional[OverplusBridge] = None):
        self.distribution = distribution
        self.bridge = bridge

    @property
    def registry(self):
        return self.distribution.registry

    def create_pool(self, caller: str, pool: Pool) -> int:
        with self.distribution.transaction("create_pool"):
            pool_id = self.registry.add_pool(caller, pool)
            self.distribution.events.emit(
                POOL_CREATED, self.distribution.now(), pool_id=pool_id, pool=pool.to_dict(),
            )
            return pool_id

    def edit_pool(self, caller: str, pool_id: int, pool: Pool) -> None:
        """Replace a pool's parameters; emission so far is settled under the old ones."""
        with self.distribution.transaction("edit_pool"):
            self.registry.check_owner(caller)
            self.registry.require_pool(pool_id)

            now = self.distribution.now()
            self.distribution.accumulator.update(pool_id, now)
            self.registry.replace_pool(caller, pool_id, pool)

            self.distribution.events.emit(POOL_EDITED, now, pool_id=pool_id, pool=pool.to_dict())

    def edit_pool_limits(self, caller: str, pool_id: int, limits: PoolLimits) -> None:
        with self.distribution.transaction("edit_pool_limits"):
            self.distribution.require_feature("pool_limits")
            self.registry.set_limits(caller, pool_id, limits)
            self.distribution.events.emit(
                POOL_LIMITS_EDITED, self.distribution.now(), pool_id=pool_id, limits=limits.to_dict(),
            )

    def edit_referrer_tiers(self, caller: str, pool_id: int, tiers: Sequence[ReferrerTier]) -> None:
        with self.distribution.transaction("edit_referrer_tiers"):
            self.distribution.require_feature("referrer_tiers")
            self.registry.set_referrer_tiers(caller, pool_id, tiers)
            self.distribution.events.emit(
                REFERRER_TIERS_EDITED, self.distribution.now(),
                pool_id=pool_id, tiers=[tier.to_dict() for tier in tiers],
            )

    def set_min_rewards_distribute_period(self, caller: str, period: int) -> None:
        """Hold pool rates still until `period` seconds passed since their last advance."""
        with self.distribution.transaction("set_min_rewards_distribute_period"):
            self.registry.check_owner(caller)
            self.distribution.require_feature("min_rewards_distribute_period")
            if period < 0:
                raise ValidationError("DS: invalid distribute period")
            self.distribution.accumulator.min_rewards_distribute_period = period
            self.distribution.events.emit(
                MIN_REWARDS_DISTRIBUTE_PERIOD_SET, self.distribution.now(), period=period,
            )
            logger.info(f"Min rewards distribute period set to {period}s")

    def remove_upgradeability(self, caller: str) -> None:
        """Permanently disable schema upgrades."""
        with self.distribution.transaction("remove_upgradeability"):
            self.registry.check_owner(caller)
            self.distribution.require_feature("remove_upgradeability")
            self.distribution.is_not_upgradeable = True
            self.distribution.events.emit(UPGRADEABILITY_REMOVED, self.distribution.now())
            logger.info("Upgradeability removed")

    def upgrade(self, caller: str, target_version: str = CURRENT_SCHEMA_VERSION) -> str:
        """
        Migrate the engine's ledger to `target_version`.

        Returns:
            The schema version the engine runs after the upgrade
        """
        with self.distribution.transaction("upgrade", full=True):
            self.registry.check_owner(caller)
            if self.distribution.is_not_upgradeable:
                raise UpgradeError("DS: upgrade isn't available")
            if not is_known_version(target_version):
                raise UpgradeError(f"DS: unknown schema version {target_version}")

            current = self.distribution.schema_version
            if SchemaVersion.from_string(target_version) < SchemaVersion.from_string(current):
                raise UpgradeError(f"DS: can't downgrade schema {current} to {target_version}")

            migrated = migrate_snapshot(self.distribution.snapshot(), target_version)
            self.distribution._load(migrated)
            self.distribution.schema_version = target_version

            self.distribution.events.emit(
                SCHEMA_UPGRADED, self.distribution.now(),
                from_version=current, to_version=target_version,
            )
            logger.info(f"Schema upgraded {current} -> {target_version}")
            return target_version

    def bridge_overplus(
        self,
        caller: str,
        gas_limit: int,
        max_fee: int,
        max_submission_cost: int,
    ) -> str:
        """
        Send the deposit token overplus to the bridge.

        Returns:
            Bridge message id
        """
        with self.distribution.transaction("bridge_overplus"):
            self.registry.check_owner(caller)
            if self.bridge is None:
                raise ValidationError("DS: bridge isn't set")

            overplus = self.distribution.overplus()
            if overplus == 0:
                raise BusinessRuleError("DS: overplus is zero")

            token = self.distribution.deposit_token
            engine_account = self.distribution.engine_account
            bridge_before = token.balance_of(self.bridge.address)
            token.transfer(engine_account, self.bridge.address, overplus)
            try:
                message_id = self.bridge.bridge(overplus, gas_limit, max_fee, max_submission_cost)
            except Exception as e:
                # Token balances are not rolled back with the ledger, undo the transfer by hand
                received = token.balance_of(self.bridge.address) - bridge_before
                logger.error(f"Bridge failed, returning {received} to the engine: {e}")
                token.transfer(self.bridge.address, engine_account, received)
                raise

            self.distribution.events.emit(
                OVERPLUS_BRIDGED, self.distribution.now(),
                amount=overplus, bridge_message_id=message_id,
            )
            logger.info(f"Bridged overplus {overplus} (message {message_id})")
            return message_id
