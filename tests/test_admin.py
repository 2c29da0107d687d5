"""
stakeledger/tests/test_admin.py

Tests for owner-gated pool administration, upgrades and overplus bridging.
"""

import pytest
from unittest.mock import Mock

from stakeledger.config import ENGINE_ACCOUNT, PRECISION
from stakeledger.errors import (
    AccessDenied,
    BusinessRuleError,
    PoolNotFound,
    UpgradeError,
    ValidationError,
)
from stakeledger.protocol.events import (
    POOL_CREATED,
    POOL_EDITED,
    POOL_LIMITS_EDITED,
    REFERRER_TIERS_EDITED,
    MIN_REWARDS_DISTRIBUTE_PERIOD_SET,
    UPGRADEABILITY_REMOVED,
    SCHEMA_UPGRADED,
    OVERPLUS_BRIDGED,
)
from stakeledger.protocol.registry import OWNER_ERROR, PoolLimits, ReferrerTier
from stakeledger.protocol.versioning import CURRENT_SCHEMA_VERSION

from conftest import ALICE, DAY, OWNER, create_test_pool, wei


# ============================================================================
# POOLS
# ============================================================================

class TestCreatePool:
    """Test pool creation."""

    def test_create_pool(self, admin, engine):
        pool_id = admin.create_pool(OWNER, create_test_pool())
        assert pool_id == 0
        assert engine.pools(pool_id).initial_reward == wei(100)
        assert engine.events.last(POOL_CREATED)["pool_id"] == 0

    def test_ids_are_sequential(self, admin):
        assert admin.create_pool(OWNER, create_test_pool()) == 0
        assert admin.create_pool(OWNER, create_test_pool(is_public=False)) == 1

    def test_not_owner(self, admin):
        with pytest.raises(AccessDenied, match=OWNER_ERROR):
            admin.create_pool(ALICE, create_test_pool())

    def test_invalid_payout_start(self, admin):
        with pytest.raises(ValidationError, match="DS: invalid payout start value"):
            admin.create_pool(OWNER, create_test_pool(payout_start=0))

    def test_decreasing_pool_needs_interval(self, admin):
        with pytest.raises(ValidationError, match="DS: invalid decrease interval"):
            admin.create_pool(OWNER, create_test_pool(decrease_interval=0))

    def test_flat_pool_without_interval(self, admin, engine):
        """Test a flat pool may omit the interval and then emits nothing."""
        pool_id = admin.create_pool(OWNER, create_test_pool(decrease_interval=0, reward_decrease=0))
        assert engine.get_period_reward(pool_id, 0, 10 * DAY) == 0

    def test_failed_create_emits_nothing(self, admin, engine):
        with pytest.raises(ValidationError):
            admin.create_pool(OWNER, create_test_pool(payout_start=0))
        assert engine.events.last(POOL_CREATED) is None
        assert engine.registry.pool_count == 0


class TestEditPool:
    """Test pool edits settle emission under the old parameters."""

    def test_edit_settles_old_curve(self, admin, engine, pool_id, clock):
        clock.set(DAY // 2)
        engine.stake(ALICE, pool_id, wei(2))

        clock.set(2 * DAY)
        admin.edit_pool(OWNER, pool_id, create_test_pool(initial_reward=wei(200), reward_decrease=0))

        assert engine.get_current_user_reward(pool_id, ALICE) == wei(100)
        clock.set(3 * DAY)
        assert engine.get_current_user_reward(pool_id, ALICE) == wei(300)
        assert engine.events.last(POOL_EDITED)["pool_id"] == pool_id

    def test_cannot_change_visibility(self, admin, pool_id):
        with pytest.raises(ValidationError, match="DS: invalid pool type"):
            admin.edit_pool(OWNER, pool_id, create_test_pool(is_public=False))

    def test_missing_pool(self, admin):
        with pytest.raises(PoolNotFound):
            admin.edit_pool(OWNER, 3, create_test_pool())

    def test_not_owner(self, admin, pool_id):
        with pytest.raises(AccessDenied):
            admin.edit_pool(ALICE, pool_id, create_test_pool())

    def test_invalid_edit_rolls_back_rate(self, admin, engine, pool_id, clock):
        """Test a rejected edit doesn't leave the rate advanced."""
        clock.set(DAY // 2)
        engine.stake(ALICE, pool_id, wei(1))
        before = engine.pools_data(pool_id)

        clock.set(3 * DAY)
        with pytest.raises(ValidationError):
            admin.edit_pool(OWNER, pool_id, create_test_pool(payout_start=0))
        assert engine.pools_data(pool_id) == before


class TestLimitsAndTiers:
    """Test pool limits and referrer tiers."""

    def test_edit_limits(self, admin, engine, pool_id):
        limits = PoolLimits(claim_lock_period_after_stake=DAY, claim_lock_period_after_claim=2 * DAY)
        admin.edit_pool_limits(OWNER, pool_id, limits)
        assert engine.pools_limits(pool_id) == limits
        assert engine.events.last(POOL_LIMITS_EDITED)["limits"] == limits.to_dict()

    def test_default_limits(self, engine, pool_id):
        assert engine.pools_limits(pool_id) == PoolLimits()

    def test_limits_missing_pool(self, admin):
        with pytest.raises(PoolNotFound):
            admin.edit_pool_limits(OWNER, 5, PoolLimits())

    def test_edit_tiers(self, admin, engine, pool_id):
        tiers = [
            ReferrerTier(amount=0, multiplier=PRECISION // 100),
            ReferrerTier(amount=wei(10), multiplier=PRECISION // 50),
        ]
        admin.edit_referrer_tiers(OWNER, pool_id, tiers)
        assert engine.referrer_tiers(pool_id) == tiers
        assert len(engine.events.last(REFERRER_TIERS_EDITED)["tiers"]) == 2

    def test_invalid_tiers(self, admin, pool_id):
        tiers = [
            ReferrerTier(amount=wei(10), multiplier=PRECISION // 100),
            ReferrerTier(amount=wei(1), multiplier=PRECISION // 50),
        ]
        with pytest.raises(ValidationError, match=r"DS: invalid referrer tiers \(1\)"):
            admin.edit_referrer_tiers(OWNER, pool_id, tiers)

    def test_tiers_not_owner(self, admin, pool_id):
        with pytest.raises(AccessDenied):
            admin.edit_referrer_tiers(ALICE, pool_id, [])


class TestMinRewardsDistributePeriod:
    """Test the distribute period setting."""

    def test_set_period(self, admin, engine):
        admin.set_min_rewards_distribute_period(OWNER, DAY)
        assert engine.accumulator.min_rewards_distribute_period == DAY
        assert engine.events.last(MIN_REWARDS_DISTRIBUTE_PERIOD_SET)["period"] == DAY

    def test_negative_period(self, admin):
        with pytest.raises(ValidationError, match="DS: invalid distribute period"):
            admin.set_min_rewards_distribute_period(OWNER, -1)

    def test_not_owner(self, admin):
        with pytest.raises(AccessDenied):
            admin.set_min_rewards_distribute_period(ALICE, DAY)


# ============================================================================
# UPGRADES
# ============================================================================

class TestUpgrades:
    """Test schema upgrades and removing upgradeability."""

    def test_upgrade_from_older_schema(self, admin, engine, pool_id):
        engine.schema_version = "2.0.0"
        assert admin.upgrade(OWNER) == CURRENT_SCHEMA_VERSION
        assert engine.schema_version == CURRENT_SCHEMA_VERSION

        event = engine.events.last(SCHEMA_UPGRADED)
        assert event["from_version"] == "2.0.0"
        assert event["to_version"] == CURRENT_SCHEMA_VERSION

    def test_upgrade_keeps_balances(self, admin, engine, pool_id, clock):
        clock.set(DAY // 2)
        engine.stake(ALICE, pool_id, wei(1))
        clock.set(2 * DAY)
        engine.stake(ALICE, pool_id, wei(1))
        before = engine.users_data(ALICE, pool_id)

        engine.schema_version = "3.0.0"
        admin.upgrade(OWNER)
        assert engine.users_data(ALICE, pool_id) == before

    def test_older_schema_gates_newer_features(self, admin, engine, pool_id, clock):
        """Test operations introduced by later schemas wait for the upgrade."""
        clock.set(DAY // 2)
        engine.stake(ALICE, pool_id, wei(1))
        engine.schema_version = "2.0.0"

        with pytest.raises(UpgradeError, match="lock_claim"):
            engine.lock_claim(ALICE, pool_id, 5 * DAY)
        with pytest.raises(UpgradeError, match="referrer_tiers"):
            admin.edit_referrer_tiers(OWNER, pool_id, [ReferrerTier(amount=0, multiplier=PRECISION // 100)])
        with pytest.raises(UpgradeError, match="delegated_claims"):
            engine.set_claim_receiver(ALICE, pool_id, "0xvault")

        # Features of the running schema keep working
        engine.stake(ALICE, pool_id, wei(1))
        admin.edit_pool_limits(OWNER, pool_id, PoolLimits())

        admin.upgrade(OWNER)
        engine.lock_claim(ALICE, pool_id, 5 * DAY)
        assert engine.users_data(ALICE, pool_id).claim_lock_end == 5 * DAY

    def test_failed_upgrade_keeps_schema(self, admin, engine, pool_id, monkeypatch):
        engine.schema_version = "2.0.0"
        monkeypatch.setattr(
            "stakeledger.protocol.admin.migrate_snapshot",
            Mock(side_effect=UpgradeError("DS: migration failed")),
        )
        with pytest.raises(UpgradeError, match="migration failed"):
            admin.upgrade(OWNER)
        assert engine.schema_version == "2.0.0"
        assert engine.registry.pool_count == 1

    def test_unknown_version(self, admin):
        with pytest.raises(UpgradeError, match="unknown schema version"):
            admin.upgrade(OWNER, "9.9.9")

    def test_downgrade(self, admin):
        with pytest.raises(UpgradeError, match="can't downgrade"):
            admin.upgrade(OWNER, "3.0.0")

    def test_not_owner(self, admin):
        with pytest.raises(AccessDenied):
            admin.upgrade(ALICE)

    def test_remove_upgradeability(self, admin, engine):
        admin.remove_upgradeability(OWNER)
        assert engine.is_not_upgradeable is True
        assert engine.events.last(UPGRADEABILITY_REMOVED) is not None

        with pytest.raises(UpgradeError, match="DS: upgrade isn't available"):
            admin.upgrade(OWNER)

    def test_remove_upgradeability_not_owner(self, admin, engine):
        with pytest.raises(AccessDenied):
            admin.remove_upgradeability(ALICE)
        assert engine.is_not_upgradeable is False


# ============================================================================
# OVERPLUS
# ============================================================================

class TestBridgeOverplus:
    """Test sending deposit token yield to the bridge."""

    def test_bridge_overplus(self, admin, engine, pool_id, token, bridge):
        engine.stake(ALICE, pool_id, wei(2))
        token.rebase(12, 10)

        message_id = admin.bridge_overplus(OWNER, gas_limit=1, max_fee=2, max_submission_cost=3)

        message = bridge.messages[0]
        assert message.message_id == message_id
        assert message.amount == wei("0.4")
        assert message.max_submission_cost == 3
        # Share rounding may cost the bridge a unit
        assert token.balance_of(bridge.address) >= wei("0.4") - 1
        assert token.balance_of(ENGINE_ACCOUNT) >= wei(2)

        event = engine.events.last(OVERPLUS_BRIDGED)
        assert event["amount"] == wei("0.4")
        assert event["bridge_message_id"] == message_id

    def test_failing_bridge_returns_overplus(self, admin, engine, pool_id, token, bridge):
        """Test a bridge error leaves the overplus with the engine."""
        engine.stake(ALICE, pool_id, wei(2))
        token.rebase(12, 10)
        overplus = engine.overplus()
        bridge.bridge = Mock(side_effect=RuntimeError("bridge down"))

        with pytest.raises(RuntimeError, match="bridge down"):
            admin.bridge_overplus(OWNER, 1, 1, 1)

        # Two transfers may each lose a unit to share rounding
        assert token.balance_of(bridge.address) <= 1
        assert engine.overplus() >= overplus - 2
        assert engine.events.last(OVERPLUS_BRIDGED) is None

    def test_zero_overplus(self, admin, engine, pool_id):
        engine.stake(ALICE, pool_id, wei(2))
        with pytest.raises(BusinessRuleError, match="DS: overplus is zero"):
            admin.bridge_overplus(OWNER, 1, 1, 1)

    def test_overplus_floored_at_zero(self, engine, pool_id, token):
        engine.stake(ALICE, pool_id, wei(2))
        token.rebase(5, 10)
        assert engine.overplus() == 0

    def test_no_bridge(self, engine, token, pool_id):
        from stakeledger.protocol.admin import DistributionAdmin

        engine.stake(ALICE, pool_id, wei(2))
        token.rebase(12, 10)
        with pytest.raises(ValidationError, match="DS: bridge isn't set"):
            DistributionAdmin(engine).bridge_overplus(OWNER, 1, 1, 1)

    def test_not_owner(self, admin):
        with pytest.raises(AccessDenied):
            admin.bridge_overplus(ALICE, 1, 1, 1)
