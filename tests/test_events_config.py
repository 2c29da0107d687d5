"""
stakeledger/tests/test_events_config.py

Tests for the event log and engine configuration.
"""

import pytest
from pathlib import Path
from unittest.mock import Mock

from stakeledger.config import (
    AUTOSAVE_INTERVAL_SECONDS,
    ENGINE_ACCOUNT,
    ENV_AUTOSAVE_INTERVAL,
    ENV_STORAGE_DIR,
    EngineConfig,
)
from stakeledger.errors import BusinessRuleError
from stakeledger.protocol.events import EventLog, USER_STAKED

from conftest import ALICE, wei


# ============================================================================
# EVENT LOG
# ============================================================================

class TestEventLog:
    """Test EventLog buffering and subscriptions."""

    @pytest.fixture
    def log(self):
        return EventLog()

    def test_emit_outside_transaction(self, log):
        log.emit("Ping", 1, value=3)
        assert log.last("Ping")["value"] == 3
        assert log.last("Ping").sequence == 1

    def test_buffered_until_commit(self, log):
        log.begin()
        log.emit("Ping", 1)
        assert log.events == []
        committed = log.commit()
        assert [e.name for e in committed] == ["Ping"]
        assert len(log.events) == 1

    def test_discard(self, log):
        log.begin()
        log.emit("Ping", 1)
        log.discard()
        assert log.events == []
        assert not log.in_transaction

    def test_nested_begin_rejected(self, log):
        log.begin()
        with pytest.raises(RuntimeError):
            log.begin()

    def test_subscribe_by_name(self, log):
        callback = Mock()
        log.subscribe(callback, name="Pong")
        log.emit("Ping", 1)
        log.emit("Pong", 2)
        assert callback.call_count == 1
        assert callback.call_args[0][0].name == "Pong"

    def test_failing_subscriber_is_isolated(self, log):
        log.subscribe(Mock(side_effect=RuntimeError("boom")))
        good = Mock()
        log.subscribe(good)
        log.emit("Ping", 1)
        assert good.call_count == 1
        assert len(log.events) == 1

    def test_unsubscribe(self, log):
        callback = Mock()
        log.subscribe(callback)
        log.unsubscribe(callback)
        log.emit("Ping", 1)
        callback.assert_not_called()

    def test_filter(self, log):
        log.emit("Ping", 1, pool_id=0, user="a")
        log.emit("Ping", 2, pool_id=1, user="a")
        log.emit("Pong", 3, pool_id=0)
        assert len(log.filter("Ping", user="a")) == 2
        assert len(log.filter("Ping", pool_id=1)) == 1

    def test_to_dict(self, log):
        log.emit("Ping", 5, amount=2 ** 100)
        data = log.last().to_dict()
        assert data == {"name": "Ping", "args": {"amount": 2 ** 100}, "timestamp": 5, "sequence": 1}

    def test_engine_rollback_publishes_nothing(self, engine, pool_id):
        seen = Mock()
        engine.events.subscribe(seen, name=USER_STAKED)
        with pytest.raises(BusinessRuleError):
            engine.stake(ALICE, pool_id, wei("0.01"))
        seen.assert_not_called()
        assert not engine.events.in_transaction


# ============================================================================
# CONFIG
# ============================================================================

class TestEngineConfig:
    """Test EngineConfig defaults and parsing."""

    def test_defaults(self):
        config = EngineConfig()
        assert config.autosave_interval == AUTOSAVE_INTERVAL_SECONDS
        assert config.min_rewards_distribute_period == 0
        assert config.engine_account == ENGINE_ACCOUNT

    def test_round_trip(self, tmp_path):
        config = EngineConfig(storage_dir=tmp_path, autosave_interval=30, min_rewards_distribute_period=60)
        assert EngineConfig.from_dict(config.to_dict()) == config

    def test_from_env(self, tmp_path):
        config = EngineConfig.from_env({
            ENV_STORAGE_DIR: str(tmp_path),
            ENV_AUTOSAVE_INTERVAL: "15",
        })
        assert config.storage_dir == Path(tmp_path)
        assert config.autosave_interval == 15

    def test_invalid_values(self):
        with pytest.raises(ValueError):
            EngineConfig(autosave_interval=0)
        with pytest.raises(ValueError):
            EngineConfig(min_rewards_distribute_period=-5)

    def test_engine_uses_config_period(self, token, minter, clock):
        from stakeledger.protocol.distribution import Distribution
        from stakeledger.protocol.registry import PoolRegistry

        engine = Distribution(
            PoolRegistry(owner="0xowner"), token, minter, clock=clock,
            config=EngineConfig(min_rewards_distribute_period=120),
        )
        assert engine.accumulator.min_rewards_distribute_period == 120
