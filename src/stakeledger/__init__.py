"""
stakeledger - Multi-pool staking reward accounting

Built around:
- Linear-decay emission curves per pool
- Lazy cumulative reward rates (no per-user iteration)
- Claim lock and referral multipliers on top of raw deposits
- Atomic operations with transactional events
- Snapshot persistence with forward schema migrations

Usage:
    from stakeledger import Distribution, DistributionAdmin, Pool, PoolRegistry

    registry = PoolRegistry(owner="0xowner")
    engine = Distribution(registry, deposit_token, reward_minter)
    admin = DistributionAdmin(engine)

    pool_id = admin.create_pool("0xowner", pool)
    engine.stake("0xuser", pool_id, 10 ** 18)
    engine.claim("0xuser", pool_id, receiver="0xuser")

Persistence Usage:
    from stakeledger import EngineConfig, SnapshotStore, LedgerAutosaver

    config = EngineConfig.from_env()   # STAKELEDGER_STORAGE_DIR, STAKELEDGER_AUTOSAVE_INTERVAL
    engine = Distribution(registry, deposit_token, reward_minter, config=config)
    store = SnapshotStore.from_config(config, namespace="mainnet")
    autosaver = LedgerAutosaver(engine, store)   # interval from config

    async with trio.open_nursery() as nursery:
        await autosaver.start(nursery)

Metrics Usage:
    from stakeledger.metrics import LedgerMetricsCollector

    metrics = LedgerMetricsCollector(engine)
    prometheus_output = metrics.collect()
"""

from .config import EngineConfig, PRECISION, DECIMAL, ZERO_ADDRESS, ENGINE_ACCOUNT
from .errors import (
    DistributionError,
    PoolNotFound,
    AccessDenied,
    ValidationError,
    BusinessRuleError,
    UpgradeError,
)
from .interfaces import DepositToken, RewardMinter, OverplusBridge
from .protocol import (
    Pool,
    PoolLimits,
    PoolRegistry,
    ReferrerTier,
    Distribution,
    DistributionAdmin,
    PrivatePoolAdmin,
    EventLog,
    SnapshotStore,
    LedgerAutosaver,
)
from .metrics import LedgerMetricsCollector

__version__ = "0.1.0"

__all__ = [
    "EngineConfig",
    "PRECISION",
    "DECIMAL",
    "ZERO_ADDRESS",
    "ENGINE_ACCOUNT",
    "DistributionError",
    "PoolNotFound",
    "AccessDenied",
    "ValidationError",
    "BusinessRuleError",
    "UpgradeError",
    "DepositToken",
    "RewardMinter",
    "OverplusBridge",
    "Pool",
    "PoolLimits",
    "PoolRegistry",
    "ReferrerTier",
    "Distribution",
    "DistributionAdmin",
    "PrivatePoolAdmin",
    "EventLog",
    "SnapshotStore",
    "LedgerAutosaver",
    "LedgerMetricsCollector",
]
