"""
stakeledger/protocol/

Reward accounting for multi-pool staking.
"""

from .curve import calculate_period_reward, get_max_end_time
from .multipliers import (
    get_lock_period_multiplier,
    get_referrer_multiplier,
    get_user_multiplier,
)
from .registry import Pool, PoolLimits, PoolRegistry, ReferrerTier
from .accumulator import PoolState, RateAccumulator
from .positions import PositionLedger, ReferrerPosition, UserPosition
from .events import Event, EventLog
from .distribution import Distribution
from .admin import DistributionAdmin
from .private_pools import PrivatePoolAdmin
from .versioning import (
    SchemaVersion,
    CURRENT_SCHEMA_VERSION,
    MIN_SCHEMA_VERSION,
    migrate_snapshot,
)
from .storage import (
    StorageBackend,
    MemoryBackend,
    FileBackend,
    SnapshotStore,
    LedgerAutosaver,
)

__all__ = [
    "calculate_period_reward",
    "get_max_end_time",
    "get_lock_period_multiplier",
    "get_referrer_multiplier",
    "get_user_multiplier",
    "Pool",
    "PoolLimits",
    "PoolRegistry",
    "ReferrerTier",
    "PoolState",
    "RateAccumulator",
    "PositionLedger",
    "ReferrerPosition",
    "UserPosition",
    "Event",
    "EventLog",
    "Distribution",
    "DistributionAdmin",
    "PrivatePoolAdmin",
    # Versioning
    "SchemaVersion",
    "CURRENT_SCHEMA_VERSION",
    "MIN_SCHEMA_VERSION",
    "migrate_snapshot",
    # Storage
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "SnapshotStore",
    "LedgerAutosaver",
]
