"""
stakeledger/protocol/versioning.py

Ledger schema versions and forward migrations.

Each schema version is a strict superset of the previous one: new trailing
fields with defined defaults. Snapshots carry the version they were written
with and are migrated one step at a time, so data written by any older
release loads without touching balances that already accrued.

Schema history:
- 1.0.0: pools, pool rates, users {last_stake, deposited, rate, pending_rewards}
- 2.0.0: users.last_claim, pool limits, one-way upgradeability flag
- 3.0.0: users.virtual_deposited (= deposited), claim lock window,
         pool total_deposited renamed to total_virtual_deposited
- 4.0.0: users.referrer, referrer positions and tiers, delegated claims,
         min rewards distribute period

Usage:
    from stakeledger.protocol.versioning import SchemaVersion, migrate_snapshot

    snapshot = migrate_snapshot(old_snapshot, "4.0.0")
    SchemaVersion.from_string("3.0.0").supports_feature("lock_claim")  # True
"""

import copy
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List

from ..errors import UpgradeError

logger = logging.getLogger("stakeledger.protocol.versioning")


# ============================================================================
# VERSION CONSTANTS
# ============================================================================

CURRENT_SCHEMA_VERSION = "4.0.0"
MIN_SCHEMA_VERSION = "1.0.0"

# Features introduced in each schema version
SCHEMA_FEATURES: Dict[str, List[str]] = {
    "1.0.0": [
        "stake",
        "withdraw",
        "claim",
        "private_pools",
    ],
    "2.0.0": [
        "pool_limits",
        "claim_cooldowns",
        "remove_upgradeability",
    ],
    "3.0.0": [
        "claim_lock_multiplier",
        "lock_claim",
    ],
    "4.0.0": [
        "referrer_tiers",
        "delegated_claims",
        "min_rewards_distribute_period",
    ],
}


# ============================================================================
# VERSION DATA CLASS
# ============================================================================

@dataclass(frozen=True)
class SchemaVersion:
    """Semantic version of the ledger schema (MAJOR.MINOR.PATCH)."""
    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def __repr__(self) -> str:
        return f"SchemaVersion({self})"

    def _key(self) -> tuple:
        return (self.major, self.minor, self.patch)

    def __lt__(self, other: "SchemaVersion") -> bool:
        return self._key() < other._key()

    def __le__(self, other: "SchemaVersion") -> bool:
        return self._key() <= other._key()

    def __gt__(self, other: "SchemaVersion") -> bool:
        return self._key() > other._key()

    def __ge__(self, other: "SchemaVersion") -> bool:
        return self._key() >= other._key()

    @classmethod
    def from_string(cls, version_str: str) -> "SchemaVersion":
        """
        Parse a version string like "3.0.0".

        Raises:
            ValueError: If the string is not a valid version
        """
        parts = str(version_str).strip().split(".")
        if len(parts) != 3:
            raise ValueError(f"Invalid version format: {version_str}")
        try:
            return cls(major=int(parts[0]), minor=int(parts[1]), patch=int(parts[2]))
        except ValueError as e:
            raise ValueError(f"Invalid version string '{version_str}': {e}")

    def get_features(self) -> List[str]:
        """Features available at this version, accumulated from 1.0.0."""
        features = []
        for version_str, version_features in SCHEMA_FEATURES.items():
            if SchemaVersion.from_string(version_str) <= self:
                features.extend(version_features)
        return features

    def supports_feature(self, feature: str) -> bool:
        return feature in self.get_features()


def is_known_version(version: str) -> bool:
    return version in SCHEMA_FEATURES


# ============================================================================
# MIGRATIONS
# ============================================================================

def _users(snapshot: dict) -> Dict[str, dict]:
    return snapshot.setdefault("ledger", {}).setdefault("users", {})


def _migrate_to_v2(snapshot: dict) -> None:
    for user in _users(snapshot).values():
        user.setdefault("last_claim", 0)
    snapshot.setdefault("registry", {}).setdefault("limits", {})
    snapshot.setdefault("engine", {}).setdefault("is_not_upgradeable", False)


def _migrate_to_v3(snapshot: dict) -> None:
    for user in _users(snapshot).values():
        user.setdefault("virtual_deposited", user.get("deposited", 0))
        user.setdefault("claim_lock_start", 0)
        user.setdefault("claim_lock_end", 0)

    pools = snapshot.setdefault("accumulator", {}).setdefault("pools", {})
    for state in pools.values():
        if "total_virtual_deposited" not in state:
            state["total_virtual_deposited"] = state.pop("total_deposited", 0)


def _migrate_to_v4(snapshot: dict) -> None:
    for user in _users(snapshot).values():
        user.setdefault("referrer", "")

    ledger = snapshot.setdefault("ledger", {})
    ledger.setdefault("referrers", {})
    ledger.setdefault("claim_senders", {})
    ledger.setdefault("claim_receivers", {})
    snapshot.setdefault("registry", {}).setdefault("referrer_tiers", {})
    snapshot.setdefault("accumulator", {}).setdefault("min_rewards_distribute_period", 0)


# Migration producing each version from the one before it
MIGRATIONS: Dict[str, Callable[[dict], None]] = {
    "2.0.0": _migrate_to_v2,
    "3.0.0": _migrate_to_v3,
    "4.0.0": _migrate_to_v4,
}


def migrate_snapshot(snapshot: dict, target_version: str = CURRENT_SCHEMA_VERSION) -> dict:
    """
    Migrate a snapshot forward to `target_version`.

    The input is not modified.

    Raises:
        UpgradeError: For unknown versions or attempted downgrades
    """
    source_version = snapshot.get("schema_version", MIN_SCHEMA_VERSION)
    if not is_known_version(source_version):
        raise UpgradeError(f"DS: unknown schema version {source_version}")
    if not is_known_version(target_version):
        raise UpgradeError(f"DS: unknown schema version {target_version}")

    source = SchemaVersion.from_string(source_version)
    target = SchemaVersion.from_string(target_version)
    if target < source:
        raise UpgradeError(f"DS: can't downgrade schema {source} to {target}")

    migrated = copy.deepcopy(snapshot)
    steps = sorted(MIGRATIONS, key=SchemaVersion.from_string)
    for step in steps:
        step_version = SchemaVersion.from_string(step)
        if source < step_version <= target:
            MIGRATIONS[step](migrated)
            logger.debug(f"Applied schema migration to {step}")

    migrated["schema_version"] = str(target)
    return migrated
