"""
stakeledger/config.py

Configuration constants and data classes for stakeledger.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


# Fixed-point scales
PRECISION = 10 ** 25                # rate and multiplier precision
DECIMAL = 10 ** 18                  # token and exponent precision

# Bonus added to the user multiplier when the user has a referrer (0.01x)
USER_REFERRAL_BONUS = PRECISION // 100

# Lock multiplier schedule
LOCK_PERIOD_START = 1721908800      # Thu, 25 Jul 2024 12:00:00 UTC
LOCK_PERIOD_END = 2211192000        # Thu, 26 Jan 2040 12:00:00 UTC
LOCK_POWER_MAX = 16_613_275_460_000_000_000
LOCK_MULTIPLIER_MAX = 10_700_000_000_000_000_000   # 10.7x in DECIMAL
LOCK_MULTIPLIER_MIN = DECIMAL                      # 1x in DECIMAL

# Addresses are plain strings, the empty string means "no address"
ZERO_ADDRESS = ""

# Account the engine holds deposit tokens under
ENGINE_ACCOUNT = "stakeledger:distribution"

# Persistence settings
DEFAULT_STORAGE_DIR = Path.home() / ".stakeledger" / "storage"
AUTOSAVE_INTERVAL_SECONDS = 300     # 5 minutes
SNAPSHOT_KEY = "distribution"

# Environment overrides
ENV_STORAGE_DIR = "STAKELEDGER_STORAGE_DIR"
ENV_AUTOSAVE_INTERVAL = "STAKELEDGER_AUTOSAVE_INTERVAL"


@dataclass
class EngineConfig:
    """Runtime settings for a Distribution engine and its persistence."""
    storage_dir: Path = field(default_factory=lambda: DEFAULT_STORAGE_DIR)
    autosave_interval: float = AUTOSAVE_INTERVAL_SECONDS
    min_rewards_distribute_period: int = 0
    engine_account: str = ENGINE_ACCOUNT

    def __post_init__(self):
        self.storage_dir = Path(self.storage_dir)
        if self.autosave_interval <= 0:
            raise ValueError(f"autosave_interval must be positive, got {self.autosave_interval}")
        if self.min_rewards_distribute_period < 0:
            raise ValueError("min_rewards_distribute_period can't be negative")

    def to_dict(self) -> dict:
        return {
            "storage_dir": str(self.storage_dir),
            "autosave_interval": self.autosave_interval,
            "min_rewards_distribute_period": self.min_rewards_distribute_period,
            "engine_account": self.engine_account,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        return cls(
            storage_dir=Path(data.get("storage_dir", DEFAULT_STORAGE_DIR)),
            autosave_interval=float(data.get("autosave_interval", AUTOSAVE_INTERVAL_SECONDS)),
            min_rewards_distribute_period=int(data.get("min_rewards_distribute_period", 0)),
            engine_account=data.get("engine_account", ENGINE_ACCOUNT),
        )

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """Build a config from STAKELEDGER_* environment variables."""
        environ = os.environ if environ is None else environ
        data: Dict[str, Any] = {}
        if environ.get(ENV_STORAGE_DIR):
            data["storage_dir"] = environ[ENV_STORAGE_DIR]
        if environ.get(ENV_AUTOSAVE_INTERVAL):
            data["autosave_interval"] = environ[ENV_AUTOSAVE_INTERVAL]
        return cls.from_dict(data)
