"""
stakeledger/metrics.py

Prometheus metrics collection for stakeledger.

Exposes pool totals, rates and operation counters of a running
Distribution engine in Prometheus text format.
"""

import time
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from .protocol.events import (
    Event,
    USER_STAKED,
    USER_WITHDRAWN,
    USER_CLAIMED,
    REFERRER_CLAIMED,
    OVERPLUS_BRIDGED,
)

if TYPE_CHECKING:
    from .protocol.distribution import Distribution

logger = logging.getLogger("stakeledger.metrics")


class LedgerMetricsCollector:
    """
    Prometheus metrics collector for a Distribution engine.

    Operation counters are fed by the engine's event log, so only committed
    operations are counted.

    Usage:
        from stakeledger.metrics import LedgerMetricsCollector

        metrics = LedgerMetricsCollector(engine)
        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "stakeledger_pools_total": {
            "type": "gauge",
            "help": "Number of pools created",
        },
        "stakeledger_pool_total_virtual_deposited": {
            "type": "gauge",
            "help": "Total virtual deposit of a pool",
        },
        "stakeledger_pool_rate": {
            "type": "gauge",
            "help": "Cumulative reward per virtual unit of a pool (PRECISION scaled)",
        },
        "stakeledger_pool_stakers": {
            "type": "gauge",
            "help": "Positions with a non-zero deposit in a pool",
        },
        "stakeledger_total_deposited_in_public_pools": {
            "type": "gauge",
            "help": "Nominal deposit token held for public pools",
        },
        "stakeledger_overplus": {
            "type": "gauge",
            "help": "Deposit token balance above nominal public deposits",
        },
        "stakeledger_stakes_total": {
            "type": "counter",
            "help": "Total number of stakes",
        },
        "stakeledger_withdrawals_total": {
            "type": "counter",
            "help": "Total number of withdrawals",
        },
        "stakeledger_claims_total": {
            "type": "counter",
            "help": "Total number of user and referrer claims",
        },
        "stakeledger_rewards_minted_total": {
            "type": "counter",
            "help": "Total reward tokens minted by claims",
        },
        "stakeledger_overplus_bridged_total": {
            "type": "counter",
            "help": "Total deposit token sent to the bridge",
        },
        "stakeledger_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    def __init__(self, distribution: "Distribution"):
        """
        Initialize metrics collector.

        Args:
            distribution: Engine to collect metrics from
        """
        self.distribution = distribution
        self._start_time = time.time()

        # Counters (persist across collections)
        self._stakes = 0
        self._withdrawals = 0
        self._claims = 0
        self._rewards_minted = 0
        self._overplus_bridged = 0

        distribution.events.subscribe(self._on_event)

    def _on_event(self, event: Event) -> None:
        if event.name == USER_STAKED:
            self._stakes += 1
        elif event.name == USER_WITHDRAWN:
            self._withdrawals += 1
        elif event.name in (USER_CLAIMED, REFERRER_CLAIMED):
            self._claims += 1
            self._rewards_minted += event["amount"]
        elif event.name == OVERPLUS_BRIDGED:
            self._overplus_bridged += event["amount"]

    def close(self) -> None:
        """Stop listening to the engine's events."""
        self.distribution.events.unsubscribe(self._on_event)

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []
        described = set()

        def add_metric(name: str, value: Any, labels: Optional[Dict[str, str]] = None):
            metric_def = self.METRICS.get(name, {})

            # HELP and TYPE once per metric, even with several label sets
            if name not in described:
                lines.append(f"# HELP {name} {metric_def.get('help', '')}")
                lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")
                described.add(name)

            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        engine = self.distribution
        try:
            pool_ids = engine.registry.pool_ids()
            add_metric("stakeledger_pools_total", len(pool_ids))

            for pool_id in pool_ids:
                state = engine.accumulator.peek(pool_id)
                labels = {"pool": str(pool_id)}
                add_metric("stakeledger_pool_total_virtual_deposited", state.total_virtual_deposited, labels)
            for pool_id in pool_ids:
                state = engine.accumulator.peek(pool_id)
                add_metric("stakeledger_pool_rate", state.rate, {"pool": str(pool_id)})
            for pool_id in pool_ids:
                stakers = sum(1 for _, pos in engine.ledger.users_in_pool(pool_id) if pos.deposited > 0)
                add_metric("stakeledger_pool_stakers", stakers, {"pool": str(pool_id)})

            add_metric("stakeledger_total_deposited_in_public_pools", engine.total_deposited_in_public_pools)
            add_metric("stakeledger_overplus", engine.overplus())

            add_metric("stakeledger_stakes_total", self._stakes)
            add_metric("stakeledger_withdrawals_total", self._withdrawals)
            add_metric("stakeledger_claims_total", self._claims)
            add_metric("stakeledger_rewards_minted_total", self._rewards_minted)
            add_metric("stakeledger_overplus_bridged_total", self._overplus_bridged)

            add_metric("stakeledger_uptime_seconds", time.time() - self._start_time)

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON API).

        Returns:
            Dictionary of metric values
        """
        engine = self.distribution
        return {
            "pools": engine.registry.pool_count,
            "total_deposited_in_public_pools": engine.total_deposited_in_public_pools,
            "overplus": engine.overplus(),
            "stakes": self._stakes,
            "withdrawals": self._withdrawals,
            "claims": self._claims,
            "rewards_minted": self._rewards_minted,
            "overplus_bridged": self._overplus_bridged,
            "schema_version": engine.schema_version,
            "uptime_seconds": time.time() - self._start_time,
        }

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._stakes = 0
        self._withdrawals = 0
        self._claims = 0
        self._rewards_minted = 0
        self._overplus_bridged = 0
