"""
stakeledger/protocol/events.py

Event log for the distribution engine.

Event names and argument names are the contract with off-chain indexers.
Events raised inside an operation are buffered and only published when the
operation commits; a rolled back operation publishes nothing.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("stakeledger.protocol.events")


# ============================================================================
# EVENT NAMES
# ============================================================================

POOL_CREATED = "PoolCreated"
POOL_EDITED = "PoolEdited"
POOL_LIMITS_EDITED = "PoolLimitsEdited"
REFERRER_TIERS_EDITED = "ReferrerTiersEdited"
USER_STAKED = "UserStaked"
USER_WITHDRAWN = "UserWithdrawn"
USER_CLAIMED = "UserClaimed"
USER_CLAIM_LOCKED = "UserClaimLocked"
USER_REFERRED = "UserReferred"
REFERRER_CLAIMED = "ReferrerClaimed"
OVERPLUS_BRIDGED = "OverplusBridged"
CLAIM_SENDER_SET = "ClaimSenderSet"
CLAIM_RECEIVER_SET = "ClaimReceiverSet"
MIN_REWARDS_DISTRIBUTE_PERIOD_SET = "MinRewardsDistributePeriodSet"
UPGRADEABILITY_REMOVED = "UpgradeabilityRemoved"
SCHEMA_UPGRADED = "SchemaUpgraded"


@dataclass
class Event:
    """A committed engine event."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0
    sequence: int = 0

    def __getitem__(self, key: str) -> Any:
        return self.args[key]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "args": dict(self.args),
            "timestamp": self.timestamp,
            "sequence": self.sequence,
        }


class EventLog:
    """
    Append-only event log with transactional buffering.

    Usage:
        log = EventLog()
        log.subscribe(lambda event: print(event.name), name="UserStaked")
        log.begin()
        log.emit("UserStaked", timestamp, pool_id=0, user="0xuser", amount=10)
        log.commit()
    """

    def __init__(self):
        self._events: List[Event] = []
        self._pending: Optional[List[Event]] = None
        self._subscribers: List[tuple] = []
        self._sequence = 0

    @property
    def in_transaction(self) -> bool:
        return self._pending is not None

    def begin(self) -> None:
        if self._pending is not None:
            raise RuntimeError("Event transaction already open")
        self._pending = []

    def emit(self, name: str, timestamp: int, **args: Any) -> None:
        """Record an event; buffered when a transaction is open."""
        event = Event(name=name, args=args, timestamp=timestamp)
        if self._pending is not None:
            self._pending.append(event)
        else:
            self._publish([event])

    def commit(self) -> List[Event]:
        pending, self._pending = self._pending or [], None
        self._publish(pending)
        return pending

    def discard(self) -> None:
        if self._pending:
            logger.debug(f"Discarding {len(self._pending)} buffered events")
        self._pending = None

    def _publish(self, events: List[Event]) -> None:
        for event in events:
            self._sequence += 1
            event.sequence = self._sequence
            self._events.append(event)

        for event in events:
            for callback, name in self._subscribers:
                if name is not None and name != event.name:
                    continue
                try:
                    callback(event)
                except Exception as e:
                    # A broken listener must not undo a committed operation
                    logger.error(f"Event subscriber failed on {event.name}: {e}")

    def subscribe(self, callback: Callable[[Event], None], name: Optional[str] = None) -> None:
        """Call `callback` for every committed event, or only those named `name`."""
        self._subscribers.append((callback, name))

    def unsubscribe(self, callback: Callable[[Event], None]) -> None:
        self._subscribers = [(cb, n) for cb, n in self._subscribers if cb is not callback]

    @property
    def events(self) -> List[Event]:
        return list(self._events)

    def filter(self, name: str, **match: Any) -> List[Event]:
        """Committed events with the given name whose args match all of `match`."""
        return [
            event for event in self._events
            if event.name == name
            and all(event.args.get(k) == v for k, v in match.items())
        ]

    def last(self, name: Optional[str] = None) -> Optional[Event]:
        for event in reversed(self._events):
            if name is None or event.name == name:
                return event
        return None

    def clear(self) -> None:
        self._events.clear()
