"""
stakeledger/errors.py

Exceptions raised by the distribution engine.

Every failure carries the revert reason string the engine has always used
("DS: ..."), so callers and indexers can match on it. A raised error means
the whole operation was rolled back.
"""


class DistributionError(Exception):
    """Base class for all engine failures."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class PoolNotFound(DistributionError):
    """Raised when an operation names a pool that was never created."""
    pass


class AccessDenied(DistributionError):
    """Raised for owner-only calls, wrong pool visibility and unapproved callers."""
    pass


class ValidationError(DistributionError):
    """Raised when call arguments are malformed."""
    pass


class BusinessRuleError(DistributionError):
    """Raised when a well-formed call is not allowed in the current state."""
    pass


class UpgradeError(DistributionError):
    """Raised when a schema upgrade is disabled or not possible."""
    pass


class InvalidExponent(ValueError):
    """Raised when the fixed-point exponential is asked for an out of range value."""
    pass
