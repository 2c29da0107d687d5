"""
stakeledger/protocol/multipliers.py

Multipliers that turn raw deposits into virtual (weighted) deposits.

Lock multiplier:
- Bonus for committing not to claim until a future date
- tanh-shaped curve over a fixed calendar schedule, 1x to 10.7x

Referral multiplier:
- Tiered by the total stake a referrer has brought into a pool
- Applied to the referrer's own virtual stake

User multiplier:
- Lock multiplier plus a flat referral bonus when the user has a referrer
- The combination is additive, never multiplicative
"""

from typing import List, Sequence, TYPE_CHECKING

from ..config import (
    PRECISION,
    DECIMAL,
    USER_REFERRAL_BONUS,
    LOCK_PERIOD_START,
    LOCK_PERIOD_END,
    LOCK_POWER_MAX,
    LOCK_MULTIPLIER_MAX,
    LOCK_MULTIPLIER_MIN,
)
from .logexp import tanh

if TYPE_CHECKING:
    from .registry import ReferrerTier


LOCK_PERIOD = LOCK_PERIOD_END - LOCK_PERIOD_START


def get_lock_period_multiplier(start: int, end: int) -> int:
    """
    Multiplier for a claim lock window [start, end].

    The window is clamped to the schedule before evaluation, so locks that
    begin early or end beyond 2040 saturate instead of growing further.

    Returns:
        Multiplier in PRECISION units, between 1x and 10.7x
    """
    if end > LOCK_PERIOD_END:
        end = LOCK_PERIOD_END
    if start < LOCK_PERIOD_START:
        start = LOCK_PERIOD_START

    if start >= end:
        return PRECISION

    end_power = tanh(2 * ((end - LOCK_PERIOD_START) * DECIMAL // LOCK_PERIOD))
    start_power = tanh(2 * ((start - LOCK_PERIOD_START) * DECIMAL // LOCK_PERIOD))

    multiplier = LOCK_POWER_MAX * (end_power - start_power) // DECIMAL
    multiplier = min(max(multiplier, LOCK_MULTIPLIER_MIN), LOCK_MULTIPLIER_MAX)

    return multiplier * PRECISION // DECIMAL


def get_referrer_multiplier(tiers: Sequence["ReferrerTier"], amount_staked: int) -> int:
    """Multiplier of the highest tier whose threshold is at or below amount_staked."""
    if amount_staked == 0:
        return 0

    multiplier = 0
    for tier in tiers:
        if amount_staked < tier.amount:
            break
        multiplier = tier.multiplier

    return multiplier


def get_user_multiplier(claim_lock_start: int, claim_lock_end: int, has_referrer: bool) -> int:
    """Combined user multiplier: lock multiplier plus the referral bonus."""
    multiplier = get_lock_period_multiplier(claim_lock_start, claim_lock_end)
    if has_referrer:
        multiplier += USER_REFERRAL_BONUS
    return multiplier


def validate_referrer_tiers(tiers: Sequence["ReferrerTier"]) -> List[str]:
    """
    Check that tiers strictly increase in both amount and multiplier.

    Returns:
        List of revert reasons, empty if the tiers are valid
    """
    errors = []
    for previous, current in zip(tiers, tiers[1:]):
        if current.amount <= previous.amount:
            errors.append("DS: invalid referrer tiers (1)")
            break
        if current.multiplier <= previous.multiplier:
            errors.append("DS: invalid referrer tiers (2)")
            break
    return errors
