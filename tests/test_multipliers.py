"""
stakeledger/tests/test_multipliers.py

Tests for fixed-point exp/tanh and the lock, referrer and user multipliers.
"""

import pytest

from stakeledger.config import (
    PRECISION,
    DECIMAL,
    USER_REFERRAL_BONUS,
    LOCK_PERIOD_START,
    LOCK_PERIOD_END,
)
from stakeledger.errors import InvalidExponent
from stakeledger.protocol.logexp import exp, tanh
from stakeledger.protocol.multipliers import (
    get_lock_period_multiplier,
    get_referrer_multiplier,
    get_user_multiplier,
    validate_referrer_tiers,
)
from stakeledger.protocol.registry import ReferrerTier

from conftest import DAY, wei


# ============================================================================
# LOGEXP
# ============================================================================

class TestExp:
    """Test the 18-decimal exponential."""

    def test_exp_zero(self):
        """Test e^0 is exactly one."""
        assert exp(0) == DECIMAL

    def test_exp_one(self):
        """Test e^1 to 18 decimals."""
        assert exp(DECIMAL) == 2718281828459045235

    def test_exp_negative(self):
        """Test e^-x is the reciprocal of e^x."""
        assert exp(-DECIMAL) == DECIMAL * DECIMAL // exp(DECIMAL)

    def test_exp_large_argument(self):
        """Test the reduction path for large exponents."""
        result = exp(100 * DECIMAL)
        assert result == pytest.approx(2.6881171418161356e61, rel=1e-12)

    def test_exp_out_of_range(self):
        """Test exponents outside the supported range raise."""
        with pytest.raises(InvalidExponent):
            exp(130 * DECIMAL + 1)
        with pytest.raises(InvalidExponent):
            exp(-41 * DECIMAL - 1)

    def test_invalid_exponent_is_value_error(self):
        """Test InvalidExponent can be caught as ValueError."""
        with pytest.raises(ValueError):
            exp(200 * DECIMAL)


class TestTanh:
    """Test the 18-decimal hyperbolic tangent."""

    def test_tanh_zero(self):
        assert tanh(0) == 0

    def test_tanh_one(self):
        assert tanh(DECIMAL) == pytest.approx(0.7615941559557649e18, rel=1e-15)

    def test_tanh_saturates(self):
        """Test tanh approaches one for large inputs."""
        assert DECIMAL - tanh(40 * DECIMAL) < 10


# ============================================================================
# LOCK MULTIPLIER
# ============================================================================

class TestLockPeriodMultiplier:
    """Test the tanh-shaped claim lock multiplier."""

    def test_known_value(self):
        """Test a 300 day lock starting 100 days into the schedule."""
        result = get_lock_period_multiplier(
            LOCK_PERIOD_START + 100 * DAY, LOCK_PERIOD_START + 400 * DAY
        )
        assert result == 17449468839567396430000000

    def test_short_lock_is_minimum(self):
        """Test a two second lock rounds to exactly 1x."""
        assert get_lock_period_multiplier(LOCK_PERIOD_START, LOCK_PERIOD_START + 2) == PRECISION

    def test_whole_schedule_is_capped(self):
        """Test a lock over the whole schedule caps at 10.7x."""
        assert get_lock_period_multiplier(0, LOCK_PERIOD_END + 1) == 107 * PRECISION // 10

    def test_reversed_window(self):
        """Test start after end gives 1x."""
        assert get_lock_period_multiplier(10, 5) == PRECISION

    def test_window_before_schedule(self):
        """Test a lock entirely before the schedule gives 1x."""
        assert get_lock_period_multiplier(0, LOCK_PERIOD_START - 1) == PRECISION

    def test_end_clamped(self):
        """Test locks ending after the schedule saturate."""
        start = LOCK_PERIOD_END - 100 * DAY
        assert get_lock_period_multiplier(start, LOCK_PERIOD_END) == \
            get_lock_period_multiplier(start, LOCK_PERIOD_END + 1000 * DAY)

    def test_longer_lock_never_smaller(self):
        """Test the multiplier grows with the lock end."""
        start = LOCK_PERIOD_START + 10 * DAY
        values = [
            get_lock_period_multiplier(start, start + days * DAY)
            for days in (30, 90, 365, 3 * 365)
        ]
        assert values == sorted(values)
        assert values[-1] > values[0]

    def test_later_start_earns_less(self):
        """Test the same lock length is worth less later in the schedule."""
        early = get_lock_period_multiplier(LOCK_PERIOD_START, LOCK_PERIOD_START + 365 * DAY)
        late_start = LOCK_PERIOD_START + 5 * 365 * DAY
        late = get_lock_period_multiplier(late_start, late_start + 365 * DAY)
        assert early > late


# ============================================================================
# REFERRER MULTIPLIER
# ============================================================================

@pytest.fixture
def tiers():
    return [
        ReferrerTier(amount=0, multiplier=PRECISION // 100),
        ReferrerTier(amount=wei(10), multiplier=PRECISION // 40),
        ReferrerTier(amount=wei(100), multiplier=PRECISION // 20),
    ]


class TestReferrerMultiplier:
    """Test tier lookup."""

    def test_zero_stake(self, tiers):
        """Test a referrer with nothing staked gets nothing."""
        assert get_referrer_multiplier(tiers, 0) == 0

    def test_first_tier(self, tiers):
        assert get_referrer_multiplier(tiers, wei(1)) == PRECISION // 100

    def test_threshold_is_inclusive(self, tiers):
        """Test reaching a tier's amount exactly unlocks it."""
        assert get_referrer_multiplier(tiers, wei(10)) == PRECISION // 40
        assert get_referrer_multiplier(tiers, wei(10) - 1) == PRECISION // 100

    def test_highest_tier(self, tiers):
        assert get_referrer_multiplier(tiers, wei(1000)) == PRECISION // 20

    def test_no_tiers(self):
        assert get_referrer_multiplier([], wei(1)) == 0

    def test_below_first_tier(self):
        """Test stake under the lowest threshold gets nothing."""
        tiers = [ReferrerTier(amount=wei(5), multiplier=PRECISION // 100)]
        assert get_referrer_multiplier(tiers, wei(1)) == 0


class TestValidateReferrerTiers:
    """Test tier ordering rules."""

    def test_valid(self, tiers):
        assert validate_referrer_tiers(tiers) == []

    def test_empty(self):
        assert validate_referrer_tiers([]) == []

    def test_amount_not_increasing(self):
        tiers = [
            ReferrerTier(amount=wei(10), multiplier=1),
            ReferrerTier(amount=wei(10), multiplier=2),
        ]
        assert validate_referrer_tiers(tiers) == ["DS: invalid referrer tiers (1)"]

    def test_multiplier_not_increasing(self):
        tiers = [
            ReferrerTier(amount=wei(1), multiplier=2),
            ReferrerTier(amount=wei(10), multiplier=2),
        ]
        assert validate_referrer_tiers(tiers) == ["DS: invalid referrer tiers (2)"]


# ============================================================================
# USER MULTIPLIER
# ============================================================================

class TestUserMultiplier:
    """Test lock and referral bonuses combine additively."""

    def test_no_lock_no_referrer(self):
        assert get_user_multiplier(0, 0, False) == PRECISION

    def test_referral_bonus(self):
        assert get_user_multiplier(0, 0, True) == PRECISION + USER_REFERRAL_BONUS
        assert USER_REFERRAL_BONUS == PRECISION // 100

    def test_lock_plus_referral(self):
        start = LOCK_PERIOD_START + 100 * DAY
        end = LOCK_PERIOD_START + 400 * DAY
        lock = get_lock_period_multiplier(start, end)
        assert get_user_multiplier(start, end, True) == lock + USER_REFERRAL_BONUS
