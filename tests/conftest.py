"""
stakeledger/tests/conftest.py

Shared fixtures: a manual clock, in-memory tokens and a wired engine.
"""

from decimal import Decimal

import pytest

from stakeledger.config import ENGINE_ACCOUNT
from stakeledger.memory import SharesToken, CappedRewardMinter, RecordingBridge
from stakeledger.protocol.registry import Pool, PoolRegistry
from stakeledger.protocol.distribution import Distribution
from stakeledger.protocol.admin import DistributionAdmin
from stakeledger.protocol.private_pools import PrivatePoolAdmin


HOUR = 3600
DAY = 24 * HOUR

OWNER = "0xowner"
ALICE = "0xalice"
BOB = "0xbob"
REFERRER = "0xreferrer"

UNLIMITED = 2 ** 255


def wei(value, decimals: int = 18) -> int:
    """Convert a human amount like "0.1" to base units."""
    return int(Decimal(str(value)) * 10 ** decimals)


class ManualClock:
    """Clock the tests move by hand."""

    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def set(self, now: int) -> None:
        self.now = now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def create_test_pool(**overrides) -> Pool:
    """Daily-decay pool used throughout the suite."""
    params = dict(
        payout_start=DAY,
        decrease_interval=DAY,
        withdraw_lock_period=12 * HOUR,
        claim_lock_period=12 * HOUR,
        withdraw_lock_period_after_stake=DAY,
        initial_reward=wei(100),
        reward_decrease=wei(2),
        minimal_stake=wei("0.1"),
        is_public=True,
    )
    params.update(overrides)
    return Pool(**params)


def fund(token: SharesToken, user: str, amount: int = wei(1000)) -> None:
    token.mint(user, amount)
    token.approve(user, ENGINE_ACCOUNT, UNLIMITED)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def token():
    token = SharesToken()
    for user in (ALICE, BOB):
        fund(token, user)
    return token


@pytest.fixture
def minter():
    return CappedRewardMinter()


@pytest.fixture
def bridge():
    return RecordingBridge()


@pytest.fixture
def engine(token, minter, clock):
    return Distribution(PoolRegistry(owner=OWNER), token, minter, clock=clock)


@pytest.fixture
def admin(engine, bridge):
    return DistributionAdmin(engine, bridge=bridge)


@pytest.fixture
def private_admin(engine):
    return PrivatePoolAdmin(engine)


@pytest.fixture
def pool_id(admin):
    return admin.create_pool(OWNER, create_test_pool())
