"""
stakeledger/protocol/private_pools.py

Owner-driven membership of private pools.

Private pools have no token flow: the owner sets each member's target
deposit and the engine applies the difference as an implicit stake or
withdraw, with the same reconciliation and events as the public path.

Zero values mean "leave unchanged", not "reset":
- claim_lock_ends[i] == 0 keeps the member's current lock end (or now)
- referrers[i] == "" keeps the member's current referrer
"""

import logging
from typing import Sequence

from ..errors import AccessDenied, ValidationError
from .distribution import Distribution

logger = logging.getLogger("stakeledger.protocol.private_pools")


class PrivatePoolAdmin:
    """
    Batch stake/withdraw over a private pool.

    Usage:
        private_admin = PrivatePoolAdmin(engine)
        private_admin.manage_users_in_private_pool(
            owner, pool_id,
            users=["0xa", "0xb"],
            amounts=[10 ** 18, 4 * 10 ** 18],
            claim_lock_ends=[0, 0],
            referrers=["", ""],
        )
    """

    def __init__(self, distribution: Distribution):
        self.distribution = distribution

    def manage_users_in_private_pool(
        self,
        caller: str,
        pool_id: int,
        users: Sequence[str],
        amounts: Sequence[int],
        claim_lock_ends: Sequence[int],
        referrers: Sequence[str],
    ) -> None:
        engine = self.distribution
        with engine.transaction("manage_users_in_private_pool"):
            engine.registry.check_owner(caller)
            pool = engine.registry.require_pool(pool_id)
            if pool.is_public:
                raise AccessDenied("DS: pool is public")
            if not (len(users) == len(amounts) == len(claim_lock_ends) == len(referrers)):
                raise ValidationError("DS: invalid length")

            now = engine.now()
            pool_rate = engine.accumulator.update(pool_id, now)

            for user, amount, claim_lock_end, referrer in zip(users, amounts, claim_lock_ends, referrers):
                position = engine.ledger.get_user(pool_id, user)
                deposited = position.deposited if position else 0

                if amount >= deposited:
                    engine._stake(user, pool_id, amount - deposited, pool_rate, claim_lock_end, referrer, now)
                else:
                    engine._withdraw(user, pool_id, deposited - amount, pool_rate, now)

            logger.info(f"Private pool {pool_id}: managed {len(users)} users")
