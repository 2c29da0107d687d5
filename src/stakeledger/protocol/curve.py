"""
stakeledger/protocol/curve.py

Linear distribution with interval decrease.

A pool emits `initial_reward` during its first `decrease_interval` after
`payout_start`, then `rewardDecrease` less in every following interval until
the per-interval reward would drop to zero. Emission inside an interval is
spread evenly over time. The integral over [start, end) is computed in
closed form so spans of tens of thousands of intervals cost the same as one.

Rounding order is part of the ledger format: every division truncates and
multiplication always happens first.
"""

MAX_END_TIME = 2 ** 128 - 1


def _divide_ceil(a: int, b: int) -> int:
    return (a + b - 1) // b


def get_max_end_time(
    payout_start: int,
    interval: int,
    initial_reward: int,
    reward_decrease: int,
) -> int:
    """Return the timestamp after which the pool emits nothing."""
    if reward_decrease == 0:
        return MAX_END_TIME
    max_intervals = _divide_ceil(initial_reward, reward_decrease)
    return payout_start + max_intervals * interval


def calculate_period_reward(
    initial_reward: int,
    reward_decrease: int,
    payout_start: int,
    interval: int,
    start_time: int,
    end_time: int,
) -> int:
    """
    Calculate the reward emitted in [start_time, end_time).

    Args:
        initial_reward: Reward of the first interval
        reward_decrease: Amount the reward drops by every interval (0 = flat)
        payout_start: Timestamp emission begins
        interval: Length of one interval in seconds (0 = no emission)
        start_time: Period start
        end_time: Period end

    Returns:
        Emitted reward, never negative
    """
    if interval == 0:
        return 0

    if start_time < payout_start:
        start_time = payout_start

    max_end_time = get_max_end_time(payout_start, interval, initial_reward, reward_decrease)
    if end_time > max_end_time:
        end_time = max_end_time

    if start_time >= end_time:
        return 0

    time_passed_before = start_time - payout_start

    # Both ends inside one interval
    if interval * (time_passed_before // interval + 1) >= end_time - payout_start:
        decrease_amount = (time_passed_before // interval) * reward_decrease
        if decrease_amount >= initial_reward:
            return 0
        return (initial_reward - decrease_amount) * (end_time - start_time) // interval

    first = _calculate_part_period_reward(
        initial_reward, reward_decrease, payout_start, interval, start_time, True
    )
    middle = _calculate_full_period_reward(
        initial_reward, reward_decrease, payout_start, interval, start_time, end_time
    )
    last = _calculate_part_period_reward(
        initial_reward, reward_decrease, payout_start, interval, end_time, False
    )

    return first + middle + last


def _calculate_part_period_reward(
    initial_reward: int,
    reward_decrease: int,
    payout_start: int,
    interval: int,
    point: int,
    to_end: bool,
) -> int:
    """Reward of the partial interval after (to_end) or before `point`."""
    intervals_passed = (point - payout_start) // interval
    decrease_amount = intervals_passed * reward_decrease
    if decrease_amount >= initial_reward:
        return 0

    interval_full_reward = initial_reward - decrease_amount

    if to_end:
        interval_part = interval * (intervals_passed + 1) + payout_start - point
    else:
        interval_part = point - interval * intervals_passed - payout_start

    # `point` sits on a boundary, the full interval is counted by the middle part
    if interval_part == interval:
        return 0 if to_end else interval_full_reward

    return interval_full_reward * interval_part // interval


def _calculate_full_period_reward(
    initial_reward: int,
    reward_decrease: int,
    payout_start: int,
    interval: int,
    start_time: int,
    end_time: int,
) -> int:
    """Arithmetic series over the whole intervals between start and end."""
    intervals_passed_before = _divide_ceil(start_time - payout_start, interval)
    decrease_amount = intervals_passed_before * reward_decrease
    if decrease_amount >= initial_reward:
        return 0

    first_interval_reward = initial_reward - decrease_amount

    full_intervals = (end_time - payout_start - intervals_passed_before * interval) // interval
    if full_intervals == 0:
        return 0

    return (
        first_interval_reward * full_intervals
        - reward_decrease * (full_intervals * (full_intervals - 1)) // 2
    )
