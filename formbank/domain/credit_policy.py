"""Credit limit policy - limits grow with lifetime repayment history"""

from typing import Tuple

BASE_CREDIT_LIMIT = 250
LIMIT_STEP = 250


def threshold(i: int) -> int:
    """
    Lifetime repayment needed for the i-th limit increase (1-based).

    Triangular steps of 250: 250, 750, 1500, 2500, ...
    """
    return LIMIT_STEP * (i * (i + 1) // 2)


def count_increases(total_repaid: int, increase_count: int) -> int:
    """Number of new increases earned beyond the ones already applied"""
    increments = 0
    while total_repaid >= threshold(increase_count + increments + 1):
        increments += 1
    return increments


def apply_increases(current_limit: int, increase_count: int, total_repaid: int) -> Tuple[int, int, int]:
    """
    Returns: (new_limit, new_increase_count, increments)

    Example:
        limit 250, count 0, total 1000 -> crosses 250 and 750 (not 1500)
        -> (750, 2, 2)
    """
    increments = count_increases(total_repaid, increase_count)
    return current_limit + increments * LIMIT_STEP, increase_count + increments, increments
