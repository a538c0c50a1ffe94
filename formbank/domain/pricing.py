"""Interest and fee arithmetic for loans and checks"""

import math
from decimal import Decimal

INTEREST_RATE = Decimal("0.20")
CHECK_FEE_RATE = Decimal("0.05")
CHECK_MIN_FEE = 5


def amount_owed_for(principal: int) -> int:
    """
    Total owed on a loan, fixed at issuance.

    Decimal math keeps exact results: 100 -> 120 (float would give 121).
    """
    return math.ceil(Decimal(principal) * (1 + INTEREST_RATE))


def check_fee_for(amount: int) -> int:
    """Fee charged on a check: 5% rounded up, never below the minimum"""
    return max(math.ceil(Decimal(amount) * CHECK_FEE_RATE), CHECK_MIN_FEE)
