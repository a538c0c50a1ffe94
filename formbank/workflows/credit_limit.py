"""Recompute a borrower's credit limit from lifetime repayments"""

from formbank.domain.credit_policy import apply_increases
from formbank.domain.models import LimitUpdate
from formbank.infrastructure.database.repositories import LedgerStore


def recompute_credit_limit(store: LedgerStore, borrower_id: int) -> LimitUpdate:
    """
    Apply every limit increase the borrower's repayment total has earned.

    Idempotent: with no new repayment since the last call, nothing is written
    and the limit is returned unchanged.
    """
    limit_row = store.credit.get_or_create_limit(borrower_id)
    total_repaid = store.loans.total_repaid(borrower_id)

    new_limit, new_count, increments = apply_increases(
        limit_row.current_limit,
        limit_row.increase_count or 0,
        total_repaid,
    )
    if increments == 0:
        return LimitUpdate(increased=False, increments=0, new_limit=new_limit)

    store.credit.set_limit(borrower_id, new_limit, new_count)
    return LimitUpdate(increased=True, increments=increments, new_limit=new_limit)
