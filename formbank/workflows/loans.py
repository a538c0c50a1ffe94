"""Loan issuance and repayment workflows

Flow (borrow):
1. Validate principal, active loan and credit limit
2. Record the loan as active (compensation: delete it)
3. Transfer principal lender -> borrower

Flow (repay):
1. Apply stored credit balance via conditional debit (compensation: re-credit)
2. Transfer the remainder borrower -> lender, capped at what is owed
3. Record the payment on the loan
4. Credit any overpayment back to the balance
5. Recompute the credit limit
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from formbank.config import settings
from formbank.domain.exceptions import AccessDeniedError, StateConflict, StorageFailure, ValidationError
from formbank.domain.models import LimitUpdate, LoanIssued, RepaymentResult, TransferRequest
from formbank.domain.pricing import INTEREST_RATE, amount_owed_for
from formbank.domain.validation import parse_secret, require_positive_amount
from formbank.infrastructure.clients.wallet import TransferGateway
from formbank.infrastructure.database.models import Loan
from formbank.infrastructure.database.repositories import LedgerStore
from formbank.infrastructure.observability.metrics import loans_issued_counter, record_repayment
from formbank.workflows.credit_limit import recompute_credit_limit
from formbank.workflows.pipeline import Pipeline, Step

logger = logging.getLogger(__name__)


@dataclass
class BorrowContext:
    borrower_id: int
    principal: int
    amount_owed: int
    loan_id: Optional[int] = None


@dataclass
class RepaymentContext:
    borrower_id: int
    loan_id: int
    requested: int
    remaining: int
    secret: int
    reason: str
    credit_used: int = 0
    actual_repayment: int = 0
    transferred: int = 0
    overpayment: int = 0
    paid_off: bool = False
    limit_update: Optional[LimitUpdate] = None


class LoanService:
    """Orchestrates loans between the ledger store and the wallet rail"""

    def __init__(
        self,
        store: LedgerStore,
        gateway: TransferGateway,
        lender_id: int | None = None,
        lender_secret: int | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.lender_id = lender_id if lender_id is not None else settings.lender_user_id
        self.lender_secret = lender_secret if lender_secret is not None else settings.lender_pin

    # Reads

    def credit_summary(self, borrower_id: int) -> Dict[str, Any]:
        """Limit, stored balance, active loan and loan history for a borrower"""
        limit_row = self.store.credit.get_or_create_limit(borrower_id)
        balance_row = self.store.credit.get_or_create_balance(borrower_id)
        return {
            "borrower_id": borrower_id,
            "credit_limit": limit_row.current_limit,
            "credit_balance": balance_row.balance,
            "active_loan": self.store.loans.get_active_loan(borrower_id),
            "loan_history": self.store.loans.list_loans(borrower_id),
        }

    def credit_overview(self, viewer_id: int) -> List[Tuple[int, int, int]]:
        """(borrower_id, limit, balance) for every borrower; house identity only"""
        if viewer_id != self.lender_id:
            raise AccessDeniedError("Admin panel is only available to the lender account.")
        return self.store.credit.credit_overview()

    # Issuance

    async def borrow(self, borrower_id: int, principal: Any) -> LoanIssued:
        principal = require_positive_amount(principal, "loan amount")

        if self.store.loans.get_active_loan(borrower_id) is not None:
            raise StateConflict("You already have an active loan")

        limit_row = self.store.credit.get_or_create_limit(borrower_id)
        if principal > limit_row.current_limit:
            raise ValidationError(
                f"Loan amount exceeds your credit limit of {limit_row.current_limit} digipogs"
            )

        ctx = BorrowContext(borrower_id=borrower_id, principal=principal, amount_owed=amount_owed_for(principal))
        await Pipeline("borrow", self._borrow_steps()).run(ctx)

        loans_issued_counter.inc()
        logger.info(
            "Loan issued",
            extra={"loan_id": ctx.loan_id, "borrower_id": borrower_id, "principal": principal, "amount_owed": ctx.amount_owed},
        )
        return LoanIssued(loan_id=ctx.loan_id, principal=principal, amount_owed=ctx.amount_owed)

    def _borrow_steps(self) -> List[Step]:
        return [
            # Row first: its id is what the compensation deletes
            Step("record_loan", self._record_loan, compensate=self._delete_loan),
            Step("transfer_principal", self._transfer_principal, irreversible=True),
        ]

    async def _record_loan(self, ctx: BorrowContext) -> None:
        loan = self.store.loans.insert_loan(ctx.borrower_id, ctx.principal, float(INTEREST_RATE), ctx.amount_owed)
        ctx.loan_id = loan.id

    async def _delete_loan(self, ctx: BorrowContext) -> None:
        self.store.loans.delete_loan(ctx.loan_id)

    async def _transfer_principal(self, ctx: BorrowContext) -> None:
        await self.gateway.transfer(
            TransferRequest(
                from_id=self.lender_id,
                to_id=ctx.borrower_id,
                amount=ctx.principal,
                secret=self.lender_secret,
                reason=f"FormBank loan: {ctx.principal} digipogs",
            )
        )

    # Repayment

    async def repay(self, borrower_id: int, amount: Any, secret: Any) -> RepaymentResult:
        """Repay part (or more than all) of the active loan"""
        secret = parse_secret(secret)
        requested = require_positive_amount(amount, "repayment amount")
        loan = self._active_loan_with_balance(borrower_id)
        ctx = RepaymentContext(
            borrower_id=borrower_id,
            loan_id=loan.id,
            requested=requested,
            remaining=loan.amount_owed - loan.amount_paid,
            secret=secret,
            reason="FormBank loan repayment",
        )
        return await self._run_repayment(ctx)

    async def repay_full(self, borrower_id: int, secret: Any) -> RepaymentResult:
        """Repay exactly what is still owed"""
        secret = parse_secret(secret)
        loan = self._active_loan_with_balance(borrower_id)
        remaining = loan.amount_owed - loan.amount_paid
        ctx = RepaymentContext(
            borrower_id=borrower_id,
            loan_id=loan.id,
            requested=remaining,
            remaining=remaining,
            secret=secret,
            reason="FormBank loan full repayment",
        )
        return await self._run_repayment(ctx)

    def _active_loan_with_balance(self, borrower_id: int) -> Loan:
        loan = self.store.loans.get_active_loan(borrower_id)
        if loan is None:
            raise StateConflict("No active loan found")
        if loan.amount_owed - loan.amount_paid <= 0:
            raise StateConflict("Loan is already paid off")
        return loan

    async def _run_repayment(self, ctx: RepaymentContext) -> RepaymentResult:
        await Pipeline("repay", self._repay_steps()).run(ctx)

        limit = ctx.limit_update
        record_repayment(ctx.paid_off, limit.increments if limit else 0)
        logger.info(
            "Repayment processed",
            extra={
                "loan_id": ctx.loan_id,
                "borrower_id": ctx.borrower_id,
                "amount_applied": ctx.actual_repayment,
                "credit_used": ctx.credit_used,
                "transferred": ctx.transferred,
                "paid_off": ctx.paid_off,
            },
        )
        return RepaymentResult(
            loan_id=ctx.loan_id,
            amount_applied=ctx.actual_repayment,
            credit_used=ctx.credit_used,
            transferred=ctx.transferred,
            overpayment_credited=ctx.overpayment,
            paid_off=ctx.paid_off,
            limit_increased=bool(limit and limit.increased),
            new_limit=limit.new_limit if limit else None,
        )

    def _repay_steps(self) -> List[Step]:
        return [
            Step("apply_credit_balance", self._apply_credit_balance, compensate=self._restore_credit_balance),
            Step("transfer_repayment", self._transfer_repayment, irreversible=lambda ctx: ctx.transferred > 0),
            Step("record_payment", self._record_payment, irreversible=True),
            Step("credit_overpayment", self._credit_overpayment),
            Step("recompute_limit", self._recompute_limit),
        ]

    async def _apply_credit_balance(self, ctx: RepaymentContext) -> None:
        balance = self.store.credit.get_or_create_balance(ctx.borrower_id).balance or 0
        credit_used = min(balance, ctx.requested)
        # Lost a race for the same balance: fall back to a full transfer
        if credit_used > 0 and not self.store.credit.debit_balance(ctx.borrower_id, credit_used):
            credit_used = 0
        ctx.credit_used = credit_used
        ctx.actual_repayment = min(ctx.requested, ctx.remaining)

    async def _restore_credit_balance(self, ctx: RepaymentContext) -> None:
        if ctx.credit_used > 0:
            self.store.credit.credit_balance(ctx.borrower_id, ctx.credit_used)

    async def _transfer_repayment(self, ctx: RepaymentContext) -> None:
        # Money beyond what is owed is never pulled through the rail
        transfer_needed = max(0, ctx.actual_repayment - ctx.credit_used)
        if transfer_needed == 0:
            return
        await self.gateway.transfer(
            TransferRequest(
                from_id=ctx.borrower_id,
                to_id=self.lender_id,
                amount=transfer_needed,
                secret=ctx.secret,
                reason=f"{ctx.reason}: {transfer_needed} digipogs",
            )
        )
        ctx.transferred = transfer_needed

    async def _record_payment(self, ctx: RepaymentContext) -> None:
        loan = self.store.loans.apply_loan_payment(ctx.loan_id, ctx.actual_repayment)
        ctx.paid_off = loan.amount_paid >= loan.amount_owed

    async def _credit_overpayment(self, ctx: RepaymentContext) -> None:
        overpayment = ctx.requested - ctx.actual_repayment
        if overpayment > 0:
            self.store.credit.credit_balance(ctx.borrower_id, overpayment)
            ctx.overpayment = overpayment

    async def _recompute_limit(self, ctx: RepaymentContext) -> None:
        try:
            ctx.limit_update = recompute_credit_limit(self.store, ctx.borrower_id)
        except StorageFailure as e:
            # Payment already stands; the next repayment recomputes from scratch
            logger.error(
                f"Failed to update credit limit from repayments: {e}",
                extra={"borrower_id": ctx.borrower_id, "loan_id": ctx.loan_id},
            )
