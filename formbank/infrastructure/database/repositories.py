"""Data access layer for the credit and check ledger

Every write commits on its own: each method is a single-record atomic
operation, so a later gateway failure never rolls back an earlier write.
Compensation is the caller's job.
"""

import functools
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from formbank.domain.credit_policy import BASE_CREDIT_LIMIT
from formbank.domain.exceptions import StateConflict, StorageFailure
from formbank.domain.models import CheckStatus, LegStatus, LoanStatus
from formbank.infrastructure.database.models import Check, CreditBalance, CreditLimit, Loan, ScheduledLeg

logger = logging.getLogger(__name__)


def _atomic(method):
    """Roll back and surface SQLAlchemy errors as StorageFailure"""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Ledger store error in {method.__name__}: {e}")
            raise StorageFailure(f"{method.__name__} failed") from e

    return wrapper


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditRepository:
    """Repository for credit limits and credit balances"""

    def __init__(self, db: Session):
        self.db = db

    @_atomic
    def get_or_create_limit(self, borrower_id: int) -> CreditLimit:
        """Fetch limit row, lazily creating it at the base limit"""
        row = self.db.get(CreditLimit, borrower_id)
        if row is not None:
            return row
        try:
            row = CreditLimit(borrower_id=borrower_id, current_limit=BASE_CREDIT_LIMIT, increase_count=0)
            self.db.add(row)
            self.db.commit()
            return row
        except IntegrityError:
            # Another request created it first
            self.db.rollback()
            return self.db.get(CreditLimit, borrower_id)

    @_atomic
    def set_limit(self, borrower_id: int, new_limit: int, increase_count: int) -> None:
        """Persist limit and increase count in a single write"""
        self.db.execute(
            update(CreditLimit)
            .where(CreditLimit.borrower_id == borrower_id)
            .values(current_limit=new_limit, increase_count=increase_count)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    @_atomic
    def get_or_create_balance(self, borrower_id: int) -> CreditBalance:
        """Fetch balance row, lazily creating it at zero"""
        row = self.db.get(CreditBalance, borrower_id)
        if row is not None:
            return row
        try:
            row = CreditBalance(borrower_id=borrower_id, balance=0)
            self.db.add(row)
            self.db.commit()
            return row
        except IntegrityError:
            self.db.rollback()
            return self.db.get(CreditBalance, borrower_id)

    def credit_balance(self, borrower_id: int, amount: int) -> None:
        """Additive credit; always succeeds for a non-negative amount"""
        self.get_or_create_balance(borrower_id)
        self._add_to_balance(borrower_id, amount)

    @_atomic
    def _add_to_balance(self, borrower_id: int, amount: int) -> None:
        self.db.execute(
            update(CreditBalance)
            .where(CreditBalance.borrower_id == borrower_id)
            .values(balance=CreditBalance.balance + amount)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    @_atomic
    def debit_balance(self, borrower_id: int, amount: int) -> bool:
        """
        Conditional debit: subtract only if the balance covers the amount.

        Compare-and-swap on the balance row; concurrent debits serialize on it
        and the loser gets False with the balance untouched.
        """
        result = self.db.execute(
            update(CreditBalance)
            .where(CreditBalance.borrower_id == borrower_id, CreditBalance.balance >= amount)
            .values(balance=CreditBalance.balance - amount)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    @_atomic
    def credit_overview(self) -> List[Tuple[int, int, int]]:
        """(borrower_id, current_limit, balance) for every known borrower"""
        rows = self.db.execute(
            select(
                CreditLimit.borrower_id,
                CreditLimit.current_limit,
                func.coalesce(CreditBalance.balance, 0),
            )
            .outerjoin(CreditBalance, CreditBalance.borrower_id == CreditLimit.borrower_id)
            .order_by(CreditLimit.borrower_id.asc())
        ).all()
        return [tuple(r) for r in rows]


class LoanRepository:
    """Repository for loans"""

    def __init__(self, db: Session):
        self.db = db

    @_atomic
    def get_active_loan(self, borrower_id: int) -> Optional[Loan]:
        return (
            self.db.query(Loan)
            .filter(Loan.borrower_id == borrower_id, Loan.status == LoanStatus.ACTIVE)
            .first()
        )

    @_atomic
    def get_loan(self, loan_id: int) -> Optional[Loan]:
        return self.db.get(Loan, loan_id)

    @_atomic
    def list_loans(self, borrower_id: int) -> List[Loan]:
        """Loan history, newest first"""
        return (
            self.db.query(Loan)
            .filter(Loan.borrower_id == borrower_id)
            .order_by(Loan.created_at.desc(), Loan.id.desc())
            .all()
        )

    @_atomic
    def insert_loan(self, borrower_id: int, principal: int, interest_rate: float, amount_owed: int) -> Loan:
        """Insert an active loan; a second active loan for the borrower is rejected"""
        loan = Loan(
            borrower_id=borrower_id,
            principal=principal,
            interest_rate=interest_rate,
            amount_owed=amount_owed,
            amount_paid=0,
            status=LoanStatus.ACTIVE,
        )
        self.db.add(loan)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise StateConflict("You already have an active loan") from e
        return loan

    @_atomic
    def delete_loan(self, loan_id: int) -> None:
        self.db.execute(delete(Loan).where(Loan.id == loan_id).execution_options(synchronize_session=False))
        self.db.commit()

    @_atomic
    def apply_loan_payment(self, loan_id: int, amount: int) -> Loan:
        """
        Add a payment and recompute status/paid_at in the same statement.

        No compare-and-swap against the amount the caller read earlier.
        """
        new_paid = Loan.amount_paid + amount
        self.db.execute(
            update(Loan)
            .where(Loan.id == loan_id)
            .values(
                amount_paid=new_paid,
                status=case((new_paid >= Loan.amount_owed, LoanStatus.PAID), else_=LoanStatus.ACTIVE),
                paid_at=case((new_paid >= Loan.amount_owed, _utcnow()), else_=None),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        loan = self.db.get(Loan, loan_id)
        self.db.refresh(loan)
        return loan

    @_atomic
    def total_repaid(self, borrower_id: int) -> int:
        """Lifetime repayments across every loan of the borrower"""
        total = self.db.execute(
            select(func.coalesce(func.sum(Loan.amount_paid), 0)).where(Loan.borrower_id == borrower_id)
        ).scalar_one()
        return int(total)


class CheckRepository:
    """Repository for checks"""

    def __init__(self, db: Session):
        self.db = db

    @_atomic
    def insert_check(
        self,
        sender_id: int,
        receiver_id: Optional[int],
        amount: int,
        fee: int,
        status: str,
        memo: str = "",
        redemption_secret: Optional[int] = None,
    ) -> Check:
        check = Check(
            sender_id=sender_id,
            receiver_id=receiver_id,
            amount=amount,
            fee=fee,
            status=status,
            memo=memo or None,
            redemption_secret=str(redemption_secret) if redemption_secret is not None else None,
        )
        self.db.add(check)
        self.db.commit()
        return check

    @_atomic
    def get_check(self, check_id: int) -> Optional[Check]:
        check = self.db.get(Check, check_id)
        if check is not None:
            self.db.refresh(check)
        return check

    @_atomic
    def list_checks_for_user(self, user_id: int) -> List[Check]:
        """Checks the user sent, plus completed checks they received; newest first"""
        return (
            self.db.query(Check)
            .filter(
                (Check.sender_id == user_id)
                | ((Check.receiver_id == user_id) & (Check.status == CheckStatus.COMPLETED))
            )
            .order_by(Check.created_at.desc(), Check.id.desc())
            .all()
        )

    @_atomic
    def claim_check(self, check_id: int, receiver_id: int) -> bool:
        """
        Conditional claim: set the receiver only if none is set yet.

        Of any number of concurrent claims on one check, exactly one gets True.
        """
        result = self.db.execute(
            update(Check)
            .where(Check.id == check_id, Check.receiver_id.is_(None))
            .values(receiver_id=receiver_id)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    @_atomic
    def set_check_status(self, check_id: int, status: str) -> None:
        self.db.execute(
            update(Check).where(Check.id == check_id).values(status=status).execution_options(synchronize_session=False)
        )
        self.db.commit()

    @_atomic
    def get_redemption_secret(self, check_id: int) -> Optional[str]:
        return self.db.execute(select(Check.redemption_secret).where(Check.id == check_id)).scalar_one_or_none()

    @_atomic
    def clear_redemption_secret(self, check_id: int) -> None:
        """Idempotent; safe on an already-cleared check"""
        self.db.execute(
            update(Check)
            .where(Check.id == check_id)
            .values(redemption_secret=None)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()


class ScheduledLegRepository:
    """Repository for durable targeted-check principal legs"""

    def __init__(self, db: Session):
        self.db = db

    @_atomic
    def insert_leg(self, check_id: int, from_id: int, to_id: int, amount: int, reason: str, due_at: datetime) -> ScheduledLeg:
        leg = ScheduledLeg(
            check_id=check_id,
            from_id=from_id,
            to_id=to_id,
            amount=amount,
            reason=reason,
            due_at=due_at,
            status=LegStatus.PENDING,
        )
        self.db.add(leg)
        self.db.commit()
        return leg

    @_atomic
    def mark_leg(self, leg_id: int, status: str, last_error: Optional[str] = None) -> None:
        self.db.execute(
            update(ScheduledLeg)
            .where(ScheduledLeg.id == leg_id)
            .values(status=status, last_error=last_error, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    @_atomic
    def claim_leg(self, leg_id: int) -> bool:
        """
        Conditional start: move a leg from pending to in_flight.

        Of the writer still waiting out the delay and any worker resuming legs
        at startup, only the caller that gets True may send the transfer.
        """
        result = self.db.execute(
            update(ScheduledLeg)
            .where(ScheduledLeg.id == leg_id, ScheduledLeg.status == LegStatus.PENDING)
            .values(status=LegStatus.IN_FLIGHT, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount > 0

    @_atomic
    def list_legs(self, status: str) -> List[ScheduledLeg]:
        return (
            self.db.query(ScheduledLeg)
            .filter(ScheduledLeg.status == status)
            .order_by(ScheduledLeg.due_at.asc(), ScheduledLeg.id.asc())
            .all()
        )


class LedgerStore:
    """Single entry point to every ledger repository sharing one session"""

    def __init__(self, db: Session):
        self.db = db
        self.credit = CreditRepository(db)
        self.loans = LoanRepository(db)
        self.checks = CheckRepository(db)
        self.legs = ScheduledLegRepository(db)
