"""Credit endpoints - summary, borrow, repay"""

from fastapi import APIRouter, Depends, Request

from formbank.api.dependencies import get_current_user_id, get_loan_service, get_request_id
from formbank.api.errors import http_error_for
from formbank.api.v1.schemas import (
    BorrowRequest,
    BorrowResponse,
    CreditSummaryResponse,
    FullRepayRequest,
    LoanSchema,
    RepayRequest,
    RepayResponse,
)
from formbank.domain.models import RepaymentResult
from formbank.workflows.loans import LoanService

router = APIRouter()


@router.get("/credit", response_model=CreditSummaryResponse)
def get_credit_summary(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    loans: LoanService = Depends(get_loan_service),
):
    """Current limit, stored credit balance, active loan and loan history"""
    try:
        summary = loans.credit_summary(user_id)
    except Exception as e:
        raise http_error_for(e, get_request_id(request))

    active = summary["active_loan"]
    return CreditSummaryResponse(
        borrower_id=summary["borrower_id"],
        credit_limit=summary["credit_limit"],
        credit_balance=summary["credit_balance"],
        active_loan=LoanSchema.model_validate(active) if active else None,
        loan_history=[LoanSchema.model_validate(loan) for loan in summary["loan_history"]],
    )


@router.post("/credit/borrow", response_model=BorrowResponse)
async def borrow(
    request_body: BorrowRequest,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    loans: LoanService = Depends(get_loan_service),
):
    """
    Take a loan up to the current credit limit.

    Flow:
    1. Reject if a loan is already active or the limit is exceeded
    2. Record the loan, then transfer the principal from the lender
    3. Delete the loan record again if the transfer fails
    """
    try:
        issued = await loans.borrow(user_id, request_body.amount)
    except Exception as e:
        raise http_error_for(e, get_request_id(request))

    return BorrowResponse(
        loan_id=issued.loan_id,
        principal=issued.principal,
        amount_owed=issued.amount_owed,
        message=(
            f"Loan of {issued.principal} digipogs issued successfully. "
            f"You owe {issued.amount_owed} digipogs."
        ),
    )


@router.post("/credit/repay", response_model=RepayResponse)
async def repay(
    request_body: RepayRequest,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    loans: LoanService = Depends(get_loan_service),
):
    """Repay part of the active loan; anything beyond what is owed becomes credit balance"""
    try:
        result = await loans.repay(user_id, request_body.amount, request_body.pin)
    except Exception as e:
        raise http_error_for(e, get_request_id(request))

    message = f"Repayment of {result.amount_applied} digipogs processed"
    if result.overpayment_credited > 0:
        message += f" ({result.overpayment_credited} digipogs credited to your account)"
    return _repay_response(result, message + ".")


@router.post("/credit/repay/full", response_model=RepayResponse)
async def repay_full(
    request_body: FullRepayRequest,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    loans: LoanService = Depends(get_loan_service),
):
    """Repay everything still owed on the active loan"""
    try:
        result = await loans.repay_full(user_id, request_body.pin)
    except Exception as e:
        raise http_error_for(e, get_request_id(request))

    message = f"Full repayment of {result.amount_applied} digipogs processed"
    if result.credit_used > 0:
        message += f" ({result.credit_used} from credit balance, {result.transferred} transferred)"
    return _repay_response(result, message + ".")


def _repay_response(result: RepaymentResult, message: str) -> RepayResponse:
    if result.paid_off:
        message += " Loan paid off!"
    if result.limit_increased:
        message += " Your credit limit has increased."
    return RepayResponse(
        loan_id=result.loan_id,
        amount_applied=result.amount_applied,
        credit_used=result.credit_used,
        transferred=result.transferred,
        overpayment_credited=result.overpayment_credited,
        paid_off=result.paid_off,
        limit_increased=result.limit_increased,
        new_limit=result.new_limit,
        message=message,
    )
