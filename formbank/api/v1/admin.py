"""GET /v1/admin/credit - Credit limits and balances of every borrower"""

from fastapi import APIRouter, Depends, Request

from formbank.api.dependencies import get_current_user_id, get_loan_service, get_request_id
from formbank.api.errors import http_error_for
from formbank.api.v1.schemas import CreditOverviewItem, CreditOverviewResponse
from formbank.workflows.loans import LoanService

router = APIRouter()


@router.get("/admin/credit", response_model=CreditOverviewResponse)
def get_credit_overview(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    loans: LoanService = Depends(get_loan_service),
):
    """Only available to the house (lender) identity"""
    try:
        rows = loans.credit_overview(user_id)
    except Exception as e:
        raise http_error_for(e, get_request_id(request))

    return CreditOverviewResponse(
        users=[
            CreditOverviewItem(user_id=borrower_id, current_limit=limit, credit_balance=balance)
            for borrower_id, limit, balance in rows
        ]
    )
