"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# PINs arrive as numbers or numeric strings; the workflows normalize them
Pin = Union[int, str]


class BorrowRequest(BaseModel):
    """Request body for POST /v1/credit/borrow"""

    amount: int = Field(..., gt=0, description="Principal to borrow in digipogs")


class RepayRequest(BaseModel):
    """Request body for POST /v1/credit/repay"""

    amount: int = Field(..., gt=0, description="Amount to repay in digipogs")
    pin: Pin = Field(..., description="Borrower's wallet PIN")


class FullRepayRequest(BaseModel):
    """Request body for POST /v1/credit/repay/full"""

    pin: Pin = Field(..., description="Borrower's wallet PIN")


class LoanSchema(BaseModel):
    """Loan as shown to its borrower"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    principal: int
    interest_rate: float
    amount_owed: int
    amount_paid: int
    status: str
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class CreditSummaryResponse(BaseModel):
    """Response for GET /v1/credit"""

    borrower_id: int
    credit_limit: int
    credit_balance: int
    active_loan: Optional[LoanSchema] = None
    loan_history: List[LoanSchema]


class BorrowResponse(BaseModel):
    """Response for POST /v1/credit/borrow"""

    success: bool = True
    loan_id: int
    principal: int
    amount_owed: int
    message: str


class RepayResponse(BaseModel):
    """Response for POST /v1/credit/repay and /v1/credit/repay/full"""

    success: bool = True
    loan_id: int
    amount_applied: int
    credit_used: int
    transferred: int
    overpayment_credited: int
    paid_off: bool
    limit_increased: bool
    new_limit: Optional[int] = None
    message: str


class WriteCheckRequest(BaseModel):
    """Request body for POST /v1/checks/write"""

    receiver_id: Optional[int] = Field(None, description="Receiver's user ID; omit for a blank check")
    amount: int = Field(..., gt=0)
    pin: Pin
    memo: str = ""


class WriteCheckResponse(BaseModel):
    """Response for POST /v1/checks/write"""

    success: bool = True
    check_id: int
    status: str
    fee: int
    link: str


class CheckSchema(BaseModel):
    """Check without its redemption secret"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_id: int
    receiver_id: Optional[int] = None
    amount: int
    fee: int
    status: str
    memo: Optional[str] = None
    created_at: Optional[datetime] = None


class CheckListResponse(BaseModel):
    """Response for GET /v1/checks"""

    user_id: int
    checks: List[CheckSchema]


class CheckDetailResponse(BaseModel):
    """Response for GET /v1/checks/{check_id}"""

    check: CheckSchema
    is_sender: bool
    link: str
    redeemed_now: bool = False
    redemption_success: Optional[bool] = None
    redemption_error: Optional[str] = None
    redemption_locked: bool = False
    suggestion: Optional[str] = None


class CreditOverviewItem(BaseModel):
    user_id: int
    current_limit: int
    credit_balance: int


class CreditOverviewResponse(BaseModel):
    """Response for GET /v1/admin/credit"""

    users: List[CreditOverviewItem]
