"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from typing import Optional


class LoanStatus:
    ACTIVE = "active"
    PAID = "paid"


class CheckStatus:
    UNCASHED = "uncashed"
    COMPLETED = "completed"
    FAILED = "failed"


class LegStatus:
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED = "failed"
    NEEDS_RECONCILIATION = "needs_reconciliation"


@dataclass
class TransferRequest:
    """Single digipog transfer sent to the wallet rail"""

    from_id: int
    to_id: int
    amount: int
    secret: int
    reason: str
    pool: bool = False
    # Correlation only; the rail does not deduplicate on it
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class TransferReceipt:
    """Acknowledgment of a successful transfer"""

    request_id: str
    message: str = ""


@dataclass
class LimitUpdate:
    """Outcome of a credit limit recomputation"""

    increased: bool
    increments: int
    new_limit: int


@dataclass
class LoanIssued:
    """Result of a successful borrow"""

    loan_id: int
    principal: int
    amount_owed: int


@dataclass
class RepaymentResult:
    """Result of a repayment against the active loan"""

    loan_id: int
    amount_applied: int
    credit_used: int
    transferred: int
    overpayment_credited: int
    paid_off: bool
    limit_increased: bool
    new_limit: Optional[int]


@dataclass
class CheckWritten:
    """Result of writing a check"""

    check_id: int
    status: str
    fee: int


@dataclass
class CheckRedeemed:
    """Result of claiming and cashing a blank check"""

    check_id: int
    receiver_id: int
    success: bool
    status: str
    error: Optional[str] = None
    locked: bool = False
