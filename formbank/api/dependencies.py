"""Dependency injection for FastAPI endpoints"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from formbank.infrastructure.clients.wallet import HttpTransferGateway, TransferGateway
from formbank.infrastructure.database.repositories import LedgerStore
from formbank.infrastructure.database.session import get_db
from formbank.workflows.checks import CheckService
from formbank.workflows.loans import LoanService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_optional_user_id(x_user_id: Optional[int] = Header(None)) -> Optional[int]:
    """Identity established upstream by the single-sign-on hand-off; trusted as-is"""
    return x_user_id


def get_current_user_id(user_id: Optional[int] = Depends(get_optional_user_id)) -> int:
    if user_id is None:
        raise HTTPException(status_code=401, detail={"error": "User ID not found in session"})
    return user_id


def get_transfer_gateway() -> TransferGateway:
    """Provide wallet rail client instance"""
    return HttpTransferGateway()


def get_ledger_store(db: Session = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db)


def get_loan_service(
    store: LedgerStore = Depends(get_ledger_store),
    gateway: TransferGateway = Depends(get_transfer_gateway),
) -> LoanService:
    return LoanService(store, gateway)


def get_check_service(
    store: LedgerStore = Depends(get_ledger_store),
    gateway: TransferGateway = Depends(get_transfer_gateway),
) -> CheckService:
    return CheckService(store, gateway)
