"""Pytest fixtures for testing"""

import os

# Must be set before formbank.config builds its settings singleton
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RESUME_LEGS_ON_STARTUP", "false")

import asyncio
from typing import Generator, List, Optional

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from formbank.api.dependencies import get_check_service, get_loan_service, get_transfer_gateway
from formbank.api.main import create_app
from formbank.domain.models import TransferReceipt, TransferRequest
from formbank.infrastructure.clients.wallet import TransferGateway
from formbank.infrastructure.database.models import Base
from formbank.infrastructure.database.repositories import LedgerStore
from formbank.infrastructure.database.session import get_db
from formbank.workflows.checks import CheckService
from formbank.workflows.loans import LoanService

LENDER_ID = 1
LENDER_PIN = 3639

# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def reconciliation_count() -> float:
    """Current value of the reconciliation-required counter"""
    return REGISTRY.get_sample_value("formbank_reconciliation_required_total") or 0.0


class FakeTransferGateway(TransferGateway):
    """Scripted wallet rail: succeeds unless a failure was queued"""

    def __init__(self):
        self.calls: List[TransferRequest] = []
        self._outcomes: List[Optional[Exception]] = []

    def fail_next(self, exc: Exception) -> None:
        self._outcomes.append(exc)

    def succeed_next(self) -> None:
        self._outcomes.append(None)

    async def transfer(self, request: TransferRequest) -> TransferReceipt:
        self.calls.append(request)
        outcome = self._outcomes.pop(0) if self._outcomes else None
        # Yield so concurrent workflows interleave at the rail, as they would in production
        await asyncio.sleep(0)
        if outcome is not None:
            raise outcome
        return TransferReceipt(request_id=request.request_id)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db: Session) -> LedgerStore:
    return LedgerStore(db)


@pytest.fixture
def gateway() -> FakeTransferGateway:
    return FakeTransferGateway()


@pytest.fixture
def loan_service(store: LedgerStore, gateway: FakeTransferGateway) -> LoanService:
    return LoanService(store, gateway, lender_id=LENDER_ID, lender_secret=LENDER_PIN)


@pytest.fixture
def check_service(store: LedgerStore, gateway: FakeTransferGateway) -> CheckService:
    return CheckService(
        store,
        gateway,
        lender_id=LENDER_ID,
        transfer_delay_seconds=0,
        public_base_url="http://testserver",
    )


@pytest.fixture
def client(
    db: Session,
    gateway: FakeTransferGateway,
    loan_service: LoanService,
    check_service: CheckService,
) -> TestClient:
    """Create FastAPI test client with test database and fake wallet rail"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_transfer_gateway] = lambda: gateway
    app.dependency_overrides[get_loan_service] = lambda: loan_service
    app.dependency_overrides[get_check_service] = lambda: check_service
    return TestClient(app)
