"""SQLAlchemy ORM models for the credit and check ledger"""

from sqlalchemy import Column, BigInteger, Integer, Float, DateTime, ForeignKey, Text, Index, text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class CreditLimit(Base):
    """Borrowing limit per borrower; only ever raised by the credit policy"""

    __tablename__ = "credit_limits"

    borrower_id = Column(BigInteger, primary_key=True, autoincrement=False)
    current_limit = Column(BigInteger, nullable=False, default=250)
    increase_count = Column(Integer, nullable=False, default=0)


class CreditBalance(Base):
    """Stored credit (overpayments) applied before pulling funds from the rail"""

    __tablename__ = "credit_balances"

    borrower_id = Column(BigInteger, primary_key=True, autoincrement=False)
    balance = Column(BigInteger, nullable=False, default=0)


class Loan(Base):
    """Micro-loan issued from the house identity"""

    __tablename__ = "credit_loans"
    __table_args__ = (
        # At most one active loan per borrower, even under concurrent borrow requests
        Index(
            "uq_credit_loans_one_active",
            "borrower_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    borrower_id = Column(BigInteger, nullable=False, index=True)
    principal = Column(BigInteger, nullable=False)
    interest_rate = Column(Float, nullable=False)
    amount_owed = Column(BigInteger, nullable=False)
    amount_paid = Column(BigInteger, nullable=False, default=0)
    status = Column(Text, nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    paid_at = Column(DateTime(timezone=True), nullable=True)


class Check(Base):
    """Conditional payment, either addressed or blank"""

    __tablename__ = "checks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(BigInteger, nullable=False, index=True)
    receiver_id = Column(BigInteger, nullable=True, index=True)  # NULL = unclaimed blank check
    amount = Column(BigInteger, nullable=False)
    fee = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="failed")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    memo = Column(Text, nullable=True)
    redemption_secret = Column(Text, nullable=True)

    legs = relationship("ScheduledLeg", back_populates="check", cascade="all, delete-orphan")


class ScheduledLeg(Base):
    """Pending principal transfer of a targeted check, recorded before the grace delay"""

    __tablename__ = "scheduled_legs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    check_id = Column(Integer, ForeignKey("checks.id", ondelete="CASCADE"), nullable=False, index=True)
    from_id = Column(BigInteger, nullable=False)
    to_id = Column(BigInteger, nullable=False)
    amount = Column(BigInteger, nullable=False)
    reason = Column(Text, nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(Text, nullable=False, default="pending", index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    check = relationship("Check", back_populates="legs")
