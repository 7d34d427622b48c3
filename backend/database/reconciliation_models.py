"""
Bank Reconciliation - Database Models

Tables:
- bank_statements: One imported bank file per row (append-only audit trail)
- bank_statement_transactions: Line items of a statement, subject to reconciliation
- payments: Payment records owned by the payment module; only the columns the
  reconciliation contract reads or writes are mapped here

Exclusivity between a transaction and a payment is enforced by the UNIQUE
constraints on both back-references (payment_id / bank_transaction_id).
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, String, Text, Boolean, Date, DateTime, Integer,
    ForeignKey, Index, UniqueConstraint, Enum as SQLEnum, Numeric
)

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS (FROZEN) ====================

class StatementStatus(str, PyEnum):
    """Lifecycle of an imported statement"""
    PENDING = "PENDING"            # Nothing resolved yet
    IN_PROGRESS = "IN_PROGRESS"    # Some transactions still UNMATCHED
    COMPLETED = "COMPLETED"        # No UNMATCHED transactions left


class TransactionDirection(str, PyEnum):
    """Direction of a bank line item"""
    CREDIT = "CREDIT"  # Money in
    DEBIT = "DEBIT"    # Money out


class ReconciliationStatus(str, PyEnum):
    """Reconciliation state of a bank line item"""
    UNMATCHED = "UNMATCHED"
    MATCHED = "MATCHED"
    IGNORED = "IGNORED"


class MatchMethod(str, PyEnum):
    """How a match was committed"""
    MANUAL = "MANUAL"
    AUTOMATIC = "AUTOMATIC"


# ==================== DATABASE MODELS ====================

class StatementDB(Base):
    """
    One imported bank statement.

    Counters are owned by the aggregate tracker and recomputed after
    every change to a child transaction.
    """
    __tablename__ = "bank_statements"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)

    # Source file
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(20), nullable=False, default="OFX")
    fingerprint = Column(String(128), nullable=False)
    bank_account_id = Column(String(36), nullable=True)

    # Period and balances
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)
    starting_balance = Column(Numeric(14, 2), nullable=True)
    ending_balance = Column(Numeric(14, 2), nullable=True)

    # Aggregates
    total_transactions = Column(Integer, nullable=False, default=0)
    total_matched = Column(Integer, nullable=False, default=0)
    total_pending = Column(Integer, nullable=False, default=0)
    percent_matched = Column(Numeric(5, 2), nullable=False, default=0)
    status = Column(
        SQLEnum(StatementStatus, name='statement_status_enum', native_enum=False, length=20),
        nullable=False,
        default=StatementStatus.PENDING
    )

    imported_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'fingerprint', name='uq_bank_statements_tenant_fingerprint'),
        Index('idx_bank_statements_tenant_imported', 'tenant_id', 'imported_at'),
    )


class BankTransactionDB(Base):
    """
    A single credit or debit line of a statement.

    payment_id is UNIQUE: a payment can be referenced by at most one
    transaction at any time.
    """
    __tablename__ = "bank_statement_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    statement_id = Column(
        String(36),
        ForeignKey("bank_statements.id"),
        nullable=False,
        index=True
    )

    line_number = Column(Integer, nullable=False)  # 0-based position in the imported file

    # Bank data
    transaction_date = Column(Date, nullable=False, index=True)
    posting_date = Column(Date, nullable=True)
    direction = Column(
        SQLEnum(TransactionDirection, name='transaction_direction_enum', native_enum=False, length=10),
        nullable=False
    )
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=True)
    bank_identifier = Column(String(255), nullable=True)
    reference = Column(String(255), nullable=True)
    bank_category = Column(String(100), nullable=True)

    # Reconciliation state
    status = Column(
        SQLEnum(ReconciliationStatus, name='reconciliation_status_enum', native_enum=False, length=20),
        nullable=False,
        default=ReconciliationStatus.UNMATCHED,
        index=True
    )
    payment_id = Column(String(36), nullable=True, unique=True)
    match_method = Column(
        SQLEnum(MatchMethod, name='match_method_enum', native_enum=False, length=20),
        nullable=True
    )
    matched_at = Column(DateTime(timezone=True), nullable=True)
    note = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('idx_bank_txn_statement_status', 'statement_id', 'status'),
        UniqueConstraint('statement_id', 'line_number', name='uq_bank_statement_transactions_line'),
    )


class PaymentDB(Base):
    """
    Payment record as seen by reconciliation.

    reconciled + bank_transaction_id are written only through the atomic
    claim/release statements of the payment store.
    """
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)

    payment_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_type = Column(String(30), nullable=False, default="PIX")
    order_number = Column(String(30), nullable=True)
    customer_name = Column(String(255), nullable=True)

    reconciled = Column(Boolean, nullable=False, default=False)
    bank_transaction_id = Column(String(36), nullable=True, unique=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('idx_payments_window', 'tenant_id', 'reconciled', 'payment_date', 'amount'),
    )
