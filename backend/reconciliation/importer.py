"""
Statement importer contract.

Parsing raw bank files (OFX, CSV, ...) belongs to the importer; the
reconciliation core only consumes its normalized output.
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from database.reconciliation_models import TransactionDirection


@dataclass
class NormalizedTransaction:
    """One bank line as produced by an importer. amount is a non-negative magnitude."""
    transaction_date: date
    direction: TransactionDirection
    amount: Decimal
    description: str = ""
    bank_identifier: Optional[str] = None
    reference: Optional[str] = None
    posting_date: Optional[date] = None
    bank_category: Optional[str] = None

    def __post_init__(self) -> None:
        self.amount = Decimal(str(self.amount))
        if self.amount < 0:
            raise ValueError("amount must be a non-negative magnitude; use direction for the sign")
        self.direction = TransactionDirection(self.direction)


@dataclass
class StatementMetadata:
    """Descriptive data about the imported file."""
    file_name: str
    file_type: str = "OFX"
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    starting_balance: Optional[Decimal] = None
    ending_balance: Optional[Decimal] = None
    bank_account_id: Optional[str] = None


@dataclass
class ParsedStatement:
    """Importer output: transactions, content fingerprint and metadata."""
    fingerprint: str
    metadata: StatementMetadata
    transactions: List[NormalizedTransaction] = field(default_factory=list)


class StatementImporter(ABC):
    """Turns raw bank file bytes into a ParsedStatement."""

    @abstractmethod
    def parse(self, raw: bytes, file_name: str) -> ParsedStatement:
        """Parse a raw file. Implementations should use compute_fingerprint(raw)."""


def compute_fingerprint(raw: bytes) -> str:
    """SHA-256 hex digest of the raw file content."""
    return hashlib.sha256(raw).hexdigest()


def signed_to_normalized(
    transaction_date: date,
    signed_amount: Decimal,
    **kwargs
) -> NormalizedTransaction:
    """
    Build a NormalizedTransaction from a signed bank amount.

    Zero and positive amounts are credits, negative amounts are debits.
    """
    signed_amount = Decimal(str(signed_amount))
    direction = TransactionDirection.CREDIT if signed_amount >= 0 else TransactionDirection.DEBIT
    return NormalizedTransaction(
        transaction_date=transaction_date,
        direction=direction,
        amount=abs(signed_amount),
        **kwargs
    )
