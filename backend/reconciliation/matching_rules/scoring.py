"""
Bank Transaction Matching Engine

Scores payment records as candidates for a bank statement line.

Primary Match Keys:
- amount (exact or within small tolerance bands)
- transaction date vs payment date (same day or within a few days)

Confidence Scoring (0-100):
- Value component, max 60
- Date component, max 40
- >= 90: auto-match
- > 50: kept as a suggestion
- <= 50: discarded

The engine is a pure function over a pool the caller already fetched.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from database.reconciliation_models import TransactionDirection


@dataclass
class MatchCandidate:
    """
    A scored, unpersisted suggestion linking a bank line to a payment.
    """
    payment_id: str
    score: int
    rationale: str
    payment_date: Optional[date] = None
    amount: Optional[Decimal] = None
    payment_type: Optional[str] = None
    order_number: Optional[str] = None
    customer_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "score": self.score,
            "rationale": self.rationale,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "amount": str(self.amount) if self.amount is not None else None,
            "payment_type": self.payment_type,
            "order_number": self.order_number,
            "customer_name": self.customer_name,
        }


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class MatchingEngine:
    """
    Deterministic scoring of bank credits against payment records.

    Scoring bands are fixed; only the candidate pool window (chosen by the
    caller) is configurable.
    """

    # Value bands: (max absolute difference, points)
    VALUE_EXACT_POINTS = 60
    VALUE_BANDS = (
        (Decimal("0.10"), 55),
        (Decimal("1.00"), 40),
    )

    # Date bands: (max days apart, points)
    DATE_BANDS = (
        (0, 40),
        (1, 30),
        (3, 20),
        (5, 10),
    )

    MIN_SCORE = 50            # Candidates must score strictly above this
    AUTO_MATCH_THRESHOLD = 90
    MAX_CANDIDATES = 5

    def find_candidates(self, transaction: Any, candidate_pool: Iterable[Any]) -> List[MatchCandidate]:
        """
        Rank payments from the pool as match candidates for a bank line.

        Args:
            transaction: Bank line with direction, amount and transaction_date
            candidate_pool: Payments with id, payment_date and amount (plus
                optional payment_type, order_number, customer_name)

        Returns:
            At most MAX_CANDIDATES candidates, best score first
        """
        if transaction.direction != TransactionDirection.CREDIT:
            return []

        candidates = []
        for payment in candidate_pool:
            score = self.score(transaction, payment)
            if score <= self.MIN_SCORE:
                continue

            candidates.append(MatchCandidate(
                payment_id=str(payment.id),
                score=score,
                rationale=self.rationale(transaction, payment),
                payment_date=payment.payment_date,
                amount=_as_decimal(payment.amount),
                payment_type=getattr(payment, "payment_type", None),
                order_number=getattr(payment, "order_number", None),
                customer_name=getattr(payment, "customer_name", None),
            ))

        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[:self.MAX_CANDIDATES]

    def is_auto_match(self, candidate: Optional[MatchCandidate]) -> bool:
        return candidate is not None and candidate.score >= self.AUTO_MATCH_THRESHOLD

    def score(self, transaction: Any, payment: Any) -> int:
        """Total score: value component + date component."""
        return (
            self.score_value(_as_decimal(transaction.amount), _as_decimal(payment.amount)) +
            self.score_date(transaction.transaction_date, payment.payment_date)
        )

    def score_value(self, bank_amount: Decimal, payment_amount: Decimal) -> int:
        diff = abs(bank_amount - payment_amount)
        if diff == 0:
            return self.VALUE_EXACT_POINTS
        for max_diff, points in self.VALUE_BANDS:
            if diff <= max_diff:
                return points
        return 0

    def score_date(self, bank_date: date, payment_date: date) -> int:
        days = abs((bank_date - payment_date).days)
        for max_days, points in self.DATE_BANDS:
            if days <= max_days:
                return points
        return 0

    def rationale(self, transaction: Any, payment: Any) -> str:
        """Human-facing reason; says which components were exact."""
        diff = abs(_as_decimal(transaction.amount) - _as_decimal(payment.amount))
        days = abs((transaction.transaction_date - payment.payment_date).days)

        if diff == 0 and days == 0:
            return "Valor e data exatos"
        if diff == 0:
            return f"Valor exato, {days} dia(s) de diferença"
        if days == 0:
            return f"Data exata, R$ {diff.quantize(Decimal('0.01'))} de diferença"
        return f"Valor similar ({days} dias de diferença)"


# Instantiate engine
matching_engine = MatchingEngine()
