"""
Statement aggregate tracker.

Keeps the counters on a statement equal to the counts of its child
transactions. Always recomputes from scratch; never increments.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from database.reconciliation_models import (
    StatementDB,
    BankTransactionDB,
    ReconciliationStatus,
    StatementStatus,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
CENTS = Decimal("0.01")


def percent_matched(total: int, matched: int) -> Decimal:
    """matched / total * 100 rounded half-up to 2 places; 0 for an empty statement."""
    if total == 0:
        return Decimal("0.00")
    return (Decimal(matched) * HUNDRED / Decimal(total)).quantize(CENTS, rounding=ROUND_HALF_UP)


def derive_status(total: int, unmatched: int) -> StatementStatus:
    if total > 0 and unmatched == 0:
        return StatementStatus.COMPLETED
    if unmatched == total:
        return StatementStatus.PENDING
    return StatementStatus.IN_PROGRESS


class StatementAggregateTracker:
    """Recomputes statement counters inside the caller's unit of work."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def recompute(self, statement: StatementDB) -> StatementDB:
        # Pending ORM changes must be visible to the counting query
        await self.session.flush()

        result = await self.session.execute(
            select(
                func.count(BankTransactionDB.id),
                func.coalesce(func.sum(case(
                    (BankTransactionDB.status == ReconciliationStatus.MATCHED, 1), else_=0
                )), 0),
                func.coalesce(func.sum(case(
                    (BankTransactionDB.status == ReconciliationStatus.UNMATCHED, 1), else_=0
                )), 0),
            ).where(
                BankTransactionDB.statement_id == statement.id,
                BankTransactionDB.tenant_id == statement.tenant_id
            )
        )
        total, matched, unmatched = result.one()
        total, matched, unmatched = int(total), int(matched), int(unmatched)

        statement.total_transactions = total
        statement.total_matched = matched
        statement.total_pending = total - matched
        statement.percent_matched = percent_matched(total, matched)
        statement.status = derive_status(total, unmatched)

        await self.session.flush()

        logger.debug(
            f"Statement {statement.id} aggregates: {matched}/{total} matched",
            extra={"statement_id": statement.id, "status": statement.status.value}
        )
        return statement
