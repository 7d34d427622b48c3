"""
Statement Store

Owns imported statements and their child transactions. Statements and
transactions live in separate tables keyed by id; transactions are grouped
by statement_id rather than held as object references.

All reads and writes are scoped by tenant_id.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.reconciliation_models import (
    StatementDB,
    BankTransactionDB,
    ReconciliationStatus,
    MatchMethod,
    TransactionDirection,
)
from reconciliation.exceptions import NotFoundError
from reconciliation.importer import NormalizedTransaction, StatementMetadata

logger = logging.getLogger(__name__)


class StatementStore:
    """Repository for statements and statement transactions"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== CREATE ====================

    async def find_by_fingerprint(self, tenant_id: str, fingerprint: str) -> Optional[StatementDB]:
        result = await self.session.execute(
            select(StatementDB).where(
                StatementDB.tenant_id == tenant_id,
                StatementDB.fingerprint == fingerprint
            )
        )
        return result.scalar_one_or_none()

    async def create_statement(
        self,
        tenant_id: str,
        fingerprint: str,
        metadata: StatementMetadata,
        transactions: Iterable[NormalizedTransaction]
    ) -> StatementDB:
        """
        Stage a statement and its transactions (all UNMATCHED) in the session.

        Nothing is committed here; the caller owns the unit of work.
        """
        transactions = list(transactions)
        dates = [t.transaction_date for t in transactions]

        statement = StatementDB(
            tenant_id=tenant_id,
            file_name=metadata.file_name,
            file_type=metadata.file_type,
            fingerprint=fingerprint,
            bank_account_id=metadata.bank_account_id,
            period_start=metadata.period_start or (min(dates) if dates else None),
            period_end=metadata.period_end or (max(dates) if dates else None),
            starting_balance=metadata.starting_balance,
            ending_balance=metadata.ending_balance,
        )
        self.session.add(statement)
        await self.session.flush()

        for line_number, txn in enumerate(transactions):
            self.session.add(BankTransactionDB(
                tenant_id=tenant_id,
                statement_id=statement.id,
                line_number=line_number,
                transaction_date=txn.transaction_date,
                posting_date=txn.posting_date,
                direction=txn.direction,
                amount=txn.amount,
                description=txn.description,
                bank_identifier=txn.bank_identifier,
                reference=txn.reference,
                bank_category=txn.bank_category,
                status=ReconciliationStatus.UNMATCHED,
            ))
        await self.session.flush()

        return statement

    # ==================== READ ====================

    async def get_statement(self, tenant_id: str, statement_id: str) -> StatementDB:
        result = await self.session.execute(
            select(StatementDB)
            .where(StatementDB.id == statement_id, StatementDB.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        statement = result.scalar_one_or_none()
        if statement is None:
            raise NotFoundError("statement", statement_id)
        return statement

    async def list_statements(self, tenant_id: str, limit: int = 20, offset: int = 0) -> List[StatementDB]:
        result = await self.session.execute(
            select(StatementDB)
            .where(StatementDB.tenant_id == tenant_id)
            .order_by(StatementDB.imported_at.desc(), StatementDB.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_transaction(self, tenant_id: str, transaction_id: str) -> BankTransactionDB:
        result = await self.session.execute(
            select(BankTransactionDB)
            .where(BankTransactionDB.id == transaction_id, BankTransactionDB.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        transaction = result.scalar_one_or_none()
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    async def list_transactions(
        self,
        tenant_id: str,
        statement_id: str,
        status: Optional[ReconciliationStatus] = None,
        direction: Optional[TransactionDirection] = None
    ) -> List[BankTransactionDB]:
        """Transactions of a statement in bank order (date, then position in the file)."""
        query = select(BankTransactionDB).where(
            BankTransactionDB.tenant_id == tenant_id,
            BankTransactionDB.statement_id == statement_id
        )
        if status is not None:
            query = query.where(BankTransactionDB.status == status)
        if direction is not None:
            query = query.where(BankTransactionDB.direction == direction)

        result = await self.session.execute(
            query.order_by(BankTransactionDB.transaction_date, BankTransactionDB.line_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ==================== STATE TRANSITIONS ====================
    # Each transition is a conditional UPDATE on the expected current status;
    # False means another writer changed the row first.

    async def mark_matched(
        self,
        tenant_id: str,
        transaction_id: str,
        payment_id: str,
        method: MatchMethod
    ) -> bool:
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(BankTransactionDB)
            .where(
                BankTransactionDB.id == transaction_id,
                BankTransactionDB.tenant_id == tenant_id,
                BankTransactionDB.status == ReconciliationStatus.UNMATCHED
            )
            .values(
                status=ReconciliationStatus.MATCHED,
                payment_id=payment_id,
                match_method=method,
                matched_at=now,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_ignored(self, tenant_id: str, transaction_id: str, note: Optional[str]) -> bool:
        result = await self.session.execute(
            update(BankTransactionDB)
            .where(
                BankTransactionDB.id == transaction_id,
                BankTransactionDB.tenant_id == tenant_id,
                BankTransactionDB.status == ReconciliationStatus.UNMATCHED
            )
            .values(
                status=ReconciliationStatus.IGNORED,
                note=note,
                updated_at=datetime.now(timezone.utc)
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_unmatched(self, tenant_id: str, transaction_id: str, payment_id: str) -> bool:
        result = await self.session.execute(
            update(BankTransactionDB)
            .where(
                BankTransactionDB.id == transaction_id,
                BankTransactionDB.tenant_id == tenant_id,
                BankTransactionDB.status == ReconciliationStatus.MATCHED,
                BankTransactionDB.payment_id == payment_id
            )
            .values(
                status=ReconciliationStatus.UNMATCHED,
                payment_id=None,
                match_method=None,
                matched_at=None,
                updated_at=datetime.now(timezone.utc)
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
