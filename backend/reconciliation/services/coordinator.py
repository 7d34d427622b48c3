"""
Reconciliation Coordinator

Orchestrates the reconciliation workflow for imported bank statements:
- Importing statements (fingerprint guarded)
- Auto-matching credits with high confidence
- Suggesting matches for review
- Manual match / ignore / unmatch
- Audit logging

Every mutating call is one unit of work: commit on success, rollback on
any error. Payment exclusivity relies on the atomic claim of the payment
store, never on the read-side checks alone.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import sentry_integration
from config import get_settings
from database.reconciliation_models import (
    StatementDB,
    BankTransactionDB,
    ReconciliationStatus,
    TransactionDirection,
    MatchMethod,
)
from reconciliation.exceptions import (
    ConflictError,
    DuplicateImportError,
    InvalidStateError,
)
from reconciliation.importer import NormalizedTransaction, StatementMetadata
from reconciliation.matching_rules import MatchCandidate, MatchingEngine, matching_engine
from reconciliation.services.aggregate_tracker import StatementAggregateTracker
from reconciliation.services.payment_store import PaymentStore, SqlPaymentStore
from reconciliation.services.statement_store import StatementStore

logger = logging.getLogger(__name__)


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    STATEMENT_IMPORTED = "reconciliation.statement_imported"
    DUPLICATE_REJECTED = "reconciliation.duplicate_rejected"
    AUTO_MATCH_COMPLETED = "reconciliation.auto_match_completed"
    MATCH_CREATED = "reconciliation.match_created"
    MATCH_REMOVED = "reconciliation.match_removed"
    TRANSACTION_IGNORED = "reconciliation.transaction_ignored"
    CLAIM_LOST = "reconciliation.claim_lost"
    BATCH_COMPLETED = "reconciliation.batch_completed"


def log_reconciliation_event(
    event_type: str,
    tenant_id: str,
    details: Dict[str, Any],
    transaction_id: Optional[str] = None,
    actor: str = "system"
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "tenant_id": tenant_id,
        "transaction_id": transaction_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)


@dataclass
class TransactionSuggestions:
    """A statement transaction with its ranked match candidates."""
    transaction: BankTransactionDB
    candidates: List[MatchCandidate] = field(default_factory=list)


class ReconciliationCoordinator:
    """
    Service for reconciling bank statement transactions against payments.

    Collaborators are built on the request session unless supplied.
    """

    def __init__(
        self,
        db: AsyncSession,
        payment_store: Optional[PaymentStore] = None,
        engine: Optional[MatchingEngine] = None,
        amount_window: Optional[Decimal] = None,
        date_window_days: Optional[int] = None
    ):
        settings = get_settings()
        self.db = db
        self.statements = StatementStore(db)
        self.payments = payment_store or SqlPaymentStore(db)
        self.tracker = StatementAggregateTracker(db)
        self.engine = engine or matching_engine
        self.amount_window = Decimal(str(
            amount_window if amount_window is not None else settings.RECON_AMOUNT_WINDOW
        ))
        self.date_window_days = (
            date_window_days if date_window_days is not None else settings.RECON_DATE_WINDOW_DAYS
        )

    # ==================== IMPORT ====================

    async def import_statement(
        self,
        tenant_id: str,
        transactions: Iterable[NormalizedTransaction],
        fingerprint: str,
        metadata: StatementMetadata
    ) -> StatementDB:
        """
        Persist a statement and its transactions, then auto-match.

        Raises:
            DuplicateImportError: fingerprint already imported for the tenant
        """
        existing = await self.statements.find_by_fingerprint(tenant_id, fingerprint)
        if existing is not None:
            log_reconciliation_event(
                ReconciliationAuditEvent.DUPLICATE_REJECTED,
                tenant_id,
                {"fingerprint": fingerprint, "statement_id": existing.id}
            )
            raise DuplicateImportError(fingerprint, existing.id)

        transactions = list(transactions)
        try:
            statement = await self.statements.create_statement(
                tenant_id, fingerprint, metadata, transactions
            )
            await self.tracker.recompute(statement)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            log_reconciliation_event(
                ReconciliationAuditEvent.DUPLICATE_REJECTED,
                tenant_id,
                {"fingerprint": fingerprint, "race": True}
            )
            raise DuplicateImportError(fingerprint)
        except Exception:
            await self.db.rollback()
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.STATEMENT_IMPORTED,
            tenant_id,
            {
                "statement_id": statement.id,
                "file_name": metadata.file_name,
                "transactions": len(transactions)
            }
        )

        # The import is already committed; if auto-match fails the lines stay
        # UNMATCHED for a later run
        try:
            await self.auto_match(tenant_id, statement.id)
        except Exception as e:
            logger.exception(f"Auto-match after import failed for statement {statement.id}")
            sentry_integration.capture_exception(
                e, tenant_id=tenant_id, statement_id=statement.id, action="auto_match"
            )
        return await self.statements.get_statement(tenant_id, statement.id)

    # ==================== AUTO-MATCH ====================

    async def auto_match(self, tenant_id: str, statement_id: str) -> int:
        """
        Commit every high-confidence match of a statement's open credits.

        Only the top candidate of each transaction is considered. Returns
        the number of transactions matched by this run.
        """
        statement = await self.statements.get_statement(tenant_id, statement_id)
        open_credits = await self.statements.list_transactions(
            tenant_id,
            statement_id,
            status=ReconciliationStatus.UNMATCHED,
            direction=TransactionDirection.CREDIT
        )

        matched = 0
        try:
            for txn in open_credits:
                candidates = await self._rank(tenant_id, txn)
                if not candidates or not self.engine.is_auto_match(candidates[0]):
                    continue

                best = candidates[0]
                try:
                    # One savepoint per line: a failed line keeps the others
                    async with self.db.begin_nested():
                        won = await self._claim_automatically(tenant_id, txn, best)
                except IntegrityError as e:
                    logger.warning(
                        f"Auto-match of transaction {txn.id} hit a constraint: {e.orig}",
                        extra={"tenant_id": tenant_id, "payment_id": best.payment_id}
                    )
                    won = False

                if not won:
                    log_reconciliation_event(
                        ReconciliationAuditEvent.CLAIM_LOST,
                        tenant_id,
                        {"payment_id": best.payment_id, "score": best.score},
                        transaction_id=txn.id
                    )
                    continue

                matched += 1

            await self.tracker.recompute(statement)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.AUTO_MATCH_COMPLETED,
            tenant_id,
            {
                "statement_id": statement_id,
                "candidates_checked": len(open_credits),
                "auto_matched": matched
            }
        )
        return matched

    # ==================== SUGGESTIONS ====================

    async def list_transactions_with_suggestions(
        self,
        tenant_id: str,
        statement_id: str
    ) -> List[TransactionSuggestions]:
        """All transactions of a statement; open credits carry ranked candidates."""
        await self.statements.get_statement(tenant_id, statement_id)
        transactions = await self.statements.list_transactions(tenant_id, statement_id)

        results = []
        for txn in transactions:
            candidates = []
            if (txn.status == ReconciliationStatus.UNMATCHED and
                    txn.direction == TransactionDirection.CREDIT):
                candidates = await self._rank(tenant_id, txn)
            results.append(TransactionSuggestions(transaction=txn, candidates=candidates))
        return results

    async def get_statement(self, tenant_id: str, statement_id: str) -> StatementDB:
        return await self.statements.get_statement(tenant_id, statement_id)

    async def get_statement_summary(self, tenant_id: str, statement_id: str) -> StatementDB:
        """Statement aggregates, period and balances as last recomputed."""
        return await self.statements.get_statement(tenant_id, statement_id)

    async def list_statements(self, tenant_id: str, limit: int = 20, offset: int = 0) -> List[StatementDB]:
        return await self.statements.list_statements(tenant_id, limit=limit, offset=offset)

    async def list_transactions(self, tenant_id: str, statement_id: str) -> List[BankTransactionDB]:
        await self.statements.get_statement(tenant_id, statement_id)
        return await self.statements.list_transactions(tenant_id, statement_id)

    # ==================== MANUAL ACTIONS ====================

    async def match_manually(self, tenant_id: str, transaction_id: str, payment_id: str) -> BankTransactionDB:
        """
        Link a transaction to a payment chosen by the operator.

        Raises:
            NotFoundError: transaction or payment unknown for the tenant
            InvalidStateError: transaction not UNMATCHED or payment already reconciled
            ConflictError: a concurrent operation claimed the payment or moved the transaction
        """
        try:
            txn = await self.statements.get_transaction(tenant_id, transaction_id)
            if txn.status != ReconciliationStatus.UNMATCHED:
                raise InvalidStateError(
                    f"Transaction is {txn.status.value}, expected UNMATCHED",
                    entity="transaction",
                    entity_id=transaction_id
                )

            payment = await self.payments.get(tenant_id, payment_id)
            if payment.reconciled:
                raise InvalidStateError(
                    "Payment is already reconciled",
                    entity="payment",
                    entity_id=payment_id
                )

            if not await self.payments.claim(tenant_id, payment_id, transaction_id):
                raise ConflictError(
                    "Payment was reconciled by a concurrent operation",
                    entity="payment",
                    entity_id=payment_id
                )

            if not await self.statements.mark_matched(
                tenant_id, transaction_id, payment_id, MatchMethod.MANUAL
            ):
                raise ConflictError(
                    "Transaction was changed by a concurrent operation",
                    entity="transaction",
                    entity_id=transaction_id
                )

            await self._recompute_for(txn)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                "Payment is already linked to another transaction",
                entity="payment",
                entity_id=payment_id
            )
        except Exception:
            await self.db.rollback()
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.MATCH_CREATED,
            tenant_id,
            {"payment_id": payment_id, "method": MatchMethod.MANUAL.value},
            transaction_id=transaction_id,
            actor="user"
        )
        return await self.statements.get_transaction(tenant_id, transaction_id)

    async def ignore(self, tenant_id: str, transaction_id: str, note: Optional[str] = None) -> BankTransactionDB:
        """Mark an UNMATCHED transaction as IGNORED. IGNORED is terminal."""
        try:
            txn = await self.statements.get_transaction(tenant_id, transaction_id)
            if txn.status != ReconciliationStatus.UNMATCHED:
                raise InvalidStateError(
                    f"Only UNMATCHED transactions can be ignored (status: {txn.status.value})",
                    entity="transaction",
                    entity_id=transaction_id
                )

            if not await self.statements.mark_ignored(tenant_id, transaction_id, note):
                raise ConflictError(
                    "Transaction was changed by a concurrent operation",
                    entity="transaction",
                    entity_id=transaction_id
                )

            await self._recompute_for(txn)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.TRANSACTION_IGNORED,
            tenant_id,
            {"note": note},
            transaction_id=transaction_id,
            actor="user"
        )
        return await self.statements.get_transaction(tenant_id, transaction_id)

    async def unmatch(self, tenant_id: str, transaction_id: str) -> BankTransactionDB:
        """Undo a MANUAL or AUTOMATIC match and release the payment."""
        try:
            txn = await self.statements.get_transaction(tenant_id, transaction_id)
            if txn.status != ReconciliationStatus.MATCHED:
                raise InvalidStateError(
                    f"Only MATCHED transactions can be unmatched (status: {txn.status.value})",
                    entity="transaction",
                    entity_id=transaction_id
                )

            payment_id = txn.payment_id
            method = txn.match_method
            if not await self.statements.mark_unmatched(tenant_id, transaction_id, payment_id):
                raise ConflictError(
                    "Transaction was changed by a concurrent operation",
                    entity="transaction",
                    entity_id=transaction_id
                )

            if not await self.payments.release(tenant_id, payment_id, transaction_id):
                logger.warning(
                    f"Payment {payment_id} was not linked to transaction {transaction_id}",
                    extra={"tenant_id": tenant_id, "payment_id": payment_id}
                )

            await self._recompute_for(txn)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        log_reconciliation_event(
            ReconciliationAuditEvent.MATCH_REMOVED,
            tenant_id,
            {"payment_id": payment_id, "method": method.value if method else None},
            transaction_id=transaction_id,
            actor="user"
        )
        return await self.statements.get_transaction(tenant_id, transaction_id)

    # ==================== HELPERS ====================

    async def _claim_automatically(
        self,
        tenant_id: str,
        txn: BankTransactionDB,
        candidate: MatchCandidate
    ) -> bool:
        if not await self.payments.claim(tenant_id, candidate.payment_id, txn.id):
            return False
        if not await self.statements.mark_matched(
            tenant_id, txn.id, candidate.payment_id, MatchMethod.AUTOMATIC
        ):
            # Transaction moved on concurrently; give the payment back
            await self.payments.release(tenant_id, candidate.payment_id, txn.id)
            return False
        return True

    async def _rank(self, tenant_id: str, txn: BankTransactionDB) -> List[MatchCandidate]:
        """Fetch the windowed payment pool for a transaction and score it."""
        amount = Decimal(str(txn.amount))
        window = timedelta(days=self.date_window_days)
        pool = await self.payments.find_in_window(
            tenant_id,
            amount - self.amount_window,
            amount + self.amount_window,
            txn.transaction_date - window,
            txn.transaction_date + window
        )
        return self.engine.find_candidates(txn, pool)

    async def _recompute_for(self, txn: BankTransactionDB) -> StatementDB:
        statement = await self.statements.get_statement(txn.tenant_id, txn.statement_id)
        return await self.tracker.recompute(statement)
