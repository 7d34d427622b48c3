"""
Reconciliation services.
"""

from reconciliation.services.statement_store import StatementStore
from reconciliation.services.payment_store import PaymentStore, SqlPaymentStore
from reconciliation.services.aggregate_tracker import StatementAggregateTracker
from reconciliation.services.coordinator import (
    ReconciliationCoordinator,
    ReconciliationAuditEvent,
    TransactionSuggestions,
    log_reconciliation_event,
)
from reconciliation.services.batch_reconciler import (
    BatchReconciler,
    BatchResult,
    BatchItemError,
    MatchInstruction,
    IgnoreInstruction,
)

__all__ = [
    'StatementStore',
    'PaymentStore',
    'SqlPaymentStore',
    'StatementAggregateTracker',
    'ReconciliationCoordinator',
    'ReconciliationAuditEvent',
    'TransactionSuggestions',
    'log_reconciliation_event',
    'BatchReconciler',
    'BatchResult',
    'BatchItemError',
    'MatchInstruction',
    'IgnoreInstruction',
]
