from .connection import get_db, engine, AsyncSessionLocal, init_db, Base, build_engine, build_session_factory

# Import reconciliation models to ensure they are registered with Base
from .reconciliation_models import (
    StatementDB, BankTransactionDB, PaymentDB,
    StatementStatus, TransactionDirection, ReconciliationStatus, MatchMethod
)

__all__ = [
    'get_db', 'engine', 'AsyncSessionLocal', 'init_db', 'Base',
    'build_engine', 'build_session_factory',
    # Reconciliation models
    'StatementDB', 'BankTransactionDB', 'PaymentDB',
    'StatementStatus', 'TransactionDirection', 'ReconciliationStatus', 'MatchMethod',
]
