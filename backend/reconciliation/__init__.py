"""
Bank Statement Reconciliation Module

Reconciles imported bank statement lines against payment records:
- Fingerprint-guarded statement import
- Confidence scoring of payment candidates
- Auto-matching for high confidence
- Suggested matches for review
- Manual match / ignore / unmatch and batch operations
- Audit trail for all operations

The HTTP router lives in reconciliation.endpoints.reconciliation_api.
"""

from reconciliation.exceptions import (
    ReconciliationError,
    DuplicateImportError,
    NotFoundError,
    InvalidStateError,
    ConflictError,
)
from reconciliation.importer import (
    NormalizedTransaction,
    StatementMetadata,
    ParsedStatement,
    StatementImporter,
    compute_fingerprint,
)
from reconciliation.matching_rules import MatchingEngine, MatchCandidate, matching_engine
from reconciliation.services import (
    ReconciliationCoordinator,
    BatchReconciler,
    BatchResult,
)

__all__ = [
    # Errors
    'ReconciliationError',
    'DuplicateImportError',
    'NotFoundError',
    'InvalidStateError',
    'ConflictError',
    # Importer contract
    'NormalizedTransaction',
    'StatementMetadata',
    'ParsedStatement',
    'StatementImporter',
    'compute_fingerprint',
    # Matching
    'MatchingEngine',
    'MatchCandidate',
    'matching_engine',
    # Services
    'ReconciliationCoordinator',
    'BatchReconciler',
    'BatchResult',
]
