"""
Reconciliation API Endpoints

REST API for bank statement reconciliation:
- POST /api/reconciliation/{tenant_id}/statements - Import a statement
- GET /api/reconciliation/{tenant_id}/statements - List statements
- GET /api/reconciliation/{tenant_id}/statements/{statement_id} - Statement with transactions
- GET /api/reconciliation/{tenant_id}/statements/{statement_id}/transactions - Transactions with suggestions
- GET /api/reconciliation/{tenant_id}/statements/{statement_id}/summary - Statement aggregates
- POST /api/reconciliation/{tenant_id}/statements/{statement_id}/auto-match - Re-run auto-match
- POST /api/reconciliation/{tenant_id}/transactions/{transaction_id}/match - Manual match
- POST /api/reconciliation/{tenant_id}/transactions/{transaction_id}/ignore - Ignore
- POST /api/reconciliation/{tenant_id}/transactions/{transaction_id}/unmatch - Undo a match
- POST /api/reconciliation/{tenant_id}/batch - Batch match/ignore
- GET /api/reconciliation/status - Module status
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.connection import get_db
from database.reconciliation_models import (
    StatementDB,
    BankTransactionDB,
    TransactionDirection,
)
from middleware.internal_auth import InternalService, require_internal_service
from reconciliation.exceptions import ReconciliationError
from reconciliation.importer import (
    NormalizedTransaction,
    StatementMetadata,
    compute_fingerprint,
    signed_to_normalized,
)
from reconciliation.matching_rules import MatchCandidate, MatchingEngine
from reconciliation.services.batch_reconciler import (
    BatchReconciler,
    MatchInstruction,
    IgnoreInstruction,
)
from reconciliation.services.coordinator import ReconciliationCoordinator
from sentry_integration import capture_exception
from utils.validation_errors import raise_invalid_parameter, raise_reconciliation_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Request/Response Models ====================

class TransactionInput(BaseModel):
    """A normalized bank line. Without direction, amount is signed (negative = debit)."""
    transaction_date: date
    amount: Decimal
    direction: Optional[TransactionDirection] = Field(default=None, description="CREDIT or DEBIT")
    description: str = ""
    bank_identifier: Optional[str] = None
    reference: Optional[str] = None
    posting_date: Optional[date] = None
    bank_category: Optional[str] = None


class ImportStatementRequest(BaseModel):
    """Request to import a parsed statement."""
    file_name: str = Field(..., min_length=1)
    file_type: str = Field(default="OFX")
    fingerprint: Optional[str] = Field(default=None, description="Content hash of the source file")
    raw_content: Optional[str] = Field(default=None, description="Raw file text, hashed when no fingerprint is given")
    bank_account_id: Optional[str] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    starting_balance: Optional[Decimal] = None
    ending_balance: Optional[Decimal] = None
    transactions: List[TransactionInput] = Field(default_factory=list)


class MatchRequest(BaseModel):
    """Request to match a transaction to a payment."""
    payment_id: str = Field(..., min_length=1)


class IgnoreRequest(BaseModel):
    """Request to ignore a transaction."""
    note: Optional[str] = Field(default=None, description="Why the line needs no payment")


class MatchInstructionInput(BaseModel):
    transaction_id: str
    payment_id: str


class IgnoreInstructionInput(BaseModel):
    transaction_id: str
    note: Optional[str] = None


class BatchRequest(BaseModel):
    """Request to apply many match/ignore instructions."""
    matches: List[MatchInstructionInput] = Field(default_factory=list)
    ignores: List[IgnoreInstructionInput] = Field(default_factory=list)


class StatementResponse(BaseModel):
    """Response for a statement."""
    id: str
    tenant_id: str
    file_name: str
    file_type: str
    bank_account_id: Optional[str]
    period_start: Optional[date]
    period_end: Optional[date]
    starting_balance: Optional[Decimal]
    ending_balance: Optional[Decimal]
    total_transactions: int
    total_matched: int
    total_pending: int
    percent_matched: Decimal
    status: str
    imported_at: datetime


class TransactionResponse(BaseModel):
    """Response for a statement transaction."""
    id: str
    statement_id: str
    line_number: int
    transaction_date: date
    posting_date: Optional[date]
    direction: str
    amount: Decimal
    description: Optional[str]
    bank_identifier: Optional[str]
    reference: Optional[str]
    bank_category: Optional[str]
    status: str
    payment_id: Optional[str]
    match_method: Optional[str]
    matched_at: Optional[datetime]
    note: Optional[str]


class CandidateResponse(BaseModel):
    payment_id: str
    score: int
    rationale: str
    auto_match: bool
    payment_date: Optional[date]
    amount: Optional[Decimal]
    payment_type: Optional[str]
    order_number: Optional[str]
    customer_name: Optional[str]


class TransactionWithSuggestionsResponse(TransactionResponse):
    suggestions: List[CandidateResponse] = Field(default_factory=list)


class StatementSummaryResponse(BaseModel):
    """Response for statement aggregates."""
    statement_id: str
    file_name: str
    status: str
    total_transactions: int
    total_matched: int
    total_pending: int
    percent_matched: Decimal
    period_start: Optional[date]
    period_end: Optional[date]
    starting_balance: Optional[Decimal]
    ending_balance: Optional[Decimal]


class BatchErrorResponse(BaseModel):
    transaction_id: str
    operation: str
    error: str
    message: str


class BatchResponse(BaseModel):
    """Response for a batch run."""
    matched_count: int
    ignored_count: int
    error_count: int
    errors: List[BatchErrorResponse]


# ==================== Serialization ====================

def _statement_response(statement: StatementDB) -> StatementResponse:
    return StatementResponse(
        id=statement.id,
        tenant_id=statement.tenant_id,
        file_name=statement.file_name,
        file_type=statement.file_type,
        bank_account_id=statement.bank_account_id,
        period_start=statement.period_start,
        period_end=statement.period_end,
        starting_balance=statement.starting_balance,
        ending_balance=statement.ending_balance,
        total_transactions=statement.total_transactions,
        total_matched=statement.total_matched,
        total_pending=statement.total_pending,
        percent_matched=statement.percent_matched,
        status=statement.status.value,
        imported_at=statement.imported_at,
    )


def _transaction_fields(txn: BankTransactionDB) -> dict:
    return dict(
        id=txn.id,
        statement_id=txn.statement_id,
        line_number=txn.line_number,
        transaction_date=txn.transaction_date,
        posting_date=txn.posting_date,
        direction=txn.direction.value,
        amount=txn.amount,
        description=txn.description,
        bank_identifier=txn.bank_identifier,
        reference=txn.reference,
        bank_category=txn.bank_category,
        status=txn.status.value,
        payment_id=txn.payment_id,
        match_method=txn.match_method.value if txn.match_method else None,
        matched_at=txn.matched_at,
        note=txn.note,
    )


def _transaction_response(txn: BankTransactionDB) -> TransactionResponse:
    return TransactionResponse(**_transaction_fields(txn))


def _candidate_response(candidate: MatchCandidate) -> CandidateResponse:
    return CandidateResponse(
        payment_id=candidate.payment_id,
        score=candidate.score,
        rationale=candidate.rationale,
        auto_match=candidate.score >= MatchingEngine.AUTO_MATCH_THRESHOLD,
        payment_date=candidate.payment_date,
        amount=candidate.amount,
        payment_type=candidate.payment_type,
        order_number=candidate.order_number,
        customer_name=candidate.customer_name,
    )


def _to_normalized(item: TransactionInput) -> NormalizedTransaction:
    extra = dict(
        description=item.description,
        bank_identifier=item.bank_identifier,
        reference=item.reference,
        posting_date=item.posting_date,
        bank_category=item.bank_category,
    )
    if item.direction is None:
        return signed_to_normalized(item.transaction_date, item.amount, **extra)
    return NormalizedTransaction(
        transaction_date=item.transaction_date,
        direction=item.direction,
        amount=item.amount,
        **extra
    )


def _fail(action: str, error: Exception, tenant_id: str):
    logger.error(f"Failed to {action}: {error}", exc_info=error)
    capture_exception(error, tenant_id=tenant_id, action=action)
    raise HTTPException(status_code=500, detail=f"Failed to {action}")


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status():
    """
    Get reconciliation module status.

    Returns configuration and availability information.
    """
    settings = get_settings()
    return {
        "module": "reconciliation",
        "status": "operational",
        "version": settings.API_VERSION,
        "features": {
            "statement_import": True,
            "auto_matching": True,
            "manual_matching": True,
            "batch": True
        },
        "thresholds": {
            "auto_match": MatchingEngine.AUTO_MATCH_THRESHOLD,
            "suggestion_min": MatchingEngine.MIN_SCORE,
            "max_suggestions": MatchingEngine.MAX_CANDIDATES
        },
        "candidate_window": {
            "amount": str(settings.RECON_AMOUNT_WINDOW),
            "days": settings.RECON_DATE_WINDOW_DAYS
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.post(
    "/{tenant_id}/statements",
    response_model=StatementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Import statement"
)
async def import_statement(
    tenant_id: str,
    request: ImportStatementRequest,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    Import a parsed bank statement.

    This will:
    1. Reject the file if its fingerprint was already imported for the tenant
    2. Store the statement and its transactions as UNMATCHED
    3. Auto-match credits with a high confidence candidate

    Requires internal API key authentication.
    """
    fingerprint = request.fingerprint
    if not fingerprint:
        if request.raw_content is None:
            raise_invalid_parameter("fingerprint", "fingerprint or raw_content is required")
        fingerprint = compute_fingerprint(request.raw_content.encode("utf-8"))

    try:
        transactions = [_to_normalized(item) for item in request.transactions]
        metadata = StatementMetadata(
            file_name=request.file_name,
            file_type=request.file_type,
            period_start=request.period_start,
            period_end=request.period_end,
            starting_balance=request.starting_balance,
            ending_balance=request.ending_balance,
            bank_account_id=request.bank_account_id,
        )

        coordinator = ReconciliationCoordinator(db)
        statement = await coordinator.import_statement(tenant_id, transactions, fingerprint, metadata)
        return _statement_response(statement)

    except ReconciliationError as e:
        raise_reconciliation_error(e)
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        _fail("import statement", e, tenant_id)


@router.get("/{tenant_id}/statements", summary="List statements")
async def list_statements(
    tenant_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    List imported statements, most recent first.

    Requires internal API key authentication.
    """
    try:
        coordinator = ReconciliationCoordinator(db)
        statements = await coordinator.list_statements(tenant_id, limit=limit, offset=offset)
        return {
            "tenant_id": tenant_id,
            "statements": [_statement_response(s) for s in statements],
            "count": len(statements),
            "limit": limit,
            "offset": offset
        }
    except Exception as e:
        _fail("list statements", e, tenant_id)


@router.get("/{tenant_id}/statements/{statement_id}", summary="Get statement")
async def get_statement(
    tenant_id: str,
    statement_id: str,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    Get a statement with all its transactions.

    Requires internal API key authentication.
    """
    try:
        coordinator = ReconciliationCoordinator(db)
        statement = await coordinator.get_statement(tenant_id, statement_id)
        transactions = await coordinator.list_transactions(tenant_id, statement_id)
        return {
            "statement": _statement_response(statement),
            "transactions": [_transaction_response(t) for t in transactions]
        }
    except ReconciliationError as e:
        raise_reconciliation_error(e)
    except Exception as e:
        _fail("get statement", e, tenant_id)


@router.get(
    "/{tenant_id}/statements/{statement_id}/transactions",
    response_model=List[TransactionWithSuggestionsResponse],
    summary="List transactions with suggestions"
)
async def list_transactions_with_suggestions(
    tenant_id: str,
    statement_id: str,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    List a statement's transactions.

    Unmatched credits carry up to five ranked payment suggestions.

    Requires internal API key authentication.
    """
    try:
        coordinator = ReconciliationCoordinator(db)
        rows = await coordinator.list_transactions_with_suggestions(tenant_id, statement_id)
        return [
            TransactionWithSuggestionsResponse(
                **_transaction_fields(row.transaction),
                suggestions=[_candidate_response(c) for c in row.candidates]
            )
            for row in rows
        ]
    except ReconciliationError as e:
        raise_reconciliation_error(e)
    except Exception as e:
        _fail("list transactions", e, tenant_id)


@router.get(
    "/{tenant_id}/statements/{statement_id}/summary",
    response_model=StatementSummaryResponse,
    summary="Statement summary"
)
async def get_statement_summary(
    tenant_id: str,
    statement_id: str,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    Get reconciliation aggregates for a statement.

    Requires internal API key authentication.
    """
    try:
        coordinator = ReconciliationCoordinator(db)
        statement = await coordinator.get_statement_summary(tenant_id, statement_id)
        return StatementSummaryResponse(
            statement_id=statement.id,
            file_name=statement.file_name,
            status=statement.status.value,
            total_transactions=statement.total_transactions,
            total_matched=statement.total_matched,
            total_pending=statement.total_pending,
            percent_matched=statement.percent_matched,
            period_start=statement.period_start,
            period_end=statement.period_end,
            starting_balance=statement.starting_balance,
            ending_balance=statement.ending_balance,
        )
    except ReconciliationError as e:
        raise_reconciliation_error(e)
    except Exception as e:
        _fail("get statement summary", e, tenant_id)


@router.post("/{tenant_id}/statements/{statement_id}/auto-match", summary="Run auto-match")
async def run_auto_match(
    tenant_id: str,
    statement_id: str,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    Re-run auto-matching for a statement's open credits.

    Requires internal API key authentication.
    """
    try:
        coordinator = ReconciliationCoordinator(db)
        matched = await coordinator.auto_match(tenant_id, statement_id)
        statement = await coordinator.get_statement(tenant_id, statement_id)
        return {
            "auto_matched": matched,
            "statement": _statement_response(statement)
        }
    except ReconciliationError as e:
        raise_reconciliation_error(e)
    except Exception as e:
        _fail("run auto-match", e, tenant_id)


@router.post(
    "/{tenant_id}/transactions/{transaction_id}/match",
    response_model=TransactionResponse,
    summary="Match transaction"
)
async def match_transaction(
    tenant_id: str,
    transaction_id: str,
    request: MatchRequest,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    Manually match a transaction to a payment.

    Requires internal API key authentication.
    """
    try:
        coordinator = ReconciliationCoordinator(db)
        txn = await coordinator.match_manually(tenant_id, transaction_id, request.payment_id)
        return _transaction_response(txn)
    except ReconciliationError as e:
        raise_reconciliation_error(e)
    except Exception as e:
        _fail("match transaction", e, tenant_id)


@router.post(
    "/{tenant_id}/transactions/{transaction_id}/ignore",
    response_model=TransactionResponse,
    summary="Ignore transaction"
)
async def ignore_transaction(
    tenant_id: str,
    transaction_id: str,
    request: IgnoreRequest,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    Mark a transaction as needing no payment.

    Requires internal API key authentication.
    """
    try:
        coordinator = ReconciliationCoordinator(db)
        txn = await coordinator.ignore(tenant_id, transaction_id, request.note)
        return _transaction_response(txn)
    except ReconciliationError as e:
        raise_reconciliation_error(e)
    except Exception as e:
        _fail("ignore transaction", e, tenant_id)


@router.post(
    "/{tenant_id}/transactions/{transaction_id}/unmatch",
    response_model=TransactionResponse,
    summary="Unmatch transaction"
)
async def unmatch_transaction(
    tenant_id: str,
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    Undo a match and release the payment.

    Requires internal API key authentication.
    """
    try:
        coordinator = ReconciliationCoordinator(db)
        txn = await coordinator.unmatch(tenant_id, transaction_id)
        return _transaction_response(txn)
    except ReconciliationError as e:
        raise_reconciliation_error(e)
    except Exception as e:
        _fail("unmatch transaction", e, tenant_id)


@router.post("/{tenant_id}/batch", response_model=BatchResponse, summary="Batch reconcile")
async def batch_reconcile(
    tenant_id: str,
    request: BatchRequest,
    db: AsyncSession = Depends(get_db),
    _service: InternalService = Depends(require_internal_service)
):
    """
    Apply match instructions, then ignore instructions.

    Each item is applied on its own; failures are reported per item and
    never fail the whole call.

    Requires internal API key authentication.
    """
    try:
        reconciler = BatchReconciler(ReconciliationCoordinator(db))
        result = await reconciler.batch_reconcile(
            tenant_id,
            [MatchInstruction(m.transaction_id, m.payment_id) for m in request.matches],
            [IgnoreInstruction(i.transaction_id, i.note) for i in request.ignores]
        )
        return BatchResponse(
            matched_count=result.matched_count,
            ignored_count=result.ignored_count,
            error_count=result.error_count,
            errors=[BatchErrorResponse(**e.to_dict()) for e in result.errors]
        )
    except Exception as e:
        _fail("run batch", e, tenant_id)
