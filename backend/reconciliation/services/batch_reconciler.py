"""
Batch reconciliation.

Applies many match/ignore instructions, one unit of work per item. A failing
item is recorded and the batch moves on; the call itself never fails because
of a single item.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from reconciliation.exceptions import ReconciliationError
from reconciliation.services.coordinator import (
    ReconciliationAuditEvent,
    ReconciliationCoordinator,
    log_reconciliation_event,
)

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_NOTE = "Ignored in batch"


@dataclass
class MatchInstruction:
    transaction_id: str
    payment_id: str


@dataclass
class IgnoreInstruction:
    transaction_id: str
    note: Optional[str] = None


@dataclass
class BatchItemError:
    transaction_id: str
    operation: str
    error: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "operation": self.operation,
            "error": self.error,
            "message": self.message,
        }


@dataclass
class BatchResult:
    matched_count: int = 0
    ignored_count: int = 0
    error_count: int = 0
    errors: List[BatchItemError] = field(default_factory=list)


class BatchReconciler:
    """Runs instructions through the coordinator, matches first, then ignores."""

    def __init__(self, coordinator: ReconciliationCoordinator):
        self.coordinator = coordinator

    async def batch_reconcile(
        self,
        tenant_id: str,
        match_instructions: Iterable[MatchInstruction] = (),
        ignore_instructions: Iterable[IgnoreInstruction] = ()
    ) -> BatchResult:
        result = BatchResult()

        for instruction in match_instructions:
            try:
                await self.coordinator.match_manually(
                    tenant_id, instruction.transaction_id, instruction.payment_id
                )
                result.matched_count += 1
            except ReconciliationError as e:
                self._record(result, instruction.transaction_id, "match", e.kind, e.message)
            except Exception as e:
                logger.exception(f"Unexpected error in batch match for transaction {instruction.transaction_id}")
                self._record(result, instruction.transaction_id, "match", "internal_error", str(e))

        for instruction in ignore_instructions:
            try:
                await self.coordinator.ignore(
                    tenant_id, instruction.transaction_id, instruction.note or DEFAULT_IGNORE_NOTE
                )
                result.ignored_count += 1
            except ReconciliationError as e:
                self._record(result, instruction.transaction_id, "ignore", e.kind, e.message)
            except Exception as e:
                logger.exception(f"Unexpected error in batch ignore for transaction {instruction.transaction_id}")
                self._record(result, instruction.transaction_id, "ignore", "internal_error", str(e))

        log_reconciliation_event(
            ReconciliationAuditEvent.BATCH_COMPLETED,
            tenant_id,
            {
                "matched": result.matched_count,
                "ignored": result.ignored_count,
                "errors": result.error_count
            },
            actor="user"
        )
        return result

    def _record(self, result: BatchResult, transaction_id: str, operation: str, kind: str, message: str):
        logger.warning(
            f"Batch {operation} failed for transaction {transaction_id}: {message}",
            extra={"transaction_id": transaction_id, "error_kind": kind}
        )
        result.error_count += 1
        result.errors.append(BatchItemError(transaction_id, operation, kind, message))
