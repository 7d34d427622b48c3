"""
Reconciliation error taxonomy.

Every error carries the kind of entity involved and its identifier so callers
can report exactly what failed.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    kind = "reconciliation_error"

    def __init__(self, message: str, entity: Optional[str] = None, entity_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "entity": self.entity,
            "id": self.entity_id,
            "message": self.message,
        }


class DuplicateImportError(ReconciliationError):
    """The statement fingerprint was already imported for this tenant."""

    kind = "duplicate_import"

    def __init__(self, fingerprint: str, existing_statement_id: Optional[str] = None):
        super().__init__(
            "This statement file was already imported",
            entity="statement",
            entity_id=existing_statement_id,
        )
        self.fingerprint = fingerprint


class NotFoundError(ReconciliationError):
    """Statement, transaction or payment does not exist for the tenant."""

    kind = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity.capitalize()} not found: {entity_id}", entity=entity, entity_id=entity_id)


class InvalidStateError(ReconciliationError):
    """Operation not allowed in the current transaction/payment state."""

    kind = "invalid_state"


class ConflictError(ReconciliationError):
    """A concurrent operation won the claim on the same payment or transaction."""

    kind = "conflict"
