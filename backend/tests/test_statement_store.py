"""
Unit Tests for the Statement Store

Tests statement creation, tenant scoping and the conditional status
transitions of statement transactions.

Run with: pytest backend/tests/test_statement_store.py -v
"""

import pytest
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from database.reconciliation_models import (
    ReconciliationStatus,
    TransactionDirection,
    MatchMethod,
)
from reconciliation.exceptions import NotFoundError
from reconciliation.importer import StatementMetadata
from reconciliation.services.statement_store import StatementStore

from conftest import TENANT_ID, OTHER_TENANT_ID, credit, debit


@pytest.fixture
def store(db_session):
    return StatementStore(db_session)


async def _create(store, db_session, transactions, fingerprint="fp-1", tenant_id=TENANT_ID):
    statement = await store.create_statement(
        tenant_id, fingerprint, StatementMetadata(file_name="extrato.ofx"), transactions
    )
    await db_session.commit()
    return statement


class TestCreateStatement:
    """Test statement creation."""

    @pytest.mark.asyncio
    async def test_creates_unmatched_transactions(self, store, db_session):
        statement = await _create(store, db_session, [
            credit("10.00", date(2024, 1, 3)),
            debit("4.50", date(2024, 1, 2), description="Tarifa"),
        ])

        transactions = await store.list_transactions(TENANT_ID, statement.id)

        assert len(transactions) == 2
        assert all(t.status == ReconciliationStatus.UNMATCHED for t in transactions)
        # Bank order: by transaction date
        assert transactions[0].direction == TransactionDirection.DEBIT
        assert transactions[0].description == "Tarifa"
        assert transactions[1].amount == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_period_defaults_to_transaction_dates(self, store, db_session):
        statement = await _create(store, db_session, [
            credit("10.00", date(2024, 1, 3)),
            credit("20.00", date(2024, 1, 28)),
        ])

        assert statement.period_start == date(2024, 1, 3)
        assert statement.period_end == date(2024, 1, 28)

    @pytest.mark.asyncio
    async def test_fingerprint_lookup_is_tenant_scoped(self, store, db_session):
        statement = await _create(store, db_session, [], fingerprint="same")

        assert (await store.find_by_fingerprint(TENANT_ID, "same")).id == statement.id
        assert await store.find_by_fingerprint(OTHER_TENANT_ID, "same") is None

    @pytest.mark.asyncio
    async def test_duplicate_fingerprint_violates_constraint(self, store, db_session):
        await _create(store, db_session, [], fingerprint="same")

        with pytest.raises(IntegrityError):
            await _create(store, db_session, [], fingerprint="same")


class TestLookups:
    """Test tenant-scoped reads."""

    @pytest.mark.asyncio
    async def test_foreign_statement_is_not_found(self, store, db_session):
        statement = await _create(store, db_session, [])

        with pytest.raises(NotFoundError):
            await store.get_statement(OTHER_TENANT_ID, statement.id)

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_not_found(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            await store.get_transaction(TENANT_ID, "nope")

        assert exc_info.value.entity == "transaction"

    @pytest.mark.asyncio
    async def test_filters_by_status_and_direction(self, store, db_session):
        statement = await _create(store, db_session, [
            credit("10.00", date(2024, 1, 3)),
            debit("4.50", date(2024, 1, 2)),
        ])

        credits = await store.list_transactions(
            TENANT_ID, statement.id,
            status=ReconciliationStatus.UNMATCHED,
            direction=TransactionDirection.CREDIT
        )

        assert len(credits) == 1
        assert credits[0].direction == TransactionDirection.CREDIT

    @pytest.mark.asyncio
    async def test_same_day_lines_keep_file_order(self, store, db_session):
        descriptions = [f"PIX {i}" for i in range(8)]
        statement = await _create(store, db_session, [
            credit("50.00", date(2024, 1, 5), description=d) for d in descriptions
        ] + [credit("1.00", date(2024, 1, 4), description="EARLIER")])

        listed = await store.list_transactions(TENANT_ID, statement.id)

        assert [t.description for t in listed] == ["EARLIER"] + descriptions
        assert [t.line_number for t in listed] == [8] + list(range(8))


class TestTransitions:
    """Test conditional status transitions."""

    @pytest.mark.asyncio
    async def test_mark_matched_only_from_unmatched(self, store, db_session):
        statement = await _create(store, db_session, [credit("10.00", date(2024, 1, 3))])
        txn = (await store.list_transactions(TENANT_ID, statement.id))[0]

        assert await store.mark_matched(TENANT_ID, txn.id, "pay-1", MatchMethod.MANUAL) is True
        assert await store.mark_matched(TENANT_ID, txn.id, "pay-2", MatchMethod.MANUAL) is False

        txn = await store.get_transaction(TENANT_ID, txn.id)
        assert txn.status == ReconciliationStatus.MATCHED
        assert txn.payment_id == "pay-1"
        assert txn.match_method == MatchMethod.MANUAL
        assert txn.matched_at is not None

    @pytest.mark.asyncio
    async def test_ignored_cannot_be_matched(self, store, db_session):
        statement = await _create(store, db_session, [credit("10.00", date(2024, 1, 3))])
        txn = (await store.list_transactions(TENANT_ID, statement.id))[0]

        assert await store.mark_ignored(TENANT_ID, txn.id, "Transferência interna") is True
        assert await store.mark_matched(TENANT_ID, txn.id, "pay-1", MatchMethod.MANUAL) is False

        txn = await store.get_transaction(TENANT_ID, txn.id)
        assert txn.note == "Transferência interna"

    @pytest.mark.asyncio
    async def test_mark_unmatched_clears_match_fields(self, store, db_session):
        statement = await _create(store, db_session, [credit("10.00", date(2024, 1, 3))])
        txn = (await store.list_transactions(TENANT_ID, statement.id))[0]
        await store.mark_matched(TENANT_ID, txn.id, "pay-1", MatchMethod.AUTOMATIC)

        assert await store.mark_unmatched(TENANT_ID, txn.id, "other-pay") is False
        assert await store.mark_unmatched(TENANT_ID, txn.id, "pay-1") is True

        txn = await store.get_transaction(TENANT_ID, txn.id)
        assert txn.status == ReconciliationStatus.UNMATCHED
        assert txn.payment_id is None
        assert txn.match_method is None
        assert txn.matched_at is None

    @pytest.mark.asyncio
    async def test_payment_cannot_back_two_transactions(self, store, db_session):
        statement = await _create(store, db_session, [
            credit("10.00", date(2024, 1, 3)),
            credit("10.00", date(2024, 1, 4)),
        ])
        first, second = await store.list_transactions(TENANT_ID, statement.id)
        await store.mark_matched(TENANT_ID, first.id, "pay-1", MatchMethod.MANUAL)

        with pytest.raises(IntegrityError):
            await store.mark_matched(TENANT_ID, second.id, "pay-1", MatchMethod.MANUAL)
