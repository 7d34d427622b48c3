"""
Unit Tests for Batch Reconciliation

Run with: pytest backend/tests/test_batch_reconciler.py -v
"""

import pytest
from datetime import date
from unittest.mock import AsyncMock

from database.reconciliation_models import ReconciliationStatus
from reconciliation.exceptions import NotFoundError
from reconciliation.services.batch_reconciler import (
    BatchReconciler,
    MatchInstruction,
    IgnoreInstruction,
    DEFAULT_IGNORE_NOTE,
)

from conftest import TENANT_ID, credit

JAN_10 = date(2024, 1, 10)


class TestBatchReconcile:
    """Test batch semantics against the real coordinator."""

    @pytest.fixture
    def reconciler(self, coordinator):
        return BatchReconciler(coordinator)

    @pytest.mark.asyncio
    async def test_partial_failure_applies_valid_items(self, coordinator, reconciler, make_payment, import_statement):
        statement = await import_statement([
            credit("10.00", date(2024, 1, 3)),
            credit("20.00", date(2024, 1, 4)),
            credit("30.00", date(2024, 1, 5)),
        ])
        t1, t2, t3 = await coordinator.list_transactions(TENANT_ID, statement.id)
        p1 = await make_payment("11.00", date(2024, 3, 1))
        p2 = await make_payment("22.00", date(2024, 3, 1))
        p3 = await make_payment("33.00", date(2024, 3, 1))
        p4 = await make_payment("44.00", date(2024, 3, 1))
        await coordinator.match_manually(TENANT_ID, t3.id, p3.id)

        result = await reconciler.batch_reconcile(
            TENANT_ID,
            [
                MatchInstruction(t1.id, p1.id),
                MatchInstruction(t2.id, p2.id),
                MatchInstruction(t3.id, p4.id),   # already MATCHED
            ],
            []
        )

        assert (result.matched_count, result.ignored_count, result.error_count) == (2, 0, 1)
        assert result.errors[0].transaction_id == t3.id
        assert result.errors[0].error == "invalid_state"
        assert result.errors[0].operation == "match"

        summary = await coordinator.get_statement_summary(TENANT_ID, statement.id)
        assert summary.total_matched == 3

    @pytest.mark.asyncio
    async def test_ignores_use_default_note(self, coordinator, reconciler, import_statement):
        statement = await import_statement([credit("10.00", JAN_10), credit("20.00", JAN_10)])
        first, second = await coordinator.list_transactions(TENANT_ID, statement.id)

        result = await reconciler.batch_reconcile(
            TENANT_ID,
            [],
            [IgnoreInstruction(first.id), IgnoreInstruction(second.id, "Tarifa bancária")]
        )

        assert result.ignored_count == 2
        first = await coordinator.statements.get_transaction(TENANT_ID, first.id)
        second = await coordinator.statements.get_transaction(TENANT_ID, second.id)
        assert first.status == ReconciliationStatus.IGNORED
        assert first.note == DEFAULT_IGNORE_NOTE
        assert second.note == "Tarifa bancária"

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_reported(self, reconciler):
        result = await reconciler.batch_reconcile(TENANT_ID, [], [IgnoreInstruction("missing")])

        assert result.error_count == 1
        assert result.errors[0].error == "not_found"
        assert result.errors[0].to_dict()["transaction_id"] == "missing"

    @pytest.mark.asyncio
    async def test_empty_batch(self, reconciler):
        result = await reconciler.batch_reconcile(TENANT_ID)

        assert (result.matched_count, result.ignored_count, result.error_count) == (0, 0, 0)
        assert result.errors == []


class TestBatchOrdering:
    """Test instruction ordering with a mocked coordinator."""

    @pytest.mark.asyncio
    async def test_matches_run_before_ignores(self):
        calls = []
        coordinator = AsyncMock()
        coordinator.match_manually.side_effect = lambda t, tx, p: calls.append(("match", tx))
        coordinator.ignore.side_effect = lambda t, tx, note: calls.append(("ignore", tx))

        await BatchReconciler(coordinator).batch_reconcile(
            TENANT_ID,
            [MatchInstruction("t1", "p1"), MatchInstruction("t2", "p2")],
            [IgnoreInstruction("t3")]
        )

        assert calls == [("match", "t1"), ("match", "t2"), ("ignore", "t3")]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_counted(self):
        coordinator = AsyncMock()
        coordinator.match_manually.side_effect = [RuntimeError("database went away"), None]
        coordinator.ignore.side_effect = NotFoundError("transaction", "t3")

        result = await BatchReconciler(coordinator).batch_reconcile(
            TENANT_ID,
            [MatchInstruction("t1", "p1"), MatchInstruction("t2", "p2")],
            [IgnoreInstruction("t3")]
        )

        assert result.matched_count == 1
        assert result.error_count == 2
        assert [e.error for e in result.errors] == ["internal_error", "not_found"]
