"""
Unit Tests for the Statement Aggregate Tracker

Run with: pytest backend/tests/test_aggregate_tracker.py -v
"""

import pytest
from datetime import date
from decimal import Decimal

from database.reconciliation_models import StatementStatus, MatchMethod
from reconciliation.importer import StatementMetadata
from reconciliation.services.aggregate_tracker import (
    StatementAggregateTracker,
    derive_status,
    percent_matched,
)
from reconciliation.services.statement_store import StatementStore

from conftest import TENANT_ID, credit


class TestPercentMatched:
    """Test percentage rounding."""

    @pytest.mark.parametrize("total, matched, expected", [
        (0, 0, "0.00"),
        (3, 1, "33.33"),
        (3, 2, "66.67"),
        (8, 1, "12.50"),
        (800, 1, "0.13"),   # 0.125 rounds half-up
        (4, 4, "100.00"),
    ])
    def test_rounding(self, total, matched, expected):
        assert percent_matched(total, matched) == Decimal(expected)


class TestDeriveStatus:
    """Test statement status derivation."""

    def test_empty_statement_is_pending(self):
        assert derive_status(0, 0) == StatementStatus.PENDING

    def test_nothing_resolved_is_pending(self):
        assert derive_status(3, 3) == StatementStatus.PENDING

    def test_partially_resolved_is_in_progress(self):
        assert derive_status(3, 1) == StatementStatus.IN_PROGRESS

    def test_nothing_unmatched_is_completed(self):
        assert derive_status(3, 0) == StatementStatus.COMPLETED


class TestRecompute:
    """Test recomputation against stored transactions."""

    @pytest.mark.asyncio
    async def test_counts_follow_transactions(self, db_session):
        store = StatementStore(db_session)
        tracker = StatementAggregateTracker(db_session)
        statement = await store.create_statement(
            TENANT_ID, "fp", StatementMetadata(file_name="a.ofx"),
            [credit("1.00", date(2024, 1, d)) for d in (1, 2, 3)]
        )
        first, second, third = await store.list_transactions(TENANT_ID, statement.id)

        await tracker.recompute(statement)
        assert statement.total_transactions == 3
        assert statement.total_matched == 0
        assert statement.status == StatementStatus.PENDING

        await store.mark_matched(TENANT_ID, first.id, "pay-1", MatchMethod.MANUAL)
        await store.mark_ignored(TENANT_ID, second.id, None)
        await tracker.recompute(statement)

        assert statement.total_matched == 1
        assert statement.total_pending == 2   # ignored lines count as pending
        assert statement.percent_matched == Decimal("33.33")
        assert statement.status == StatementStatus.IN_PROGRESS

        await store.mark_ignored(TENANT_ID, third.id, None)
        await tracker.recompute(statement)

        assert statement.status == StatementStatus.COMPLETED
        assert statement.total_matched <= statement.total_transactions
