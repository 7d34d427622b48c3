"""
Unit Tests for the Payment Store

Tests windowed candidate lookup and the atomic claim/release statements.

Run with: pytest backend/tests/test_payment_store.py -v
"""

import pytest
from datetime import date
from decimal import Decimal

from reconciliation.exceptions import NotFoundError
from reconciliation.services.payment_store import SqlPaymentStore

from conftest import TENANT_ID, OTHER_TENANT_ID


class TestFindInWindow:
    """Test candidate pool lookup."""

    @pytest.mark.asyncio
    async def test_returns_payments_inside_window(self, db_session, make_payment):
        inside = await make_payment("100.50", date(2024, 1, 12))
        await make_payment("102.00", date(2024, 1, 12))      # amount outside
        await make_payment("100.00", date(2024, 1, 20))      # date outside
        store = SqlPaymentStore(db_session)

        pool = await store.find_in_window(
            TENANT_ID, Decimal("99.00"), Decimal("101.00"), date(2024, 1, 5), date(2024, 1, 15)
        )

        assert [p.id for p in pool] == [inside.id]

    @pytest.mark.asyncio
    async def test_excludes_reconciled_payments(self, db_session, make_payment):
        claimed = await make_payment("100.00", date(2024, 1, 10))
        free = await make_payment("100.00", date(2024, 1, 11))
        store = SqlPaymentStore(db_session)
        await store.claim(TENANT_ID, claimed.id, "txn-1")

        pool = await store.find_in_window(
            TENANT_ID, Decimal("99.00"), Decimal("101.00"), date(2024, 1, 5), date(2024, 1, 15)
        )

        assert [p.id for p in pool] == [free.id]

    @pytest.mark.asyncio
    async def test_is_tenant_scoped(self, db_session, make_payment):
        await make_payment("100.00", date(2024, 1, 10), tenant_id=OTHER_TENANT_ID)
        store = SqlPaymentStore(db_session)

        pool = await store.find_in_window(
            TENANT_ID, Decimal("99.00"), Decimal("101.00"), date(2024, 1, 5), date(2024, 1, 15)
        )

        assert pool == []


class TestClaimRelease:
    """Test exclusivity of payment claims."""

    @pytest.mark.asyncio
    async def test_second_claim_loses(self, db_session, make_payment):
        payment = await make_payment("100.00", date(2024, 1, 10))
        store = SqlPaymentStore(db_session)

        first = await store.claim(TENANT_ID, payment.id, "txn-1")
        second = await store.claim(TENANT_ID, payment.id, "txn-2")

        assert first is True
        assert second is False
        reloaded = await store.get(TENANT_ID, payment.id)
        assert reloaded.reconciled is True
        assert reloaded.bank_transaction_id == "txn-1"

    @pytest.mark.asyncio
    async def test_release_only_by_holder(self, db_session, make_payment):
        payment = await make_payment("100.00", date(2024, 1, 10))
        store = SqlPaymentStore(db_session)
        await store.claim(TENANT_ID, payment.id, "txn-1")

        assert await store.release(TENANT_ID, payment.id, "txn-2") is False
        assert await store.release(TENANT_ID, payment.id, "txn-1") is True

        reloaded = await store.get(TENANT_ID, payment.id)
        assert reloaded.reconciled is False
        assert reloaded.bank_transaction_id is None

    @pytest.mark.asyncio
    async def test_claim_from_other_tenant_fails(self, db_session, make_payment):
        payment = await make_payment("100.00", date(2024, 1, 10))
        store = SqlPaymentStore(db_session)

        assert await store.claim(OTHER_TENANT_ID, payment.id, "txn-1") is False

    @pytest.mark.asyncio
    async def test_get_unknown_payment_raises_not_found(self, db_session):
        store = SqlPaymentStore(db_session)

        with pytest.raises(NotFoundError) as exc_info:
            await store.get(TENANT_ID, "missing")

        assert exc_info.value.entity == "payment"
        assert exc_info.value.entity_id == "missing"
