"""
Shared fixtures for the reconciliation test suite.

Every test gets its own in-memory SQLite database (aiosqlite + StaticPool)
with the full schema created through init_db().
"""

import os

# Must be set before config.get_settings() is first called
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["INTERNAL_API_KEY"] = "test-internal-key-0123456789abcdef"
os.environ["SENTRY_DSN"] = ""

import uuid
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from database import build_engine, build_session_factory, init_db, PaymentDB
from reconciliation.importer import NormalizedTransaction, StatementMetadata
from reconciliation.services.coordinator import ReconciliationCoordinator

TEST_API_KEY = os.environ["INTERNAL_API_KEY"]
TENANT_ID = "tenant-0001"
OTHER_TENANT_ID = "tenant-0002"


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database with all tables."""
    engine = build_engine("sqlite+aiosqlite://")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    factory = build_session_factory(db_engine)
    async with factory() as session:
        yield session


@pytest.fixture
def coordinator(db_session):
    return ReconciliationCoordinator(db_session)


@pytest.fixture
def make_payment(db_session):
    """Factory: insert an unreconciled payment and return it."""
    async def _make(amount, payment_date, tenant_id=TENANT_ID, **kwargs):
        payment = PaymentDB(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            amount=Decimal(amount),
            payment_date=payment_date,
            **kwargs
        )
        db_session.add(payment)
        await db_session.commit()
        return payment
    return _make


def credit(amount, transaction_date: date, **kwargs) -> NormalizedTransaction:
    return NormalizedTransaction(
        transaction_date=transaction_date,
        direction="CREDIT",
        amount=Decimal(amount),
        **kwargs
    )


def debit(amount, transaction_date: date, **kwargs) -> NormalizedTransaction:
    return NormalizedTransaction(
        transaction_date=transaction_date,
        direction="DEBIT",
        amount=Decimal(amount),
        **kwargs
    )


@pytest.fixture
def import_statement(coordinator):
    """Factory: import transactions as a new statement (unique fingerprint per call)."""
    async def _import(transactions, tenant_id=TENANT_ID, fingerprint=None, file_name="extrato.ofx"):
        return await coordinator.import_statement(
            tenant_id,
            transactions,
            fingerprint or uuid.uuid4().hex,
            StatementMetadata(file_name=file_name)
        )
    return _import
