"""
Payment Store

Read/claim access to payment records owned by the payment module.

claim() and release() are single conditional UPDATE statements: the row
filter carries the expected state, so two concurrent claims on the same
payment cannot both report success.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.reconciliation_models import PaymentDB
from reconciliation.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class PaymentStore(ABC):
    """Contract the reconciliation core needs from the payment module."""

    @abstractmethod
    async def find_in_window(
        self,
        tenant_id: str,
        amount_min: Decimal,
        amount_max: Decimal,
        date_from: date,
        date_to: date
    ) -> List[PaymentDB]:
        """Unreconciled payments with amount and date inside the (inclusive) window."""

    @abstractmethod
    async def get(self, tenant_id: str, payment_id: str) -> PaymentDB:
        """Payment by id; NotFoundError if it does not exist for the tenant."""

    @abstractmethod
    async def claim(self, tenant_id: str, payment_id: str, transaction_id: str) -> bool:
        """Mark reconciled and link to the transaction. False if already claimed."""

    @abstractmethod
    async def release(self, tenant_id: str, payment_id: str, transaction_id: str) -> bool:
        """Undo a claim held by transaction_id. False if it is not held by it."""


class SqlPaymentStore(PaymentStore):
    """PaymentStore over the payments table, sharing the caller's session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_in_window(
        self,
        tenant_id: str,
        amount_min: Decimal,
        amount_max: Decimal,
        date_from: date,
        date_to: date
    ) -> List[PaymentDB]:
        result = await self.session.execute(
            select(PaymentDB)
            .where(
                PaymentDB.tenant_id == tenant_id,
                PaymentDB.reconciled.is_(False),
                PaymentDB.amount >= amount_min,
                PaymentDB.amount <= amount_max,
                PaymentDB.payment_date >= date_from,
                PaymentDB.payment_date <= date_to
            )
            .order_by(PaymentDB.payment_date, PaymentDB.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get(self, tenant_id: str, payment_id: str) -> PaymentDB:
        payment = await self.find(tenant_id, payment_id)
        if payment is None:
            raise NotFoundError("payment", payment_id)
        return payment

    async def find(self, tenant_id: str, payment_id: str) -> Optional[PaymentDB]:
        result = await self.session.execute(
            select(PaymentDB)
            .where(PaymentDB.id == payment_id, PaymentDB.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def claim(self, tenant_id: str, payment_id: str, transaction_id: str) -> bool:
        result = await self.session.execute(
            update(PaymentDB)
            .where(
                PaymentDB.id == payment_id,
                PaymentDB.tenant_id == tenant_id,
                PaymentDB.reconciled.is_(False)
            )
            .values(
                reconciled=True,
                bank_transaction_id=transaction_id,
                updated_at=datetime.now(timezone.utc)
            )
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        if not claimed:
            logger.info(
                f"Payment {payment_id} already claimed",
                extra={"tenant_id": tenant_id, "payment_id": payment_id, "transaction_id": transaction_id}
            )
        return claimed

    async def release(self, tenant_id: str, payment_id: str, transaction_id: str) -> bool:
        result = await self.session.execute(
            update(PaymentDB)
            .where(
                PaymentDB.id == payment_id,
                PaymentDB.tenant_id == tenant_id,
                PaymentDB.reconciled.is_(True),
                PaymentDB.bank_transaction_id == transaction_id
            )
            .values(
                reconciled=False,
                bank_transaction_id=None,
                updated_at=datetime.now(timezone.utc)
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
