"""
Payment Record Tracker.

Tracks push-payment attempts keyed by the gateway CheckoutRequestID and
advances their state machine:

    initiated -> completed | failed     (gateway callback)
    completed -> reversed               (full invoice reversal, bulk)

There is no way out of failed or reversed.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.core.exceptions import NotFoundError, InvalidTransitionError, ConflictError
from payments_backend.app.core.reliability import bounded
from payments_backend.app.models.billing_enums import PaymentStatus
from payments_backend.app.models.payment_record import PaymentRecord

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PaymentStatus.INITIATED: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.REVERSED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REVERSED: set(),
}


def can_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


class PaymentRecordTracker:

    def __init__(self, db: AsyncSession, timeout_seconds: float = 10.0):
        self.db = db
        self.timeout_seconds = timeout_seconds

    @bounded("payment.create")
    async def create_payment_record(
        self,
        invoice_id: str,
        order_id: str,
        checkout_request_id: str,
        merchant_request_id: str,
        phone: str,
        amount: float,
    ) -> PaymentRecord:
        record = PaymentRecord(
            invoice_id=invoice_id,
            order_id=order_id,
            checkout_request_id=checkout_request_id,
            merchant_request_id=merchant_request_id,
            phone=phone,
            amount=amount,
            status=PaymentStatus.INITIATED,
        )
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                "Payment record already exists for checkout request",
                details={"checkout_request_id": checkout_request_id}
            )
        return record

    @bounded("payment.get_by_checkout")
    async def get_by_checkout_id(self, checkout_request_id: str) -> PaymentRecord:
        result = await self.db.execute(
            select(PaymentRecord).where(PaymentRecord.checkout_request_id == checkout_request_id)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise NotFoundError("Payment record", checkout_request_id)
        return record

    @bounded("payment.list_for_invoice")
    async def list_for_invoice(self, invoice_id: str) -> list[PaymentRecord]:
        result = await self.db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.invoice_id == invoice_id)
            .order_by(PaymentRecord.created_at)
        )
        return list(result.scalars().all())

    @bounded("payment.update_status")
    async def update_payment_status(
        self,
        checkout_request_id: str,
        status: PaymentStatus,
        receipt_number: Optional[str] = None,
        transaction_date: Optional[str] = None,
    ) -> PaymentRecord:
        """
        Move a record out of `initiated`.

        Raises:
            NotFoundError: unknown checkout id
            InvalidTransitionError: the record already left `initiated`
        """
        result = await self.db.execute(
            select(PaymentRecord).where(PaymentRecord.checkout_request_id == checkout_request_id)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise NotFoundError("Payment record", checkout_request_id)

        status = PaymentStatus(status)
        if status == PaymentStatus.REVERSED or not can_transition(record.status, status):
            raise InvalidTransitionError(record.status.value, status.value)

        record.status = status
        record.mpesa_receipt_number = receipt_number or None
        record.transaction_date = transaction_date or None
        await self.db.flush()

        logger.info("Payment %s moved to %s", checkout_request_id, status.value)
        return record

    @bounded("payment.reverse_for_invoice")
    async def reverse_payments_for_invoice(self, invoice_id: str) -> int:
        """
        Bulk-transition the invoice's completed records to reversed.

        Returns:
            Number of records transitioned
        """
        result = await self.db.execute(
            select(PaymentRecord)
            .where(
                PaymentRecord.invoice_id == invoice_id,
                PaymentRecord.status == PaymentStatus.COMPLETED,
            )
            .with_for_update()
        )
        records = list(result.scalars().all())
        for record in records:
            record.status = PaymentStatus.REVERSED
        await self.db.flush()

        count = len(records)
        logger.info("Marked %d payment record(s) reversed for invoice %s", count, invoice_id)
        return count
