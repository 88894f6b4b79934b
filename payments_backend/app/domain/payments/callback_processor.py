"""
M-Pesa Callback Processor (Domain Logic).

Reconciles the gateway's asynchronous STK push result into the payment
record and, on success, into the invoice ledger.

The gateway retries any callback that is not acknowledged, so once the
payment record has been found every outcome is acknowledged. Settlements
that could not be committed are kept in the reconciliation failure log.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.core.exceptions import NotFoundError
from payments_backend.app.domain.ledger.invoice_ledger import InvoiceLedger, LEDGER_DATE_FORMAT
from payments_backend.app.gateway.credentials import MPESA_TIMESTAMP_FORMAT
from payments_backend.app.models.billing_enums import PaymentStatus
from payments_backend.app.schemas.payment import StkCallbackEnvelope
from payments_backend.app.services.payment_records import PaymentRecordTracker
from payments_backend.app.services.reconciliation import ReconciliationFailureLog, ReconciliationTask

logger = logging.getLogger(__name__)

RECEIPT_NUMBER_ITEM = "MpesaReceiptNumber"
TRANSACTION_DATE_ITEM = "TransactionDate"

ACK_RECEIVED = {"ResultCode": "0", "ResultDesc": "Callback received"}
ACK_PAYMENT_NOT_FOUND = {"ResultCode": "1", "ResultDesc": "Payment not found"}
ACK_INVALID_PAYLOAD = {"ResultCode": "1", "ResultDesc": "Invalid callback payload"}


def ledger_date_from_transaction(transaction_date: Optional[str], today: date) -> str:
    """
    Convert a gateway YYYYMMDDHHmmss stamp to a YYYY-MM-DD ledger key.

    Falls back to `today` when the stamp is missing or unparseable.
    """
    if transaction_date:
        try:
            parsed = datetime.strptime(transaction_date, MPESA_TIMESTAMP_FORMAT)
            return parsed.strftime(LEDGER_DATE_FORMAT)
        except ValueError:
            logger.warning("Unparseable M-Pesa TransactionDate %r, using today", transaction_date)
    return today.strftime(LEDGER_DATE_FORMAT)


def _as_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class CallbackProcessor:

    def __init__(
        self,
        db: AsyncSession,
        ledger: InvoiceLedger,
        tracker: PaymentRecordTracker,
        failures: ReconciliationFailureLog,
        today: Callable[[], date] = date.today,
    ):
        self.db = db
        self.ledger = ledger
        self.tracker = tracker
        self.failures = failures
        self.today = today

    async def process(self, envelope: StkCallbackEnvelope) -> Dict[str, str]:
        """
        Apply one STK callback.

        Flow:
        1. Find the payment record (unknown checkout id -> ResultCode "1")
        2. ResultCode 0 -> completed, anything else -> failed
        3. Update the record with receipt number and transaction date
        4. On completion, record the full invoice amount in the ledger
        5. Commit 3 and 4 together

        Returns:
            Acknowledgement body for the gateway
        """
        callback = envelope.body.stk_callback
        checkout_id = callback.checkout_request_id

        # 1. Lookup
        try:
            record = await self.tracker.get_by_checkout_id(checkout_id)
        except NotFoundError:
            logger.warning("Callback for unknown checkout request %s", checkout_id)
            return ACK_PAYMENT_NOT_FOUND

        if record.status != PaymentStatus.INITIATED:
            # Duplicate delivery; already reconciled
            logger.info("Duplicate callback for %s (status=%s)", checkout_id, record.status.value)
            return ACK_RECEIVED

        invoice_id = record.invoice_id

        # 2. Outcome
        status = PaymentStatus.COMPLETED if callback.result_code == 0 else PaymentStatus.FAILED
        receipt_number = None
        transaction_date = None
        if status == PaymentStatus.COMPLETED:
            receipt_number = _as_text(callback.metadata_value(RECEIPT_NUMBER_ITEM))
            transaction_date = _as_text(callback.metadata_value(TRANSACTION_DATE_ITEM))

        try:
            # 3. Payment record
            await self.tracker.update_payment_status(
                checkout_id, status,
                receipt_number=receipt_number,
                transaction_date=transaction_date,
            )

            # 4. Ledger
            if status == PaymentStatus.COMPLETED:
                invoice = await self.ledger.get_invoice(invoice_id)
                await self.ledger.record_payment(
                    invoice_id,
                    invoice.invoice_amount,
                    ledger_date_from_transaction(transaction_date, self.today()),
                )

            # 5. Commit
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.exception("Failed to reconcile callback %s for invoice %s", checkout_id, invoice_id)
            try:
                await self.failures.record_failure(
                    ReconciliationTask.MPESA_CALLBACK,
                    checkout_id,
                    e,
                    payload=envelope.model_dump(by_alias=True),
                )
            except Exception:
                await self.db.rollback()
                logger.exception("Failed to record reconciliation failure for callback %s", checkout_id)
            return ACK_RECEIVED

        logger.info(
            "Callback reconciled: checkout=%s invoice=%s status=%s receipt=%s",
            checkout_id, invoice_id, status.value, receipt_number
        )
        return ACK_RECEIVED
