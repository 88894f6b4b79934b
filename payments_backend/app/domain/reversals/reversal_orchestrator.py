"""
Reversal Orchestrator (Domain Logic).

Coordinates an administrator-initiated reversal of collected funds:
optional gateway-side reversal, ledger mutation, payment record bulk
transition and the audit record.

Safety:
- Per-invoice Redis lock plus the invoice version column serialise
  concurrent reversals of the same invoice.
- Ledger and payment records commit in one transaction. The audit record is
  written inside a SAVEPOINT, so losing it never undoes the reversal.
- The gateway call happens before any ledger mutation. If the commit fails
  after the gateway accepted, the failure is logged for reconciliation.
"""

import logging
import math
from datetime import date
from typing import Callable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.core.exceptions import ConfigError, ValidationError
from payments_backend.app.domain.ledger.invoice_ledger import (
    InvoiceLedger,
    LEDGER_DATE_FORMAT,
    validate_ledger_date,
)
from payments_backend.app.gateway.mpesa_client import MpesaClient
from payments_backend.app.models.billing_enums import InvoiceType
from payments_backend.app.models.invoice import Invoice
from payments_backend.app.models.reversal_record import ReversalRecord
from payments_backend.app.services.invoice_locking import InvoiceLockManager
from payments_backend.app.services.payment_records import PaymentRecordTracker
from payments_backend.app.services.reconciliation import ReconciliationFailureLog, ReconciliationTask
from payments_backend.app.services.reversal_log import ReversalLog

logger = logging.getLogger(__name__)


class ReversalOrchestrator:

    def __init__(
        self,
        db: AsyncSession,
        ledger: InvoiceLedger,
        tracker: PaymentRecordTracker,
        reversals: ReversalLog,
        failures: ReconciliationFailureLog,
        locks: InvoiceLockManager,
        gateway: Optional[MpesaClient] = None,
        today: Callable[[], date] = date.today,
    ):
        self.db = db
        self.ledger = ledger
        self.tracker = tracker
        self.reversals = reversals
        self.failures = failures
        self.locks = locks
        self.gateway = gateway
        self.today = today

    async def reverse(
        self,
        invoice_id: str,
        admin_id: str,
        reason: str,
        amount: Optional[float] = None,
        date_str: Optional[str] = None,
        phone: Optional[str] = None,
        use_mpesa: bool = False,
    ) -> Tuple[Invoice, Optional[ReversalRecord]]:
        """
        Reverse collected funds on a payable invoice.

        Args:
            invoice_id: Invoice to reverse
            admin_id: Acting administrator
            reason: Required free-text justification
            amount: Amount to reverse; None or <= 0 means everything paid
            date_str: Ledger date for a partial reversal, defaults to today
            phone: Phone the refund relates to
            use_mpesa: Also reverse the transaction at the gateway

        Returns:
            (updated invoice, reversal audit record or None if it could not be written)

        Raises:
            ValidationError: blank reason, bad date or amount, invoice not payable, nothing to reverse
            NotFoundError: no such invoice
            ConflictError: another reversal of this invoice is in progress
            ConfigError: gateway reversal requested but not configured
            GatewayError / GatewayRejectedError / CryptoError: gateway reversal failed
        """
        if not reason or not reason.strip():
            raise ValidationError("reason is required")
        if date_str:
            validate_ledger_date(date_str)
        if amount is not None and not math.isfinite(amount):
            raise ValidationError("amount must be a finite number", details={"amount": str(amount)})

        async with self.locks.hold(invoice_id):
            return await self._reverse_locked(
                invoice_id, admin_id, reason.strip(), amount, date_str, phone, use_mpesa
            )

    async def _reverse_locked(
        self,
        invoice_id: str,
        admin_id: str,
        reason: str,
        amount: Optional[float],
        date_str: Optional[str],
        phone: Optional[str],
        use_mpesa: bool,
    ) -> Tuple[Invoice, Optional[ReversalRecord]]:
        # 1. Load and check the invoice
        invoice = await self.ledger.get_invoice(invoice_id)
        if invoice.type != InvoiceType.PAYABLE:
            raise ValidationError(
                "only payable invoices can be reversed",
                details={"invoice_id": invoice_id, "type": invoice.type.value}
            )

        # 2. Resolve amount
        paid_amount = invoice.paid_amount
        resolved = amount if amount is not None and amount > 0 else paid_amount
        reversed_amount = min(resolved, paid_amount)
        if reversed_amount <= 0:
            raise ValidationError("no paid amount available to reverse", details={"invoice_id": invoice_id})

        booked_date = date_str or self.today().strftime(LEDGER_DATE_FORMAT)

        # 3. Gateway first; any failure aborts before the ledger is touched
        gateway_accepted = False
        if use_mpesa:
            if self.gateway is None:
                raise ConfigError("M-Pesa gateway is not configured")
            await self.gateway.initiate_reversal(phone or "", reversed_amount, invoice_id)
            gateway_accepted = True

        try:
            # 4. Ledger and payment records
            if resolved >= paid_amount:
                invoice = await self.ledger.reverse_all(invoice_id, booked_date)
                transitioned = await self.tracker.reverse_payments_for_invoice(invoice_id)
                logger.info("Full reversal of invoice %s, %d payment record(s) reversed", invoice_id, transitioned)
            else:
                invoice = await self.ledger.reverse_amount(invoice_id, resolved, booked_date)

            # 5. Audit
            record = await self._append_audit(invoice_id, reversed_amount, booked_date, admin_id, reason, phone)

            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            if gateway_accepted:
                try:
                    await self.failures.record_failure(
                        ReconciliationTask.INVOICE_REVERSAL,
                        invoice_id,
                        e,
                        payload={
                            "amount": reversed_amount,
                            "date": booked_date,
                            "phone": phone,
                            "admin_id": str(admin_id),
                            "reason": reason,
                            "full": resolved >= paid_amount,
                        },
                    )
                except Exception:
                    await self.db.rollback()
                    logger.exception("Failed to record reconciliation failure for reversal of invoice %s", invoice_id)
            raise

        await self.db.refresh(invoice)
        logger.info(
            "Invoice %s reversed by admin %s: amount=%.2f date=%s gateway=%s",
            invoice_id, admin_id, reversed_amount, booked_date, use_mpesa
        )
        return invoice, record

    async def _append_audit(
        self,
        invoice_id: str,
        amount: float,
        booked_date: str,
        admin_id: str,
        reason: str,
        phone: Optional[str],
    ) -> Optional[ReversalRecord]:
        try:
            async with self.db.begin_nested():
                return await self.reversals.append_reversal_record(
                    invoice_id=invoice_id,
                    amount=amount,
                    date=booked_date,
                    admin_id=admin_id,
                    reason=reason,
                    phone=phone,
                )
        except Exception:
            logger.exception("Failed to write reversal audit record for invoice %s", invoice_id)
            return None
