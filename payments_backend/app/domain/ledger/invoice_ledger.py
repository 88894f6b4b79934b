"""
Invoice Ledger (Domain Logic).

Owns invoice records and applies payments and reversals to them.

Invariants (hold after every operation sequence):
    paid_amount == sum(paid_on.values())   (float tolerance)
    paid_amount >= 0

The ledger flushes but never commits; the caller owns the transaction.
"""

import math
import re
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from payments_backend.app.core.exceptions import ValidationError, NotFoundError, ConflictError
from payments_backend.app.core.reliability import bounded
from payments_backend.app.models.billing_enums import InvoiceType
from payments_backend.app.models.invoice import Invoice

logger = logging.getLogger(__name__)

LEDGER_DATE_FORMAT = "%Y-%m-%d"
_LEDGER_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def validate_ledger_date(date_str: str) -> str:
    """Return `date_str` if it is a real calendar date written YYYY-MM-DD."""
    if not isinstance(date_str, str) or not _LEDGER_DATE_RE.match(date_str):
        raise ValidationError("invalid date format, use YYYY-MM-DD", details={"date": date_str})
    try:
        datetime.strptime(date_str, LEDGER_DATE_FORMAT)
    except ValueError:
        raise ValidationError("invalid calendar date", details={"date": date_str})
    return date_str


def _require_positive(amount: float) -> float:
    if amount is None or not math.isfinite(amount) or amount <= 0:
        raise ValidationError("amount must be greater than zero", details={"amount": amount})
    return float(amount)


# Pure ledger rules. They mutate the given invoice in memory only.

def apply_payment(invoice: Invoice, amount: float, date_str: str) -> None:
    paid_on = dict(invoice.paid_on or {})
    paid_on[date_str] = paid_on.get(date_str, 0.0) + amount
    invoice.paid_on = paid_on
    invoice.paid_amount = (invoice.paid_amount or 0.0) + amount


def apply_full_reversal(invoice: Invoice) -> None:
    invoice.paid_amount = 0.0
    invoice.paid_on = {}
    invoice.type = InvoiceType.RECEIVABLE


def apply_partial_reversal(invoice: Invoice, amount: float, date_str: str) -> float:
    """
    Reverse up to `amount`, clamped to what has been paid.

    Returns the amount actually reversed.
    """
    clamped = min(amount, invoice.paid_amount or 0.0)
    if clamped > 0:
        paid_on = dict(invoice.paid_on or {})
        paid_on[date_str] = paid_on.get(date_str, 0.0) - clamped
        invoice.paid_on = paid_on
        invoice.paid_amount = invoice.paid_amount - clamped
    if invoice.paid_amount <= 0:
        invoice.paid_amount = 0.0
        invoice.type = InvoiceType.RECEIVABLE
    return clamped


class InvoiceLedger:
    """Invoice store and mutation rules, bound to one database session."""

    def __init__(self, db: AsyncSession, timeout_seconds: float = 10.0):
        self.db = db
        self.timeout_seconds = timeout_seconds

    async def _flush(self, invoice_id: Optional[str] = None) -> None:
        try:
            await self.db.flush()
        except StaleDataError:
            await self.db.rollback()
            logger.warning("Concurrent modification of invoice %s", invoice_id)
            raise ConflictError(
                "Invoice was modified concurrently; reload and retry",
                details={"invoice_id": invoice_id}
            )

    async def _load(self, invoice_id: str) -> Invoice:
        result = await self.db.execute(select(Invoice).where(Invoice.id == invoice_id))
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    @bounded("invoice.create")
    async def create_invoice(self, order_id: str, invoice_amount: float, tax_amount: float = 0.0) -> Invoice:
        _require_positive(invoice_amount)
        if tax_amount is None or tax_amount < 0:
            raise ValidationError("tax amount cannot be negative", details={"tax_amount": tax_amount})

        invoice = Invoice(
            order_id=order_id,
            invoice_amount=float(invoice_amount),
            tax_amount=float(tax_amount),
            paid_amount=0.0,
            paid_on={},
            type=InvoiceType.PAYABLE,
        )
        self.db.add(invoice)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(f"Invoice already exists for order {order_id}", details={"order_id": order_id})

        logger.info("Invoice %s created for order %s amount=%.2f", invoice.id, order_id, invoice.invoice_amount)
        return invoice

    @bounded("invoice.get")
    async def get_invoice(self, invoice_id: str) -> Invoice:
        return await self._load(invoice_id)

    @bounded("invoice.get_by_order")
    async def get_invoice_by_order(self, order_id: str) -> Invoice:
        result = await self.db.execute(select(Invoice).where(Invoice.order_id == order_id))
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice for order", order_id)
        return invoice

    @bounded("invoice.list")
    async def list_invoices(self, invoice_type: Optional[InvoiceType] = None, page: int = 1, limit: int = 10) -> list[Invoice]:
        if page < 1:
            page = 1
        if limit < 1:
            limit = 10

        query = select(Invoice).order_by(Invoice.created_at.desc(), Invoice.id)
        if invoice_type:
            query = query.where(Invoice.type == invoice_type)
        query = query.offset((page - 1) * limit).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    @bounded("invoice.count")
    async def count_invoices(self, invoice_type: Optional[InvoiceType] = None) -> int:
        query = select(func.count(Invoice.id))
        if invoice_type:
            query = query.where(Invoice.type == invoice_type)
        result = await self.db.execute(query)
        return result.scalar()

    @bounded("invoice.record_payment")
    async def record_payment(self, invoice_id: str, amount: float, date_str: str) -> Invoice:
        """
        Record a collection against `date_str`.

        Raises:
            ValidationError: amount <= 0 or date not YYYY-MM-DD
            NotFoundError: no such invoice
        """
        amount = _require_positive(amount)
        validate_ledger_date(date_str)

        invoice = await self._load(invoice_id)
        apply_payment(invoice, amount, date_str)
        await self._flush(invoice_id)

        logger.info("Recorded payment of %.2f on invoice %s for %s", amount, invoice_id, date_str)
        return invoice

    @bounded("invoice.reverse_all")
    async def reverse_all(self, invoice_id: str, date_str: str) -> Invoice:
        """
        Wipe every collection and flip the invoice to receivable.

        `date_str` is informational only and is not validated.
        """
        invoice = await self._load(invoice_id)
        previous = invoice.paid_amount
        apply_full_reversal(invoice)
        await self._flush(invoice_id)

        logger.info("Reversed all payments (%.2f) on invoice %s as of %s", previous, invoice_id, date_str)
        return invoice

    @bounded("invoice.reverse_amount")
    async def reverse_amount(self, invoice_id: str, amount: float, date_str: str) -> Invoice:
        """
        Reverse part of what has been paid.

        A request larger than the paid balance is clamped to it silently.
        """
        amount = _require_positive(amount)

        invoice = await self._load(invoice_id)
        reversed_amount = apply_partial_reversal(invoice, amount, date_str)
        await self._flush(invoice_id)

        if reversed_amount < amount:
            logger.warning(
                "Reversal on invoice %s clamped from %.2f to %.2f", invoice_id, amount, reversed_amount
            )
        logger.info("Reversed %.2f on invoice %s for %s", reversed_amount, invoice_id, date_str)
        return invoice
