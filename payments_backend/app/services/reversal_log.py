"""
Reversal audit log.

Append-only store of ReversalRecord entries.
"""

from typing import Optional
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.core.reliability import bounded
from payments_backend.app.models.reversal_record import ReversalRecord


class ReversalLog:

    def __init__(self, db: AsyncSession, timeout_seconds: float = 10.0):
        self.db = db
        self.timeout_seconds = timeout_seconds

    @bounded("reversal.append")
    async def append_reversal_record(
        self,
        invoice_id: str,
        amount: float,
        date: str,
        admin_id: str,
        reason: str,
        phone: Optional[str] = None,
    ) -> ReversalRecord:
        """
        Append a reversal audit record.

        Args:
            invoice_id: Invoice that was reversed
            amount: Amount actually taken off the ledger
            date: Ledger date the reversal was booked against
            admin_id: Acting administrator
            reason: Why the money was returned
            phone: Phone the refund relates to, if any

        Returns:
            Created ReversalRecord instance (flushed, not committed)
        """
        record = ReversalRecord(
            invoice_id=invoice_id,
            amount=amount,
            date=date,
            phone=phone or None,
            admin_id=str(admin_id),
            reason=reason,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    @bounded("reversal.list")
    async def list_for_invoice(self, invoice_id: str, limit: int = 100) -> list[ReversalRecord]:
        """Reversal history for one invoice, most recent first."""
        result = await self.db.execute(
            select(ReversalRecord)
            .where(ReversalRecord.invoice_id == invoice_id)
            .order_by(desc(ReversalRecord.created_at))
            .limit(limit)
        )
        return list(result.scalars().all())
