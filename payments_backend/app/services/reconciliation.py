"""
Reconciliation failure log.

Durable record of callback settlements and reversals that could not be
committed. Failures are written in their own transaction because the
caller's transaction has just been rolled back.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.core.exceptions import NotFoundError, ValidationError
from payments_backend.app.core.reliability import bounded
from payments_backend.app.models.billing_enums import ReconciliationStatus
from payments_backend.app.models.reconciliation_failure import ReconciliationFailure

logger = logging.getLogger(__name__)


class ReconciliationTask:
    MPESA_CALLBACK = "mpesa_callback"
    INVOICE_REVERSAL = "invoice_reversal"


class ReconciliationFailureLog:

    def __init__(self, db: AsyncSession, timeout_seconds: float = 10.0):
        self.db = db
        self.timeout_seconds = timeout_seconds

    @bounded("reconciliation.record")
    async def record_failure(
        self,
        task_name: str,
        reference: str,
        error: Exception,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ReconciliationFailure:
        item = ReconciliationFailure(
            task_name=task_name,
            reference=reference,
            error_message=f"{type(error).__name__}: {error}",
            payload=payload,
            status=ReconciliationStatus.FAILED,
        )
        self.db.add(item)
        await self.db.commit()
        logger.error("Reconciliation failure recorded: task=%s reference=%s", task_name, reference)
        return item

    @bounded("reconciliation.list")
    async def list_failures(
        self,
        status: Optional[ReconciliationStatus] = ReconciliationStatus.FAILED,
        limit: int = 100
    ) -> list[ReconciliationFailure]:
        query = select(ReconciliationFailure).order_by(desc(ReconciliationFailure.created_at)).limit(limit)
        if status:
            query = query.where(ReconciliationFailure.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    @bounded("reconciliation.resolve")
    async def resolve(self, failure_id: int, admin_id: str) -> ReconciliationFailure:
        result = await self.db.execute(
            select(ReconciliationFailure).where(ReconciliationFailure.id == failure_id)
        )
        item = result.scalar_one_or_none()
        if not item:
            raise NotFoundError("Reconciliation failure", failure_id)
        if item.status == ReconciliationStatus.RESOLVED:
            raise ValidationError("Reconciliation failure already resolved", details={"id": failure_id})

        item.status = ReconciliationStatus.RESOLVED
        item.resolved_at = datetime.utcnow()
        item.resolved_by_admin_id = str(admin_id)
        await self.db.flush()
        return item
