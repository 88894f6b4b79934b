"""
Admin Reconciliation API Endpoints.

Operator view of callback settlements and reversals that failed to commit.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.db.session import get_db
from payments_backend.app.models.enums import UserRole
from payments_backend.app.models.billing_enums import ReconciliationStatus
from payments_backend.app.schemas.reconciliation import ReconciliationFailureResponse
from payments_backend.app.core.guards import require_role
from payments_backend.app.core.dependencies import get_failure_log
from payments_backend.app.services.reconciliation import ReconciliationFailureLog

router = APIRouter(prefix="/admin/reconciliation", tags=["Admin - Reconciliation"])


@router.get("/failures", response_model=List[ReconciliationFailureResponse])
async def list_failures(
    status: Optional[ReconciliationStatus] = Query(ReconciliationStatus.FAILED),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    failures: ReconciliationFailureLog = Depends(get_failure_log),
):
    return await failures.list_failures(status=status, limit=limit)


@router.post("/failures/{failure_id}/resolve", response_model=ReconciliationFailureResponse)
async def resolve_failure(
    failure_id: int = Path(..., description="Reconciliation failure ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
    failures: ReconciliationFailureLog = Depends(get_failure_log),
):
    """
    Mark a failure as reconciled by hand.
    """
    item = await failures.resolve(failure_id, admin_id=current_user["user_id"])
    await db.commit()
    return item
