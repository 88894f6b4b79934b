"""
Reconciliation failure schemas.

Admin view of callback settlements and reversals that could not be committed.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from payments_backend.app.models.billing_enums import ReconciliationStatus


class ReconciliationFailureResponse(BaseModel):
    id: int
    task_name: str
    reference: str
    error_message: str
    payload: Optional[Dict[str, Any]] = None
    status: ReconciliationStatus
    created_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by_admin_id: Optional[str] = None

    class Config:
        from_attributes = True
