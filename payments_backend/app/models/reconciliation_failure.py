"""
Reconciliation Failure Model.

Dead-letter record for multi-store mutations (callback settlement, invoice
reversal) that could not be committed, so an operator can reconcile them.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from payments_backend.app.db.session import Base
from payments_backend.app.models.billing_enums import ReconciliationStatus


class ReconciliationFailure(Base):
    """
    Reconciliation failure table.

    task_name is "mpesa_callback" (reference = CheckoutRequestID) or
    "invoice_reversal" (reference = invoice id).
    """
    __tablename__ = "reconciliation_failures"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    task_name = Column(String(100), nullable=False, index=True)
    reference = Column(String(100), nullable=False, index=True)
    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)  # Inputs needed to replay or reconcile by hand

    status = Column(Enum(ReconciliationStatus), default=ReconciliationStatus.FAILED, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by_admin_id = Column(String(64), nullable=True)

    def __repr__(self):
        return f"<ReconciliationFailure(id={self.id}, task='{self.task_name}', status='{self.status.value}')>"
