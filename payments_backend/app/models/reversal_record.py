"""
Reversal Record database model.

Append-only audit entry, one per reversal operation (full or partial).
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, Text
from payments_backend.app.db.session import Base


class ReversalRecord(Base):
    """
    Reversal audit record.

    NO updates or deletions allowed.
    """
    __tablename__ = "reversal_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    invoice_id = Column(String(36), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    date = Column(String(10), nullable=False)  # YYYY-MM-DD the reversal was booked against
    phone = Column(String(20), nullable=True)

    admin_id = Column(String(64), nullable=False, index=True)
    reason = Column(Text, nullable=False)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ReversalRecord(id={self.id}, invoice_id={self.invoice_id}, amount={self.amount})>"
