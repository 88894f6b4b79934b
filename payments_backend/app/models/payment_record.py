"""
Payment Record database model.

One row per push-payment attempt; an invoice may have many (retries).
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime, Enum
from payments_backend.app.db.session import Base
from payments_backend.app.models.billing_enums import PaymentStatus


class PaymentRecord(Base):
    """
    Payment Record model.

    Keyed for lookup by the gateway-issued CheckoutRequestID. Receipt number
    and transaction date are filled in only by a successful callback.
    Rows are never deleted.
    """
    __tablename__ = "payment_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Linkage
    invoice_id = Column(String(36), nullable=False, index=True)
    order_id = Column(String(64), nullable=False, index=True)

    # Gateway correlation keys
    checkout_request_id = Column(String(100), nullable=False, unique=True, index=True)
    merchant_request_id = Column(String(100), nullable=False)

    phone = Column(String(20), nullable=False)
    amount = Column(Float, nullable=False)

    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.INITIATED, index=True)

    # Populated on successful completion
    mpesa_receipt_number = Column(String(50), nullable=True)
    transaction_date = Column(String(20), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<PaymentRecord(id={self.id}, checkout={self.checkout_request_id}, status='{self.status.value}')>"
