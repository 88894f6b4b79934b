"""
Invoice database model.

One invoice per order; the per-order ledger of amount owed and amounts collected.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Float, Integer, DateTime, Enum, JSON
from payments_backend.app.db.session import Base
from payments_backend.app.models.billing_enums import InvoiceType


class Invoice(Base):
    """
    Invoice model.

    `paid_on` maps calendar dates (YYYY-MM-DD) to signed amounts: positive
    entries are collections, negative entries are reversals. Writes to the
    same date accumulate.

    `paid_amount` always equals the sum of `paid_on` values and never drops
    below zero. `version` is checked and incremented on every UPDATE, so two
    writers holding the same snapshot cannot both succeed.
    """
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(64), nullable=False, unique=True, index=True)

    # Financials
    invoice_amount = Column(Float, nullable=False)  # immutable after creation
    paid_amount = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)  # informational
    paid_on = Column(JSON, nullable=False, default=dict)

    type = Column(Enum(InvoiceType), nullable=False, default=InvoiceType.PAYABLE, index=True)

    version = Column(Integer, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<Invoice(id={self.id}, order_id={self.order_id}, paid={self.paid_amount}/{self.invoice_amount}, type='{self.type.value}')>"
