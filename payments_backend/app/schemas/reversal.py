"""
Reversal Pydantic schemas.

Used by PUT /admin/invoices/{id}/reverse and the reversal audit listing.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from payments_backend.app.schemas.invoice import InvoiceResponse


class ReverseInvoiceRequest(BaseModel):
    """
    Schema for reversing collected funds on an invoice.

    An absent or non-positive amount reverses everything paid so far.
    """
    amount: Optional[float] = Field(default=None, description="Amount to reverse; omit for a full reversal")
    date: Optional[str] = Field(default=None, description="Ledger date YYYY-MM-DD; defaults to today")
    phone: Optional[str] = Field(default=None, max_length=20, description="Phone the refund relates to")
    use_mpesa: bool = Field(default=False, description="Also ask M-Pesa to reverse the transaction")
    reason: str = Field(..., min_length=1, max_length=500, description="Why the money is returned")


class ReversalRecordResponse(BaseModel):
    id: str
    invoice_id: str
    amount: float
    date: str
    phone: Optional[str] = None
    admin_id: str
    reason: str
    created_at: datetime

    class Config:
        from_attributes = True


class ReverseInvoiceResponse(BaseModel):
    invoice: InvoiceResponse
    reversal: Optional[ReversalRecordResponse] = None
