"""
Invoice Pydantic schemas.

Request and response schemas for customer and admin invoice endpoints.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from payments_backend.app.models.billing_enums import InvoiceType


class InvoiceCreate(BaseModel):
    """
    Schema for creating an invoice against an existing order.

    Used by POST /admin/invoices.
    """
    order_id: str = Field(..., min_length=1, description="Order the invoice settles")
    invoice_amount: float = Field(..., gt=0, description="Total amount owed")
    tax_amount: float = Field(default=0.0, ge=0, description="Tax included in the amount (informational)")


class RecordPaymentRequest(BaseModel):
    """
    Schema for a manually recorded payment.

    Used by PUT /admin/invoices/{id}/payment.
    """
    amount: float = Field(..., gt=0, description="Amount collected")
    date: str = Field(..., description="Collection date, YYYY-MM-DD")


class InvoiceResponse(BaseModel):
    id: str
    order_id: str
    invoice_amount: float
    paid_amount: float
    tax_amount: float
    type: InvoiceType
    paid_on: Dict[str, float] = Field(default_factory=dict)
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class InvoiceListResponse(BaseModel):
    data: List[InvoiceResponse]
    page: int
    limit: int
    total: int
