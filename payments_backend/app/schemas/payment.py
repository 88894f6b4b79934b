"""
Payment Pydantic schemas.

Covers the customer push-payment endpoints and the M-Pesa STK callback
envelope posted by the gateway.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from payments_backend.app.models.billing_enums import PaymentStatus


class PaymentInitiateRequest(BaseModel):
    """
    Schema for starting an M-Pesa push payment.

    Used by POST /orders/{order_id}/pay.
    """
    phone: str = Field(..., min_length=10, max_length=20, description="MSISDN, e.g. 2547XXXXXXXX")


class PaymentInitiateResponse(BaseModel):
    payment_id: str
    checkout_request_id: str
    customer_message: str


class PaymentRecordResponse(BaseModel):
    id: str
    invoice_id: str
    order_id: str
    checkout_request_id: str
    merchant_request_id: str
    phone: str
    amount: float
    status: PaymentStatus
    mpesa_receipt_number: Optional[str] = None
    transaction_date: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# STK callback envelope: {"Body": {"stkCallback": {...}}}

class CallbackMetadataItem(BaseModel):
    name: str = Field(..., alias="Name")
    value: Any = Field(default=None, alias="Value")

    class Config:
        populate_by_name = True


class CallbackMetadataBlock(BaseModel):
    items: List[CallbackMetadataItem] = Field(default_factory=list, alias="Item")

    class Config:
        populate_by_name = True


class StkCallback(BaseModel):
    merchant_request_id: str = Field(default="", alias="MerchantRequestID")
    checkout_request_id: str = Field(..., alias="CheckoutRequestID")
    result_code: int = Field(..., alias="ResultCode")
    result_desc: str = Field(default="", alias="ResultDesc")
    metadata: Optional[CallbackMetadataBlock] = Field(default=None, alias="CallbackMetadata")

    class Config:
        populate_by_name = True

    def metadata_value(self, name: str) -> Any:
        if not self.metadata:
            return None
        for item in self.metadata.items:
            if item.name == name:
                return item.value
        return None


class CallbackBody(BaseModel):
    stk_callback: StkCallback = Field(..., alias="stkCallback")

    class Config:
        populate_by_name = True


class StkCallbackEnvelope(BaseModel):
    body: CallbackBody = Field(..., alias="Body")

    class Config:
        populate_by_name = True


class CallbackAck(BaseModel):
    ResultCode: str
    ResultDesc: str
