"""
Customer Payment API Endpoints.

Starts M-Pesa push payments and reports payment attempt status.
"""

from fastapi import APIRouter, Depends, Path, status

from payments_backend.app.models.enums import UserRole
from payments_backend.app.schemas.payment import (
    PaymentInitiateRequest, PaymentInitiateResponse, PaymentRecordResponse
)
from payments_backend.app.core.guards import require_role
from payments_backend.app.core.ownership import OwnershipGuard
from payments_backend.app.core.dependencies import (
    get_payment_initiation_service, get_payment_tracker, get_order_reader
)
from payments_backend.app.domain.payments.payment_initiation import PaymentInitiationService
from payments_backend.app.services.orders import OrderReader
from payments_backend.app.services.payment_records import PaymentRecordTracker

router = APIRouter(tags=["Payments"])


@router.post(
    "/orders/{order_id}/pay",
    response_model=PaymentInitiateResponse,
    status_code=status.HTTP_201_CREATED
)
async def initiate_payment(
    request: PaymentInitiateRequest,
    order_id: str = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role([UserRole.CUSTOMER, UserRole.ADMIN])),
    service: PaymentInitiationService = Depends(get_payment_initiation_service),
):
    """
    Send an M-Pesa payment prompt for the order's invoice.

    The customer confirms on their phone; the result arrives later through
    the gateway callback.
    """
    result = await service.initiate(order_id, request.phone, current_user)
    return PaymentInitiateResponse(
        payment_id=result.payment.id,
        checkout_request_id=result.payment.checkout_request_id,
        customer_message=result.customer_message,
    )


@router.get("/payments/{checkout_request_id}/status", response_model=PaymentRecordResponse)
async def get_payment_status(
    checkout_request_id: str = Path(..., description="Gateway CheckoutRequestID"),
    current_user: dict = Depends(require_role([UserRole.CUSTOMER, UserRole.ADMIN])),
    tracker: PaymentRecordTracker = Depends(get_payment_tracker),
    orders: OrderReader = Depends(get_order_reader),
):
    record = await tracker.get_by_checkout_id(checkout_request_id)
    order = await orders.get_order(record.order_id)
    OwnershipGuard.enforce(order.user_id, current_user, "payment")
    return record
