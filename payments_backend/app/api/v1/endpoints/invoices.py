"""
Customer Invoice API Endpoints.

Invoice lookups scoped to the caller's own orders.
"""

from fastapi import APIRouter, Depends, Path

from payments_backend.app.models.enums import UserRole
from payments_backend.app.schemas.invoice import InvoiceResponse
from payments_backend.app.core.guards import require_role
from payments_backend.app.core.ownership import OwnershipGuard
from payments_backend.app.core.dependencies import get_invoice_ledger, get_order_reader
from payments_backend.app.domain.ledger.invoice_ledger import InvoiceLedger
from payments_backend.app.services.orders import OrderReader

router = APIRouter(tags=["Invoices"])


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str = Path(..., description="Invoice ID"),
    current_user: dict = Depends(require_role([UserRole.CUSTOMER, UserRole.ADMIN])),
    ledger: InvoiceLedger = Depends(get_invoice_ledger),
    orders: OrderReader = Depends(get_order_reader),
):
    """
    Get an invoice by ID.

    Customers can only see invoices of their own orders.
    """
    invoice = await ledger.get_invoice(invoice_id)
    order = await orders.get_order(invoice.order_id)
    OwnershipGuard.enforce(order.user_id, current_user, "invoice")
    return invoice


@router.get("/orders/{order_id}/invoice", response_model=InvoiceResponse)
async def get_invoice_by_order(
    order_id: str = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role([UserRole.CUSTOMER, UserRole.ADMIN])),
    ledger: InvoiceLedger = Depends(get_invoice_ledger),
    orders: OrderReader = Depends(get_order_reader),
):
    order = await orders.get_order(order_id)
    OwnershipGuard.enforce(order.user_id, current_user, "order")
    return await ledger.get_invoice_by_order(order_id)
