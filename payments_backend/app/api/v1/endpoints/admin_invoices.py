"""
Admin Invoice API Endpoints.

Invoice listing and creation, manual payments, and reversals.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.db.session import get_db
from payments_backend.app.models.enums import UserRole
from payments_backend.app.models.billing_enums import InvoiceType
from payments_backend.app.schemas.invoice import (
    InvoiceCreate, InvoiceResponse, InvoiceListResponse, RecordPaymentRequest
)
from payments_backend.app.schemas.reversal import (
    ReverseInvoiceRequest, ReverseInvoiceResponse, ReversalRecordResponse
)
from payments_backend.app.core.guards import require_role
from payments_backend.app.core.dependencies import (
    get_invoice_ledger, get_order_reader, get_reversal_log, get_reversal_orchestrator
)
from payments_backend.app.domain.ledger.invoice_ledger import InvoiceLedger
from payments_backend.app.domain.reversals.reversal_orchestrator import ReversalOrchestrator
from payments_backend.app.services.orders import OrderReader
from payments_backend.app.services.reversal_log import ReversalLog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/invoices", tags=["Admin - Invoices"])


@router.get("", response_model=InvoiceListResponse)
async def list_invoices(
    type: Optional[InvoiceType] = Query(None, description="Filter by invoice type"),
    page: int = Query(1, description="Page number (1-based)"),
    limit: int = Query(10, le=100, description="Page size"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    ledger: InvoiceLedger = Depends(get_invoice_ledger),
):
    """
    List invoices, newest first, with the total count for the filter.
    """
    page = page if page >= 1 else 1
    limit = limit if limit >= 1 else 10
    invoices = await ledger.list_invoices(invoice_type=type, page=page, limit=limit)
    total = await ledger.count_invoices(invoice_type=type)
    return InvoiceListResponse(
        data=[InvoiceResponse.model_validate(invoice) for invoice in invoices],
        page=page,
        limit=limit,
        total=total,
    )


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    request: InvoiceCreate,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
    ledger: InvoiceLedger = Depends(get_invoice_ledger),
    orders: OrderReader = Depends(get_order_reader),
):
    """
    Create the payable invoice for an existing order.
    """
    await orders.get_order(request.order_id)
    invoice = await ledger.create_invoice(
        order_id=request.order_id,
        invoice_amount=request.invoice_amount,
        tax_amount=request.tax_amount,
    )
    await db.commit()
    return invoice


@router.put("/{invoice_id}/payment", response_model=InvoiceResponse)
async def record_payment(
    request: RecordPaymentRequest,
    invoice_id: str = Path(..., description="Invoice ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
    ledger: InvoiceLedger = Depends(get_invoice_ledger),
):
    """
    Record a payment collected outside the gateway.
    """
    invoice = await ledger.record_payment(invoice_id, request.amount, request.date)
    await db.commit()
    logger.info("Admin %s recorded %.2f on invoice %s", current_user["user_id"], request.amount, invoice_id)
    return invoice


@router.put("/{invoice_id}/reverse", response_model=ReverseInvoiceResponse)
async def reverse_invoice(
    request: ReverseInvoiceRequest,
    invoice_id: str = Path(..., description="Invoice ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    orchestrator: ReversalOrchestrator = Depends(get_reversal_orchestrator),
):
    """
    Reverse collected funds, fully or partially, optionally through M-Pesa.

    Omitting `amount` (or sending zero) reverses everything paid so far.
    """
    invoice, reversal = await orchestrator.reverse(
        invoice_id,
        admin_id=str(current_user["user_id"]),
        reason=request.reason,
        amount=request.amount,
        date_str=request.date,
        phone=request.phone,
        use_mpesa=request.use_mpesa,
    )
    return ReverseInvoiceResponse(
        invoice=InvoiceResponse.model_validate(invoice),
        reversal=ReversalRecordResponse.model_validate(reversal) if reversal else None,
    )


@router.get("/{invoice_id}/reversals", response_model=List[ReversalRecordResponse])
async def list_reversals(
    invoice_id: str = Path(..., description="Invoice ID"),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    ledger: InvoiceLedger = Depends(get_invoice_ledger),
    reversals: ReversalLog = Depends(get_reversal_log),
):
    await ledger.get_invoice(invoice_id)
    return await reversals.list_for_invoice(invoice_id, limit=limit)
