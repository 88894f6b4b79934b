"""
Payment Initiation (Domain Logic).

Starts an M-Pesa push payment for an order's invoice and tracks the attempt
as an `initiated` PaymentRecord keyed by the gateway CheckoutRequestID.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.core.exceptions import ConfigError
from payments_backend.app.core.ownership import OwnershipGuard
from payments_backend.app.domain.ledger.invoice_ledger import InvoiceLedger
from payments_backend.app.gateway.mpesa_client import MpesaClient
from payments_backend.app.models.payment_record import PaymentRecord
from payments_backend.app.services.orders import OrderReader
from payments_backend.app.services.payment_records import PaymentRecordTracker

logger = logging.getLogger(__name__)


@dataclass
class InitiatedPayment:
    payment: PaymentRecord
    customer_message: str


class PaymentInitiationService:

    def __init__(
        self,
        db: AsyncSession,
        ledger: InvoiceLedger,
        tracker: PaymentRecordTracker,
        orders: OrderReader,
        gateway: Optional[MpesaClient] = None,
    ):
        self.db = db
        self.ledger = ledger
        self.tracker = tracker
        self.orders = orders
        self.gateway = gateway

    async def initiate(self, order_id: str, phone: str, current_user: dict) -> InitiatedPayment:
        """
        Push a payment prompt for the full invoice amount of an order.

        Flow:
        1. Load order and check the caller owns it
        2. Load the order's invoice
        3. STK push through the gateway
        4. Persist an `initiated` PaymentRecord and commit

        A push that fails leaves no payment record behind.

        Raises:
            ConfigError: gateway not configured
            NotFoundError: order or invoice missing
            InsufficientPermissionsError: order belongs to someone else
            GatewayError / GatewayRejectedError: push failed
        """
        if self.gateway is None:
            raise ConfigError("M-Pesa gateway is not configured")

        # 1. Ownership
        order = await self.orders.get_order(order_id)
        OwnershipGuard.enforce(order.user_id, current_user, "order")

        # 2. Invoice
        invoice = await self.ledger.get_invoice_by_order(order_id)
        invoice_id = invoice.id
        amount = invoice.invoice_amount

        # 3. Gateway
        push = await self.gateway.initiate_stk_push(phone, amount, invoice_id)

        # 4. Track
        payment = await self.tracker.create_payment_record(
            invoice_id=invoice_id,
            order_id=order_id,
            checkout_request_id=push.checkout_request_id,
            merchant_request_id=push.merchant_request_id,
            phone=phone,
            amount=amount,
        )
        await self.db.commit()

        logger.info(
            "Payment %s initiated for invoice %s (checkout=%s)",
            payment.id, invoice_id, push.checkout_request_id
        )
        return InitiatedPayment(payment=payment, customer_message=push.customer_message)
