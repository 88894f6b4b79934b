"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from payments_backend.app.api.v1.endpoints import (
    invoices, payments, mpesa_callback,
    admin_invoices, admin_reconciliation
)

router = APIRouter()

# Customer endpoints
router.include_router(invoices.router)
router.include_router(payments.router)

# Gateway callbacks
router.include_router(mpesa_callback.router)

# Admin endpoints
router.include_router(admin_invoices.router)
router.include_router(admin_reconciliation.router)
