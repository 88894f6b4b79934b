"""
FastAPI dependencies.

Authentication (JWT validation), and injection of the payment gateway client
and the domain services built on top of the request's database session.
"""

from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.core.config import settings
from payments_backend.app.core.jwt import decode_access_token
from payments_backend.app.core.redis_client import get_redis
from payments_backend.app.core.token_revocation import is_token_revoked, are_user_tokens_revoked
from payments_backend.app.db.session import get_db
from payments_backend.app.domain.ledger.invoice_ledger import InvoiceLedger
from payments_backend.app.domain.payments.callback_processor import CallbackProcessor
from payments_backend.app.domain.payments.payment_initiation import PaymentInitiationService
from payments_backend.app.domain.reversals.reversal_orchestrator import ReversalOrchestrator
from payments_backend.app.gateway.mpesa_client import MpesaClient
from payments_backend.app.services.invoice_locking import InvoiceLockManager
from payments_backend.app.services.orders import OrderReader
from payments_backend.app.services.payment_records import PaymentRecordTracker
from payments_backend.app.services.reconciliation import ReconciliationFailureLog
from payments_backend.app.services.reversal_log import ReversalLog

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    redis_client=Depends(get_redis)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Security checks:
    1. Validates JWT token signature and expiry
    2. Checks if token has been explicitly revoked
    3. Checks if all user tokens have been revoked (user blocked)

    Args:
        credentials: HTTP Bearer token from request header
        redis_client: Redis client holding the revocation lists

    Returns:
        Decoded token payload containing user information

    Raises:
        HTTPException: 401 if authentication fails for any reason
    """
    token = credentials.credentials

    # 1. Decode and validate JWT
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 2. Check if this specific token has been revoked
    if await is_token_revoked(redis_client, token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 3. Check if all user tokens have been revoked (user was blocked)
    if await are_user_tokens_revoked(redis_client, user_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User access has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


def get_mpesa_client(request: Request) -> Optional[MpesaClient]:
    """Gateway client built at startup; None when M-Pesa is not configured."""
    return getattr(request.app.state, "mpesa_client", None)


def _timeout() -> float:
    return settings.db_operation_timeout_seconds


def get_invoice_ledger(db: AsyncSession = Depends(get_db)) -> InvoiceLedger:
    return InvoiceLedger(db, timeout_seconds=_timeout())


def get_payment_tracker(db: AsyncSession = Depends(get_db)) -> PaymentRecordTracker:
    return PaymentRecordTracker(db, timeout_seconds=_timeout())


def get_order_reader(db: AsyncSession = Depends(get_db)) -> OrderReader:
    return OrderReader(db, timeout_seconds=_timeout())


def get_reversal_log(db: AsyncSession = Depends(get_db)) -> ReversalLog:
    return ReversalLog(db, timeout_seconds=_timeout())


def get_failure_log(db: AsyncSession = Depends(get_db)) -> ReconciliationFailureLog:
    return ReconciliationFailureLog(db, timeout_seconds=_timeout())


def get_payment_initiation_service(
    db: AsyncSession = Depends(get_db),
    ledger: InvoiceLedger = Depends(get_invoice_ledger),
    tracker: PaymentRecordTracker = Depends(get_payment_tracker),
    orders: OrderReader = Depends(get_order_reader),
    gateway: Optional[MpesaClient] = Depends(get_mpesa_client),
) -> PaymentInitiationService:
    return PaymentInitiationService(db, ledger=ledger, tracker=tracker, orders=orders, gateway=gateway)


def get_callback_processor(
    db: AsyncSession = Depends(get_db),
    ledger: InvoiceLedger = Depends(get_invoice_ledger),
    tracker: PaymentRecordTracker = Depends(get_payment_tracker),
    failures: ReconciliationFailureLog = Depends(get_failure_log),
) -> CallbackProcessor:
    return CallbackProcessor(db, ledger=ledger, tracker=tracker, failures=failures)


def get_reversal_orchestrator(
    db: AsyncSession = Depends(get_db),
    ledger: InvoiceLedger = Depends(get_invoice_ledger),
    tracker: PaymentRecordTracker = Depends(get_payment_tracker),
    reversals: ReversalLog = Depends(get_reversal_log),
    failures: ReconciliationFailureLog = Depends(get_failure_log),
    gateway: Optional[MpesaClient] = Depends(get_mpesa_client),
    redis_client=Depends(get_redis),
) -> ReversalOrchestrator:
    return ReversalOrchestrator(
        db,
        ledger=ledger,
        tracker=tracker,
        reversals=reversals,
        failures=failures,
        locks=InvoiceLockManager(redis_client, ttl_seconds=settings.reversal_lock_ttl_seconds),
        gateway=gateway,
    )
