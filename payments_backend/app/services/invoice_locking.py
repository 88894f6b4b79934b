"""
Per-invoice reversal locking.

Serialises reversals of the same invoice across workers with a Redis
SET NX EX lock. The lock auto-expires, so a crashed worker cannot wedge an
invoice for longer than the TTL.
"""

import uuid
import logging
from contextlib import asynccontextmanager

from payments_backend.app.core.exceptions import ConflictError

logger = logging.getLogger(__name__)

INVOICE_LOCK_PREFIX = "lock:invoice:reversal:"


class InvoiceLockManager:

    def __init__(self, redis_client, ttl_seconds: int = 60):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds

    async def acquire(self, invoice_id: str) -> str:
        """
        Take the reversal lock for an invoice.

        Returns:
            Lock token to pass to release()

        Raises:
            ConflictError: another reversal of this invoice is in progress
        """
        token = str(uuid.uuid4())
        acquired = await self.redis.set(
            f"{INVOICE_LOCK_PREFIX}{invoice_id}", token, ex=self.ttl_seconds, nx=True
        )
        if not acquired:
            raise ConflictError(
                "A reversal for this invoice is already in progress",
                details={"invoice_id": invoice_id}
            )
        return token

    async def release(self, invoice_id: str, token: str) -> bool:
        """Release the lock if it is still ours."""
        key = f"{INVOICE_LOCK_PREFIX}{invoice_id}"
        try:
            current = await self.redis.get(key)
            if current != token:
                return False
            await self.redis.delete(key)
            return True
        except Exception as e:
            logger.warning("Failed to release reversal lock for invoice %s: %s", invoice_id, e)
            return False

    @asynccontextmanager
    async def hold(self, invoice_id: str):
        token = await self.acquire(invoice_id)
        try:
            yield token
        finally:
            await self.release(invoice_id, token)
