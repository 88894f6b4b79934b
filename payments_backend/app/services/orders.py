"""
Order lookups.

Read-only access to orders owned by the ordering service.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payments_backend.app.core.exceptions import NotFoundError
from payments_backend.app.core.reliability import bounded
from payments_backend.app.models.order import Order


class OrderReader:

    def __init__(self, db: AsyncSession, timeout_seconds: float = 10.0):
        self.db = db
        self.timeout_seconds = timeout_seconds

    @bounded("order.get")
    async def get_order(self, order_id: str) -> Order:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Order", order_id)
        return order
