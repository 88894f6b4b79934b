"""
Database seeding script for development orders.

Orders normally arrive from the ordering service. This creates a couple of
orders with matching invoices so the payment and reversal endpoints can be
exercised locally. Run after the database is set up.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from payments_backend.app.db.session import AsyncSessionLocal, engine, Base
from payments_backend.app.domain.ledger.invoice_ledger import InvoiceLedger
from payments_backend.app.models.order import Order

# Import models to ensure they are registered with Base
from payments_backend.app.models.invoice import Invoice
from payments_backend.app.models.payment_record import PaymentRecord
from payments_backend.app.models.reversal_record import ReversalRecord
from payments_backend.app.models.reconciliation_failure import ReconciliationFailure

DEMO_ORDERS = [
    # (order id, owning user id, amount, tax)
    ("demo-order-1", "demo-customer-1", 200.0, 27.59),
    ("demo-order-2", "demo-customer-2", 1500.0, 206.90),
]


async def seed_orders():
    """
    Seed demo orders and their payable invoices.

    Skips orders that already exist.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting order seeding...")
        ledger = InvoiceLedger(db)

        for order_id, user_id, amount, tax in DEMO_ORDERS:
            result = await db.execute(select(Order).where(Order.id == order_id))
            if result.scalar_one_or_none():
                print(f"ℹ️  Order {order_id} already exists, skipping")
                continue

            db.add(Order(id=order_id, user_id=user_id, status="pending", total_amount=amount))
            await db.flush()
            invoice = await ledger.create_invoice(order_id, amount, tax)
            print(f"✅ Created order {order_id} for {user_id} with invoice {invoice.id} ({amount:.2f})")

        await db.commit()

    print("\n🎉 Order seeding completed successfully!")
    print("\nNote: access tokens are issued by the auth service; roles are ADMIN and CUSTOMER")


if __name__ == "__main__":
    asyncio.run(seed_orders())
