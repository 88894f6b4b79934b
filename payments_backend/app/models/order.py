"""
Order database model.

Orders are created and priced by the ordering service; this service only
reads them to check who may pay or view an invoice.
"""

from datetime import datetime
from sqlalchemy import Column, String, Float, DateTime
from payments_backend.app.db.session import Base


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    status = Column(String(30), nullable=False, default="pending")
    total_amount = Column(Float, nullable=False)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Order(id={self.id}, user_id={self.user_id}, status='{self.status}')>"
