"""
Payment Order database model.

Tracks a gateway order from placement through verification.
"""

import uuid

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from quota_ledger.app.db.session import Base
from quota_ledger.app.models.billing_enums import OrderStatus, FinalizeSource


class PaymentOrder(Base):
    """
    Payment Order model.

    Lifecycle: CREATED -> VERIFIED | FAILED. Both outcomes are terminal and
    an order leaves CREATED exactly once.
    """
    __tablename__ = "payment_orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey('tenants.id', ondelete="RESTRICT"), nullable=False, index=True)
    package_id = Column(String(50), ForeignKey('packages.id'), nullable=False)

    # Snapshot taken at placement
    amount_minor = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    quota_units = Column(Integer, nullable=False)

    # Gateway linkage
    gateway_order_id = Column(String(100), nullable=False, unique=True, index=True)
    receipt = Column(String(100), nullable=False)
    gateway_payment_id = Column(String(100), nullable=True)

    status = Column(Enum(OrderStatus), default=OrderStatus.CREATED, nullable=False, index=True)
    failure_reason = Column(String(255), nullable=True)
    finalized_via = Column(Enum(FinalizeSource), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    finalized_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status != OrderStatus.CREATED

    def __repr__(self):
        return f"<PaymentOrder(id={self.id}, gateway_order_id='{self.gateway_order_id}', status='{self.status.value}')>"
