"""
Tenant and balance database models.
"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.sql import func
from quota_ledger.app.db.session import Base


class Tenant(Base):
    """
    Tenant model.

    Owns exactly one QuotaBalance and any number of transactions and orders.
    Never deleted while transactions reference it.
    """
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Tenant(id={self.id}, name='{self.name}')>"


class QuotaBalance(Base):
    """
    Cached balance of a tenant.

    Written only as a side effect of a ledger append, inside the same
    database transaction. `version` counts the ledger entries ever appended
    for the tenant and guards the optimistic compare-and-append.
    """
    __tablename__ = "quota_balances"

    tenant_id = Column(String(36), ForeignKey('tenants.id', ondelete="RESTRICT"), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_quota_balances_non_negative'),
    )

    def __repr__(self):
        return f"<QuotaBalance(tenant_id={self.tenant_id}, balance={self.balance}, version={self.version})>"
