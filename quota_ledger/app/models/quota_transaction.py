"""
Quota Transaction database model.

Immutable ledger entries. The sum of a tenant's entries is its balance.
"""

import uuid

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, UniqueConstraint, CheckConstraint, Index
from sqlalchemy.sql import func
from quota_ledger.app.db.session import Base
from quota_ledger.app.models.billing_enums import TransactionType


class QuotaTransaction(Base):
    """
    Quota Transaction model.

    Positive quota_change is a credit, negative a debit.
    NO updates or deletions allowed; reversals are new entries.
    """
    __tablename__ = "quota_transactions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), ForeignKey('tenants.id', ondelete="RESTRICT"), nullable=False)

    # Per-tenant position in the ledger (balance version after this entry)
    sequence = Column(Integer, nullable=False)

    entry_type = Column(Enum(TransactionType), nullable=False)
    quota_change = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(String(255), nullable=False)

    # What caused the entry
    batch_ref = Column(String(100), nullable=True)
    order_id = Column(String(36), ForeignKey('payment_orders.id'), nullable=True, index=True)
    idempotency_key = Column(String(150), nullable=False)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'idempotency_key', name='uq_quota_transactions_idempotency'),
        UniqueConstraint('tenant_id', 'sequence', name='uq_quota_transactions_sequence'),
        CheckConstraint('quota_change <> 0', name='ck_quota_transactions_non_zero'),
        Index('ix_quota_transactions_tenant_created', 'tenant_id', 'created_at'),
    )

    def __repr__(self):
        return f"<QuotaTransaction(id={self.id}, tenant={self.tenant_id}, change={self.quota_change})>"
