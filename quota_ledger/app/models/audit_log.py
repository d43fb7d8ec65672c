"""
Audit Log Database Model.

Tracks billing events that operators must be able to review.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from quota_ledger.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking payment and quota events.

    Events logged:
    - ORDER_VERIFIED / ORDER_FAILED
    - PAYMENT_MISMATCH (gateway or client tampering / bugs)
    - QUOTA_ADJUSTED
    - TENANT_CREATED / PACKAGE_UPDATED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Who performed it (None for gateway / system events)
    actor = Column(String(100), nullable=True)

    # Affected tenant
    tenant_id = Column(String(36), index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', tenant={self.tenant_id})>"
