"""
Audit logging service for tracking payment anomalies and operator actions.

Provides centralized logging for compliance and fraud monitoring.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from quota_ledger.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    TENANT_CREATED = "TENANT_CREATED"
    PACKAGE_UPDATED = "PACKAGE_UPDATED"

    ORDER_CREATED = "ORDER_CREATED"
    ORDER_VERIFIED = "ORDER_VERIFIED"
    ORDER_FAILED = "ORDER_FAILED"
    PAYMENT_MISMATCH = "PAYMENT_MISMATCH"

    QUOTA_ADJUSTED = "QUOTA_ADJUSTED"


async def log_event(
    db: AsyncSession,
    action: str,
    tenant_id: Optional[str] = None,
    actor: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an audit row to the current unit of work.

    The row is flushed, not committed: it lands together with the state
    change it describes.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        tenant_id: Affected tenant
        actor: Username / subsystem that triggered the event
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        action=action,
        tenant_id=tenant_id,
        actor=actor,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    tenant_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Args:
        db: Database session
        tenant_id: Filter by tenant
        action: Filter by action type
        limit: Maximum number of records to return

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if tenant_id:
        query = query.where(AuditLog.tenant_id == tenant_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
