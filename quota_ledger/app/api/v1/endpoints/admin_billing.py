"""
Admin Billing API Endpoints.

Tenant onboarding, catalogue maintenance, manual quota adjustments and
ledger audits.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from quota_ledger.app.db.session import get_db
from quota_ledger.app.models.enums import UserRole
from quota_ledger.app.schemas.billing import (
    TenantCreate, TenantResponse, PackageUpdate, PackageResponse,
    AdjustmentCreate, AdjustmentResponse, LedgerCheckResponse, AuditLogResponse
)
from quota_ledger.app.core.guards import require_role
from quota_ledger.app.domain.billing.ledger_service import LedgerService
from quota_ledger.app.domain.billing.package_catalog import PackageCatalog
from quota_ledger.app.domain.billing.quota_service import QuotaService
from quota_ledger.app.services.audit import get_audit_trail

router = APIRouter(prefix="/admin", tags=["Admin - Billing"])


@router.post("/tenants", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    tenant: TenantCreate,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a tenant with a zero quota balance.
    """
    return await LedgerService.register_tenant(
        db, tenant.name, tenant_id=tenant.tenant_id, actor=current_user.get("sub")
    )


@router.patch("/packages/{package_id}", response_model=PackageResponse)
async def update_package(
    update: PackageUpdate,
    package_id: str = Path(...),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Activate or retire a package. Existing orders keep their snapshot.
    """
    return await PackageCatalog.set_active(
        db, package_id, update.is_active, actor=current_user.get("sub")
    )


@router.post("/tenants/{tenant_id}/adjustments", response_model=AdjustmentResponse)
async def adjust_quota(
    adjustment: AdjustmentCreate,
    tenant_id: str = Path(...),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Append a signed adjustment entry (refund, reversal, goodwill).
    """
    if adjustment.quota_change == 0:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="quota_change must be non-zero"
        )

    result = await QuotaService.adjust(
        db,
        tenant_id,
        adjustment.quota_change,
        adjustment.reason,
        adjustment.idempotency_key,
        actor=current_user.get("sub"),
    )
    return AdjustmentResponse(
        outcome=result.outcome.value,
        transaction_id=result.transaction.id,
        quota_balance=result.balance,
    )


@router.get("/tenants/{tenant_id}/ledger-check", response_model=LedgerCheckResponse)
async def check_ledger(
    tenant_id: str = Path(...),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Compare the cached balance against the sum of the tenant's ledger.
    """
    report = await LedgerService.check_consistency(db, tenant_id)
    return LedgerCheckResponse(
        tenant_id=report.tenant_id,
        quota_balance=report.balance,
        ledger_sum=report.ledger_sum,
        entries=report.entries,
        consistent=report.consistent,
    )


@router.get("/audit-logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    tenant_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Billing audit trail, newest first.
    """
    return await get_audit_trail(db, tenant_id=tenant_id, action=action, limit=limit)
