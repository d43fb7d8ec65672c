"""
Batch Activation API Endpoints.

Activating a production batch consumes quota from the caller's tenant.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from quota_ledger.app.db.session import get_db
from quota_ledger.app.core.dependencies import get_current_tenant_id
from quota_ledger.app.domain.billing.quota_service import QuotaService
from quota_ledger.app.schemas.billing import ActivationRequest, ActivationResponse

router = APIRouter(prefix="/batches", tags=["Batches"])


@router.post("/{batch_ref}/activate", response_model=ActivationResponse)
async def activate_batch(
    request: ActivationRequest,
    batch_ref: str = Path(..., min_length=1, max_length=100),
    tenant_id: str = Depends(get_current_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Debit quota for a batch activation.

    Returns 402 when the balance cannot cover the batch. Repeating the call
    for the same batch returns the original debit.
    """
    result = await QuotaService.debit_for_activation(
        db, tenant_id, request.units, batch_ref, description=request.description
    )
    return ActivationResponse(
        batch_ref=batch_ref,
        units=request.units,
        transaction_id=result.transaction.id,
        quota_balance=result.balance,
        replayed=result.replayed,
    )
