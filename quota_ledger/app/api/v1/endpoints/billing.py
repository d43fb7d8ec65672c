"""
Tenant Billing API Endpoints.

Package catalogue, quota balance, ledger history and the checkout flow
(order placement and client-side payment verification).
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from quota_ledger.app.db.session import get_db
from quota_ledger.app.core.dependencies import get_current_tenant_id
from quota_ledger.app.domain.billing.gateway_client import PaymentGateway, get_payment_gateway
from quota_ledger.app.domain.billing.ledger_service import LedgerService
from quota_ledger.app.domain.billing.order_service import OrderService
from quota_ledger.app.domain.billing.package_catalog import PackageCatalog
from quota_ledger.app.domain.billing.payment_verifier import PaymentVerifier, get_payment_verifier
from quota_ledger.app.models.billing_enums import FinalizeSource
from quota_ledger.app.schemas.billing import (
    PackageResponse, BalanceResponse, TransactionListResponse, TransactionResponse,
    OrderCreate, CheckoutResponse, OrderResponse,
    PaymentVerifyRequest, PaymentVerifyResponse,
)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.get("/packages", response_model=List[PackageResponse])
async def list_packages(
    tenant_id: str = Depends(get_current_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """List purchasable quota packages, cheapest first."""
    return await PackageCatalog.list_active(db)


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    tenant_id: str = Depends(get_current_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    balance = await LedgerService.read_balance(db, tenant_id)
    return BalanceResponse(tenant_id=tenant_id, quota_balance=balance)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    page: int = Query(1, ge=1, le=100_000),
    page_size: Optional[int] = Query(None, ge=1),
    tenant_id: str = Depends(get_current_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Quota ledger for the caller's tenant, newest first."""
    result = await LedgerService.list_transactions(db, tenant_id, page=page, page_size=page_size)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in result.items],
        page=result.page,
        page_size=result.page_size,
        total=result.total,
    )


@router.post("/orders", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: OrderCreate,
    tenant_id: str = Depends(get_current_tenant_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """
    Place an order for a quota package.

    The response carries everything the checkout widget needs. Quota is
    credited only once the payment is verified.
    """
    checkout = await OrderService.create_order(db, gateway, tenant_id, request.package_id)
    order = checkout.order
    return CheckoutResponse(
        order_id=order.gateway_order_id,
        key_id=checkout.key_id,
        amount=order.amount_minor,
        currency=order.currency,
        package_id=order.package_id,
        quota_units=order.quota_units,
    )


@router.post("/orders/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    request: PaymentVerifyRequest,
    tenant_id: str = Depends(get_current_tenant_id),
    db: AsyncSession = Depends(get_db),
    verifier: PaymentVerifier = Depends(get_payment_verifier)
):
    """
    Checkout success callback.

    Safe to call more than once and safe to race with the gateway webhook:
    the order is credited exactly once.
    """
    result = await OrderService.finalize(
        db,
        verifier,
        request.order_id,
        request.payment_id,
        request.signature,
        source=FinalizeSource.CLIENT,
        tenant_id=tenant_id,
    )
    return PaymentVerifyResponse(
        outcome=result.outcome.value,
        order_id=result.order.gateway_order_id,
        quota_added=result.quota_added,
        quota_balance=result.balance,
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    tenant_id: str = Depends(get_current_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Order status, for clients polling after checkout."""
    order = await OrderService.get_order(db, order_id, tenant_id=tenant_id)
    return OrderResponse(
        order_id=order.gateway_order_id,
        package_id=order.package_id,
        amount_minor=order.amount_minor,
        currency=order.currency,
        quota_units=order.quota_units,
        status=order.status,
        finalized_via=order.finalized_via,
        created_at=order.created_at,
        finalized_at=order.finalized_at,
    )
