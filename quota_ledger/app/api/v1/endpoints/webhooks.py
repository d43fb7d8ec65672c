"""
Payment Gateway Webhooks.

Unauthenticated by token; deliveries are authenticated by the gateway's
HMAC over the raw body.
"""

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from quota_ledger.app.db.session import get_db
from quota_ledger.app.core.redis_client import get_redis
from quota_ledger.app.domain.billing.payment_verifier import PaymentVerifier, get_payment_verifier
from quota_ledger.app.domain.billing.reconciliation import ReconciliationListener
from quota_ledger.app.schemas.billing import WebhookResponse

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/payments", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
    redis=Depends(get_redis)
):
    """
    Reconcile a payment event from the gateway.

    Terminal outcomes (credited, replayed, rejected, mismatch) are
    acknowledged with 200 so the gateway stops redelivering. A 503 asks it
    to try again later.
    """
    body = await request.body()
    listener = ReconciliationListener(verifier, redis_client=redis)
    result = await listener.handle(db, body, x_razorpay_signature)
    return WebhookResponse(status=result.status.value, event=result.event, order_id=result.order_id)
