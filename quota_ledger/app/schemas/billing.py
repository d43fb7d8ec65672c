"""
Billing Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any
from quota_ledger.app.models.billing_enums import OrderStatus, TransactionType, FinalizeSource


class PackageResponse(BaseModel):
    """Schema for displaying a package."""
    id: str
    name: str
    description: Optional[str]
    quota_units: int
    price_minor: int
    currency: str
    is_active: bool

    class Config:
        from_attributes = True


class PackageUpdate(BaseModel):
    """Only the active flag of a package is mutable."""
    is_active: bool


class BalanceResponse(BaseModel):
    tenant_id: str
    quota_balance: int


class TransactionResponse(BaseModel):
    """Schema for displaying a ledger entry."""
    id: str
    sequence: int
    entry_type: TransactionType
    quota_change: int
    balance_after: int
    description: str
    batch_ref: Optional[str]
    order_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    page: int
    page_size: int
    total: int


class OrderCreate(BaseModel):
    package_id: str = Field(..., min_length=1, max_length=50)


class CheckoutResponse(BaseModel):
    """What the checkout widget needs to render."""
    order_id: str
    key_id: str
    amount: int
    currency: str
    package_id: str
    quota_units: int


class OrderResponse(BaseModel):
    order_id: str
    package_id: str
    amount_minor: int
    currency: str
    quota_units: int
    status: OrderStatus
    finalized_via: Optional[FinalizeSource]
    created_at: datetime
    finalized_at: Optional[datetime]


class PaymentVerifyRequest(BaseModel):
    """Checkout success callback payload."""
    order_id: str = Field(..., min_length=1, max_length=100)
    payment_id: str = Field(..., min_length=1, max_length=100)
    signature: str = Field(..., min_length=1, max_length=256)


class PaymentVerifyResponse(BaseModel):
    outcome: str
    order_id: str
    quota_added: int
    quota_balance: int


class ActivationRequest(BaseModel):
    units: int = Field(..., gt=0, description="Quota units the batch consumes")
    description: Optional[str] = Field(None, max_length=200)


class ActivationResponse(BaseModel):
    batch_ref: str
    units: int
    transaction_id: str
    quota_balance: int
    replayed: bool


class WebhookPayload(BaseModel):
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None


class WebhookEnvelope(BaseModel):
    """Gateway webhook body, validated after its signature."""
    event: str
    event_id: Optional[str] = None
    payload: Optional[WebhookPayload] = None


class WebhookResponse(BaseModel):
    status: str
    event: Optional[str] = None
    order_id: Optional[str] = None


class TenantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    tenant_id: Optional[str] = Field(None, min_length=1, max_length=36)


class TenantResponse(BaseModel):
    id: str
    name: str
    created_at: datetime

    class Config:
        from_attributes = True


class AdjustmentCreate(BaseModel):
    quota_change: int = Field(..., description="Signed quota delta, non-zero")
    reason: str = Field(..., min_length=1, max_length=200)
    idempotency_key: str = Field(..., min_length=1, max_length=100)


class AdjustmentResponse(BaseModel):
    outcome: str
    transaction_id: str
    quota_balance: int


class LedgerCheckResponse(BaseModel):
    tenant_id: str
    quota_balance: int
    ledger_sum: int
    entries: int
    consistent: bool


class AuditLogResponse(BaseModel):
    id: int
    action: str
    actor: Optional[str]
    tenant_id: Optional[str]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True
