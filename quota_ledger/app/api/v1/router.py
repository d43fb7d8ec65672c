"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from quota_ledger.app.api.v1.endpoints import billing, batches, webhooks, admin_billing

router = APIRouter()

# Tenant checkout and ledger views
router.include_router(billing.router)

# Quota consumption
router.include_router(batches.router)

# Gateway reconciliation
router.include_router(webhooks.router)

# Admin endpoints
router.include_router(admin_billing.router)
