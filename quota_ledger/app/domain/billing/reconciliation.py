"""
Reconciliation Listener.

Turns gateway webhook deliveries into calls to the same idempotent
`OrderService.finalize` used by the checkout callback. Deliveries may be
duplicated and may arrive before or after the client callback; neither
matters for correctness.

Processed event ids are remembered in Redis so redeliveries skip the
database. The marker is written only after processing succeeded, and a
Redis outage only costs that shortcut.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from quota_ledger.app.core.config import settings
from quota_ledger.app.core.exceptions import (
    MalformedWebhookError,
    OrderNotFoundError,
    PaymentMismatchError,
    VerificationFailedError,
    WebhookSignatureError,
)
from quota_ledger.app.domain.billing.order_service import OrderService, FinalizeOutcome
from quota_ledger.app.domain.billing.payment_verifier import PaymentVerifier
from quota_ledger.app.models.billing_enums import FinalizeSource
from quota_ledger.app.schemas.billing import WebhookEnvelope, WebhookPayload

logger = logging.getLogger(__name__)

WEBHOOK_EVENT_PREFIX = "webhook:event:"

SETTLING_EVENTS = {"payment.captured", "order.paid"}


class WebhookStatus(str, enum.Enum):
    CREDITED = "CREDITED"
    ALREADY_FINALIZED = "ALREADY_FINALIZED"
    DUPLICATE = "DUPLICATE"  # event id seen before, nothing re-processed
    REJECTED = "REJECTED"  # payment signature invalid, order FAILED
    MISMATCH = "MISMATCH"  # disagrees with recorded outcome, audited
    IGNORED = "IGNORED"  # not a settling event, or not our order


@dataclass
class WebhookResult:
    status: WebhookStatus
    event: Optional[str] = None
    order_id: Optional[str] = None
    payment_id: Optional[str] = None


class ReconciliationListener:

    def __init__(self, verifier: PaymentVerifier, redis_client=None):
        self.verifier = verifier
        self.redis = redis_client

    @staticmethod
    def parse(body: bytes) -> WebhookEnvelope:
        """
        Decode a webhook envelope.

        Expected shape:
            {"event": "payment.captured", "event_id": "evt_...",
             "payload": {"order_id": "...", "payment_id": "...", "signature": "..."}}
        """
        try:
            envelope = WebhookEnvelope.model_validate_json(body)
        except ValidationError as exc:
            raise MalformedWebhookError(f"invalid webhook envelope: {exc.error_count()} error(s)") from exc

        if envelope.payload is None:
            envelope.payload = WebhookPayload()
        return envelope

    async def handle(self, db: AsyncSession, body: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Process one webhook delivery.

        Terminal domain outcomes are returned, not raised, so the gateway
        stops redelivering them. LedgerUnavailableError propagates so that
        it does redeliver.

        Raises:
            WebhookSignatureError: body not signed with the webhook secret
            MalformedWebhookError: body is not a webhook envelope
        """
        if not self.verifier.verify_webhook(body, signature):
            logger.warning("Rejected webhook with invalid envelope signature")
            raise WebhookSignatureError()

        envelope = self.parse(body)
        event = envelope.event
        event_id = envelope.event_id
        payload = envelope.payload
        order_id = payload.order_id
        payment_id = payload.payment_id

        if event not in SETTLING_EVENTS:
            logger.info("Webhook event %s acknowledged without action", event)
            return WebhookResult(WebhookStatus.IGNORED, event, order_id, payment_id)

        if not order_id or not payment_id:
            raise MalformedWebhookError("settling event without order_id/payment_id")

        if event_id and await self._seen(event_id):
            logger.info("Webhook event %s already processed", event_id)
            return WebhookResult(WebhookStatus.DUPLICATE, event, order_id, payment_id)

        status = await self._finalize(db, order_id, payment_id, payload.signature)

        if event_id:
            await self._remember(event_id)
        return WebhookResult(status, event, order_id, payment_id)

    async def _finalize(self, db: AsyncSession, order_id: str, payment_id: str, signature: Optional[str]) -> WebhookStatus:
        try:
            result = await OrderService.finalize(
                db, self.verifier, order_id, payment_id, signature,
                source=FinalizeSource.WEBHOOK,
            )
        except OrderNotFoundError:
            logger.warning("Webhook for unknown order %s (payment %s) ignored", order_id, payment_id)
            return WebhookStatus.IGNORED
        except VerificationFailedError:
            return WebhookStatus.REJECTED
        except PaymentMismatchError:
            return WebhookStatus.MISMATCH

        if result.outcome == FinalizeOutcome.CREDITED:
            return WebhookStatus.CREDITED
        return WebhookStatus.ALREADY_FINALIZED

    async def _seen(self, event_id: str) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.exists(f"{WEBHOOK_EVENT_PREFIX}{event_id}"))
        except RedisError as exc:
            logger.warning("Redis unavailable for webhook dedupe lookup: %s", exc)
            return False

    async def _remember(self, event_id: str) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.set(
                f"{WEBHOOK_EVENT_PREFIX}{event_id}", "1", ex=settings.webhook_dedupe_ttl_seconds
            )
        except RedisError as exc:
            logger.warning("Redis unavailable, webhook event %s not remembered: %s", event_id, exc)
