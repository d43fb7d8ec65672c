"""
Webhook Reconciliation Tests.

The gateway webhook and the client callback settle orders through the same
gate; duplicates and late deliveries never credit twice.
"""

import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from quota_ledger.app.core.config import settings
from quota_ledger.app.core.exceptions import MalformedWebhookError, WebhookSignatureError
from quota_ledger.app.domain.billing.ledger_service import LedgerService
from quota_ledger.app.domain.billing.order_service import OrderService
from quota_ledger.app.domain.billing.reconciliation import (
    ReconciliationListener,
    WebhookStatus,
    WEBHOOK_EVENT_PREFIX,
)
from quota_ledger.app.models.billing_enums import OrderStatus, FinalizeSource


def build_event(verifier, order_id, payment_id, event="payment.captured", event_id="evt_1", signature=None):
    body = json.dumps({
        "event": event,
        "event_id": event_id,
        "payload": {
            "order_id": order_id,
            "payment_id": payment_id,
            "signature": signature if signature is not None else verifier.expected_signature(order_id, payment_id),
        },
    }).encode()
    return body, verifier.webhook_signature(body)


@pytest.fixture
async def order_id(db_session, gateway, tenant):
    checkout = await OrderService.create_order(db_session, gateway, tenant.id, "starter")
    return checkout.order.gateway_order_id


@pytest.fixture
def listener(verifier, redis_client_session):
    return ReconciliationListener(verifier, redis_client=redis_client_session)


@pytest.mark.asyncio
async def test_webhook_credits_order(db_session, listener, verifier, tenant, order_id):
    body, signature = build_event(verifier, order_id, "pay_001")

    result = await listener.handle(db_session, body, signature)

    assert result.status == WebhookStatus.CREDITED
    order = await OrderService.get_order(db_session, order_id)
    assert order.status == OrderStatus.VERIFIED
    assert order.finalized_via == FinalizeSource.WEBHOOK
    assert await LedgerService.read_balance(db_session, tenant.id) == 10


@pytest.mark.asyncio
async def test_redelivered_event_is_skipped(db_session, listener, verifier, redis_client_session, tenant, order_id):
    body, signature = build_event(verifier, order_id, "pay_001", event_id="evt_dup")

    await listener.handle(db_session, body, signature)
    again = await listener.handle(db_session, body, signature)

    assert again.status == WebhookStatus.DUPLICATE
    assert await redis_client_session.exists(f"{WEBHOOK_EVENT_PREFIX}evt_dup")
    assert redis_client_session.ttls[f"{WEBHOOK_EVENT_PREFIX}evt_dup"] == settings.webhook_dedupe_ttl_seconds
    assert await LedgerService.read_balance(db_session, tenant.id) == 10


@pytest.mark.asyncio
async def test_webhook_after_client_callback(db_session, listener, verifier, tenant, order_id):
    """Client settles first, the webhook then observes the stored outcome."""
    await OrderService.finalize(
        db_session, verifier, order_id, "pay_001", verifier.expected_signature(order_id, "pay_001")
    )
    body, signature = build_event(verifier, order_id, "pay_001")

    result = await listener.handle(db_session, body, signature)

    assert result.status == WebhookStatus.ALREADY_FINALIZED
    assert await LedgerService.read_balance(db_session, tenant.id) == 10


@pytest.mark.asyncio
async def test_webhook_dedupe_survives_redis_outage(db_session, verifier, tenant, order_id, mocker):
    """Without Redis the database gate still keeps the credit single."""
    broken_redis = mocker.AsyncMock()
    broken_redis.exists.side_effect = RedisConnectionError("down")
    broken_redis.set.side_effect = RedisConnectionError("down")
    listener = ReconciliationListener(verifier, redis_client=broken_redis)
    body, signature = build_event(verifier, order_id, "pay_001")

    first = await listener.handle(db_session, body, signature)
    second = await listener.handle(db_session, body, signature)

    assert first.status == WebhookStatus.CREDITED
    assert second.status == WebhookStatus.ALREADY_FINALIZED
    assert await LedgerService.read_balance(db_session, tenant.id) == 10


@pytest.mark.asyncio
async def test_unsigned_webhook_is_rejected(db_session, listener, verifier, tenant, order_id):
    body, _ = build_event(verifier, order_id, "pay_001")

    with pytest.raises(WebhookSignatureError):
        await listener.handle(db_session, body, "not-a-signature")

    with pytest.raises(WebhookSignatureError):
        await listener.handle(db_session, body, None)

    assert await LedgerService.read_balance(db_session, tenant.id) == 0


@pytest.mark.asyncio
async def test_forged_payment_proof_is_rejected(db_session, listener, verifier, tenant, order_id):
    body, signature = build_event(verifier, order_id, "pay_001", signature="forged")

    result = await listener.handle(db_session, body, signature)

    assert result.status == WebhookStatus.REJECTED
    order = await OrderService.get_order(db_session, order_id)
    assert order.status == OrderStatus.FAILED
    assert await LedgerService.read_balance(db_session, tenant.id) == 0


@pytest.mark.asyncio
async def test_conflicting_payment_is_reported(db_session, listener, verifier, tenant, order_id):
    await OrderService.finalize(
        db_session, verifier, order_id, "pay_001", verifier.expected_signature(order_id, "pay_001")
    )
    body, signature = build_event(verifier, order_id, "pay_002", event_id="evt_2")

    result = await listener.handle(db_session, body, signature)

    assert result.status == WebhookStatus.MISMATCH
    assert await LedgerService.read_balance(db_session, tenant.id) == 10


@pytest.mark.asyncio
async def test_non_settling_event_is_ignored(db_session, listener, verifier, tenant, order_id):
    body, signature = build_event(verifier, order_id, "pay_001", event="payment.failed")

    result = await listener.handle(db_session, body, signature)

    assert result.status == WebhookStatus.IGNORED
    order = await OrderService.get_order(db_session, order_id)
    assert order.status == OrderStatus.CREATED


@pytest.mark.asyncio
async def test_unknown_order_is_ignored(db_session, listener, verifier, tenant):
    body, signature = build_event(verifier, "order_elsewhere", "pay_001")

    result = await listener.handle(db_session, body, signature)

    assert result.status == WebhookStatus.IGNORED


@pytest.mark.asyncio
async def test_malformed_envelopes(db_session, listener, verifier, tenant):
    not_json = b"payment captured"
    with pytest.raises(MalformedWebhookError):
        await listener.handle(db_session, not_json, verifier.webhook_signature(not_json))

    missing_ids = json.dumps({"event": "payment.captured", "payload": {}}).encode()
    with pytest.raises(MalformedWebhookError):
        await listener.handle(db_session, missing_ids, verifier.webhook_signature(missing_ids))


@pytest.mark.asyncio
async def test_signed_envelope_with_wrong_field_types(db_session, listener, verifier, tenant, order_id):
    bad_payloads = [
        {"order_id": order_id, "payment_id": "pay_001", "signature": 12345},
        {"order_id": [order_id], "payment_id": "pay_001", "signature": "abc"},
        {"order_id": order_id, "payment_id": {"id": "pay_001"}, "signature": "abc"},
    ]
    for payload in bad_payloads:
        body = json.dumps({"event": "payment.captured", "event_id": "evt_bad", "payload": payload}).encode()
        with pytest.raises(MalformedWebhookError):
            await listener.handle(db_session, body, verifier.webhook_signature(body))

    order = await OrderService.get_order(db_session, order_id)
    assert order.status == OrderStatus.CREATED
    assert await LedgerService.read_balance(db_session, tenant.id) == 0


@pytest.mark.asyncio
async def test_envelope_without_payload_is_acknowledged(db_session, listener, verifier):
    body = json.dumps({"event": "refund.created", "payload": None}).encode()

    result = await listener.handle(db_session, body, verifier.webhook_signature(body))

    assert result.status == WebhookStatus.IGNORED
    assert result.order_id is None
