"""
Order Lifecycle Manager (Domain Logic).

Tracks gateway orders from placement to a single terminal outcome.

`finalize` is the one gated entry point shared by the checkout callback and
the gateway webhook. The CREATED -> VERIFIED transition and the credit entry
are committed together, and the transition is a compare-and-set on the
order status, so whichever signal arrives first credits the order and every
later signal observes the stored outcome.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quota_ledger.app.core.exceptions import (
    OrderNotFoundError,
    PaymentMismatchError,
    TenantNotFoundError,
    VerificationFailedError,
)
from quota_ledger.app.domain.billing.gateway_client import PaymentGateway
from quota_ledger.app.domain.billing.ledger_service import LedgerService
from quota_ledger.app.domain.billing.package_catalog import PackageCatalog
from quota_ledger.app.domain.billing.payment_verifier import PaymentVerifier
from quota_ledger.app.models.billing_enums import OrderStatus, FinalizeSource, TransactionType
from quota_ledger.app.models.payment_order import PaymentOrder
from quota_ledger.app.models.quota_transaction import QuotaTransaction
from quota_ledger.app.models.tenant import Tenant
from quota_ledger.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)


class FinalizeOutcome(str, enum.Enum):
    CREDITED = "CREDITED"
    ALREADY_FINALIZED = "ALREADY_FINALIZED"


@dataclass
class CheckoutSession:
    """What the checkout widget needs to collect a payment."""
    order: PaymentOrder
    key_id: str


@dataclass
class FinalizeResult:
    outcome: FinalizeOutcome
    order: PaymentOrder
    transaction: Optional[QuotaTransaction]
    balance: int

    @property
    def quota_added(self) -> int:
        return self.order.quota_units if self.outcome == FinalizeOutcome.CREDITED else 0


def credit_idempotency_key(order_pk: str) -> str:
    return f"order:{order_pk}"


class OrderService:

    @staticmethod
    async def create_order(
        db: AsyncSession,
        gateway: PaymentGateway,
        tenant_id: str,
        package_id: str,
    ) -> CheckoutSession:
        """
        Place an order for a package.

        Price and quota are snapshotted from the catalogue at this instant.

        Raises:
            UnknownPackageError: package missing or inactive
            TenantNotFoundError: unknown tenant
            GatewayUnavailableError: the gateway did not create the order
        """
        package = await PackageCatalog.get(db, package_id)
        if await db.get(Tenant, tenant_id) is None:
            raise TenantNotFoundError(tenant_id)

        amount_minor = package.price_minor
        currency = package.currency
        quota_units = package.quota_units
        # Razorpay caps receipts at 40 characters
        receipt = f"tenant_{tenant_id[:8]}_pkg_{package_id}_{uuid.uuid4().hex[:6]}"[:40]

        gateway_order = await gateway.create_order(
            amount_minor,
            currency,
            receipt,
            notes={"tenant_id": tenant_id, "package_id": package_id},
        )

        order = PaymentOrder(
            tenant_id=tenant_id,
            package_id=package_id,
            amount_minor=amount_minor,
            currency=currency,
            quota_units=quota_units,
            gateway_order_id=gateway_order.id,
            receipt=receipt,
            status=OrderStatus.CREATED,
        )
        db.add(order)
        await db.flush()

        await log_event(
            db,
            AuditAction.ORDER_CREATED,
            tenant_id=tenant_id,
            metadata={"order_id": order.id, "gateway_order_id": gateway_order.id, "package_id": package_id}
        )
        await db.commit()

        logger.info(
            "Order %s created for tenant %s: %s (%d %s, +%d quota)",
            gateway_order.id, tenant_id, package_id, amount_minor, currency, quota_units
        )
        return CheckoutSession(order=order, key_id=gateway.key_id)

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str, tenant_id: Optional[str] = None) -> PaymentOrder:
        """
        Look up an order by its gateway order id.

        When tenant_id is given, orders of other tenants are reported as
        not found.
        """
        result = await db.execute(
            select(PaymentOrder)
            .where(PaymentOrder.gateway_order_id == order_id)
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()

        if order is None or (tenant_id is not None and order.tenant_id != tenant_id):
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    async def finalize(
        db: AsyncSession,
        verifier: PaymentVerifier,
        order_id: str,
        payment_id: str,
        signature: Optional[str],
        *,
        source: FinalizeSource = FinalizeSource.CLIENT,
        tenant_id: Optional[str] = None,
    ) -> FinalizeResult:
        """
        Settle an order from a payment proof.

        Returns CREDITED on the first valid proof and ALREADY_FINALIZED for
        a replay of the recorded payment.

        Raises:
            OrderNotFoundError: unknown gateway order id
            VerificationFailedError: the signature does not match; the order
                is FAILED and nothing is credited
            PaymentMismatchError: the proof disagrees with the recorded
                outcome; audited, nothing is credited
            LedgerUnavailableError: the credit kept conflicting
        """
        order = await OrderService.get_order(db, order_id, tenant_id=tenant_id)

        if order.is_terminal:
            return await OrderService._resolve_terminal(db, verifier, order, payment_id, signature, source)

        # Verification is pure CPU work and runs outside the tenant lock
        if not verifier.verify(order.gateway_order_id, payment_id, signature):
            return await OrderService._fail(db, verifier, order, payment_id, signature, source)

        return await OrderService._credit(db, verifier, order, payment_id, signature, source)

    @staticmethod
    async def _reload(db: AsyncSession, order_pk: str) -> PaymentOrder:
        result = await db.execute(
            select(PaymentOrder)
            .where(PaymentOrder.id == order_pk)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    async def _credit(
        db: AsyncSession,
        verifier: PaymentVerifier,
        order: PaymentOrder,
        payment_id: str,
        signature: str,
        source: FinalizeSource,
    ) -> FinalizeResult:
        # Plain values: a rolled back attempt expires the ORM instance
        order_pk = order.id
        tenant_id = order.tenant_id
        gateway_order_id = order.gateway_order_id
        quota_units = order.quota_units
        package_id = order.package_id

        async def work(session: AsyncSession):
            claimed = await session.execute(
                update(PaymentOrder)
                .where(
                    PaymentOrder.id == order_pk,
                    PaymentOrder.status == OrderStatus.CREATED,
                )
                .values(
                    status=OrderStatus.VERIFIED,
                    gateway_payment_id=payment_id,
                    finalized_via=source,
                    finalized_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                return None

            appended = await LedgerService.append_in_transaction(
                session,
                tenant_id,
                quota_units,
                f"Purchase: {package_id} (+{quota_units} quota, order {gateway_order_id})",
                credit_idempotency_key(order_pk),
                entry_type=TransactionType.PURCHASE,
                order_id=order_pk,
            )
            await log_event(
                session,
                AuditAction.ORDER_VERIFIED,
                tenant_id=tenant_id,
                actor=source.value,
                metadata={
                    "order_id": order_pk,
                    "gateway_order_id": gateway_order_id,
                    "payment_id": payment_id,
                    "quota_units": quota_units,
                }
            )
            return appended

        appended = await LedgerService.run_serialized(db, tenant_id, work)

        order = await OrderService._reload(db, order_pk)
        if appended is None:
            # Another signal settled the order between our read and our claim
            return await OrderService._resolve_terminal(db, verifier, order, payment_id, signature, source)

        logger.info(
            "Payment verified via %s: order %s payment %s, tenant %s +%d quota (balance %d)",
            source.value, gateway_order_id, payment_id, tenant_id, quota_units, appended.balance
        )
        return FinalizeResult(FinalizeOutcome.CREDITED, order, appended.transaction, appended.balance)

    @staticmethod
    async def _fail(
        db: AsyncSession,
        verifier: PaymentVerifier,
        order: PaymentOrder,
        payment_id: str,
        signature: Optional[str],
        source: FinalizeSource,
    ) -> FinalizeResult:
        order_pk = order.id
        tenant_id = order.tenant_id
        gateway_order_id = order.gateway_order_id

        claimed = await db.execute(
            update(PaymentOrder)
            .where(
                PaymentOrder.id == order_pk,
                PaymentOrder.status == OrderStatus.CREATED,
            )
            .values(
                status=OrderStatus.FAILED,
                gateway_payment_id=payment_id,
                failure_reason="signature_mismatch",
                finalized_via=source,
                finalized_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            order = await OrderService._reload(db, order_pk)
            return await OrderService._resolve_terminal(db, verifier, order, payment_id, signature, source)

        await log_event(
            db,
            AuditAction.ORDER_FAILED,
            tenant_id=tenant_id,
            actor=source.value,
            metadata={"order_id": order_pk, "gateway_order_id": gateway_order_id, "payment_id": payment_id}
        )
        await db.commit()

        logger.warning(
            "Invalid payment signature via %s for order %s (payment %s), order FAILED",
            source.value, gateway_order_id, payment_id
        )
        raise VerificationFailedError(gateway_order_id)

    @staticmethod
    async def _resolve_terminal(
        db: AsyncSession,
        verifier: PaymentVerifier,
        order: PaymentOrder,
        payment_id: str,
        signature: Optional[str],
        source: FinalizeSource,
    ) -> FinalizeResult:
        if order.status == OrderStatus.VERIFIED:
            if payment_id == order.gateway_payment_id:
                transaction = await LedgerService.find_by_idempotency_key(
                    db, order.tenant_id, credit_idempotency_key(order.id)
                )
                balance = await LedgerService.read_balance(db, order.tenant_id)
                logger.info(
                    "Order %s already finalized, replay via %s ignored",
                    order.gateway_order_id, source.value
                )
                return FinalizeResult(FinalizeOutcome.ALREADY_FINALIZED, order, transaction, balance)

            await OrderService._report_mismatch(db, order, payment_id, source, "different_payment_for_verified_order")

        # FAILED is terminal: a proof that now verifies disagrees with the stored outcome
        if verifier.verify(order.gateway_order_id, payment_id, signature):
            await OrderService._report_mismatch(db, order, payment_id, source, "valid_proof_for_failed_order")

        raise VerificationFailedError(order.gateway_order_id)

    @staticmethod
    async def _report_mismatch(
        db: AsyncSession,
        order: PaymentOrder,
        payment_id: str,
        source: FinalizeSource,
        reason: str,
    ) -> None:
        await log_event(
            db,
            AuditAction.PAYMENT_MISMATCH,
            tenant_id=order.tenant_id,
            actor=source.value,
            metadata={
                "order_id": order.id,
                "gateway_order_id": order.gateway_order_id,
                "status": order.status.value,
                "recorded_payment_id": order.gateway_payment_id,
                "claimed_payment_id": payment_id,
                "reason": reason,
            }
        )
        await db.commit()

        logger.error(
            "PAYMENT MISMATCH via %s on order %s (%s): recorded=%s claimed=%s",
            source.value, order.gateway_order_id, reason, order.gateway_payment_id, payment_id
        )
        raise PaymentMismatchError(order.gateway_order_id, order.gateway_payment_id, payment_id)
