"""
Quota Consumption Service (Domain Logic).

Debits quota when a production batch is activated. The debit is a
compare-and-append in the tenant's critical section: the balance check and
the ledger write cannot be split by a concurrent activation.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from quota_ledger.app.core.exceptions import IdempotencyKeyReuseError
from quota_ledger.app.domain.billing.ledger_service import LedgerService, AppendResult
from quota_ledger.app.models.billing_enums import TransactionType
from quota_ledger.app.models.quota_transaction import QuotaTransaction
from quota_ledger.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)


@dataclass
class DebitResult:
    transaction: QuotaTransaction
    balance: int
    replayed: bool  # True when a retried activation returned the original debit


def activation_idempotency_key(batch_ref: str) -> str:
    return f"batch:{batch_ref}"


class QuotaService:

    @staticmethod
    async def debit_for_activation(
        db: AsyncSession,
        tenant_id: str,
        units: int,
        batch_ref: str,
        description: Optional[str] = None,
    ) -> DebitResult:
        """
        Debit `units` of quota for activating batch `batch_ref`.

        Retrying with the same batch_ref returns the original debit instead
        of debiting again.

        Raises:
            ValueError: units is not a positive integer or batch_ref is empty
            InsufficientQuotaError: balance below units; nothing is written
            IdempotencyKeyReuseError: batch_ref was already debited for a
                different number of units
            TenantNotFoundError: unknown tenant
            LedgerUnavailableError: the debit kept conflicting
        """
        if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
            raise ValueError("units must be a positive integer")
        if not batch_ref:
            raise ValueError("batch_ref is required")

        key = activation_idempotency_key(batch_ref)

        async def work(session: AsyncSession) -> AppendResult:
            return await LedgerService.append_in_transaction(
                session,
                tenant_id,
                -units,
                description or f"Batch Activation: {batch_ref} ({units} units)",
                key,
                entry_type=TransactionType.ACTIVATION,
                batch_ref=batch_ref,
            )

        result = await LedgerService.run_serialized(db, tenant_id, work)

        if result.duplicate:
            if result.transaction.quota_change != -units:
                raise IdempotencyKeyReuseError(
                    key,
                    details={"recorded_units": -result.transaction.quota_change, "requested_units": units}
                )
            logger.info("Activation %s for tenant %s already debited, replay ignored", batch_ref, tenant_id)
            return DebitResult(result.transaction, result.balance, replayed=True)

        logger.info(
            "Activation %s debited %d quota from tenant %s (balance %d)",
            batch_ref, units, tenant_id, result.balance
        )
        return DebitResult(result.transaction, result.balance, replayed=False)

    @staticmethod
    async def adjust(
        db: AsyncSession,
        tenant_id: str,
        quota_change: int,
        reason: str,
        idempotency_key: str,
        actor: Optional[str] = None,
    ) -> AppendResult:
        """
        Append an operator adjustment (refund, reversal, goodwill credit).

        History is never edited; the adjustment is a new signed entry and
        still cannot drive the balance negative.
        """
        async def work(session: AsyncSession) -> AppendResult:
            appended = await LedgerService.append_in_transaction(
                session,
                tenant_id,
                quota_change,
                f"Adjustment: {reason}",
                f"adjustment:{idempotency_key}",
                entry_type=TransactionType.ADJUSTMENT,
            )
            if not appended.duplicate:
                await log_event(
                    session,
                    AuditAction.QUOTA_ADJUSTED,
                    tenant_id=tenant_id,
                    actor=actor,
                    metadata={"quota_change": quota_change, "reason": reason, "idempotency_key": idempotency_key}
                )
            return appended

        result = await LedgerService.run_serialized(db, tenant_id, work)
        logger.info(
            "Adjustment %s for tenant %s: %+d (%s), balance %d",
            idempotency_key, tenant_id, quota_change, result.outcome.value, result.balance
        )
        return result
