"""
Ledger Service (Domain Logic).

Append-only quota ledger and the balance view derived from it.

Every balance change is the side effect of appending a transaction, in the
same database transaction. Appends for one tenant are serialized by a
process-local lock and by a compare-and-append at the storage layer
(row lock where the dialect supports it, optimistic version predicate
everywhere). A conflicting append is rolled back and retried a bounded
number of times.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import select, update, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from quota_ledger.app.core.concurrency import tenant_locks
from quota_ledger.app.core.config import settings
from quota_ledger.app.core.exceptions import (
    InsufficientQuotaError,
    LedgerUnavailableError,
    TenantAlreadyExistsError,
    TenantNotFoundError,
)
from quota_ledger.app.models.billing_enums import TransactionType
from quota_ledger.app.models.quota_transaction import QuotaTransaction
from quota_ledger.app.models.tenant import Tenant, QuotaBalance
from quota_ledger.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BalanceConflictError(Exception):
    """The balance row changed between read and write."""


class AppendOutcome(str, enum.Enum):
    APPENDED = "APPENDED"
    DUPLICATE = "DUPLICATE"  # idempotency key already present, nothing written


@dataclass
class AppendResult:
    outcome: AppendOutcome
    transaction: QuotaTransaction
    balance: int

    @property
    def duplicate(self) -> bool:
        return self.outcome == AppendOutcome.DUPLICATE


@dataclass
class TransactionPage:
    items: List[QuotaTransaction]
    page: int
    page_size: int
    total: int


@dataclass
class BalanceReport:
    tenant_id: str
    balance: int
    ledger_sum: int
    entries: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_sum


class LedgerService:

    @staticmethod
    async def register_tenant(db: AsyncSession, name: str, tenant_id: Optional[str] = None, actor: Optional[str] = None) -> Tenant:
        """
        Create a tenant together with its zero balance row.

        Raises:
            TenantAlreadyExistsError: the tenant id is taken
        """
        tenant = Tenant(name=name)
        if tenant_id:
            tenant.id = tenant_id
        db.add(tenant)
        try:
            await db.flush()
            db.add(QuotaBalance(tenant_id=tenant.id, balance=0, version=0))
            await log_event(db, AuditAction.TENANT_CREATED, tenant_id=tenant.id, actor=actor, metadata={"name": name})
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise TenantAlreadyExistsError(tenant_id or name) from exc
        await db.refresh(tenant)

        logger.info("Registered tenant %s (%s)", tenant.id, name)
        return tenant

    @staticmethod
    async def run_serialized(
        db: AsyncSession,
        tenant_id: str,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """
        Run `work` as one committed unit of work in the tenant's critical section.

        `work` must only stage changes (flush, never commit). It is retried
        from scratch on a version conflict or a racing unique-key insert,
        up to `settings.ledger_max_attempts` times. Any other exception rolls
        back and propagates.

        Raises:
            LedgerUnavailableError: conflicts persisted on every attempt
        """
        attempts = settings.ledger_max_attempts
        async with tenant_locks.hold(tenant_id):
            for attempt in range(1, attempts + 1):
                try:
                    result = await work(db)
                    await db.commit()
                    return result
                except (BalanceConflictError, IntegrityError) as exc:
                    await db.rollback()
                    logger.warning(
                        "Ledger conflict for tenant %s (attempt %d/%d): %s",
                        tenant_id, attempt, attempts, exc.__class__.__name__
                    )
                except Exception:
                    await db.rollback()
                    raise

        logger.error("Ledger unavailable for tenant %s after %d attempts", tenant_id, attempts)
        raise LedgerUnavailableError(tenant_id, attempts)

    @staticmethod
    async def find_by_idempotency_key(db: AsyncSession, tenant_id: str, idempotency_key: str) -> Optional[QuotaTransaction]:
        result = await db.execute(
            select(QuotaTransaction).where(
                QuotaTransaction.tenant_id == tenant_id,
                QuotaTransaction.idempotency_key == idempotency_key
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _load_balance(db: AsyncSession, tenant_id: str) -> QuotaBalance:
        query = select(QuotaBalance).where(QuotaBalance.tenant_id == tenant_id).execution_options(populate_existing=True)
        # SQLite has no row locks; the version predicate still applies
        if db.get_bind().dialect.name != "sqlite":
            query = query.with_for_update()

        result = await db.execute(query)
        balance = result.scalar_one_or_none()
        if balance is None:
            raise TenantNotFoundError(tenant_id)
        return balance

    @staticmethod
    async def _bump_balance(db: AsyncSession, tenant_id: str, expected_version: int, new_balance: int) -> None:
        result = await db.execute(
            update(QuotaBalance)
            .where(
                QuotaBalance.tenant_id == tenant_id,
                QuotaBalance.version == expected_version,
            )
            .values(
                balance=new_balance,
                version=expected_version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise BalanceConflictError(f"balance version conflict for tenant={tenant_id}")

    @staticmethod
    async def append_in_transaction(
        db: AsyncSession,
        tenant_id: str,
        quota_change: int,
        description: str,
        idempotency_key: str,
        *,
        entry_type: TransactionType,
        batch_ref: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> AppendResult:
        """
        Compare-and-append one entry without committing.

        Must run inside `run_serialized`.

        Raises:
            InsufficientQuotaError: the entry would make the balance negative
            TenantNotFoundError: no balance row for the tenant
            BalanceConflictError: the balance row moved underneath us
        """
        if quota_change == 0:
            raise ValueError("quota_change must be non-zero")

        existing = await LedgerService.find_by_idempotency_key(db, tenant_id, idempotency_key)
        balance = await LedgerService._load_balance(db, tenant_id)

        if existing is not None:
            return AppendResult(AppendOutcome.DUPLICATE, existing, balance.balance)

        current = balance.balance
        new_balance = current + quota_change
        if new_balance < 0:
            raise InsufficientQuotaError(tenant_id, required=-quota_change, available=current)

        version = balance.version
        await LedgerService._bump_balance(db, tenant_id, version, new_balance)

        transaction = QuotaTransaction(
            tenant_id=tenant_id,
            sequence=version + 1,
            entry_type=entry_type,
            quota_change=quota_change,
            balance_after=new_balance,
            description=description[:255],
            batch_ref=batch_ref,
            order_id=order_id,
            idempotency_key=idempotency_key,
        )
        db.add(transaction)
        await db.flush()

        return AppendResult(AppendOutcome.APPENDED, transaction, new_balance)

    @staticmethod
    async def append(
        db: AsyncSession,
        tenant_id: str,
        quota_change: int,
        description: str,
        idempotency_key: str,
        *,
        entry_type: TransactionType = TransactionType.ADJUSTMENT,
        batch_ref: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> AppendResult:
        """
        Append one signed entry and commit.

        Replaying an idempotency key returns the original entry with
        outcome DUPLICATE; callers may log it but must not retry on it.
        """
        async def work(session: AsyncSession) -> AppendResult:
            return await LedgerService.append_in_transaction(
                session, tenant_id, quota_change, description, idempotency_key,
                entry_type=entry_type, batch_ref=batch_ref, order_id=order_id,
            )

        result = await LedgerService.run_serialized(db, tenant_id, work)
        if result.duplicate:
            logger.info("Duplicate idempotency key %s for tenant %s", idempotency_key, tenant_id)
        else:
            logger.info(
                "Ledger %+d for tenant %s (%s), balance %d",
                quota_change, tenant_id, entry_type.value, result.balance
            )
        return result

    @staticmethod
    async def read_balance(db: AsyncSession, tenant_id: str) -> int:
        result = await db.execute(
            select(QuotaBalance.balance).where(QuotaBalance.tenant_id == tenant_id)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise TenantNotFoundError(tenant_id)
        return balance

    @staticmethod
    async def list_transactions(
        db: AsyncSession,
        tenant_id: str,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> TransactionPage:
        """Transactions for a tenant, newest first, 1-based pages."""
        page = max(page, 1)
        page_size = page_size or settings.transactions_page_size
        page_size = max(1, min(page_size, settings.transactions_max_page_size))

        total = (await db.execute(
            select(func.count(QuotaTransaction.id)).where(QuotaTransaction.tenant_id == tenant_id)
        )).scalar_one()

        result = await db.execute(
            select(QuotaTransaction)
            .where(QuotaTransaction.tenant_id == tenant_id)
            .order_by(desc(QuotaTransaction.sequence))
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return TransactionPage(
            items=list(result.scalars().all()),
            page=page,
            page_size=page_size,
            total=total,
        )

    @staticmethod
    async def ledger_sum(db: AsyncSession, tenant_id: str) -> Tuple[int, int]:
        """(sum of quota_change, number of entries) for a tenant."""
        row = (await db.execute(
            select(
                func.coalesce(func.sum(QuotaTransaction.quota_change), 0),
                func.count(QuotaTransaction.id),
            ).where(QuotaTransaction.tenant_id == tenant_id)
        )).one()
        return int(row[0]), int(row[1])

    @staticmethod
    async def check_consistency(db: AsyncSession, tenant_id: str) -> BalanceReport:
        """Compare the cached balance with the sum of the tenant's ledger."""
        balance = await LedgerService.read_balance(db, tenant_id)
        total, entries = await LedgerService.ledger_sum(db, tenant_id)

        report = BalanceReport(tenant_id=tenant_id, balance=balance, ledger_sum=total, entries=entries)
        if not report.consistent:
            logger.error(
                "Balance drift for tenant %s: balance=%d ledger_sum=%d",
                tenant_id, report.balance, report.ledger_sum
            )
        return report
