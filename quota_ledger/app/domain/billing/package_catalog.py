"""
Package Catalog.

Resolves purchasable quota packages. Read-mostly; administered out of band
and never mutated at consumption time.
"""

import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from quota_ledger.app.core.config import settings
from quota_ledger.app.core.exceptions import UnknownPackageError
from quota_ledger.app.models.package import Package
from quota_ledger.app.services.audit import log_event, AuditAction

logger = logging.getLogger(__name__)


DEFAULT_PACKAGES = [
    {
        "id": "starter",
        "name": "Starter License",
        "description": "10 Batch Activations",
        "quota_units": 10,
        "price_minor": 499900,  # ₹4,999
        "currency": settings.default_currency,
        "is_active": True,
    },
    {
        "id": "growth",
        "name": "Growth License",
        "description": "50 Batch Activations",
        "quota_units": 50,
        "price_minor": 1999900,  # ₹19,999
        "currency": settings.default_currency,
        "is_active": True,
    },
    {
        # Custom pricing, sold offline
        "id": "enterprise",
        "name": "Enterprise License",
        "description": "200+ Batch Activations",
        "quota_units": 200,
        "price_minor": 0,
        "currency": settings.default_currency,
        "is_active": False,
    },
]


class PackageCatalog:

    @staticmethod
    async def get(db: AsyncSession, package_id: str, include_inactive: bool = False) -> Package:
        """
        Find a package by id.

        Raises:
            UnknownPackageError: If the id does not resolve, or the package
                is inactive and include_inactive is False.
        """
        package = await db.get(Package, package_id)

        if package is None or (not package.is_active and not include_inactive):
            raise UnknownPackageError(package_id)

        return package

    @staticmethod
    async def list_active(db: AsyncSession) -> List[Package]:
        result = await db.execute(
            select(Package).where(Package.is_active == True).order_by(Package.price_minor)  # noqa: E712
        )
        return list(result.scalars().all())

    @staticmethod
    async def set_active(db: AsyncSession, package_id: str, is_active: bool, actor: str = None) -> Package:
        """Toggle the only mutable attribute of a package."""
        package = await PackageCatalog.get(db, package_id, include_inactive=True)
        package.is_active = is_active

        await log_event(
            db,
            AuditAction.PACKAGE_UPDATED,
            actor=actor,
            metadata={"package_id": package_id, "is_active": is_active}
        )
        await db.commit()

        logger.info("Package %s is_active=%s", package_id, is_active)
        return package

    @staticmethod
    async def seed_defaults(db: AsyncSession) -> int:
        """Insert default packages that are missing. Existing rows are left untouched."""
        created = 0
        try:
            for data in DEFAULT_PACKAGES:
                if await db.get(Package, data["id"]) is None:
                    db.add(Package(**data))
                    created += 1
            if created:
                await db.commit()
        except IntegrityError:
            # another worker seeded the same rows first
            await db.rollback()
            logger.info("Default packages already seeded by another worker")
            return 0

        if created:
            logger.info("Seeded %d default packages", created)
        return created
