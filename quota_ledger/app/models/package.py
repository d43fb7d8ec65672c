"""
Package database model.

Purchasable quota packages. Only the active flag changes after creation.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, CheckConstraint
from sqlalchemy.sql import func
from quota_ledger.app.core.config import settings
from quota_ledger.app.db.session import Base


class Package(Base):
    """
    Package model.

    Orders reference a package by id and snapshot its price and quota,
    so later catalogue changes never alter a placed order.
    """
    __tablename__ = "packages"

    id = Column(String(50), primary_key=True)

    name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)

    quota_units = Column(Integer, nullable=False)
    price_minor = Column(Integer, nullable=False)  # Minor currency units (paise)
    currency = Column(String(3), nullable=False, default=settings.default_currency)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint('quota_units > 0', name='ck_packages_quota_positive'),
        CheckConstraint('price_minor >= 0', name='ck_packages_price_non_negative'),
    )

    def __repr__(self):
        return f"<Package(id='{self.id}', quota={self.quota_units}, price={self.price_minor})>"
