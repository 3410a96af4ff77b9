from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, func

from coupons_api.core.database import Base

DISCOUNT_TYPE_PERCENTAGE = "percentage"
DISCOUNT_TYPE_FIXED = "fixed"
DISCOUNT_TYPES = (DISCOUNT_TYPE_PERCENTAGE, DISCOUNT_TYPE_FIXED)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def expiry_passed(expiry_date: datetime | None, now: datetime) -> bool:
    if expiry_date is None:
        return False
    # SQLite hands back naive datetimes; they were stored as UTC.
    if expiry_date.tzinfo is None:
        expiry_date = expiry_date.replace(tzinfo=timezone.utc)
    return expiry_date < now


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True)
    code = Column(String(64), nullable=False, unique=True, index=True)
    description = Column(String(255), nullable=True)
    discount_type = Column(String(20), nullable=False, default=DISCOUNT_TYPE_PERCENTAGE)
    discount_value = Column(Numeric(10, 2), nullable=False)
    min_purchase = Column(Numeric(10, 2), nullable=False, default=0)
    usage_limit = Column(Integer, nullable=False)
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def is_expired(self) -> bool:
        return expiry_passed(self.expiry_date, datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return f"<Coupon id={self.id} code={self.code!r} active={self.is_active}>"
