"""Coupon validation and discount calculation.

``evaluate_coupon`` works on an already-fetched record and never touches the
database, so it can be exercised with plain objects. ``validate_coupon_code``
adds the code normalisation and store lookup in front of it.

Business-rule failures are returned as values, never raised. Only store
failures (``SQLAlchemyError``) propagate to the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, localcontext
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from coupons_api.core import config
from coupons_api.models.coupon import DISCOUNT_TYPE_PERCENTAGE, expiry_passed, normalize_code
from coupons_api.services import coupon_store

logger = logging.getLogger(__name__)
COUPONS_PREFIX = "[COUPONS]"

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")

MESSAGE_APPLIED = "Coupon applied successfully"
MESSAGE_MISSING_CODE = "Coupon code is required"
MESSAGE_NOT_FOUND = "Invalid coupon code"
MESSAGE_EXPIRED = "Coupon has expired"
MESSAGE_USAGE_LIMIT = "Coupon usage limit exceeded"


class FailureReason(str, Enum):
    MISSING_CODE = "missing_code"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    USAGE_LIMIT_EXCEEDED = "usage_limit_exceeded"
    BELOW_MINIMUM_PURCHASE = "below_minimum_purchase"


_FAILURE_STATUS = {
    FailureReason.MISSING_CODE: 400,
    FailureReason.NOT_FOUND: 404,
    FailureReason.EXPIRED: 400,
    FailureReason.USAGE_LIMIT_EXCEEDED: 400,
    FailureReason.BELOW_MINIMUM_PURCHASE: 400,
}


@dataclass(frozen=True)
class CouponValidationResult:
    valid: bool
    message: str
    reason: FailureReason | None = None
    discount_amount: Decimal | None = None
    coupon: Any = None

    @classmethod
    def failure(cls, reason: FailureReason, message: str) -> "CouponValidationResult":
        return cls(valid=False, message=message, reason=reason)

    @property
    def status_code(self) -> int:
        if self.valid:
            return 200
        return _FAILURE_STATUS[self.reason]

    def to_payload(self) -> dict[str, Any]:
        if not self.valid:
            return {"valid": False, "message": self.message}

        coupon = self.coupon
        return {
            "valid": True,
            "coupon": {
                "id": coupon.id,
                "code": coupon.code,
                "discountType": coupon.discount_type,
                "discountValue": float(coupon.discount_value),
                "discountAmount": float(self.discount_amount),
                "description": coupon.description,
            },
            "message": self.message,
        }


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def format_amount(value: Any) -> str:
    """Render an amount the way customers read it: ``500``, ``499.5``."""
    normalized = _to_decimal(value).normalize()
    return format(normalized, "f")


def minimum_purchase_message(min_purchase: Any) -> str:
    return f"Minimum purchase amount of {config.CURRENCY_SYMBOL}{format_amount(min_purchase)} required"


def calculate_discount(discount_type: str, discount_value: Any, order_amount: Any) -> Decimal:
    order_total = _to_decimal(order_amount)
    value = _to_decimal(discount_value)

    if (discount_type or "").strip().lower() == DISCOUNT_TYPE_PERCENTAGE:
        discount = order_total * value / HUNDRED
    else:
        discount = value

    discount = min(discount, order_total)
    with localcontext() as ctx:
        # quantize needs room for every integer digit plus the two cents.
        ctx.prec = max(ctx.prec, discount.adjusted() + 3)
        return discount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def evaluate_coupon(coupon: Any, order_amount: Any, *, now: datetime | None = None) -> CouponValidationResult:
    # Inactive coupons are reported exactly like unknown ones.
    if coupon is None or not coupon.is_active:
        return CouponValidationResult.failure(FailureReason.NOT_FOUND, MESSAGE_NOT_FOUND)

    current_time = now or datetime.now(timezone.utc)
    if expiry_passed(coupon.expiry_date, current_time):
        return CouponValidationResult.failure(FailureReason.EXPIRED, MESSAGE_EXPIRED)

    if int(coupon.used_count or 0) >= int(coupon.usage_limit or 0):
        return CouponValidationResult.failure(FailureReason.USAGE_LIMIT_EXCEEDED, MESSAGE_USAGE_LIMIT)

    order_total = _to_decimal(order_amount)
    min_purchase = _to_decimal(coupon.min_purchase)
    if min_purchase > 0 and order_total < min_purchase:
        return CouponValidationResult.failure(
            FailureReason.BELOW_MINIMUM_PURCHASE,
            minimum_purchase_message(min_purchase),
        )

    discount_amount = calculate_discount(coupon.discount_type, coupon.discount_value, order_total)
    return CouponValidationResult(
        valid=True,
        message=MESSAGE_APPLIED,
        discount_amount=discount_amount,
        coupon=coupon,
    )


def validate_coupon_code(
    db: Session,
    code: str | None,
    order_amount: Any = 0,
    *,
    now: datetime | None = None,
) -> CouponValidationResult:
    normalized_code = normalize_code(code)
    if not normalized_code:
        return CouponValidationResult.failure(FailureReason.MISSING_CODE, MESSAGE_MISSING_CODE)

    coupon = coupon_store.find_active_by_code(db, normalized_code)
    result = evaluate_coupon(coupon, order_amount or 0, now=now)

    logger.info(
        "%s validation code=%s valid=%s",
        COUPONS_PREFIX,
        normalized_code,
        result.valid,
        extra={"coupon_code": normalized_code, "reason": result.reason.value if result.reason else None},
    )
    return result
