from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coupons_api.models.coupon import Coupon, normalize_code

logger = logging.getLogger(__name__)
COUPONS_PREFIX = "[COUPONS]"

# camelCase names accepted by ``sortBy`` -> sortable columns
SORTABLE_COLUMNS = {
    "createdAt": Coupon.created_at,
    "updatedAt": Coupon.updated_at,
    "code": Coupon.code,
    "discountValue": Coupon.discount_value,
    "minPurchase": Coupon.min_purchase,
    "usageLimit": Coupon.usage_limit,
    "usedCount": Coupon.used_count,
    "expiryDate": Coupon.expiry_date,
}
DEFAULT_SORT = "createdAt"


class DuplicateCouponCode(Exception):
    def __init__(self, code: str):
        super().__init__(f"Coupon code already exists: {code}")
        self.code = code


@dataclass
class CouponPage:
    coupons: list[Coupon]
    total: int
    total_pages: int
    current_page: int


def find_active_by_code(db: Session, code: str) -> Coupon | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    return (
        db.query(Coupon)
        .filter(Coupon.code == normalized, Coupon.is_active.is_(True))
        .first()
    )


def get_coupon(db: Session, coupon_id: int) -> Coupon | None:
    return db.query(Coupon).filter(Coupon.id == coupon_id).first()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def list_coupons(
    db: Session,
    *,
    page: int = 1,
    limit: int = 10,
    is_active: bool | None = None,
    search: str | None = None,
    sort_by: str = DEFAULT_SORT,
    sort_order: str = "desc",
) -> CouponPage:
    query = db.query(Coupon)

    if is_active is not None:
        query = query.filter(Coupon.is_active.is_(is_active))

    term = (search or "").strip()
    if term:
        pattern = f"%{_escape_like(term)}%"
        query = query.filter(
            or_(
                Coupon.code.ilike(pattern, escape="\\"),
                Coupon.description.ilike(pattern, escape="\\"),
            )
        )

    total = query.count()

    column = SORTABLE_COLUMNS.get(sort_by, SORTABLE_COLUMNS[DEFAULT_SORT])
    if (sort_order or "").lower() == "desc":
        ordering = (column.desc(), Coupon.id.desc())
    else:
        ordering = (column.asc(), Coupon.id.asc())
    coupons = (
        query.order_by(*ordering)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return CouponPage(
        coupons=coupons,
        total=total,
        total_pages=math.ceil(total / limit) if limit else 0,
        current_page=page,
    )


def _code_taken(db: Session, code: str, *, exclude_id: int | None = None) -> bool:
    query = db.query(Coupon.id).filter(Coupon.code == code)
    if exclude_id is not None:
        query = query.filter(Coupon.id != exclude_id)
    return query.first() is not None


def create_coupon(db: Session, data: Mapping[str, Any]) -> Coupon:
    values = dict(data)
    values["code"] = normalize_code(values.get("code"))
    if _code_taken(db, values["code"]):
        raise DuplicateCouponCode(values["code"])

    coupon = Coupon(**values)
    coupon.used_count = 0
    db.add(coupon)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateCouponCode(values["code"]) from exc
    db.refresh(coupon)

    logger.info("%s created id=%s code=%s", COUPONS_PREFIX, coupon.id, coupon.code)
    return coupon


def update_coupon(db: Session, coupon: Coupon, data: Mapping[str, Any]) -> Coupon:
    changes = dict(data)
    if "code" in changes:
        changes["code"] = normalize_code(changes["code"])
        if _code_taken(db, changes["code"], exclude_id=coupon.id):
            raise DuplicateCouponCode(changes["code"])

    for field, value in changes.items():
        setattr(coupon, field, value)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if "code" not in changes:
            raise
        raise DuplicateCouponCode(changes["code"]) from exc
    db.refresh(coupon)

    logger.info("%s updated id=%s fields=%s", COUPONS_PREFIX, coupon.id, ",".join(sorted(changes)))
    return coupon


def delete_coupon(db: Session, coupon: Coupon) -> None:
    coupon_id, code = coupon.id, coupon.code
    db.delete(coupon)
    db.commit()
    logger.info("%s deleted id=%s code=%s", COUPONS_PREFIX, coupon_id, code)


def toggle_coupon(db: Session, coupon: Coupon) -> Coupon:
    coupon.is_active = not coupon.is_active
    db.commit()
    db.refresh(coupon)
    logger.info("%s toggled id=%s active=%s", COUPONS_PREFIX, coupon.id, coupon.is_active)
    return coupon


def redeem_coupon(db: Session, code: str) -> Coupon | None:
    """Consume one use of an active coupon.

    The bound check and the increment are one conditional UPDATE, so two
    concurrent redemptions can never push ``used_count`` past
    ``usage_limit``. Returns ``None`` when no row qualified.
    """
    normalized = normalize_code(code)
    if not normalized:
        return None

    statement = (
        update(Coupon)
        .where(
            Coupon.code == normalized,
            Coupon.is_active.is_(True),
            Coupon.used_count < Coupon.usage_limit,
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(statement)
    db.commit()

    if result.rowcount != 1:
        logger.info("%s redeem rejected code=%s", COUPONS_PREFIX, normalized)
        return None

    coupon = db.query(Coupon).filter(Coupon.code == normalized).first()
    if coupon is not None:
        db.refresh(coupon)
        logger.info(
            "%s redeemed code=%s used_count=%s usage_limit=%s",
            COUPONS_PREFIX,
            coupon.code,
            coupon.used_count,
            coupon.usage_limit,
        )
    return coupon
