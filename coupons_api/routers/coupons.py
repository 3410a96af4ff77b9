from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coupons_api.core import config
from coupons_api.core.database import get_db
from coupons_api.core.errors import server_error_response
from coupons_api.deps import require_admin
from coupons_api.models.coupon import Coupon
from coupons_api.schemas.coupon import (
    CouponCreate,
    CouponListOut,
    CouponMessageOut,
    CouponOut,
    CouponUpdate,
    RedeemCouponPayload,
    ValidateCouponPayload,
    ValidateCouponResponse,
)
from coupons_api.services import coupon_store
from coupons_api.services.coupon_validator import validate_coupon_code

router = APIRouter(prefix="/api/coupons", tags=["coupons"])

logger = logging.getLogger(__name__)

MESSAGE_NOT_FOUND = "Coupon not found"
MESSAGE_DUPLICATE = "Coupon with this code already exists"
MESSAGE_NOT_REDEEMABLE = "Coupon cannot be redeemed"

# Columns that may be cleared with an explicit null on update.
NULLABLE_FIELDS = {"description", "expiry_date"}


def _coupon_to_dict(coupon: Coupon) -> dict:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "description": coupon.description,
        "discount_type": coupon.discount_type,
        "discount_value": float(coupon.discount_value or 0),
        "min_purchase": float(coupon.min_purchase or 0),
        "usage_limit": int(coupon.usage_limit or 0),
        "used_count": int(coupon.used_count or 0),
        "is_active": bool(coupon.is_active),
        "is_expired": coupon.is_expired,
        "expiry_date": coupon.expiry_date,
        "created_at": coupon.created_at,
        "updated_at": coupon.updated_at,
    }


def _coupon_out(coupon: Coupon) -> dict:
    return CouponOut(**_coupon_to_dict(coupon)).model_dump(by_alias=True)


def _message(status_code: int, message: str, coupon: Coupon | None = None) -> JSONResponse:
    content = {"message": message}
    if coupon is not None:
        content["coupon"] = _coupon_out(coupon)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


@router.get("", response_model=CouponListOut)
def list_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query(coupon_store.DEFAULT_SORT, alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    result = coupon_store.list_coupons(
        db,
        page=page,
        limit=limit,
        is_active=is_active,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "coupons": [_coupon_to_dict(coupon) for coupon in result.coupons],
        "total_pages": result.total_pages,
        "current_page": result.current_page,
        "total": result.total,
    }


@router.post(
    "/validate",
    response_model=ValidateCouponResponse,
    responses={400: {"model": ValidateCouponResponse}, 404: {"model": ValidateCouponResponse}},
)
def validate_coupon(payload: ValidateCouponPayload, db: Session = Depends(get_db)):
    try:
        result = validate_coupon_code(db, payload.code, payload.order_amount or 0)
    except SQLAlchemyError as exc:
        logger.exception("coupon validation failed code=%s", payload.code)
        return server_error_response(exc, valid=False)

    return JSONResponse(status_code=result.status_code, content=result.to_payload())


@router.post("/redeem", response_model=CouponMessageOut)
def redeem_coupon(
    payload: RedeemCouponPayload,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
):
    coupon = coupon_store.redeem_coupon(db, payload.code)
    if coupon is None:
        return _message(409, MESSAGE_NOT_REDEEMABLE)
    return _message(200, "Coupon redeemed successfully", coupon)


@router.get("/{coupon_id}", response_model=CouponOut)
def read_coupon(coupon_id: int, db: Session = Depends(get_db)):
    coupon = coupon_store.get_coupon(db, coupon_id)
    if not coupon:
        return _message(404, MESSAGE_NOT_FOUND)
    return _coupon_to_dict(coupon)


@router.post("", response_model=CouponMessageOut, status_code=201)
def create_coupon(
    payload: CouponCreate,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
):
    try:
        coupon = coupon_store.create_coupon(db, payload.model_dump())
    except coupon_store.DuplicateCouponCode:
        return _message(400, MESSAGE_DUPLICATE)
    return _message(201, "Coupon created successfully", coupon)


@router.put("/{coupon_id}", response_model=CouponMessageOut)
def update_coupon(
    coupon_id: int,
    payload: CouponUpdate,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
):
    coupon = coupon_store.get_coupon(db, coupon_id)
    if not coupon:
        return _message(404, MESSAGE_NOT_FOUND)

    changes = {
        field: value
        for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or field in NULLABLE_FIELDS
    }
    try:
        coupon = coupon_store.update_coupon(db, coupon, changes)
    except coupon_store.DuplicateCouponCode:
        return _message(400, MESSAGE_DUPLICATE)
    return _message(200, "Coupon updated successfully", coupon)


@router.delete("/{coupon_id}", response_model=CouponMessageOut)
def delete_coupon(
    coupon_id: int,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
):
    coupon = coupon_store.get_coupon(db, coupon_id)
    if not coupon:
        return _message(404, MESSAGE_NOT_FOUND)

    coupon_store.delete_coupon(db, coupon)
    return _message(200, "Coupon deleted successfully")


@router.put("/{coupon_id}/toggle", response_model=CouponMessageOut)
def toggle_coupon_status(
    coupon_id: int,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
):
    coupon = coupon_store.get_coupon(db, coupon_id)
    if not coupon:
        return _message(404, MESSAGE_NOT_FOUND)

    coupon = coupon_store.toggle_coupon(db, coupon)
    state = "activated" if coupon.is_active else "deactivated"
    return _message(200, f"Coupon {state} successfully", coupon)
