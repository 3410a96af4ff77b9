from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from coupons_api.models.coupon import normalize_code

DiscountType = Literal["percentage", "fixed"]

# Largest value a Numeric(10, 2) column holds.
MAX_AMOUNT = 99_999_999.99


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive input is taken as UTC; aware input is converted so SQLite keeps the right wall time.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CouponCreate(CamelModel):
    code: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = Field(None, max_length=255)
    discount_type: DiscountType = "percentage"
    discount_value: float = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    min_purchase: float = Field(0, ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    usage_limit: int = Field(..., ge=0)
    is_active: bool = True
    expiry_date: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        normalized = normalize_code(value)
        if not normalized:
            raise ValueError("code must not be blank")
        return normalized

    @field_validator("expiry_date")
    @classmethod
    def _expiry_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class CouponUpdate(CamelModel):
    code: Optional[str] = Field(None, min_length=1, max_length=64)
    description: Optional[str] = Field(None, max_length=255)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    min_purchase: Optional[float] = Field(None, ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    usage_limit: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    expiry_date: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        normalized = normalize_code(value)
        if not normalized:
            raise ValueError("code must not be blank")
        return normalized

    @field_validator("expiry_date")
    @classmethod
    def _expiry_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)


class CouponOut(CamelModel):
    id: int
    code: str
    description: Optional[str] = None
    discount_type: str
    discount_value: float
    min_purchase: float
    usage_limit: int
    used_count: int
    is_active: bool
    is_expired: bool
    expiry_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CouponListOut(CamelModel):
    coupons: List[CouponOut]
    total_pages: int
    current_page: int
    total: int


class CouponMessageOut(CamelModel):
    message: str
    coupon: Optional[CouponOut] = None


class ValidateCouponPayload(CamelModel):
    code: Optional[str] = None
    order_amount: Optional[float] = Field(0, ge=0, le=MAX_AMOUNT, allow_inf_nan=False)


class AppliedCouponOut(CamelModel):
    id: int
    code: str
    discount_type: str
    discount_value: float
    discount_amount: float
    description: Optional[str] = None


class ValidateCouponResponse(CamelModel):
    valid: bool
    message: str
    coupon: Optional[AppliedCouponOut] = None
    error: Optional[str] = None


class RedeemCouponPayload(CamelModel):
    code: str = Field(..., min_length=1, max_length=64)
