from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional, Union
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


DEFAULT_LIFETIME_FEATURES = (
    "premium_access",
    "unlimited_raffles",
    "unlimited_meme_battles",
    "priority_support",
)


class CouponKind(str, Enum):
    COUPON = "coupon"
    LIFETIME = "lifetime"


class CouponStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"


class GenerateCouponRequest(BaseModel):
    code: Optional[str] = None
    amount: Decimal
    expires_at: datetime
    description: str = ""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "code": "BONUS100",
            "amount": 25.00,
            "expires_at": "2026-12-31T23:59:59Z",
            "description": "Holiday bonus",
        }
    })


class CreateLifetimeCouponRequest(BaseModel):
    description: str = "Lifetime Premium Access"
    expires_at: Optional[datetime] = None
    max_redemptions: Optional[int] = None
    custom_code: Optional[str] = None
    features: Optional[list[str]] = None


class Coupon(BaseModel):
    id: UUID
    code: str
    amount: Decimal
    description: str = ""
    expires_at: datetime
    is_used: bool = False
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime
    version: int = 0

    model_config = ConfigDict(from_attributes=True, frozen=True)

    kind: ClassVar[CouponKind] = CouponKind.COUPON

    def status_at(self, now: datetime) -> CouponStatus:
        if self.used_by is not None:
            return CouponStatus.USED
        if self.expired_at is not None or now > self.expires_at:
            return CouponStatus.EXPIRED
        if self.is_used:
            return CouponStatus.USED
        return CouponStatus.ACTIVE


class LifetimeCoupon(BaseModel):
    id: UUID
    code: str
    description: str = ""
    expires_at: datetime
    max_redemptions: Optional[int] = None
    current_redemptions: int = 0
    features: list[str] = Field(default_factory=lambda: list(DEFAULT_LIFETIME_FEATURES))
    created_at: datetime
    version: int = 0

    model_config = ConfigDict(from_attributes=True, frozen=True)

    kind: ClassVar[CouponKind] = CouponKind.LIFETIME

    @property
    def is_exhausted(self) -> bool:
        return self.max_redemptions is not None and self.current_redemptions >= self.max_redemptions

    def status_at(self, now: datetime) -> CouponStatus:
        if now > self.expires_at:
            return CouponStatus.EXPIRED
        if self.is_exhausted:
            return CouponStatus.EXHAUSTED
        return CouponStatus.ACTIVE


AnyCoupon = Union[Coupon, LifetimeCoupon]


class CouponFilter(BaseModel):
    kind: Optional[CouponKind] = None
    status: Optional[CouponStatus] = None


class LifetimeRedemption(BaseModel):
    coupon_id: UUID
    code: str
    redeemer_id: str
    features: list[str]
    redeemed_at: datetime
    current_redemptions: int
    max_redemptions: Optional[int] = None
