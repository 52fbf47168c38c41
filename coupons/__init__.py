"""
Promotional Coupons

Single-use cash coupons and multi-use lifetime coupons. Redemption is
serialized per coupon through versioned compare-and-swap updates, so a
coupon is never redeemed twice and a capped lifetime coupon never goes
past its cap.
"""

from .models import (
    Coupon,
    CouponFilter,
    CouponKind,
    CouponStatus,
    LifetimeCoupon,
    LifetimeRedemption,
)
from .service import CouponService

__all__ = [
    "Coupon",
    "CouponFilter",
    "CouponKind",
    "CouponStatus",
    "LifetimeCoupon",
    "LifetimeRedemption",
    "CouponService",
]
