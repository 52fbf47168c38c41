"""Response and request shapes consumed by the dashboard.

The dashboard reads camelCase JSON, plain numbers for USD amounts and
``_id`` for coupon ids. Nothing here holds business logic: each ``from_*``
only maps a domain record onto its wire shape.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from coupons.models import Coupon, CouponStatus, LifetimeCoupon, LifetimeRedemption
from ledger.models import LedgerEntry, RevenueSnapshot


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class GenerateCouponBody(CamelModel):
    code: Optional[str] = None
    amount: Decimal
    expires_at: datetime
    description: str = ""


class CreateLifetimeCouponBody(CamelModel):
    description: Optional[str] = None
    expires_at: Optional[datetime] = None
    max_redemptions: Optional[int] = None
    custom_code: Optional[str] = None
    features: Optional[list[str]] = None


class RedeemCouponBody(CamelModel):
    code: str


class LedgerEntryBody(CamelModel):
    amount: Decimal
    source: str
    status: str = "confirmed"
    chain: Optional[str] = None
    game_type: Optional[str] = None
    group_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# Ledger / analytics
# ---------------------------------------------------------------------------

class TransactionOut(CamelModel):
    id: UUID = Field(alias="_id")
    type: str
    source: str
    amount: Money
    status: str
    chain: Optional[str] = None
    game_type: Optional[str] = None
    group_id: Optional[str] = None
    user_id: Optional[str] = None
    coupon_id: Optional[UUID] = None
    description: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "TransactionOut":
        return cls(
            id=entry.id,
            type=entry.source.value,
            source=entry.source.value,
            amount=entry.amount,
            status=entry.status.value,
            chain=entry.chain,
            game_type=entry.game_type,
            group_id=entry.group_id,
            user_id=entry.user_id,
            coupon_id=entry.coupon_id,
            description=entry.description,
            created_at=entry.created_at,
        )


class MonthlyBreakdownOut(CamelModel):
    month: str
    source: str
    amount: Money


class MonthlyStatsOut(CamelModel):
    month: str
    revenue: Money
    deposits: Money
    withdrawals: Money
    transactions: int


class SystemMetricsOut(CamelModel):
    total_system_balance: Money
    total_deposited: Money
    total_withdrawn: Money
    system_liquidity: Money
    total_subscription_revenue: Money


class OwnerAnalyticsResponse(CamelModel):
    total_revenue: Money
    game_fees_revenue: Money
    subscription_revenue: Money
    monthly_breakdown: list[MonthlyBreakdownOut]
    recent_transactions: list[TransactionOut]
    generated_at: datetime

    @classmethod
    def from_snapshot(cls, snapshot: RevenueSnapshot) -> "OwnerAnalyticsResponse":
        return cls(**_snapshot_fields(snapshot))


class AdminAnalyticsResponse(OwnerAnalyticsResponse):
    system_metrics: SystemMetricsOut
    monthly_stats: list[MonthlyStatsOut]
    pending_amount: Money
    pending_count: int
    failed_count: int

    @classmethod
    def from_snapshot(cls, snapshot: RevenueSnapshot) -> "AdminAnalyticsResponse":
        metrics = snapshot.system_metrics
        return cls(
            **_snapshot_fields(snapshot),
            system_metrics=SystemMetricsOut(
                total_system_balance=metrics.total_system_balance,
                total_deposited=metrics.total_deposited,
                total_withdrawn=metrics.total_withdrawn,
                system_liquidity=metrics.system_liquidity,
                total_subscription_revenue=metrics.total_subscription_revenue,
            ),
            monthly_stats=[
                MonthlyStatsOut(
                    month=row.month,
                    revenue=row.revenue,
                    deposits=row.deposits,
                    withdrawals=row.withdrawals,
                    transactions=row.transactions,
                )
                for row in snapshot.monthly_stats
            ],
            pending_amount=snapshot.pending_amount,
            pending_count=snapshot.pending_count,
            failed_count=snapshot.failed_count,
        )


def _snapshot_fields(snapshot: RevenueSnapshot) -> dict:
    return {
        "total_revenue": snapshot.total_revenue,
        "game_fees_revenue": snapshot.game_fees_revenue,
        "subscription_revenue": snapshot.subscription_revenue,
        "monthly_breakdown": [
            MonthlyBreakdownOut(month=row.month, source=row.source.value, amount=row.amount)
            for row in snapshot.monthly_breakdown
        ],
        "recent_transactions": [TransactionOut.from_entry(e) for e in snapshot.recent_transactions],
        "generated_at": snapshot.generated_at,
    }


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------

class CouponOut(CamelModel):
    id: UUID = Field(alias="_id")
    code: str
    amount: Money
    description: str
    expires_at: datetime
    is_used: bool
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    status: CouponStatus
    is_lifetime: bool = False
    created_at: datetime

    @classmethod
    def from_coupon(cls, coupon: Coupon, status: CouponStatus) -> "CouponOut":
        return cls(
            id=coupon.id,
            code=coupon.code,
            amount=coupon.amount,
            description=coupon.description,
            expires_at=coupon.expires_at,
            is_used=coupon.is_used,
            used_by=coupon.used_by,
            used_at=coupon.used_at,
            status=status,
            created_at=coupon.created_at,
        )


class LifetimeCouponOut(CamelModel):
    id: UUID = Field(alias="_id")
    code: str
    description: str
    expires_at: datetime
    max_redemptions: Optional[int] = None
    current_redemptions: int
    lifetime_features: list[str]
    status: CouponStatus
    is_lifetime: bool = True
    created_at: datetime

    @classmethod
    def from_coupon(cls, coupon: LifetimeCoupon, status: CouponStatus) -> "LifetimeCouponOut":
        return cls(
            id=coupon.id,
            code=coupon.code,
            description=coupon.description,
            expires_at=coupon.expires_at,
            max_redemptions=coupon.max_redemptions,
            current_redemptions=coupon.current_redemptions,
            lifetime_features=list(coupon.features),
            status=status,
            created_at=coupon.created_at,
        )


class LifetimeCouponListResponse(CamelModel):
    coupons: list[LifetimeCouponOut]


class LifetimeRedemptionOut(CamelModel):
    coupon_id: UUID
    code: str
    redeemer_id: str
    features: list[str]
    redeemed_at: datetime
    current_redemptions: int
    max_redemptions: Optional[int] = None

    @classmethod
    def from_redemption(cls, redemption: LifetimeRedemption) -> "LifetimeRedemptionOut":
        return cls(**redemption.model_dump())
