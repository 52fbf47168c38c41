from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from .errors import InvalidDateRangeError


class LedgerSource(str, Enum):
    GAME_FEES = "game_fees"
    SUBSCRIPTIONS = "subscriptions"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


REVENUE_SOURCES = frozenset({LedgerSource.GAME_FEES, LedgerSource.SUBSCRIPTIONS})


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class EntryStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class AnalyticsScope(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"


class CreateLedgerEntryRequest(BaseModel):
    """Raw event as handed over by the game engine or payment processor.

    ``source`` and ``status`` stay plain strings here; the store maps them
    onto the closed enums and rejects anything else.
    """
    amount: Decimal
    source: str
    status: str = EntryStatus.CONFIRMED.value
    chain: Optional[str] = None
    game_type: Optional[str] = None
    group_id: Optional[str] = None
    user_id: Optional[str] = None
    coupon_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    description: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": 12.50,
            "source": "game_fees",
            "status": "confirmed",
            "game_type": "raffle",
            "group_id": "-1001234567890",
        }
    })


class LedgerEntry(BaseModel):
    id: UUID
    amount: Decimal
    source: LedgerSource
    status: EntryStatus
    chain: Optional[str] = None
    game_type: Optional[str] = None
    group_id: Optional[str] = None
    user_id: Optional[str] = None
    coupon_id: Optional[UUID] = None
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def is_revenue(self) -> bool:
        return self.source in REVENUE_SOURCES


class DateRange(BaseModel):
    """Half-open interval ``[start, end)``; either side may be open."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start is not None and self.end is not None and self.start >= self.end:
            raise InvalidDateRangeError("start must be before end")
        return self

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment >= self.end:
            return False
        return True


class LedgerQuery(BaseModel):
    sources: Optional[frozenset[LedgerSource]] = None
    statuses: Optional[frozenset[EntryStatus]] = None
    date_range: Optional[DateRange] = None
    group_id: Optional[str] = None
    user_id: Optional[str] = None

    def matches(self, entry: LedgerEntry) -> bool:
        if self.sources is not None and entry.source not in self.sources:
            return False
        if self.statuses is not None and entry.status not in self.statuses:
            return False
        if self.date_range is not None and not self.date_range.contains(entry.created_at):
            return False
        if self.group_id is not None and entry.group_id != self.group_id:
            return False
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        return True


class MonthlyBreakdownRow(BaseModel):
    month: str
    source: LedgerSource
    amount: Decimal


class MonthlyStatsRow(BaseModel):
    month: str
    revenue: Decimal = Decimal("0")
    deposits: Decimal = Decimal("0")
    withdrawals: Decimal = Decimal("0")
    transactions: int = 0


class SystemMetrics(BaseModel):
    total_deposited: Decimal
    total_withdrawn: Decimal
    # Negative means net outflow; never clamped.
    system_liquidity: Decimal
    total_system_balance: Decimal
    total_subscription_revenue: Decimal


class RevenueSnapshot(BaseModel):
    scope: AnalyticsScope
    total_revenue: Decimal
    game_fees_revenue: Decimal
    subscription_revenue: Decimal
    system_metrics: SystemMetrics
    monthly_breakdown: list[MonthlyBreakdownRow]
    monthly_stats: list[MonthlyStatsRow]
    recent_transactions: list[LedgerEntry] = Field(default_factory=list)
    pending_amount: Decimal = Decimal("0")
    pending_count: int = 0
    failed_count: int = 0
    generated_at: datetime
