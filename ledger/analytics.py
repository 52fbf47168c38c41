"""Revenue aggregation over the ledger.

Snapshots are derived on every call and never stored. One query is issued
per call; if it fails the error propagates, so a snapshot is never built
from a partial read.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Optional

import structlog

from core.config import settings
from .models import (
    REVENUE_SOURCES,
    AnalyticsScope,
    DateRange,
    EntryStatus,
    LedgerEntry,
    LedgerQuery,
    LedgerSource,
    MonthlyBreakdownRow,
    MonthlyStatsRow,
    RevenueSnapshot,
    SystemMetrics,
    as_utc,
)
from .service import LedgerService


logger = structlog.get_logger(__name__)

ZERO = Decimal("0")


def month_key(entry: LedgerEntry) -> str:
    return as_utc(entry.created_at).strftime("%Y-%m")


class RevenueAggregator:
    def __init__(self, ledger: LedgerService, recent_limit: Optional[int] = None):
        self.ledger = ledger
        self.recent_limit = recent_limit or settings.RECENT_TRANSACTIONS_LIMIT

    def summarize(
        self,
        scope: AnalyticsScope,
        date_range: Optional[DateRange] = None,
        group_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> RevenueSnapshot:
        scope = AnalyticsScope(scope)
        query = LedgerQuery(
            sources=REVENUE_SOURCES if scope == AnalyticsScope.OWNER else None,
            date_range=date_range,
            group_id=group_id,
        )
        entries = self.ledger.query(query, timeout=timeout)

        per_source: dict[LedgerSource, Decimal] = defaultdict(lambda: ZERO)
        breakdown: dict[tuple[str, LedgerSource], Decimal] = defaultdict(lambda: ZERO)
        stats: dict[str, MonthlyStatsRow] = {}
        pending_amount = ZERO
        pending_count = 0
        failed_count = 0

        for entry in entries:
            if entry.status == EntryStatus.PENDING:
                pending_amount += entry.amount
                pending_count += 1
                continue
            if entry.status == EntryStatus.FAILED:
                failed_count += 1
                continue

            month = month_key(entry)
            per_source[entry.source] += entry.amount
            breakdown[(month, entry.source)] += entry.amount

            row = stats.get(month)
            if row is None:
                row = stats[month] = MonthlyStatsRow(month=month)
            row.transactions += 1
            if entry.is_revenue:
                row.revenue += entry.amount
            elif entry.source == LedgerSource.DEPOSIT:
                row.deposits += entry.amount
            else:
                row.withdrawals += entry.amount

        game_fees = per_source[LedgerSource.GAME_FEES]
        subscriptions = per_source[LedgerSource.SUBSCRIPTIONS]
        deposited = per_source[LedgerSource.DEPOSIT]
        withdrawn = per_source[LedgerSource.WITHDRAWAL]

        if scope == AnalyticsScope.OWNER:
            total_revenue = game_fees + subscriptions
        else:
            total_revenue = sum(per_source.values(), ZERO)

        liquidity = deposited - withdrawn
        if liquidity < 0:
            logger.warning("Net outflow in ledger range", system_liquidity=str(liquidity))

        monthly_breakdown = [
            MonthlyBreakdownRow(month=month, source=source, amount=amount)
            for (month, source), amount in sorted(breakdown.items(), key=lambda item: (item[0][0], item[0][1].value))
        ]
        monthly_stats = [stats[month] for month in sorted(stats)]

        if scope == AnalyticsScope.ADMIN:
            recent = entries[::-1][:self.recent_limit]
        else:
            recent = [e for e in reversed(entries) if e.status == EntryStatus.CONFIRMED][:self.recent_limit]

        snapshot = RevenueSnapshot(
            scope=scope,
            total_revenue=total_revenue,
            game_fees_revenue=game_fees,
            subscription_revenue=subscriptions,
            system_metrics=SystemMetrics(
                total_deposited=deposited,
                total_withdrawn=withdrawn,
                system_liquidity=liquidity,
                total_system_balance=liquidity + game_fees + subscriptions,
                total_subscription_revenue=subscriptions,
            ),
            monthly_breakdown=monthly_breakdown,
            monthly_stats=monthly_stats,
            recent_transactions=recent,
            pending_amount=pending_amount,
            pending_count=pending_count,
            failed_count=failed_count,
            generated_at=self.ledger.clock(),
        )
        logger.debug(
            "Revenue snapshot computed",
            scope=scope.value,
            entries=len(entries),
            total_revenue=str(total_revenue),
        )
        return snapshot
