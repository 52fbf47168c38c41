"""
Unit Tests for the Revenue Aggregator

Tests cover:
1. Owner and admin totals
2. Month/source breakdown ordering and UTC bucketing
3. Liquidity (including net outflow)
4. Pending/failed entries kept out of totals
5. Store failures surfacing unchanged
"""

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger.analytics import RevenueAggregator
from ledger.errors import StoreTimeoutError
from ledger.models import (
    AnalyticsScope,
    CreateLedgerEntryRequest,
    DateRange,
    LedgerSource,
)
from ledger.service import LedgerService


def at(year: int, month: int, day: int = 10, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def record(service: LedgerService, amount, source: str, created_at: datetime, **kwargs):
    return service.append(CreateLedgerEntryRequest(
        amount=Decimal(str(amount)), source=source, created_at=created_at, **kwargs
    ))


class TestOwnerSnapshot:
    """Tests for owner-scoped revenue snapshots."""

    def test_reference_scenario(self, clock):
        """Test the three-entry example across January and February 2024."""
        service = LedgerService(clock=clock)
        record(service, 100, "game_fees", at(2024, 1))
        record(service, 50, "subscriptions", at(2024, 1))
        record(service, 200, "game_fees", at(2024, 2))

        snapshot = RevenueAggregator(service).summarize(AnalyticsScope.OWNER)

        assert snapshot.total_revenue == Decimal("350")
        assert snapshot.game_fees_revenue == Decimal("300")
        assert snapshot.subscription_revenue == Decimal("50")
        assert [(r.month, r.source, r.amount) for r in snapshot.monthly_breakdown] == [
            ("2024-01", LedgerSource.GAME_FEES, Decimal("100")),
            ("2024-01", LedgerSource.SUBSCRIPTIONS, Decimal("50")),
            ("2024-02", LedgerSource.GAME_FEES, Decimal("200")),
        ]

    def test_owner_ignores_deposits_and_withdrawals(self):
        """Test that owner totals and series only contain game fees and subscriptions."""
        service = LedgerService()
        record(service, 100, "game_fees", at(2024, 1))
        record(service, 500, "deposit", at(2024, 1))
        record(service, 70, "withdrawal", at(2024, 1))

        snapshot = RevenueAggregator(service).summarize(AnalyticsScope.OWNER)

        assert snapshot.total_revenue == Decimal("100")
        assert {r.source for r in snapshot.monthly_breakdown} == {LedgerSource.GAME_FEES}

    def test_breakdown_sums_to_total_revenue(self):
        """Test that the monthly series always adds up to total revenue."""
        rng = random.Random(7)
        service = LedgerService()
        for _ in range(200):
            record(
                service,
                Decimal(rng.randint(1, 100000)) / 100,
                rng.choice(["game_fees", "subscriptions"]),
                at(2023, 1) + timedelta(hours=rng.randint(0, 24 * 500)),
                status=rng.choice(["confirmed", "confirmed", "pending", "failed"]),
            )

        snapshot = RevenueAggregator(service).summarize(AnalyticsScope.OWNER)

        assert sum((r.amount for r in snapshot.monthly_breakdown), Decimal("0")) == snapshot.total_revenue
        assert snapshot.total_revenue == snapshot.game_fees_revenue + snapshot.subscription_revenue

    def test_breakdown_rows_are_unique_and_ordered(self):
        """Test one row per (month, source), ordered by month then source name."""
        service = LedgerService()
        record(service, 1, "subscriptions", at(2024, 3))
        record(service, 2, "game_fees", at(2024, 3))
        record(service, 3, "subscriptions", at(2024, 1))
        record(service, 4, "subscriptions", at(2024, 3, day=20))

        rows = RevenueAggregator(service).summarize(AnalyticsScope.OWNER).monthly_breakdown

        assert [(r.month, r.source.value, r.amount) for r in rows] == [
            ("2024-01", "subscriptions", Decimal("3")),
            ("2024-03", "game_fees", Decimal("2")),
            ("2024-03", "subscriptions", Decimal("5")),
        ]

    def test_month_bucket_uses_utc(self):
        """Test that an entry just before midnight UTC lands in the UTC month."""
        service = LedgerService()
        # 2024-02-01 01:30 in UTC+03:00 is still January in UTC
        moscow = timezone(timedelta(hours=3))
        record(service, 10, "game_fees", datetime(2024, 2, 1, 1, 30, tzinfo=moscow))

        rows = RevenueAggregator(service).summarize(AnalyticsScope.OWNER).monthly_breakdown

        assert rows[0].month == "2024-01"

    def test_date_range_and_group_filter(self):
        """Test narrowing a snapshot by date range and group."""
        service = LedgerService()
        record(service, 100, "game_fees", at(2024, 1), group_id="g-1")
        record(service, 200, "game_fees", at(2024, 2), group_id="g-1")
        record(service, 400, "game_fees", at(2024, 2), group_id="g-2")

        aggregator = RevenueAggregator(service)
        feb = DateRange(start=at(2024, 2, day=1, hour=0), end=at(2024, 3, day=1, hour=0))

        assert aggregator.summarize(AnalyticsScope.OWNER, date_range=feb).total_revenue == Decimal("600")
        assert aggregator.summarize(AnalyticsScope.OWNER, group_id="g-1").total_revenue == Decimal("300")

    def test_naive_date_range(self):
        """Test that a naive date range is read as UTC."""
        service = LedgerService()
        record(service, 100, "game_fees", at(2024, 1))
        record(service, 200, "game_fees", at(2024, 2))

        aggregator = RevenueAggregator(service)
        snapshot = aggregator.summarize(AnalyticsScope.OWNER, date_range=DateRange(start=datetime(2024, 2, 1)))

        assert snapshot.total_revenue == Decimal("200")
        minute = DateRange(start=datetime(2024, 1, 10, 12), end=datetime(2024, 1, 10, 12, 1))
        assert aggregator.summarize(AnalyticsScope.OWNER, date_range=minute).total_revenue == Decimal("100")

    def test_owner_recent_transactions_are_confirmed_revenue(self):
        """Test that the owner feed lists confirmed revenue entries, newest first."""
        service = LedgerService()
        record(service, 1, "game_fees", at(2024, 1))
        record(service, 2, "subscriptions", at(2024, 2))
        record(service, 3, "game_fees", at(2024, 3), status="pending")

        recent = RevenueAggregator(service).summarize(AnalyticsScope.OWNER).recent_transactions

        assert [e.amount for e in recent] == [Decimal("2"), Decimal("1")]


class TestAdminSnapshot:
    """Tests for admin-scoped snapshots and system metrics."""

    def test_admin_totals_and_metrics(self):
        """Test admin totals across every confirmed entry."""
        service = LedgerService()
        record(service, 100, "game_fees", at(2024, 1))
        record(service, 50, "subscriptions", at(2024, 1))
        record(service, 1000, "deposit", at(2024, 1))
        record(service, 300, "withdrawal", at(2024, 2))

        snapshot = RevenueAggregator(service).summarize(AnalyticsScope.ADMIN)
        metrics = snapshot.system_metrics

        assert snapshot.total_revenue == Decimal("1450")
        assert metrics.total_deposited == Decimal("1000")
        assert metrics.total_withdrawn == Decimal("300")
        assert metrics.system_liquidity == Decimal("700")
        assert metrics.total_system_balance == Decimal("850")
        assert metrics.total_subscription_revenue == Decimal("50")
        assert sum((r.amount for r in snapshot.monthly_breakdown), Decimal("0")) == snapshot.total_revenue

    def test_negative_liquidity_is_not_clamped(self):
        """Test that a net outflow is reported as a negative liquidity."""
        service = LedgerService()
        record(service, 100, "deposit", at(2024, 1))
        record(service, 250, "withdrawal", at(2024, 1))

        metrics = RevenueAggregator(service).summarize(AnalyticsScope.ADMIN).system_metrics

        assert metrics.system_liquidity == Decimal("-150")
        assert metrics.system_liquidity == metrics.total_deposited - metrics.total_withdrawn

    def test_pending_and_failed_excluded_from_totals(self):
        """Test that only confirmed entries are counted; pending is surfaced separately."""
        service = LedgerService()
        record(service, 100, "deposit", at(2024, 1))
        record(service, 40, "deposit", at(2024, 1), status="pending")
        record(service, 60, "withdrawal", at(2024, 1), status="pending")
        record(service, 999, "withdrawal", at(2024, 1), status="failed")

        snapshot = RevenueAggregator(service).summarize(AnalyticsScope.ADMIN)

        assert snapshot.system_metrics.total_deposited == Decimal("100")
        assert snapshot.system_metrics.total_withdrawn == Decimal("0")
        assert snapshot.pending_amount == Decimal("100")
        assert snapshot.pending_count == 2
        assert snapshot.failed_count == 1
        assert len(snapshot.recent_transactions) == 4

    def test_monthly_stats(self):
        """Test per-month revenue, deposit, withdrawal and count rows."""
        service = LedgerService()
        record(service, 10, "game_fees", at(2024, 1))
        record(service, 5, "subscriptions", at(2024, 1))
        record(service, 100, "deposit", at(2024, 1))
        record(service, 30, "withdrawal", at(2024, 2))

        stats = RevenueAggregator(service).summarize(AnalyticsScope.ADMIN).monthly_stats

        assert [(s.month, s.revenue, s.deposits, s.withdrawals, s.transactions) for s in stats] == [
            ("2024-01", Decimal("15"), Decimal("100"), Decimal("0"), 3),
            ("2024-02", Decimal("0"), Decimal("0"), Decimal("30"), 1),
        ]

    def test_recent_transactions_limit(self):
        """Test that the admin feed is capped and newest first."""
        service = LedgerService()
        for day in range(1, 11):
            record(service, day, "deposit", at(2024, 1, day=day))

        recent = RevenueAggregator(service, recent_limit=3).summarize(AnalyticsScope.ADMIN).recent_transactions

        assert [e.amount for e in recent] == [Decimal("10"), Decimal("9"), Decimal("8")]


class TestFailures:
    """Tests for failure propagation."""

    def test_store_failure_propagates(self):
        """Test that a failed ledger read fails the snapshot instead of returning zeros."""

        class BrokenLedger(LedgerService):
            def query(self, query=None, timeout=None):
                raise StoreTimeoutError("ledger unavailable")

        with pytest.raises(StoreTimeoutError):
            RevenueAggregator(BrokenLedger()).summarize(AnalyticsScope.ADMIN)

    def test_empty_ledger(self):
        """Test that an empty ledger gives zero totals and empty series."""
        snapshot = RevenueAggregator(LedgerService()).summarize(AnalyticsScope.ADMIN)

        assert snapshot.total_revenue == Decimal("0")
        assert snapshot.monthly_breakdown == []
        assert snapshot.system_metrics.system_liquidity == Decimal("0")
