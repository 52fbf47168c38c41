"""
Revenue Ledger

This module provides:
- Append-only ledger entries for game fees, subscriptions, deposits and withdrawals
- Closed source/status sets enforced at ingestion
- Revenue snapshots: totals, per-source totals and UTC month-bucketed series
- The shared error taxonomy (validation, not found, conflict, store)
"""

from .models import (
    AnalyticsScope,
    DateRange,
    EntryStatus,
    LedgerEntry,
    LedgerQuery,
    LedgerSource,
    RevenueSnapshot,
)
from .service import LedgerService
from .analytics import RevenueAggregator

__all__ = [
    "AnalyticsScope",
    "DateRange",
    "EntryStatus",
    "LedgerEntry",
    "LedgerQuery",
    "LedgerSource",
    "RevenueSnapshot",
    "LedgerService",
    "RevenueAggregator",
]
