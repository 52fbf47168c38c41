"""Shared fixtures for the ledger, coupon and API tests."""

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Settable stand-in for ``utcnow`` so expiry can be tested without sleeping."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))
