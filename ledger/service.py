import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterator, Optional
from uuid import uuid4

import structlog

from core.config import settings
from .errors import (
    InvalidAmountError,
    StoreTimeoutError,
    UnknownSourceError,
    UnknownStatusError,
)
from .models import (
    CreateLedgerEntryRequest,
    EntryStatus,
    LedgerEntry,
    LedgerQuery,
    LedgerSource,
    as_utc,
)


logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize(value) -> str:
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip().lower()


@contextmanager
def locked(lock: threading.Lock, timeout: Optional[float], what: str) -> Iterator[None]:
    # a negative wait means the deadline already passed
    wait = settings.STORE_TIMEOUT_SECONDS if timeout is None else max(timeout, 0.0)
    if not lock.acquire(timeout=wait):
        logger.warning("Store lock wait timed out", store=what, timeout=wait)
        raise StoreTimeoutError(f"Timed out after {wait}s waiting for {what}")
    try:
        yield
    finally:
        lock.release()


class InMemoryStorage:
    def __init__(self):
        self.entries: list[LedgerEntry] = []
        self.lock = threading.Lock()


class LedgerService:
    """Append-only ledger of monetary events.

    There is no update or delete: a correction is a new compensating entry.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage or InMemoryStorage()
        self.clock = clock

    def append(self, request: CreateLedgerEntryRequest, timeout: Optional[float] = None) -> LedgerEntry:
        entry = self._build_entry(request)
        with locked(self.storage.lock, timeout, "ledger"):
            self.storage.entries.append(entry)

        logger.info(
            "Ledger entry appended",
            entry_id=str(entry.id),
            source=entry.source.value,
            status=entry.status.value,
            amount=str(entry.amount),
        )
        return entry

    def query(self, query: Optional[LedgerQuery] = None, timeout: Optional[float] = None) -> list[LedgerEntry]:
        """Matching entries in ascending ``created_at`` order.

        Returns a fresh list each call, so re-issuing a query is always safe.
        """
        with locked(self.storage.lock, timeout, "ledger"):
            snapshot = list(self.storage.entries)

        if query is not None:
            snapshot = [e for e in snapshot if query.matches(e)]
        # sort is stable: equal timestamps keep insertion order
        snapshot.sort(key=lambda e: e.created_at)
        return snapshot

    def recent(
        self,
        limit: int,
        query: Optional[LedgerQuery] = None,
        timeout: Optional[float] = None,
    ) -> list[LedgerEntry]:
        entries = self.query(query, timeout=timeout)
        entries.reverse()
        return entries[:limit]

    def _build_entry(self, request: CreateLedgerEntryRequest) -> LedgerEntry:
        try:
            source = LedgerSource(_normalize(request.source))
        except ValueError:
            raise UnknownSourceError(
                f"Unknown ledger source {request.source!r}; "
                f"expected one of {', '.join(s.value for s in LedgerSource)}"
            )

        try:
            status = EntryStatus(_normalize(request.status))
        except ValueError:
            raise UnknownStatusError(
                f"Unknown entry status {request.status!r}; "
                f"expected one of {', '.join(s.value for s in EntryStatus)}"
            )

        amount = Decimal(request.amount)
        if not amount.is_finite() or amount <= 0:
            raise InvalidAmountError(f"Ledger amount must be positive, got {request.amount}")

        created_at = as_utc(request.created_at) if request.created_at else self.clock()

        return LedgerEntry(
            id=uuid4(),
            amount=amount,
            source=source,
            status=status,
            chain=request.chain,
            game_type=request.game_type,
            group_id=request.group_id,
            user_id=request.user_id,
            coupon_id=request.coupon_id,
            description=request.description,
            created_at=created_at,
        )
