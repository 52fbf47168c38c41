import threading
from typing import Optional
from uuid import UUID

import structlog

from ledger.errors import DuplicateCodeError
from ledger.service import locked
from .models import AnyCoupon


logger = structlog.get_logger(__name__)


class InMemoryCouponStorage:
    """Versioned coupon records behind a single short-held lock.

    Writers never hold the lock across a read-modify-write; they read a
    record, build its successor and hand it to ``compare_and_swap``, which
    only succeeds if nobody replaced the record in between. The same
    protocol maps onto a conditional ``UPDATE ... WHERE version = :v`` when
    several processes share one database.
    """

    def __init__(self):
        self.records: dict[UUID, AnyCoupon] = {}
        self.code_index: dict[str, UUID] = {}
        self.lock = threading.Lock()

    def insert(self, record: AnyCoupon, timeout: Optional[float] = None) -> AnyCoupon:
        with locked(self.lock, timeout, "coupons"):
            if record.code in self.code_index:
                raise DuplicateCodeError(f"Coupon code {record.code} already exists")
            self.records[record.id] = record
            self.code_index[record.code] = record.id
        return record

    def get(self, coupon_id: UUID, timeout: Optional[float] = None) -> Optional[AnyCoupon]:
        with locked(self.lock, timeout, "coupons"):
            return self.records.get(coupon_id)

    def get_by_code(self, code: str, timeout: Optional[float] = None) -> Optional[AnyCoupon]:
        with locked(self.lock, timeout, "coupons"):
            coupon_id = self.code_index.get(code)
            return self.records.get(coupon_id) if coupon_id else None

    def code_exists(self, code: str, timeout: Optional[float] = None) -> bool:
        with locked(self.lock, timeout, "coupons"):
            return code in self.code_index

    def all(self, timeout: Optional[float] = None) -> list[AnyCoupon]:
        with locked(self.lock, timeout, "coupons"):
            return list(self.records.values())

    def compare_and_swap(
        self,
        record: AnyCoupon,
        expected_version: int,
        timeout: Optional[float] = None,
    ) -> bool:
        """Store ``record`` if the current version is ``expected_version``.

        ``record.version`` must be ``expected_version + 1``.
        """
        if record.version != expected_version + 1:
            raise ValueError(
                f"Successor version must be {expected_version + 1}, got {record.version}"
            )
        with locked(self.lock, timeout, "coupons"):
            current = self.records.get(record.id)
            if current is None or current.version != expected_version:
                return False
            self.records[record.id] = record
        return True
