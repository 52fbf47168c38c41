from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog

from core.config import settings
from ledger.errors import (
    AlreadyUsedError,
    CodeGenerationExhaustedError,
    ConcurrentModificationError,
    CouponExpiredError,
    CouponNotFoundError,
    DuplicateCodeError,
    InvalidAmountError,
    InvalidExpiryError,
    RedemptionCapReachedError,
    ValidationError,
)
from ledger.models import CreateLedgerEntryRequest, EntryStatus, LedgerEntry, LedgerSource, as_utc
from ledger.service import LedgerService, utcnow
from .codes import LIFETIME_PREFIX, CodeGenerator, generate_code, normalize_code
from .models import (
    DEFAULT_LIFETIME_FEATURES,
    AnyCoupon,
    Coupon,
    CouponFilter,
    CouponKind,
    CouponStatus,
    CreateLifetimeCouponRequest,
    GenerateCouponRequest,
    LifetimeCoupon,
    LifetimeRedemption,
)
from .storage import InMemoryCouponStorage


logger = structlog.get_logger(__name__)


class CouponService:
    """Owns single-use and lifetime coupons and their redemption state.

    Every state change goes through ``_update``: read the record, derive its
    successor, compare-and-swap on the version. A losing writer re-reads and
    re-validates, so the second of two concurrent redeemers sees the record
    the first one wrote and fails with a conflict.
    """

    def __init__(
        self,
        ledger: LedgerService,
        storage: Optional[InMemoryCouponStorage] = None,
        clock: Callable[[], datetime] = utcnow,
        code_generator: CodeGenerator = generate_code,
    ):
        self.ledger = ledger
        self.storage = storage or InMemoryCouponStorage()
        self.clock = clock
        self.code_generator = code_generator

    # ------------------------------------------------------------------
    # Single-use coupons
    # ------------------------------------------------------------------

    def generate(self, request: GenerateCouponRequest, timeout: Optional[float] = None) -> Coupon:
        now = self.clock()
        amount = Decimal(request.amount)
        if not amount.is_finite() or amount <= 0:
            raise InvalidAmountError(f"Coupon amount must be positive, got {request.amount}")

        expires_at = as_utc(request.expires_at)
        if expires_at <= now:
            raise InvalidExpiryError("Coupon expiry must be in the future")

        def build(code: str) -> Coupon:
            return Coupon(
                id=uuid4(),
                code=code,
                amount=amount,
                description=request.description or "",
                expires_at=expires_at,
                created_at=now,
            )

        coupon = self._insert(build, request.code, prefix="", timeout=timeout)
        logger.info(
            "Coupon generated",
            coupon_id=str(coupon.id),
            code=coupon.code,
            amount=str(coupon.amount),
            expires_at=coupon.expires_at.isoformat(),
        )
        return coupon

    def redeem(self, code: str, redeemer_id: str, timeout: Optional[float] = None) -> LedgerEntry:
        coupon = self._find_by_code(code, CouponKind.COUPON, timeout)

        def mark_used(current: Coupon) -> Coupon:
            now = self.clock()
            # a deactivated coupon also has is_used set; report it as expired
            if current.expired_at is not None:
                raise CouponExpiredError(f"Coupon {current.code} has been deactivated")
            if current.is_used:
                raise AlreadyUsedError(f"Coupon {current.code} has already been used")
            if now > current.expires_at:
                raise CouponExpiredError(f"Coupon {current.code} expired at {current.expires_at.isoformat()}")
            return current.model_copy(update={
                "is_used": True,
                "used_by": redeemer_id,
                "used_at": now,
                "version": current.version + 1,
            })

        used = self._update(coupon.id, mark_used, timeout)

        try:
            entry = self.ledger.append(
                CreateLedgerEntryRequest(
                    amount=used.amount,
                    source=LedgerSource.DEPOSIT.value,
                    status=EntryStatus.CONFIRMED.value,
                    user_id=redeemer_id,
                    coupon_id=used.id,
                    created_at=used.used_at,
                    description=f"Coupon {used.code} redeemed",
                ),
                timeout=timeout,
            )
        except Exception:
            self._release(used, timeout)
            raise

        logger.info(
            "Coupon redeemed",
            coupon_id=str(used.id),
            code=used.code,
            redeemer_id=redeemer_id,
            ledger_entry_id=str(entry.id),
        )
        return entry

    def expire(self, coupon_id: UUID, timeout: Optional[float] = None) -> Coupon:
        """Deactivate a coupon without crediting anyone. Repeat calls are no-ops."""
        coupon = self.get(coupon_id, timeout)
        if not isinstance(coupon, Coupon):
            raise CouponNotFoundError(f"Coupon {coupon_id} not found")

        def deactivate(current: Coupon) -> Optional[Coupon]:
            now = self.clock()
            if current.is_used or current.expired_at is not None or now > current.expires_at:
                return None
            return current.model_copy(update={
                "is_used": True,
                "expired_at": now,
                "version": current.version + 1,
            })

        expired = self._update(coupon_id, deactivate, timeout)
        logger.info("Coupon expired", coupon_id=str(coupon_id), code=expired.code)
        return expired

    # ------------------------------------------------------------------
    # Lifetime coupons
    # ------------------------------------------------------------------

    def create_lifetime(
        self,
        request: CreateLifetimeCouponRequest,
        timeout: Optional[float] = None,
    ) -> LifetimeCoupon:
        now = self.clock()
        if request.expires_at is None:
            expires_at = now + timedelta(days=settings.LIFETIME_COUPON_DEFAULT_DAYS)
        else:
            expires_at = as_utc(request.expires_at)
            if expires_at <= now:
                raise InvalidExpiryError("Coupon expiry must be in the future")

        if request.max_redemptions is not None and request.max_redemptions < 1:
            raise ValidationError(
                f"max_redemptions must be at least 1 when set, got {request.max_redemptions}"
            )

        features = [f.strip() for f in (request.features or DEFAULT_LIFETIME_FEATURES) if f and f.strip()]
        if not features:
            raise ValidationError("A lifetime coupon must grant at least one feature")

        def build(code: str) -> LifetimeCoupon:
            return LifetimeCoupon(
                id=uuid4(),
                code=code,
                description=request.description or "",
                expires_at=expires_at,
                max_redemptions=request.max_redemptions,
                features=features,
                created_at=now,
            )

        coupon = self._insert(build, request.custom_code, prefix=LIFETIME_PREFIX, timeout=timeout)
        logger.info(
            "Lifetime coupon created",
            coupon_id=str(coupon.id),
            code=coupon.code,
            max_redemptions=coupon.max_redemptions,
        )
        return coupon

    def redeem_lifetime(
        self,
        code: str,
        redeemer_id: str,
        timeout: Optional[float] = None,
    ) -> LifetimeRedemption:
        """Count one redemption and return the features to grant.

        Granting them to the user is up to the caller.
        """
        coupon = self._find_by_code(code, CouponKind.LIFETIME, timeout)
        redeemed_at = self.clock()

        def increment(current: LifetimeCoupon) -> LifetimeCoupon:
            if redeemed_at > current.expires_at:
                raise CouponExpiredError(f"Coupon {current.code} expired at {current.expires_at.isoformat()}")
            if current.is_exhausted:
                raise RedemptionCapReachedError(
                    f"Coupon {current.code} reached its limit of {current.max_redemptions} redemptions"
                )
            return current.model_copy(update={
                "current_redemptions": current.current_redemptions + 1,
                "version": current.version + 1,
            })

        updated = self._update(coupon.id, increment, timeout)
        logger.info(
            "Lifetime coupon redeemed",
            coupon_id=str(updated.id),
            code=updated.code,
            redeemer_id=redeemer_id,
            current_redemptions=updated.current_redemptions,
        )
        return LifetimeRedemption(
            coupon_id=updated.id,
            code=updated.code,
            redeemer_id=redeemer_id,
            features=list(updated.features),
            redeemed_at=redeemed_at,
            current_redemptions=updated.current_redemptions,
            max_redemptions=updated.max_redemptions,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, coupon_id: UUID, timeout: Optional[float] = None) -> AnyCoupon:
        coupon = self.storage.get(coupon_id, timeout)
        if coupon is None:
            raise CouponNotFoundError(f"Coupon {coupon_id} not found")
        return coupon

    def list(
        self,
        coupon_filter: Optional[CouponFilter] = None,
        timeout: Optional[float] = None,
    ) -> list[AnyCoupon]:
        coupon_filter = coupon_filter or CouponFilter()
        now = self.clock()
        coupons = [
            c for c in self.storage.all(timeout)
            if (coupon_filter.kind is None or c.kind == coupon_filter.kind)
            and (coupon_filter.status is None or c.status_at(now) == coupon_filter.status)
        ]
        coupons.sort(key=lambda c: c.created_at, reverse=True)
        return coupons

    def status_of(self, coupon: AnyCoupon) -> CouponStatus:
        return coupon.status_at(self.clock())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_by_code(self, code: str, kind: CouponKind, timeout: Optional[float]) -> AnyCoupon:
        normalized = normalize_code(code)
        coupon = self.storage.get_by_code(normalized, timeout)
        if coupon is None or coupon.kind != kind:
            raise CouponNotFoundError(f"Coupon {normalized} not found")
        return coupon

    def _insert(
        self,
        build: Callable[[str], AnyCoupon],
        code: Optional[str],
        prefix: str,
        timeout: Optional[float],
    ) -> AnyCoupon:
        if code is not None and code.strip():
            return self.storage.insert(build(normalize_code(code)), timeout)

        attempts = settings.CODE_GENERATION_ATTEMPTS
        for attempt in range(1, attempts + 1):
            candidate = prefix + self.code_generator(settings.COUPON_CODE_LENGTH)
            if self.storage.code_exists(candidate, timeout):
                logger.debug("Generated code collides, retrying", attempt=attempt)
                continue
            try:
                return self.storage.insert(build(candidate), timeout)
            except DuplicateCodeError:
                # taken between the check and the insert
                logger.debug("Generated code taken concurrently, retrying", attempt=attempt)

        logger.error("Coupon code generation exhausted", attempts=attempts)
        raise CodeGenerationExhaustedError(f"Could not generate a unique coupon code in {attempts} attempts")

    def _update(
        self,
        coupon_id: UUID,
        mutate: Callable[[AnyCoupon], Optional[AnyCoupon]],
        timeout: Optional[float],
    ) -> AnyCoupon:
        """Apply ``mutate`` under optimistic concurrency.

        ``mutate`` returns the successor record, or None to leave the record
        as it is; conflict errors it raises propagate unchanged.
        """
        attempts = settings.CAS_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            current = self.get(coupon_id, timeout)
            successor = mutate(current)
            if successor is None:
                return current
            if self.storage.compare_and_swap(successor, current.version, timeout):
                return successor
            logger.debug("Coupon version conflict, retrying", coupon_id=str(coupon_id), attempt=attempt)

        logger.warning("Coupon update gave up after repeated conflicts", coupon_id=str(coupon_id), attempts=attempts)
        raise ConcurrentModificationError(f"Coupon {coupon_id} kept changing; gave up after {attempts} attempts")

    def _release(self, used: Coupon, timeout: Optional[float]) -> None:
        """Undo ``mark_used`` when the ledger credit could not be written."""
        restored = used.model_copy(update={
            "is_used": False,
            "used_by": None,
            "used_at": None,
            "version": used.version + 1,
        })
        if not self.storage.compare_and_swap(restored, used.version, timeout):
            logger.error("Coupon changed before it could be released", coupon_id=str(used.id))
        else:
            logger.warning("Coupon released after failed ledger credit", coupon_id=str(used.id))
