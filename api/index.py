from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from mangum import Mangum

from core.config import settings
from core.logging_config import setup_logging
from coupons.models import (
    Coupon,
    CouponFilter,
    CouponKind,
    CouponStatus,
    CreateLifetimeCouponRequest,
    GenerateCouponRequest,
    LifetimeCoupon,
)
from coupons.service import CouponService
from ledger.analytics import RevenueAggregator
from ledger.errors import (
    ConflictError,
    CouponExpiredError,
    LedgerServiceError,
    NotFoundError,
    StoreError,
    UnknownSourceError,
    UnknownStatusError,
    ValidationError,
)
from ledger.models import (
    AnalyticsScope,
    CreateLedgerEntryRequest,
    DateRange,
    EntryStatus,
    LedgerQuery,
    LedgerSource,
)
from ledger.service import LedgerService

from api.auth import Principal, Role, require_role
from api.retry import call_with_store_retry
from api.schemas import (
    AdminAnalyticsResponse,
    CouponOut,
    CreateLifetimeCouponBody,
    GenerateCouponBody,
    LedgerEntryBody,
    LifetimeCouponListResponse,
    LifetimeCouponOut,
    LifetimeRedemptionOut,
    OwnerAnalyticsResponse,
    RedeemCouponBody,
    TransactionOut,
)


logger = structlog.get_logger(__name__)

# Most specific first.
ERROR_STATUS_CODES: list[tuple[type[LedgerServiceError], int]] = [
    (CouponExpiredError, status.HTTP_410_GONE),
    (ConflictError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_code_for(error: LedgerServiceError) -> int:
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    ledger_service: Optional[LedgerService] = None,
    coupon_service: Optional[CouponService] = None,
) -> FastAPI:
    setup_logging()
    if settings.uses_default_jwt_secret:
        logger.warning("JWT_SECRET is not set, bearer tokens are signed with the built-in development key")

    ledger_service = ledger_service or LedgerService()
    coupon_service = coupon_service or CouponService(ledger_service)

    app = FastAPI(
        title="Revenue Ledger API",
        description="Revenue analytics and promotional coupons for the group dashboard",
        version="1.0.0",
    )
    app.state.ledger = ledger_service
    app.state.coupons = coupon_service
    app.state.aggregator = RevenueAggregator(ledger_service)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerServiceError)
    async def service_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
        code = status_code_for(exc)
        log = logger.error if code >= 500 else logger.info
        log("Request failed", path=request.url.path, error=type(exc).__name__, message=str(exc))
        return JSONResponse(status_code=code, content={"message": str(exc), "error": type(exc).__name__})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid request')}" if location else first.get("msg", "invalid request")
        return JSONResponse(
            status_code=422,
            content={"message": message, "errors": jsonable_errors(exc)},
        )

    app.include_router(build_router())
    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


def get_ledger(request: Request) -> LedgerService:
    return request.app.state.ledger


def get_coupons(request: Request) -> CouponService:
    return request.app.state.coupons


def get_aggregator(request: Request) -> RevenueAggregator:
    return request.app.state.aggregator


def parse_date_range(start: Optional[datetime], end: Optional[datetime]) -> Optional[DateRange]:
    if start is None and end is None:
        return None
    return DateRange(start=start, end=end)


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "revenue-ledger"}

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    @router.get("/api/analytics/owner", response_model=OwnerAnalyticsResponse, tags=["Analytics"])
    def owner_analytics(
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        group_id: Optional[str] = Query(default=None, alias="groupId"),
        principal: Principal = Depends(require_role(Role.OWNER)),
        aggregator: RevenueAggregator = Depends(get_aggregator),
    ) -> OwnerAnalyticsResponse:
        snapshot = call_with_store_retry(
            aggregator.summarize,
            AnalyticsScope.OWNER,
            date_range=parse_date_range(start, end),
            group_id=group_id,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        return OwnerAnalyticsResponse.from_snapshot(snapshot)

    @router.get("/api/analytics/admin", response_model=AdminAnalyticsResponse, tags=["Analytics"])
    def admin_analytics(
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        principal: Principal = Depends(require_role(Role.ADMIN)),
        aggregator: RevenueAggregator = Depends(get_aggregator),
    ) -> AdminAnalyticsResponse:
        snapshot = call_with_store_retry(
            aggregator.summarize,
            AnalyticsScope.ADMIN,
            date_range=parse_date_range(start, end),
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        return AdminAnalyticsResponse.from_snapshot(snapshot)

    # ------------------------------------------------------------------
    # Coupons
    # ------------------------------------------------------------------

    @router.get("/api/coupons", response_model=list[CouponOut], tags=["Coupons"])
    def list_coupons(
        coupon_status: Optional[CouponStatus] = Query(default=None, alias="status"),
        principal: Principal = Depends(require_role(Role.OWNER)),
        coupons: CouponService = Depends(get_coupons),
    ) -> list[CouponOut]:
        found = call_with_store_retry(
            coupons.list,
            CouponFilter(kind=CouponKind.COUPON, status=coupon_status),
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        return [CouponOut.from_coupon(c, coupons.status_of(c)) for c in found]

    @router.post(
        "/api/coupons/generate",
        response_model=CouponOut,
        status_code=status.HTTP_201_CREATED,
        tags=["Coupons"],
    )
    def generate_coupon(
        body: GenerateCouponBody,
        principal: Principal = Depends(require_role(Role.OWNER)),
        coupons: CouponService = Depends(get_coupons),
    ) -> CouponOut:
        coupon: Coupon = call_with_store_retry(
            coupons.generate,
            GenerateCouponRequest(
                code=body.code,
                amount=body.amount,
                expires_at=body.expires_at,
                description=body.description,
            ),
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        logger.info("Coupon generated via API", code=coupon.code, created_by=principal.subject)
        return CouponOut.from_coupon(coupon, coupons.status_of(coupon))

    @router.post("/api/coupons/redeem", response_model=TransactionOut, tags=["Coupons"])
    def redeem_coupon(
        body: RedeemCouponBody,
        principal: Principal = Depends(require_role(Role.USER)),
        coupons: CouponService = Depends(get_coupons),
    ) -> TransactionOut:
        entry = call_with_store_retry(
            coupons.redeem,
            body.code,
            principal.subject,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        return TransactionOut.from_entry(entry)

    @router.post("/api/coupons/{coupon_id}/expire", response_model=CouponOut, tags=["Coupons"])
    def expire_coupon(
        coupon_id: UUID,
        principal: Principal = Depends(require_role(Role.OWNER)),
        coupons: CouponService = Depends(get_coupons),
    ) -> CouponOut:
        coupon = call_with_store_retry(coupons.expire, coupon_id, timeout=settings.STORE_TIMEOUT_SECONDS)
        logger.info("Coupon expired via API", coupon_id=str(coupon_id), expired_by=principal.subject)
        return CouponOut.from_coupon(coupon, coupons.status_of(coupon))

    # ------------------------------------------------------------------
    # Lifetime coupons
    # ------------------------------------------------------------------

    @router.get("/api/lifetime-coupons", response_model=LifetimeCouponListResponse, tags=["Lifetime Coupons"])
    def list_lifetime_coupons(
        coupon_status: Optional[CouponStatus] = Query(default=None, alias="status"),
        principal: Principal = Depends(require_role(Role.OWNER)),
        coupons: CouponService = Depends(get_coupons),
    ) -> LifetimeCouponListResponse:
        found = call_with_store_retry(
            coupons.list,
            CouponFilter(kind=CouponKind.LIFETIME, status=coupon_status),
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        return LifetimeCouponListResponse(
            coupons=[LifetimeCouponOut.from_coupon(c, coupons.status_of(c)) for c in found]
        )

    @router.post(
        "/api/lifetime-coupons/create",
        response_model=LifetimeCouponOut,
        status_code=status.HTTP_201_CREATED,
        tags=["Lifetime Coupons"],
    )
    def create_lifetime_coupon(
        body: CreateLifetimeCouponBody,
        principal: Principal = Depends(require_role(Role.OWNER)),
        coupons: CouponService = Depends(get_coupons),
    ) -> LifetimeCouponOut:
        fields = body.model_dump(exclude_none=True, exclude={"description"})
        if body.description:
            fields["description"] = body.description
        request = CreateLifetimeCouponRequest(**fields)
        coupon: LifetimeCoupon = call_with_store_retry(
            coupons.create_lifetime,
            request,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        logger.info("Lifetime coupon created via API", code=coupon.code, created_by=principal.subject)
        return LifetimeCouponOut.from_coupon(coupon, coupons.status_of(coupon))

    @router.post("/api/lifetime-coupons/redeem", response_model=LifetimeRedemptionOut, tags=["Lifetime Coupons"])
    def redeem_lifetime_coupon(
        body: RedeemCouponBody,
        principal: Principal = Depends(require_role(Role.USER)),
        coupons: CouponService = Depends(get_coupons),
    ) -> LifetimeRedemptionOut:
        redemption = call_with_store_retry(
            coupons.redeem_lifetime,
            body.code,
            principal.subject,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        return LifetimeRedemptionOut.from_redemption(redemption)

    # ------------------------------------------------------------------
    # Ledger ingestion
    # ------------------------------------------------------------------

    @router.post(
        "/api/ledger/entries",
        response_model=TransactionOut,
        status_code=status.HTTP_201_CREATED,
        tags=["Ledger"],
    )
    def append_ledger_entry(
        body: LedgerEntryBody,
        principal: Principal = Depends(require_role(Role.ADMIN)),
        ledger: LedgerService = Depends(get_ledger),
    ) -> TransactionOut:
        entry = call_with_store_retry(
            ledger.append,
            CreateLedgerEntryRequest(
                amount=body.amount,
                source=body.source,
                status=body.status,
                chain=body.chain,
                game_type=body.game_type,
                group_id=body.group_id,
                user_id=body.user_id,
                created_at=body.created_at,
                description=body.description,
            ),
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )
        return TransactionOut.from_entry(entry)

    @router.get("/api/ledger/entries", response_model=list[TransactionOut], tags=["Ledger"])
    def list_ledger_entries(
        source: Optional[str] = None,
        entry_status: Optional[str] = Query(default=None, alias="status"),
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        group_id: Optional[str] = Query(default=None, alias="groupId"),
        user_id: Optional[str] = Query(default=None, alias="userId"),
        limit: int = Query(default=50, ge=1, le=500),
        principal: Principal = Depends(require_role(Role.ADMIN)),
        ledger: LedgerService = Depends(get_ledger),
    ) -> list[TransactionOut]:
        query = LedgerQuery(
            sources=frozenset({parse_source(source)}) if source else None,
            statuses=frozenset({parse_status(entry_status)}) if entry_status else None,
            date_range=parse_date_range(start, end),
            group_id=group_id,
            user_id=user_id,
        )
        entries = call_with_store_retry(ledger.recent, limit, query, timeout=settings.STORE_TIMEOUT_SECONDS)
        return [TransactionOut.from_entry(e) for e in entries]

    return router


def parse_source(value: str) -> LedgerSource:
    try:
        return LedgerSource(value.strip().lower())
    except ValueError:
        raise UnknownSourceError(f"Unknown ledger source {value!r}")


def parse_status(value: str) -> EntryStatus:
    try:
        return EntryStatus(value.strip().lower())
    except ValueError:
        raise UnknownStatusError(f"Unknown entry status {value!r}")


app = create_app()
handler = Mangum(app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
