"""
TrackProfit — FastAPI Backend
Joins storefront orders, ad spend and courier shipments into one profit view.
Recorded COGS and provider credentials persisted to PostgreSQL.
"""

import logging
import math
import uuid
from contextlib import asynccontextmanager
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from trackprofit.config import get_settings
from trackprofit.database import init_db, check_db_connection
from trackprofit.auth import require_shop
from trackprofit.errors import ErrorKind, ServiceError
from trackprofit.routers import ads, cogs, dashboard, products, shipping

settings = get_settings()

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting TrackProfit...")
    try:
        await init_db()
        logger.info("Database initialized, all tables ready.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="TrackProfit",
    description="Profit aggregation across storefront orders, ad spend and courier shipments",
    version="1.0.0",
    lifespan=lifespan,
)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Tag every request with a correlation id (reused from X-Request-ID when sent)."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)


# ── Error envelopes ──────────────────────────────────────────────────
def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or uuid.uuid4().hex


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.kind is ErrorKind.INTERNAL:
        correlation_id = _correlation_id(request)
        logger.error(f"[{correlation_id}] {request.method} {request.url.path}: {exc.message}")
        body = {"success": False, "error": "Internal error", "reason": "internal", "correlationId": correlation_id}
        return JSONResponse(status_code=500, content=body)
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed upstream: {exc}")
    headers = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(math.ceil(exc.retry_after))
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    reason = "unauthenticated" if exc.status_code == 401 else "http_error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail), "reason": reason},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{location}: {first.get('msg')}" if location else (first.get("msg") or "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": message, "reason": ErrorKind.INVALID_INPUT.value},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    correlation_id = _correlation_id(request)
    logger.error(f"[{correlation_id}] Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal error", "reason": "internal", "correlationId": correlation_id},
        headers={REQUEST_ID_HEADER: correlation_id},
    )


# ── Register Routers (all require a shop session) ────────────────────
_auth = [Depends(require_shop)]
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"], dependencies=_auth)
app.include_router(cogs.router, prefix="/api/cogs", tags=["COGS"], dependencies=_auth)
app.include_router(products.router, prefix="/api/products", tags=["Products"], dependencies=_auth)
app.include_router(ads.router, prefix="/api/ads", tags=["Ads"], dependencies=_auth)
app.include_router(shipping.router, prefix="/api/shipping", tags=["Shipping"], dependencies=_auth)


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "TrackProfit",
        "database": "connected" if db_ok else "disconnected",
    }
