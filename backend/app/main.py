import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.admin import router as admin_router
from app.api.v1.auth import router as auth_router
from app.api.v1.exchange import router as exchange_router
from app.api.v1.intake import router as intake_router
from app.api.v1.payments import router as payments_router
from app.api.v1.requests import router as requests_router
from app.api.v1.testimonials import router as testimonials_router
from app.api.v1.tracking import router as tracking_router
from app.core.config import get_settings
from app.core.dependencies import SessionLocal
from app.services.errors import DomainError, RateLimited
from app.services.transition_service import create_audit_log
from app.utils.rate_limit import get_client_ip, get_user_agent, ip_in_allowlist, rate_limiter

settings = get_settings()

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Une erreur interne est survenue"
SYSTEM_ENTITY_ID = "00000000-0000-0000-0000-000000000000"
STRIPE_WEBHOOK_PATH = "/api/v1/webhook/stripe"

app = FastAPI(
    title="Formalis API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(auth_router, prefix="/api/v1", tags=["auth"])
app.include_router(intake_router, prefix="/api/v1", tags=["intake"])
app.include_router(requests_router, prefix="/api/v1", tags=["requests"])
app.include_router(exchange_router, prefix="/api/v1", tags=["exchange"])
app.include_router(tracking_router, prefix="/api/v1", tags=["tracking"])
app.include_router(testimonials_router, prefix="/api/v1", tags=["testimonials"])
app.include_router(admin_router, prefix="/api/v1", tags=["admin"])
app.include_router(payments_router, prefix="/api/v1", tags=["webhooks"])


@app.exception_handler(DomainError)
async def _domain_error_handler(request: Request, exc: DomainError):
    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after_seconds:
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    content = {"detail": exc.message}
    if exc.fields:
        content["fields"] = exc.fields
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx in production unless explicitly enabled.
    if exc.status_code >= 500 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": GENERIC_ERROR_MESSAGE})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR_MESSAGE})


@app.middleware("http")
async def webhook_rate_limit_middleware(request: Request, call_next):
    if request.method != "POST" or not request.url.path.startswith(STRIPE_WEBHOOK_PATH):
        return await call_next(request)

    settings = get_settings()
    if not settings.rate_limit_webhook_enabled:
        return await call_next(request)

    ip = get_client_ip(request) or "unknown"
    key = f"stripe:ip:{ip}"
    limit = settings.rate_limit_stripe_ip_per_min
    window_seconds = 60
    allowed, _ = rate_limiter.allow(key, limit, window_seconds)
    if not allowed:
        if SessionLocal is not None:
            db = SessionLocal()
            try:
                create_audit_log(
                    db,
                    entity_type="system",
                    entity_id=SYSTEM_ENTITY_ID,
                    action="RATE_LIMIT_BLOCKED",
                    old_value=None,
                    new_value=None,
                    actor_type="SYSTEM",
                    actor_id=None,
                    ip_address=get_client_ip(request),
                    user_agent=get_user_agent(request),
                    metadata={"path": request.url.path, "key": key, "limit": limit, "window_seconds": window_seconds},
                )
                db.commit()
            finally:
                db.close()
        return JSONResponse(status_code=429, content={"detail": "Trop de requêtes"})

    return await call_next(request)


@app.middleware("http")
async def api_rate_limit_middleware(request: Request, call_next):
    if request.method == "OPTIONS":
        return await call_next(request)

    path = request.url.path
    if not path.startswith("/api/v1") or path.startswith(STRIPE_WEBHOOK_PATH):
        return await call_next(request)

    settings = get_settings()
    if not settings.rate_limit_api_enabled:
        return await call_next(request)

    ip = get_client_ip(request) or "unknown"
    allowed, _ = rate_limiter.allow(f"api:ip:{ip}", settings.rate_limit_api_per_min, 60)
    if not allowed:
        return JSONResponse(status_code=429, content={"detail": "Trop de requêtes"})

    return await call_next(request)


@app.middleware("http")
async def admin_ip_allowlist_middleware(request: Request, call_next):
    allowlist = get_settings().admin_ip_allowlist
    if not allowlist:
        return await call_next(request)

    if request.url.path.startswith("/api/v1/admin/"):
        ip = get_client_ip(request) or ""
        if not ip_in_allowlist(ip, allowlist):
            return JSONResponse(status_code=403, content={"detail": "Adresse IP non autorisée"})
    return await call_next(request)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not get_settings().security_headers_enabled:
        return response

    headers = response.headers
    if "X-Content-Type-Options" not in headers:
        headers["X-Content-Type-Options"] = "nosniff"
    if "X-Frame-Options" not in headers:
        headers["X-Frame-Options"] = "DENY"
    if "Referrer-Policy" not in headers:
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if "Permissions-Policy" not in headers:
        headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
    if "Strict-Transport-Security" not in headers:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    if "Content-Security-Policy" not in headers:
        headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'; base-uri 'none'"

    return response


@app.get("/health")
async def health_check():
    return {"status": "ok"}
