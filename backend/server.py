"""
Bank Statement Reconciliation API - application entry point.

Run with: uvicorn server:app --app-dir backend
"""

from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import re
import time
import uuid
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import text

# .env must be loaded before settings are read
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings, get_cors_config, validate_environment
from logging_config import (
    setup_logging,
    get_logger,
    bind_request_context,
    clear_request_context,
)
from sentry_integration import init_sentry, capture_exception
from database import init_db, engine
from reconciliation.endpoints.reconciliation_api import router as reconciliation_router

settings = get_settings()

setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
    service_name="bank-reconciliation"
)
logger = get_logger(__name__)

init_sentry(settings)

# /api/reconciliation/{tenant_id}/...
_TENANT_PATH = re.compile(r"^/api/reconciliation/([^/]+)/")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Starting {settings.API_TITLE} {settings.API_VERSION} "
        f"(environment={settings.ENVIRONMENT}, database={'sqlite' if settings.uses_sqlite else 'postgresql'})"
    )

    env_status = validate_environment()
    for error in env_status["errors"]:
        logger.error(f"Configuration Error: {error}")
    for warning in env_status["warnings"]:
        logger.warning(f"Configuration Warning: {warning}")
    if not env_status["valid"] and settings.is_production:
        raise RuntimeError("Cannot start in production with invalid configuration")

    # Postgres deployments run migrations/create_reconciliation_tables.py;
    # create_all is a no-op for tables that already exist.
    await init_db()
    logger.info(
        f"Candidate window: amount +/-{settings.RECON_AMOUNT_WINDOW}, "
        f"date +/-{settings.RECON_DATE_WINDOW_DAYS} days"
    )

    yield

    logger.info("Shutting down, disposing database engine")
    await engine.dispose()


app = FastAPI(
    title=settings.API_TITLE,
    description="""
    Reconciles imported bank statement lines against payment records.

    ## Statements (/api/reconciliation/{tenant_id}/statements)
    - Fingerprint-guarded import of parsed statements
    - Automatic matching of high confidence credits
    - Transactions with ranked payment suggestions
    - Statement summary (matched, pending, percent matched)

    ## Transactions (/api/reconciliation/{tenant_id}/transactions)
    - Manual match, ignore and unmatch

    ## Batch (/api/reconciliation/{tenant_id}/batch)
    - Many match/ignore instructions with per-item error reporting

    All reconciliation routes require the `X-Internal-Api-Key` header.
    """,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

api_router = APIRouter(prefix="/api")


# ==================== HEALTH CHECK ENDPOINTS ====================

@api_router.get("/", tags=["Health"])
async def root():
    return {
        "message": settings.API_TITLE,
        "status": "healthy",
        "version": settings.API_VERSION,
    }


@api_router.get("/health", tags=["Health"])
async def health_check():
    """
    Readiness check for load balancers.

    Returns 503 when the database does not answer; the body still carries
    the per-check breakdown.
    """
    checks = {}
    healthy = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = {
            "status": "connected",
            "type": "sqlite" if settings.uses_sqlite else "postgresql",
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        healthy = False
        checks["database"] = {"status": "disconnected", "error": type(e).__name__}

    env_status = validate_environment()
    checks["configuration"] = {
        "status": "valid" if env_status["valid"] else "invalid",
        "warnings": len(env_status["warnings"]),
        "errors": len(env_status["errors"]),
    }

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": checks,
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    """Liveness probe; does not touch the database."""
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


api_router.include_router(reconciliation_router)
app.include_router(api_router)


# ==================== MIDDLEWARE ====================

app.add_middleware(CORSMiddleware, **get_cors_config())


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Bind request id and tenant to the logging context and time the request."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    tenant_match = _TENANT_PATH.match(request.url.path)
    tokens = bind_request_context(
        request_id=request_id,
        tenant_id=tenant_match.group(1) if tenant_match else None,
    )
    started = time.perf_counter()

    try:
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}"

        if settings.debug_enabled or response.status_code >= 400:
            logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
        return response
    finally:
        clear_request_context(tokens)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last resort for errors no endpoint translated."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    event_id = capture_exception(exc, path=request.url.path, method=request.method)

    content = {"detail": "Internal server error"}
    if not settings.is_production:
        content.update({"error": str(exc), "type": type(exc).__name__})
    if event_id:
        content["event_id"] = event_id
    return JSONResponse(status_code=500, content=content)
