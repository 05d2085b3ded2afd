from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
import structlog

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from renewdesk.config import settings
from renewdesk.database import init_db, close_db, get_db
from renewdesk.logging_config import setup_logging
from renewdesk.services.cache import cache
from renewdesk.middleware.correlation import CorrelationIdMiddleware

# Register models with Base.metadata
import renewdesk.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(
        "starting_renewdesk",
        env=settings.ENVIRONMENT,
        renewal_timezone=settings.RENEWAL_TIMEZONE,
    )
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: every error body is
# {"error": {"code": "...", "message": "..."}}
# ---------------------------------------------------------------------------

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_errors(exc),
            }
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # pydantic puts the raw exception object in ctx for some validators
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(err)
    return errors


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    # Redis is optional; without it reminder runs are unguarded
    if not settings.redis_configured:
        health_status["checks"]["redis"] = "not_configured"
    else:
        try:
            ok = await cache.ping()
            health_status["checks"]["redis"] = "ok" if ok else "error"
        except Exception as e:
            logger.error("health_check_redis_failed", error=str(e))
            health_status["checks"]["redis"] = "error"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from renewdesk.routes.renewal import router as renewal_router  # noqa: E402
from renewdesk.routes.notifications import router as notifications_router  # noqa: E402
from renewdesk.jobs.renewal_reminders import router as jobs_router  # noqa: E402

# Rate limiting middleware (Upstash Redis)
from renewdesk.middleware.rate_limit import rate_limit_middleware  # noqa: E402

app.middleware("http")(rate_limit_middleware)

app.include_router(renewal_router, prefix="/api/v1/renewal-contracts", tags=["Renewal Contracts"])
app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["Notifications"])
app.include_router(jobs_router, prefix="/internal/jobs", tags=["Internal Jobs"])
