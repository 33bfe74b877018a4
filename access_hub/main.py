import asyncio
import logging
from datetime import datetime, timezone
import uuid

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from access_hub.config import settings
from access_hub.core import exceptions
from access_hub.database import AsyncSessionLocal
from access_hub.routers.access import router as access_router
from access_hub.routers.admin import router as admin_router
from access_hub.routers.plans import router as plans_router
from access_hub.routers.subscriptions import router as subscriptions_router
from access_hub.services.expiration_sweeper import ExpirationSweeper

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)
sweeper_task: asyncio.Task | None = None

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

configured_origins = [str(origin).rstrip("/") for origin in settings.BACKEND_CORS_ORIGINS]
default_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
allow_origins = configured_origins if settings.APP_ENV == "production" else list(dict.fromkeys([*default_origins, *configured_origins]))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

# Exception Handlers
app.add_exception_handler(exceptions.AccessHubError, exceptions.domain_exception_handler)  # type: ignore
app.add_exception_handler(RequestValidationError, exceptions.validation_exception_handler)  # type: ignore
app.add_exception_handler(IntegrityError, exceptions.integrity_exception_handler)  # type: ignore

# Routers
app.include_router(plans_router, prefix=f"{settings.API_V1_STR}/plans", tags=["Plans"])
app.include_router(subscriptions_router, prefix=f"{settings.API_V1_STR}/subscriptions", tags=["Subscriptions"])
app.include_router(access_router, prefix=f"{settings.API_V1_STR}/access", tags=["Access"])
app.include_router(admin_router, prefix=f"{settings.API_V1_STR}/admin", tags=["Admin"])


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.exception("Health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="database unavailable",
        ) from exc
    return {"status": "ok", "database": "ok", "sweeper": ExpirationSweeper.status()}


def _maintenance_due(last_run: datetime | None, now: datetime) -> bool:
    if settings.MAINTENANCE_INTERVAL_SECONDS <= 0:
        return False
    return last_run is None or (now - last_run).total_seconds() >= settings.MAINTENANCE_INTERVAL_SECONDS


async def _run_sweeper_once(*, maintenance: bool) -> None:
    async with AsyncSessionLocal() as db:
        await ExpirationSweeper.run_guarded(
            db,
            maintenance=maintenance,
            reason="scheduled_maintenance" if maintenance else "scheduled",
        )


async def _sweeper_loop() -> None:
    last_maintenance: datetime | None = None
    run_now = settings.SWEEPER_RUN_ON_STARTUP
    while True:
        if not run_now:
            await asyncio.sleep(settings.SWEEPER_INTERVAL_SECONDS)
        run_now = False
        try:
            await _run_sweeper_once(maintenance=False)
            now = datetime.now(timezone.utc)
            if _maintenance_due(last_maintenance, now):
                await _run_sweeper_once(maintenance=True)
                last_maintenance = now
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Sweeper iteration failed")


@app.on_event("startup")
async def startup_sweeper() -> None:
    global sweeper_task
    _validate_security_settings()
    if not settings.SWEEPER_ENABLED:
        logger.info("Expiration sweeper disabled by config")
        return
    if sweeper_task and not sweeper_task.done():
        return
    sweeper_task = asyncio.create_task(_sweeper_loop())
    logger.info(
        "Expiration sweeper started (interval=%ss maintenance=%ss run_on_startup=%s)",
        settings.SWEEPER_INTERVAL_SECONDS,
        settings.MAINTENANCE_INTERVAL_SECONDS,
        settings.SWEEPER_RUN_ON_STARTUP,
    )


@app.on_event("shutdown")
async def shutdown_sweeper() -> None:
    global sweeper_task
    if sweeper_task and not sweeper_task.done():
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            pass
    sweeper_task = None
    logger.info("Expiration sweeper stopped")


def _validate_security_settings() -> None:
    if settings.APP_ENV != "production":
        return

    errors: list[str] = []
    if len(settings.SECRET_KEY.strip()) < 24:
        errors.append("SECRET_KEY must be at least 24 characters in production.")
    if settings.QR_SIGNING_KEY is not None and len(settings.QR_SIGNING_KEY.strip()) < 24:
        errors.append("QR_SIGNING_KEY must be a strong value in production.")
    if not settings.BACKEND_CORS_ORIGINS:
        errors.append("BACKEND_CORS_ORIGINS must be explicitly configured in production.")

    if errors:
        raise RuntimeError("; ".join(errors))
