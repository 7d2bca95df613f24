import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deadswitch.api import api_v1_router, info_router
from deadswitch.api.deps import get_dispatcher
from deadswitch.core.config import settings
from deadswitch.core.db import init_db, session_factory
from deadswitch.core.errors import ConfigurationError, DeadSwitchError
from deadswitch.core.logger import logger
from deadswitch.core.sessions import get_session, init_redis
from deadswitch.services.codec import get_codec
from deadswitch.services.orchestrator import Orchestrator
from deadswitch.services.storage import LocalStorage
from deadswitch.services.sweeper import SweepDriver

CSRF_EXEMPT_PATHS = [
    f"{settings.API_V1_STR}/setup",
    f"{settings.API_V1_STR}/auth/login",
    f"{settings.API_V1_STR}/auth/recover",
    f"{settings.API_V1_STR}/checkin",
    f"{settings.API_V1_STR}/quick-heartbeat",
    "/api/info",
    "/api/health",
]


@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME} v{settings.PROJECT_VERSION}")
    init_db()

    try:
        init_redis()
    except Exception as e:
        logger.critical(f"Could not connect to Redis at {settings.REDIS_URL}: {e}")
        sys.exit(1)

    try:
        codec = get_codec()
    except ConfigurationError as e:
        logger.critical(f"Escrow key unavailable: {e}")
        sys.exit(1)

    driver = None
    application.state.sweep_driver = None
    if settings.SWEEP_ENABLED:
        orchestrator = Orchestrator(
            session_factory(), get_dispatcher(), codec, LocalStorage(codec)
        )
        driver = SweepDriver(orchestrator)
        driver.start()
        application.state.sweep_driver = driver

    yield

    if driver:
        driver.stop()
        application.state.sweep_driver = None
    logger.info(f"{settings.PROJECT_NAME} stopped")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(DeadSwitchError)
async def deadswitch_error_handler(request: Request, exc: DeadSwitchError):
    """Render domain errors as ``{"detail", "code"}``."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc}", extra={"path": request.url.path})
    return JSONResponse(
        {"detail": exc.message, "code": exc.code},
        status_code=exc.status_code,
    )


@app.middleware("http")
async def log_exceptions(request: Request, call_next):
    """Log unhandled exceptions with request context."""
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception", extra={"path": str(request.url)})
        raise


@app.middleware("http")
async def validate_csrf_token(request: Request, call_next):
    """Validate CSRF token for state-changing requests."""
    if request.method in ["POST", "PUT", "DELETE", "PATCH"]:
        if not any(request.url.path.startswith(path) for path in CSRF_EXEMPT_PATHS):
            csrf_token = request.headers.get("X-CSRF-Token")
            session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)

            if not session_id or not csrf_token:
                return JSONResponse(
                    {"detail": "CSRF token missing"},
                    status_code=status.HTTP_403_FORBIDDEN,
                )

            session_data = get_session(session_id)
            if not session_data or session_data.csrf_token != csrf_token:
                return JSONResponse(
                    {"detail": "Invalid CSRF token"},
                    status_code=status.HTTP_403_FORBIDDEN,
                )

    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS.split(","),
    allow_credentials=settings.ALLOW_CREDENTIALS,
    allow_methods=settings.ALLOW_METHODS,
    allow_headers=settings.ALLOW_HEADERS,
    max_age=600,
)

app.include_router(api_v1_router)
app.include_router(info_router)
