"""FastAPI application: admin API, health check and the job scheduler lifecycle."""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .api_v1 import api_v1_router
from .config import settings, setup_logging
from .database.base import SessionLocal, get_db
from .dependencies import get_cache, warn_if_admin_api_open
from .integrations.cache import CacheService, create_cache_service
from .jobs.runner import create_scheduler
from .preferences.repository import ConfigRepository
from .rate_limit import limiter

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
ALEMBIC_DIR = Path(__file__).resolve().parent.parent / "alembic"

_started_at: float = 0.0


def _upgrade_schema() -> None:
    cfg = Config()
    cfg.set_main_option("script_location", str(ALEMBIC_DIR))
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(cfg, "head")


def _seed_instance_config() -> None:
    """Copy the application token and instance URL from the environment when not yet stored."""
    db = SessionLocal()
    try:
        config = ConfigRepository(db)
        if settings.itop_application_token and not config.get_application_token():
            config.set_application_token(settings.itop_application_token)
            logger.info("Application token seeded from environment")
        if settings.itop_url and not config.get_admin_instance_url():
            config.set_admin_instance_url(settings.itop_url)
        db.commit()
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _started_at
    _started_at = time.time()

    setup_logging()
    warn_if_admin_api_open()
    _upgrade_schema()
    _seed_instance_config()
    app.state.cache = create_cache_service()

    app.state.scheduler = None
    if settings.scheduler_enabled:
        app.state.scheduler = create_scheduler(app.state.cache)
        app.state.scheduler.start()
    else:
        logger.info("Scheduler disabled, jobs only run from the admin API")

    yield

    if app.state.scheduler is not None:
        app.state.scheduler.shutdown(wait=False)


def _too_many_requests(request: Request, exc: RateLimitExceeded) -> Response:
    return JSONResponse(
        {"error": "Too many requests", "detail": str(exc.detail), "retry_after": 60},
        status_code=429,
        headers={"Retry-After": "60"},
    )


def _scheduler_status(app: FastAPI) -> dict:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is None or not scheduler.running:
        return {"running": False, "jobs": {}}
    return {
        "running": True,
        "jobs": {
            job.id: job.next_run_time.isoformat() if job.next_run_time else None
            for job in scheduler.get_jobs()
        },
    }


def create_app() -> FastAPI:
    app = FastAPI(title="iTop Notifications", version=VERSION, lifespan=lifespan)

    app.add_exception_handler(RateLimitExceeded, _too_many_requests)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

    app.include_router(api_v1_router)

    @app.get("/health")
    def health(request: Request, db: Session = Depends(get_db), cache: CacheService = Depends(get_cache)):
        try:
            db.execute(text("SELECT 1"))
            db_status = "ok"
        except Exception:
            logger.warning("Health check: database unreachable", exc_info=True)
            db_status = "unreachable"

        return {
            "status": "ok" if db_status == "ok" else "degraded",
            "db": db_status,
            "cache": "ok" if cache.ping() else "disabled",
            "scheduler": _scheduler_status(request.app),
            "version": VERSION,
            "uptime_seconds": round(time.time() - _started_at, 1) if _started_at else 0.0,
        }

    return app


app = create_app()
