"""Shared FastAPI dependencies."""

import hmac
import logging

from fastapi import Header, HTTPException, Request

from .config import settings
from .integrations.cache import CacheService, TTLCache

logger = logging.getLogger(__name__)


def get_cache(request: Request) -> CacheService:
    """Get the cache backend from app state."""
    return request.app.state.cache


def get_ttl_cache(request: Request) -> TTLCache:
    return TTLCache(request.app.state.cache)


def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    """Check the ``X-Admin-Token`` header. No token configured means no check."""
    if not settings.admin_token:
        return
    if not x_admin_token or not hmac.compare_digest(x_admin_token, settings.admin_token):
        raise HTTPException(status_code=401, detail="Invalid admin token")


def warn_if_admin_api_open() -> bool:
    """Log a warning when no admin token is configured. Returns True when the admin API is open."""
    if settings.admin_token:
        return False
    logger.warning("ADMIN_TOKEN is not set, the admin API accepts unauthenticated requests")
    return True
