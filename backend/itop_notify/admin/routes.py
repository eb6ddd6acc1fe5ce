"""Admin routes: manual job runs, per-user diagnostics and resets."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..database.base import get_db
from ..dependencies import get_ttl_cache, require_admin
from ..integrations.cache import TTLCache
from ..integrations.itop_client import ItopClient, ItopError
from ..jobs.runner import JOB_CLASSES
from ..preferences.policy import JobKind
from ..preferences.repository import ConfigRepository
from ..profiles.service import ProfileNotConfiguredError, ProfileService
from ..rate_limit import limiter
from ..users.service import UserDirectory
from .schemas import (
    CacheClearResponse,
    JobRunResponse,
    NotificationStatusResponse,
    ProfileRefreshResponse,
    SampleNotificationRequest,
    SampleNotificationResponse,
)
from .service import build_notification_status, send_sample_notification

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _require_user(db: Session, user_id: str) -> None:
    if not UserDirectory(db).exists(user_id):
        raise HTTPException(status_code=404, detail=f"Unknown user {user_id}")


@router.post("/jobs/{kind}/run", response_model=JobRunResponse)
@limiter.limit(settings.rate_limit_job_run)
def run_job_now(
    request: Request,
    kind: JobKind,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_ttl_cache),
):
    job = JOB_CLASSES[kind](db, cache)
    try:
        stats = job.run()
    finally:
        job.client.close()
    logger.info("%s job run triggered from the admin API", kind.value.capitalize())
    return JobRunResponse(kind=kind.value, **stats.to_dict())


@router.get("/users/{user_id}/notification-status", response_model=NotificationStatusResponse)
def notification_status(user_id: str, db: Session = Depends(get_db)):
    _require_user(db, user_id)
    return build_notification_status(db, user_id)


@router.post("/users/{user_id}/notifications/test", response_model=SampleNotificationResponse)
def send_test_notification(
    user_id: str,
    body: SampleNotificationRequest | None = None,
    db: Session = Depends(get_db),
):
    _require_user(db, user_id)
    try:
        result = send_sample_notification(db, user_id, body or SampleNotificationRequest())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    db.commit()
    logger.info("Sample %s notification sent to user %s", result.notification.subject, user_id)
    return result


@router.delete("/users/{user_id}/watermarks")
def reset_watermarks(user_id: str, kind: JobKind | None = None, db: Session = Depends(get_db)):
    _require_user(db, user_id)
    config = ConfigRepository(db)
    kinds = [kind] if kind is not None else list(JobKind)
    for k in kinds:
        config.delete_watermark(user_id, k)
    db.commit()
    logger.info("Reset %s watermark(s) for user %s", ",".join(k.value for k in kinds), user_id)
    return JSONResponse({"ok": True, "reset": [k.value for k in kinds]})


@router.post("/users/{user_id}/profile/refresh", response_model=ProfileRefreshResponse)
def refresh_profile(user_id: str, db: Session = Depends(get_db)):
    _require_user(db, user_id)
    config = ConfigRepository(db)
    client = ItopClient(config)
    try:
        portal_only = ProfileService(config, client).refresh(user_id)
    except ProfileNotConfiguredError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))
    except ItopError as e:
        db.rollback()
        logger.warning("Profile refresh failed for user %s: %s", user_id, e)
        raise HTTPException(status_code=502, detail=f"iTop request failed: {e}")
    finally:
        client.close()
    db.commit()
    return ProfileRefreshResponse(user_id=user_id, is_portal_only=portal_only)


@router.post("/cache/clear", response_model=CacheClearResponse)
def clear_cache(cache: TTLCache = Depends(get_ttl_cache)):
    deleted = cache.clear()
    logger.info("Cleared %d cache entries", deleted)
    return CacheClearResponse(deleted=deleted)
