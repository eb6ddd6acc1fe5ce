import logging
import logging.handlers
from pathlib import Path

from pydantic_settings import BaseSettings

APP_ID = "integration_itop"


class Settings(BaseSettings):
    database_url: str = "sqlite:///./itop_notify.db"
    redis_url: str = "redis://redis:6379/0"

    # iTop instance
    itop_url: str = ""
    itop_application_token: str = ""
    itop_timeout: float = 10.0

    # Timezone iTop uses for its change log timestamps and deadlines
    default_timezone: str = "UTC"

    # Background jobs
    scheduler_enabled: bool = True
    job_interval_seconds: int = 300
    default_notification_interval_minutes: int = 60
    notification_rate_limit: int = 20
    first_run_lookback_days: int = 30

    # Cache TTLs (seconds), clamped to [cache_min_ttl, cache_max_ttl]
    cache_ttl_person_names: int = 300
    cache_ttl_teams: int = 300
    cache_min_ttl: int = 10
    cache_max_ttl: int = 3600
    profile_cache_ttl: int = 300

    # Admin API
    admin_token: str = ""
    rate_limit_job_run: str = "10/minute"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_max_bytes: int = 10_485_760  # 10 MB
    log_backup_count: int = 5

    model_config = {"env_file": ".env"}

    def clamp_ttl(self, ttl: int) -> int:
        return max(self.cache_min_ttl, min(self.cache_max_ttl, ttl))


settings = Settings()


_DETAIL_FORMAT = logging.Formatter(
    "%(asctime)s %(levelname)-8s [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx", "apscheduler")


def _rotating(log_dir: Path, filename: str, level: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        log_dir / filename,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(_DETAIL_FORMAT)
    return handler


def setup_logging() -> None:
    """Configure logging for the API process and its background jobs.

    Handlers on the root logger:
    - console at INFO+, short format, for container logs
    - app.log at DEBUG+ and error.log at ERROR+, both rotated

    Job runs additionally go to jobs.log, so per-user failures and run
    summaries can be read without the request noise.
    """
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s", datefmt="%H:%M:%S"))
    root.addHandler(console)
    root.addHandler(_rotating(log_dir, "app.log", logging.DEBUG))
    root.addHandler(_rotating(log_dir, "error.log", logging.ERROR))

    jobs = logging.getLogger(f"{__package__}.jobs")
    jobs.handlers.clear()
    jobs.addHandler(_rotating(log_dir, "jobs.log", logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured: level=%s, dir=%s, rotate at %d MB, keep %d",
        settings.log_level, log_dir, settings.log_max_bytes // 1_048_576, settings.log_backup_count,
    )
