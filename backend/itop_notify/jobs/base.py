"""Shared run loop for the portal and agent ticket update jobs.

One run walks every host user, gates each one through the UserScheduler,
runs the job's detection steps against the shared notification budget and
moves the user's watermark to the run start time. A failure for one user is
rolled back and logged; the remaining users are still processed.
"""

import abc
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import tzinfo

from sqlalchemy.orm import Session

from ..config import settings
from ..changes.detector import ChangeDetector
from ..integrations.cache import TTLCache
from ..integrations.itop_client import ItopAuthError, ItopClient
from ..notifications.dispatcher import NotificationDispatcher, UserNotifier
from ..notifications.sink import NotificationManager
from ..preferences.policy import JobKind, UserNotificationPolicy
from ..preferences.repository import ConfigRepository
from ..profiles.service import ProfileService
from ..scheduling.scheduler import UserScheduler
from ..tickets.service import TicketDirectory
from ..timeutil import resolve_timezone
from ..users.service import UserDirectory

logger = logging.getLogger(__name__)

_DAY = 24 * 60 * 60


@dataclass
class JobRunStats:
    users_processed: int = 0
    users_skipped: int = 0
    users_failed: int = 0
    notifications_sent: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class TicketUpdateJob(abc.ABC):
    kind: JobKind

    def __init__(
        self,
        db: Session,
        cache: TTLCache,
        client: ItopClient | None = None,
        clock: Callable[[], float] = time.time,
        timezone: tzinfo | None = None,
        rate_limit: int = settings.notification_rate_limit,
    ) -> None:
        self.db = db
        self.clock = clock
        self.rate_limit = rate_limit
        self.tz = timezone or resolve_timezone(settings.default_timezone)
        self.config = ConfigRepository(db)
        self.client = client or ItopClient(self.config)
        self.directory = TicketDirectory(self.client, cache)
        self.detector = ChangeDetector(self.client, self.directory, self.config, self.tz)
        self.dispatcher = NotificationDispatcher(NotificationManager(db), self.tz, clock)
        self.profiles = ProfileService(self.config, self.client, clock)
        self.scheduler = UserScheduler(self.config, clock, portal_only_resolver=self.profiles.is_portal_only)
        self.users = UserDirectory(db)

    # ── Run loop ───────────────────────────────────────────────────────

    def run(self) -> JobRunStats:
        started = self.clock()
        stats = JobRunStats()
        admin_default = self.config.effective_default_interval_minutes() * 60

        for user_id in self.users.iter_user_ids():
            try:
                policy = self.config.load_policy(user_id)
                eligible = self.scheduler.decide(policy, self.kind, admin_default).eligible
                self.db.commit()
            except Exception:
                self.db.rollback()
                logger.exception("Could not evaluate %s schedule for user %s", self.kind.value, user_id)
                stats.users_failed += 1
                continue
            if not eligible:
                stats.users_skipped += 1
                continue

            try:
                stats.notifications_sent += self.process_user(user_id, int(started), policy)
                self.db.commit()
                stats.users_processed += 1
            except ItopAuthError as e:
                self.db.rollback()
                self._forget_credential(user_id, e)
                stats.users_failed += 1
            except Exception:
                self.db.rollback()
                logger.exception("Error checking %s notifications for user %s", self.kind.value, user_id)
                stats.users_failed += 1

        stats.duration_ms = int(round((self.clock() - started) * 1000))
        logger.info(
            "%s notification check completed: users_processed=%d users_skipped=%d users_failed=%d "
            "notifications_sent=%d duration_ms=%d",
            self.kind.value.capitalize(),
            stats.users_processed,
            stats.users_skipped,
            stats.users_failed,
            stats.notifications_sent,
            stats.duration_ms,
        )
        return stats

    def _forget_credential(self, user_id: str, error: ItopAuthError) -> None:
        if error.credential == "user":
            logger.warning("iTop rejected the personal token of user %s, removing it", user_id)
            self.config.delete_personal_token(user_id)
        else:
            logger.error("iTop rejected the application token, removing it")
            self.config.delete_application_token()
        self.db.commit()

    # ── Per user ───────────────────────────────────────────────────────

    def process_user(self, user_id: str, now: int, policy: UserNotificationPolicy | None = None) -> int:
        """Detect and dispatch for one user; returns the number of notifications sent."""
        if policy is None:
            policy = self.config.load_policy(user_id)
        watermark = self.config.get_watermark(user_id, self.kind)
        since = watermark if watermark is not None else now - settings.first_run_lookback_days * _DAY
        enabled = policy.enabled_types(self.kind)

        if enabled:
            notifier = self.dispatcher.for_user(user_id, policy.remote_user_id, self.rate_limit)
            logger.debug(
                "%s notification check for user %s since %d: %s",
                self.kind.value.capitalize(), user_id, since, ",".join(sorted(enabled)),
            )
            self.detect(user_id, policy.person_id, since, now, enabled, notifier)
            sent = notifier.sent
        else:
            sent = 0

        self.config.set_watermark(user_id, self.kind, now)
        return sent

    @abc.abstractmethod
    def detect(
        self,
        user_id: str,
        person_id: str,
        since: int,
        now: int,
        enabled: frozenset[str],
        notifier: UserNotifier,
    ) -> None:
        """Run the job's detection steps for one user."""


def run_steps(steps, enabled: frozenset[str], notifier: UserNotifier) -> None:
    """Run ``(types, step)`` pairs in order until the budget is spent."""
    for types, step in steps:
        if notifier.budget.exhausted:
            logger.debug("Notification cap reached for user %s, skipping remaining steps", notifier.user_id)
            return
        if enabled & frozenset(types):
            step()
