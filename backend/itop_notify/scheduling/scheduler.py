"""Per-user eligibility for a job run.

Nothing is stored here: the next eligible time is recomputed from the
user's watermark on every tick.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..preferences.policy import JobKind, UserNotificationPolicy
from ..preferences.repository import ConfigRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleDecision:
    eligible: bool
    reason: str
    next_eligible_at: int | None = None
    interval_seconds: int | None = None


class UserScheduler:
    def __init__(
        self,
        config: ConfigRepository,
        clock: Callable[[], float] = time.time,
        portal_only_resolver: Callable[[str], bool] | None = None,
    ) -> None:
        self._config = config
        self._clock = clock
        self._resolve_portal_only = portal_only_resolver

    def _is_portal_only(self, policy: UserNotificationPolicy) -> bool:
        if policy.is_portal_only is not None:
            return policy.is_portal_only
        if self._resolve_portal_only is None:
            return False
        try:
            return self._resolve_portal_only(policy.user_id)
        except Exception:
            logger.warning(
                "Could not resolve portal-only status for user %s, treating as agent", policy.user_id, exc_info=True
            )
            return False

    def evaluate(self, user_id: str, job_kind: JobKind, admin_default_interval_seconds: int) -> ScheduleDecision:
        return self.decide(self._config.load_policy(user_id), job_kind, admin_default_interval_seconds)

    def decide(
        self,
        policy: UserNotificationPolicy,
        job_kind: JobKind,
        admin_default_interval_seconds: int,
    ) -> ScheduleDecision:
        """Run the gates in order; the first failing gate decides."""
        if not policy.enabled:
            return ScheduleDecision(False, "notifications_disabled")

        if not policy.is_configured:
            return ScheduleDecision(False, "not_configured")

        if job_kind is JobKind.AGENT and self._is_portal_only(policy):
            return ScheduleDecision(False, "portal_only")

        if policy.opted_out_all(job_kind):
            return ScheduleDecision(False, "opted_out")

        if policy.check_interval_minutes is None:
            interval = admin_default_interval_seconds
        else:
            interval = policy.check_interval_minutes * 60
        watermark = self._config.get_watermark(policy.user_id, job_kind)
        if watermark is None:
            return ScheduleDecision(True, "first_run", interval_seconds=interval)

        next_eligible_at = watermark + interval
        if int(self._clock()) - watermark >= interval:
            return ScheduleDecision(True, "interval_elapsed", next_eligible_at, interval)
        return ScheduleDecision(False, "interval_not_elapsed", next_eligible_at, interval)

    def should_process(self, user_id: str, job_kind: JobKind, admin_default_interval_seconds: int) -> bool:
        return self.evaluate(user_id, job_kind, admin_default_interval_seconds).eligible
