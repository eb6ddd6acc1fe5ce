"""Crossing-time detection for SLA deadline warnings.

A ticket is warned once per escalation threshold it crosses, not once per
poll. Threshold ``h`` (hours before the deadline) is crossed inside the poll
window ``(since, now]`` when ``since < deadline - h <= now``. If a window
crosses several thresholds (first run, long pause), only the tightest one is
reported.
"""

from collections.abc import Iterable

SLA_THRESHOLDS_HOURS = (24, 12, 4, 1)

_HOUR = 3600


def crossed_threshold(
    deadline: int,
    since: int,
    now: int,
    thresholds: Iterable[int] = SLA_THRESHOLDS_HOURS,
) -> int | None:
    """Tightest threshold (in hours) crossed in ``(since, now]``, or None.

    Tickets already past their deadline are left to breach detection.
    """
    if deadline <= now:
        return None
    crossed = [h for h in thresholds if since < deadline - h * _HOUR <= now]
    return min(crossed) if crossed else None


def crossing_time(deadline: int, level: int) -> int:
    return deadline - level * _HOUR


class SlaWarningTracker:
    """Last signalled level per ticket, so a level is never repeated.

    Entries for tickets outside the current candidate set are dropped on
    ``prune()``; a ticket that leaves and re-enters the set starts fresh.
    """

    def __init__(self, levels: dict[str, int] | None = None) -> None:
        self._levels = dict(levels or {})
        self._dirty = False

    def should_signal(self, ticket_key: str, level: int) -> bool:
        last = self._levels.get(ticket_key)
        return last is None or level < last

    def record(self, ticket_key: str, level: int) -> None:
        self._levels[ticket_key] = level
        self._dirty = True

    def prune(self, live_keys: Iterable[str]) -> None:
        live = set(live_keys)
        stale = [k for k in self._levels if k not in live]
        for key in stale:
            del self._levels[key]
        if stale:
            self._dirty = True

    @property
    def levels(self) -> dict[str, int]:
        return dict(self._levels)

    @property
    def dirty(self) -> bool:
        return self._dirty
