"""
Alert admission: per (query, channel) rate limiting and alert-hours windows.

Each monitored instance owns one AlertGate. Its rate limiter is the only
state shared between the probe threads of that instance.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from pgstat_alert.config import WEEKDAYS

if TYPE_CHECKING:
    from pgstat_alert.config import AlertHoursConfig, AlertRuleConfig

logger = structlog.get_logger(__name__)


class ReadWriteLock:
    """
    Multiple-reader, single-writer lock.

    Writers wait for active readers to drain; new readers wait while a
    writer is waiting or active, so writers are not starved.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class RateLimiter:
    """
    Last successful send time per (query, channel).

    Entries are never pruned; the map is bounded by the number of
    query x channel pairs actually used.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self._lock = ReadWriteLock()
        self._last_sent: dict[tuple[str, str], float] = {}

    def can_send(self, probe: str, channel: str, min_interval: float) -> bool:
        """True if nothing was sent yet or ``min_interval`` seconds have passed."""
        if min_interval <= 0:
            return True
        with self._lock.read():
            last = self._last_sent.get((probe, channel))
        if last is None:
            return True
        return self._clock() - last >= min_interval

    def record_send(self, probe: str, channel: str) -> None:
        """Store the current time as the last send for (probe, channel)."""
        with self._lock.write():
            self._last_sent[(probe, channel)] = self._clock()

    def last_sent(self, probe: str, channel: str) -> float | None:
        with self._lock.read():
            return self._last_sent.get((probe, channel))

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._last_sent)


def resolve_timezone(name: str | None) -> tzinfo | None:
    """
    Resolve an IANA zone name.

    Returns None (process local time) when no name is given, and UTC with a
    warning when the zone cannot be found.
    """
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.warning("alert_hours_timezone_invalid", timezone=name, error=str(e))
        return timezone.utc


def _parse_clock(value: str) -> tuple[int, int] | None:
    try:
        parsed = datetime.strptime(value.strip(), "%H:%M")
    except (ValueError, AttributeError):
        return None
    return parsed.hour, parsed.minute


def is_within_window(alert_hours: AlertHoursConfig | None, now: datetime | None = None) -> bool:
    """
    Check whether ``now`` falls inside an alert-hours window.

    Malformed start or end times allow the alert. A window whose end is
    before its start spans midnight.

    Args:
        alert_hours: Window definition, or None for "always".
        now: Instant to check; defaults to the current time.

    Returns:
        True if alerts are allowed at ``now``.
    """
    if alert_hours is None:
        return True

    tz = resolve_timezone(alert_hours.timezone)
    now = now or datetime.now(tz=timezone.utc)
    local = now.astimezone(tz)

    if alert_hours.days:
        weekday = WEEKDAYS[local.weekday()]
        if weekday not in alert_hours.days:
            return False

    start_clock = _parse_clock(alert_hours.start)
    end_clock = _parse_clock(alert_hours.end)
    if start_clock is None or end_clock is None:
        logger.warning(
            "alert_hours_time_invalid",
            start=alert_hours.start,
            end=alert_hours.end,
        )
        return True

    start = local.replace(hour=start_clock[0], minute=start_clock[1], second=0, microsecond=0)
    end = local.replace(hour=end_clock[0], minute=end_clock[1], second=0, microsecond=0)

    if end < start:
        return local > start or local < end
    return start < local < end


class AdmissionDecision(str, Enum):
    """Outcome of the alert gate for one triggered rule."""

    ADMITTED = "admitted"
    INSTANCE_EXCLUDED = "instance_excluded"
    OUTSIDE_ALERT_HOURS = "outside_alert_hours"
    RATE_LIMITED = "rate_limited"
    NO_CHANNELS = "no_channels"

    @property
    def admitted(self) -> bool:
        return self is AdmissionDecision.ADMITTED

    @property
    def allows_action(self) -> bool:
        """The rule passed its instance and alert-hours filters; channel limits do not apply to actions."""
        return self not in (AdmissionDecision.INSTANCE_EXCLUDED, AdmissionDecision.OUTSIDE_ALERT_HOURS)


class AlertGate:
    """Combines the instance allow-list, alert hours and rate limiter."""

    def __init__(self, instance: str, rate_limiter: RateLimiter | None = None) -> None:
        self._instance = instance
        self.rate_limiter = rate_limiter or RateLimiter()

    def admit(
        self,
        probe: str,
        rule: AlertRuleConfig,
        channel_intervals: Mapping[str, float],
        now: datetime | None = None,
    ) -> AdmissionDecision:
        """
        Decide whether a triggered rule may notify.

        Args:
            probe: Name of the probe that triggered.
            rule: The triggered rule.
            channel_intervals: Resolved channels and their minimum intervals.
            now: Instant used for the alert-hours check.
        """
        if rule.instances and self._instance not in rule.instances:
            return AdmissionDecision.INSTANCE_EXCLUDED

        if not is_within_window(rule.alert_hours, now):
            return AdmissionDecision.OUTSIDE_ALERT_HOURS

        if not channel_intervals:
            return AdmissionDecision.NO_CHANNELS

        if not any(
            self.rate_limiter.can_send(probe, channel, interval)
            for channel, interval in channel_intervals.items()
        ):
            return AdmissionDecision.RATE_LIMITED

        return AdmissionDecision.ADMITTED
