"""
Multi-channel alert dispatch.

Resolves the channels for a triggered rule and delivers to each of them
independently, recording successful sends in the instance rate limiter.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from pgstat_alert.alerting.base import (
    AlertContext,
    AlertResult,
    AlertStatus,
    BaseNotifier,
    NotifierFactory,
)

if TYPE_CHECKING:
    from pgstat_alert.alerting.gate import RateLimiter
    from pgstat_alert.config import AlertsConfig

logger = structlog.get_logger(__name__)


def build_notifiers(alerts: AlertsConfig) -> dict[str, BaseNotifier]:
    """
    Create one notifier per configured channel section.

    Disabled channels are created too so that explicit rule channel lists
    can name them and be skipped with a log line.
    """
    notifiers: dict[str, BaseNotifier] = {}
    for name, section in alerts.sections().items():
        notifier = NotifierFactory.create_from_settings(name, section.model_dump())
        if notifier.is_enabled:
            for error in notifier.validate_config():
                logger.warning("channel_config_invalid", channel=name, error=error)
        notifiers[name] = notifier
    return notifiers


@dataclass
class DispatcherStats:
    """Statistics for a dispatcher."""

    dispatches: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    skipped_deliveries: int = 0


class NotificationDispatcher:
    """
    Fans a triggered alert out to its channels.

    A failure on one channel never prevents the remaining channels from
    being attempted, and is never recorded as a send.
    """

    def __init__(
        self,
        notifiers: Mapping[str, BaseNotifier],
        rate_limiter: RateLimiter,
    ) -> None:
        self._notifiers = dict(notifiers)
        self._rate_limiter = rate_limiter
        self._logger = logger.bind(component="dispatcher")
        self._stats = DispatcherStats()

    @property
    def stats(self) -> DispatcherStats:
        return self._stats

    def enabled_channels(self) -> list[str]:
        """Names of every globally enabled channel, in configuration order."""
        return [name for name, notifier in self._notifiers.items() if notifier.is_enabled]

    def resolve_channels(self, channels: Sequence[str]) -> list[str]:
        """
        Channels to deliver to: the explicit list when given, otherwise
        every enabled channel.
        """
        if channels:
            return [channel.strip().lower() for channel in channels]
        return self.enabled_channels()

    def channel_intervals(self, channels: Sequence[str]) -> dict[str, float]:
        """Minimum interval of each resolved, known and enabled channel."""
        intervals: dict[str, float] = {}
        for channel in self.resolve_channels(channels):
            notifier = self._notifiers.get(channel)
            if notifier is not None and notifier.is_enabled:
                intervals[channel] = notifier.min_interval
        return intervals

    def dispatch(self, context: AlertContext, channels: Sequence[str] = ()) -> list[AlertResult]:
        """
        Deliver an alert to every resolved channel.

        Args:
            context: The triggered alert.
            channels: Explicit channel list from the rule (may be empty).

        Returns:
            One result per resolved channel.
        """
        self._stats.dispatches += 1
        results: list[AlertResult] = []

        for channel in self.resolve_channels(channels):
            result = self._deliver(channel, context)
            results.append(result)

            if result.is_success:
                self._rate_limiter.record_send(context.probe, channel)
                self._stats.successful_deliveries += 1
            elif result.status == AlertStatus.FAILED:
                self._stats.failed_deliveries += 1
            else:
                self._stats.skipped_deliveries += 1

        return results

    def _deliver(self, channel: str, context: AlertContext) -> AlertResult:
        notifier = self._notifiers.get(channel)
        if notifier is None:
            self._logger.warning("channel_unknown", channel=channel, probe=context.probe)
            return AlertResult(channel=channel, status=AlertStatus.SKIPPED, error="unknown channel")

        if not notifier.is_enabled:
            self._logger.debug("channel_disabled", channel=channel, probe=context.probe)
            return AlertResult(channel=channel, status=AlertStatus.SKIPPED, error="channel disabled")

        if not self._rate_limiter.can_send(context.probe, channel, notifier.min_interval):
            self._logger.info(
                "alert_rate_limited",
                channel=channel,
                instance=context.instance,
                probe=context.probe,
            )
            return AlertResult(channel=channel, status=AlertStatus.SKIPPED, error="interval limit")

        try:
            return notifier.send(context)
        except Exception as e:
            self._logger.error(
                "delivery_error",
                channel=channel,
                probe=context.probe,
                error=str(e),
            )
            return AlertResult(channel=channel, status=AlertStatus.FAILED, error=str(e))
