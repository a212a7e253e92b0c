"""Microsoft Teams notifier using the connector MessageCard format."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pgstat_alert.alerting.base import (
    AlertContext,
    BaseNotifier,
    NotifierConfig,
    NotifierFactory,
)
from pgstat_alert.exceptions import NotificationError

THEME_COLORS: dict[str, str] = {
    "performance": "FFA500",
    "storage": "FFFF00",
    "security": "FF0000",
    "maintenance": "0080FF",
}
DEFAULT_THEME_COLOR = "FF0000"


@dataclass
class TeamsConfig(NotifierConfig):
    """
    Configuration for Teams notifier.

    Attributes:
        webhook_url: Incoming webhook URL of the Teams channel.
    """

    webhook_url: str = ""

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "teams"


class TeamsNotifier(BaseNotifier):
    config_class = TeamsConfig

    def __init__(self, config: TeamsConfig) -> None:
        super().__init__(config)
        self._teams_config = config

    def _send(self, context: AlertContext) -> dict[str, Any]:
        if not self._teams_config.webhook_url:
            raise NotificationError.missing_setting(self.name, "webhook_url")

        return self._post_json(self._teams_config.webhook_url, self._build_payload(context))

    def _build_payload(self, context: AlertContext) -> dict[str, Any]:
        facts = [
            {"name": "Instance", "value": context.instance},
            {"name": "Query", "value": context.probe},
            {"name": "Category", "value": context.category},
            {"name": "Value", "value": context.value},
            {"name": "Time", "value": context.timestamp.isoformat()},
        ]
        section = {
            "activityTitle": "🚨 Database Alert",
            "activitySubtitle": context.message,
            "facts": facts,
        }
        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": THEME_COLORS.get(context.category.lower(), DEFAULT_THEME_COLOR),
            "summary": f"Database Alert: {context.probe}",
            "sections": [section],
        }


NotifierFactory.register("teams", TeamsNotifier)
