"""
Discord webhook notifier.

Sends a single rich embed per alert, coloured by category.
"""

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

# Category to embed color mapping
CATEGORY_COLORS: dict[str, int] = {
    "performance": 0xFFA500,  # Orange
    "storage": 0xFFFF00,  # Yellow
    "security": 0xFF0000,  # Red
    "maintenance": 0x0080FF,  # Blue
}
DEFAULT_COLOR = 0xFF0000


@dataclass
class DiscordConfig(NotifierConfig):
    """
    Configuration for Discord notifier.

    Attributes:
        webhook_url: Discord channel webhook URL.
    """

    webhook_url: str = ""

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "discord"


class DiscordNotifier(BaseNotifier):
    """Discord webhook notifier."""

    config_class = DiscordConfig

    def __init__(self, config: DiscordConfig) -> None:
        super().__init__(config)
        self._discord_config = config

    def _send(self, context: AlertContext) -> dict[str, Any]:
        if not self._discord_config.webhook_url:
            raise NotificationError.missing_setting(self.name, "webhook_url")

        return self._post_json(self._discord_config.webhook_url, self._build_payload(context))

    def _build_payload(self, context: AlertContext) -> dict[str, Any]:
        embed = {
            "title": "🚨 Database Alert 🚨",
            "description": (
                f"**Instance:** {context.instance}\n"
                f"**Query:** {context.probe}\n"
                f"**Message:** {context.message}\n"
                f"**Value:** {context.value}"
            ),
            "color": CATEGORY_COLORS.get(context.category.lower(), DEFAULT_COLOR),
            "timestamp": context.timestamp.isoformat(),
        }
        return {"embeds": [embed]}


NotifierFactory.register("discord", DiscordNotifier)
