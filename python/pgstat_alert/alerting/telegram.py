"""
Telegram bot notifier.

Sends HTML formatted messages through the Bot API ``sendMessage`` method.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Any

from pgstat_alert.alerting.base import (
    AlertContext,
    BaseNotifier,
    NotifierConfig,
    NotifierFactory,
)
from pgstat_alert.exceptions import NotificationError


@dataclass
class TelegramConfig(NotifierConfig):
    """
    Configuration for Telegram notifier.

    Attributes:
        bot_token: Token issued by @BotFather.
        chat_id: Target chat or group id.
        api_base_url: Bot API base URL.
    """

    bot_token: str = ""
    chat_id: str = ""
    api_base_url: str = "https://api.telegram.org"

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "telegram"


class TelegramNotifier(BaseNotifier):
    """Telegram Bot API notifier."""

    config_class = TelegramConfig

    def __init__(self, config: TelegramConfig) -> None:
        super().__init__(config)
        self._telegram_config = config

    def _send(self, context: AlertContext) -> dict[str, Any]:
        config = self._telegram_config
        if not config.bot_token:
            raise NotificationError.missing_setting(self.name, "bot_token")
        if not config.chat_id:
            raise NotificationError.missing_setting(self.name, "chat_id")

        url = f"{config.api_base_url.rstrip('/')}/bot{config.bot_token}/sendMessage"
        return self._post_json(url, self._build_payload(context))

    def _build_payload(self, context: AlertContext) -> dict[str, Any]:
        # HTML parse mode tolerates arbitrary message text better than Markdown
        text = (
            "🚨 <b>Database Alert</b> 🚨\n\n"
            f"<b>Instance:</b> {_escape(context.instance)}\n"
            f"<b>Query:</b> {_escape(context.probe)}\n"
            f"<b>Category:</b> {_escape(context.category)}\n"
            f"<b>Message:</b> {_escape(context.message)}\n"
            f"<b>Time:</b> {context.timestamp.strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"<b>Value:</b> {_escape(context.value)}"
        )
        return {
            "chat_id": self._telegram_config.chat_id,
            "text": text,
            "parse_mode": "HTML",
        }


def _escape(text: str) -> str:
    return html.escape(text, quote=False)


NotifierFactory.register("telegram", TelegramNotifier)
