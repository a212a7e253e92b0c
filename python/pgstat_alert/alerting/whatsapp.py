"""
WhatsApp Business notifier.

Sends plain text messages through the WhatsApp Cloud API
(``/{phone_number_id}/messages``) using a bearer access token.
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


@dataclass
class WhatsAppConfig(NotifierConfig):
    """
    Configuration for WhatsApp notifier.

    Attributes:
        access_token: Meta Business API access token.
        phone_number_id: Sending WhatsApp Business phone number id.
        to_number: Recipient phone number, with country code.
        api_base_url: Graph API base URL.
        api_version: Graph API version.
    """

    interval: float = 120.0
    access_token: str = ""
    phone_number_id: str = ""
    to_number: str = ""
    api_base_url: str = "https://graph.facebook.com"
    api_version: str = "v22.0"

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "whatsapp"


class WhatsAppNotifier(BaseNotifier):
    config_class = WhatsAppConfig

    def __init__(self, config: WhatsAppConfig) -> None:
        super().__init__(config)
        self._whatsapp_config = config

    def _send(self, context: AlertContext) -> dict[str, Any]:
        config = self._whatsapp_config
        for setting in ("access_token", "phone_number_id", "to_number"):
            if not getattr(config, setting):
                raise NotificationError.missing_setting(self.name, setting)

        url = f"{config.api_base_url.rstrip('/')}/{config.api_version}/{config.phone_number_id}/messages"
        headers = {"Authorization": f"Bearer {config.access_token}"}
        return self._post_json(url, self._build_payload(context), headers)

    def _build_payload(self, context: AlertContext) -> dict[str, Any]:
        body = (
            "🚨 *Database Alert* 🚨\n\n"
            f"*Instance:* {context.instance}\n"
            f"*Query:* {context.probe}\n"
            f"*Category:* {context.category}\n"
            f"*Message:* {context.message}\n"
            f"*Time:* {context.timestamp.strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"*Value:* {context.value}"
        )
        return {
            "messaging_product": "whatsapp",
            "to": self._whatsapp_config.to_number,
            "type": "text",
            "text": {"body": body},
        }


NotifierFactory.register("whatsapp", WhatsAppNotifier)
