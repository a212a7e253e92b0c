"""
Generic webhook notifier for alert delivery.

Posts a flat JSON payload describing the alert to an arbitrary endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from pgstat_alert.alerting.base import (
    AlertContext,
    BaseNotifier,
    NotifierConfig,
    NotifierFactory,
)
from pgstat_alert.exceptions import NotificationError

logger = structlog.get_logger(__name__)


@dataclass
class WebhookConfig(NotifierConfig):
    """
    Configuration for webhook notifier.

    Attributes:
        url: Webhook endpoint URL.
        headers: Extra HTTP headers (e.g. authentication).
    """

    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "webhook"


class WebhookNotifier(BaseNotifier):
    """Posts alerts as JSON to a webhook endpoint."""

    config_class = WebhookConfig

    def __init__(self, config: WebhookConfig) -> None:
        super().__init__(config)
        self._webhook_config = config
        self._logger = logger.bind(channel=config.name, url=config.url)

    def _send(self, context: AlertContext) -> dict[str, Any]:
        if not self._webhook_config.url:
            raise NotificationError.missing_setting(self.name, "url")

        payload = self._build_payload(context)
        return self._post_json(self._webhook_config.url, payload, self._webhook_config.headers)

    def _build_payload(self, context: AlertContext) -> dict[str, Any]:
        return {
            "type": "database_alert",
            "to": context.recipient,
            "message": f"[{context.probe}] {context.message}",
            "category": context.category,
            "instance": context.instance,
            "value": context.value,
            "timestamp": context.timestamp.isoformat(),
        }

    def validate_config(self) -> list[str]:
        """Validate webhook configuration."""
        errors = super().validate_config()

        if not self._webhook_config.url:
            errors.append("Webhook URL is required")
        elif not self._webhook_config.url.startswith(("http://", "https://")):
            errors.append("Webhook URL must use HTTP or HTTPS")

        return errors


# Register with factory
NotifierFactory.register("webhook", WebhookNotifier)
