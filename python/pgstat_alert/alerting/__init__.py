"""
Alert gating, dispatch and channel delivery for pgstat-alert.

This module provides:
- Per (query, channel) rate limiting and alert-hours windows
- Multi-channel dispatch (Webhook, Telegram, Discord, Teams, Email, WhatsApp)
- External remediation actions

Channel modules register themselves with NotifierFactory on import.
"""

from pgstat_alert.alerting.action import (
    ActionExecutor,
    ActionResult,
)
from pgstat_alert.alerting.base import (
    AlertContext,
    AlertResult,
    AlertStatus,
    BaseNotifier,
    NotifierConfig,
    NotifierFactory,
)
from pgstat_alert.alerting.discord import (
    DiscordConfig,
    DiscordNotifier,
)
from pgstat_alert.alerting.dispatcher import (
    NotificationDispatcher,
    build_notifiers,
)
from pgstat_alert.alerting.email import (
    EmailConfig,
    EmailNotifier,
)
from pgstat_alert.alerting.gate import (
    AdmissionDecision,
    AlertGate,
    RateLimiter,
    is_within_window,
)
from pgstat_alert.alerting.teams import (
    TeamsConfig,
    TeamsNotifier,
)
from pgstat_alert.alerting.telegram import (
    TelegramConfig,
    TelegramNotifier,
)
from pgstat_alert.alerting.webhook import (
    WebhookConfig,
    WebhookNotifier,
)
from pgstat_alert.alerting.whatsapp import (
    WhatsAppConfig,
    WhatsAppNotifier,
)

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "AdmissionDecision",
    "AlertContext",
    "AlertGate",
    "AlertResult",
    "AlertStatus",
    "BaseNotifier",
    "DiscordConfig",
    "DiscordNotifier",
    "EmailConfig",
    "EmailNotifier",
    "NotificationDispatcher",
    "NotifierConfig",
    "NotifierFactory",
    "RateLimiter",
    "TeamsConfig",
    "TeamsNotifier",
    "TelegramConfig",
    "TelegramNotifier",
    "WebhookConfig",
    "WebhookNotifier",
    "WhatsAppConfig",
    "WhatsAppNotifier",
    "build_notifiers",
    "is_within_window",
]
