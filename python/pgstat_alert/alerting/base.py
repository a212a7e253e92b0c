"""
Base classes for the alerting framework.

Provides the alert context passed to every channel, the delivery result
type, and the abstract notifier all channel implementations extend.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import structlog

from pgstat_alert.exceptions import NotificationError

logger = structlog.get_logger(__name__)

USER_AGENT = "pgstat-alert/1.0"


class AlertStatus(str, Enum):
    """Status of an alert delivery attempt."""

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class AlertContext:
    """
    Everything a channel or action needs to describe one triggered rule.

    Attributes:
        instance: Monitored instance identity.
        probe: Name of the probe (query) that triggered.
        message: Rendered rule message.
        category: Rule category tag.
        recipient: Rule recipient address.
        value: Triggering value, rendered as text.
        timestamp: When the rule triggered.
    """

    instance: str
    probe: str
    message: str
    category: str = ""
    recipient: str = ""
    value: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "instance": self.instance,
            "probe": self.probe,
            "message": self.message,
            "category": self.category,
            "recipient": self.recipient,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AlertResult:
    """
    Result of delivering one alert to one channel.

    Attributes:
        channel: Channel name.
        status: Delivery status.
        error: Error message if failed, reason if skipped.
        response_data: Response from the notification service.
        delivered_at: When the alert was successfully delivered.
    """

    channel: str
    status: AlertStatus
    error: str | None = None
    response_data: dict[str, Any] = field(default_factory=dict)
    delivered_at: datetime | None = None

    @property
    def is_success(self) -> bool:
        """Check if delivery was successful."""
        return self.status == AlertStatus.SENT


@dataclass
class NotifierConfig:
    """
    Base configuration for notifiers.

    Attributes:
        name: Channel name used in rules and rate limiting.
        enabled: Whether this channel is active.
        interval: Minimum seconds between alerts per query (0 = unlimited).
        timeout_seconds: Request timeout.
    """

    name: str = "base-notifier"
    enabled: bool = False
    interval: float = 0.0
    timeout_seconds: float = 30.0


class BaseNotifier(ABC):
    """
    Abstract base class for all channel implementations.

    ``send`` never raises: every failure is logged and reported as a FAILED
    result. Subclasses implement ``_send`` for their transport.
    """

    config_class: ClassVar[type[NotifierConfig]] = NotifierConfig

    def __init__(self, config: NotifierConfig) -> None:
        self._config = config
        self._logger = logger.bind(channel=config.name)
        self._sent_count = 0
        self._failed_count = 0

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def is_enabled(self) -> bool:
        return self._config.enabled

    @property
    def min_interval(self) -> float:
        """Minimum seconds between two alerts for the same query."""
        return self._config.interval

    @property
    def stats(self) -> dict[str, int]:
        """Get delivery statistics."""
        return {
            "sent": self._sent_count,
            "failed": self._failed_count,
            "total": self._sent_count + self._failed_count,
        }

    def send(self, context: AlertContext) -> AlertResult:
        """
        Deliver an alert once, without retries.

        Args:
            context: The triggered alert.

        Returns:
            Result of the delivery attempt.
        """
        if not self._config.enabled:
            return AlertResult(
                channel=self.name,
                status=AlertStatus.SKIPPED,
                error="channel disabled",
            )

        try:
            response_data = self._send(context)
        except Exception as e:
            self._failed_count += 1
            self._logger.error(
                "alert_send_failed",
                instance=context.instance,
                probe=context.probe,
                error=str(e),
            )
            return AlertResult(
                channel=self.name,
                status=AlertStatus.FAILED,
                error=str(e),
            )

        self._sent_count += 1
        self._logger.info(
            "alert_sent",
            instance=context.instance,
            probe=context.probe,
            category=context.category,
        )
        return AlertResult(
            channel=self.name,
            status=AlertStatus.SENT,
            response_data=response_data,
            delivered_at=datetime.now(tz=timezone.utc),
        )

    @abstractmethod
    def _send(self, context: AlertContext) -> dict[str, Any]:
        """
        Perform the actual send operation.

        Returns:
            Response data from the notification service.

        Raises:
            Exception: If sending fails.
        """

    def validate_config(self) -> list[str]:
        """
        Validate the notifier configuration.

        Returns:
            List of validation error messages.
        """
        errors: list[str] = []
        if not self._config.name:
            errors.append("Notifier name is required")
        if self._config.interval < 0:
            errors.append("interval must be non-negative")
        if self._config.timeout_seconds <= 0:
            errors.append("timeout_seconds must be positive")
        return errors

    def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        POST a JSON payload and require a 2xx response.

        Returns:
            Response status code and body.

        Raises:
            NotificationError: On connection failure or non-2xx status.
        """
        data = json.dumps(payload).encode("utf-8")
        request_headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        request_headers.update(headers or {})

        request = Request(url, data=data, headers=request_headers, method="POST")

        try:
            with urlopen(request, timeout=self._config.timeout_seconds) as response:
                status = response.status
                body = response.read().decode("utf-8", errors="replace")
        except HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise NotificationError.http_status(self.name, e.code, body) from e
        except (URLError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise NotificationError.transport_failed(self.name, str(reason)) from e

        if not 200 <= status < 300:
            raise NotificationError.http_status(self.name, status, body)

        return {"code": status, "body": body}


class NotifierFactory:
    """Registry of channel implementations keyed by channel name."""

    _registry: ClassVar[dict[str, type[BaseNotifier]]] = {}

    @classmethod
    def register(cls, notifier_type: str, notifier_class: type[BaseNotifier]) -> None:
        cls._registry[notifier_type] = notifier_class
        logger.debug(
            "notifier_registered",
            notifier_type=notifier_type,
        )

    @classmethod
    def create(cls, notifier_type: str, config: NotifierConfig) -> BaseNotifier:
        """
        Create a notifier instance.

        Raises:
            ValueError: If notifier type is not registered.
        """
        if notifier_type not in cls._registry:
            raise ValueError(f"Unknown notifier type: {notifier_type}")

        notifier_class = cls._registry[notifier_type]
        return notifier_class(config)

    @classmethod
    def create_from_settings(cls, notifier_type: str, settings: dict[str, Any]) -> BaseNotifier:
        """Create a notifier from a plain settings mapping (e.g. a config section dump)."""
        if notifier_type not in cls._registry:
            raise ValueError(f"Unknown notifier type: {notifier_type}")

        notifier_class = cls._registry[notifier_type]
        config = notifier_class.config_class(name=notifier_type, **settings)
        return notifier_class(config)

    @classmethod
    def available_types(cls) -> list[str]:
        """Get list of registered notifier types."""
        return list(cls._registry.keys())
