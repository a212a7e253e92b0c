"""
Email SMTP notifier for alert delivery.

Sends multipart (plain text + HTML) alert emails to the rule's recipient,
over implicit TLS, STARTTLS or plain SMTP.
"""

from __future__ import annotations

import html
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
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

# Category to left border colour in the HTML body
CATEGORY_COLORS: dict[str, str] = {
    "critical": "#d32f2f",
    "performance": "#ff9800",
    "storage": "#ffeb3b",
    "maintenance": "#2196f3",
    "security": "#f44336",
}
DEFAULT_COLOR = "#d32f2f"


@dataclass
class EmailConfig(NotifierConfig):
    """
    Configuration for Email notifier.

    Attributes:
        smtp_host: SMTP server hostname.
        smtp_port: SMTP server port.
        username: SMTP authentication username.
        password: SMTP authentication password.
        from_email: Sender email address.
        from_name: Sender display name.
        tls: Connect with implicit TLS (SMTPS, usually port 465).
        starttls: Upgrade a plain connection with STARTTLS.
    """

    interval: float = 180.0
    smtp_host: str = "localhost"
    smtp_port: int = 587
    username: str = ""
    password: str = ""
    from_email: str = ""
    from_name: str = ""
    tls: bool = False
    starttls: bool = False

    def __post_init__(self) -> None:
        if not self.name or self.name == "base-notifier":
            self.name = "email"


class EmailNotifier(BaseNotifier):
    """SMTP notifier sending to the recipient named by the rule."""

    config_class = EmailConfig

    def __init__(self, config: EmailConfig) -> None:
        super().__init__(config)
        self._email_config = config
        self._logger = logger.bind(
            channel=config.name,
            smtp_host=config.smtp_host,
        )

    def _send(self, context: AlertContext) -> dict[str, Any]:
        if not self._email_config.from_email:
            raise NotificationError.missing_setting(self.name, "from_email")
        if not context.recipient:
            raise NotificationError.missing_setting(self.name, "to")

        message = self._build_message(context)
        self._send_smtp(message, [context.recipient])

        return {
            "status": "sent",
            "recipient": context.recipient,
            "subject": message["Subject"],
        }

    def _build_message(self, context: AlertContext) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = f"[{context.instance}] Database Alert: {context.probe}"

        from_header = self._email_config.from_email
        if self._email_config.from_name:
            from_header = f"{self._email_config.from_name} <{self._email_config.from_email}>"
        message["From"] = from_header
        message["To"] = context.recipient

        message.attach(MIMEText(self._build_plain_body(context), "plain", "utf-8"))
        message.attach(MIMEText(self._build_html_body(context), "html", "utf-8"))
        return message

    def _build_plain_body(self, context: AlertContext) -> str:
        lines = [
            f"Database Alert: {context.probe}",
            "",
            f"Instance: {context.instance}",
            f"Query: {context.probe}",
            f"Category: {context.category}",
            f"Message: {context.message}",
            f"Value: {context.value}",
            f"Timestamp: {context.timestamp.strftime('%Y-%m-%d %H:%M:%S %Z')}",
            f"Recipient: {context.recipient}",
            "",
            "This alert was automatically generated by pgstat-alert.",
        ]
        return "\n".join(lines)

    def _build_html_body(self, context: AlertContext) -> str:
        color = CATEGORY_COLORS.get(context.category.lower(), DEFAULT_COLOR)
        rows = [
            ("Instance", context.instance),
            ("Query", context.probe),
            ("Category", context.category),
            ("Value", context.value),
            ("Timestamp", context.timestamp.strftime("%Y-%m-%d %H:%M:%S %Z")),
            ("Recipient", context.recipient),
        ]
        table_rows = "".join(
            f"<tr><th>{label}</th><td>{html.escape(value)}</td></tr>" for label, value in rows
        )
        message = html.escape(context.message)

        return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="background-color: #f4f4f4; padding: 10px; border-left: 4px solid {color};">
        <h2>🚨 Database Alert</h2>
    </div>
    <div style="padding: 20px;">
        <div style="background-color: #fff3cd; padding: 15px; border-radius: 5px; border-left: 4px solid {color};">
            <p><strong>Message:</strong> {message}</p>
        </div>
        <table style="border-collapse: collapse; width: 100%; margin: 10px 0;">{table_rows}</table>
        <p><em>This alert was automatically generated by pgstat-alert.</em></p>
    </div>
</body>
</html>"""

    def _send_smtp(self, message: MIMEMultipart, recipients: list[str]) -> None:
        """
        Send message via SMTP.

        Raises:
            NotificationError: If the SMTP exchange fails.
        """
        config = self._email_config

        self._logger.debug(
            "smtp_connecting",
            host=config.smtp_host,
            port=config.smtp_port,
        )

        context = ssl.create_default_context() if (config.tls or config.starttls) else None

        try:
            if config.tls:
                server = smtplib.SMTP_SSL(
                    config.smtp_host,
                    config.smtp_port,
                    timeout=config.timeout_seconds,
                    context=context,
                )
            else:
                server = smtplib.SMTP(
                    config.smtp_host,
                    config.smtp_port,
                    timeout=config.timeout_seconds,
                )
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError.transport_failed(self.name, str(e)) from e

        try:
            if config.starttls and not config.tls:
                server.starttls(context=context)
            if config.username and config.password:
                server.login(config.username, config.password)

            server.sendmail(config.from_email, recipients, message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            server.close()
            raise NotificationError.transport_failed(self.name, str(e)) from e

        # The message is already accepted; a failed QUIT does not undo delivery.
        try:
            server.quit()
        except (smtplib.SMTPException, OSError) as e:
            self._logger.warning("smtp_quit_failed", host=config.smtp_host, error=str(e))
            server.close()

    def validate_config(self) -> list[str]:
        """Validate email configuration."""
        errors = super().validate_config()

        if not self._email_config.smtp_host:
            errors.append("SMTP host is required")
        if not self._email_config.from_email:
            errors.append("From address is required")
        if self._email_config.tls and self._email_config.starttls:
            errors.append("Cannot use both implicit TLS and STARTTLS")

        return errors


NotifierFactory.register("email", EmailNotifier)
