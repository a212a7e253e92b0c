"""
Custom exception hierarchy for pgstat-alert.

Hierarchy:
- PgStatAlertError: Base exception for all pgstat-alert errors
- ConfigurationError: Configuration loading and validation issues
- DatabaseError: Target connection and probe execution failures
- NotificationError: Channel delivery failures
- ActionError: External action command failures

Each exception includes:
- error_code: Machine-readable error identifier
- context: Additional structured data for debugging
- is_retryable: Whether the operation can be retried
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes for categorization and monitoring."""

    # Configuration errors (1xxx)
    CONFIG_INVALID = "PGSTAT_1001"
    CONFIG_MISSING = "PGSTAT_1002"
    CONFIG_VALIDATION = "PGSTAT_1003"
    CONFIG_PARSE_FAILED = "PGSTAT_1004"

    # Database errors (2xxx)
    DB_CONNECTION_FAILED = "PGSTAT_2001"
    DB_QUERY_FAILED = "PGSTAT_2002"

    # Notification errors (3xxx)
    NOTIFY_HTTP_STATUS = "PGSTAT_3001"
    NOTIFY_TRANSPORT_FAILED = "PGSTAT_3002"
    NOTIFY_MISSING_SETTING = "PGSTAT_3003"

    # Action errors (4xxx)
    ACTION_FAILED = "PGSTAT_4001"
    ACTION_TIMEOUT = "PGSTAT_4002"

    # General errors (9xxx)
    UNKNOWN = "PGSTAT_9999"


@dataclass
class PgStatAlertError(Exception):
    """
    Base exception for all pgstat-alert errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional structured data for debugging
        is_retryable: Whether the operation can be safely retried
        cause: Original exception that caused this error
    """

    message: str
    error_code: ErrorCode = ErrorCode.UNKNOWN
    context: dict[str, Any] = field(default_factory=dict)
    is_retryable: bool = False
    cause: Exception | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f" ({context_str})")
        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"context={self.context!r}, "
            f"is_retryable={self.is_retryable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "context": self.context,
            "is_retryable": self.is_retryable,
            "cause": str(self.cause) if self.cause else None,
        }


@dataclass
class ConfigurationError(PgStatAlertError):
    """Raised when configuration is unreadable, malformed or invalid."""

    error_code: ErrorCode = ErrorCode.CONFIG_INVALID

    @classmethod
    def missing_file(cls, path: str) -> ConfigurationError:
        """Create error for missing configuration file."""
        return cls(
            message=f"Configuration file not found: {path}",
            error_code=ErrorCode.CONFIG_MISSING,
            context={"path": path},
        )

    @classmethod
    def parse_failed(cls, path: str, reason: str) -> ConfigurationError:
        """Create error for unparsable YAML."""
        return cls(
            message=f"Failed to parse configuration file {path}: {reason}",
            error_code=ErrorCode.CONFIG_PARSE_FAILED,
            context={"path": path, "reason": reason},
        )

    @classmethod
    def validation_failed(cls, field: str, value: Any, reason: str) -> ConfigurationError:
        """Create error for validation failure."""
        return cls(
            message=f"Configuration validation failed for '{field}': {reason}",
            error_code=ErrorCode.CONFIG_VALIDATION,
            context={"field": field, "value": str(value), "reason": reason},
        )


@dataclass
class DatabaseError(PgStatAlertError):
    """Raised when a monitored database cannot be reached or queried."""

    error_code: ErrorCode = ErrorCode.DB_QUERY_FAILED

    @classmethod
    def connection_failed(cls, instance: str, address: str, reason: str) -> DatabaseError:
        """Create error for a target that cannot be connected to."""
        return cls(
            message=f"Failed to connect to database instance '{instance}' at {address}: {reason}",
            error_code=ErrorCode.DB_CONNECTION_FAILED,
            context={"instance": instance, "address": address, "reason": reason},
            is_retryable=True,
        )

    @classmethod
    def query_failed(cls, instance: str, reason: str) -> DatabaseError:
        """Create error for a failed probe query."""
        return cls(
            message=reason,
            error_code=ErrorCode.DB_QUERY_FAILED,
            context={"instance": instance},
            is_retryable=True,
        )


@dataclass
class NotificationError(PgStatAlertError):
    """Raised by channel senders when an alert cannot be delivered."""

    error_code: ErrorCode = ErrorCode.NOTIFY_TRANSPORT_FAILED
    is_retryable: bool = True

    @classmethod
    def http_status(cls, channel: str, status: int, body: str = "") -> NotificationError:
        """Create error for a non-2xx response."""
        truncated = body[:200] + "..." if len(body) > 200 else body
        return cls(
            message=f"{channel} alert failed with status code {status}",
            error_code=ErrorCode.NOTIFY_HTTP_STATUS,
            context={"channel": channel, "status": status, "body": truncated},
        )

    @classmethod
    def transport_failed(cls, channel: str, reason: str) -> NotificationError:
        """Create error for connection level failures."""
        return cls(
            message=f"Failed to send {channel} alert: {reason}",
            error_code=ErrorCode.NOTIFY_TRANSPORT_FAILED,
            context={"channel": channel, "reason": reason},
        )

    @classmethod
    def missing_setting(cls, channel: str, setting: str) -> NotificationError:
        """Create error for an incomplete channel configuration."""
        return cls(
            message=f"{channel} channel requires '{setting}'",
            error_code=ErrorCode.NOTIFY_MISSING_SETTING,
            context={"channel": channel, "setting": setting},
            is_retryable=False,
        )


@dataclass
class ActionError(PgStatAlertError):
    """Describes a failed external action command."""

    error_code: ErrorCode = ErrorCode.ACTION_FAILED

    @classmethod
    def exit_status(cls, command: str, returncode: int) -> ActionError:
        """Create error for a command that exited non-zero."""
        return cls(
            message=f"Action exited with status {returncode}",
            error_code=ErrorCode.ACTION_FAILED,
            context={"command": command, "returncode": returncode},
        )

    @classmethod
    def timeout(cls, command: str, timeout_seconds: float) -> ActionError:
        """Create error for a command killed by the timeout."""
        return cls(
            message=f"Action timed out after {timeout_seconds}s",
            error_code=ErrorCode.ACTION_TIMEOUT,
            context={"command": command, "timeout_seconds": timeout_seconds},
        )

    @classmethod
    def launch_failed(cls, command: str, reason: str) -> ActionError:
        """Create error for a command that could not be started."""
        return cls(
            message=f"Action could not be started: {reason}",
            error_code=ErrorCode.ACTION_FAILED,
            context={"command": command, "reason": reason},
        )
