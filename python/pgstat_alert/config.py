"""
Configuration management for pgstat-alert.

Loads the YAML monitoring configuration (databases, logging, queries and
alert channels) with environment variable overrides.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from pgstat_alert.exceptions import ConfigurationError

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and Go-style duration strings such as
    "30s", "5m", "1h30m" or "250ms".

    Raises:
        ValueError: If the value cannot be interpreted as a duration.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        return 0.0
    if text == "0":
        return 0.0
    try:
        return float(text)
    except ValueError:
        pass

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return sign * total


Duration = Annotated[float, BeforeValidator(parse_duration)]


class DatabaseConfig(BaseModel):
    """Connection details for one monitored PostgreSQL instance."""

    model_config = ConfigDict(frozen=True)

    instance: str = Field(..., description="Instance identity used in alerts")
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    username: str = Field(default="postgres", description="Database user")
    password: str = Field(default="", description="Database password")
    database: str = Field(default="postgres", description="Database name")
    sslmode: str = Field(default="disable", description="libpq sslmode")
    max_connections: int = Field(default=15, description="Maximum open connections in the pool")
    max_idle: Duration = Field(default=30.0, description="Idle time before a pooled connection is closed")
    max_lifetime: Duration = Field(default=7200.0, description="Maximum lifetime of a pooled connection")
    connect_timeout: Duration = Field(default=10.0, description="Connection and pool checkout timeout")
    statement_timeout: Duration = Field(default=60.0, description="Server-side statement timeout (0 disables)")

    @field_validator("sslmode", mode="before")
    @classmethod
    def _default_sslmode(cls, value: Any) -> Any:
        return value or "disable"

    @property
    def address(self) -> str:
        """host:port/database, for logs and errors."""
        return f"{self.host}:{self.port}/{self.database}"


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    file_path: str | None = Field(default=None, description="JSONL log file path (None disables file logging)")
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="plain", description="Console log format (json, plain)")
    console: bool = Field(default=True, description="Also log to stdout")


class AlertHoursConfig(BaseModel):
    """Time-of-day window in which a rule may notify."""

    model_config = ConfigDict(frozen=True)

    start: str = Field(default="", description="Window start, HH:MM (24h)")
    end: str = Field(default="", description="Window end, HH:MM (24h)")
    timezone: str | None = Field(default=None, description="IANA timezone, local time when unset")
    days: tuple[str, ...] | None = Field(default=None, description="Allowed weekdays (mon..sun)")

    @field_validator("days", mode="before")
    @classmethod
    def _normalize_days(cls, value: Any) -> Any:
        if value is None:
            return None
        days = tuple(str(day).strip().lower()[:3] for day in value)
        unknown = [day for day in days if day not in WEEKDAYS]
        if unknown:
            raise ValueError(f"unknown weekday(s): {', '.join(unknown)}")
        return days or None


Condition = Literal["gt", "lt", "gte", "lte", "eq", "ne"]


class AlertRuleConfig(BaseModel):
    """A threshold condition plus its notification routing."""

    model_config = ConfigDict(frozen=True)

    condition: Condition = Field(..., description="Comparison operator")
    value: Any = Field(default=None, description="Threshold, numeric or string")
    message: str = Field(default="", description="Alert message template")
    category: str = Field(default="", description="Category tag")
    to: str = Field(default="", description="Recipient address")
    channels: tuple[str, ...] = Field(default=(), description="Explicit channel subset")
    instances: tuple[str, ...] = Field(default=(), description="Instance allow-list")
    execute_action: str | None = Field(default=None, description="Command run on trigger")
    alert_hours: AlertHoursConfig | None = Field(default=None, description="Allowed alert window")

    @field_validator("condition", mode="before")
    @classmethod
    def _lower_condition(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("channels", "instances", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return () if value is None else value


class QueryConfig(BaseModel):
    """A named SQL probe executed on a fixed interval."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Probe name, unique")
    sql: str = Field(..., description="SQL text")
    interval: Duration = Field(..., description="Execution interval")
    alert_rules: tuple[AlertRuleConfig, ...] = Field(default=(), description="Ordered alert rules")
    parameters: dict[str, str] = Field(default_factory=dict, description="Reserved")

    @field_validator("interval")
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("interval must be positive")
        return value

    @field_validator("alert_rules", mode="before")
    @classmethod
    def _rules_none_to_empty(cls, value: Any) -> Any:
        return () if value is None else value


class ChannelSection(BaseModel):
    """Settings shared by every notification channel."""

    enabled: bool = Field(default=False, description="Channel is active")
    interval: Duration = Field(default=0.0, description="Minimum time between alerts per query (0 = unlimited)")
    timeout_seconds: float = Field(default=30.0, description="Request timeout")


class WebhookSection(ChannelSection):
    url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)


class TelegramSection(ChannelSection):
    bot_token: str = ""
    chat_id: str = ""
    api_base_url: str = "https://api.telegram.org"


class DiscordSection(ChannelSection):
    webhook_url: str = ""


class TeamsSection(ChannelSection):
    webhook_url: str = ""


class EmailSection(ChannelSection):
    interval: Duration = Field(default=180.0)
    smtp_host: str = "localhost"
    smtp_port: int = 587
    username: str = ""
    password: str = ""
    from_email: str = ""
    from_name: str = ""
    tls: bool = False
    starttls: bool = False


class WhatsAppSection(ChannelSection):
    interval: Duration = Field(default=120.0)
    access_token: str = ""
    phone_number_id: str = ""
    to_number: str = ""
    api_base_url: str = "https://graph.facebook.com"
    api_version: str = "v22.0"


class AlertsConfig(BaseModel):
    """Per-channel notification settings."""

    webhook: WebhookSection = Field(default_factory=WebhookSection)
    telegram: TelegramSection = Field(default_factory=TelegramSection)
    discord: DiscordSection = Field(default_factory=DiscordSection)
    teams: TeamsSection = Field(default_factory=TeamsSection)
    email: EmailSection = Field(default_factory=EmailSection)
    whatsapp: WhatsAppSection = Field(default_factory=WhatsAppSection)

    def sections(self) -> dict[str, ChannelSection]:
        """Channel sections keyed by channel name, in dispatch order."""
        return {name: getattr(self, name) for name in type(self).model_fields}


class Config(BaseSettings):
    """Main configuration for pgstat-alert."""

    model_config = SettingsConfigDict(
        env_prefix="PGSTAT_ALERT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    databases: list[DatabaseConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    queries: list[QueryConfig] = Field(default_factory=list)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # PGSTAT_ALERT_* variables override values read from the YAML file
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @model_validator(mode="after")
    def _check_unique_names(self) -> Config:
        for label, names in (
            ("databases.instance", [db.instance for db in self.databases]),
            ("queries.name", [q.name for q in self.queries]),
        ):
            seen: set[str] = set()
            for name in names:
                if name in seen:
                    raise ValueError(f"duplicate {label}: {name}")
                seen.add(name)
        return self

    def validate_runtime(self) -> None:
        """
        Check the requirements for running the monitor.

        Raises:
            ConfigurationError: If no database is configured.
        """
        if not self.databases:
            raise ConfigurationError.validation_failed(
                "databases", [], "no database configurations found in the config file"
            )

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """
        Load configuration from a YAML file.

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError.missing_file(str(path))

        try:
            with path.open() as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError.parse_failed(str(path), str(e)) from e

        if not isinstance(data, dict):
            raise ConfigurationError.parse_failed(str(path), "top level must be a mapping")

        try:
            return cls(**data)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"])
            raise ConfigurationError.validation_failed(field, first.get("input"), first["msg"]) from e

    @classmethod
    def load(cls, config_path: str | None = None) -> Config:
        """
        Load configuration with precedence:
        1. Environment variables (highest)
        2. Config file
        3. Defaults (lowest)
        """
        if config_path is None:
            config_path = os.getenv("PGSTAT_ALERT_CONFIG")

        if config_path is None:
            for candidate in ["pgstat-alert.yaml", "pgstat-alert.yml", "config.yaml"]:
                if Path(candidate).exists():
                    config_path = candidate
                    break

        if config_path:
            return cls.from_yaml(config_path)

        return cls()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
