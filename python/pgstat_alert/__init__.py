"""
pgstat-alert - PostgreSQL probe monitor

This package runs SQL probes against PostgreSQL instances on fixed intervals
and turns threshold violations into alerts:
- Condition evaluation on numeric and text probe values
- Per (query, channel) rate limiting and alert-hours windows
- Delivery to Webhook, Telegram, Discord, Teams, Email and WhatsApp
- Optional remediation commands run on trigger
"""

__version__ = "1.0.0"
__all__ = [
    "alerting",
    "cli",
    "conditions",
    "config",
    "database",
    "exceptions",
    "logging",
    "monitor",
]
