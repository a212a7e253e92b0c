"""
External remediation commands run when a rule triggers.

The command line is split on whitespace (no shell, no quoting) and run with
the alert context exported as MONITOR_* environment variables.
"""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from pgstat_alert.exceptions import ActionError

if TYPE_CHECKING:
    from pgstat_alert.alerting.base import AlertContext

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_LOGGED_OUTPUT = 2000


@dataclass
class ActionResult:
    """Outcome of one action command."""

    command: str
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    error: ActionError | None = None

    @property
    def is_success(self) -> bool:
        return self.error is None and self.returncode == 0


def action_environment(context: AlertContext) -> dict[str, str]:
    """Process environment plus the alert context variables."""
    env = dict(os.environ)
    env.update(
        {
            "MONITOR_INSTANCE": context.instance,
            "MONITOR_QUERY": context.probe,
            "MONITOR_MESSAGE": context.message,
            "MONITOR_CATEGORY": context.category,
            "MONITOR_TO": context.recipient,
            "MONITOR_VALUE": context.value,
        }
    )
    return env


def _truncate(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_LOGGED_OUTPUT:
        return text[:MAX_LOGGED_OUTPUT] + "..."
    return text


class ActionExecutor:
    """Runs rule actions with a hard timeout; failures are logged, never raised."""

    def __init__(self, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout_seconds

    def execute(self, context: AlertContext, command: str) -> ActionResult:
        """
        Run ``command`` for a triggered alert.

        Args:
            context: The triggered alert.
            command: Whitespace separated command line.

        Returns:
            Result with captured output and any failure.
        """
        log = logger.bind(instance=context.instance, probe=context.probe, command=command)
        result = ActionResult(command=command)

        argv = command.split()
        if not argv:
            result.error = ActionError.launch_failed(command, "empty command")
            log.error("action_empty")
            return result

        log.info("action_started")
        start = time.monotonic()
        try:
            completed = subprocess.run(
                argv,
                env=action_environment(context),
                capture_output=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            result.duration_seconds = time.monotonic() - start
            result.stdout = _decode(e.stdout)
            result.stderr = _decode(e.stderr)
            result.error = ActionError.timeout(command, self._timeout)
            log.error("action_timeout", timeout_seconds=self._timeout, stderr=_truncate(result.stderr))
            return result
        except OSError as e:
            result.duration_seconds = time.monotonic() - start
            result.error = ActionError.launch_failed(command, str(e))
            log.error("action_launch_failed", error=str(e))
            return result

        result.duration_seconds = time.monotonic() - start
        result.returncode = completed.returncode
        result.stdout = _decode(completed.stdout)
        result.stderr = _decode(completed.stderr)

        if completed.returncode != 0:
            result.error = ActionError.exit_status(command, completed.returncode)
            log.error(
                "action_failed",
                returncode=completed.returncode,
                duration_seconds=round(result.duration_seconds, 3),
                stdout=_truncate(result.stdout),
                stderr=_truncate(result.stderr),
            )
            return result

        log.info(
            "action_succeeded",
            duration_seconds=round(result.duration_seconds, 3),
            stdout=_truncate(result.stdout),
        )
        return result


def _decode(output: str | bytes | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output
