"""
Probe scheduling and alert evaluation for monitored PostgreSQL instances.

A MonitorRegistry owns one MonitorInstance per configured database and runs
one daemon thread per (instance, query). Each thread executes its query on a
fixed period, evaluates the query's alert rules against every returned row
and hands triggered rules to the instance's alert gate, dispatcher and
action executor.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from string import Template
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from pgstat_alert.alerting.action import ActionExecutor
from pgstat_alert.alerting.base import AlertContext, AlertResult
from pgstat_alert.alerting.dispatcher import NotificationDispatcher, build_notifiers
from pgstat_alert.alerting.gate import AlertGate, RateLimiter
from pgstat_alert.conditions import evaluate, render
from pgstat_alert.database import ProbeResult, TargetDatabase
from pgstat_alert.exceptions import DatabaseError, PgStatAlertError

if TYPE_CHECKING:
    from pgstat_alert.alerting.base import BaseNotifier
    from pgstat_alert.config import AlertRuleConfig, Config, DatabaseConfig, QueryConfig

logger = structlog.get_logger(__name__)

STARTED_MARKER = "[started]"
ERROR_CATEGORY = "error"


class ProbeDatabase(Protocol):
    """What a MonitorInstance needs from its target database."""

    @property
    def instance(self) -> str: ...

    def connect(self) -> None: ...

    def execute(self, sql: str) -> ProbeResult: ...

    def close(self) -> None: ...


class RegistryState(str, Enum):
    """State of the monitor registry."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class InstanceStats:
    """Counters for one monitored instance."""

    ticks: int = 0
    probe_errors: int = 0
    row_errors: int = 0
    alerts_triggered: int = 0
    alerts_suppressed: int = 0
    alerts_dispatched: int = 0
    actions_run: int = 0
    actions_failed: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        """Add to a counter; probe threads of one instance share these."""
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "ticks": self.ticks,
                "probe_errors": self.probe_errors,
                "row_errors": self.row_errors,
                "alerts_triggered": self.alerts_triggered,
                "alerts_suppressed": self.alerts_suppressed,
                "alerts_dispatched": self.alerts_dispatched,
                "actions_run": self.actions_run,
                "actions_failed": self.actions_failed,
            }

    @property
    def uptime_seconds(self) -> float:
        delta = datetime.now(tz=timezone.utc) - self.started_at
        return delta.total_seconds()


def is_started_probe(probe: QueryConfig) -> bool:
    """True for the process-start pseudo query, which is never executed."""
    return probe.sql.lstrip().startswith(STARTED_MARKER)


def render_message(template: str, instance: str, probe: str, value: str, category: str) -> str:
    """Substitute $instance, $probe, $value and $category in a rule message."""
    return Template(template).safe_substitute(
        instance=instance,
        probe=probe,
        value=value,
        category=category,
    )


class MonitorInstance:
    """
    One monitored database: its connection pool, alert gate and probes.

    The rate limiter inside the gate is shared by all probe threads of the
    instance; everything else a probe thread touches is read-only.
    """

    def __init__(
        self,
        database: ProbeDatabase,
        queries: Sequence[QueryConfig],
        notifiers: Mapping[str, BaseNotifier],
        rate_limiter: RateLimiter | None = None,
        action_executor: ActionExecutor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._database = database
        self._queries = list(queries)
        self._gate = AlertGate(database.instance, rate_limiter)
        self._dispatcher = NotificationDispatcher(notifiers, self._gate.rate_limiter)
        self._action_executor = action_executor or ActionExecutor()
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._started_fired: set[str] = set()
        self._stats = InstanceStats()
        self._logger = logger.bind(instance=database.instance)

    @property
    def name(self) -> str:
        return self._database.instance

    @property
    def queries(self) -> list[QueryConfig]:
        return list(self._queries)

    @property
    def gate(self) -> AlertGate:
        return self._gate

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def stats(self) -> InstanceStats:
        return self._stats

    def run_probe(self, probe: QueryConfig, stop_event: threading.Event) -> None:
        """
        Execute ``probe`` every ``probe.interval`` seconds until ``stop_event`` is set.

        The first execution happens one interval after the call. When an
        execution overruns the interval the next one starts immediately and
        the schedule continues from there; missed ticks are not replayed.
        """
        log = self._logger.bind(probe=probe.name)
        log.info("probe_loop_started", interval=probe.interval)

        next_tick = time.monotonic() + probe.interval
        while not stop_event.wait(max(0.0, next_tick - time.monotonic())):
            self.tick(probe)

            next_tick += probe.interval
            now = time.monotonic()
            if next_tick < now:
                next_tick = now

        log.info("probe_loop_stopped")

    def tick(self, probe: QueryConfig) -> None:
        """Run one scheduled execution; failures are turned into error alerts."""
        self._stats.increment("ticks")
        try:
            self.execute_and_check(probe)
        except PgStatAlertError as e:
            self._handle_probe_error(probe, e.message)
        except Exception as e:
            self._handle_probe_error(probe, str(e))

    def execute_and_check(self, probe: QueryConfig) -> None:
        """
        Execute a probe and evaluate its rules against every returned row.

        Raises:
            DatabaseError: If the query fails.
        """
        if is_started_probe(probe):
            if probe.name in self._started_fired:
                return
            self._started_fired.add(probe.name)
            self.check_rules(probe, 1)
            return

        result = self._database.execute(probe.sql)
        self._logger.debug("probe_executed", probe=probe.name, rows=len(result.rows))

        for value in result.first_values():
            self.check_rules(probe, value)

    def check_rules(self, probe: QueryConfig, actual: Any) -> None:
        """
        Evaluate every rule of ``probe`` against one value, in order.

        A rule that fails is logged and counted; the remaining rules still run.
        """
        for rule_index, rule in enumerate(probe.alert_rules):
            try:
                if evaluate(actual, rule.condition, rule.value):
                    self._stats.increment("alerts_triggered")
                    self.handle_trigger(probe, rule, actual)
            except Exception as e:
                self._stats.increment("row_errors")
                self._logger.error(
                    "rule_check_failed",
                    probe=probe.name,
                    rule=rule_index,
                    value=render(actual),
                    error=str(e),
                )

    def handle_trigger(
        self,
        probe: QueryConfig,
        rule: AlertRuleConfig,
        actual: Any,
        message: str | None = None,
        category: str | None = None,
        run_action: bool = True,
    ) -> list[AlertResult]:
        """
        Gate, dispatch and act on one triggered rule.

        Notifications are dispatched before the rule's action runs; a failing
        action never affects delivery. Channel rate limits only hold back
        notifications: the action runs whenever the rule passes its instance
        and alert-hours filters, even with no channel to notify.

        Args:
            probe: Query that produced the value.
            rule: The triggered rule.
            actual: Triggering value.
            message: Message override; defaults to the rendered rule message.
            category: Category override; defaults to the rule category.
            run_action: Whether the rule's action may run.

        Returns:
            Delivery results, empty when nothing was sent.
        """
        value = render(actual)
        category = rule.category if category is None else category
        if message is None:
            message = render_message(rule.message, self.name, probe.name, value, category)

        context = AlertContext(
            instance=self.name,
            probe=probe.name,
            message=message,
            category=category,
            recipient=rule.to,
            value=value,
            timestamp=self._clock(),
        )

        intervals = self._dispatcher.channel_intervals(rule.channels)
        decision = self._gate.admit(probe.name, rule, intervals, now=context.timestamp)
        results: list[AlertResult] = []
        if decision.admitted:
            results = self._dispatcher.dispatch(context, rule.channels)
            self._stats.increment("alerts_dispatched")
        else:
            self._stats.increment("alerts_suppressed")
            self._logger.debug(
                "alert_suppressed",
                probe=probe.name,
                reason=decision.value,
                category=category,
            )

        if run_action and rule.execute_action and decision.allows_action:
            self._stats.increment("actions_run")
            action_result = self._action_executor.execute(context, rule.execute_action)
            if not action_result.is_success:
                self._stats.increment("actions_failed")

        return results

    def _handle_probe_error(self, probe: QueryConfig, error: str) -> None:
        self._stats.increment("probe_errors")
        self._logger.error("probe_failed", probe=probe.name, error=error)

        message = f"Error executing query {probe.name}: {error}"
        for rule in probe.alert_rules:
            self.handle_trigger(
                probe,
                rule,
                error,
                message=message,
                category=ERROR_CATEGORY,
                run_action=False,
            )

    def close(self) -> None:
        self._database.close()

    def get_status(self) -> dict[str, Any]:
        return {
            "queries": [query.name for query in self._queries],
            "stats": self._stats.snapshot(),
            "rate_limited_keys": len(self._gate.rate_limiter),
            "uptime_seconds": round(self._stats.uptime_seconds, 1),
        }


class MonitorRegistry:
    """
    Owns every MonitorInstance and the lifecycle of their probe threads.

    Channel notifiers are built once from the configuration and shared,
    read-only, by every instance.
    """

    def __init__(
        self,
        instances: Sequence[MonitorInstance],
        notifiers: Mapping[str, BaseNotifier] | None = None,
    ) -> None:
        self._instances = list(instances)
        self._notifiers = dict(notifiers or {})
        self._state = RegistryState.STOPPED
        self._threads: list[threading.Thread] = []
        self._stop_events: list[threading.Event] = []
        self._stop_requested = threading.Event()
        self._logger = logger.bind(component="monitor-registry")

    @classmethod
    def from_config(
        cls,
        config: Config,
        database_factory: Callable[[DatabaseConfig], ProbeDatabase] = TargetDatabase,
    ) -> MonitorRegistry:
        """
        Build the registry and connect to every configured database.

        Raises:
            ConfigurationError: If no database is configured.
            DatabaseError: If any database cannot be reached.
        """
        config.validate_runtime()
        notifiers = build_notifiers(config.alerts)

        instances: list[MonitorInstance] = []
        try:
            for db_config in config.databases:
                database = database_factory(db_config)
                database.connect()
                instances.append(MonitorInstance(database, config.queries, notifiers))
        except DatabaseError:
            for instance in instances:
                instance.close()
            raise

        logger.info(
            "monitor_registry_created",
            instances=[instance.name for instance in instances],
            queries=len(config.queries),
            channels=[name for name, notifier in notifiers.items() if notifier.is_enabled],
        )
        return cls(instances, notifiers)

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def instances(self) -> list[MonitorInstance]:
        return list(self._instances)

    def start(self) -> None:
        """
        Start one probe thread per (instance, query).

        Raises:
            RuntimeError: If the registry is already running.
        """
        if self._state == RegistryState.RUNNING:
            raise RuntimeError("Registry is already running")

        self._stop_requested.clear()
        for instance in self._instances:
            for probe in instance.queries:
                stop_event = threading.Event()
                thread = threading.Thread(
                    target=instance.run_probe,
                    args=(probe, stop_event),
                    name=f"pgstat-probe-{instance.name}-{probe.name}",
                    daemon=True,
                )
                self._stop_events.append(stop_event)
                self._threads.append(thread)
                thread.start()

        self._state = RegistryState.RUNNING
        self._logger.info("monitor_registry_started", threads=len(self._threads))

    def request_stop(self) -> None:
        """Wake up ``wait``; safe to call from a signal handler."""
        self._stop_requested.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``request_stop`` or ``stop`` is called."""
        return self._stop_requested.wait(timeout)

    def stop(self, timeout: float = 10.0) -> None:
        """
        Signal every probe thread to stop and join them.

        Args:
            timeout: Maximum time to wait for each thread.
        """
        self._stop_requested.set()
        if self._state != RegistryState.RUNNING:
            return

        self._state = RegistryState.STOPPING
        for stop_event in self._stop_events:
            stop_event.set()

        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                self._logger.warning("probe_thread_stop_timeout", thread=thread.name)

        self._threads.clear()
        self._stop_events.clear()
        self._state = RegistryState.STOPPED
        self._logger.info("monitor_registry_stopped")

    def close(self) -> None:
        """Stop all probes and close every instance's connection pool."""
        self.stop()
        for instance in self._instances:
            try:
                instance.close()
            except Exception as e:
                self._logger.error("instance_close_failed", instance=instance.name, error=str(e))

    def get_status(self) -> dict[str, Any]:
        """Get registry status summary."""
        return {
            "state": self._state.value,
            "threads": len(self._threads),
            "channels": [name for name, notifier in self._notifiers.items() if notifier.is_enabled],
            "instances": {instance.name: instance.get_status() for instance in self._instances},
        }
