"""
Tests for probe evaluation, the monitor instance and the registry.

A fake database stands in for PostgreSQL; notifiers record what they
would have sent.
"""

from __future__ import annotations

import shutil
import threading
import time
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from pgstat_alert.alerting.action import ActionExecutor, ActionResult
from pgstat_alert.alerting.base import AlertContext, BaseNotifier, NotifierConfig
from pgstat_alert.alerting.gate import RateLimiter
from pgstat_alert.config import AlertHoursConfig, Config, QueryConfig
from pgstat_alert.database import ProbeResult
from pgstat_alert.exceptions import ActionError, ConfigurationError, DatabaseError
from pgstat_alert.monitor import (
    InstanceStats,
    MonitorInstance,
    MonitorRegistry,
    RegistryState,
    is_started_probe,
    render_message,
)

# =============================================================================
# Test Doubles
# =============================================================================


class FakeDatabase:
    """In-memory stand-in for TargetDatabase."""

    def __init__(self, instance: str = "prod", rows: list[tuple[Any, ...]] | None = None) -> None:
        self._instance = instance
        self.rows = rows if rows is not None else [(150,)]
        self.error: Exception | None = None
        self.executed: list[str] = []
        self.connected = False
        self.closed = False

    @property
    def instance(self) -> str:
        return self._instance

    def connect(self) -> None:
        self.connected = True

    def execute(self, sql: str) -> ProbeResult:
        self.executed.append(sql)
        if self.error is not None:
            raise self.error
        return ProbeResult(columns=["value"], rows=list(self.rows))

    def close(self) -> None:
        self.closed = True


class RecordingNotifier(BaseNotifier):
    """Notifier that records every context it is asked to send."""

    def __init__(self, name: str, interval: float = 0.0, enabled: bool = True) -> None:
        super().__init__(NotifierConfig(name=name, enabled=enabled, interval=interval))
        self.sent: list[AlertContext] = []

    def _send(self, context: AlertContext) -> dict[str, Any]:
        self.sent.append(context)
        return {"code": 200}


def make_probe(
    name: str = "conn_count",
    sql: str = "SELECT count(*) FROM pg_stat_activity",
    interval: float = 60.0,
    **rule: Any,
) -> QueryConfig:
    rule_settings = {"condition": "gt", "value": 100, "message": "too many connections", "category": "performance"}
    rule_settings.update(rule)
    return QueryConfig(name=name, sql=sql, interval=interval, alert_rules=[rule_settings])


@pytest.fixture
def telegram() -> RecordingNotifier:
    return RecordingNotifier("telegram", interval=60)


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def action_executor() -> MagicMock:
    executor = MagicMock()
    executor.execute.return_value = ActionResult(command="", returncode=0)
    return executor


@pytest.fixture
def instance(database, telegram, fake_clock, action_executor) -> MonitorInstance:
    return MonitorInstance(
        database,
        [make_probe()],
        {"telegram": telegram},
        rate_limiter=RateLimiter(clock=fake_clock),
        action_executor=action_executor,
    )


# =============================================================================
# Helper Tests
# =============================================================================


class TestHelpers:
    """Tests for message rendering and probe classification."""

    def test_render_message(self) -> None:
        message = render_message("$probe=$value on $instance [$category] costs $5 ${unknown}", "prod", "q", "7", "cpu")
        assert message == "q=7 on prod [cpu] costs $5 ${unknown}"

    def test_is_started_probe(self) -> None:
        assert is_started_probe(make_probe(sql="[started]"))
        assert is_started_probe(make_probe(sql="  [started] hello"))
        assert not is_started_probe(make_probe())


class TestInstanceStats:
    """Tests for the shared instance counters."""

    def test_concurrent_increments_are_not_lost(self) -> None:
        stats = InstanceStats()

        def bump() -> None:
            for _ in range(2000):
                stats.increment("alerts_triggered")

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert stats.alerts_triggered == 16000
        assert stats.snapshot()["alerts_triggered"] == 16000

    def test_snapshot(self) -> None:
        stats = InstanceStats()
        stats.increment("actions_failed", 3)

        snapshot = stats.snapshot()

        assert snapshot["actions_failed"] == 3
        assert snapshot["ticks"] == 0
        assert "_lock" not in snapshot


# =============================================================================
# MonitorInstance Tests
# =============================================================================


class TestExecuteAndCheck:
    """Tests for rule evaluation on probe results."""

    def test_rate_limiting_end_to_end(self, instance, telegram, fake_clock) -> None:
        """Test 150 > 100 with a one minute telegram interval."""
        probe = instance.queries[0]

        instance.tick(probe)
        assert len(telegram.sent) == 1
        assert telegram.sent[0].value == "150"
        assert telegram.sent[0].message == "too many connections"

        fake_clock.advance(30)
        instance.tick(probe)
        assert len(telegram.sent) == 1
        assert instance.stats.alerts_suppressed == 1

        fake_clock.advance(31)
        instance.tick(probe)
        assert len(telegram.sent) == 2

    def test_rule_not_triggered(self, instance, database, telegram) -> None:
        database.rows = [(42,)]
        instance.execute_and_check(instance.queries[0])
        assert telegram.sent == []
        assert instance.stats.alerts_triggered == 0

    def test_every_row_evaluated(self, database, fake_clock) -> None:
        webhook = RecordingNotifier("webhook")
        database.rows = [(150,), (50,), (200,), ()]
        instance = MonitorInstance(
            database, [make_probe()], {"webhook": webhook}, rate_limiter=RateLimiter(clock=fake_clock)
        )

        instance.execute_and_check(instance.queries[0])

        assert [context.value for context in webhook.sent] == ["150", "200"]

    def test_only_first_column_evaluated(self, instance, database, telegram) -> None:
        database.rows = [(5, 500)]
        instance.execute_and_check(instance.queries[0])
        assert telegram.sent == []

    def test_context_fields(self, database, fake_clock) -> None:
        webhook = RecordingNotifier("webhook")
        probe = make_probe(
            message="$value connections on $instance",
            to="dba@example.com",
            category="performance",
        )
        instance = MonitorInstance(database, [probe], {"webhook": webhook}, rate_limiter=RateLimiter(clock=fake_clock))

        instance.execute_and_check(probe)

        context = webhook.sent[0]
        assert context.instance == "prod"
        assert context.probe == "conn_count"
        assert context.message == "150 connections on prod"
        assert context.category == "performance"
        assert context.recipient == "dba@example.com"

    def test_instance_allow_list(self, database, telegram, fake_clock) -> None:
        probe = make_probe(instances=["replica"])
        instance = MonitorInstance(
            database, [probe], {"telegram": telegram}, rate_limiter=RateLimiter(clock=fake_clock)
        )

        instance.execute_and_check(probe)

        assert telegram.sent == []
        assert instance.stats.alerts_suppressed == 1

    def test_alert_hours(self, database, telegram, fake_clock) -> None:
        probe = make_probe(alert_hours=AlertHoursConfig(start="08:00", end="18:00", timezone="UTC"))
        evening = datetime(2026, 10, 19, 20, 0, tzinfo=timezone.utc)
        instance = MonitorInstance(
            database,
            [probe],
            {"telegram": telegram},
            rate_limiter=RateLimiter(clock=fake_clock),
            clock=lambda: evening,
        )

        instance.execute_and_check(probe)

        assert telegram.sent == []

    def test_explicit_channels(self, database, fake_clock) -> None:
        webhook = RecordingNotifier("webhook")
        discord = RecordingNotifier("discord")
        probe = make_probe(channels=["discord"])
        instance = MonitorInstance(
            database, [probe], {"webhook": webhook, "discord": discord}, rate_limiter=RateLimiter(clock=fake_clock)
        )

        instance.execute_and_check(probe)

        assert webhook.sent == []
        assert len(discord.sent) == 1


class TestActions:
    """Tests for rule actions."""

    def test_dispatch_happens_before_action(self, database, telegram, fake_clock) -> None:
        order: list[str] = []
        executor = MagicMock()

        def run_action(context: AlertContext, command: str) -> ActionResult:
            order.append(f"action after {len(telegram.sent)} sends")
            return ActionResult(command=command, returncode=0)

        executor.execute.side_effect = run_action
        probe = make_probe(execute_action="/usr/local/bin/remediate --fast")
        instance = MonitorInstance(
            database,
            [probe],
            {"telegram": telegram},
            rate_limiter=RateLimiter(clock=fake_clock),
            action_executor=executor,
        )

        instance.execute_and_check(probe)

        assert order == ["action after 1 sends"]
        context, command = executor.execute.call_args[0]
        assert command == "/usr/local/bin/remediate --fast"
        assert context.probe == "conn_count"

    def test_action_failure_does_not_affect_dispatch(self, database, telegram, fake_clock) -> None:
        executor = MagicMock()
        executor.execute.return_value = ActionResult(
            command="false", returncode=1, error=ActionError.exit_status("false", 1)
        )
        probe = make_probe(execute_action="false")
        limiter = RateLimiter(clock=fake_clock)
        instance = MonitorInstance(
            database, [probe], {"telegram": telegram}, rate_limiter=limiter, action_executor=executor
        )

        results = instance.handle_trigger(probe, probe.alert_rules[0], 150)

        assert [r.is_success for r in results] == [True]
        assert len(telegram.sent) == 1
        assert limiter.last_sent("conn_count", "telegram") is not None
        assert instance.stats.actions_failed == 1

    def test_action_runs_without_channels(self, database, fake_clock, action_executor) -> None:
        """Test an action-only rule runs its command with nothing to notify."""
        probe = make_probe(execute_action="/usr/local/bin/remediate")
        instance = MonitorInstance(
            database, [probe], {}, rate_limiter=RateLimiter(clock=fake_clock), action_executor=action_executor
        )

        instance.execute_and_check(probe)

        assert action_executor.execute.call_count == 1
        assert instance.stats.actions_run == 1
        assert instance.stats.alerts_dispatched == 0

    def test_action_runs_with_disabled_channels(self, database, fake_clock, action_executor) -> None:
        webhook = RecordingNotifier("webhook", enabled=False)
        probe = make_probe(execute_action="/usr/local/bin/remediate", channels=["webhook"])
        instance = MonitorInstance(
            database,
            [probe],
            {"webhook": webhook},
            rate_limiter=RateLimiter(clock=fake_clock),
            action_executor=action_executor,
        )

        instance.execute_and_check(probe)

        assert webhook.sent == []
        assert action_executor.execute.call_count == 1

    def test_action_not_held_back_by_channel_rate_limit(self, database, telegram, fake_clock, action_executor) -> None:
        probe = make_probe(execute_action="/usr/local/bin/remediate")
        instance = MonitorInstance(
            database,
            [probe],
            {"telegram": telegram},
            rate_limiter=RateLimiter(clock=fake_clock),
            action_executor=action_executor,
        )

        instance.execute_and_check(probe)
        fake_clock.advance(30)
        instance.execute_and_check(probe)

        assert len(telegram.sent) == 1
        assert instance.stats.alerts_suppressed == 1
        assert action_executor.execute.call_count == 2

    def test_no_action_outside_alert_hours(self, database, telegram, fake_clock, action_executor) -> None:
        probe = make_probe(
            execute_action="/usr/local/bin/remediate",
            alert_hours=AlertHoursConfig(start="08:00", end="18:00", timezone="UTC"),
        )
        instance = MonitorInstance(
            database,
            [probe],
            {"telegram": telegram},
            rate_limiter=RateLimiter(clock=fake_clock),
            action_executor=action_executor,
            clock=lambda: datetime(2026, 10, 19, 20, 0, tzinfo=timezone.utc),
        )

        instance.execute_and_check(probe)

        assert telegram.sent == []
        action_executor.execute.assert_not_called()

    def test_failing_rule_does_not_stop_later_rules(self, database, fake_clock) -> None:
        webhook = RecordingNotifier("webhook")
        executor = MagicMock()
        executor.execute.side_effect = RuntimeError("executor crashed")
        probe = QueryConfig(
            name="locks",
            sql="SELECT count(*) FROM pg_locks",
            interval=30,
            alert_rules=[
                {"condition": "gt", "value": 10, "message": "first", "execute_action": "/usr/local/bin/remediate"},
                {"condition": "gt", "value": 50, "message": "second"},
            ],
        )
        instance = MonitorInstance(
            database,
            [probe],
            {"webhook": webhook},
            rate_limiter=RateLimiter(clock=fake_clock),
            action_executor=executor,
        )

        instance.execute_and_check(probe)

        assert [context.message for context in webhook.sent] == ["first", "second"]
        assert instance.stats.row_errors == 1

    @pytest.mark.skipif(shutil.which("false") is None, reason="false not available")
    def test_failing_command_end_to_end(self, database, telegram, fake_clock) -> None:
        """Test a real non-zero command leaves delivery intact and is only counted."""
        probe = make_probe(execute_action="false")
        limiter = RateLimiter(clock=fake_clock)
        instance = MonitorInstance(
            database,
            [probe],
            {"telegram": telegram},
            rate_limiter=limiter,
            action_executor=ActionExecutor(timeout_seconds=10),
        )

        instance.tick(probe)

        assert len(telegram.sent) == 1
        assert limiter.last_sent("conn_count", "telegram") is not None
        assert instance.stats.actions_run == 1
        assert instance.stats.actions_failed == 1
        assert instance.stats.probe_errors == 0
        assert instance.stats.row_errors == 0

    def test_no_action_when_suppressed(self, database, telegram, fake_clock) -> None:
        executor = MagicMock()
        probe = make_probe(execute_action="/bin/true", instances=["replica"])
        instance = MonitorInstance(
            database,
            [probe],
            {"telegram": telegram},
            rate_limiter=RateLimiter(clock=fake_clock),
            action_executor=executor,
        )

        instance.execute_and_check(probe)

        executor.execute.assert_not_called()


class TestProbeErrors:
    """Tests for the probe failure path."""

    def test_query_error_sends_error_alert(self, database, telegram, fake_clock, action_executor) -> None:
        database.error = DatabaseError.query_failed("prod", 'relation "pg_stat_nothing" does not exist')
        probe = make_probe(execute_action="/usr/local/bin/remediate", to="dba@example.com")
        instance = MonitorInstance(
            database,
            [probe],
            {"telegram": telegram},
            rate_limiter=RateLimiter(clock=fake_clock),
            action_executor=action_executor,
        )

        instance.tick(probe)

        assert len(telegram.sent) == 1
        context = telegram.sent[0]
        assert context.category == "error"
        assert context.message == (
            'Error executing query conn_count: relation "pg_stat_nothing" does not exist'
        )
        assert context.value == 'relation "pg_stat_nothing" does not exist'
        assert context.recipient == "dba@example.com"
        action_executor.execute.assert_not_called()
        assert instance.stats.probe_errors == 1

    def test_error_alerts_are_rate_limited(self, database, telegram, fake_clock) -> None:
        database.error = RuntimeError("connection reset")
        probe = make_probe()
        instance = MonitorInstance(
            database, [probe], {"telegram": telegram}, rate_limiter=RateLimiter(clock=fake_clock)
        )

        instance.tick(probe)
        fake_clock.advance(10)
        instance.tick(probe)

        assert len(telegram.sent) == 1
        assert instance.stats.probe_errors == 2

    def test_one_error_alert_per_rule(self, database, fake_clock) -> None:
        webhook = RecordingNotifier("webhook")
        database.error = RuntimeError("boom")
        probe = QueryConfig(
            name="locks",
            sql="SELECT 1",
            interval=30,
            alert_rules=[
                {"condition": "gt", "value": 10},
                {"condition": "gt", "value": 50},
            ],
        )
        instance = MonitorInstance(database, [probe], {"webhook": webhook}, rate_limiter=RateLimiter(clock=fake_clock))

        instance.tick(probe)

        assert len(webhook.sent) == 2
        assert all(context.category == "error" for context in webhook.sent)


class TestStartedProbe:
    """Tests for the process-start pseudo query."""

    def test_fires_once_without_query(self, database, fake_clock) -> None:
        webhook = RecordingNotifier("webhook")
        probe = QueryConfig(
            name="startup",
            sql="[started]",
            interval=60,
            alert_rules=[{"condition": "eq", "value": 1, "message": "monitor started on $instance"}],
        )
        instance = MonitorInstance(database, [probe], {"webhook": webhook}, rate_limiter=RateLimiter(clock=fake_clock))

        instance.tick(probe)
        instance.tick(probe)

        assert database.executed == []
        assert len(webhook.sent) == 1
        assert webhook.sent[0].message == "monitor started on prod"
        assert webhook.sent[0].value == "1"


class TestRunProbe:
    """Tests for the scheduling loop."""

    def test_stopped_before_first_tick(self, instance, database) -> None:
        stop_event = threading.Event()
        stop_event.set()

        instance.run_probe(instance.queries[0], stop_event)

        assert database.executed == []

    def test_first_tick_after_one_interval(self, database, fake_clock) -> None:
        probe = make_probe(interval=0.3)
        instance = MonitorInstance(database, [probe], {}, rate_limiter=RateLimiter(clock=fake_clock))
        stop_event = threading.Event()
        thread = threading.Thread(target=instance.run_probe, args=(probe, stop_event), daemon=True)

        thread.start()
        time.sleep(0.1)
        assert database.executed == []

        deadline = time.monotonic() + 5
        while len(database.executed) < 2 and time.monotonic() < deadline:
            time.sleep(0.05)
        stop_event.set()
        thread.join(timeout=5)

        assert len(database.executed) >= 2
        assert not thread.is_alive()


# =============================================================================
# MonitorRegistry Tests
# =============================================================================


@pytest.fixture
def config() -> Config:
    return Config(
        databases=[{"instance": "primary"}, {"instance": "replica"}],
        queries=[
            {
                "name": "conn_count",
                "sql": "SELECT 150",
                "interval": "50ms",
                "alert_rules": [{"condition": "gt", "value": 100}],
            },
            {"name": "locks", "sql": "SELECT 0", "interval": "50ms"},
        ],
        alerts={"webhook": {"enabled": True, "url": "https://hooks.example.com"}},
    )


class TestMonitorRegistry:
    """Tests for registry construction and lifecycle."""

    def test_from_config_connects_every_target(self, config: Config) -> None:
        databases: list[FakeDatabase] = []

        def factory(db_config):
            database = FakeDatabase(db_config.instance)
            databases.append(database)
            return database

        registry = MonitorRegistry.from_config(config, database_factory=factory)

        assert [instance.name for instance in registry.instances] == ["primary", "replica"]
        assert all(database.connected for database in databases)
        assert registry.get_status()["channels"] == ["webhook"]

    def test_connection_failure_is_fatal(self, config: Config) -> None:
        created: list[FakeDatabase] = []

        def factory(db_config):
            database = FakeDatabase(db_config.instance)
            if db_config.instance == "replica":
                database.connect = MagicMock(
                    side_effect=DatabaseError.connection_failed("replica", "localhost:5432/postgres", "refused")
                )
            created.append(database)
            return database

        with pytest.raises(DatabaseError):
            MonitorRegistry.from_config(config, database_factory=factory)

        assert created[0].closed

    def test_no_databases(self) -> None:
        with pytest.raises(ConfigurationError):
            MonitorRegistry.from_config(Config(), database_factory=FakeDatabase)

    def test_start_stop_close(self, config: Config) -> None:
        databases: dict[str, FakeDatabase] = {}

        def factory(db_config):
            databases[db_config.instance] = FakeDatabase(db_config.instance, rows=[(150,)])
            return databases[db_config.instance]

        registry = MonitorRegistry.from_config(config, database_factory=factory)

        with patch("pgstat_alert.alerting.base.urlopen") as mock_urlopen:
            response = MagicMock()
            response.status = 200
            response.read.return_value = b"ok"
            mock_urlopen.return_value.__enter__.return_value = response

            registry.start()
            assert registry.state == RegistryState.RUNNING
            assert registry.get_status()["threads"] == 4

            with pytest.raises(RuntimeError):
                registry.start()

            deadline = time.monotonic() + 5
            while time.monotonic() < deadline and not all(len(db.executed) >= 4 for db in databases.values()):
                time.sleep(0.05)

            registry.request_stop()
            assert registry.wait(timeout=1)
            registry.close()

        assert mock_urlopen.called

        assert registry.state == RegistryState.STOPPED
        assert all(db.closed for db in databases.values())
        assert {"SELECT 150", "SELECT 0"} <= set(databases["primary"].executed)
        status = registry.get_status()
        assert status["instances"]["primary"]["stats"]["ticks"] >= 4
        assert status["instances"]["primary"]["stats"]["probe_errors"] == 0
