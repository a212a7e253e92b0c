"""PostgreSQL probe execution using a psycopg3 connection pool per target."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import psycopg
import structlog
from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool, PoolTimeout

from pgstat_alert.exceptions import DatabaseError

if TYPE_CHECKING:
    from pgstat_alert.config import DatabaseConfig

logger = structlog.get_logger(__name__)

APPLICATION_NAME = "pgstat-alert"


@dataclass
class ProbeResult:
    """Column names and rows returned by one probe execution."""

    columns: list[str] = field(default_factory=list)
    rows: list[tuple[Any, ...]] = field(default_factory=list)

    def first_values(self) -> list[Any]:
        """The first column of every row, in order."""
        return [row[0] for row in self.rows if row]


class TargetDatabase:
    """Connection pool and query runner for one monitored instance."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._pool: ConnectionPool | None = None
        self._logger = logger.bind(instance=config.instance, address=config.address)

    @property
    def instance(self) -> str:
        return self._config.instance

    def conninfo(self) -> str:
        """Build the libpq connection string for this target."""
        config = self._config
        options = None
        if config.statement_timeout > 0:
            options = f"-c statement_timeout={int(config.statement_timeout * 1000)}"
        return make_conninfo(
            host=config.host,
            port=config.port,
            user=config.username,
            password=config.password,
            dbname=config.database,
            sslmode=config.sslmode,
            application_name=APPLICATION_NAME,
            connect_timeout=max(1, int(config.connect_timeout)),
            options=options,
        )

    def connect(self) -> None:
        """
        Open the pool and wait for the first connection.

        Raises:
            DatabaseError: If the target cannot be reached.
        """
        config = self._config
        pool = ConnectionPool(
            self.conninfo(),
            min_size=1,
            max_size=config.max_connections,
            max_idle=config.max_idle,
            max_lifetime=config.max_lifetime,
            timeout=config.connect_timeout,
            kwargs={"autocommit": True},
            name=f"pgstat-alert-{config.instance}",
            open=False,
        )
        try:
            pool.open(wait=True, timeout=config.connect_timeout)
            with pool.connection() as conn:
                conn.execute("SELECT 1")
        except (PoolTimeout, psycopg.Error) as e:
            pool.close()
            raise DatabaseError.connection_failed(config.instance, config.address, str(e)) from e

        self._pool = pool
        self._logger.info("database_connected", max_connections=config.max_connections)

    def execute(self, sql: str) -> ProbeResult:
        """
        Run a probe query and fetch every row.

        Raises:
            DatabaseError: If the query or the connection fails.
        """
        if self._pool is None:
            raise DatabaseError.query_failed(self.instance, "database pool is not open")

        try:
            with self._pool.connection() as conn:
                cursor = conn.execute(sql)
                if cursor.description is None:
                    return ProbeResult()
                columns = [column.name for column in cursor.description]
                rows = [tuple(row) for row in cursor.fetchall()]
        except (PoolTimeout, psycopg.Error) as e:
            raise DatabaseError.query_failed(self.instance, str(e).strip()) from e

        return ProbeResult(columns=columns, rows=rows)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None
            self._logger.info("database_closed")
