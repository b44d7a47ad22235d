"""
PostgreSQL connection pool for the pie store, using psycopg3.
"""
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from multifactor_risk.core.config import Settings
from multifactor_risk.observability.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnectionPool:
    """
    Pool of dict-row connections shared by the HTTP app and the scheduler

    Nothing connects until open() is called (or the pool is entered as a
    context manager). Connections borrowed through get_connection()
    commit on a clean exit and roll back if the block raises.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "riskservice",
        user: str = "riskservice",
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 5,
        timeout: float = 30.0,
    ) -> None:
        if not password:
            raise ValueError(
                "Pie store database password must be provided. "
                "Set DB_PASSWORD or pass --db-password."
            )

        self.address = f"{host}:{port}/{database}"
        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.conninfo = make_conninfo(
            host=host,
            port=port,
            dbname=database,
            user=user,
            password=password,
            connect_timeout=int(timeout),
        )
        self._pool: ConnectionPool | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "DatabaseConnectionPool":
        return cls(
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
            user=settings.db_user,
            password=settings.db_password,
            **kwargs,
        )

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the pool, retrying while the database comes up.

        Raises:
            OperationalError: If the database is still unreachable after
                max_retries attempts
        """
        if self.is_open:
            return

        pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )

        attempt = 1
        while True:
            try:
                pool.open(wait=True, timeout=self.timeout)
                break
            except (OperationalError, TimeoutError) as e:
                if attempt >= max_retries:
                    pool.close()
                    raise OperationalError(
                        f"Couldn't reach pie store at {self.address} after {max_retries} attempts: {e}"
                    ) from e
                logger.warning(f"Pie store connection attempt {attempt} failed: {e}")
                attempt += 1
                time.sleep(retry_delay)

        self._pool = pool
        logger.info(f"Connected to pie store at {self.address}")

    def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            pool.close()

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection from the pool.

        Raises:
            RuntimeError: If the pool has not been opened
        """
        if self._pool is None:
            raise RuntimeError("Pie store pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self):
        with self.get_connection() as conn, conn.cursor() as cur:
            yield cur

    def execute_query(self, query: str, params: tuple | None = None) -> list[dict]:
        """Run a SELECT and return all rows as dictionaries."""
        with self.get_cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def execute_command(self, command: str, params: tuple | None = None) -> int:
        """Run a write or DDL statement and return the affected row count."""
        with self.get_cursor() as cur:
            cur.execute(command, params)
            return cur.rowcount

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
