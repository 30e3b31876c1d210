"""Pooled SQLite access for the agenda tables

Provides:
- Connection pooling (one pool per database file)
- Retry with exponential backoff on SQLITE_BUSY / "database is locked"
- Transaction context manager (commit on success, rollback on error)
- Schema initialization and validation entry points

The database path comes from DOCKETQ_DB_PATH, falling back to
docketq/data/docketq.db. Callers may pass an explicit path instead.
"""

from __future__ import annotations

import atexit
import os
import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from queue import Empty, Full, Queue
from threading import Lock
from typing import Any, TypeVar

from docketq.config import (
    DB_CONNECT_TIMEOUT,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
    DB_TEMP_CONN_MAX,
)
from docketq.observability.logging import get_logger
from docketq.observability.telemetry import counter, log_event

F = TypeVar("F", bound=Callable[..., Any])

DB_PATH = Path(__file__).parent.parent / "data" / "docketq.db"

logger = get_logger(__name__)

_pools: dict[Path, DatabaseConnectionPool] = {}
_pools_lock = Lock()


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Decorator to retry database operations on SQLITE_BUSY errors

    Args:
        max_retries: Maximum number of retry attempts (default: 5)
        base_delay: Initial delay in seconds (default: 0.1)
        max_delay: Maximum delay between retries (default: 2.0)

    Side Effects:
        - Sleeps between retries (exponential backoff with jitter)
        - Logs a warning per retry and an error when retries are exhausted
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except sqlite3.OperationalError as e:
                    message = str(e).lower()
                    if "locked" not in message and "busy" not in message:
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            "Database lock retry exhausted after %d attempts: %s",
                            max_retries,
                            e,
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    sleep_time = delay + random.uniform(0, delay * DB_RETRY_JITTER)

                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )
                    time.sleep(sleep_time)

            raise RuntimeError("unreachable")  # pragma: no cover

        return wrapper  # type: ignore[return-value]

    return decorator


class DatabaseConnectionPool:
    """
    Thread-safe connection pool for SQLite

    Connections are opened with WAL journaling and sqlite3.Row rows, and are
    shared across dispatch worker threads (check_same_thread=False).
    """

    def __init__(self, db_path: Path, pool_size: int = DB_POOL_SIZE) -> None:
        self.db_path = db_path
        self.pool_size = pool_size
        self.pool: Queue[sqlite3.Connection] = Queue(maxsize=pool_size)
        self.lock = Lock()
        self.closed = False
        self.temp_conn_count = 0
        self.temp_conn_max = DB_TEMP_CONN_MAX
        self._temp_conns: set[int] = set()
        self._initialize_pool()

        atexit.register(self.close_all)

    def _create_connection(self) -> sqlite3.Connection:
        """
        Create a configured SQLite connection

        Raises:
            RuntimeError: If the quick integrity check fails
        """
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=DB_CONNECT_TIMEOUT,
            check_same_thread=False,
        )

        try:
            result = conn.execute("PRAGMA quick_check(1)").fetchone()
            if result[0] != "ok":
                conn.close()
                logger.critical("Database corruption detected: %s", result[0])
                counter("database.corruption_detected")
                raise RuntimeError(f"Database corruption detected: {result[0]}")
        except sqlite3.DatabaseError as e:
            conn.close()
            logger.critical("Database corruption or error during integrity check: %s", e)
            counter("database.corruption_detected")
            raise RuntimeError(f"Database corruption detected: {e}") from e

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_pool(self) -> None:
        for _ in range(self.pool_size):
            try:
                self.pool.put(self._create_connection())
            except Exception as e:
                logger.warning("Failed to create pooled connection: %s", e)

    def get_connection(self) -> sqlite3.Connection:
        """
        Get connection from pool (or a temporary one if the pool is exhausted)

        Raises:
            RuntimeError: If pool closed or temporary connection limit exceeded
        """
        if self.closed:
            raise RuntimeError("Connection pool has been closed")

        try:
            return self.pool.get(block=True, timeout=DB_POOL_TIMEOUT)
        except Empty:
            with self.lock:
                if self.temp_conn_count >= self.temp_conn_max:
                    logger.critical(
                        "Temporary connection limit reached: %d/%d (pool_size=%d)",
                        self.temp_conn_count,
                        self.temp_conn_max,
                        self.pool_size,
                    )
                    raise RuntimeError(
                        "Database connection pool exhausted and temporary "
                        f"connection limit reached. pool_size={self.pool_size}, "
                        f"temp_conn_max={self.temp_conn_max}."
                    ) from None
                self.temp_conn_count += 1
                temp_count = self.temp_conn_count

            logger.error(
                "Connection pool exhausted (pool_size=%d). Creating temporary connection %d/%d.",
                self.pool_size,
                temp_count,
                self.temp_conn_max,
            )
            log_event(
                "database.pool_exhausted",
                pool_size=self.pool_size,
                temp_conn_count=temp_count,
            )

            conn = self._create_connection()
            with self.lock:
                self._temp_conns.add(id(conn))
            return conn

    def return_connection(self, conn: sqlite3.Connection) -> None:
        with self.lock:
            is_temp = id(conn) in self._temp_conns
            self._temp_conns.discard(id(conn))

        if self.closed or is_temp:
            conn.close()
            if is_temp:
                with self.lock:
                    self.temp_conn_count -= 1
            return

        try:
            self.pool.put_nowait(conn)
        except Full:
            logger.warning("Failed to return connection to pool (pool full), closing")
            conn.close()

    def close_all(self) -> None:
        """
        Close all pooled connections

        Side Effects:
            - Sets self.closed and empties the pool queue
        """
        self.closed = True
        while not self.pool.empty():
            try:
                self.pool.get_nowait().close()
            except Empty:
                break


def get_db_path() -> Path:
    """
    Get database path (environment-aware)

    Checks DOCKETQ_DB_PATH first, falls back to the packaged default.
    """
    if env_path := os.getenv("DOCKETQ_DB_PATH"):
        return Path(env_path)
    return DB_PATH


def get_pool(db_path: Path | None = None) -> DatabaseConnectionPool:
    """
    Get or create the pool for a database file (one pool per resolved path)
    """
    path = Path(db_path or get_db_path()).resolve()
    with _pools_lock:
        pool = _pools.get(path)
        if pool is None or pool.closed:
            pool = DatabaseConnectionPool(path, pool_size=DB_POOL_SIZE)
            _pools[path] = pool
        return pool


def close_pools() -> None:
    """Close and forget every pool (used by tests between temp databases)."""
    with _pools_lock:
        for pool in _pools.values():
            pool.close_all()
        _pools.clear()


@contextmanager
def get_db_connection(db_path: Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Get pooled database connection (context manager)

    Usage:
        with get_db_connection() as conn:
            rows = conn.execute("SELECT * FROM profiles").fetchall()

    Raises:
        FileNotFoundError: If database doesn't exist
    """
    path = Path(db_path or get_db_path())

    if not path.exists():
        raise FileNotFoundError(f"Database not found: {path}\nRun: docketq-digest --init-db")

    pool = get_pool(path)
    conn = pool.get_connection()
    try:
        yield conn
    finally:
        pool.return_connection(conn)


@contextmanager
def db_transaction(db_path: Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database transactions

    Side Effects:
        - Commits on success, rolls back on exception
    """
    with get_db_connection(db_path) as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def init_database(db_path: Path | None = None) -> None:
    """
    Initialize database with schema (idempotent)
    """
    from docketq.infrastructure.database_schema import init_database as _init_database

    _init_database(Path(db_path or get_db_path()))


def validate_schema(db_path: Path | None = None) -> bool:
    """
    Validate database has expected schema

    Raises:
        ValueError: If tables are missing
    """
    from docketq.infrastructure.database_schema import validate_schema as _validate_schema

    with get_db_connection(db_path) as conn:
        return _validate_schema(conn)
