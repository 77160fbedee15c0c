# -*- coding: utf-8 -*-
"""
Unified Database Adapter - Backend-agnostic database abstraction layer.

Provides a consistent interface for SQLite (development/tests) and
PostgreSQL (production).

This module is the ONLY place that should import sqlite3 or psycopg2 for the
pipeline database. (.uhc container reading is exempt: containers are
SQLite files.)

Statements executed while ``transaction()`` is open join that transaction
instead of committing on their own; the commit engine relies on this to
promote a whole package as one unit of work.
"""

import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from utils.logger import get_logger

logger = get_logger(__name__)


class DatabaseType(Enum):
    """Supported database backends."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


@dataclass
class DatabaseConfig:
    """Database configuration."""
    db_type: DatabaseType = DatabaseType.SQLITE
    # PostgreSQL settings
    pg_host: str = "localhost"
    pg_port: int = 5432
    pg_database: str = "trrcms"
    pg_user: str = "trrcms_user"
    pg_password: str = ""
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    # SQLite settings
    sqlite_path: Optional[Path] = None

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Load configuration from environment variables."""
        db_type_str = os.getenv("TRRCMS_DB_TYPE", "sqlite").lower()
        db_type = DatabaseType.POSTGRESQL if db_type_str == "postgresql" else DatabaseType.SQLITE

        return cls(
            db_type=db_type,
            pg_host=os.getenv("TRRCMS_DB_HOST", "localhost"),
            pg_port=int(os.getenv("TRRCMS_DB_PORT", "5432")),
            pg_database=os.getenv("TRRCMS_DB_NAME", "trrcms"),
            pg_user=os.getenv("TRRCMS_DB_USER", "trrcms_user"),
            pg_password=os.getenv("TRRCMS_DB_PASSWORD", ""),
            pg_pool_min=int(os.getenv("TRRCMS_DB_POOL_MIN", "2")),
            pg_pool_max=int(os.getenv("TRRCMS_DB_POOL_MAX", "10")),
            sqlite_path=Path(os.getenv("TRRCMS_SQLITE_PATH", "")) if os.getenv("TRRCMS_SQLITE_PATH") else None
        )


class RowProxy:
    """
    A dict-like row proxy that supports both dict access and attribute access.
    Provides consistent interface regardless of backend.
    """

    def __init__(self, data: Dict[str, Any], columns: Optional[List[str]] = None):
        self._data = data
        self._columns = columns or list(data.keys())

    def __getitem__(self, key):
        if isinstance(key, int):
            return self._data[self._columns[key]]
        return self._data[key]

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self._data[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    def __contains__(self, key):
        return key in self._data

    def __len__(self):
        return len(self._data)

    def get(self, key, default=None):
        return self._data.get(key, default)

    def keys(self):
        return self._data.keys()

    def items(self):
        return self._data.items()

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    def __repr__(self):
        return f"RowProxy({self._data})"


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.
    Defines the interface that all database backends must implement.
    """

    @abstractmethod
    def connect(self) -> bool:
        """Establish database connection."""

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if database is connected."""

    @abstractmethod
    def execute(self, query: str, params: Optional[Tuple] = None) -> List[RowProxy]:
        """Execute a statement; returns rows when the statement yields any."""

    @abstractmethod
    def execute_many(self, query: str, params_list: List[Tuple]) -> int:
        """Execute a statement for each parameter tuple."""

    @abstractmethod
    def fetch_one(self, query: str, params: Optional[Tuple] = None) -> Optional[RowProxy]:
        """Fetch a single row."""

    @abstractmethod
    def fetch_all(self, query: str, params: Optional[Tuple] = None) -> List[RowProxy]:
        """Fetch all rows."""

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        Unit of work. Everything executed inside commits together or rolls
        back together. Nested use joins the outer transaction.
        """

    @abstractmethod
    def initialize(self) -> None:
        """Create the pipeline schema."""

    @property
    @abstractmethod
    def db_type(self) -> DatabaseType:
        """Get database type."""

    @property
    def in_transaction(self) -> bool:
        return False


class SQLiteAdapter(DatabaseAdapter):
    """SQLite database adapter."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize SQLite adapter."""
        # Import sqlite3 only here
        import sqlite3 as _sqlite3
        self._sqlite3 = _sqlite3

        if db_path is None:
            from app.config import Config
            db_path = Config.DB_PATH

        self._db_path = Path(db_path)
        self._connection = None
        self._lock = threading.RLock()
        self._tx_depth = 0

        # Ensure directory exists
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def db_type(self) -> DatabaseType:
        return DatabaseType.SQLITE

    @property
    def db_path(self) -> Path:
        """Get database file path."""
        return self._db_path

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    def connect(self) -> bool:
        """Establish SQLite connection."""
        try:
            if self._connection is None:
                self._connection = self._sqlite3.connect(
                    str(self._db_path),
                    check_same_thread=False
                )
                self._connection.row_factory = self._dict_factory
                self._connection.execute("PRAGMA foreign_keys = ON")
            return True
        except self._sqlite3.Error as e:
            logger.error(f"SQLite connection error: {e}")
            return False

    def _dict_factory(self, cursor, row):
        """Convert row to dictionary."""
        columns = [col[0] for col in cursor.description]
        return {col: row[idx] for idx, col in enumerate(columns)}

    def close(self) -> None:
        """Close SQLite connection."""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.debug("SQLite connection closed")

    def is_connected(self) -> bool:
        """Check if connected."""
        return self._connection is not None

    def _get_connection(self):
        """Get connection, connecting if needed."""
        if not self._connection:
            if not self.connect():
                raise RuntimeError(f"Could not open SQLite database at {self._db_path}")
        return self._connection

    def _finish(self, conn) -> None:
        if self._tx_depth == 0:
            conn.commit()

    def _fail(self, conn) -> None:
        if self._tx_depth == 0:
            conn.rollback()

    def execute(self, query: str, params: Optional[Tuple] = None) -> List[RowProxy]:
        """Execute query and return results."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                cursor.execute(query, params or ())
                rows = []
                if cursor.description:
                    columns = [col[0] for col in cursor.description]
                    rows = [RowProxy(row, columns) for row in cursor.fetchall()]
                self._finish(conn)
                return rows
            except Exception as e:
                self._fail(conn)
                logger.error(f"SQLite execute error: {e}\nQuery: {query}")
                raise
            finally:
                cursor.close()

    def execute_many(self, query: str, params_list: List[Tuple]) -> int:
        """Execute query with multiple parameter sets."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                cursor.executemany(query, params_list)
                self._finish(conn)
                return cursor.rowcount
            except Exception as e:
                self._fail(conn)
                logger.error(f"SQLite executemany error: {e}")
                raise
            finally:
                cursor.close()

    def fetch_one(self, query: str, params: Optional[Tuple] = None) -> Optional[RowProxy]:
        """Fetch single row."""
        rows = self.fetch_all(query, params)
        return rows[0] if rows else None

    def fetch_all(self, query: str, params: Optional[Tuple] = None) -> List[RowProxy]:
        """Fetch all rows."""
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                cursor.execute(query, params or ())
                if cursor.description:
                    columns = [col[0] for col in cursor.description]
                    return [RowProxy(row, columns) for row in cursor.fetchall()]
                return []
            except Exception as e:
                logger.error(f"SQLite fetch_all error: {e}\nQuery: {query}")
                raise
            finally:
                cursor.close()

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Transaction context manager."""
        with self._lock:
            conn = self._get_connection()
            outermost = self._tx_depth == 0
            if outermost:
                # Close any implicit transaction left by a previous read
                conn.commit()
            self._tx_depth += 1
            try:
                yield conn
            except BaseException as e:
                self._tx_depth -= 1
                if outermost:
                    conn.rollback()
                    logger.error(f"SQLite transaction rolled back: {e}")
                raise
            else:
                self._tx_depth -= 1
                if outermost:
                    conn.commit()

    def initialize(self) -> None:
        """Initialize SQLite schema."""
        from repositories.schema import create_schema

        logger.info(f"Initializing SQLite database at: {self._db_path}")
        with self._lock:
            conn = self._get_connection()
            cursor = conn.cursor()
            try:
                create_schema(cursor, self.db_type)
                conn.commit()
            finally:
                cursor.close()
        logger.info("SQLite database initialized successfully")


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL database adapter with connection pooling."""

    def __init__(self, config: DatabaseConfig):
        """Initialize PostgreSQL adapter."""
        import psycopg2
        from psycopg2 import pool as pg_pool
        from psycopg2.extras import RealDictCursor

        self._psycopg2 = psycopg2
        self._pg_pool = pg_pool
        self._RealDictCursor = RealDictCursor
        self._config = config
        self._pool = None
        # Connection bound to the current thread's open transaction
        self._local = threading.local()

    @property
    def db_type(self) -> DatabaseType:
        return DatabaseType.POSTGRESQL

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "conn", None) is not None

    def connect(self) -> bool:
        """Establish PostgreSQL connection pool."""
        try:
            self._pool = self._pg_pool.ThreadedConnectionPool(
                minconn=self._config.pg_pool_min,
                maxconn=self._config.pg_pool_max,
                host=self._config.pg_host,
                port=self._config.pg_port,
                database=self._config.pg_database,
                user=self._config.pg_user,
                password=self._config.pg_password
            )
            logger.info(f"PostgreSQL connection pool established: {self._config.pg_host}:{self._config.pg_port}/{self._config.pg_database}")
            return True
        except self._psycopg2.Error as e:
            logger.error(f"PostgreSQL connection error: {e}")
            return False

    def close(self) -> None:
        """Close PostgreSQL connection pool."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("PostgreSQL connection pool closed")

    def is_connected(self) -> bool:
        """Check if pool is active."""
        return self._pool is not None

    def _get_connection(self):
        """Get connection from pool."""
        if not self._pool:
            if not self.connect():
                raise RuntimeError("Could not connect to PostgreSQL")
        return self._pool.getconn()

    def _put_connection(self, conn):
        """Return connection to pool."""
        if self._pool and conn:
            self._pool.putconn(conn)

    @contextmanager
    def _borrow(self) -> Iterator[Tuple[Any, bool]]:
        """Yield (connection, owned). Owned connections commit on their own."""
        bound = getattr(self._local, "conn", None)
        if bound is not None:
            yield bound, False
            return
        conn = self._get_connection()
        try:
            yield conn, True
        finally:
            self._put_connection(conn)

    def execute(self, query: str, params: Optional[Tuple] = None) -> List[RowProxy]:
        """Execute query and return results."""
        query = self._convert_placeholders(query)

        with self._borrow() as (conn, owned):
            try:
                with conn.cursor(cursor_factory=self._RealDictCursor) as cursor:
                    cursor.execute(query, params)
                    rows = []
                    if cursor.description:
                        columns = [col.name for col in cursor.description]
                        rows = [RowProxy(dict(row), columns) for row in cursor.fetchall()]
                if owned:
                    conn.commit()
                return rows
            except Exception as e:
                if owned:
                    conn.rollback()
                logger.error(f"PostgreSQL execute error: {e}\nQuery: {query}")
                raise

    def execute_many(self, query: str, params_list: List[Tuple]) -> int:
        """Execute query with multiple parameter sets."""
        query = self._convert_placeholders(query)

        with self._borrow() as (conn, owned):
            try:
                with conn.cursor() as cursor:
                    cursor.executemany(query, params_list)
                    count = cursor.rowcount
                if owned:
                    conn.commit()
                return count
            except Exception as e:
                if owned:
                    conn.rollback()
                logger.error(f"PostgreSQL executemany error: {e}")
                raise

    def fetch_one(self, query: str, params: Optional[Tuple] = None) -> Optional[RowProxy]:
        """Fetch single row."""
        rows = self.fetch_all(query, params)
        return rows[0] if rows else None

    def fetch_all(self, query: str, params: Optional[Tuple] = None) -> List[RowProxy]:
        """Fetch all rows."""
        query = self._convert_placeholders(query)

        with self._borrow() as (conn, owned):
            try:
                with conn.cursor(cursor_factory=self._RealDictCursor) as cursor:
                    cursor.execute(query, params)
                    rows = []
                    if cursor.description:
                        columns = [col.name for col in cursor.description]
                        rows = [RowProxy(dict(row), columns) for row in cursor.fetchall()]
                if owned:
                    # End the implicit read transaction before returning to pool
                    conn.rollback()
                return rows
            except Exception as e:
                if owned:
                    conn.rollback()
                logger.error(f"PostgreSQL fetch_all error: {e}\nQuery: {query}")
                raise

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Transaction context manager."""
        bound = getattr(self._local, "conn", None)
        if bound is not None:
            yield bound
            return

        conn = self._get_connection()
        self._local.conn = conn
        try:
            yield conn
            conn.commit()
        except BaseException as e:
            conn.rollback()
            logger.error(f"PostgreSQL transaction rolled back: {e}")
            raise
        finally:
            self._local.conn = None
            self._put_connection(conn)

    def _convert_placeholders(self, query: str) -> str:
        """Convert ? placeholders to %s for PostgreSQL."""
        return query.replace("?", "%s")

    def initialize(self) -> None:
        """Initialize PostgreSQL schema."""
        from repositories.schema import create_schema

        logger.info(f"Initializing PostgreSQL database: {self._config.pg_database}")
        conn = self._get_connection()
        try:
            with conn.cursor() as cursor:
                create_schema(cursor, self.db_type)
            conn.commit()
            logger.info("PostgreSQL database initialized")
        finally:
            self._put_connection(conn)


class DatabaseFactory:
    """
    Factory for creating database adapters.
    """

    _instance: Optional[DatabaseAdapter] = None
    _config: Optional[DatabaseConfig] = None

    @classmethod
    def create(cls, config: Optional[DatabaseConfig] = None) -> DatabaseAdapter:
        """
        Create or return existing database adapter.

        Args:
            config: Database configuration. If None, loads from environment.

        Returns:
            DatabaseAdapter instance
        """
        if config is None:
            config = DatabaseConfig.from_env()

        # Return existing if same config
        if cls._instance is not None and cls._config == config:
            return cls._instance

        cls._config = config

        if config.db_type == DatabaseType.POSTGRESQL:
            adapter = PostgreSQLAdapter(config)
            if not adapter.connect():
                raise RuntimeError(
                    f"PostgreSQL unavailable at {config.pg_host}:{config.pg_port}/{config.pg_database}"
                )
            logger.info(f"Using PostgreSQL database: {config.pg_host}:{config.pg_port}/{config.pg_database}")
            cls._instance = adapter
            return adapter

        adapter = SQLiteAdapter(config.sqlite_path)
        adapter.connect()
        logger.info(f"Using SQLite database: {adapter.db_path}")
        cls._instance = adapter
        return adapter

    @classmethod
    def get_instance(cls) -> Optional[DatabaseAdapter]:
        """Get current database instance."""
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset factory and close connections."""
        if cls._instance:
            cls._instance.close()
        cls._instance = None
        cls._config = None


# Convenience function
def get_database() -> DatabaseAdapter:
    """Get the configured database adapter."""
    return DatabaseFactory.create()
