"""
Source database access.

Reads slow-log executions, the connection count and the schema catalog
from the MySQL server being mined. Every driver error is raised as
SourceFetchError so that the calling job fails the current window only.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

import mysql.connector
from mysql.connector import Error as MySQLError

from querymart.core.config import settings
from querymart.core.errors import SourceFetchError
from querymart.core.logger import get_logger
from querymart.db.models import UserQuery
from querymart.services.catalog import Catalog, IndexDef, TableDef
from querymart.services.digest import normalize_digest

logger = get_logger(__name__)

# "dbadmin2[dbadmin2] @  [172.16.2.208]", "root[root] @ localhost []"
_USER_HOST = re.compile(r"^(?P<user>.*?)\s*@\s*(?P<host>[^\s\[]*)\s*(?:\[(?P<ip>[^\]]*)\])?\s*$")


def split_user_host(user_host: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a slow-log user_host value into (user, address).

    The address is the bracketed IP when present, the host name otherwise.
    """
    if not user_host:
        return None, None
    match = _USER_HOST.match(user_host)
    if not match:
        return user_host, None
    address = match.group("ip") or match.group("host") or None
    return match.group("user") or None, address


def _seconds(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _as_utc(value: datetime) -> datetime:
    # Session time zone is UTC, the driver returns naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _naive_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SourceDb(ABC):
    """Where the jobs read operational data from."""

    @abstractmethod
    def get_queries(self, start: datetime, end: datetime) -> List[UserQuery]:
        """Executions logged in [start, end), oldest first, as unsaved rows."""

    @abstractmethod
    def get_connections(self) -> int:
        """Number of currently open client connections."""

    @abstractmethod
    def get_catalog(self) -> Catalog:
        """Schema catalog used to validate mined SQL."""


class MySQLSource(SourceDb):
    """
    Source backed by a MySQL server with log_output=TABLE.

    A connection is opened per call, so one instance can be shared by jobs
    running on different scheduler threads.
    """

    SLOW_LOG_QUERY = """
        SELECT
            start_time,
            user_host,
            query_time,
            lock_time,
            rows_sent,
            rows_examined,
            thread_id,
            sql_text
        FROM mysql.slow_log
        WHERE start_time >= %s AND start_time < %s
        ORDER BY start_time, thread_id
    """

    COLUMNS_QUERY = """
        SELECT table_schema AS table_schema, table_name AS table_name, column_name AS column_name
        FROM information_schema.columns
        WHERE table_schema NOT IN ('mysql', 'information_schema', 'performance_schema', 'sys')
    """

    INDEXES_QUERY = """
        SELECT table_schema AS table_schema, table_name AS table_name,
               index_name AS index_name, non_unique AS non_unique, column_name AS column_name
        FROM information_schema.statistics
        WHERE table_schema NOT IN ('mysql', 'information_schema', 'performance_schema', 'sys')
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, batch_size: int = 1000):
        """
        Args:
            config: mysql.connector.connect() keyword arguments
                (default: settings.get_mysql_dict())
            batch_size: Slow-log rows read per fetch; a window is always read in full
        """
        self.config = config if config is not None else settings.get_mysql_dict()
        self.batch_size = batch_size

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        try:
            connection = mysql.connector.connect(autocommit=True, **self.config)
        except MySQLError as e:
            logger.error(f"MySQL connection failed: {e}")
            raise SourceFetchError(f"Cannot connect to {self.config.get('host')}: {e}") from e

        try:
            cursor = connection.cursor(dictionary=True)
            try:
                cursor.execute("SET time_zone = '+00:00'")
                yield cursor
            finally:
                cursor.close()
        except MySQLError as e:
            logger.error(f"MySQL query failed: {e}")
            raise SourceFetchError(str(e)) from e
        finally:
            connection.close()

    def get_queries(self, start: datetime, end: datetime) -> List[UserQuery]:
        queries: List[UserQuery] = []
        with self._cursor() as cursor:
            cursor.execute(self.SLOW_LOG_QUERY, (_naive_utc(start), _naive_utc(end)))
            while True:
                rows = cursor.fetchmany(self.batch_size)
                if not rows:
                    break
                queries.extend(self._to_user_query(row) for row in rows)

        logger.info(f"Fetched {len(queries)} slow queries from MySQL")
        return queries

    @staticmethod
    def _to_user_query(row: Dict[str, Any]) -> UserQuery:
        user, address = split_user_host(row.get("user_host"))
        thread_id = row.get("thread_id")
        return UserQuery(
            user_host=user,
            ip_address=address,
            connection_id=str(thread_id) if thread_id is not None else None,
            query=normalize_digest(row.get("sql_text")) or None,
            query_time=_seconds(row.get("query_time")),
            lock_time=_seconds(row.get("lock_time")),
            rows_sent=row.get("rows_sent"),
            rows_examined=row.get("rows_examined"),
            log_time=_as_utc(row["start_time"]),
        )

    def get_connections(self) -> int:
        with self._cursor() as cursor:
            cursor.execute("SHOW GLOBAL STATUS LIKE 'Threads_connected'")
            row = cursor.fetchone()
        if not row:
            raise SourceFetchError("Threads_connected status variable not available")
        return int(row["Value"])

    def get_catalog(self) -> Catalog:
        """
        Catalog of every user table visible to the account.

        The catalog is non-strict: slow-log queries run against many default
        schemas, so a table missing here is not an error.
        """
        database = self.config.get("database")
        schema_filter = " AND table_schema = %s" if database else ""
        params = (database,) if database else ()

        with self._cursor() as cursor:
            cursor.execute(
                self.COLUMNS_QUERY + schema_filter + " ORDER BY table_schema, table_name, ordinal_position",
                params,
            )
            column_rows = cursor.fetchall()
            cursor.execute(
                self.INDEXES_QUERY + schema_filter + " ORDER BY table_schema, table_name, index_name, seq_in_index",
                params,
            )
            index_rows = cursor.fetchall()

        columns: Dict[Tuple[str, str], List[str]] = {}
        for row in column_rows:
            columns.setdefault((row["table_schema"], row["table_name"]), []).append(row["column_name"])

        indexes: Dict[Tuple[str, str], Dict[str, List[Any]]] = {}
        for row in index_rows:
            table_indexes = indexes.setdefault((row["table_schema"], row["table_name"]), {})
            entry = table_indexes.setdefault(row["index_name"], [not row["non_unique"], []])
            entry[1].append(row["column_name"])

        catalog = Catalog(strict=False)
        for (schema, name), table_columns in columns.items():
            catalog.add_table(TableDef(
                name=name,
                columns=tuple(table_columns),
                indexes=tuple(
                    IndexDef(name=index_name, columns=tuple(index_columns), unique=unique)
                    for index_name, (unique, index_columns) in indexes.get((schema, name), {}).items()
                ),
                schema=schema,
            ))
        logger.info(f"Loaded catalog of {len(catalog)} tables from MySQL")
        return catalog
