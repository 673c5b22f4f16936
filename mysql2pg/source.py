"""
MySQL catalog reader and row source
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence, Tuple

import mysql.connector
import pymysql
from mysql.connector import pooling

from mysql2pg.config import ConversionOptions, MySQLConfig
from mysql2pg.errors import CatalogError, DatabaseConnectionError
from mysql2pg.models import (
    ColumnInfo, FunctionInfo, IndexInfo, TableInfo, TablePrivInfo, UserInfo, ViewInfo,
)

logger = logging.getLogger(__name__)

METADATA_WORKERS = 20
METADATA_TIMEOUT = 30  # seconds per metadata query
MAX_POOL_SIZE = 32  # mysql.connector limit
SYSTEM_USERS = ('root', 'mysql.sys', 'mysql.session', 'mysql.infoschema')
ER_TABLEACCESS_DENIED = 1142


def quote_mysql(name: str) -> str:
    """Backtick-quote a MySQL identifier"""
    return '`' + name.replace('`', '``') + '`'


def _text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode('utf-8', errors='replace')
    if isinstance(value, (set, frozenset)):
        return ','.join(sorted(value))
    return str(value)


class MySQLSource:
    """Reads catalog metadata with PyMySQL and streams rows from a mysql.connector pool"""

    def __init__(self, config: MySQLConfig, options: Optional[ConversionOptions] = None):
        self.config = config
        self.options = options or ConversionOptions()
        self._pool = None
        self._pool_lock = threading.Lock()
        self._pool_slots = None
        # connections in use at once, catalog and row paths together
        self._conn_slots = threading.BoundedSemaphore(max(1, int(config.max_open_conns or 1)))
        self._idle: List[Tuple[Any, float]] = []

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def _metadata_connection(self):
        """Open a PyMySQL connection for catalog queries"""
        try:
            return pymysql.connect(
                host=self.config.host,
                port=int(self.config.port),
                user=self.config.username,
                password=self.config.password,
                database=self.config.database,
                charset='utf8mb4',
                cursorclass=pymysql.cursors.DictCursor,
                connect_timeout=METADATA_TIMEOUT,
                read_timeout=METADATA_TIMEOUT,
                write_timeout=METADATA_TIMEOUT,
            )
        except pymysql.MySQLError as e:
            raise DatabaseConnectionError(f"Failed to connect to MySQL {self.config.host}: {e}") from e

    def _expired(self, created: float) -> bool:
        lifetime = int(self.config.conn_max_lifetime or 0)
        return lifetime > 0 and time.monotonic() - created >= lifetime

    def _take_idle(self) -> Optional[Tuple[Any, float]]:
        while True:
            with self._pool_lock:
                if not self._idle:
                    return None
                conn, created = self._idle.pop()
            if conn.open and not self._expired(created):
                return conn, created
            if conn.open:
                conn.close()

    def _put_idle(self, conn, created: float) -> None:
        with self._pool_lock:
            if len(self._idle) < int(self.config.max_idle_conns or 0) and not self._expired(created):
                self._idle.append((conn, created))
                return
        conn.close()

    @contextmanager
    def _catalog_connection(self):
        """Borrow a catalog connection; idle ones are reused up to max_idle_conns"""
        self._conn_slots.acquire()
        conn = None
        try:
            idle = self._take_idle()
            if idle is not None:
                conn, created = idle
            else:
                conn, created = self._metadata_connection(), time.monotonic()
            yield conn
        except Exception:
            # a failed query may leave the connection unusable
            if conn is not None and conn.open:
                conn.close()
            conn = None
            raise
        finally:
            if conn is not None:
                self._put_idle(conn, created)
            self._conn_slots.release()

    def _get_pool(self):
        with self._pool_lock:
            if self._pool is None:
                size = max(1, min(int(self.config.max_open_conns or 1), MAX_POOL_SIZE))
                try:
                    self._pool = pooling.MySQLConnectionPool(
                        pool_name='mysql2pg',
                        pool_size=size,
                        pool_reset_session=True,
                        host=self.config.host,
                        port=int(self.config.port),
                        user=self.config.username,
                        password=self.config.password,
                        database=self.config.database,
                        charset='utf8mb4',
                        use_pure=True,
                        connection_timeout=METADATA_TIMEOUT,
                    )
                except mysql.connector.Error as e:
                    raise DatabaseConnectionError(f"Failed to create MySQL pool: {e}") from e
                # the driver pool raises instead of waiting when exhausted
                self._pool_slots = threading.BoundedSemaphore(size)
            return self._pool

    @contextmanager
    def _pooled_connection(self):
        pool = self._get_pool()
        self._conn_slots.acquire()
        self._pool_slots.acquire()
        conn = None
        try:
            conn = pool.get_connection()
            conn.ping(reconnect=True, attempts=2, delay=1)
            yield conn
        finally:
            if conn is not None:
                conn.close()  # returns it to the pool
            self._pool_slots.release()
            self._conn_slots.release()

    def _query(self, query: str, params: Optional[Sequence] = None) -> List[Dict[str, Any]]:
        """Run a catalog query and return dict rows"""
        try:
            with self._catalog_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    return list(cur.fetchall())
        except pymysql.MySQLError as e:
            raise CatalogError(f"Catalog query failed ({query.split()[0]}): {e}") from e

    def ping(self) -> None:
        """Verify both the metadata path and the row pool can connect"""
        with self._catalog_connection():
            pass
        with self._pooled_connection():
            pass

    def close(self) -> None:
        """Close idle catalog connections and the connections queued in the row pool"""
        with self._pool_lock:
            idle, self._idle = self._idle, []
            row_pool, self._pool = self._pool, None
        for conn, _ in idle:
            if conn.open:
                conn.close()
        if row_pool is not None:
            # the driver pool has no public close; this disconnects every queued connection
            row_pool._remove_connections()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def version(self) -> str:
        rows = self._query("SELECT VERSION() AS version")
        return _text(rows[0]['version']) if rows else ''

    def list_table_names(self) -> List[str]:
        query = ("SELECT TABLE_NAME FROM information_schema.TABLES "
                 "WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'")
        params: List[Any] = [self.config.database]
        excluded = self.options.exclude_table_list if self.options.exclude_use_table_list else []
        if excluded:
            query += " AND TABLE_NAME NOT IN (" + ', '.join(['%s'] * len(excluded)) + ")"
            params.extend(excluded)
        query += " ORDER BY TABLE_NAME"
        return [_text(row['TABLE_NAME']) for row in self._query(query, params)]

    def show_create_table(self, table: str) -> str:
        rows = self._query(f"SHOW CREATE TABLE {quote_mysql(table)}")
        if not rows:
            raise CatalogError(f"SHOW CREATE TABLE returned nothing for {table}")
        return _text(rows[0].get('Create Table'))

    def columns(self, table: str) -> List[ColumnInfo]:
        rows = self._query(f"SHOW FULL COLUMNS FROM {quote_mysql(table)}")
        return [
            ColumnInfo(
                name=_text(row['Field']),
                type=_text(row['Type']),
                nullable=_text(row['Null']) == 'YES',
                key=_text(row['Key']),
                default=None if row['Default'] is None else _text(row['Default']),
                extra=_text(row['Extra']),
                comment=_text(row.get('Comment')),
            )
            for row in rows
        ]

    def indexes(self, table: str) -> List[IndexInfo]:
        rows = self._query(
            "SELECT TABLE_NAME, NON_UNIQUE, INDEX_NAME, COLUMN_NAME "
            "FROM information_schema.STATISTICS "
            "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s "
            "ORDER BY INDEX_NAME, SEQ_IN_INDEX",
            (self.config.database, table),
        )
        indexes: Dict[str, IndexInfo] = {}
        for row in rows:
            name = _text(row['INDEX_NAME'])
            if name == 'PRIMARY':
                continue
            if name not in indexes:
                indexes[name] = IndexInfo(name=name, table=table, unique=int(row['NON_UNIQUE']) == 0)
            indexes[name].columns.append(_text(row['COLUMN_NAME']))
        return list(indexes.values())

    def describe_table(self, table: str) -> Optional[TableInfo]:
        """DDL, columns and indexes for one table; None if access is denied"""
        try:
            ddl = self.show_create_table(table)
        except CatalogError as e:
            cause = e.__cause__
            code = cause.args[0] if cause is not None and cause.args else None
            if code == ER_TABLEACCESS_DENIED or 'SHOW VIEW command denied' in str(e):
                logger.warning(f"Skipping {table}: {e}")
                return None
            raise
        return TableInfo(name=table, ddl=ddl, columns=self.columns(table), indexes=self.indexes(table))

    def list_tables(self, names: Optional[List[str]] = None) -> List[TableInfo]:
        """Describe tables concurrently; result keeps catalog order"""
        if names is None:
            names = self.list_table_names()
        described: Dict[str, Optional[TableInfo]] = {}
        with ThreadPoolExecutor(max_workers=METADATA_WORKERS) as executor:
            futures = {executor.submit(self.describe_table, name): name for name in names}
            for future in as_completed(futures):
                described[futures[future]] = future.result()
        return [described[name] for name in names if described.get(name) is not None]

    def row_count(self, table: str) -> int:
        rows = self._query(f"SELECT COUNT(*) AS cnt FROM {quote_mysql(table)}")
        return int(rows[0]['cnt']) if rows else 0

    def primary_key(self, table: str) -> str:
        """Single primary key column; CatalogError if absent or composite"""
        rows = self._query(f"SHOW KEYS FROM {quote_mysql(table)} WHERE Key_name = 'PRIMARY'")
        if not rows:
            raise CatalogError(f"Table {table} has no primary key")
        if len(rows) > 1:
            raise CatalogError(f"Table {table} has a composite primary key")
        return _text(rows[0]['Column_name'])

    def list_views(self) -> List[ViewInfo]:
        rows = self._query(
            "SELECT TABLE_NAME, VIEW_DEFINITION FROM information_schema.VIEWS "
            "WHERE TABLE_SCHEMA = %s ORDER BY TABLE_NAME",
            (self.config.database,),
        )
        return [ViewInfo(name=_text(row['TABLE_NAME']), definition=_text(row['VIEW_DEFINITION']))
                for row in rows]

    def list_functions(self) -> List[FunctionInfo]:
        rows = self._query(
            "SELECT ROUTINE_NAME, DATA_TYPE FROM information_schema.ROUTINES "
            "WHERE ROUTINE_SCHEMA = %s AND ROUTINE_TYPE = 'FUNCTION' ORDER BY ROUTINE_NAME",
            (self.config.database,),
        )
        functions = []
        for row in rows:
            name = _text(row['ROUTINE_NAME'])
            created = self._query(f"SHOW CREATE FUNCTION {quote_mysql(name)}")
            definition = _text(created[0].get('Create Function')) if created else ''
            if not definition:
                logger.warning(f"No definition visible for function {name} (missing privileges?)")
                continue
            functions.append(FunctionInfo(name=name, definition=definition, return_type=_text(row['DATA_TYPE'])))
        return functions

    def list_users(self) -> List[UserInfo]:
        placeholders = ', '.join(['%s'] * len(SYSTEM_USERS))
        rows = self._query(
            f"SELECT User, Host FROM mysql.user WHERE User NOT IN ({placeholders}) ORDER BY User, Host",
            SYSTEM_USERS,
        )
        users = []
        for row in rows:
            user, host = _text(row['User']), _text(row['Host'])
            users.append(UserInfo(user=user, host=host, grants=self.list_user_grants(user, host)))
        return users

    def list_user_grants(self, user: str, host: str) -> List[str]:
        rows = self._query("SHOW GRANTS FOR %s@%s", (user, host))
        return [_text(next(iter(row.values()))) for row in rows]

    def list_table_privileges(self) -> List[TablePrivInfo]:
        rows = self._query(
            "SELECT Host, Db, User, Table_name, Table_priv FROM mysql.tables_priv "
            "WHERE Db = %s AND Table_priv != ''",
            (self.config.database,),
        )
        return [
            TablePrivInfo(host=_text(row['Host']), db=_text(row['Db']), user=_text(row['User']),
                          table=_text(row['Table_name']), privileges=_text(row['Table_priv']))
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _fetch(self, query: str, params: Sequence) -> List[tuple]:
        with self._pooled_connection() as conn:
            cur = conn.cursor()
            try:
                cur.execute(query, tuple(params))
                return [tuple(row) for row in cur.fetchall()]
            except mysql.connector.Error as e:
                raise CatalogError(f"Row fetch failed: {e}") from e
            finally:
                cur.close()

    def stream_by_keyset(self, table: str, columns: List[str], pk: str,
                         last_value: Any, limit: int) -> List[tuple]:
        """Next page ordered by pk; the first page (last_value None) has no predicate"""
        column_list = ', '.join(quote_mysql(c) for c in columns)
        query = f"SELECT {column_list} FROM {quote_mysql(table)}"
        params: List[Any] = []
        if last_value is not None:
            query += f" WHERE {quote_mysql(pk)} > %s"
            params.append(last_value)
        query += f" ORDER BY {quote_mysql(pk)} LIMIT %s"
        params.append(int(limit))
        return self._fetch(query, params)

    def stream_by_offset(self, table: str, columns: List[str], offset: int, limit: int) -> List[tuple]:
        column_list = ', '.join(quote_mysql(c) for c in columns)
        query = f"SELECT {column_list} FROM {quote_mysql(table)} LIMIT %s OFFSET %s"
        return self._fetch(query, (int(limit), int(offset)))
