"""
PostgreSQL target: DDL execution, transactions and bulk loading
"""
import datetime
import logging
import struct
import threading
from contextlib import contextmanager
from io import StringIO
from typing import Any, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import extras, pool, sql

from mysql2pg.config import PostgresConfig
from mysql2pg.errors import (
    DatabaseConnectionError, ExecuteError, LoadError, ValidateError,
    is_idempotent_error, is_missing_role_error,
)
from mysql2pg.views import drop_view_statement

logger = logging.getLogger(__name__)

MAX_BIND_PARAMS = 65535
CONNECT_TIMEOUT = 30


def rows_per_statement(column_count: int) -> int:
    """Rows per multi-row INSERT so the parameter count stays within the protocol limit"""
    return max(1, MAX_BIND_PARAMS // max(1, column_count))


def _format_timedelta(value: datetime.timedelta) -> str:
    total = value.days * 86400 + value.seconds
    sign = '-' if total < 0 else ''
    total = abs(total)
    text = f"{sign}{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"
    if value.microseconds:
        text += f".{value.microseconds:06d}"
    return text


def _parse_point(value: bytes) -> Optional[str]:
    """MySQL stores POINT as a 4 byte SRID followed by WKB"""
    if len(value) != 25:
        return None
    order = '<' if value[4] == 1 else '>'
    geometry_type = struct.unpack(order + 'I', value[5:9])[0]
    if geometry_type != 1:
        return None
    x, y = struct.unpack(order + 'dd', value[9:25])
    return f"({x},{y})"


def convert_value(value: Any, mysql_type: str = '') -> Any:
    """Convert a MySQL value to something PostgreSQL accepts"""
    if value is None:
        return None
    mysql_type = (mysql_type or '').lower()

    # tinyint(1) columns are created as BOOLEAN
    if mysql_type.startswith(('tinyint(1)', 'bool')) and isinstance(value, int):
        return bool(value)

    if isinstance(value, bytearray):
        value = bytes(value)

    if isinstance(value, bytes):
        if 'blob' in mysql_type or 'binary' in mysql_type:
            return value
        if mysql_type.startswith('bit'):
            width = len(value) * 8
            digits = mysql_type[mysql_type.find('(') + 1:mysql_type.find(')')] if '(' in mysql_type else ''
            if digits.isdigit():
                width = int(digits)
            return format(int.from_bytes(value, 'big'), f'0{width}b')
        if 'point' in mysql_type or 'geometry' in mysql_type:
            point = _parse_point(value)
            if point is not None:
                return point
        value = value.decode('utf-8', errors='replace')

    if isinstance(value, (set, frozenset)):
        return ','.join(sorted(value))

    if isinstance(value, datetime.timedelta):
        return _format_timedelta(value)

    # Zero dates have no PostgreSQL counterpart
    if mysql_type.startswith(('date', 'timestamp')) and str(value).startswith('0000-00-00'):
        return None

    # Remove NUL characters from strings (Postgres doesn't allow them)
    if isinstance(value, str) and '\x00' in value:
        return value.replace('\x00', '')

    return value


def copy_text(value: Any) -> str:
    """Render one converted value in COPY TEXT format"""
    if value is None:
        return '\\N'  # Postgres NULL marker
    if isinstance(value, bool):
        return 't' if value else 'f'
    if isinstance(value, (bytes, bytearray)):
        return '\\\\x' + bytes(value).hex()
    if isinstance(value, str):
        return value.replace('\\', '\\\\').replace('\n', '\\n').replace('\r', '\\r').replace('\t', '\\t')
    return str(value)


class Transaction:
    """One pooled connection held for the length of a with-block"""

    def __init__(self, target: 'PostgresTarget'):
        self.target = target
        self.conn = None

    def __enter__(self):
        try:
            self.conn = self.target.getconn()
        except (psycopg2.Error, DatabaseConnectionError) as e:
            raise LoadError(f"No PostgreSQL connection for transaction: {str(e).strip()}") from e
        self.conn.autocommit = False
        return self

    def cursor(self):
        return self.conn.cursor()

    def execute(self, query, params=None) -> None:
        with self.conn.cursor() as cur:
            cur.execute(query, params)

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
        except psycopg2.Error as e:
            raise LoadError(f"Transaction end failed: {str(e).strip()}") from e
        finally:
            self.target.putconn(self.conn)
            self.conn = None
        return False


class PostgresTarget:
    """Executes translated statements and loads rows into PostgreSQL"""

    def __init__(self, config: PostgresConfig, use_copy: bool = True):
        self.config = config
        self.use_copy = use_copy
        self._pool = None
        self._pool_lock = threading.Lock()
        self._pool_slots = None

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def connect(self) -> None:
        with self._pool_lock:
            if self._pool is not None:
                return
            size = max(1, int(self.config.max_conns or 1))
            try:
                self._pool = pool.ThreadedConnectionPool(
                    1, size,
                    host=self.config.host,
                    port=int(self.config.port),
                    user=self.config.username,
                    password=self.config.password,
                    dbname=self.config.database,
                    connect_timeout=CONNECT_TIMEOUT,
                )
            except psycopg2.Error as e:
                raise DatabaseConnectionError(f"Failed to connect to PostgreSQL {self.config.host}: {e}") from e
            # the driver pool raises instead of waiting when exhausted
            self._pool_slots = threading.BoundedSemaphore(size)

    def getconn(self):
        """Borrow a connection, waiting while all max_conns are in use"""
        self.connect()
        self._pool_slots.acquire()
        try:
            return self._pool.getconn()
        except psycopg2.Error:
            self._pool_slots.release()
            raise

    def putconn(self, conn) -> None:
        if self._pool is None:
            return
        try:
            self._pool.putconn(conn)
        finally:
            self._pool_slots.release()

    @contextmanager
    def _autocommit(self):
        conn = self.getconn()
        try:
            conn.autocommit = True
            with conn.cursor() as cur:
                yield cur
        finally:
            self.putconn(conn)

    def ping(self) -> None:
        self.connect()
        with self._autocommit() as cur:
            cur.execute("SELECT 1")

    def version(self) -> str:
        with self._autocommit() as cur:
            cur.execute("SELECT version()")
            row = cur.fetchone()
        return row[0] if row else ''

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    # ------------------------------------------------------------------
    # DDL and grants
    # ------------------------------------------------------------------

    def exec_ddl(self, statement: str) -> bool:
        """Run one statement; False when the object already existed"""
        try:
            with self._autocommit() as cur:
                cur.execute(statement)
        except psycopg2.Error as e:
            message = str(e).strip()
            if is_idempotent_error(message):
                logger.info(f"Already present, treating as success: {message}")
                return False
            raise ExecuteError(f"{message}\nStatement: {statement}") from e
        return True

    def table_exists(self, name: str) -> bool:
        with self._autocommit() as cur:
            cur.execute(
                "SELECT EXISTS (SELECT 1 FROM information_schema.tables "
                "WHERE table_schema = 'public' AND table_name = %s)",
                (name,),
            )
            return bool(cur.fetchone()[0])

    def drop_view(self, name: str) -> None:
        self.exec_ddl(drop_view_statement(name))

    def grant(self, user: str, table: str, privileges: Sequence[str]) -> bool:
        """GRANT privileges on one table; False when the role is missing"""
        if not privileges:
            return False
        statement = sql.SQL("GRANT {} ON TABLE {} TO {}").format(
            sql.SQL(', ').join(sql.SQL(p) for p in privileges),
            sql.Identifier(table),
            sql.Identifier(user),
        )
        try:
            with self._autocommit() as cur:
                cur.execute(statement)
        except psycopg2.Error as e:
            message = str(e).strip()
            if is_missing_role_error(message):
                logger.warning(f"Skipping grant on {table}: {message}")
                return False
            if is_idempotent_error(message):
                logger.info(f"Grant on {table} already present: {message}")
                return False
            raise ExecuteError(f"Grant on {table} to {user} failed: {message}") from e
        return True

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def begin_tx(self) -> Transaction:
        return Transaction(self)

    def truncate(self, tx: Transaction, table: str) -> None:
        try:
            tx.execute(sql.SQL("TRUNCATE TABLE {}").format(sql.Identifier(table)))
        except psycopg2.Error as e:
            raise LoadError(f"Truncate of {table} failed: {str(e).strip()}") from e

    def count_rows(self, table: str) -> int:
        try:
            with self._autocommit() as cur:
                cur.execute(sql.SQL("SELECT COUNT(*) FROM {}").format(sql.Identifier(table)))
                return int(cur.fetchone()[0])
        except psycopg2.Error as e:
            raise ValidateError(f"Row count of {table} failed: {str(e).strip()}") from e

    def bulk_insert(self, tx: Transaction, table: str, columns: List[str], rows: Sequence[Sequence[Any]],
                    batch_size: int, pk: Optional[str] = None,
                    column_types: Optional[List[str]] = None) -> Tuple[int, Any]:
        """
        Load rows inside an open transaction.

        Args:
            tx: open Transaction
            table: target table
            columns: target column names, in row order
            rows: source rows
            batch_size: rows per COPY buffer
            pk: primary key column used to report the last value
            column_types: source column types, used for value conversion

        Returns:
            (rows inserted, primary key value of the last row)
        """
        batch_size = batch_size if batch_size > 0 else 10000
        types = list(column_types or [''] * len(columns))
        pk_index = columns.index(pk) if pk and pk in columns else None

        inserted = 0
        last_pk = None
        cur = tx.cursor()
        try:
            for start in range(0, len(rows), batch_size):
                chunk = rows[start:start + batch_size]
                converted = [[convert_value(v, types[i] if i < len(types) else '') for i, v in enumerate(row)]
                             for row in chunk]
                self._load_chunk(tx, cur, table, columns, converted)
                inserted += len(chunk)
                if pk_index is not None:
                    last_pk = chunk[-1][pk_index]

            if pk and last_pk is None:
                cur.execute(sql.SQL("SELECT MAX({}) FROM {}").format(sql.Identifier(pk), sql.Identifier(table)))
                row = cur.fetchone()
                last_pk = row[0] if row else None
        except psycopg2.Error as e:
            raise LoadError(f"Bulk load into {table} failed: {str(e).strip()}") from e
        finally:
            cur.close()
        return inserted, last_pk

    def _load_chunk(self, tx: Transaction, cur, table: str, columns: List[str], rows: List[List[Any]]) -> None:
        if self.use_copy:
            cur.execute("SAVEPOINT bulk_copy")
            try:
                self._copy_rows(tx, cur, table, columns, rows)
                cur.execute("RELEASE SAVEPOINT bulk_copy")
                return
            except psycopg2.NotSupportedError as e:
                cur.execute("ROLLBACK TO SAVEPOINT bulk_copy")
                logger.warning(f"COPY unavailable ({str(e).strip()}), falling back to INSERT")
                self.use_copy = False
        self._insert_rows(tx, cur, table, columns, rows)

    def _copy_rows(self, tx: Transaction, cur, table: str, columns: List[str], rows: List[List[Any]]) -> None:
        buffer = StringIO()
        try:
            for row in rows:
                buffer.write('\t'.join(copy_text(v) for v in row) + '\n')
            buffer.seek(0)
            copy_sql = sql.SQL("COPY {} ({}) FROM STDIN WITH (FORMAT TEXT, NULL '\\N')").format(
                sql.Identifier(table),
                sql.SQL(', ').join(map(sql.Identifier, columns)),
            )
            cur.copy_expert(copy_sql.as_string(tx.conn), buffer)
        finally:
            buffer.close()

    def _insert_rows(self, tx: Transaction, cur, table: str, columns: List[str], rows: List[List[Any]]) -> None:
        insert_sql = sql.SQL("INSERT INTO {} ({}) VALUES %s").format(
            sql.Identifier(table),
            sql.SQL(', ').join(map(sql.Identifier, columns)),
        )
        extras.execute_values(cur, insert_sql.as_string(tx.conn), rows,
                              page_size=rows_per_statement(len(columns)))
