import datetime
import struct
import threading
import time
from contextlib import contextmanager
from decimal import Decimal
from unittest.mock import MagicMock

import psycopg2
import psycopg2.pool
import pytest

from mysql2pg.config import PostgresConfig
from mysql2pg.errors import ExecuteError, LoadError, ValidateError
from mysql2pg.target import PostgresTarget, convert_value, copy_text, rows_per_statement


@pytest.fixture
def pg():
    return PostgresTarget(PostgresConfig(host='pg.local', username='postgres', database='shop', max_conns=4))


def failing_cursor(message):
    cur = MagicMock()
    cur.execute.side_effect = psycopg2.ProgrammingError(message)

    @contextmanager
    def autocommit():
        yield cur
    return autocommit


def make_tx():
    tx = MagicMock()
    tx.cursor.return_value = MagicMock()
    return tx


def test_rows_per_statement():
    assert rows_per_statement(1) == 65535
    assert rows_per_statement(10) == 6553
    assert rows_per_statement(70000) == 1


def test_copy_text_escaping():
    assert copy_text(None) == '\\N'
    assert copy_text(True) == 't'
    assert copy_text(False) == 'f'
    assert copy_text('a\tb\nc\\d\re') == 'a\\tb\\nc\\\\d\\re'
    assert copy_text(b'\x01\xff') == '\\\\x01ff'
    assert copy_text(Decimal('1.50')) == '1.50'


def test_convert_value_decodes_bytes():
    assert convert_value(b'caf\xc3\xa9', 'varchar(10)') == 'café'
    assert convert_value(bytearray(b'abc'), 'text') == 'abc'


def test_convert_value_keeps_binary():
    assert convert_value(b'\x00\x01', 'blob') == b'\x00\x01'
    assert convert_value(b'\x00\x01', 'varbinary(16)') == b'\x00\x01'


def test_convert_value_bit_and_point():
    assert convert_value(b'\x05', 'bit(4)') == '0101'
    wkb = struct.pack('<I', 0) + b'\x01' + struct.pack('<I', 1) + struct.pack('<dd', 1.5, -2.0)
    assert convert_value(wkb, 'point') == '(1.5,-2.0)'


def test_convert_value_misc():
    assert convert_value('0000-00-00 00:00:00', 'datetime') is None
    assert convert_value('a\x00b', 'varchar(5)') == 'ab'
    assert convert_value(datetime.timedelta(hours=26, minutes=3, seconds=4), 'time') == '26:03:04'
    assert convert_value({'b', 'a'}, "set('a','b')") == 'a,b'
    assert convert_value(None, 'int') is None
    assert convert_value(7, 'int') == 7


def test_convert_value_tinyint1_is_boolean():
    assert convert_value(1, 'tinyint(1)') is True
    assert convert_value(0, 'tinyint(1) unsigned') is False
    assert convert_value(3, 'tinyint(4)') == 3
    assert copy_text(convert_value(1, 'tinyint(1)')) == 't'


def test_transactions_wait_for_a_free_connection(monkeypatch):
    monkeypatch.setattr(psycopg2, 'connect', lambda *args, **kwargs: MagicMock())
    pg = PostgresTarget(PostgresConfig(host='pg.local', username='postgres', database='shop', max_conns=1))
    entered = threading.Event()
    release = threading.Event()
    order = []

    def first():
        with pg.begin_tx():
            order.append('first')
            entered.set()
            release.wait(5)

    def second():
        entered.wait(5)
        with pg.begin_tx():
            order.append('second')

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for thread in threads:
        thread.start()
    entered.wait(5)
    time.sleep(0.2)
    assert order == ['first']

    release.set()
    for thread in threads:
        thread.join(5)
    assert order == ['first', 'second']


def test_transaction_without_connection_is_load_error(pg):
    pg.connect = lambda: None
    pg._pool = MagicMock()
    pg._pool.getconn.side_effect = psycopg2.pool.PoolError('connection pool exhausted')
    pg._pool_slots = threading.BoundedSemaphore(1)

    with pytest.raises(LoadError):
        with pg.begin_tx():
            pass
    # the slot is handed back
    assert pg._pool_slots.acquire(blocking=False)


def test_bulk_insert_chunks_and_last_pk(pg):
    copied = []
    pg._copy_rows = lambda tx, cur, table, columns, rows: copied.append(len(rows))
    rows = [(i, f'name{i}') for i in range(1, 13)]

    count, last_pk = pg.bulk_insert(make_tx(), 't', ['id', 'name'], rows, 5, pk='id')

    assert count == 12
    assert last_pk == 12
    assert copied == [5, 5, 2]


def test_bulk_insert_falls_back_to_insert(pg):
    inserted = []

    def no_copy(tx, cur, table, columns, rows):
        raise psycopg2.NotSupportedError('COPY not supported')

    pg._copy_rows = no_copy
    pg._insert_rows = lambda tx, cur, table, columns, rows: inserted.append(len(rows))

    count, _ = pg.bulk_insert(make_tx(), 't', ['id'], [(1,), (2,), (3,)], 2)

    assert count == 3
    assert inserted == [2, 1]
    assert pg.use_copy is False


def test_bulk_insert_uses_insert_when_copy_disabled(pg):
    pg.use_copy = False
    inserted = []
    pg._copy_rows = MagicMock()
    pg._insert_rows = lambda tx, cur, table, columns, rows: inserted.append(len(rows))

    pg.bulk_insert(make_tx(), 't', ['id'], [(1,), (2,)], 10)

    assert inserted == [2]
    pg._copy_rows.assert_not_called()


def test_bulk_insert_max_pk_fallback(pg):
    tx = make_tx()
    tx.cursor.return_value.fetchone.return_value = (42,)

    count, last_pk = pg.bulk_insert(tx, 't', ['id'], [], 10, pk='id')

    assert count == 0
    assert last_pk == 42


def test_bulk_insert_wraps_driver_errors(pg):
    def broken(tx, cur, table, columns, rows):
        raise psycopg2.DataError('invalid input syntax')

    pg._copy_rows = broken
    with pytest.raises(LoadError):
        pg.bulk_insert(make_tx(), 't', ['id'], [(1,)], 10)


def test_exec_ddl_already_exists_is_success(pg):
    pg._autocommit = failing_cursor('relation "t" already exists')
    assert pg.exec_ddl('CREATE TABLE "t" ("a" INTEGER)') is False


def test_exec_ddl_duplicate_key_is_success(pg):
    pg._autocommit = failing_cursor('duplicate key value violates unique constraint "pg_type_typname_nsp_index"')
    assert pg.exec_ddl('CREATE TABLE "t" ("a" INTEGER)') is False


def test_exec_ddl_other_errors_raise(pg):
    pg._autocommit = failing_cursor('syntax error at or near "FOO"')
    with pytest.raises(ExecuteError):
        pg.exec_ddl('FOO')


def test_grant_missing_role_is_skipped(pg):
    pg._autocommit = failing_cursor('role "ghost" does not exist')
    assert pg.grant('ghost', 'orders', ['SELECT']) is False


def test_grant_other_errors_raise(pg):
    pg._autocommit = failing_cursor('permission denied for table orders')
    with pytest.raises(ExecuteError):
        pg.grant('app', 'orders', ['SELECT'])


def test_count_rows_failure_is_validation_error(pg):
    pg._autocommit = failing_cursor('relation "orders" does not exist')
    with pytest.raises(ValidateError):
        pg.count_rows('orders')
