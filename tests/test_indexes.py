import pytest

from mysql2pg.ddl import convert_index_ddl, index_name
from mysql2pg.errors import TranslateError
from mysql2pg.models import IndexInfo


def test_unique_index():
    index = IndexInfo(name='idx_a', table='users', columns=['email'], unique=True)
    assert convert_index_ddl(index) == 'CREATE UNIQUE INDEX IF NOT EXISTS "users_idx_a" ON "users" ("email");'


def test_primary_key_only_index_is_empty():
    index = IndexInfo(name='pk', table='users', columns=['pri_key'], unique=True)
    assert convert_index_ddl(index) == ''


def test_multi_column_index_drops_pri_key():
    index = IndexInfo(name='IDX_Mixed', table='Orders', columns=['pri_key', 'CustomerId', 'Status'])
    assert convert_index_ddl(index, lowercase_columns=True) == (
        'CREATE INDEX IF NOT EXISTS "orders_idx_mixed" ON "Orders" ("customerid", "status");'
    )


def test_long_index_name_fits_identifier_limit():
    name = index_name('a' * 40, 'idx_' + 'b' * 40)
    assert len(name.encode('utf-8')) <= 63
    assert name == 'a' * 40 + '_idx'


def test_long_multibyte_index_name():
    name = index_name('表' * 15, 'idx_' + '名' * 15)
    assert len(name.encode('utf-8')) <= 63


def test_index_without_name():
    with pytest.raises(TranslateError):
        convert_index_ddl(IndexInfo(name='', table='users', columns=['email']))


def test_index_with_empty_column():
    with pytest.raises(TranslateError):
        convert_index_ddl(IndexInfo(name='idx', table='users', columns=['']))
