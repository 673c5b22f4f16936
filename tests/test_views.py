import pytest

from mysql2pg.errors import TranslateError
from mysql2pg.views import convert_view_ddl, drop_view_statement, mysql_date_format


def test_ifnull_and_if():
    statement = convert_view_ddl('v', "select ifnull(a,0) from db.t where if(a=1,'x','y')", database='db')
    assert statement.startswith('create or replace view "v" as ')
    assert 'coalesce(a,0)' in statement
    assert "case when a=1 then 'x' else 'y' end" in statement
    assert 'db.t' not in statement
    assert statement.endswith(';')


def test_literals_keep_case():
    statement = convert_view_ddl('V_Upper', "SELECT 'ABC' AS X FROM `T`")
    assert statement == """create or replace view "v_upper" as select 'ABC' as x from "t";"""


def test_concat_becomes_pipes():
    statement = convert_view_ddl('v', "select concat(first_name, ' ', last_name) as n from people")
    assert "(first_name || ' ' || last_name)" in statement


def test_group_concat_with_separator():
    statement = convert_view_ddl('v', "select group_concat(name separator ';') from tags")
    assert "string_agg(cast(name as text), ';')" in statement


def test_group_concat_default_separator():
    statement = convert_view_ddl('v', 'select group_concat(name) from tags')
    assert "string_agg(cast(name as text), ',')" in statement


def test_date_format():
    statement = convert_view_ddl('v', "select date_format(created_at, '%Y-%m-%d %H:%i') from t")
    assert "to_char(created_at, 'YYYY-MM-DD HH24:MI')" in statement


def test_mysql_date_format_mapping():
    assert mysql_date_format('%d/%m/%y %T') == 'DD/MM/YY HH24:MI:SS'


def test_limit_offset():
    statement = convert_view_ddl('v', 'select a from t limit 10, 5')
    assert 'limit 5 offset 10' in statement


def test_casts():
    statement = convert_view_ddl('v', 'select cast(a as signed), cast(b as char(10)) from t')
    assert 'cast(a as integer)' in statement
    assert 'cast(b as text)' in statement


def test_zero_arg_calls():
    statement = convert_view_ddl('v', 'select curdate(), uuid() from dual_t')
    assert 'current_date' in statement
    assert 'gen_random_uuid()::text' in statement


def test_drop_view_statement():
    assert drop_view_statement('V1') == 'drop view if exists "v1" cascade'


def test_empty_definition():
    with pytest.raises(TranslateError):
        convert_view_ddl('v', '   ')


def test_empty_name():
    with pytest.raises(TranslateError):
        convert_view_ddl('', 'select 1')
