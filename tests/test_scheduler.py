import logging

import pytest

from mysql2pg.errors import ExecuteError
from mysql2pg.models import FunctionInfo, IndexInfo, TablePrivInfo, UserInfo, ViewInfo
from mysql2pg.scheduler import PHASE_ORDER, MigrationManager, chunked

ALL_PHASES = dict(tableddl=True, data=True, view=True, indexes=True, functions=True,
                  users=True, grant=True, table_privileges=True)


def add_tables(source, *names):
    for name in names:
        source.add_table(name, [('id', 'int'), ('v', 'varchar(10)')],
                         rows=[(1, 'a'), (2, 'b')], pk='id',
                         indexes=[IndexInfo(name='idx_v', table=name, columns=['v'])])


def test_chunked():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([1, 2], 0) == [[1], [2]]


def test_phase_order(source, target, make_config):
    manager = MigrationManager(make_config(**ALL_PHASES), source, target)
    assert manager.enabled_phases() == list(PHASE_ORDER)


def test_phase_subset_keeps_relative_order(source, target, make_config):
    manager = MigrationManager(make_config(indexes=True, tableddl=True, users=True), source, target)
    assert manager.enabled_phases() == ['TableDDL', 'Indexes', 'Users']


def test_full_run(source, target, make_config):
    add_tables(source, 'a', 'b', 'c')
    source.views = [ViewInfo(name='v_a', definition='select id from shop.a')]
    source.functions = [FunctionInfo(name='one', definition='CREATE FUNCTION `one`() RETURNS int RETURN 1')]
    source.users = [UserInfo(user='app', host='%', grants=["GRANT SELECT ON `shop`.* TO 'app'@'%'"]),
                    UserInfo(user='mysql.sys', host='localhost')]
    source.table_privs = [TablePrivInfo(host='%', db='shop', user='app', table='a', privileges='Select,Insert')]
    target.existing = {'a', 'b', 'c'}
    config = make_config(concurrency=2, max_ddl_per_batch=2, validate_data=True, **ALL_PHASES)

    manager = MigrationManager(config, source, target)
    state = manager.run()

    assert [stat.name for stat in state.stats] == list(PHASE_ORDER)
    assert state.completed_tasks == state.total_tasks
    # 3 tables x (ddl, data, index, grant) + view + function + 2 users + 1 privilege row
    assert state.total_tasks == 3 * 4 + 1 + 1 + 2 + 1
    assert state.inconsistencies == []

    created = [s for s in target.statements if s.startswith('CREATE TABLE')]
    assert len(created) == 3
    assert sum(target.loaded.values()) == 6
    assert target.dropped_views == ['v_a']
    assert any(s.startswith('create or replace view "v_a"') for s in target.statements)
    assert sum(1 for s in target.statements if s.startswith('CREATE INDEX IF NOT EXISTS')) == 3
    assert any(s.startswith('CREATE OR REPLACE FUNCTION "one"') for s in target.statements)
    assert any('CREATE USER "app"' in s for s in target.statements)
    assert not any('mysql.sys' in s for s in target.statements)
    assert target.grants == [('app', 'a', ['SELECT', 'INSERT'])]
    assert 'GRANT SELECT ON "a" TO "app"' in target.statements


def test_first_execute_error_aborts_run(source, target, make_config):
    add_tables(source, 'a', 'b')
    target.fail_on = 'CREATE TABLE "b"'
    manager = MigrationManager(make_config(tableddl=True, data=True), source, target)

    with pytest.raises(ExecuteError):
        manager.run()

    assert [stat.name for stat in manager.state.stats] == ['TableDDL']
    assert target.load_calls == []


def test_already_exists_is_not_an_error(source, target, make_config):
    add_tables(source, 'a')
    target.fail_on = 'CREATE TABLE "a"'
    target.fail_message = 'relation "a" already exists'

    state = MigrationManager(make_config(tableddl=True), source, target).run()

    assert state.completed_tasks == state.total_tasks == 1


def test_translate_error_skips_object(source, target, make_config):
    add_tables(source, 'good')
    source.add_table('bad', [('id', 'int')], ddl='CREATE VIEW bad AS select 1')

    state = MigrationManager(make_config(tableddl=True), source, target).run()

    assert state.completed_tasks == state.total_tasks == 2
    assert [s for s in target.statements if s.startswith('CREATE TABLE')] == [
        'CREATE TABLE "good" (\n  "id" INTEGER,\n  "v" VARCHAR(10),\n  PRIMARY KEY ("id")\n)'
    ]


def test_skip_existing_tables(source, target, make_config):
    add_tables(source, 'a', 'b')
    target.existing = {'a'}

    MigrationManager(make_config(tableddl=True, skip_existing_tables=True), source, target).run()

    created = [s for s in target.statements if s.startswith('CREATE TABLE')]
    assert len(created) == 1
    assert created[0].startswith('CREATE TABLE "b"')


def test_table_list_filter(source, target, make_config, caplog):
    add_tables(source, 'a', 'b', 'c')
    config = make_config(tableddl=True, use_table_list=True, table_list=['c', 'a', 'missing'])

    with caplog.at_level(logging.WARNING, logger='mysql2pg'):
        manager = MigrationManager(config, source, target)
        manager.run()

    assert [t.name for t in manager.tables] == ['a', 'c']
    assert 'missing' in caplog.text


def test_empty_table_list_exits_cleanly(source, target, make_config):
    add_tables(source, 'a')
    config = make_config(tableddl=True, data=True, use_table_list=True, table_list=['nope'])

    state = MigrationManager(config, source, target).run()

    assert state.stats == []
    assert target.statements == []


def test_table_privileges_skip_missing_table_and_role(source, target, make_config):
    source.table_privs = [
        TablePrivInfo(host='%', db='shop', user='app', table='gone', privileges='Select'),
        TablePrivInfo(host='%', db='shop', user='ghost', table='a', privileges='Select'),
    ]
    target.existing = {'a'}
    target.fail_on = 'TO "ghost"'
    target.fail_message = 'role "ghost" does not exist'

    state = MigrationManager(make_config(table_privileges=True), source, target).run()

    assert state.completed_tasks == state.total_tasks == 2
    assert target.statements == []


def test_no_phases_enabled(source, target, make_config):
    state = MigrationManager(make_config(), source, target).run()
    assert state.stats == []


def test_total_tasks_known_before_first_phase(source, target, make_config):
    add_tables(source, 'a', 'b')
    source.users = [UserInfo(user='app', host='%')]
    manager = MigrationManager(make_config(tableddl=True, data=True, indexes=True, users=True), source, target)
    seen = []
    exec_ddl = target.exec_ddl

    def spy(statement):
        seen.append(manager.state.progress())
        return exec_ddl(statement)

    target.exec_ddl = spy
    state = manager.run()

    # 2 tables x (ddl, data, index) + 1 user
    first = seen[0]
    assert first == (0, 7)
    assert all(total == 7 for _, total in seen)
    assert state.completed_tasks == state.total_tasks == 7


def test_plan_reads_every_phase_up_front(source, target, make_config):
    add_tables(source, 'a')
    source.views = [ViewInfo(name='v', definition='select 1')]
    source.table_privs = [TablePrivInfo(host='%', db='shop', user='app', table='a', privileges='Select')]
    manager = MigrationManager(make_config(**ALL_PHASES), source, target)
    manager.tables = source.list_tables(['a'])

    plan = manager.plan(manager.enabled_phases())

    assert {phase: len(items) for phase, items in plan.items()} == {
        'TableDDL': 1, 'Data': 1, 'Views': 1, 'Indexes': 1, 'Functions': 0,
        'Users': 0, 'TableGrants': 1, 'TablePrivileges': 1,
    }
