"""
Shared fakes for the MySQL source and PostgreSQL target
"""
import pytest

from mysql2pg.config import Config, apply_defaults
from mysql2pg.errors import CatalogError, ExecuteError, LoadError, is_idempotent_error
from mysql2pg.models import ColumnInfo, TableInfo


class FakeSource:
    """In-memory catalog with rows; records every page fetch"""

    def __init__(self):
        self.tables = {}
        self.rows = {}
        self.pks = {}
        self.views = []
        self.functions = []
        self.users = []
        self.table_privs = []
        self.keyset_calls = []
        self.offset_calls = []

    def add_table(self, name, columns, rows=(), pk=None, ddl=None, indexes=None):
        cols = [ColumnInfo(name=c, type=t) for c, t in columns]
        if ddl is None:
            defs = ', '.join(f'`{c}` {t}' for c, t in columns)
            if pk:
                defs += f', PRIMARY KEY (`{pk}`)'
            ddl = f'CREATE TABLE `{name}` ({defs}) ENGINE=InnoDB'
        self.tables[name] = TableInfo(name=name, ddl=ddl, columns=cols, indexes=list(indexes or []))
        self.rows[name] = list(rows)
        self.pks[name] = pk

    def list_table_names(self):
        return list(self.tables)

    def list_tables(self, names=None):
        names = self.list_table_names() if names is None else names
        return [self.tables[n] for n in names if n in self.tables]

    def columns(self, table):
        return self.tables[table].columns

    def row_count(self, table):
        return len(self.rows[table])

    def primary_key(self, table):
        if not self.pks.get(table):
            raise CatalogError(f"Table {table} has no primary key")
        return self.pks[table]

    def stream_by_keyset(self, table, cols, pk, last_value, limit):
        self.keyset_calls.append(last_value)
        index = [c.name for c in self.tables[table].columns].index(pk)
        rows = sorted(self.rows[table], key=lambda r: r[index])
        if last_value is not None:
            rows = [r for r in rows if r[index] > last_value]
        return rows[:limit]

    def stream_by_offset(self, table, cols, offset, limit):
        self.offset_calls.append(offset)
        return self.rows[table][offset:offset + limit]

    def list_views(self):
        return list(self.views)

    def list_functions(self):
        return list(self.functions)

    def list_users(self):
        return list(self.users)

    def list_table_privileges(self):
        return list(self.table_privs)


class FakeTx:
    def __init__(self, target):
        self.target = target
        self.pending = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.target.commits += 1
            for table, count in self.pending.items():
                self.target.loaded[table] = self.target.loaded.get(table, 0) + count
        else:
            self.target.rollbacks += 1
        return False


class FakeTarget:
    """Records statements, loads and transaction boundaries"""

    def __init__(self):
        self.statements = []
        self.existing = set()
        self.loaded = {}
        self.load_calls = []
        self.load_chunks = []
        self.commits = 0
        self.rollbacks = 0
        self.truncated = []
        self.dropped_views = []
        self.grants = []
        self.fail_on = None
        self.fail_message = 'syntax error at or near "x"'
        self.fail_load = False
        self.count_override = {}

    def exec_ddl(self, statement):
        if self.fail_on and self.fail_on in statement:
            if is_idempotent_error(self.fail_message):
                return False
            raise ExecuteError(f"{self.fail_message}\nStatement: {statement}")
        self.statements.append(statement)
        return True

    def table_exists(self, name):
        return name in self.existing

    def begin_tx(self):
        return FakeTx(self)

    def truncate(self, tx, table):
        self.truncated.append(table)

    def bulk_insert(self, tx, table, columns, rows, batch_size, pk=None, column_types=None):
        if self.fail_load:
            raise LoadError(f"Bulk load into {table} failed: boom")
        self.load_calls.append((table, list(columns), len(rows), pk))
        for start in range(0, len(rows), batch_size):
            self.load_chunks.append(len(rows[start:start + batch_size]))
        tx.pending[table] = tx.pending.get(table, 0) + len(rows)
        return len(rows), None

    def count_rows(self, table):
        if table in self.count_override:
            return self.count_override[table]
        return self.loaded.get(table, 0)

    def grant(self, user, table, privileges):
        self.grants.append((user, table, list(privileges)))
        return True

    def drop_view(self, name):
        self.dropped_views.append(name)


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def target():
    return FakeTarget()


@pytest.fixture
def make_config():
    def factory(**options):
        config = Config()
        config.mysql.host = 'mysql.local'
        config.mysql.username = 'root'
        config.mysql.database = 'shop'
        config.postgresql.host = 'pg.local'
        config.postgresql.username = 'postgres'
        config.postgresql.database = 'shop'
        apply_defaults(config)
        for key, value in options.items():
            if hasattr(config.limits, key):
                setattr(config.limits, key, value)
            else:
                setattr(config.options, key, value)
        return config
    return factory
