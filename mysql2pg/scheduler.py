"""
Phase scheduler: runs the enabled phases in order, each as concurrent batches
"""
import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from mysql2pg.config import Config
from mysql2pg.ddl import column_comment_statements, convert_index_ddl, convert_table_ddl, table_comment_statement
from mysql2pg.errors import ExecuteError, InternalError, TranslateError, is_missing_role_error
from mysql2pg.functions import convert_function_ddl
from mysql2pg.grants import convert_table_privilege, convert_user, pg_role_name, table_privileges
from mysql2pg.models import StageStat, TableInfo, TablePrivInfo
from mysql2pg.pipeline import TableSync
from mysql2pg.reporter import ProgressBar
from mysql2pg.state import RunState
from mysql2pg.views import convert_view_ddl

logger = logging.getLogger(__name__)

PHASE_ORDER = ('TableDDL', 'Data', 'Views', 'Indexes', 'Functions', 'Users', 'TableGrants', 'TablePrivileges')


def chunked(items: Sequence, size: int) -> List[list]:
    size = max(1, size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class MigrationManager:
    """Drives one migration run from catalog read to the last phase"""

    def __init__(self, config: Config, source, target, progress: Optional[ProgressBar] = None):
        self.config = config
        self.options = config.options
        self.limits = config.limits
        self.source = source
        self.target = target
        self.state = RunState()
        self.progress = progress or ProgressBar(enabled=False)
        self.semaphore = threading.Semaphore(max(1, self.limits.concurrency))
        self.syncer = TableSync(source, target, self.options, self.limits, self.state, self.progress)
        self.tables: List[TableInfo] = []
        self._first_error: Optional[Exception] = None
        self._error_lock = threading.Lock()
        self._table_privs: Optional[List[TablePrivInfo]] = None

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def enabled_phases(self) -> List[str]:
        flags = {
            'TableDDL': self.options.tableddl,
            'Data': self.options.data,
            'Views': self.options.view,
            'Indexes': self.options.indexes,
            'Functions': self.options.functions,
            'Users': self.options.users,
            'TableGrants': self.options.grant,
            'TablePrivileges': self.options.table_privileges,
        }
        return [phase for phase in PHASE_ORDER if flags[phase]]

    def select_table_names(self) -> List[str]:
        """Catalog table names narrowed to table_list when use_table_list is set"""
        names = self.source.list_table_names()
        if not self.options.use_table_list:
            return names
        available = set(names)
        for wanted in self.options.table_list:
            if wanted not in available:
                logger.warning(f"Table {wanted} from table_list not found in source database")
        wanted = set(self.options.table_list)
        return [name for name in names if name in wanted]

    def _needs_tables(self, phases: List[str]) -> bool:
        return any(p in ('TableDDL', 'Data', 'Indexes', 'TableGrants') for p in phases)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self) -> RunState:
        """Run every enabled phase; raises the first phase-aborting error"""
        phases = self.enabled_phases()
        if not phases:
            logger.warning("No conversion phase enabled, nothing to do")
            return self.state

        if self._needs_tables(phases) or self.options.use_table_list:
            names = self.select_table_names()
            if self.options.use_table_list and not names:
                logger.warning("No tables left after applying table_list, exiting")
                return self.state
            self.tables = self.source.list_tables(names)
            logger.info(f"Found {len(self.tables)} tables to migrate")

        plan = self.plan(phases)
        self.state.add_tasks(sum(len(items) for items in plan.values()))
        logger.info(f"Planned {self.state.total_tasks} tasks across {len(phases)} phases")

        runners: Dict[str, Callable[[list], int]] = {
            'TableDDL': self._run_table_ddl,
            'Data': self._run_data,
            'Views': self._run_views,
            'Indexes': self._run_indexes,
            'Functions': self._run_functions,
            'Users': self._run_users,
            'TableGrants': self._run_table_grants,
            'TablePrivileges': self._run_table_privileges,
        }
        for phase in phases:
            stat = StageStat(name=phase, start=datetime.now())
            logger.info(f"Phase {phase} started")
            try:
                stat.object_count = runners[phase](plan[phase])
            finally:
                stat.end = datetime.now()
                self.state.add_stat(stat)
            if self._first_error is not None:
                logger.error(f"Phase {phase} aborted: {self._first_error}")
                raise self._first_error
            logger.info(f"Phase {phase} finished: {stat.object_count} objects in {stat.duration:.2f}s")

        completed, total = self.state.progress()
        if completed != total:
            raise InternalError(f"Task accounting mismatch: {completed} of {total} tasks completed")
        return self.state

    def plan(self, phases: List[str]) -> Dict[str, list]:
        """Objects each enabled phase works on, read before the first phase starts"""
        plan: Dict[str, list] = {}
        for phase in phases:
            if phase in ('TableDDL', 'Data', 'TableGrants'):
                plan[phase] = list(self.tables)
            elif phase == 'Indexes':
                plan[phase] = [index for table in self.tables for index in table.indexes]
            elif phase == 'Views':
                plan[phase] = self.source.list_views()
            elif phase == 'Functions':
                plan[phase] = self.source.list_functions()
            elif phase == 'Users':
                plan[phase] = self.source.list_users()
            elif phase == 'TablePrivileges':
                plan[phase] = self._list_table_privileges()
        return plan

    def _record_error(self, error: Exception) -> None:
        with self._error_lock:
            if self._first_error is None:
                self._first_error = error

    def _failed(self) -> bool:
        with self._error_lock:
            return self._first_error is not None

    def _run_item(self, item, worker: Callable, on_done: Optional[Callable] = None) -> None:
        outcome = None
        with self.semaphore:
            try:
                outcome = worker(item)
            except TranslateError as e:
                logger.error(f"Skipping {getattr(item, 'name', item)}: {e}")
        completed, total = self.state.complete_task()
        if on_done is not None:
            on_done(item, outcome, completed, total)

    def _run_batch(self, batch: list, worker: Callable, on_done: Optional[Callable] = None) -> None:
        for item in batch:
            if self._failed():
                return
            self._run_item(item, worker, on_done)

    def run_batches(self, items: Sequence, batch_size: int, worker: Callable,
                    on_done: Optional[Callable] = None) -> int:
        """Dispatch items as concurrent batches and wait for all of them"""
        if not items:
            return 0
        batches = chunked(items, batch_size)
        workers = min(len(batches), max(1, self.limits.concurrency))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self._run_batch, batch, worker, on_done) for batch in batches]
            for future in as_completed(futures):
                try:
                    future.result()
                except Exception as e:
                    self._record_error(e)
        return len(items)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run_table_ddl(self, tables: List[TableInfo]) -> int:
        return self.run_batches(tables, self.limits.max_ddl_per_batch, self._create_table)

    def _create_table(self, table: TableInfo) -> None:
        if self.options.skip_existing_tables and self.target.table_exists(table.name):
            logger.info(f"Table {table.name} already exists, skip")
            return
        result = convert_table_ddl(table.ddl, self.options.lowercase_columns)
        self.target.exec_ddl(result.ddl)
        comment = table_comment_statement(result)
        if comment:
            self.target.exec_ddl(comment)
        for statement in column_comment_statements(result):
            self.target.exec_ddl(statement)
        logger.info(f"Created table {table.name}")

    def _run_data(self, tables: List[TableInfo]) -> int:
        return self.run_batches(tables, self.limits.max_ddl_per_batch, self.syncer.sync, self._table_synced)

    def _table_synced(self, table: TableInfo, result, completed: int, total: int) -> None:
        if result is not None:
            self.progress.finish(table.name, result.loaded_rows, result.validation, completed, total)

    def _run_views(self, views: list) -> int:
        return self.run_batches(views, self.limits.max_ddl_per_batch, self._create_view)

    def _create_view(self, view) -> None:
        statement = convert_view_ddl(view.name, view.definition, self.config.mysql.database)
        self.target.drop_view(view.name)
        self.target.exec_ddl(statement)
        logger.info(f"Created view {view.name}")

    def _run_indexes(self, indexes: list) -> int:
        return self.run_batches(indexes, self.limits.max_indexes_per_batch, self._create_index)

    def _create_index(self, index) -> None:
        statement = convert_index_ddl(index, self.options.lowercase_columns)
        if not statement:
            logger.info(f"Index {index.name} on {index.table} covers only the primary key, skip")
            return
        self.target.exec_ddl(statement)

    def _run_functions(self, functions: list) -> int:
        return self.run_batches(functions, self.limits.max_functions_per_batch, self._create_function)

    def _create_function(self, function) -> None:
        for statement in convert_function_ddl(function):
            self.target.exec_ddl(statement)
        logger.info(f"Created function {function.name}")

    def _run_users(self, users: list) -> int:
        return self.run_batches(users, self.limits.max_users_per_batch, self._create_user)

    def _create_user(self, user) -> None:
        statements = convert_user(user, self.config.postgresql.database)
        if statements is None:
            logger.info(f"Skipping system account {user.user}@{user.host}")
            return
        for statement in statements:
            self.target.exec_ddl(statement)
        logger.info(f"Created user {pg_role_name(user.user)}")

    def _list_table_privileges(self) -> List[TablePrivInfo]:
        if self._table_privs is None:
            self._table_privs = self.source.list_table_privileges()
        return self._table_privs

    def _run_table_grants(self, tables: List[TableInfo]) -> int:
        by_table: Dict[str, List[TablePrivInfo]] = defaultdict(list)
        for priv in self._list_table_privileges():
            by_table[priv.table].append(priv)

        def grant_table(table: TableInfo) -> None:
            for priv in by_table.get(table.name, []):
                self.target.grant(pg_role_name(priv.user), table.name, table_privileges(priv.privileges))

        return self.run_batches(tables, self.limits.max_ddl_per_batch, grant_table)

    def _run_table_privileges(self, privileges: List[TablePrivInfo]) -> int:
        """Serial: one GRANT per privilege of every tables_priv row"""
        for priv in privileges:
            try:
                if not self.target.table_exists(priv.table):
                    logger.info(f"Table {priv.table} not in target, skipping privileges for {priv.user}")
                    continue
                for statement in convert_table_privilege(priv):
                    try:
                        self.target.exec_ddl(statement)
                    except ExecuteError as e:
                        if not is_missing_role_error(str(e)):
                            raise
                        logger.warning(f"Role for {priv.user} does not exist, skipping: {statement}")
            except TranslateError as e:
                logger.error(f"Skipping privileges row {priv.user}/{priv.table}: {e}")
            except ExecuteError as e:
                self._record_error(e)
                break
            finally:
                self.state.complete_task()
        return len(privileges)
