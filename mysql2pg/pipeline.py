"""
Per-table data sync: paginated fetch from MySQL, bulk load into PostgreSQL
"""
import logging
from dataclasses import dataclass
from typing import Optional

from mysql2pg.config import ConversionLimits, ConversionOptions
from mysql2pg.errors import CatalogError, LoadError, ValidateError
from mysql2pg.models import Inconsistency, TableInfo
from mysql2pg.reporter import ProgressBar
from mysql2pg.state import RunState

logger = logging.getLogger(__name__)

DEFAULT_BATCH = 10000

# Validation outcomes
CONSISTENT = 'consistent'
INCONSISTENT = 'inconsistent'
SKIPPED = 'skipped'


@dataclass
class SyncResult:
    """Outcome of one table's data phase"""
    table: str
    source_rows: int = 0
    loaded_rows: int = 0
    mode: str = ''
    validation: str = SKIPPED
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TableSync:
    """Copies the rows of one table at a time"""

    def __init__(self, source, target, options: ConversionOptions, limits: ConversionLimits,
                 state: Optional[RunState] = None, progress: Optional[ProgressBar] = None):
        self.source = source
        self.target = target
        self.options = options
        self.limits = limits
        self.state = state or RunState()
        self.progress = progress or ProgressBar(enabled=False)
        self.page_size = limits.max_rows_per_batch if limits.max_rows_per_batch > 0 else DEFAULT_BATCH
        self.batch_size = limits.batch_insert_size if limits.batch_insert_size > 0 else DEFAULT_BATCH

    def _target_name(self, column: str) -> str:
        return column.lower() if self.options.lowercase_columns else column

    def _primary_key(self, table: str) -> Optional[str]:
        try:
            return self.source.primary_key(table)
        except CatalogError as e:
            logger.info(f"{table}: {e}, using offset pagination")
            return None

    def sync(self, table: TableInfo) -> SyncResult:
        """Sync one table; load failures abort this table only"""
        name = table.name
        result = SyncResult(table=name)
        try:
            self._sync(table, result)
        except (LoadError, CatalogError) as e:
            result.error = str(e)
            logger.error(f"Data sync of table {name} aborted: {e}")
            self.state.add_failed_table(name)
        return result

    def _sync(self, table: TableInfo, result: SyncResult) -> None:
        name = table.name
        columns = self.source.columns(name)
        total = self.source.row_count(name)
        result.source_rows = total
        if total == 0:
            logger.info(f"Table {name} has no data, skip")
            return

        if self.options.truncate_before_sync:
            with self.target.begin_tx() as tx:
                self.target.truncate(tx, name)
            logger.info(f"Truncated target table {name}")

        source_cols = [col.name for col in columns]
        target_cols = [self._target_name(col) for col in source_cols]
        column_types = [col.type for col in columns]

        pk = self._primary_key(name)
        pk_index = None
        if pk is not None:
            lookup = [c.lower() for c in source_cols]
            if pk.lower() in lookup:
                pk_index = lookup.index(pk.lower())
            else:
                logger.warning(f"{name}: primary key {pk} not in column list, using offset pagination")
                pk = None
        result.mode = 'keyset' if pk is not None else 'offset'
        pk_target = self._target_name(pk) if pk is not None else None

        processed = 0
        last_value = None
        offset = 0
        while processed < total:
            if pk is not None:
                rows = self.source.stream_by_keyset(name, source_cols, pk, last_value, self.page_size)
            else:
                rows = self.source.stream_by_offset(name, source_cols, offset, self.page_size)
            if not rows:
                break

            with self.target.begin_tx() as tx:
                inserted, _ = self.target.bulk_insert(tx, name, target_cols, rows, self.batch_size,
                                                      pk_target, column_types)

            if pk_index is not None:
                last_value = rows[-1][pk_index]
            else:
                offset += len(rows)
            processed += inserted
            result.loaded_rows = processed

            completed, total_tasks = self.state.progress()
            self.progress.update(name, processed, total, completed, total_tasks)

        result.validation = self._validate(name, total)

    def _validate(self, table: str, source_count: int) -> str:
        if not self.options.validate_data:
            logger.info(f"Table {table} validation skipped")
            return SKIPPED
        try:
            target_count = self.target.count_rows(table)
        except ValidateError as e:
            logger.error(f"Validation of table {table} failed: {e}")
            return SKIPPED
        if target_count != source_count:
            logger.error(f"Table {table} inconsistent: source {source_count} rows, target {target_count} rows")
            self.state.add_inconsistency(Inconsistency(table=table, source_count=source_count,
                                                       target_count=target_count))
            return INCONSISTENT
        logger.info(f"Table {table} consistent ({source_count} rows)")
        return CONSISTENT
