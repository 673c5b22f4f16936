"""
Counters and results shared by all workers of a run
"""
import threading
from typing import List, Tuple

from mysql2pg.models import Inconsistency, StageStat


class RunState:
    """Task counters, phase statistics and inconsistencies behind one lock"""

    def __init__(self):
        self.lock = threading.Lock()
        self.total_tasks = 0
        self.completed_tasks = 0
        self.stats: List[StageStat] = []
        self.inconsistencies: List[Inconsistency] = []
        self.failed_tables: List[str] = []

    def add_tasks(self, count: int) -> None:
        with self.lock:
            self.total_tasks += count

    def complete_task(self) -> Tuple[int, int]:
        with self.lock:
            self.completed_tasks += 1
            return self.completed_tasks, self.total_tasks

    def progress(self) -> Tuple[int, int]:
        with self.lock:
            return self.completed_tasks, self.total_tasks

    def add_stat(self, stat: StageStat) -> None:
        with self.lock:
            self.stats.append(stat)

    def add_inconsistency(self, item: Inconsistency) -> None:
        with self.lock:
            self.inconsistencies.append(item)

    def add_failed_table(self, table: str) -> None:
        with self.lock:
            self.failed_tables.append(table)
