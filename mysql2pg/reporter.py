"""
Console output: progress line, version table and end-of-run summary
"""
import sys
import threading
from typing import Dict, List, Optional, Tuple

from mysql2pg.models import Inconsistency, StageStat

BAR_WIDTH = 20
MIN_PERCENT_STEP = 0.5


def render_bar(percent: float) -> str:
    """20-cell bar: dashes for done cells, an arrow head, spaces for the rest"""
    filled = min(BAR_WIDTH, max(0, int(percent / 100 * BAR_WIDTH)))
    return '-' * filled + '>' + ' ' * max(0, BAR_WIDTH - filled - 1)


def overall_percent(completed: int, total: int) -> float:
    return completed / total * 100 if total else 0.0


class ProgressBar:
    """Per-table progress line that redraws only on visible change"""

    def __init__(self, enabled: bool = True, stream=None, lock: Optional[threading.Lock] = None):
        self.enabled = enabled
        self.stream = stream or sys.stdout
        self.lock = lock or threading.Lock()
        self._last: Dict[str, Tuple[int, float]] = {}

    def update(self, table: str, processed: int, total: int, completed_tasks: int, total_tasks: int) -> bool:
        """Draw the line for table; returns True if anything was written"""
        if not self.enabled:
            return False
        percent = min(100.0, processed / total * 100) if total else 100.0
        filled = int(percent / 100 * BAR_WIDTH)
        with self.lock:
            previous = self._last.get(table)
            if previous is not None:
                last_filled, last_percent = previous
                if filled == last_filled and percent - last_percent < MIN_PERCENT_STEP:
                    return False
            self._last[table] = (filled, percent)
            self.stream.write(
                f"\033[2K\r Progress: {overall_percent(completed_tasks, total_tasks):.2f}% "
                f"({completed_tasks}/{total_tasks}) : sync table {table} [{render_bar(percent)}] {percent:.2f}%"
            )
            self.stream.flush()
        return True

    def finish(self, table: str, rows: int, validation: str, completed_tasks: int, total_tasks: int) -> None:
        """Completion line for one table, printed on its own line"""
        if not self.enabled:
            return
        with self.lock:
            self._last.pop(table, None)
            self.stream.write(
                f"\n Progress: {overall_percent(completed_tasks, total_tasks):.2f}% "
                f"({completed_tasks}/{total_tasks}) : table {table} done, {rows} rows, validation {validation}\n"
            )
            self.stream.flush()


def print_version_table(mysql_version: str, pg_version: str) -> None:
    """Print connected server versions"""
    print(f"\n{'='*60}")
    print(f"{'Database':12} {'Version'}")
    print(f"{'-'*60}")
    print(f"{'MySQL':12} {mysql_version}")
    print(f"{'PostgreSQL':12} {pg_version.split(',')[0]}")
    print(f"{'='*60}\n")


def print_summary(stats: List[StageStat]) -> None:
    """Fixed-width table of phases with object counts and durations"""
    print(f"\n{'='*60}")
    print("MIGRATION SUMMARY")
    print(f"{'='*60}")
    print(f"{'Phase':20} {'Objects':>10} {'Seconds':>12}")
    print(f"{'-'*60}")
    total_objects = 0
    total_seconds = 0.0
    for stat in stats:
        print(f"{stat.name:20} {stat.object_count:>10} {stat.duration:>12.2f}")
        total_objects += stat.object_count
        total_seconds += stat.duration
    print(f"{'-'*60}")
    print(f"{'Total':20} {total_objects:>10} {total_seconds:>12.2f}")
    print(f"{'='*60}")


def print_inconsistencies(inconsistencies: List[Inconsistency]) -> None:
    """Row count mismatches, if any"""
    if not inconsistencies:
        return
    print(f"\n⚠️  DATA INCONSISTENCIES DETECTED ({len(inconsistencies)} table(s))")
    print(f"{'-'*60}")
    print(f"{'Table':30} {'Source':>12} {'Target':>12}")
    for item in inconsistencies:
        print(f"{item.table:30} {item.source_count:>12,} {item.target_count:>12,}")
    print(f"{'-'*60}")
