"""
Catalog descriptors and run statistics shared across the engine
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass
class ColumnInfo:
    """One column as reported by SHOW FULL COLUMNS"""
    name: str
    type: str
    nullable: bool = True
    key: str = ''
    default: Optional[str] = None
    extra: str = ''
    comment: str = ''


@dataclass
class IndexInfo:
    """Secondary index; PRIMARY is filtered out at read time"""
    name: str
    table: str
    columns: List[str] = field(default_factory=list)
    unique: bool = False


@dataclass
class TableInfo:
    """Table metadata read once from the catalog"""
    name: str
    ddl: str
    columns: List[ColumnInfo] = field(default_factory=list)
    indexes: List[IndexInfo] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]


@dataclass
class ViewInfo:
    name: str
    definition: str


@dataclass
class FunctionInfo:
    name: str
    definition: str
    return_type: str = ''


@dataclass
class UserInfo:
    """MySQL account identity plus its SHOW GRANTS output"""
    user: str
    host: str
    grants: List[str] = field(default_factory=list)


@dataclass
class TablePrivInfo:
    """Row of mysql.tables_priv"""
    host: str
    db: str
    user: str
    table: str
    privileges: str


@dataclass
class TableDDLResult:
    """Converted CREATE TABLE plus the comment metadata pulled out of it"""
    ddl: str
    table_name: str
    table_comment: str = ''
    column_names: Dict[str, str] = field(default_factory=dict)
    column_comments: Dict[str, str] = field(default_factory=dict)
    primary_key: str = ''
    temporary: bool = False


@dataclass
class StageStat:
    """Timing for one executed phase"""
    name: str
    start: datetime
    end: Optional[datetime] = None
    object_count: int = 0

    @property
    def duration(self) -> float:
        if self.end is None:
            return 0.0
        return (self.end - self.start).total_seconds()


@dataclass
class Inconsistency:
    """Row count mismatch found after a table sync"""
    table: str
    source_count: int
    target_count: int
