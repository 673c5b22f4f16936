"""
MySQL CREATE TABLE and index definitions to PostgreSQL

The column block is tokenized on top level commas (quote and parenthesis
aware), so single line and multi line SHOW CREATE TABLE output convert the
same way and comments containing ')' or ',' stay intact.
"""
import re
from typing import List, Optional, Tuple

from mysql2pg.errors import TranslateError
from mysql2pg.models import IndexInfo, TableDDLResult
from mysql2pg.sqltext import (
    escape_literal, find_matching_paren, mask_string_literals, quote_identifier,
    split_top_level, unmask_string_literals,
)

MAX_IDENTIFIER_BYTES = 63

# Words that start a column type; used to find where an unquoted name ends
TYPE_WORDS = (
    'varchar', 'char', 'tinyint', 'smallint', 'mediumint', 'bigint', 'integer', 'int',
    'decimal', 'numeric', 'float', 'double', 'real', 'bit', 'bool', 'boolean',
    'datetime', 'timestamp', 'date', 'time', 'year',
    'tinytext', 'mediumtext', 'longtext', 'text',
    'tinyblob', 'mediumblob', 'longblob', 'blob', 'varbinary', 'binary',
    'json', 'jsonb', 'enum', 'set', 'point', 'geometry', 'serial', 'bigserial',
)
TYPE_WORD_RE = re.compile(r'\b(?:' + '|'.join(TYPE_WORDS) + r')\b', re.IGNORECASE)

CREATE_RE = re.compile(r'^\s*CREATE\s+(TEMPORARY\s+)?TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?', re.IGNORECASE)
TABLE_COMMENT_RE = re.compile(r"\bCOMMENT\s*=?\s*'((?:[^'\\]|''|\\.)*)'", re.IGNORECASE)
INDEX_LINE_RE = re.compile(
    r'^(?:(?:UNIQUE|FULLTEXT|SPATIAL)\s+)?(?:KEY|INDEX)\b(?!\s+(?:' + '|'.join(TYPE_WORDS) + r')\b)',
    re.IGNORECASE,
)
TABLE_OPTION_RE = re.compile(r'\b(?:engine|charset|collate|row_format)\s*=', re.IGNORECASE)
PRIMARY_KEY_RE = re.compile(r'^PRIMARY\s+KEY\b', re.IGNORECASE)

COLUMN_COMMENT_RES = (
    re.compile(r"\s+COMMENT\s+'((?:[^'\\]|''|\\.)*)'", re.IGNORECASE),
    re.compile(r'\s+COMMENT\s+"((?:[^"\\]|""|\\.)*)"', re.IGNORECASE),
)
CHARSET_RE = re.compile(r'\s*\b(?:CHARACTER\s+SET|CHARSET)\s+\w+', re.IGNORECASE)
COLLATE_RE = re.compile(r'\s*\bCOLLATE\s+\w+', re.IGNORECASE)
ON_UPDATE_RE = re.compile(r'\s*\bON\s+UPDATE\s+CURRENT_TIMESTAMP(?:\s*\(\s*\d*\s*\))?', re.IGNORECASE)
UNSIGNED_RE = re.compile(r'\s+\b(?:UNSIGNED|ZEROFILL)\b', re.IGNORECASE)
AUTO_INCREMENT_RE = re.compile(r'\s*\bAUTO_INCREMENT\b', re.IGNORECASE)
BASE_TYPE_RE = re.compile(r'^\s*(double\s+precision|\w+)', re.IGNORECASE)

INTEGER_TYPES = {'int': 'INTEGER', 'integer': 'INTEGER', 'mediumint': 'INTEGER',
                 'smallint': 'SMALLINT', 'bigint': 'BIGINT', 'year': 'INTEGER'}
TEXT_TYPES = ('text', 'tinytext', 'mediumtext', 'longtext')
BINARY_TYPES = ('blob', 'tinyblob', 'mediumblob', 'longblob', 'binary', 'varbinary')


def _strip_quotes(name: str) -> str:
    name = name.strip()
    if len(name) >= 2 and name[0] == name[-1] and name[0] in ('"', "'"):
        return name[1:-1].replace(name[0] * 2, name[0])
    return name


def _clean_comment(comment: str) -> str:
    """Unescape a MySQL comment and drop control characters"""
    comment = comment.replace("''", "'").replace("\\'", "'").replace('\\n', '')
    for ch in ('\r', '\n', '\t'):
        comment = comment.replace(ch, '')
    return comment


def convert_type(mysql_type: str, args: str = '') -> str:
    """Map one MySQL base type (plus its parenthesized arguments) to PostgreSQL"""
    base = re.sub(r'\s+', ' ', mysql_type.lower())
    args = re.sub(r'\s+', '', args or '')

    if base == 'tinyint':
        return 'BOOLEAN' if args == '(1)' else 'SMALLINT'
    if base in INTEGER_TYPES:
        return INTEGER_TYPES[base]
    if base in ('serial', 'bigserial'):
        return base.upper()
    if base in ('decimal', 'numeric'):
        return 'DECIMAL' + args
    if base == 'float':
        return 'REAL'
    if base in ('double', 'double precision', 'real'):
        return 'DOUBLE PRECISION'
    if base == 'varchar':
        if args == '(0)':
            return 'VARCHAR(1)'
        return 'VARCHAR' + args
    if base == 'char':
        return 'CHAR' + args
    if base in TEXT_TYPES:
        return 'TEXT'
    if base in BINARY_TYPES:
        return 'BYTEA'
    if base in ('datetime', 'timestamp'):
        return 'TIMESTAMP'
    if base in ('date', 'time'):
        return base.upper() + (args if base == 'time' else '')
    if base in ('bool', 'boolean'):
        return 'BOOLEAN'
    if base == 'json':
        return 'JSON'
    if base == 'jsonb':
        return 'JSONB'
    if base in ('enum', 'set'):
        return 'VARCHAR(255)'
    return base.upper() + args


def _convert_attributes(rest: str, pg_type: str) -> str:
    """Clean the part of a column definition that follows the type"""
    masked, literals = mask_string_literals(rest)
    masked = re.sub(r'\bdefault\s*=\s*', 'DEFAULT ', masked, flags=re.IGNORECASE)
    masked = re.sub(r'\bcurrent_timestamp\s*\((\d+)\)\s*\(\d+\)', r'CURRENT_TIMESTAMP(\1)',
                    masked, flags=re.IGNORECASE)
    masked = re.sub(r'\bcurrent_timestamp\s*\(\s*\)', 'CURRENT_TIMESTAMP', masked, flags=re.IGNORECASE)
    masked = re.sub(r'\bcurrent_timestamp\b', 'CURRENT_TIMESTAMP', masked, flags=re.IGNORECASE)
    masked = re.sub(r'\s+DEFAULT\s+NULL\b', '', ' ' + masked, flags=re.IGNORECASE)
    masked = re.sub(r'\bNOT\s+NULL\b', 'NOT NULL', masked, flags=re.IGNORECASE)
    masked = re.sub(r'\bdefault\b', 'DEFAULT', masked, flags=re.IGNORECASE)

    # zero dates have no PostgreSQL equivalent
    def drop_zero_date(m):
        literal = literals[int(m.group(1))]
        return '' if literal.startswith("'0000-00-00") else m.group(0)
    masked = re.sub(r'\s+DEFAULT\s+__str_lit_(\d+)__', drop_zero_date, masked)

    if pg_type == 'BOOLEAN':
        masked = re.sub(r'\bDEFAULT\s+0\b', 'DEFAULT false', masked)
        masked = re.sub(r'\bDEFAULT\s+1\b', 'DEFAULT true', masked)
    if pg_type in ('SERIAL', 'BIGSERIAL'):
        masked = re.sub(r'\s+DEFAULT\s+\S+', '', masked)

    masked = re.sub(r'\s+', ' ', masked).strip()
    return unmask_string_literals(masked, literals)


def _split_column(entry: str) -> Tuple[str, str]:
    """Split a column definition into (name, type expression)"""
    if entry[0] in ('"', "'"):
        quote = entry[0]
        end = 1
        while end < len(entry):
            if entry[end] == quote:
                if end + 1 < len(entry) and entry[end + 1] == quote:
                    end += 2
                    continue
                break
            end += 1
        return _strip_quotes(entry[:end + 1]), entry[end + 1:].strip()

    first_space = re.search(r'\s', entry)
    if first_space:
        match = TYPE_WORD_RE.search(entry, first_space.start())
        if match:
            return entry[:match.start()].strip(), entry[match.start():].strip()
        return entry[:first_space.start()], entry[first_space.start():].strip()
    return entry, ''


def _primary_key_column(entry: str) -> str:
    open_pos = entry.find('(')
    if open_pos == -1:
        return ''
    close_pos = find_matching_paren(entry, open_pos)
    if close_pos == -1:
        return ''
    columns = split_top_level(entry[open_pos + 1:close_pos])
    first = columns[0].strip()
    # prefix length such as "name"(10)
    first = re.sub(r'\s*\(\d+\)\s*$', '', first)
    first = re.sub(r'\s+(?:ASC|DESC)$', '', first, flags=re.IGNORECASE)
    return _strip_quotes(first)


def _column_block(text: str, open_pos: int) -> Tuple[str, str]:
    """Return (column block, table option tail)"""
    close_pos = find_matching_paren(text, open_pos)
    if close_pos == -1:
        close_pos = text.rfind(')')
    if close_pos <= open_pos:
        raise TranslateError('CREATE TABLE statement has no column block')
    return text[open_pos + 1:close_pos], text[close_pos + 1:]


def _is_skipped_entry(masked: str) -> bool:
    upper = masked.upper()
    if upper in ('', ')'):
        return True
    if upper.startswith('CONSTRAINT') or upper.startswith('CHECK'):
        return True
    if 'FOREIGN KEY' in upper or 'USING BTREE' in upper or 'USING HASH' in upper:
        return True
    if INDEX_LINE_RE.match(masked):
        return True
    if re.match(r'^UNIQUE\s*\(', masked, re.IGNORECASE):
        return True
    return bool(TABLE_OPTION_RE.search(masked))


def convert_column(entry: str) -> Tuple[str, str, str]:
    """
    Convert one column definition.

    Args:
        entry: column definition from the CREATE TABLE block, backticks already
            turned into double quotes

    Returns:
        (column name, PostgreSQL type expression, comment)
    """
    name, type_expr = _split_column(entry)
    if not name:
        raise TranslateError(f"Cannot parse column definition: {entry}")

    comment = ''
    for comment_re in COLUMN_COMMENT_RES:
        match = comment_re.search(type_expr)
        if match:
            comment = _clean_comment(match.group(1))
            type_expr = type_expr[:match.start()] + type_expr[match.end():]
            break
    type_expr = type_expr.strip().rstrip(',')

    type_expr = CHARSET_RE.sub('', type_expr)
    type_expr = COLLATE_RE.sub('', type_expr)
    type_expr = ON_UPDATE_RE.sub('', type_expr)
    type_expr = UNSIGNED_RE.sub('', type_expr)

    base_match = BASE_TYPE_RE.match(type_expr)
    if not base_match:
        raise TranslateError(f"Column {name} has no type: {entry}")
    base = base_match.group(1)
    rest = type_expr[base_match.end():]
    args = ''
    if rest.lstrip().startswith('('):
        open_pos = len(rest) - len(rest.lstrip())
        close_pos = find_matching_paren(rest, open_pos)
        if close_pos == -1:
            raise TranslateError(f"Unbalanced type arguments for column {name}: {entry}")
        args = rest[open_pos:close_pos + 1]
        rest = rest[close_pos + 1:]

    if AUTO_INCREMENT_RE.search(rest):
        rest = AUTO_INCREMENT_RE.sub('', rest)
        if base.lower() == 'bigint':
            pg_type = 'BIGSERIAL'
        elif base.lower() in ('int', 'integer', 'mediumint', 'smallint', 'tinyint'):
            pg_type = 'SERIAL'
        else:
            pg_type = convert_type(base, args)
    else:
        pg_type = convert_type(base, args)

    attributes = _convert_attributes(rest, pg_type)
    full_type = f"{pg_type} {attributes}" if attributes else pg_type
    return name, full_type, comment


def convert_table_ddl(create_sql: str, lowercase_columns: bool = False) -> TableDDLResult:
    """Convert a MySQL CREATE TABLE statement to PostgreSQL"""
    text = create_sql.replace('`', '"').strip()

    match = CREATE_RE.match(text)
    if not match:
        raise TranslateError(f"Not a CREATE TABLE statement: {create_sql[:80]}")
    temporary = bool(match.group(1))

    open_pos = text.find('(', match.end())
    if open_pos == -1:
        raise TranslateError(f"CREATE TABLE statement has no column block: {create_sql[:80]}")
    table_name = text[match.end():open_pos].strip()
    if '.' in table_name:
        table_name = split_top_level(table_name, '.')[-1]
    table_name = _strip_quotes(table_name)
    if not table_name:
        raise TranslateError(f"CREATE TABLE statement has no table name: {create_sql[:80]}")

    block, tail = _column_block(text, open_pos)
    table_comment = ''
    comment_match = TABLE_COMMENT_RE.search(tail)
    if comment_match:
        table_comment = _clean_comment(comment_match.group(1))

    result = TableDDLResult(ddl='', table_name=table_name, table_comment=table_comment,
                            temporary=temporary)
    definitions = []
    emitted = {}
    primary_key = ''

    for raw_entry in split_top_level(block, ','):
        entry = raw_entry.replace('\r', ' ').replace('\n', ' ').strip()
        masked, _ = mask_string_literals(entry)
        if PRIMARY_KEY_RE.match(masked):
            primary_key = primary_key or _primary_key_column(entry)
            continue
        if _is_skipped_entry(masked):
            continue

        name, pg_type, comment = convert_column(entry)
        pg_name = name.lower() if lowercase_columns else name
        emitted[name.lower()] = pg_name
        result.column_names[name] = quote_identifier(pg_name)
        if comment:
            result.column_comments[name] = comment
        definitions.append(f"  {quote_identifier(pg_name)} {pg_type}")

    if not definitions:
        raise TranslateError(f"Table {table_name} has no columns")

    if primary_key:
        pk_name = emitted.get(primary_key.lower(), primary_key)
        if lowercase_columns:
            pk_name = pk_name.lower()
        result.primary_key = pk_name
        definitions.append(f"  PRIMARY KEY ({quote_identifier(pk_name)})")

    keyword = 'CREATE TEMPORARY TABLE' if temporary else 'CREATE TABLE'
    result.ddl = f"{keyword} {quote_identifier(table_name)} (\n" + ',\n'.join(definitions) + "\n)"
    return result


def column_comment_statements(result: TableDDLResult) -> List[str]:
    """COMMENT ON COLUMN statements for every column with a comment"""
    statements = []
    table = quote_identifier(result.table_name)
    for original, comment in result.column_comments.items():
        column = result.column_names.get(original)
        if not column or not comment:
            continue
        statements.append(f"COMMENT ON COLUMN {table}.{column} IS '{escape_literal(comment)}';")
    return statements


def table_comment_statement(result: TableDDLResult) -> Optional[str]:
    if not result.table_comment:
        return None
    return f"COMMENT ON TABLE {quote_identifier(result.table_name)} IS '{escape_literal(result.table_comment)}';"


def index_name(table: str, name: str) -> str:
    """Lowercased <table>_<index>, cut to the PostgreSQL identifier limit"""
    full = f"{table}_{name}".lower()
    encoded = full.encode('utf-8')
    if len(encoded) <= MAX_IDENTIFIER_BYTES:
        return full
    cut = encoded[:MAX_IDENTIFIER_BYTES].decode('utf-8', errors='ignore')
    if '_' in cut:
        cut = cut[:cut.rfind('_')]
    return cut.rstrip('_') or cut


def convert_index_ddl(index: IndexInfo, lowercase_columns: bool = False) -> str:
    """CREATE INDEX statement for a secondary index; empty if nothing to create"""
    if not index.name:
        raise TranslateError(f"Index name is empty on table {index.table}")
    if not index.table:
        raise TranslateError(f"Index {index.name} has no table")

    columns = []
    for column in index.columns:
        if column.lower() == 'pri_key':
            continue
        if not column:
            raise TranslateError(f"Index {index.name} on {index.table} has an empty column name")
        columns.append(quote_identifier(column.lower() if lowercase_columns else column))
    if not columns:
        return ''

    unique = 'UNIQUE ' if index.unique else ''
    return (f"CREATE {unique}INDEX IF NOT EXISTS {quote_identifier(index_name(index.table, index.name))} "
            f"ON {quote_identifier(index.table)} ({', '.join(columns)});")
