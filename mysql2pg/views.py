"""
MySQL view definitions to PostgreSQL

Works on the VIEW_DEFINITION text from information_schema. String literals
are masked before any rewrite so their contents are never touched; the rest
of the body is lowercased like PostgreSQL folds unquoted identifiers.
"""
import re
from typing import List

from mysql2pg.errors import TranslateError
from mysql2pg.sqltext import (
    find_matching_paren, mask_string_literals, quote_identifier, replace_function_calls,
    split_top_level_commas, unmask_string_literals,
)

PLACEHOLDER_RE = re.compile(r'^__str_lit_(\d+)__$')
COLUMN_REF_RE = re.compile(r'^(?:"[^"]+"|\w+)(?:\.(?:"[^"]+"|\w+))*$')
QUOTED_COLUMN_RE = re.compile(r'^(?:"[^"]+"\.)*"[^"]+"$')

# MySQL DATE_FORMAT specifiers to PostgreSQL to_char patterns
DATE_FORMAT_MAP = {
    '%Y': 'YYYY', '%y': 'YY', '%m': 'MM', '%c': 'FMMM', '%d': 'DD', '%e': 'FMDD',
    '%H': 'HH24', '%k': 'FMHH24', '%h': 'HH12', '%I': 'HH12', '%l': 'FMHH12',
    '%i': 'MI', '%s': 'SS', '%S': 'SS', '%f': 'US', '%p': 'AM',
    '%M': 'FMMonth', '%b': 'Mon', '%W': 'FMDay', '%a': 'Dy', '%j': 'DDD',
    '%T': 'HH24:MI:SS', '%r': 'HH12:MI:SS AM', '%%': '%',
}

EXTRACT_PARTS = {
    'year': 'year', 'month': 'month', 'day': 'day', 'dayofmonth': 'day',
    'hour': 'hour', 'minute': 'minute', 'second': 'second', 'quarter': 'quarter',
    'week': 'week', 'dayofyear': 'doy',
}

SIMPLE_RENAMES = {
    'ifnull': 'coalesce',
    'lcase': 'lower',
    'ucase': 'upper',
    'rand': 'random',
    'json_object': 'json_build_object',
    'json_array': 'json_build_array',
    'last_insert_id': 'lastval',
    'connection_id': 'pg_backend_pid',
}

ZERO_ARG_CALLS = {
    'curdate': 'current_date',
    'current_date': 'current_date',
    'curtime': 'current_time',
    'current_time': 'current_time',
    'sysdate': 'now()',
    'database': 'current_database()',
    'schema': 'current_schema()',
    'user': 'current_user',
    'current_user': 'current_user',
    'session_user': 'session_user',
    'system_user': 'session_user',
    'uuid': 'gen_random_uuid()::text',
    'uuid_short': '(extract(epoch from clock_timestamp()) * 1000000)::bigint',
}


def _is_value(token: str) -> bool:
    return token.startswith('__str_lit_') or token in ('null', 'true', 'false')


class ViewTranslator:
    """Rewrites one view body; keeps the masked literals alongside the text"""

    def __init__(self, database: str = ''):
        self.database = (database or '').lower()
        self.literals: List[str] = []

    # -- literal helpers -------------------------------------------------

    def _literal_value(self, arg: str):
        match = PLACEHOLDER_RE.match(arg.strip())
        if not match:
            return None
        raw = self.literals[int(match.group(1))]
        return raw[1:-1].replace("''", "'").replace("\\'", "'")

    def _rewrite_literal(self, arg: str, func) -> str:
        """Apply func to the value of a masked literal argument"""
        match = PLACEHOLDER_RE.match(arg.strip())
        if not match:
            return arg
        index = int(match.group(1))
        value = self._literal_value(arg)
        self.literals[index] = "'" + func(value).replace("'", "''") + "'"
        return arg

    def _add_literal(self, value: str) -> str:
        self.literals.append("'" + value.replace("'", "''") + "'")
        return f'__str_lit_{len(self.literals) - 1}__'

    # -- individual rewrites ---------------------------------------------

    def _strip_database(self, text: str) -> str:
        if not self.database:
            return text
        db = re.escape(self.database)
        text = re.sub(r'(?<![\w."])"' + db + r'"\.', '', text)
        return re.sub(r'(?<![\w."])' + db + r'\.(?=["\w])', '', text)

    def _group_concat(self, args: List[str]) -> str:
        inner = ', '.join(args)
        separator = None
        match = re.search(r'\s+separator\s+(__str_lit_\d+__)\s*$', inner)
        if match:
            separator = match.group(1)
            inner = inner[:match.start()]
        inner = re.sub(r'^\s*distinct\s+', '', inner)
        inner = re.sub(r'\s+order\s+by\s+.*$', '', inner)
        if separator is None:
            separator = self._add_literal(',')
        parts = split_top_level_commas(inner)
        expr = ' || '.join(parts) if len(parts) > 1 else parts[0]
        return f"string_agg(cast({expr} as text), {separator})"

    @staticmethod
    def _if(args: List[str]):
        if len(args) != 3:
            return None
        return f"case when {args[0]} then {args[1]} else {args[2]} end"

    @staticmethod
    def _convert(args: List[str]):
        if len(args) == 1:
            match = re.match(r'^(.*)\s+using\s+\w+$', args[0])
            if match:
                return f"cast({match.group(1).strip()} as text)"
            return None
        if len(args) == 2:
            return f"cast({args[0]} as {args[1]})"
        return None

    @staticmethod
    def _cast_types(text: str) -> str:
        text = re.sub(r'\bas\s+signed(?:\s+integer)?\b', 'as integer', text)
        text = re.sub(r'\bas\s+unsigned(?:\s+integer)?\b', 'as bigint', text)
        text = re.sub(r'\bas\s+char\b(?:\s*\(\s*\d+\s*\))?', 'as text', text)
        text = re.sub(r'\bas\s+datetime\b(?:\s*\(\s*\d+\s*\))?', 'as timestamp', text)
        text = re.sub(r'\bas\s+binary\b(?:\s*\(\s*\d+\s*\))?', 'as bytea', text)
        return text

    @staticmethod
    def _concat(args: List[str]):
        if not args:
            return None
        if len(args) == 1:
            return f"({args[0]})"
        return '(' + ' || '.join(args) + ')'

    @staticmethod
    def _sum(args: List[str]):
        if len(args) == 1 and COLUMN_REF_RE.match(args[0]) and not args[0].startswith('distinct'):
            return f"sum({args[0]}::numeric)"
        return None

    @staticmethod
    def _coalesce(args: List[str]):
        if len(args) == 2 and QUOTED_COLUMN_RE.match(args[0]) and re.match(r'^-?\d+$', args[1]):
            return f"coalesce({args[0]}::numeric, {args[1]})"
        return None

    def _join_casts(self, text: str) -> str:
        """Qualify and cast bare columns compared in JOIN ... ON (...)"""
        pattern = re.compile(
            r'\(\s*((?:"[^"]+"|\w+))\s+(?:as\s+)?((?:"[^"]+"|\w+))\s+'
            r'((?:(?:left|right|full)\s+(?:outer\s+)?|inner\s+|cross\s+)?join)\s+'
            r'((?:"[^"]+"|\w+))\s+(?:as\s+)?((?:"[^"]+"|\w+))\s+on\s*\('
        )
        for match in reversed(list(pattern.finditer(text))):
            left_alias, right_alias = match.group(2), match.group(5)
            if left_alias in ('join', 'left', 'right', 'inner', 'full', 'cross'):
                continue
            open_pos = match.end() - 1
            close_pos = find_matching_paren(text, open_pos)
            if close_pos == -1:
                continue
            condition = text[open_pos + 1:close_pos]

            def qualify(m):
                return (f"{left_alias}.{m.group(1)}::text = "
                        f"{right_alias}.{m.group(2)}::text")
            condition = re.sub(
                r'(?<![\w".:])((?:"[^"]+"|[a-z_]\w*))\s*=\s*((?:"[^"]+"|[a-z_]\w*))(?![\w".(:])',
                lambda m: m.group(0) if _is_value(m.group(1)) or _is_value(m.group(2)) else qualify(m),
                condition,
            )
            text = text[:open_pos + 1] + condition + text[close_pos:]
        return text

    @staticmethod
    def _modulo(text: str) -> str:
        operand = r'((?:"[^"]+"|\w+)(?:\.(?:"[^"]+"|\w+))?)'
        return re.sub(operand + r'\s*%\s*' + operand,
                      r'mod(cast(\1 as numeric), cast(\2 as numeric))', text)

    def _date_format(self, args: List[str]):
        if len(args) != 2:
            return None
        self._rewrite_literal(args[1], mysql_date_format)
        return f"to_char({args[0]}, {args[1]})"

    def _str_to_date(self, args: List[str]):
        if len(args) != 2:
            return None
        self._rewrite_literal(args[1], mysql_date_format)
        return f"to_timestamp({args[0]}, {args[1]})"

    def _from_unixtime(self, args: List[str]):
        if len(args) == 1:
            return f"to_timestamp({args[0]})"
        if len(args) == 2:
            self._rewrite_literal(args[1], mysql_date_format)
            return f"to_char(to_timestamp({args[0]}), {args[1]})"
        return None

    @staticmethod
    def _unix_timestamp(args: List[str]):
        if not args:
            return "extract(epoch from now())::bigint"
        return f"extract(epoch from {args[0]})::bigint"

    @staticmethod
    def _timestampdiff(args: List[str]):
        if len(args) != 3:
            return None
        unit, start, end = args[0].strip(), args[1], args[2]
        seconds = f"extract(epoch from ({end} - {start}))"
        months = f"(extract(year from age({end}, {start})) * 12 + extract(month from age({end}, {start})))"
        return {
            'second': f"{seconds}::bigint",
            'minute': f"trunc({seconds} / 60)::bigint",
            'hour': f"trunc({seconds} / 3600)::bigint",
            'day': f"({end}::date - {start}::date)",
            'week': f"trunc(({end}::date - {start}::date) / 7)::integer",
            'month': f"{months}::integer",
            'quarter': f"trunc({months} / 3)::integer",
            'year': f"extract(year from age({end}, {start}))::integer",
        }.get(unit)

    @staticmethod
    def _interval_arith(args: List[str], sign: str):
        if len(args) != 2:
            return None
        match = re.match(r'^interval\s+(.+?)\s+(\w+)$', args[1])
        if match:
            amount, unit = match.group(1), match.group(2)
            return f"({args[0]} {sign} ({amount}) * interval '1 {unit}')"
        return f"({args[0]} {sign} ({args[1]}) * interval '1 day')"

    @staticmethod
    def _extract(part: str):
        def build(args):
            if len(args) != 1:
                return None
            return f"extract({part} from {args[0]})::integer"
        return build

    def _json_path(self, path_arg: str) -> str:
        """'$.a.b[0]' to the text array form '{a,b,0}'"""
        value = self._literal_value(path_arg)
        if value is None:
            return path_arg
        parts = re.findall(r'\.("[^"]+"|[^.\[]+)|\[(\d+)\]', value.lstrip('$'))
        keys = [(key.strip('"') if key else idx) for key, idx in parts]
        return self._add_literal('{' + ','.join(keys) + '}')

    def _json_extract(self, args: List[str]):
        if len(args) != 2:
            return None
        return f"({args[0]}::jsonb #> {self._json_path(args[1])})"

    def _json_value(self, args: List[str]):
        if len(args) != 2:
            return None
        return f"({args[0]}::jsonb #>> {self._json_path(args[1])})"

    @staticmethod
    def _json_length(args: List[str]):
        if len(args) != 1:
            return None
        doc = f"{args[0]}::jsonb"
        return (f"case jsonb_typeof({doc}) when 'array' then jsonb_array_length({doc}) "
                f"when 'object' then (select count(*) from jsonb_object_keys({doc}))::integer else 1 end")

    def _sha2(self, args: List[str]):
        bits = args[1].strip() if len(args) == 2 else '256'
        if bits == '0':
            bits = '256'
        if bits not in ('224', '256', '384', '512'):
            return None
        return f"encode(sha{bits}(convert_to({args[0]}, 'utf8')), 'hex')"

    # -- driver ------------------------------------------------------------

    def translate_body(self, definition: str) -> str:
        text, self.literals = mask_string_literals(definition.replace('`', '"').strip())
        text = text.lower()
        # charset introducers such as _utf8mb4'abc'
        text = re.sub(r'\b_(?:utf8mb4|utf8mb3|utf8|latin1|binary|ascii)\s*(?=__str_lit_)', '', text)
        text = self._strip_database(text)

        for mysql_name, pg_name in SIMPLE_RENAMES.items():
            text = re.sub(r'(?<![\w."])' + mysql_name + r'\s*\(', pg_name + '(', text)

        text = replace_function_calls(text, 'group_concat', self._group_concat)
        text = replace_function_calls(text, 'if', self._if)
        text = replace_function_calls(text, 'convert', self._convert)
        text = self._cast_types(text)
        text = re.sub(r'\s+collate\s+"?\w+"?', '', text)
        text = re.sub(r'\blimit\s+(\d+)\s*,\s*(\d+)', r'limit \2 offset \1', text)
        text = self._modulo(text)

        text = replace_function_calls(text, 'concat', self._concat)
        text = self._join_casts(text)
        text = replace_function_calls(text, 'sum', self._sum)
        text = replace_function_calls(text, 'coalesce', self._coalesce)

        text = replace_function_calls(text, 'locate', lambda a: f"strpos({a[1]}, {a[0]})" if len(a) == 2 else None)
        text = replace_function_calls(text, 'instr', lambda a: f"strpos({a[0]}, {a[1]})" if len(a) == 2 else None)
        text = replace_function_calls(
            text, 'round', lambda a: f"round(cast({a[0]} as numeric), {a[1]})" if len(a) == 2 else None)
        text = replace_function_calls(
            text, 'substring_index', lambda a: f"split_part({a[0]}, {a[1]}, {a[2]})" if len(a) == 3 else None)
        text = replace_function_calls(
            text, 'space', lambda a: f"repeat(' ', ({a[0]})::integer)" if len(a) == 1 else None)
        text = replace_function_calls(
            text, 'strcmp',
            lambda a: f"case when {a[0]} = {a[1]} then 0 when {a[0]} < {a[1]} then -1 else 1 end"
            if len(a) == 2 else None)
        text = replace_function_calls(text, 'hex', lambda a: f"upper(to_hex({a[0]}))" if len(a) == 1 else None)

        text = replace_function_calls(text, 'json_extract', self._json_extract)
        text = replace_function_calls(text, 'json_value', self._json_value)
        text = replace_function_calls(text, 'json_unquote', lambda a: f"({a[0]} #>> '{{}}')" if len(a) == 1 else None)
        text = replace_function_calls(text, 'json_quote', lambda a: f"to_jsonb({a[0]})::text" if len(a) == 1 else None)
        text = replace_function_calls(text, 'json_length', self._json_length)
        text = replace_function_calls(
            text, 'json_type', lambda a: f"upper(jsonb_typeof({a[0]}::jsonb))" if len(a) == 1 else None)
        text = replace_function_calls(
            text, 'json_keys',
            lambda a: f"(select jsonb_agg(k) from jsonb_object_keys({a[0]}::jsonb) k)" if len(a) == 1 else None)
        text = replace_function_calls(
            text, 'json_contains', lambda a: f"({a[0]}::jsonb @> {a[1]}::jsonb)" if len(a) == 2 else None)

        text = replace_function_calls(
            text, 'insert',
            lambda a: f"overlay({a[0]} placing {a[3]} from {a[1]} for {a[2]})" if len(a) == 4 else None)
        text = replace_function_calls(
            text, 'sha1', lambda a: f"encode(digest({a[0]}, 'sha1'), 'hex')" if len(a) == 1 else None)
        text = replace_function_calls(text, 'sha2', self._sha2)
        text = replace_function_calls(
            text, 'inet_aton', lambda a: f"({a[0]}::inet - '0.0.0.0'::inet)" if len(a) == 1 else None)
        text = replace_function_calls(
            text, 'inet_ntoa', lambda a: f"host('0.0.0.0'::inet + ({a[0]}))" if len(a) == 1 else None)

        text = replace_function_calls(text, 'unix_timestamp', self._unix_timestamp)
        text = replace_function_calls(text, 'from_unixtime', self._from_unixtime)
        text = replace_function_calls(text, 'date_format', self._date_format)
        text = replace_function_calls(text, 'str_to_date', self._str_to_date)
        text = replace_function_calls(
            text, 'datediff', lambda a: f"({a[0]}::date - {a[1]}::date)" if len(a) == 2 else None)
        text = replace_function_calls(text, 'timediff', lambda a: f"({a[0]} - {a[1]})" if len(a) == 2 else None)
        text = replace_function_calls(text, 'timestampdiff', self._timestampdiff)
        for mysql_part, pg_part in EXTRACT_PARTS.items():
            text = replace_function_calls(text, mysql_part, self._extract(pg_part))
        text = replace_function_calls(
            text, 'dayofweek', lambda a: f"(extract(dow from {a[0]})::integer + 1)" if len(a) == 1 else None)
        text = replace_function_calls(
            text, 'weekday', lambda a: f"(extract(isodow from {a[0]})::integer - 1)" if len(a) == 1 else None)
        text = replace_function_calls(
            text, 'last_day',
            lambda a: f"(date_trunc('month', {a[0]}) + interval '1 month - 1 day')::date" if len(a) == 1 else None)
        text = replace_function_calls(
            text, 'to_days', lambda a: f"({a[0]}::date - '0001-01-01'::date + 366)" if len(a) == 1 else None)
        text = replace_function_calls(
            text, 'time_to_sec', lambda a: f"extract(epoch from {a[0]})::integer" if len(a) == 1 else None)
        text = replace_function_calls(
            text, 'sec_to_time', lambda a: f"(({a[0]}) * interval '1 second')" if len(a) == 1 else None)
        text = replace_function_calls(text, 'date_add', lambda a: self._interval_arith(a, '+'))
        text = replace_function_calls(text, 'adddate', lambda a: self._interval_arith(a, '+'))
        text = replace_function_calls(text, 'date_sub', lambda a: self._interval_arith(a, '-'))
        text = replace_function_calls(text, 'subdate', lambda a: self._interval_arith(a, '-'))
        text = replace_function_calls(
            text, 'addtime', lambda a: f"({a[0]} + ({a[1]})::interval)" if len(a) == 2 else None)
        text = replace_function_calls(
            text, 'subtime', lambda a: f"({a[0]} - ({a[1]})::interval)" if len(a) == 2 else None)

        for mysql_name, replacement in ZERO_ARG_CALLS.items():
            text = re.sub(r'(?<![\w."])' + mysql_name + r'\s*\(\s*\)', replacement, text)

        text = re.sub(r"\binterval\s+(-?\d+)\s+(second|minute|hour|day|week|month|quarter|year)\b(?!')",
                      r"interval '\1 \2'", text)

        text = re.sub(r'\s+', ' ', text).strip().rstrip(';').strip()
        return unmask_string_literals(text, self.literals)


def mysql_date_format(fmt: str) -> str:
    """Translate a MySQL DATE_FORMAT pattern to a to_char pattern"""
    return re.sub(r'%.', lambda m: DATE_FORMAT_MAP.get(m.group(0), m.group(0)[1:]), fmt)


def convert_view_ddl(name: str, definition: str, database: str = '') -> str:
    """CREATE OR REPLACE VIEW statement for a MySQL view"""
    if not name:
        raise TranslateError('View name is empty')
    if not definition or not definition.strip():
        raise TranslateError(f"View {name} has an empty definition")
    body = ViewTranslator(database).translate_body(definition)
    return f"create or replace view {quote_identifier(name.lower())} as {body};"


def drop_view_statement(name: str) -> str:
    return f"drop view if exists {quote_identifier(name.lower())} cascade"
