"""
MySQL stored functions to PL/pgSQL

Handles the common shape of SHOW CREATE FUNCTION output: header,
parameter list, RETURNS clause, characteristics and a BEGIN ... END body
(or a single RETURN expression).
"""
import re
from typing import Dict, List, Optional, Tuple

from mysql2pg.ddl import convert_type
from mysql2pg.errors import TranslateError
from mysql2pg.models import FunctionInfo
from mysql2pg.sqltext import (
    escape_literal, find_matching_paren, mask_string_literals, quote_identifier,
    replace_function_calls, unmask_string_literals,
)
from mysql2pg.views import mysql_date_format

HEADER_RE = re.compile(
    r'^\s*CREATE\s+(?:DEFINER\s*=\s*\S+\s+)?(?:AGGREGATE\s+)?FUNCTION\s+(?:IF\s+NOT\s+EXISTS\s+)?'
    r'((?:"[^"]+"|[\w$]+)(?:\.(?:"[^"]+"|[\w$]+))?)\s*\(',
    re.IGNORECASE,
)
CHARACTERISTIC_WORDS = (
    r'NOT\s+DETERMINISTIC|DETERMINISTIC|NO\s+SQL|READS\s+SQL\s+DATA|MODIFIES\s+SQL\s+DATA|'
    r'CONTAINS\s+SQL|SQL\s+SECURITY\s+(?:DEFINER|INVOKER)|COMMENT|LANGUAGE\s+SQL'
)
RETURNS_RE = re.compile(
    r'^\s*RETURNS\s+(.+?)(?=\s+(?:' + CHARACTERISTIC_WORDS + r'|BEGIN|RETURN)\b|\s*$)',
    re.IGNORECASE | re.DOTALL,
)
CHARSET_RE = re.compile(r'\s*\b(?:CHARACTER\s+SET|CHARSET)\s+\w+|\s*\bCOLLATE\s+\w+', re.IGNORECASE)
TYPE_RE = re.compile(r'^\s*(double\s+precision|\w+)\s*(\([^)]*\))?(.*)$', re.IGNORECASE | re.DOTALL)

HANDLER_RE = re.compile(r'\bDECLARE\s+(?:CONTINUE|EXIT)\s+HANDLER\s+FOR\s+(.+?);', re.IGNORECASE | re.DOTALL)
CURSOR_RE = re.compile(r'\bDECLARE\s+(\w+)\s+CURSOR\s+FOR\s+(.+?);', re.IGNORECASE | re.DOTALL)
DECLARE_RE = re.compile(
    r'\bDECLARE\s+(\w+(?:\s*,\s*\w+)*)\s+(.+?)(?:\s+DEFAULT\s+(.+?))?\s*;',
    re.IGNORECASE | re.DOTALL,
)


def convert_param_type(mysql_type: str) -> str:
    """Parameter or variable type to PostgreSQL"""
    cleaned = CHARSET_RE.sub('', mysql_type.replace('`', '"'))
    cleaned = re.sub(r'\b(?:UNSIGNED|ZEROFILL|SIGNED)\b', '', cleaned, flags=re.IGNORECASE).strip()
    match = TYPE_RE.match(cleaned)
    if not match:
        return cleaned.upper()
    base, args, rest = match.group(1), match.group(2) or '', match.group(3).strip()
    if base.lower() == 'tinyint':
        pg_type = 'SMALLINT'
    else:
        pg_type = convert_type(base, args)
    return f"{pg_type} {rest}".strip() if rest else pg_type


def _parse_params(text: str) -> List[str]:
    params = []
    for raw in [p.strip() for p in text.split(',')] if text.strip() else []:
        # decimal(10,2) gets split on its comma; glue it back
        if params and raw and re.match(r'^\d+\s*\)', raw):
            params[-1] = params[-1] + ',' + raw
            continue
        params.append(raw)
    result = []
    for param in params:
        param = re.sub(r'^(?:IN|OUT|INOUT)\s+', '', param, flags=re.IGNORECASE)
        parts = param.split(None, 1)
        if len(parts) != 2:
            raise TranslateError(f"Cannot parse function parameter: {param}")
        name, type_text = parts
        result.append(f"{name.strip(chr(34)).lower()} {convert_param_type(type_text)}")
    return result


class FunctionTranslator:
    """Converts one SHOW CREATE FUNCTION text"""

    def __init__(self, info: FunctionInfo):
        self.info = info
        self.literals: List[str] = []
        self.declarations: List[str] = []
        self.cursors: Dict[str, str] = {}
        self.not_found_flag: Optional[str] = None

    def _split_header(self, text: str) -> Tuple[str, List[str], str]:
        match = HEADER_RE.match(text)
        if not match:
            raise TranslateError(f"Function {self.info.name}: not a CREATE FUNCTION statement")
        name = match.group(1).split('.')[-1].strip('"')
        open_pos = match.end() - 1
        close_pos = find_matching_paren(text, open_pos)
        if close_pos == -1:
            raise TranslateError(f"Function {name}: unbalanced parameter list")
        params = _parse_params(text[open_pos + 1:close_pos])
        return name, params, text[close_pos + 1:]

    def _characteristics(self, text: str) -> Tuple[str, bool, str]:
        """(volatility, security definer, comment) from the clause text"""
        upper = re.sub(r'\s+', ' ', text.upper())
        volatility = 'VOLATILE'
        if 'NOT DETERMINISTIC' in upper or 'MODIFIES SQL DATA' in upper:
            volatility = 'VOLATILE'
        elif 'READS SQL DATA' in upper:
            volatility = 'STABLE'
        elif 'DETERMINISTIC' in upper or 'NO SQL' in upper:
            volatility = 'IMMUTABLE'
        definer = 'SQL SECURITY DEFINER' in upper
        comment = ''
        match = re.search(r'\bCOMMENT\s+(__str_lit_\d+__)', text, re.IGNORECASE)
        if match:
            raw = unmask_string_literals(match.group(1), self.literals)
            comment = raw[1:-1].replace("''", "'").replace("\\'", "'")
        return volatility, definer, comment

    def _hoist_declarations(self, body: str) -> str:
        def handler(match):
            action = match.group(1)
            flag = re.search(r'\bNOT\s+FOUND\s+SET\s+(\w+)\s*=', action, re.IGNORECASE)
            if flag:
                self.not_found_flag = flag.group(1)
            return ''
        body = HANDLER_RE.sub(handler, body)

        def cursor(match):
            self.cursors[match.group(1).lower()] = match.group(2).strip()
            self.declarations.append(f"{match.group(1)} refcursor;")
            return ''
        body = CURSOR_RE.sub(cursor, body)

        def variable(match):
            names = [n.strip() for n in match.group(1).split(',')]
            default = match.group(3)
            for name in names:
                if self.not_found_flag and name.lower() == self.not_found_flag.lower():
                    pg_type = 'BOOLEAN'
                    default = 'true' if default and default.strip() in ('1', 'true', 'TRUE') else 'false'
                else:
                    pg_type = convert_param_type(match.group(2))
                decl = f"{name} {pg_type}"
                if default:
                    decl += f" := {default.strip()}"
                self.declarations.append(decl + ';')
            return ''
        return DECLARE_RE.sub(variable, body)

    def _rewrite_cursors(self, body: str) -> str:
        def open_cursor(match):
            name = match.group(1)
            query = self.cursors.get(name.lower())
            if query is None:
                return match.group(0)
            return f"OPEN {name} FOR {query};"
        body = re.sub(r'\bOPEN\s+(\w+)\s*;', open_cursor, body, flags=re.IGNORECASE)

        def fetch(match):
            statement = f"FETCH NEXT FROM {match.group(1)} INTO {match.group(2).strip()};"
            if self.not_found_flag:
                statement += f" IF NOT FOUND THEN {self.not_found_flag} := true; END IF;"
            return statement
        return re.sub(r'\bFETCH\s+(?:NEXT\s+FROM\s+)?(\w+)\s+INTO\s+(.+?);', fetch, body,
                      flags=re.IGNORECASE | re.DOTALL)

    def _rewrite_functions(self, body: str) -> str:
        body = re.sub(r'\bIFNULL\s*\(', 'COALESCE(', body, flags=re.IGNORECASE)
        body = replace_function_calls(
            body, 'IF', lambda a: f"CASE WHEN {a[0]} THEN {a[1]} ELSE {a[2]} END" if len(a) == 3 else None)
        body = replace_function_calls(body, 'CONCAT', lambda a: '(' + ' || '.join(a) + ')' if a else None)
        body = replace_function_calls(
            body, 'CONCAT_WS',
            lambda a: f"ARRAY_TO_STRING(ARRAY[{', '.join(a[1:])}], {a[0]})" if len(a) > 1 else None)
        body = re.sub(r'\bCHAR_LENGTH\s*\(', 'LENGTH(', body, flags=re.IGNORECASE)
        body = re.sub(r'\b(?:NOW|SYSDATE)\s*\(\s*\)', 'CURRENT_TIMESTAMP', body, flags=re.IGNORECASE)
        body = replace_function_calls(
            body, 'UNIX_TIMESTAMP',
            lambda a: f"EXTRACT(EPOCH FROM {a[0] if a else 'CURRENT_TIMESTAMP'})::BIGINT")
        body = re.sub(r'\bFROM_UNIXTIME\s*\(', 'TO_TIMESTAMP(', body, flags=re.IGNORECASE)
        body = replace_function_calls(body, 'DATE_FORMAT', self._date_format)
        body = re.sub(r'\bSUBSTRING_INDEX\s*\(', 'SPLIT_PART(', body, flags=re.IGNORECASE)
        body = re.sub(r'\bCEILING\s*\(', 'CEIL(', body, flags=re.IGNORECASE)
        body = replace_function_calls(body, 'ISNULL', lambda a: f"({a[0]} IS NULL)" if len(a) == 1 else None)
        body = re.sub(r'\bNOT\s+REGEXP\b', '!~', body, flags=re.IGNORECASE)
        body = re.sub(r'\bREGEXP\b', '~', body, flags=re.IGNORECASE)
        return body

    def _date_format(self, args: List[str]):
        if len(args) != 2:
            return None
        match = re.match(r'^__str_lit_(\d+)__$', args[1])
        if match:
            index = int(match.group(1))
            value = self.literals[index][1:-1]
            self.literals[index] = "'" + mysql_date_format(value) + "'"
        return f"TO_CHAR({args[0]}, {args[1]})"

    @staticmethod
    def _rewrite_control_flow(body: str) -> str:
        flags = re.IGNORECASE
        # only statement level SET, not UPDATE ... SET
        body = re.sub(r'(^|;|\bTHEN\b|\bELSE\b|\bDO\b|\bLOOP\b|>>)(\s*)SET\s+@?(\w+)\s*=\s*',
                      r'\1\2\3 := ', body, flags=flags | re.MULTILINE)
        body = re.sub(r'\b(\w+)\s*:=\s*ROW_COUNT\s*\(\s*\)\s*;', r'GET DIAGNOSTICS \1 = ROW_COUNT;', body, flags=flags)
        body = re.sub(r'\bLEAVE\b', 'EXIT', body, flags=flags)
        body = re.sub(r'\bITERATE\b', 'CONTINUE', body, flags=flags)
        body = re.sub(r'\bELSEIF\b', 'ELSIF', body, flags=flags)
        # label: LOOP / WHILE / REPEAT
        body = re.sub(r'\b(\w+)\s*:\s*(?=(?:LOOP|WHILE|REPEAT)\b)', r'<<\1>> ', body, flags=flags)
        body = re.sub(r'\bWHILE\s+(.+?)\s+DO\b', r'WHILE \1 LOOP', body, flags=flags | re.DOTALL)
        body = re.sub(r'\bEND\s+WHILE\b', 'END LOOP', body, flags=flags)
        body = re.sub(r'\bUNTIL\s+(.+?)\s+END\s+REPEAT\b', r'EXIT WHEN \1; END LOOP', body, flags=flags | re.DOTALL)
        body = re.sub(r'\bREPEAT\b(?!\s*\()', 'LOOP', body, flags=flags)
        body = re.sub(r';\s*;', ';', body)
        return body

    def translate(self) -> List[str]:
        text, self.literals = mask_string_literals(self.info.definition.replace('`', '"').strip())
        name, params, rest = self._split_header(text)

        returns = RETURNS_RE.match(rest)
        if not returns:
            raise TranslateError(f"Function {name}: missing RETURNS clause")
        return_type = convert_param_type(returns.group(1).strip()) or 'VOID'
        rest = rest[returns.end():]

        body_match = re.search(r'\bBEGIN\b', rest, re.IGNORECASE)
        if body_match:
            characteristics = rest[:body_match.start()]
            body = rest[body_match.end():]
            body = re.sub(r'\bEND\s*(?:\$\$|//|;)*\s*$', '', body.strip(), flags=re.IGNORECASE)
        else:
            return_match = re.search(r'\bRETURN\b', rest, re.IGNORECASE)
            if not return_match:
                raise TranslateError(f"Function {name}: no body")
            characteristics = rest[:return_match.start()]
            body = rest[return_match.start():].strip().rstrip(';') + ';'

        volatility, definer, comment = self._characteristics(characteristics)
        body = self._hoist_declarations(body)
        body = self._rewrite_cursors(body)
        body = self._rewrite_functions(body)
        body = self._rewrite_control_flow(body)

        lines = [line.rstrip() for line in body.strip().splitlines() if line.strip()]
        body = unmask_string_literals('\n'.join(lines), self.literals)
        declarations = [unmask_string_literals(d, self.literals) for d in self.declarations]

        pg_name = name.lower()
        ddl = [f"CREATE OR REPLACE FUNCTION {quote_identifier(pg_name)}({', '.join(params)})",
               f"RETURNS {return_type}"]
        if definer:
            ddl.append('SECURITY DEFINER')
        ddl.append(f"{volatility} AS $$")
        if declarations:
            ddl.append('DECLARE')
            ddl.extend(f"    {decl}" for decl in declarations)
        ddl.append('BEGIN')
        ddl.append(body)
        ddl.append('END;')
        ddl.append('$$ LANGUAGE plpgsql;')

        statements = ['\n'.join(ddl)]
        if comment:
            signature = ', '.join(p.split(None, 1)[1] for p in params)
            statements.append(
                f"COMMENT ON FUNCTION {quote_identifier(pg_name)}({signature}) IS '{escape_literal(comment)}';")
        return statements


def convert_function_ddl(info: FunctionInfo) -> List[str]:
    """Statements that create a MySQL function in PostgreSQL"""
    if not info.name:
        raise TranslateError('Function name is empty')
    if not info.definition or not info.definition.strip():
        raise TranslateError(f"Function {info.name} has no definition")
    return FunctionTranslator(info).translate()
