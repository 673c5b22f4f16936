"""
Small SQL text helpers shared by the dialect translators

Everything here is quote aware: single quoted, double quoted and backtick
quoted runs are never split or rewritten.
"""
import re
from typing import Callable, List, Tuple

QUOTES = ("'", '"', '`')

_PLACEHOLDER = '__str_lit_{}__'
_PLACEHOLDER_RE = re.compile(r'__str_lit_(\d+)__', re.IGNORECASE)


def quote_identifier(name: str) -> str:
    """Wrap a name in double quotes, doubling interior quotes"""
    return '"' + name.replace('"', '""') + '"'


def escape_literal(value: str) -> str:
    """Escape a value for use inside a single quoted SQL literal"""
    return value.replace("'", "''")


def _skip_quoted(text: str, pos: int) -> int:
    """Return the index just past the quoted run starting at pos"""
    quote = text[pos]
    i = pos + 1
    while i < len(text):
        ch = text[i]
        if ch == '\\' and quote == "'":
            i += 2
            continue
        if ch == quote:
            # doubled quote is an escaped quote
            if i + 1 < len(text) and text[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return len(text)


def find_matching_paren(text: str, open_pos: int) -> int:
    """Index of the ')' closing the '(' at open_pos, or -1"""
    depth = 0
    i = open_pos
    while i < len(text):
        ch = text[i]
        if ch in QUOTES:
            i = _skip_quoted(text, i)
            continue
        if ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def split_top_level(text: str, separator: str = ',') -> List[str]:
    """Split on separator outside of quotes and parentheses"""
    parts = []
    depth = 0
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if ch in QUOTES:
            i = _skip_quoted(text, i)
            continue
        if ch == '(':
            depth += 1
        elif ch == ')':
            depth -= 1
        elif ch == separator and depth == 0:
            parts.append(text[start:i])
            start = i + 1
        i += 1
    parts.append(text[start:])
    return parts


def split_top_level_commas(text: str) -> List[str]:
    """Split a call argument list into stripped arguments"""
    if not text.strip():
        return []
    return [part.strip() for part in split_top_level(text, ',')]


def mask_string_literals(text: str) -> Tuple[str, List[str]]:
    """Replace single quoted literals with placeholders"""
    literals = []
    out = []
    i = 0
    while i < len(text):
        if text[i] == "'":
            end = _skip_quoted(text, i)
            out.append(_PLACEHOLDER.format(len(literals)))
            literals.append(text[i:end])
            i = end
            continue
        out.append(text[i])
        i += 1
    return ''.join(out), literals


def unmask_string_literals(text: str, literals: List[str]) -> str:
    """Put masked literals back"""
    return _PLACEHOLDER_RE.sub(lambda m: literals[int(m.group(1))], text)


def replace_function_calls(text: str, name: str, transform: Callable[[List[str]], str]) -> str:
    """
    Rewrite every call of a function.

    transform receives the argument list and returns the replacement text
    for the whole call. Calls are rewritten innermost first so nested calls
    of the same function are handled in a single pass.
    """
    pattern = re.compile(r'(?<![\w."])' + re.escape(name) + r'\s*\(', re.IGNORECASE)
    for match in reversed(list(pattern.finditer(text))):
        open_pos = match.end() - 1
        close_pos = find_matching_paren(text, open_pos)
        if close_pos == -1:
            continue
        args = split_top_level_commas(text[open_pos + 1:close_pos])
        replacement = transform(args)
        if replacement is None:
            continue
        text = text[:match.start()] + replacement + text[close_pos + 1:]
    return text
