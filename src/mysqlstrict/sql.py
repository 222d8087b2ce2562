"""
SQL text helpers: identifier quoting and parameter marker analysis.

- `quote_identifier()` - Quote table/column/schema names
- `substitute_identifiers()` - Quote identifiers into a `%s` template
- `count_parameter_markers()` - Count `?` markers outside literals and comments
"""
import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum, auto

from mysqlstrict.exceptions import FormatError

__all__ = [
    'quote_identifier',
    'substitute_identifiers',
    'count_parameter_markers',
    'tokenize_sql',
]

IDENTIFIER_QUOTE = '`'


class TokenType(Enum):
    """Token types identified during SQL parsing."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    QUOTED_IDENTIFIER = auto()
    COMMENT = auto()
    MARKER = auto()             # ?


@dataclass(slots=True)
class Token:
    """Token from SQL parsing."""
    type: TokenType
    text: str
    start: int
    end: int


# MySQL strings allow backslash escapes and doubled quotes
_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^'\\]|\\.|'')*'|"(?:[^"\\]|\\.|"")*")
    |(?P<ident>`(?:[^`]|``)*`)
    |(?P<comment>--[ \t][^\n]*|\#[^\n]*|/\*.*?\*/)
    |(?P<marker>\?)
""", re.VERBOSE | re.DOTALL)

# %s marker or escaped %%
_TEMPLATE_MARKER = re.compile(r'%%|%s')


def tokenize_sql(sql: str) -> list[Token]:
    """Split SQL into literal, identifier, comment, marker and plain text tokens.
    """
    tokens = []
    last_end = 0

    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()
        if start > last_end:
            tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:start], last_end, start))

        if match.group('string'):
            ttype = TokenType.STRING_LITERAL
        elif match.group('ident'):
            ttype = TokenType.QUOTED_IDENTIFIER
        elif match.group('comment'):
            ttype = TokenType.COMMENT
        else:
            ttype = TokenType.MARKER

        tokens.append(Token(ttype, match.group(0), start, end))
        last_end = end

    if last_end < len(sql):
        tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:], last_end, len(sql)))

    return tokens


def count_parameter_markers(sql: str | None) -> int:
    """Number of positional `?` parameters the server will expect.
    """
    if not sql:
        return 0
    return sum(1 for token in tokenize_sql(sql) if token.type == TokenType.MARKER)


def quote_identifier(identifier: str) -> str:
    """Wrap an identifier in backticks.

    Embedded backticks are NOT escaped. The server offers no identifier escape
    routine, so identifiers must never come from untrusted input.

    Parameters
        identifier: Table, column or schema name

    Returns
        Quoted identifier
    """
    return f'{IDENTIFIER_QUOTE}{identifier}{IDENTIFIER_QUOTE}'


def substitute_identifiers(template: str, identifiers: Sequence[str]) -> str:
    """Quote identifiers into the `%s` markers of a template, in order.

    `%%` in the template renders as a literal `%`.

    Parameters
        template: SQL text with one `%s` per identifier
        identifiers: Names to quote and substitute

    Returns
        SQL text with quoted identifiers

    Raises
        FormatError: If marker and identifier counts differ
    """
    identifiers = list(identifiers)
    markers = [m for m in _TEMPLATE_MARKER.findall(template) if m == '%s']
    if len(markers) != len(identifiers):
        raise FormatError(
            f'Template has {len(markers)} identifier placeholders '
            f'but {len(identifiers)} identifiers were given', sql=template)

    quoted = iter(quote_identifier(name) for name in identifiers)

    def replace(match):
        if match.group(0) == '%%':
            return '%'
        return next(quoted)

    return _TEMPLATE_MARKER.sub(replace, template)
