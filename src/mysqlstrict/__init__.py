"""
Strict MySQL access: prepared statements whose every failure is a typed error.

All operations can be called either as:
- Module functions: db.select(cn, sql, *args)
- Connection methods: cn.select(sql, *args)

The module functions are facades over the Connection methods.
"""
__version__ = '0.1.0'

from typing import Any

from mysqlstrict.connection import Connection, connect
from mysqlstrict.exceptions import BindError, CloseError, ConnectError
from mysqlstrict.exceptions import DatabaseError, ExecuteError, FetchError
from mysqlstrict.exceptions import FormatError, NotFoundError, PrepareError
from mysqlstrict.exceptions import ResultError, is_retryable_error
from mysqlstrict.options import DatabaseOptions
from mysqlstrict.result import Result, fetch_all, fetch_first
from mysqlstrict.sql import quote_identifier, substitute_identifiers
from mysqlstrict.statement import Statement, StatementState
from mysqlstrict.transaction import Transaction as transaction


def execute(cn: Connection, sql: str, *args: Any, types: str | None = None) -> int | None:
    """Execute a statement and return affected row count.
    """
    return cn.execute(sql, *args, types=types)


delete = execute
insert = execute
update = execute


def select(cn: Connection, sql: str, *args: Any, types: str | None = None,
           **kwargs: Any) -> Any:
    """Execute a query and return its rows through the configured data loader.
    """
    return cn.select(sql, *args, types=types, **kwargs)


def select_row(cn: Connection, sql: str, *args: Any,
               types: str | None = None) -> dict | None:
    """Execute a query and return its first row, or None if it has none.
    """
    return cn.select_row(sql, *args, types=types)


def select_scalar(cn: Connection, sql: str, *args: Any, types: str | None = None) -> Any:
    """Execute a query and return the first value of its first row.
    """
    return cn.select_scalar(sql, *args, types=types)


def truncate(cn: Connection, table: str) -> None:
    """Remove every row from a table.
    """
    cn.truncate(table)


def set_foreign_key_checks(cn: Connection, enabled: bool) -> None:
    """Turn the session's foreign key checks on or off.
    """
    cn.set_foreign_key_checks(enabled)


def get_autocommit(cn: Connection) -> bool:
    """Read the session autocommit flag.
    """
    return cn.get_autocommit()


def get_auto_increment(cn: Connection, table: str, schema: str | None = None) -> int:
    """Next AUTO_INCREMENT value of a table.
    """
    return cn.get_auto_increment(table, schema)


__all__ = [
    'connect',
    'Connection',
    'Statement',
    'StatementState',
    'Result',
    'transaction',
    'DatabaseOptions',
    'execute',
    'delete',
    'insert',
    'update',
    'select',
    'select_row',
    'select_scalar',
    'fetch_all',
    'fetch_first',
    'truncate',
    'set_foreign_key_checks',
    'get_autocommit',
    'get_auto_increment',
    'quote_identifier',
    'substitute_identifiers',
    'is_retryable_error',
    'DatabaseError',
    'ConnectError',
    'PrepareError',
    'BindError',
    'ExecuteError',
    'ResultError',
    'FetchError',
    'CloseError',
    'FormatError',
    'NotFoundError',
]
