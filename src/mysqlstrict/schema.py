"""
Session and schema helpers built on prepared statements.

Each helper runs one prepared statement; values are always bound, and
identifiers go through `substitute_identifiers()`.
"""
import logging
from typing import Any

from mysqlstrict.exceptions import NotFoundError
from mysqlstrict.sql import substitute_identifiers

__all__ = [
    'set_foreign_key_checks',
    'get_autocommit',
    'get_auto_increment',
    'truncate',
]

logger = logging.getLogger(__name__)


def set_foreign_key_checks(cn: Any, enabled: bool) -> None:
    """Turn the session's foreign key checks on or off.
    """
    with cn.prepare('SET FOREIGN_KEY_CHECKS = ?') as stmt:
        stmt.bind('i', int(bool(enabled)))
        stmt.execute()
    logger.debug(f'Foreign key checks set to {bool(enabled)}')


def get_autocommit(cn: Any) -> bool:
    """Read the session autocommit flag from the server.

    If the server does not report the flag, autocommit is switched on and
    True is returned.
    """
    with cn.prepare('SELECT @@autocommit') as stmt:
        row = stmt.fetch_first()

    if row is not None and row.get('@@autocommit') is not None:
        return bool(row['@@autocommit'])

    logger.warning('Server did not report @@autocommit, enabling autocommit')
    cn.autocommit(True)
    return True


def get_auto_increment(cn: Any, table: str, schema: str | None = None) -> int:
    """Next AUTO_INCREMENT value recorded for a table.

    Parameters
        cn: Connection
        table: Table name
        schema: Schema name (default: the connection's database)

    Raises
        NotFoundError: No schema known, table absent, or no AUTO_INCREMENT value
    """
    schema = schema or cn.database
    if not schema:
        raise NotFoundError(f'No schema given or selected to look up {table}')

    sql = substitute_identifiers(
        'SELECT %s FROM %s.%s WHERE %s = ? AND %s = ?',
        ['AUTO_INCREMENT', 'information_schema', 'tables', 'table_name', 'table_schema'])
    with cn.prepare(sql) as stmt:
        stmt.bind('ss', table, schema)
        row = stmt.fetch_first()

    if row is None or row.get('AUTO_INCREMENT') is None:
        raise NotFoundError(f'AUTO_INCREMENT was not set for {schema}.{table}', sql=sql)
    return int(row['AUTO_INCREMENT'])


def truncate(cn: Any, table: str) -> None:
    """Remove every row from a table.
    """
    sql = substitute_identifiers('TRUNCATE TABLE %s', [table])
    with cn.prepare(sql) as stmt:
        stmt.execute()
    logger.debug(f'Truncated {table}')
