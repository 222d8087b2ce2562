"""
Transaction handling for database operations.
"""
import logging
from typing import Any

from mysqlstrict.exceptions import cleanup_errors

logger = logging.getLogger(__name__)


class Transaction:
    """Context manager for an explicit transaction.

    Commits on clean exit and rolls back when the block raises; the block's
    exception always propagates.

    Usage:
        with transaction(cn) as tx:
            tx.execute('INSERT INTO t (a) VALUES (?)', 1)
            tx.execute('UPDATE u SET b = ? WHERE a = ?', 'x', 1)
    """

    def __init__(self, cn: Any) -> None:
        self.connection = cn

    def __enter__(self):
        if self.connection.in_transaction:
            raise RuntimeError('Transaction already in progress on this connection')
        self.connection.begin()
        self.connection.in_transaction = True
        logger.debug('Transaction started')
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        try:
            if exc_type is None:
                self.connection.commit()
                logger.debug('Transaction committed')
            else:
                logger.debug(f'Rolling back transaction after {exc_type.__name__}')
                with cleanup_errors(value, 'Rolling back'):
                    self.connection.rollback()
        finally:
            self.connection.in_transaction = False

    def execute(self, sql: str, *args: Any, types: str | None = None) -> int | None:
        return self.connection.execute(sql, *args, types=types)

    def select(self, sql: str, *args: Any, types: str | None = None, **kwargs: Any) -> Any:
        return self.connection.select(sql, *args, types=types, **kwargs)

    def select_row(self, sql: str, *args: Any, types: str | None = None) -> dict | None:
        return self.connection.select_row(sql, *args, types=types)

    def select_scalar(self, sql: str, *args: Any, types: str | None = None) -> Any:
        return self.connection.select_scalar(sql, *args, types=types)
