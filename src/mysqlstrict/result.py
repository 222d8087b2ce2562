"""
Result sets and row materialization.

A `Result` wraps the unbuffered cursor of one statement execution. Rows
stream from the server, so the result must be released (`free()`) before the
session can run anything else; `fetch_all()` and `fetch_first()` guarantee
that on every exit path.
"""
import logging
from collections.abc import Iterator
from typing import Any

from mysqlstrict.exceptions import FetchError, cleanup_errors, driver_errors

__all__ = ['Result', 'StoredRows', 'fetch_all', 'fetch_first']

logger = logging.getLogger(__name__)


class StoredRows:
    """Rows read ahead from a result set whose cursor is already released.

    Stands in for the cursor of a `Result` after `Statement.store_result()`.
    """

    def __init__(self, rows: list[tuple]) -> None:
        self.rowcount = len(rows)
        self._rows = iter(rows)

    def fetchone(self) -> tuple | None:
        return next(self._rows, None)

    def close(self) -> None:
        self._rows = iter(())


class Result:
    """Single-use result set of a statement execution.

    Rows are dicts keyed by column name in result column order.
    """

    def __init__(self, statement: Any, cursor: Any, fields: list[str]) -> None:
        self.statement = statement
        self.fields = fields
        self.num_rows = 0
        self.freed = False
        self._cursor = cursor

    def __enter__(self) -> 'Result':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_val is None:
            self.free()
            return
        with cleanup_errors(exc_val, f'Releasing the result of {self.statement.name}'):
            self.free()

    def __iter__(self) -> Iterator[dict]:
        while (row := self.fetch_row()) is not None:
            yield row

    @property
    def field_count(self) -> int:
        return len(self.fields)

    def fetch_row(self) -> dict | None:
        """Read the next row, or None once the rows are exhausted.

        Raises
            FetchError: Result already released, or the read failed part way
        """
        if self.freed:
            raise FetchError('Result set has already been released',
                             sql=self.statement.sql)
        with driver_errors(FetchError, self.statement.sql):
            values = self._cursor.fetchone()
        if values is None:
            return None
        self.num_rows += 1
        return dict(zip(self.fields, values))

    def fetch_all(self) -> list[dict]:
        """Read every remaining row."""
        return list(self)

    def free(self) -> None:
        """Drain and release the result set. Safe to call more than once.

        Raises
            FetchError: Draining unread rows failed; the result is released anyway
        """
        if self.freed:
            return
        self.freed = True
        try:
            with driver_errors(FetchError, self.statement.sql):
                self._cursor.close()
        finally:
            self.statement.result_released(self)
            logger.debug(f'Released result of {self.statement.name} after {self.num_rows} rows')


def fetch_all(statement: Any) -> list[dict]:
    """Execute a statement and return all of its rows.

    Returns an empty list when the statement yields no rows or no result set.
    """
    statement.execute()
    result = statement.get_result()
    if result is None:
        return []
    with result:
        return result.fetch_all()


def fetch_first(statement: Any) -> dict | None:
    """Execute a statement and return its first row.

    Every call re-executes. Returns None when the statement yields no rows or
    no result set; remaining rows are drained and discarded.
    """
    statement.execute()
    result = statement.get_result()
    if result is None:
        return None
    with result:
        return result.fetch_row()
