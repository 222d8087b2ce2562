"""
Server-side prepared statements over a PyMySQL session.

A `Statement` owns one server-side prepared statement created with MySQL's
SQL-level protocol:

    PREPARE <name> FROM '<sql>'          prepare()
    SET @<name>_0 = ..., @<name>_1 = ... bind()
    EXECUTE <name> USING @<name>_0, ...  execute()
    DEALLOCATE PREPARE <name>            close()

Each step runs inside `driver_errors()`, so a failed driver call surfaces as
the matching typed error at the call that failed. Row-producing executions
are read through an unbuffered cursor which `get_result()` hands out as a
`Result`; the statement releases it before any further command.
`store_result()` reads the rows ahead instead, freeing the session at once.

Cleanup that runs while an error propagates (closing on `__exit__`,
releasing a result after a failed read) never replaces that error; a
cleanup failure is attached to it as a note.
"""
import datetime
import decimal
import logging
import time
from collections.abc import Sequence
from contextlib import contextmanager
from enum import Enum, auto
from functools import wraps
from typing import Any

from mysqlstrict.exceptions import CR_COMMANDS_OUT_OF_SYNC, CR_PARAMS_NOT_BOUND
from mysqlstrict.exceptions import BindError, CloseError, DatabaseError
from mysqlstrict.exceptions import ExecuteError, FetchError, PrepareError
from mysqlstrict.exceptions import ResultError, cleanup_errors, driver_errors
from mysqlstrict.result import Result, StoredRows, fetch_all, fetch_first
from mysqlstrict.sql import count_parameter_markers
from pymysql.cursors import SSCursor

__all__ = [
    'Statement',
    'StatementState',
    'TYPE_CODES',
    'coerce_value',
    'infer_types',
]

logger = logging.getLogger(__name__)

TYPE_CODES = {
    'i': 'integer',
    'd': 'float',
    's': 'string',
    'b': 'blob',
}

_STRING_TYPES = (str, datetime.date, datetime.time, datetime.timedelta)
_BLOB_TYPES = (bytes, bytearray, memoryview)


class StatementState(Enum):
    """Lifecycle of a prepared statement."""
    UNPREPARED = auto()
    PREPARED = auto()
    BOUND = auto()
    EXECUTED = auto()
    RESULT_OPEN = auto()
    CLOSED = auto()


def coerce_value(code: str, value: Any, position: int) -> Any:
    """Check a value against its type code and return the value to send.

    None is SQL NULL for every type code.

    Raises
        BindError: Unknown type code or a value of the wrong type
    """
    if code not in TYPE_CODES:
        raise BindError(f'Undefined fieldtype {code} (parameter {position})')
    if value is None:
        return None
    if code == 'i' and isinstance(value, int):
        return int(value)
    if code == 'd' and isinstance(value, decimal.Decimal):
        return value
    if code == 'd' and isinstance(value, int | float) and not isinstance(value, bool):
        return float(value)
    if code == 's' and isinstance(value, _STRING_TYPES):
        return value
    if code == 'b' and isinstance(value, _BLOB_TYPES):
        return bytes(value)
    raise BindError(f'Parameter {position} expects {TYPE_CODES[code]}, '
                    f'got {type(value).__name__}')


def infer_types(values: Sequence[Any]) -> str:
    """Derive a type signature from Python values.

    Anything not numeric or bytes-like is sent as a string.
    """
    codes = []
    for value in values:
        if isinstance(value, int):
            codes.append('i')
        elif isinstance(value, float | decimal.Decimal):
            codes.append('d')
        elif isinstance(value, _BLOB_TYPES):
            codes.append('b')
        else:
            codes.append('s')
    return ''.join(codes)


def dumpsql(func):
    """Decorator for logging statement executions and their timing."""
    @wraps(func)
    def wrapper(self, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{self.sql}\nargs: {self.params}')
        try:
            result = func(self, *args, **kwargs)
            logger.debug(f'Query result: {self.affected_rows} affected rows, '
                         f'{self.field_count} fields')
            return result
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{self.sql}\nargs: {self.params}')
            raise
        finally:
            elapsed = time.time() - start
            self.connection.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class Statement:
    """One server-side prepared statement.

    Created by `Connection.prepare(sql)` or, unprepared, by
    `Connection.stmt_init()` followed by `prepare(sql)`. A statement must be
    closed before its connection; use it as a context manager to make that
    automatic.
    """

    def __init__(self, connection: Any, sql: str | None = None) -> None:
        self.connection = connection
        self.name = connection.next_statement_name()
        self.sql: str | None = None
        self.types = ''
        self.params: tuple = ()
        self.param_count = 0
        self.fields: list[str] = []
        self.affected_rows: int | None = None
        self.insert_id: int | None = None
        self.bound = False
        self.error: DatabaseError | None = None
        self.state = StatementState.UNPREPARED
        self._cursor = None
        self._pending = None
        self._result: Result | None = None
        self._result_taken = False
        self._described = False
        self._long_data: set[int] = set()
        if sql is not None:
            self.prepare(sql)

    def __repr__(self) -> str:
        return f'<Statement {self.name} {self.state.name}: {self.sql!r}>'

    @property
    def field_count(self) -> int:
        return len(self.fields)

    def __enter__(self) -> 'Statement':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.state == StatementState.CLOSED:
            return
        if exc_val is None:
            self.close()
        else:
            self.close_after(exc_val)

    def close_after(self, error: BaseException) -> None:
        """Close while `error` propagates, without replacing it.
        """
        if self.state == StatementState.CLOSED:
            return
        last_error = self.error
        with cleanup_errors(error, f'Closing {self.name}'):
            self.close()
        self.error = last_error

    def _fail(self, error: DatabaseError) -> DatabaseError:
        """Record a locally detected error as the last error."""
        if error.sql is None:
            error.sql = self.sql
        self.error = error
        return error

    @contextmanager
    def _driver(self, error_cls: type[DatabaseError], sql: str | None = None):
        """Translate driver failures and record them as the last error."""
        try:
            with driver_errors(error_cls, sql or self.sql):
                yield
        except DatabaseError as exc:
            self.error = exc
            raise

    def _control(self, query: str, args: tuple | None = None) -> None:
        """Run a statement-management command on the buffered control cursor."""
        if self._cursor is None:
            self._cursor = self.connection.dbapi_connection.cursor()
        self._cursor.execute(query, args)

    def _discard_control(self) -> None:
        cursor, self._cursor = self._cursor, None
        if cursor is not None:
            with driver_errors(CloseError, self.sql):
                cursor.close()

    def _variables(self) -> list[str]:
        return [f'@{self.name}_{i}' for i in range(self.param_count)]

    def _require_prepared(self, error_cls: type[DatabaseError]) -> None:
        if self.state == StatementState.UNPREPARED:
            raise self._fail(error_cls('Statement has not been prepared'))
        if self.state == StatementState.CLOSED:
            raise self._fail(error_cls('Statement is closed'))

    def _release_result(self) -> None:
        """Release the open or pending result set, if any."""
        if self._result is not None:
            self._result.free()
        if self._pending is not None:
            cursor, self._pending = self._pending, None
            with self._driver(FetchError):
                cursor.close()

    def result_released(self, result: Result) -> None:
        """Called by a `Result` once it has been freed."""
        if self._result is result:
            self._result = None
            if self.state == StatementState.RESULT_OPEN:
                self.state = StatementState.EXECUTED

    def prepare(self, sql: str) -> 'Statement':
        """Compile SQL into a server-side prepared statement.

        Preparing again replaces the previous statement text and drops any
        bound values.

        Raises
            PrepareError: Server rejected the text, or the statement is closed
        """
        if self.state == StatementState.CLOSED:
            raise self._fail(PrepareError('Statement is closed', sql=sql))
        self._release_result()
        try:
            with self._driver(PrepareError, sql):
                self._control(f'PREPARE {self.name} FROM %s', (sql,))
        except PrepareError as exc:
            # never registered, so close() will not run for this statement
            if self.state == StatementState.UNPREPARED:
                with cleanup_errors(exc, f'Closing the cursor of {self.name}'):
                    self._discard_control()
            raise
        self.sql = sql
        self.param_count = count_parameter_markers(sql)
        self.types, self.params, self.bound = '', (), False
        self.fields = []
        self._result_taken = False
        self._described = False
        self._long_data.clear()
        self.state = StatementState.PREPARED
        self.connection.register_statement(self)
        logger.debug(f'Prepared {self.name} with {self.param_count} parameters')
        return self

    def bind(self, types: str, *values: Any) -> None:
        """Bind values to the statement's `?` markers, in order.

        Type codes: `i` integer, `d` float, `s` string, `b` blob.

        Raises
            BindError: Arity mismatch, bad type code or value, or driver rejection
        """
        self._require_prepared(BindError)
        if len(types) != len(values):
            raise self._fail(BindError(
                "Number of elements in type definition string doesn't match "
                'number of bind variables'))
        if len(values) != self.param_count:
            raise self._fail(BindError(
                "Number of variables doesn't match number of parameters in "
                f'prepared statement (expected {self.param_count}, got {len(values)})'))
        try:
            params = tuple(coerce_value(code, value, position)
                           for position, (code, value) in enumerate(zip(types, values), 1))
        except BindError as exc:
            raise self._fail(exc)

        self._release_result()
        self.bound = False
        if params:
            assignments = ', '.join(f'{var} = %s' for var in self._variables())
            with self._driver(BindError):
                self._control(f'SET {assignments}', params)
        self.types, self.params, self.bound = types, params, True
        self._long_data.clear()
        self.state = StatementState.BOUND

    def send_long_data(self, param_nr: int, data: bytes) -> None:
        """Send a `b` parameter's value in pieces.

        Parameters are numbered from 0. The first piece after `bind()`
        replaces the bound value, later pieces are appended. `bind()` and
        `reset()` discard what was sent.

        Raises
            BindError: Statement not bound, parameter out of range or not
            typed `b`, data not bytes-like, or driver rejection
        """
        self._require_prepared(BindError)
        if not self.bound:
            raise self._fail(BindError('Parameters must be bound before sending long data'))
        if not 0 <= param_nr < self.param_count:
            raise self._fail(BindError(
                f'Invalid parameter number {param_nr} (statement has {self.param_count})'))
        if self.types[param_nr] != 'b':
            raise self._fail(BindError(
                f'Parameter {param_nr} is typed {self.types[param_nr]!r}, long data needs \'b\''))
        try:
            data = coerce_value('b', data, param_nr + 1)
        except BindError as exc:
            raise self._fail(exc)

        var = self._variables()[param_nr]
        value = f'CONCAT({var}, %s)' if param_nr in self._long_data else '%s'
        self._release_result()
        with self._driver(BindError):
            self._control(f'SET {var} = {value}', (data,))
        self._long_data.add(param_nr)
        logger.debug(f'Sent {len(data)} bytes of long data to parameter {param_nr} of {self.name}')

    @dumpsql
    def execute(self) -> int | None:
        """Execute the statement; repeatable.

        Returns
            Affected row count, or None when the statement produced a result set

        Raises
            ExecuteError: Server rejection, or markers left unbound
        """
        self._require_prepared(ExecuteError)
        if self.param_count and not self.bound:
            raise self._fail(ExecuteError(
                'No data supplied for parameters in prepared statement',
                code=CR_PARAMS_NOT_BOUND))
        self._release_result()
        self._result_taken = False

        query = f'EXECUTE {self.name}'
        if self.param_count:
            query += ' USING ' + ', '.join(self._variables())

        cursor = self.connection.dbapi_connection.cursor(SSCursor)
        try:
            with self._driver(ExecuteError):
                cursor.execute(query)
        except ExecuteError as exc:
            with cleanup_errors(exc, 'Closing the execute cursor'), driver_errors(ExecuteError):
                cursor.close()
            raise

        self._described = True
        if cursor.description is None:
            self.fields = []
            self.affected_rows = cursor.rowcount
            self.insert_id = cursor.lastrowid
            with self._driver(ExecuteError):
                cursor.close()
        else:
            self.fields = [column[0] for column in cursor.description]
            self.affected_rows = None
            self.insert_id = None
            self._pending = cursor
        self.state = StatementState.EXECUTED
        return self.affected_rows

    def _out_of_sync(self) -> ResultError:
        return self._fail(ResultError(
            "Commands out of sync; you can't run this command now",
            code=CR_COMMANDS_OUT_OF_SYNC))

    def get_result(self) -> Result | None:
        """Take the result set of the last execution.

        Returns
            A `Result`, or None when the statement produced no result set

        Raises
            ResultError: Not executed, result already taken, or duplicate column names
        """
        if self.state != StatementState.EXECUTED or self._result_taken:
            raise self._out_of_sync()
        self._result_taken = True
        if self._pending is None:
            return None

        cursor, self._pending = self._pending, None
        duplicates = sorted({name for name in self.fields if self.fields.count(name) > 1})
        if duplicates:
            with self._driver(ResultError):
                cursor.close()
            raise self._fail(ResultError(
                f'Duplicate column names in result: {", ".join(duplicates)}'))

        self._result = Result(self, cursor, list(self.fields))
        self.state = StatementState.RESULT_OPEN
        return self._result

    def store_result(self) -> int | None:
        """Read the whole result set of the last execution into memory.

        The session is free for other commands afterwards, and `get_result()`
        hands out the stored rows.

        Returns
            Number of rows read, or None when the statement produced no result set

        Raises
            ResultError: Not executed, or result already taken
            FetchError: Reading the rows failed part way
        """
        if self.state != StatementState.EXECUTED or self._result_taken:
            raise self._out_of_sync()
        if self._pending is None:
            return None
        if isinstance(self._pending, StoredRows):
            return self._pending.rowcount

        cursor, self._pending = self._pending, None
        try:
            with self._driver(FetchError):
                rows = cursor.fetchall()
        except FetchError as exc:
            self._result_taken = True
            with cleanup_errors(exc, 'Releasing the unread result'), driver_errors(FetchError):
                cursor.close()
            raise
        with self._driver(FetchError):
            cursor.close()
        self._pending = StoredRows(rows)
        logger.debug(f'Stored {len(rows)} rows of {self.name}')
        return len(rows)

    def result_metadata(self) -> list[str] | None:
        """Column names of the result set produced by the last execution.

        Returns None when that execution produced no result set.

        Raises
            ResultError: Not executed since it was prepared
        """
        self._require_prepared(ResultError)
        if not self._described:
            raise self._out_of_sync()
        return list(self.fields) or None

    def fetch(self) -> tuple | None:
        """Read the next row of the last execution as a tuple of values.

        Takes the result set on first use. Returns None once the rows are
        exhausted; the result stays open until the next execute, reset or
        close.

        Raises
            ResultError: No result set, or it was already released
            FetchError: Reading the row failed
        """
        if self._result is None:
            if self.get_result() is None:
                raise self._fail(ResultError('Statement produced no result set'))
        row = self._result.fetch_row()
        if row is None:
            return None
        return tuple(row.values())

    def reset(self) -> None:
        """Release any result and return to the prepared/bound state.

        Bound values are kept; long data sent since binding is discarded.
        """
        self._require_prepared(ExecuteError)
        self._release_result()
        self._result_taken = False
        if self._long_data:
            positions = sorted(self._long_data)
            variables = self._variables()
            assignments = ', '.join(f'{variables[i]} = %s' for i in positions)
            with self._driver(ExecuteError):
                self._control(f'SET {assignments}', tuple(self.params[i] for i in positions))
            self._long_data.clear()
        self.state = StatementState.BOUND if self.bound else StatementState.PREPARED

    def close(self) -> None:
        """Deallocate the server-side statement.

        The statement counts as closed afterwards even when this raises.

        Raises
            CloseError: Server or driver rejected the close (for example a
            statement that was already closed)
            FetchError: Releasing an unread result failed
        """
        if self.state == StatementState.UNPREPARED:
            self.state = StatementState.CLOSED
            self.connection.unregister_statement(self)
            return

        try:
            self._release_result()
        except DatabaseError as exc:
            with cleanup_errors(exc, f'Deallocating {self.name}'):
                self._deallocate()
            self.error = exc
            raise
        self._deallocate()

    def _deallocate(self) -> None:
        try:
            with self._driver(CloseError):
                self._control(f'DEALLOCATE PREPARE {self.name}')
        except CloseError as exc:
            with cleanup_errors(exc, f'Closing the cursor of {self.name}'):
                self._discard_control()
            raise
        else:
            self._discard_control()
        finally:
            self.state = StatementState.CLOSED
            self.connection.unregister_statement(self)
            logger.debug(f'Closed {self.name}')

    def fetch_all(self) -> list[dict]:
        """Execute and return every row, see `mysqlstrict.result.fetch_all`."""
        return fetch_all(self)

    def fetch_first(self) -> dict | None:
        """Execute and return the first row, see `mysqlstrict.result.fetch_first`."""
        return fetch_first(self)
