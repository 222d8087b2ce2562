"""
Database-specific exception classes and driver error translation.

Every driver call made by this package runs inside `driver_errors()`, which
converts a PyMySQL (or SQLAlchemy-wrapped PyMySQL) error into one of the typed
errors below, keeping the server's numeric code and message.
"""
import logging
from contextlib import contextmanager

import pymysql
import sqlalchemy.exc

logger = logging.getLogger(__name__)

# MySQL client/server codes worth retrying at a higher level
RETRYABLE_CODES = {
    1040,  # too many connections
    1205,  # lock wait timeout exceeded
    1213,  # deadlock found
    2002,  # can't connect through socket
    2003,  # can't connect to server
    2006,  # server has gone away
    2013,  # lost connection during query
    2055,  # lost connection at reading initial packet
}

CR_COMMANDS_OUT_OF_SYNC = 2014
CR_PARAMS_NOT_BOUND = 2031


class DatabaseError(Exception):
    """Base class for all database module errors.

    Carries the driver-reported numeric `code` and `message` where available,
    and the SQL text of the statement that failed.
    """

    def __init__(self, message: str = '', code: int | None = None,
                 sql: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.sql = sql

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f'({self.code}) {self.message}'


class ConnectError(DatabaseError):
    """Error establishing the session or applying its character set.
    """


class PrepareError(DatabaseError):
    """Server rejected the statement text.
    """


class BindError(DatabaseError):
    """Parameter values do not fit the statement or were rejected.
    """


class ExecuteError(DatabaseError):
    """Server rejected execution of a statement.
    """


class ResultError(DatabaseError):
    """Result set could not be obtained after execution.
    """


class FetchError(DatabaseError):
    """Reading or draining a result set failed part way.
    """


class CloseError(DatabaseError):
    """Statement or session could not be closed.
    """


class FormatError(DatabaseError):
    """Identifier list does not match the template placeholders.
    """


class NotFoundError(DatabaseError):
    """Schema lookup yielded nothing.
    """


def error_info(exc: BaseException) -> tuple[int | None, str]:
    """Extract the (code, message) pair reported by the driver.

    PyMySQL errors carry ``(code, message)`` in their args; SQLAlchemy wraps
    them in `DBAPIError.orig`.
    """
    if isinstance(exc, sqlalchemy.exc.DBAPIError) and exc.orig is not None:
        exc = exc.orig
    args = getattr(exc, 'args', ())
    if len(args) >= 2 and isinstance(args[0], int):
        return args[0], str(args[1])
    if len(args) == 1 and isinstance(args[0], int):
        return args[0], ''
    return None, str(exc)


def translate_error(exc: BaseException, error_cls: type[DatabaseError],
                    sql: str | None = None) -> DatabaseError:
    """Build the typed error for a failed driver call.
    """
    code, message = error_info(exc)
    return error_cls(message, code=code, sql=sql)


@contextmanager
def driver_errors(error_cls: type[DatabaseError], sql: str | None = None):
    """Raise `error_cls` for any driver failure inside the block.
    """
    try:
        yield
    except (pymysql.err.MySQLError, sqlalchemy.exc.DBAPIError) as exc:
        raise translate_error(exc, error_cls, sql) from exc


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient error worth retrying.

    Returns True for lost connections, deadlocks and lock wait timeouts.
    Nothing in this package retries; the check is for callers.

    :param exc: The exception to check.
    :returns: True if the error is likely transient and worth retrying.
    """
    if isinstance(exc, DatabaseError):
        code = exc.code
    else:
        code, _ = error_info(exc)
    return code in RETRYABLE_CODES


@contextmanager
def cleanup_errors(error: BaseException, action: str):
    """Run cleanup while `error` propagates.

    A typed failure inside the block is logged and attached to `error` as a
    note; the caller still receives `error` itself.
    """
    try:
        yield
    except DatabaseError as exc:
        error.add_note(f'{action} also failed: {exc}')
        logger.error(f'{action} failed while handling {type(error).__name__}: {exc}')
