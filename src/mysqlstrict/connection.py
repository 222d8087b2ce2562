"""
Database connection handling.

This module provides the primary interfaces for connecting to MySQL:
1. The `connect()` function for creating new database sessions
2. The `Connection` class that wraps a SQLAlchemy connection

SQLAlchemy opens the session (with `NullPool`, so nothing is pooled); every
statement runs on the raw PyMySQL connection through `Statement`, which
turns each driver failure into a typed error at the call that failed.
"""
import itertools
import logging
from dataclasses import fields
from typing import Any, Self

import sqlalchemy as sa
from mysqlstrict import schema
from mysqlstrict.exceptions import CloseError, ConnectError, ExecuteError
from mysqlstrict.exceptions import cleanup_errors, driver_errors
from mysqlstrict.options import DatabaseOptions
from mysqlstrict.statement import Statement, infer_types
from mysqlstrict.utils.connection_utils import get_engine_for_options

from libb import load_options

logger = logging.getLogger(__name__)


class Connection:
    """Wraps a SQLAlchemy connection to a MySQL session.

    This class:
    1. Is the factory for prepared `Statement` objects and tracks the open ones
    2. Tracks query execution counts and timing
    3. Exposes the schema helpers (truncate, foreign key checks, autocommit
       and auto-increment lookups)
    4. Supports the context manager protocol for explicit resource management

    Open statements are the caller's to close. Closing the connection while
    statements are still open logs a warning and leaves their server-side
    slots to die with the session.

    Not thread-safe: the session is a single ordered command channel.
    """

    def __init__(self, sa_connection: sa.engine.Connection,
                 options: DatabaseOptions | None = None) -> None:
        """Initialize a connection wrapper

        Args:
            sa_connection: SQLAlchemy connection object to wrap
            options: The DatabaseOptions used to create this connection
        """
        self.sa_connection = sa_connection
        self.options = options
        self.dbapi_connection = sa_connection.connection.dbapi_connection
        self.calls = 0
        self.time = 0
        self.in_transaction = False
        self.statements: set[Statement] = set()
        self._statement_ids = itertools.count(1)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return bool(getattr(self.sa_connection, 'closed', False))

    @property
    def database(self) -> str | None:
        return self.options.database if self.options else None

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics

        Args:
            elapsed: Time in seconds that the query took to execute
        """
        self.time += elapsed
        self.calls += 1

    def next_statement_name(self) -> str:
        """Unique server-side name for a new prepared statement."""
        return f'mysqlstrict_stmt_{next(self._statement_ids)}'

    def register_statement(self, statement: Statement) -> None:
        self.statements.add(statement)

    def unregister_statement(self, statement: Statement) -> None:
        self.statements.discard(statement)

    def set_charset(self, charset: str) -> None:
        """Set the session character set.

        Raises
            ConnectError: Server rejected the character set
        """
        with driver_errors(ConnectError):
            self.dbapi_connection.set_character_set(charset)
        logger.debug(f'Character set set to {charset}')

    def character_set_name(self) -> str:
        return self.dbapi_connection.character_set_name()

    def prepare(self, sql: str) -> Statement:
        """Prepare an SQL statement for execution

        Raises
            PrepareError: Server rejected the statement text
        """
        return Statement(self, sql)

    def stmt_init(self) -> Statement:
        """Create a statement to be prepared later with `Statement.prepare()`."""
        return Statement(self)

    def _prepare_bound(self, sql: str, args: tuple, types: str | None) -> Statement:
        stmt = self.prepare(sql)
        try:
            if stmt.param_count or args:
                stmt.bind(infer_types(args) if types is None else types, *args)
        except Exception as exc:
            stmt.close_after(exc)
            raise
        return stmt

    def execute(self, sql: str, *args: Any, types: str | None = None) -> int | None:
        """Execute a statement and return its affected row count.

        The type signature is inferred from the arguments unless given.
        """
        with self._prepare_bound(sql, args, types) as stmt:
            return stmt.execute()

    def select(self, sql: str, *args: Any, types: str | None = None, **kwargs: Any) -> Any:
        """Execute a query and shape its rows with the configured data loader.
        """
        with self._prepare_bound(sql, args, types) as stmt:
            rows = stmt.fetch_all()
            columns = stmt.fields
        data_loader = self.options.data_loader if self.options else None
        if data_loader is None:
            return rows
        return data_loader(rows, columns, **kwargs)

    def select_row(self, sql: str, *args: Any, types: str | None = None) -> dict | None:
        """Execute a query and return its first row, or None when it has none.
        """
        with self._prepare_bound(sql, args, types) as stmt:
            return stmt.fetch_first()

    def select_scalar(self, sql: str, *args: Any, types: str | None = None) -> Any:
        """Execute a query and return the first column of its first row.

        Returns None when the query yields no row.
        """
        row = self.select_row(sql, *args, types=types)
        if row is None:
            return None
        return next(iter(row.values()))

    def autocommit(self, enabled: bool) -> None:
        """Turn session autocommit on or off.

        Raises
            ExecuteError: Server rejected the change
        """
        with driver_errors(ExecuteError):
            self.dbapi_connection.autocommit(enabled)
        logger.debug(f'Autocommit set to {enabled}')

    def begin(self) -> None:
        with driver_errors(ExecuteError):
            self.dbapi_connection.begin()

    def commit(self) -> None:
        with driver_errors(ExecuteError):
            self.dbapi_connection.commit()

    def rollback(self) -> None:
        with driver_errors(ExecuteError):
            self.dbapi_connection.rollback()

    def set_foreign_key_checks(self, enabled: bool) -> None:
        schema.set_foreign_key_checks(self, enabled)

    def get_autocommit(self) -> bool:
        return schema.get_autocommit(self)

    def get_auto_increment(self, table: str, schema_name: str | None = None) -> int:
        return schema.get_auto_increment(self, table, schema_name)

    def truncate(self, table: str) -> None:
        schema.truncate(self, table)

    def close(self) -> None:
        """Close the session.

        Statements still open are not closed on the caller's behalf.

        Raises
            CloseError: Driver failed to close the session
        """
        if self.closed:
            return
        if self.statements:
            names = ', '.join(sorted(stmt.name for stmt in self.statements))
            logger.warning(f'Closing connection with {len(self.statements)} '
                           f'open statements: {names}')
        with driver_errors(CloseError):
            self.sa_connection.close()
        logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                     f'(avg: {self.time/max(1,self.calls):.3f}s per query)')


@load_options(cls=DatabaseOptions)
def connect(options: DatabaseOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> Connection:
    """Connect to a MySQL server

    Args:
        options: Can be:
                - DatabaseOptions object
                - String name of a configuration section
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Returns
        Connection with the configured character set applied

    Raises
        ConnectError: Server unreachable, credentials rejected, or the
        character set could not be applied
    """
    if isinstance(options, DatabaseOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=DatabaseOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    engine = get_engine_for_options(options)

    with driver_errors(ConnectError):
        sa_connection = engine.connect()

    cn = Connection(sa_connection, options)
    try:
        cn.set_charset(options.charset)
    except ConnectError as exc:
        with cleanup_errors(exc, 'Closing the session'), driver_errors(CloseError):
            sa_connection.close()
        raise

    logger.debug(f'Connected to {options.hostname}:{options.port}/{options.database}')
    return cn
