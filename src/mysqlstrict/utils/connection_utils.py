"""
SQLAlchemy engine management for MySQL sessions.

This module provides:
1. SQLAlchemy URL generation from DatabaseOptions
2. Engine creation through a thread-safe registry

Engines always use `NullPool`: every `connect()` opens a fresh session and
`close()` really closes it. SQLAlchemy is used only to build and open the
session; statements run on the raw PyMySQL connection.
"""
import atexit
import logging
import threading

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

__all__ = [
    'create_url_from_options',
    'create_connect_args',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

# Thread-safe engine registry
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def create_url_from_options(options, url_creator=sa.URL.create):
    """Convert DatabaseOptions to SQLAlchemy URL.

    Args:
        options: DatabaseOptions object with connection parameters
        url_creator: Function used to create URL objects (default: sqlalchemy.URL.create)

    Returns
        sqlalchemy.URL: SQLAlchemy URL object for database connection
    """
    if options.drivername not in {'mysql', 'mariadb'}:
        raise ValueError(f'Unsupported database type: {options.drivername}')

    return url_creator(
        drivername=f'{options.drivername}+pymysql',
        username=options.username,
        password=options.password,
        host=options.hostname,
        port=options.port,
        database=options.database,
        query={'charset': options.charset},
    )


def create_connect_args(options) -> dict:
    """Driver keyword arguments not expressible in the URL.

    `autocommit` is always passed: PyMySQL would otherwise switch the session
    to autocommit off on connect.
    """
    connect_args = {'autocommit': options.autocommit}
    if options.timeout:
        connect_args['connect_timeout'] = options.timeout
    if options.appname:
        connect_args['program_name'] = options.appname
    return connect_args


def get_engine_for_options(options, engine_factory=sa.create_engine, **kwargs):
    """Get or create a SQLAlchemy engine for the given options.

    Args:
        options: DatabaseOptions object
        engine_factory: Function to create engines (defaults to sqlalchemy.create_engine)
        **kwargs: Additional arguments passed to engine factory

    Returns
        sqlalchemy.engine.Engine: SQLAlchemy engine
    """
    key = str(options)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        url = create_url_from_options(options)

        engine_kwargs = {
            'echo': False,
            'poolclass': NullPool,
            'connect_args': create_connect_args(options),
        }
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines():
    """Dispose all engines in the registry."""
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


# Register cleanup function to run at program exit
atexit.register(dispose_all_engines)
