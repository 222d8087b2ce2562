from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pandas as pd
import pyarrow as pa

from libb import ConfigOptions, scriptname

__all__ = [
    'DatabaseOptions',
    'SUPPORTED_DRIVERS',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
]

SUPPORTED_DRIVERS = ('mysql', 'mariadb')


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader.

    Accepts additional keyword arguments for compatibility with other data
    loaders, but doesn't use them.
    """
    if not data:
        return []
    return list(data)


def _empty_dataframe(columns) -> pd.DataFrame:
    """Create empty DataFrame with column metadata."""
    return pd.DataFrame(columns=list(columns))


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not data:
        return _empty_dataframe(columns)

    return pd.DataFrame.from_records(list(data), columns=list(columns))


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """PyArrow-based pandas DataFrame loader.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not data:
        return _empty_dataframe(columns)

    column_names = list(columns)
    columns_data = [[row[col] for row in data] for col in column_names]
    return pa.table(columns_data, names=column_names).to_pandas(types_mapper=pd.ArrowDtype)


@dataclass
class DatabaseOptions(ConfigOptions):
    """Options

    supported driver names: `mysql`, `mariadb`

    - charset: connection character set, enforced after connecting (default: utf8mb4)
    - autocommit: None keeps the server's session default
    - timeout: connect timeout in seconds (0 for the driver default)
    - data_loader: shapes rows returned by `select()` (default: list of dicts)
    """
    drivername: str = 'mysql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 3306
    charset: str = 'utf8mb4'
    timeout: int = 0
    autocommit: bool | None = None
    appname: str = None
    data_loader: Callable[..., Any] | None = None

    def __post_init__(self):
        if self.drivername not in SUPPORTED_DRIVERS:
            raise ValueError(f'drivername must be one of: {list(SUPPORTED_DRIVERS)}')
        if not self.hostname:
            raise ValueError('hostname is required')
        if not self.charset:
            raise ValueError('charset must not be empty')
        self.appname = self.appname or scriptname() or 'python_console'
        if self.data_loader is None:
            self.data_loader = iterdict_data_loader
