"""
Fixtures for MySQL integration tests.
"""
import pytest


def pytest_collection_modifyitems(items):
    for item in items:
        if 'integration/mysql' in item.nodeid:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def fresh_stats(mysql_conn):
    """Make information_schema report live table statistics."""
    mysql_conn.execute('SET SESSION information_schema_stats_expiry = 0')
    return mysql_conn
