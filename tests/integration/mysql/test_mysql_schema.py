import config
import mysqlstrict as db
import pytest
from mysqlstrict.exceptions import ConnectError, ExecuteError, NotFoundError


def test_foreign_key_checks(mysql_conn):
    """Test orphan rows are only accepted with checks off"""
    sql = 'INSERT INTO orders (customer_id, amount) VALUES (?, ?)'
    with pytest.raises(ExecuteError) as exc_info:
        db.insert(mysql_conn, sql, 999, 1.0)
    assert exc_info.value.code == 1452

    db.set_foreign_key_checks(mysql_conn, False)
    try:
        assert db.select_scalar(mysql_conn, 'SELECT @@foreign_key_checks') == 0
        assert db.insert(mysql_conn, sql, 999, 1.0) == 1
    finally:
        db.set_foreign_key_checks(mysql_conn, True)
    assert db.select_scalar(mysql_conn, 'SELECT @@foreign_key_checks') == 1


def test_get_autocommit(mysql_conn):
    assert db.get_autocommit(mysql_conn) is True
    mysql_conn.autocommit(False)
    try:
        assert db.get_autocommit(mysql_conn) is False
    finally:
        mysql_conn.autocommit(True)


def test_get_auto_increment(fresh_stats):
    assert db.get_auto_increment(fresh_stats, 'orders') == 42
    assert db.get_auto_increment(fresh_stats, 'customers', config.mysql.database) == 4


def test_get_auto_increment_missing(fresh_stats):
    with pytest.raises(NotFoundError):
        db.get_auto_increment(fresh_stats, 'no_such_table')
    with pytest.raises(NotFoundError):
        db.get_auto_increment(fresh_stats, 'plain')


def test_truncate(mysql_conn):
    db.insert(mysql_conn, 'INSERT INTO plain (name) VALUES (?)', 'gone')
    db.truncate(mysql_conn, 'plain')
    assert db.select_scalar(mysql_conn, 'SELECT COUNT(*) FROM plain') == 0
    db.truncate(mysql_conn, 'plain')


def test_truncate_referenced_table(mysql_conn):
    """Test a table referenced by a foreign key needs checks off"""
    with pytest.raises(ExecuteError) as exc_info:
        db.truncate(mysql_conn, 'customers')
    assert exc_info.value.code == 1701

    db.set_foreign_key_checks(mysql_conn, False)
    try:
        db.truncate(mysql_conn, 'customers')
    finally:
        db.set_foreign_key_checks(mysql_conn, True)
    assert db.select(mysql_conn, 'SELECT id FROM customers') == []


def test_truncate_missing_table(mysql_conn):
    with pytest.raises(ExecuteError) as exc_info:
        db.truncate(mysql_conn, 'no_such_table')
    assert exc_info.value.code == 1146


def test_bad_credentials(mysql_docker):
    with pytest.raises(ConnectError) as exc_info:
        db.connect('mysql', config=config, password='wrong')
    assert exc_info.value.code == 1045


if __name__ == '__main__':
    __import__('pytest').main([__file__])
